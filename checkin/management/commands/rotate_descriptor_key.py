"""Re-encrypt stored reference face descriptors with a new Fernet key."""

from __future__ import annotations

from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

import numpy as np

from src.common.crypto import DescriptorEncryption, InvalidToken
from users.models import Profile


class Command(BaseCommand):
    """Rotate the face descriptor key without losing registered faces."""

    help = (
        "Decrypt every stored face descriptor with the current FACE_DATA_ENCRYPTION_KEY "
        "and re-encrypt it with a new key. Deploy the new key right after running this."
    )

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--new-face-key",
            required=True,
            help="New base64 Fernet key for face descriptor encryption.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Count descriptors that would be re-encrypted without writing changes.",
        )

    def handle(self, *args, **options) -> None:
        current = DescriptorEncryption()
        replacement = DescriptorEncryption(key=options["new_face_key"])
        try:
            # Resolve the key now so a malformed value fails before any row changes.
            replacement.encrypt_descriptor(np.zeros(1))
        except ImproperlyConfigured as exc:
            raise CommandError(f"Invalid new face key: {exc}") from exc

        profiles = Profile.objects.filter(face_descriptor__isnull=False).only("id", "face_descriptor")
        self.stdout.write(self.style.NOTICE(f"Found {profiles.count()} registered descriptors."))

        rotated = 0
        with transaction.atomic():
            for profile in profiles.select_for_update():
                try:
                    descriptor = current.decrypt_descriptor(bytes(profile.face_descriptor))
                except InvalidToken as exc:
                    raise CommandError(
                        f"Descriptor of profile {profile.pk} cannot be decrypted with the current key"
                    ) from exc
                if options["dry_run"]:
                    continue
                profile.face_descriptor = replacement.encrypt_descriptor(descriptor)
                profile.save(update_fields=["face_descriptor"])
                rotated += 1

        if options["dry_run"]:
            self.stdout.write(self.style.SUCCESS("Dry-run complete; no descriptors modified."))
            return
        self.stdout.write(self.style.SUCCESS(f"Re-encrypted {rotated} descriptors."))
