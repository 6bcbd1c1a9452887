"""Register a profile's reference face from a local camera."""

from __future__ import annotations

from django.core.management.base import BaseCommand

from checkin.camera import OpenCVMediaPlatform
from checkin.capture import CaptureSession
from checkin.config import get_camera_index
from checkin.flows import RegistrationFlow
from checkin.store import DjangoRecordStore

from ._kiosk import report_outcome, resolve_profile, run_with_retries


class Command(BaseCommand):
    help = "Capture a face from the local camera and store it as the profile's reference"

    def add_arguments(self, parser):
        parser.add_argument("registration_number", help="Registration number of the profile")
        parser.add_argument(
            "--camera",
            type=int,
            default=None,
            help="Camera device index (default: CHECKIN_CAMERA_INDEX)",
        )
        parser.add_argument(
            "--attempts",
            type=int,
            default=5,
            help="Captures to try before giving up when no face is detected (default: 5)",
        )

    def handle(self, *args, **options):
        profile = resolve_profile(options["registration_number"])
        camera = options["camera"] if options["camera"] is not None else get_camera_index()
        platform = OpenCVMediaPlatform(camera)

        if profile.has_face_descriptor:
            self.stdout.write(
                self.style.NOTICE(f"Replacing the registered face of {profile.full_name}.")
            )
        with CaptureSession(platform) as session:
            outcome = run_with_retries(
                RegistrationFlow(DjangoRecordStore()),
                profile.pk,
                session,
                max(1, options["attempts"]),
                self.stdout,
                self.style,
            )
        report_outcome(outcome, self.stdout, self.style)
