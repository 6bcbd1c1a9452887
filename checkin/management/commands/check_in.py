"""Check a profile in from a kiosk installed at a known position."""

from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from checkin.camera import OpenCVMediaPlatform
from checkin.capture import CaptureSession
from checkin.config import get_camera_index
from checkin.flows import VerificationFlow
from checkin.geo import Coordinates
from checkin.geolocation import FixedGeolocation
from checkin.store import DjangoRecordStore

from ._kiosk import report_outcome, resolve_profile, run_with_retries


class Command(BaseCommand):
    help = "Verify a face at the local camera and record today's attendance"

    def add_arguments(self, parser):
        parser.add_argument("registration_number", help="Registration number of the profile")
        parser.add_argument("--latitude", type=float, required=True, help="Kiosk latitude")
        parser.add_argument("--longitude", type=float, required=True, help="Kiosk longitude")
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
        try:
            position = Coordinates(options["latitude"], options["longitude"])
        except ValueError as exc:
            raise CommandError(str(exc)) from exc

        profile = resolve_profile(options["registration_number"])
        camera = options["camera"] if options["camera"] is not None else get_camera_index()
        flow = VerificationFlow(DjangoRecordStore(), FixedGeolocation(position))

        with CaptureSession(OpenCVMediaPlatform(camera)) as session:
            outcome = run_with_retries(
                flow,
                profile.pk,
                session,
                max(1, options["attempts"]),
                self.stdout,
                self.style,
            )
        if outcome.distance_meters is not None:
            self.stdout.write(f"Distance from school: {outcome.distance_meters:.0f} m")
        report_outcome(outcome, self.stdout, self.style)
