"""Report whether the local camera can be used for check-in."""

from __future__ import annotations

import json

from django.core.management.base import BaseCommand, CommandError

from checkin.camera import OpenCVMediaPlatform
from checkin.capture import run_preflight
from checkin.config import get_camera_index


class Command(BaseCommand):
    help = "Run the camera preflight checks (secure context, capture API, permission, device)"

    def add_arguments(self, parser):
        parser.add_argument(
            "--camera",
            type=int,
            default=None,
            help="Camera device index (default: CHECKIN_CAMERA_INDEX)",
        )
        parser.add_argument("--json", action="store_true", help="Print the report as JSON")

    def handle(self, *args, **options):
        camera = options["camera"] if options["camera"] is not None else get_camera_index()
        report = run_preflight(OpenCVMediaPlatform(camera))
        payload = report.as_dict()

        if options["json"]:
            self.stdout.write(json.dumps(payload, indent=2))
        else:
            for key in ("secure_context", "media_capture", "permission", "camera_available"):
                self.stdout.write(f"{key.replace('_', ' ')}: {payload[key]}")

        if not report.ok:
            raise CommandError(f"Camera {camera} is not usable: {payload['hint']}")
        if not options["json"]:
            self.stdout.write(self.style.SUCCESS(f"Camera {camera} is ready."))
