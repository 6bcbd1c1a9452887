"""
Configuration accessors for the check-in pipeline.

Each getter reads a Django setting and falls back to a default so the
pipeline also works under minimal test settings.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple

from django.conf import settings

FACE_MATCH_THRESHOLD = 0.5
"""Maximum Euclidean descriptor distance accepted as the same person.

Lower values reduce false accepts (impostors) at the cost of more false
rejects (legitimate users in poor lighting).
"""

METADATA_TIMEOUT_SECONDS = 3.0
PREFERRED_RESOLUTION = (1280, 720)


def get_face_match_threshold() -> float:
    return float(getattr(settings, "CHECKIN_FACE_MATCH_THRESHOLD", FACE_MATCH_THRESHOLD))


def get_model_name() -> str:
    """Return the DeepFace recognition model; ``Facenet`` yields 128-d descriptors."""
    return getattr(settings, "CHECKIN_MODEL_NAME", "Facenet")


def get_detector_backend() -> str:
    return getattr(settings, "CHECKIN_DETECTOR_BACKEND", "opencv")


def get_model_primary_home() -> Path:
    return Path(getattr(settings, "CHECKIN_MODEL_PRIMARY_HOME", Path(settings.BASE_DIR) / "models"))


def get_model_fallback_home() -> Optional[str]:
    return getattr(settings, "CHECKIN_MODEL_FALLBACK_HOME", None)


def get_camera_index() -> int:
    return int(getattr(settings, "CHECKIN_CAMERA_INDEX", 0))


def get_preferred_resolution() -> Tuple[int, int]:
    width, height = PREFERRED_RESOLUTION
    return (
        int(getattr(settings, "CHECKIN_PREFERRED_WIDTH", width)),
        int(getattr(settings, "CHECKIN_PREFERRED_HEIGHT", height)),
    )


def get_metadata_timeout() -> float:
    """Seconds to wait for stream metadata before forcing playback."""
    return float(getattr(settings, "CHECKIN_METADATA_TIMEOUT_SECONDS", METADATA_TIMEOUT_SECONDS))


def get_geolocation_timeout() -> float:
    return float(getattr(settings, "CHECKIN_GEOLOCATION_TIMEOUT_SECONDS", 10.0))


def get_trusted_insecure_hosts() -> Tuple[str, ...]:
    return tuple(getattr(settings, "CHECKIN_TRUSTED_INSECURE_HOSTS", ("localhost", "127.0.0.1")))


def get_rate_limit() -> str:
    return getattr(settings, "CHECKIN_RATE_LIMIT", "10/m")


def get_max_upload_size() -> int:
    """Largest accepted uploaded frame, in bytes."""
    return int(getattr(settings, "CHECKIN_MAX_UPLOAD_SIZE", 5 * 1024 * 1024))
