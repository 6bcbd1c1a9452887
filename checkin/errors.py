"""Exception taxonomy for the check-in pipeline.

Every subclass of :class:`CheckInError` is recovered at the flow boundary
(:mod:`checkin.flows`) and turned into a user-facing outcome. Contract
violations (bad coordinates, illegal state transitions) are ``ValueError`` /
:class:`SessionStateError` and are allowed to propagate.
"""

from __future__ import annotations

import enum
from typing import Optional


class CheckInError(Exception):
    """Base class for recoverable check-in failures."""


class ConfigurationError(CheckInError):
    """No school location is configured; an administrator must fix it."""


class PreflightReason(str, enum.Enum):
    INSECURE_CONTEXT = "insecure_context"
    UNSUPPORTED_API = "unsupported_api"
    PERMISSION_DENIED = "permission_denied"
    NO_DEVICE = "no_device"


class PreflightError(CheckInError):
    """The environment cannot capture from a camera."""

    def __init__(self, reason: PreflightReason, detail: str = "") -> None:
        super().__init__(detail or reason.value)
        self.reason = reason
        self.detail = detail


class ModelLoadError(CheckInError):
    """Neither the primary nor the fallback embedding model source loaded."""


class CameraErrorCode(str, enum.Enum):
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    IN_USE = "in_use"
    OVERCONSTRAINED = "overconstrained"
    UNKNOWN = "unknown"


class CameraError(CheckInError):
    """A camera stream request was refused by the platform."""

    def __init__(self, code: CameraErrorCode, detail: str = "") -> None:
        super().__init__(detail or code.value)
        self.code = code
        self.detail = detail


class PlaybackError(CheckInError):
    """A stream was acquired but playback could not start yet."""


class MatchError(CheckInError):
    """The captured face does not match the stored reference.

    ``match`` carries the :class:`~checkin.pipeline.MatchResult` so the
    rejection can still report its confidence.
    """

    def __init__(self, distance: float, threshold: float, match: object = None) -> None:
        super().__init__(f"distance {distance:.4f} exceeds threshold {threshold:.4f}")
        self.distance = distance
        self.threshold = threshold
        self.match = match


class LocationErrorCode(str, enum.Enum):
    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"


class LocationError(CheckInError):
    """Device geolocation was denied, unavailable or timed out."""

    def __init__(self, code: LocationErrorCode, detail: str = "") -> None:
        super().__init__(detail or code.value)
        self.code = code
        self.detail = detail


class DuplicateAttendance(CheckInError):
    """The profile already has an attendance record for today."""


class PersistenceError(CheckInError):
    """The record store failed for a reason other than a duplicate."""

    def __init__(self, message: str = "", *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message or "record store failure")
        self.cause = cause


class ProfileNotFound(CheckInError):
    """No profile exists for the requested identifier."""


class SessionStateError(RuntimeError):
    """A capture session was driven through an illegal transition."""


__all__ = [
    "CameraError",
    "CameraErrorCode",
    "CheckInError",
    "ConfigurationError",
    "DuplicateAttendance",
    "LocationError",
    "LocationErrorCode",
    "MatchError",
    "ModelLoadError",
    "PersistenceError",
    "PlaybackError",
    "PreflightError",
    "PreflightReason",
    "ProfileNotFound",
    "SessionStateError",
]
