"""Registration and verification flows.

Both flows drive a :class:`~checkin.capture.CaptureSession` and turn every
:class:`~checkin.errors.CheckInError` into a :class:`FlowOutcome`. Nothing
from the error taxonomy escapes :meth:`run`.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, Optional

import sentry_sdk

from . import monitoring
from .capture import CaptureSession, Cancelled, Failed, FailureReason, Idle, Ready, SessionState, Succeeded
from .errors import (
    CheckInError,
    ConfigurationError,
    LocationError,
    MatchError,
    PersistenceError,
    ProfileNotFound,
)
from .geolocation import GeolocationProvider, acquire_position
from .pipeline import MatchResult
from .store import AttendanceRecord, RecordStore
from .validator import AttendanceValidator, RecordedAttendance, Rejected, RejectionReason

logger = logging.getLogger(__name__)


class FlowStatus(str, enum.Enum):
    REGISTERED = "registered"
    CHECKED_IN = "checked_in"
    CHECKED_IN_OUT_OF_RANGE = "checked_in_out_of_range"
    ALREADY_CHECKED_IN = "already_checked_in"
    NO_FACE_DETECTED = "no_face_detected"
    FACE_REJECTED = "face_rejected"
    NOT_REGISTERED = "not_registered"
    PROFILE_NOT_FOUND = "profile_not_found"
    LOCATION_UNAVAILABLE = "location_unavailable"
    CONFIGURATION_ERROR = "configuration_error"
    PREFLIGHT_FAILED = "preflight_failed"
    MODEL_LOAD_FAILED = "model_load_failed"
    CAMERA_FAILED = "camera_failed"
    PERSISTENCE_FAILED = "persistence_failed"
    CANCELLED = "cancelled"


_MESSAGES: Dict[FlowStatus, str] = {
    FlowStatus.REGISTERED: "Face registered successfully.",
    FlowStatus.CHECKED_IN: "Attendance recorded.",
    FlowStatus.CHECKED_IN_OUT_OF_RANGE: (
        "Attendance recorded, but you are outside the school area. It was flagged as invalid."
    ),
    FlowStatus.ALREADY_CHECKED_IN: "You have already checked in today.",
    FlowStatus.NO_FACE_DETECTED: "No face detected. Position your face in front of the camera and try again.",
    FlowStatus.FACE_REJECTED: "Face not recognized. Try again.",
    FlowStatus.NOT_REGISTERED: "No face registered for this profile. Register your face first.",
    FlowStatus.PROFILE_NOT_FOUND: "Profile not found.",
    FlowStatus.LOCATION_UNAVAILABLE: "Could not get your location. Allow location access and try again.",
    FlowStatus.CONFIGURATION_ERROR: "The school location has not been configured. Contact an administrator.",
    FlowStatus.PREFLIGHT_FAILED: "The camera cannot be used in this environment.",
    FlowStatus.MODEL_LOAD_FAILED: "The face recognition model could not be loaded. Try again.",
    FlowStatus.CAMERA_FAILED: "The camera could not be used.",
    FlowStatus.PERSISTENCE_FAILED: "Could not save. Try again.",
    FlowStatus.CANCELLED: "Cancelled.",
}

_RETRYABLE = frozenset(
    {
        FlowStatus.NO_FACE_DETECTED,
        FlowStatus.FACE_REJECTED,
        FlowStatus.LOCATION_UNAVAILABLE,
        FlowStatus.MODEL_LOAD_FAILED,
        FlowStatus.CAMERA_FAILED,
        FlowStatus.PERSISTENCE_FAILED,
        FlowStatus.CANCELLED,
    }
)

_SUCCESSES = frozenset(
    {FlowStatus.REGISTERED, FlowStatus.CHECKED_IN, FlowStatus.CHECKED_IN_OUT_OF_RANGE}
)


@dataclass(frozen=True)
class FlowOutcome:
    status: FlowStatus
    message: str
    retryable: bool = False
    hint: str = ""
    detail: str = ""
    distance_meters: Optional[float] = None
    match: Optional[MatchResult] = None
    attendance: Optional[AttendanceRecord] = None

    @property
    def succeeded(self) -> bool:
        return self.status in _SUCCESSES

    @property
    def is_warning(self) -> bool:
        return self.status is FlowStatus.CHECKED_IN_OUT_OF_RANGE

    def as_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "status": self.status.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.hint:
            payload["hint"] = self.hint
        if self.distance_meters is not None:
            payload["distance_meters"] = round(self.distance_meters, 2)
        if self.match is not None:
            payload["confidence"] = round(self.match.confidence, 4)
            payload["distance_score"] = round(self.match.distance_score, 4)
        if self.attendance is not None:
            payload["attendance"] = {
                "id": self.attendance.id,
                "is_valid": self.attendance.is_valid,
                "attendance_date": self.attendance.attendance_date.isoformat(),
            }
        return payload


def _outcome(status: FlowStatus, **kwargs) -> FlowOutcome:
    return FlowOutcome(
        status=status,
        message=_MESSAGES[status],
        retryable=status in _RETRYABLE,
        **kwargs,
    )


def drive_session(session: CaptureSession) -> SessionState:
    """Start ``session`` if needed and trigger one capture once it is ready."""

    state = session.state
    if isinstance(state, Idle):
        state = session.start()
    if isinstance(state, Ready):
        state = session.capture()
    return state


def outcome_for_session_state(state: SessionState) -> FlowOutcome:
    """Map a non-successful session state to the outcome reported to the user."""

    if isinstance(state, Failed):
        if state.reason.is_preflight:
            status = FlowStatus.PREFLIGHT_FAILED
        elif state.reason is FailureReason.MODEL_LOAD_FAILED:
            status = FlowStatus.MODEL_LOAD_FAILED
        else:
            status = FlowStatus.CAMERA_FAILED
        return _outcome(status, hint=state.hint, detail=state.reason.value)
    if isinstance(state, Cancelled):
        return _outcome(FlowStatus.CANCELLED)
    if isinstance(state, Ready):
        return _outcome(FlowStatus.NO_FACE_DETECTED)
    raise ValueError(f"Capture session in state {state.name} has no flow outcome")


def outcome_for_error(exc: CheckInError) -> FlowOutcome:
    if isinstance(exc, ProfileNotFound):
        return _outcome(FlowStatus.PROFILE_NOT_FOUND, detail=str(exc))
    if isinstance(exc, MatchError):
        return _outcome(FlowStatus.FACE_REJECTED, match=exc.match, detail=str(exc))
    if isinstance(exc, LocationError):
        return _outcome(FlowStatus.LOCATION_UNAVAILABLE, detail=exc.code.value)
    if isinstance(exc, ConfigurationError):
        return _outcome(FlowStatus.CONFIGURATION_ERROR, detail=str(exc))
    if isinstance(exc, PersistenceError):
        return _outcome(FlowStatus.PERSISTENCE_FAILED, detail=str(exc))
    logger.error("Unmapped check-in error %s: %s", type(exc).__name__, exc)
    return _outcome(FlowStatus.CAMERA_FAILED, detail=str(exc))


class _Flow:
    name = "flow"

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def run(self, profile_id: int, session: CaptureSession) -> FlowOutcome:
        try:
            outcome = self._run(profile_id, session)
        except CheckInError as exc:
            outcome = outcome_for_error(exc)

        monitoring.record_flow_outcome(self.name, outcome.status.value, outcome.distance_meters)
        sentry_sdk.add_breadcrumb(
            category=f"checkin.{self.name}",
            message=outcome.status.value,
            level="warning" if not outcome.succeeded else "info",
            data={"profile_id": profile_id, "retryable": outcome.retryable},
        )
        logger.info(
            "%s flow for profile %s finished: %s",
            self.name,
            profile_id,
            outcome.status.value,
            extra={
                "event": f"{self.name}_flow",
                "profile_id": profile_id,
                "status": outcome.status.value,
            },
        )
        return outcome

    def _run(self, profile_id: int, session: CaptureSession) -> FlowOutcome:
        raise NotImplementedError


class RegistrationFlow(_Flow):
    """Capture a face and store it as the profile's reference descriptor."""

    name = "registration"

    def _run(self, profile_id: int, session: CaptureSession) -> FlowOutcome:
        state = drive_session(session)
        if not isinstance(state, Succeeded):
            return outcome_for_session_state(state)

        self.store.upsert_reference_descriptor(profile_id, state.descriptor)
        return _outcome(FlowStatus.REGISTERED)


class VerificationFlow(_Flow):
    """Capture a face, match it, locate the device and record attendance."""

    name = "verification"

    def __init__(
        self,
        store: RecordStore,
        geolocation: GeolocationProvider,
        *,
        validator: Optional[AttendanceValidator] = None,
        location_timeout: Optional[float] = None,
    ) -> None:
        super().__init__(store)
        self.geolocation = geolocation
        self.validator = validator if validator is not None else AttendanceValidator(store)
        self.location_timeout = location_timeout

    def _run(self, profile_id: int, session: CaptureSession) -> FlowOutcome:
        state = drive_session(session)
        if not isinstance(state, Succeeded):
            return outcome_for_session_state(state)

        profile = self.store.fetch(profile_id)
        if not profile.is_registered:
            return _outcome(FlowStatus.NOT_REGISTERED)

        match = session.matcher.match(state.descriptor, profile.reference_descriptor)
        if not match.matched:
            logger.info(
                "Face rejected for profile %s (distance %.4f)",
                profile_id,
                match.distance_score,
                extra={"event": "face_match", "status": "rejected", "profile_id": profile_id},
            )
            raise MatchError(match.distance_score, session.matcher.threshold, match=match)

        school_location = self.store.fetch_school_location()
        if school_location is None:
            raise ConfigurationError("No school location has been configured")

        position = acquire_position(self.geolocation, self.location_timeout)
        result = self.validator.validate(profile_id, match, position, school_location)
        return self._outcome_for_validation(result, match)

    @staticmethod
    def _outcome_for_validation(
        result: RecordedAttendance | Rejected, match: MatchResult
    ) -> FlowOutcome:
        if isinstance(result, Rejected):
            status = (
                FlowStatus.ALREADY_CHECKED_IN
                if result.reason is RejectionReason.DUPLICATE_ATTENDANCE
                else FlowStatus.PERSISTENCE_FAILED
            )
            return _outcome(status, match=match, detail=result.detail)

        status = FlowStatus.CHECKED_IN if result.is_valid else FlowStatus.CHECKED_IN_OUT_OF_RANGE
        return _outcome(
            status,
            match=match,
            distance_meters=result.distance_meters,
            attendance=result.event,
        )


__all__ = [
    "FlowOutcome",
    "FlowStatus",
    "RegistrationFlow",
    "VerificationFlow",
    "drive_session",
    "outcome_for_error",
    "outcome_for_session_state",
]
