"""Geofence validation of a matched check-in and its persistence."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional, Union

from .errors import ConfigurationError, DuplicateAttendance, PersistenceError
from .geo import Coordinates, distance_meters
from .pipeline import MatchResult
from .store import AttendanceRecord, RecordStore, SchoolGeofence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordedAttendance:
    """A persisted attendance row. ``is_valid`` is false outside the geofence."""

    event: AttendanceRecord
    is_valid: bool
    distance_meters: float


class RejectionReason(str, enum.Enum):
    DUPLICATE_ATTENDANCE = "duplicate_attendance"
    PERSISTENCE_ERROR = "persistence_error"


@dataclass(frozen=True)
class Rejected:
    reason: RejectionReason
    detail: str = ""
    distance_meters: Optional[float] = None

    @property
    def already_checked_in(self) -> bool:
        return self.reason is RejectionReason.DUPLICATE_ATTENDANCE


ValidationResult = Union[RecordedAttendance, Rejected]


def is_inside_geofence(distance: float, radius_meters: float) -> bool:
    """The boundary counts as inside."""
    return distance <= radius_meters


class AttendanceValidator:
    """Compute geofence validity for a matched face and record the attendance.

    Out-of-range check-ins are recorded with ``is_valid=False`` rather than
    refused; callers warn the user instead of blocking them.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def validate(
        self,
        profile_id: int,
        match_result: MatchResult,
        position: Coordinates,
        school_location: Optional[SchoolGeofence],
    ) -> ValidationResult:
        if not match_result.matched:
            raise ValueError("Only matched faces can be validated for attendance")
        if school_location is None:
            raise ConfigurationError("No school location has been configured")

        distance = distance_meters(
            position.latitude,
            position.longitude,
            school_location.center.latitude,
            school_location.center.longitude,
        )
        is_valid = is_inside_geofence(distance, school_location.radius_meters)
        log_extra = {
            "event": "attendance_validate",
            "profile_id": profile_id,
            "distance_meters": round(distance, 2),
            "radius_meters": school_location.radius_meters,
            "is_valid": is_valid,
        }

        try:
            event = self.store.insert_attendance(
                profile_id,
                position.latitude,
                position.longitude,
                is_valid,
                distance,
            )
        except DuplicateAttendance as exc:
            logger.info("Profile %s already checked in today", profile_id, extra=log_extra)
            return Rejected(RejectionReason.DUPLICATE_ATTENDANCE, str(exc), distance)
        except PersistenceError as exc:
            logger.error(
                "Attendance for profile %s could not be stored: %s",
                profile_id,
                exc,
                extra=log_extra,
            )
            return Rejected(RejectionReason.PERSISTENCE_ERROR, str(exc), distance)

        if is_valid:
            logger.info("Attendance recorded for profile %s", profile_id, extra=log_extra)
        else:
            logger.warning(
                "Attendance recorded outside the geofence for profile %s (%.0fm)",
                profile_id,
                distance,
                extra=log_extra,
            )
        return RecordedAttendance(event=event, is_valid=is_valid, distance_meters=distance)


__all__ = [
    "AttendanceValidator",
    "RecordedAttendance",
    "Rejected",
    "RejectionReason",
    "ValidationResult",
    "is_inside_geofence",
]
