"""Record store used by the flows: profiles, the geofence and attendance rows."""

from __future__ import annotations

import datetime as _dt
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

import numpy as np

from src.common.crypto import InvalidToken

from .errors import DuplicateAttendance, PersistenceError, ProfileNotFound
from .geo import Coordinates

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProfileRecord:
    id: int
    full_name: str
    registration_number: str
    role: str
    class_id: Optional[int] = None
    reference_descriptor: Optional[np.ndarray] = None

    @property
    def is_registered(self) -> bool:
        return self.reference_descriptor is not None


@dataclass(frozen=True)
class SchoolGeofence:
    name: str
    center: Coordinates
    radius_meters: float


@dataclass(frozen=True)
class AttendanceRecord:
    id: int
    profile_id: int
    latitude: float
    longitude: float
    is_valid: bool
    distance_meters: float
    attendance_date: _dt.date
    attendance_time: Optional[_dt.datetime] = None


class RecordStore(Protocol):
    def fetch(self, profile_id: int) -> ProfileRecord:
        """Raise :class:`ProfileNotFound` for unknown ids."""

    def fetch_school_location(self) -> Optional[SchoolGeofence]:
        ...

    def upsert_reference_descriptor(self, profile_id: int, descriptor: np.ndarray) -> None:
        ...

    def insert_attendance(
        self,
        profile_id: int,
        latitude: float,
        longitude: float,
        is_valid: bool,
        distance_meters: float,
    ) -> AttendanceRecord:
        """Raise :class:`DuplicateAttendance` when today's row already exists."""


class DjangoRecordStore:
    """:class:`RecordStore` backed by the Django ORM."""

    def fetch(self, profile_id: int) -> ProfileRecord:
        from users.models import Profile

        try:
            profile = Profile.objects.get(pk=profile_id)
        except Profile.DoesNotExist as exc:
            raise ProfileNotFound(f"profile {profile_id} does not exist") from exc
        except DatabaseError as exc:
            raise PersistenceError("could not load profile", cause=exc) from exc

        try:
            descriptor = profile.get_reference_descriptor()
        except InvalidToken as exc:
            logger.error(
                "Stored descriptor for profile %s cannot be decrypted",
                profile_id,
                extra={"event": "descriptor_decrypt", "status": "failure"},
            )
            raise PersistenceError("stored face descriptor is unreadable", cause=exc) from exc

        return ProfileRecord(
            id=profile.pk,
            full_name=profile.full_name,
            registration_number=profile.registration_number,
            role=profile.role,
            class_id=profile.class_group_id,
            reference_descriptor=descriptor,
        )

    def fetch_school_location(self) -> Optional[SchoolGeofence]:
        from .models import SchoolLocation

        try:
            location = SchoolLocation.load()
        except DatabaseError as exc:
            raise PersistenceError("could not load school location", cause=exc) from exc
        if location is None:
            return None
        return SchoolGeofence(
            name=location.name,
            center=location.center,
            radius_meters=float(location.radius_meters),
        )

    def upsert_reference_descriptor(self, profile_id: int, descriptor: np.ndarray) -> None:
        from users.models import Profile

        try:
            with transaction.atomic():
                profile = Profile.objects.select_for_update().get(pk=profile_id)
                profile.set_reference_descriptor(descriptor)
                profile.face_registered_at = timezone.now()
                profile.save(update_fields=["face_descriptor", "face_registered_at", "updated_at"])
        except Profile.DoesNotExist as exc:
            raise ProfileNotFound(f"profile {profile_id} does not exist") from exc
        except DatabaseError as exc:
            raise PersistenceError("could not store face descriptor", cause=exc) from exc

    def insert_attendance(
        self,
        profile_id: int,
        latitude: float,
        longitude: float,
        is_valid: bool,
        distance_meters: float,
    ) -> AttendanceRecord:
        from .models import AttendanceEvent

        today = timezone.localdate()
        try:
            with transaction.atomic():
                event = AttendanceEvent.objects.create(
                    profile_id=profile_id,
                    latitude=latitude,
                    longitude=longitude,
                    is_valid=is_valid,
                    distance_meters=distance_meters,
                    attendance_date=today,
                )
        except IntegrityError as exc:
            if AttendanceEvent.objects.filter(profile_id=profile_id, attendance_date=today).exists():
                raise DuplicateAttendance(
                    f"profile {profile_id} already checked in on {today.isoformat()}"
                ) from exc
            raise PersistenceError("attendance insert violated a constraint", cause=exc) from exc
        except DatabaseError as exc:
            raise PersistenceError("could not store attendance", cause=exc) from exc

        return AttendanceRecord(
            id=event.pk,
            profile_id=profile_id,
            latitude=event.latitude,
            longitude=event.longitude,
            is_valid=event.is_valid,
            distance_meters=event.distance_meters,
            attendance_date=event.attendance_date,
            attendance_time=event.attendance_time,
        )


__all__ = [
    "AttendanceRecord",
    "DjangoRecordStore",
    "ProfileRecord",
    "RecordStore",
    "SchoolGeofence",
]
