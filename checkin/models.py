"""Database models for the check-in app."""

from __future__ import annotations

from typing import Optional

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone

from users.models import Profile

from .geo import Coordinates

RADIUS_MIN_METERS = 50
RADIUS_MAX_METERS = 1000

DEFAULT_SCHOOL_NAME = "School"
DEFAULT_SCHOOL_LATITUDE = -23.5505
DEFAULT_SCHOOL_LONGITUDE = -46.6333
DEFAULT_RADIUS_METERS = 200


class SchoolLocation(models.Model):
    """The single geofence (centre and radius) attendance is validated against."""

    SINGLETON_KEY = 1

    singleton_key = models.PositiveSmallIntegerField(
        default=SINGLETON_KEY, unique=True, editable=False
    )
    name = models.CharField(max_length=200, default=DEFAULT_SCHOOL_NAME)
    latitude = models.FloatField(
        validators=[MinValueValidator(-90.0), MaxValueValidator(90.0)],
    )
    longitude = models.FloatField(
        validators=[MinValueValidator(-180.0), MaxValueValidator(180.0)],
    )
    radius_meters = models.PositiveIntegerField(
        default=DEFAULT_RADIUS_METERS,
        validators=[
            MinValueValidator(RADIUS_MIN_METERS),
            MaxValueValidator(RADIUS_MAX_METERS),
        ],
        help_text="Check-ins within this distance of the centre are valid.",
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "School Location"
        verbose_name_plural = "School Location"

    def __str__(self) -> str:
        return f"{self.name} ({self.latitude:.5f}, {self.longitude:.5f}) r={self.radius_meters}m"

    def save(self, *args, **kwargs) -> None:
        self.singleton_key = self.SINGLETON_KEY
        super().save(*args, **kwargs)

    @property
    def center(self) -> Coordinates:
        return Coordinates(self.latitude, self.longitude)

    @classmethod
    def load(cls) -> Optional["SchoolLocation"]:
        """Return the configured location, or ``None`` when none is set."""
        return cls.objects.filter(singleton_key=cls.SINGLETON_KEY).first()

    @classmethod
    def defaults(cls) -> dict:
        return {
            "name": DEFAULT_SCHOOL_NAME,
            "latitude": DEFAULT_SCHOOL_LATITUDE,
            "longitude": DEFAULT_SCHOOL_LONGITUDE,
            "radius_meters": DEFAULT_RADIUS_METERS,
        }


class AttendanceEvent(models.Model):
    """One check-in per profile per day, kept even when outside the geofence."""

    profile = models.ForeignKey(
        Profile,
        on_delete=models.CASCADE,
        related_name="attendance_events",
    )
    latitude = models.FloatField()
    longitude = models.FloatField()
    is_valid = models.BooleanField(
        help_text="Whether the check-in happened inside the school geofence.",
    )
    distance_meters = models.FloatField(
        help_text="Distance from the school centre when checking in.",
    )
    attendance_date = models.DateField(default=timezone.localdate, db_index=True)
    attendance_time = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-attendance_date", "-attendance_time"]
        verbose_name = "Attendance"
        verbose_name_plural = "Attendance"
        constraints = [
            models.UniqueConstraint(
                fields=["profile", "attendance_date"],
                name="checkin_one_attendance_per_day",
            ),
        ]

    def __str__(self) -> str:
        status = "valid" if self.is_valid else "out of range"
        return f"{self.profile.full_name} on {self.attendance_date} ({status})"
