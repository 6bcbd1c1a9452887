"""App configuration for the check-in app."""

from django.apps import AppConfig


class CheckinConfig(AppConfig):
    """
    Configuration class for the check-in app.

    The app holds the geofence, the daily attendance records and the
    face capture pipeline that produces them.
    """

    name = "checkin"
    verbose_name = "Check-in"
