"""Admin registrations for the check-in app."""

from django.contrib import admin

from .models import AttendanceEvent, SchoolLocation


@admin.register(SchoolLocation)
class SchoolLocationAdmin(admin.ModelAdmin):
    """Edit the single school geofence."""

    list_display = ("name", "latitude", "longitude", "radius_meters", "updated_at")
    readonly_fields = ("updated_at",)

    def has_add_permission(self, request) -> bool:
        return not SchoolLocation.objects.exists()


@admin.register(AttendanceEvent)
class AttendanceEventAdmin(admin.ModelAdmin):
    """Attendance is an audit trail: viewable, never edited or deleted here."""

    list_display = (
        "attendance_date",
        "attendance_time",
        "profile",
        "is_valid",
        "distance_meters",
    )
    list_filter = ("is_valid", "attendance_date", "profile__class_group")
    search_fields = ("profile__full_name", "profile__registration_number")
    ordering = ("-attendance_date", "-attendance_time")
    date_hierarchy = "attendance_date"

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
