"""
Admin site configuration for the users app.

Registers profiles and classes so administrators can manage the roster.
Face descriptors are never shown; only whether one is registered.
"""

from django.contrib import admin

from .models import ClassGroup, Profile


@admin.register(ClassGroup)
class ClassGroupAdmin(admin.ModelAdmin):
    list_display = ("name", "description", "created_at")
    search_fields = ("name",)


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    """Admin configuration for student, teacher and admin profiles."""

    list_display = (
        "full_name",
        "registration_number",
        "role",
        "class_group",
        "face_registered",
        "face_registered_at",
    )
    list_filter = ("role", "class_group")
    search_fields = ("full_name", "registration_number", "user__username")
    filter_horizontal = ("teaching_classes",)
    readonly_fields = ("face_registered_at", "created_at", "updated_at")

    @admin.display(boolean=True, description="Face registered")
    def face_registered(self, obj: Profile) -> bool:
        return obj.has_face_descriptor
