"""Role-based permissions shared by the roster and check-in APIs."""

from __future__ import annotations

from typing import Optional

from rest_framework import permissions

from .models import Profile, Role


def get_profile(user) -> Optional[Profile]:
    """Return the user's profile, or ``None`` for anonymous or profile-less users."""

    if not getattr(user, "is_authenticated", False):
        return None
    try:
        return user.profile
    except Profile.DoesNotExist:
        return None


def user_role(user) -> Optional[str]:
    """Staff accounts without a profile act as administrators."""

    profile = get_profile(user)
    if profile is not None:
        return profile.role
    if getattr(user, "is_staff", False):
        return Role.ADMIN
    return None


class IsAdminRole(permissions.BasePermission):
    message = "Administrator access is required."

    def has_permission(self, request, view) -> bool:
        return user_role(request.user) == Role.ADMIN


class IsTeacherOrAdmin(permissions.BasePermission):
    message = "Teacher or administrator access is required."

    def has_permission(self, request, view) -> bool:
        return user_role(request.user) in (Role.TEACHER, Role.ADMIN)


class HasProfile(permissions.BasePermission):
    message = "This account has no profile."

    def has_permission(self, request, view) -> bool:
        return get_profile(request.user) is not None
