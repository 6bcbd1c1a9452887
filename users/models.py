"""
Database models for the users app.

A :class:`Profile` is the identity behind every check-in: the student,
teacher or admin role, the class a student belongs to, the classes a teacher
teaches, and at most one encrypted reference face descriptor.
"""

from __future__ import annotations

from typing import Optional

from django.conf import settings
from django.db import models

import numpy as np

from src.common.crypto import decrypt_descriptor, encrypt_descriptor

from .validators import validate_full_name, validate_registration_number


class Role(models.TextChoices):
    """Roles a profile can hold."""

    STUDENT = "student", "Student"
    TEACHER = "teacher", "Teacher"
    ADMIN = "admin", "Admin"


class ClassGroup(models.Model):
    """A school class (e.g. '3rd year B') students are enrolled in."""

    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]
        verbose_name = "Class"
        verbose_name_plural = "Classes"

    def __str__(self) -> str:
        return self.name


class Profile(models.Model):
    """Identity record linked one-to-one with an auth user."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="profile",
    )
    full_name = models.CharField(max_length=100, validators=[validate_full_name])
    registration_number = models.CharField(
        max_length=20,
        unique=True,
        validators=[validate_registration_number],
    )
    role = models.CharField(max_length=16, choices=Role.choices, default=Role.STUDENT)
    class_group = models.ForeignKey(
        ClassGroup,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="students",
        help_text="Class the student is enrolled in.",
    )
    teaching_classes = models.ManyToManyField(
        ClassGroup,
        blank=True,
        related_name="teachers",
        help_text="Classes a teacher can see attendance for.",
    )
    face_descriptor = models.BinaryField(
        null=True,
        blank=True,
        editable=False,
        help_text="Fernet-encrypted reference face descriptor.",
    )
    face_registered_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["full_name"]
        indexes = [
            models.Index(fields=["role", "class_group"], name="users_profile_role_class_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.full_name} ({self.registration_number}, {self.role})"

    @property
    def has_face_descriptor(self) -> bool:
        return self.face_descriptor is not None

    def get_reference_descriptor(self) -> Optional[np.ndarray]:
        """Return the decrypted reference descriptor, or ``None`` when unregistered."""

        if self.face_descriptor is None:
            return None
        return decrypt_descriptor(bytes(self.face_descriptor))

    def set_reference_descriptor(self, descriptor: np.ndarray) -> None:
        """Replace the reference descriptor. Does not save."""

        self.face_descriptor = encrypt_descriptor(descriptor)

    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def is_teacher(self) -> bool:
        return self.role == Role.TEACHER
