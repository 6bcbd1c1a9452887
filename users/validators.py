"""Input validators for roster data (names, registration numbers, passwords)."""

from __future__ import annotations

import re

from django.core.exceptions import ValidationError
from django.utils.translation import gettext as _

FULL_NAME_MIN_LENGTH = 3
FULL_NAME_MAX_LENGTH = 100
REGISTRATION_NUMBER_MIN_LENGTH = 4
REGISTRATION_NUMBER_MAX_LENGTH = 20

_FULL_NAME_PATTERN = re.compile(r"^[a-zA-ZÀ-ÿ\s'-]+$")
_REGISTRATION_NUMBER_PATTERN = re.compile(r"^[a-zA-Z0-9]+$")


def validate_full_name(value: str) -> None:
    """Accept 3-100 letters (accented included), spaces, apostrophes and hyphens."""

    name = (value or "").strip()
    if len(name) < FULL_NAME_MIN_LENGTH:
        raise ValidationError(
            _("Name must have at least %(min)d characters."),
            code="name_too_short",
            params={"min": FULL_NAME_MIN_LENGTH},
        )
    if len(name) > FULL_NAME_MAX_LENGTH:
        raise ValidationError(_("Name is too long."), code="name_too_long")
    if not _FULL_NAME_PATTERN.match(name):
        raise ValidationError(_("Name contains invalid characters."), code="name_invalid")


def validate_registration_number(value: str) -> None:
    """Accept 4-20 ASCII letters and digits."""

    number = (value or "").strip()
    if len(number) < REGISTRATION_NUMBER_MIN_LENGTH:
        raise ValidationError(
            _("Registration number must have at least %(min)d characters."),
            code="registration_too_short",
            params={"min": REGISTRATION_NUMBER_MIN_LENGTH},
        )
    if len(number) > REGISTRATION_NUMBER_MAX_LENGTH:
        raise ValidationError(_("Registration number is too long."), code="registration_too_long")
    if not _REGISTRATION_NUMBER_PATTERN.match(number):
        raise ValidationError(
            _("Registration number must contain only letters and digits."),
            code="registration_invalid",
        )


class PasswordStrengthValidator:
    """Require an uppercase letter, a lowercase letter and a digit."""

    def __init__(self, min_length: int = 8) -> None:
        self.min_length = min_length

    def validate(self, password: str, user=None) -> None:
        errors = []
        if len(password) < self.min_length:
            errors.append(
                ValidationError(
                    _("Password must have at least %(min)d characters."),
                    code="password_too_short",
                    params={"min": self.min_length},
                )
            )
        if not re.search(r"[A-Z]", password):
            errors.append(
                ValidationError(
                    _("Password must contain at least one uppercase letter."),
                    code="password_no_upper",
                )
            )
        if not re.search(r"[a-z]", password):
            errors.append(
                ValidationError(
                    _("Password must contain at least one lowercase letter."),
                    code="password_no_lower",
                )
            )
        if not re.search(r"[0-9]", password):
            errors.append(
                ValidationError(
                    _("Password must contain at least one digit."),
                    code="password_no_digit",
                )
            )
        if errors:
            raise ValidationError(errors)

    def get_help_text(self) -> str:
        return _(
            "Your password must have at least %(min)d characters, including an uppercase "
            "letter, a lowercase letter and a digit."
        ) % {"min": self.min_length}
