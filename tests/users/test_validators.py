"""Tests for roster input validators."""

from __future__ import annotations

import pytest
from django.core.exceptions import ValidationError

from users.validators import (
    PasswordStrengthValidator,
    validate_full_name,
    validate_registration_number,
)


@pytest.mark.parametrize("name", ["Ana Souza", "José da Silva", "Mary-Ann O'Neil", "  Leo  "])
def test_valid_full_names(name):
    validate_full_name(name)


@pytest.mark.parametrize(
    "name, code",
    [
        ("Al", "name_too_short"),
        ("   ", "name_too_short"),
        ("A" * 101, "name_too_long"),
        ("R2D2 Unit", "name_invalid"),
        ("Robert; DROP", "name_invalid"),
    ],
)
def test_invalid_full_names(name, code):
    with pytest.raises(ValidationError) as excinfo:
        validate_full_name(name)
    assert excinfo.value.code == code


@pytest.mark.parametrize("number", ["2024001", "ABCD", "a1B2c3"])
def test_valid_registration_numbers(number):
    validate_registration_number(number)


@pytest.mark.parametrize(
    "number, code",
    [
        ("123", "registration_too_short"),
        ("1" * 21, "registration_too_long"),
        ("2024-001", "registration_invalid"),
        ("ÁBCD1", "registration_invalid"),
    ],
)
def test_invalid_registration_numbers(number, code):
    with pytest.raises(ValidationError) as excinfo:
        validate_registration_number(number)
    assert excinfo.value.code == code


class TestPasswordStrength:
    def test_strong_password(self):
        PasswordStrengthValidator().validate("Matricula2024")

    def test_collects_every_failure(self):
        with pytest.raises(ValidationError) as excinfo:
            PasswordStrengthValidator().validate("abc")
        codes = {error.code for error in excinfo.value.error_list}
        assert codes == {"password_too_short", "password_no_upper", "password_no_digit"}

    def test_custom_minimum_length(self):
        with pytest.raises(ValidationError):
            PasswordStrengthValidator(min_length=16).validate("Matricula2024")

    def test_help_text_mentions_length(self):
        assert "8" in PasswordStrengthValidator().get_help_text()
