"""Regression coverage for development encryption key handling."""

from __future__ import annotations

import importlib
import json
import sys

import pytest
from cryptography.fernet import Fernet
from django.core.exceptions import ImproperlyConfigured


def _reload_base_settings(monkeypatch):
    for module in [
        "school_attendance.settings.base",
        "school_attendance.settings",
    ]:
        monkeypatch.delitem(sys.modules, module, raising=False)
    return importlib.import_module("school_attendance.settings.base")


@pytest.fixture(autouse=True)
def _reset_environment(monkeypatch):
    """Ensure encryption-specific environment variables do not leak between tests."""

    monkeypatch.delenv("FACE_DATA_ENCRYPTION_KEY", raising=False)
    monkeypatch.setenv("DJANGO_DEBUG", "1")
    yield


def test_dev_key_is_persisted_and_reusable(tmp_path, monkeypatch):
    cache_path = tmp_path / "dev_keys.json"
    monkeypatch.setenv("DEV_ENCRYPTION_KEY_FILE", str(cache_path))
    monkeypatch.setenv("LOCAL_ENV_PATH", str(tmp_path / ".env"))

    settings_base = _reload_base_settings(monkeypatch)
    first_face_key = settings_base.FACE_DATA_ENCRYPTION_KEY
    face_payload = Fernet(first_face_key).encrypt(b"face-bytes")

    assert cache_path.exists()
    cache = json.loads(cache_path.read_text())
    assert cache["FACE_DATA_ENCRYPTION_KEY"] == first_face_key.decode()

    settings_base = _reload_base_settings(monkeypatch)

    assert settings_base.FACE_DATA_ENCRYPTION_KEY == first_face_key
    assert Fernet(settings_base.FACE_DATA_ENCRYPTION_KEY).decrypt(face_payload) == b"face-bytes"


def test_dotenv_value_is_respected(tmp_path, monkeypatch):
    cache_path = tmp_path / "dev_keys.json"
    dotenv_path = tmp_path / ".env"
    face_key = Fernet.generate_key()
    dotenv_path.write_text(f"DJANGO_DEBUG=1\nFACE_DATA_ENCRYPTION_KEY='{face_key.decode()}'\n")

    monkeypatch.setenv("DEV_ENCRYPTION_KEY_FILE", str(cache_path))
    monkeypatch.setenv("LOCAL_ENV_PATH", str(dotenv_path))

    settings_base = _reload_base_settings(monkeypatch)

    assert settings_base.FACE_DATA_ENCRYPTION_KEY == face_key
    assert not cache_path.exists()


def test_environment_key_must_be_valid(tmp_path, monkeypatch):
    monkeypatch.setenv("LOCAL_ENV_PATH", str(tmp_path / ".env"))
    monkeypatch.setenv("FACE_DATA_ENCRYPTION_KEY", "not-a-fernet-key")
    with pytest.raises(ImproperlyConfigured):
        _reload_base_settings(monkeypatch)
