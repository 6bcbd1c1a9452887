"""
Django settings for the school attendance check-in service.

Students register a reference face and check in from inside the school's
geofence; teachers and admins read the attendance rolls. Every value that
differs between deployments is read from the environment.
"""

import json
import os
import sys
import warnings
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TypeVar

from django.core.exceptions import ImproperlyConfigured

import dj_database_url
from cryptography.fernet import Fernet

# `BASE_DIR` points to the repository root.
BASE_DIR = Path(__file__).resolve().parent.parent.parent
LOCAL_ENV_PATH = Path(os.environ.get("LOCAL_ENV_PATH", BASE_DIR / ".env"))
DEV_KEY_CACHE_PATH = Path(
    os.environ.get("DEV_ENCRYPTION_KEY_FILE", BASE_DIR / ".dev_encryption_keys.json")
)

_Number = TypeVar("_Number", int, float)


# --- Environment helpers ---


def _get_bool_env(var_name: str, default: bool = False) -> bool:
    """Return a boolean from an environment variable."""

    raw_value = os.environ.get(var_name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_number_env(
    var_name: str,
    default: _Number,
    cast: Callable[[str], _Number],
    *,
    minimum: _Number | None = None,
    maximum: _Number | None = None,
) -> _Number:
    """Return a bounded number from the environment, ``default`` when unset."""

    raw_value = os.environ.get(var_name)
    if raw_value is None:
        return default
    try:
        value = cast(raw_value)
    except ValueError as exc:
        raise ImproperlyConfigured(f"{var_name} must be a {cast.__name__}, got {raw_value!r}.") from exc
    if minimum is not None and value < minimum:
        raise ImproperlyConfigured(f"{var_name} must be >= {minimum}.")
    if maximum is not None and value > maximum:
        raise ImproperlyConfigured(f"{var_name} must be <= {maximum}.")
    return value


def _parse_int_env(var_name: str, default: int, *, minimum: int | None = None) -> int:
    return _get_number_env(var_name, default, int, minimum=minimum)


def _get_float_env(
    var_name: str,
    default: float,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float:
    return _get_number_env(var_name, default, float, minimum=minimum, maximum=maximum)


# Detect if we're running tests
TESTING = "test" in sys.argv or (len(sys.argv) > 0 and "pytest" in sys.argv[0])

DEFAULT_SECRET_KEY = "a-secure-default-key-for-development-only"

# Test runs keep debug off but still get generated development key material.
DEBUG = _get_bool_env("DJANGO_DEBUG", default=not TESTING)

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", DEFAULT_SECRET_KEY)
if SECRET_KEY == DEFAULT_SECRET_KEY and not DEBUG and not TESTING:
    raise ImproperlyConfigured(
        "DJANGO_SECRET_KEY must be set to a secure value when DJANGO_DEBUG is not enabled."
    )


# --- Face data encryption ---

FACE_KEY_SETTING = "FACE_DATA_ENCRYPTION_KEY"


def _validate_fernet_key(key: str | bytes) -> bytes:
    key_bytes = key.encode() if isinstance(key, str) else key
    try:
        Fernet(key_bytes)
    except (ValueError, TypeError) as exc:
        raise ImproperlyConfigured(
            f"{FACE_KEY_SETTING} must be a valid 32-byte base64-encoded Fernet key."
        ) from exc
    return key_bytes


def _read_dotenv(path: Path) -> dict[str, str]:
    """Parse the ``NAME=value`` lines of a local ``.env`` file."""

    try:
        lines = path.read_text().splitlines()
    except FileNotFoundError:
        return {}
    except OSError as exc:
        warnings.warn(f"Unable to read {path}: {exc}")
        return {}

    values: dict[str, str] = {}
    for raw_line in lines:
        name, separator, value = raw_line.strip().partition("=")
        if not separator or name.startswith("#"):
            continue
        values[name.strip()] = value.strip().strip("\"'")
    return values


def _read_key_cache() -> dict[str, str]:
    try:
        return json.loads(DEV_KEY_CACHE_PATH.read_text())
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as exc:
        warnings.warn(f"Ignoring invalid dev key cache file: {exc}")
        return {}


def _development_face_key() -> bytes:
    """Reuse the cached development key so stored descriptors survive restarts."""

    cache = _read_key_cache()
    cached = cache.get(FACE_KEY_SETTING)
    if cached:
        try:
            return _validate_fernet_key(cached)
        except ImproperlyConfigured:
            warnings.warn(f"Ignoring invalid cached {FACE_KEY_SETTING}; regenerating.")

    generated = Fernet.generate_key()
    cache[FACE_KEY_SETTING] = generated.decode()
    try:
        DEV_KEY_CACHE_PATH.write_text(json.dumps(cache, indent=2))
    except OSError as exc:
        warnings.warn(f"Unable to persist dev encryption key cache: {exc}")
    return generated


def _load_face_data_encryption_key() -> bytes:
    key = os.environ.get(FACE_KEY_SETTING)
    if not key and (DEBUG or TESTING):
        key = _read_dotenv(LOCAL_ENV_PATH).get(FACE_KEY_SETTING)
    if key:
        return _validate_fernet_key(key)
    if DEBUG or TESTING:
        return _development_face_key()
    raise ImproperlyConfigured(f"{FACE_KEY_SETTING} must be set outside development and tests.")


FACE_DATA_ENCRYPTION_KEY = _load_face_data_encryption_key()

LOCALHOST_ALIASES: tuple[str, ...] = ("localhost", "127.0.0.1", "[::1]")


def configure_environment(
    *,
    secure_defaults: bool,
    default_allowed_hosts: Sequence[str],
    require_allowed_hosts: bool,
) -> None:
    """Populate the host, HTTPS and database TLS settings for the active environment."""

    global ALLOWED_HOSTS
    global SECURE_SSL_REDIRECT
    global SECURE_HSTS_SECONDS
    global SESSION_COOKIE_SECURE
    global CSRF_COOKIE_SECURE

    hosts = [host.strip() for host in os.environ.get("DJANGO_ALLOWED_HOSTS", "").split(",")]
    ALLOWED_HOSTS = [host for host in hosts if host] or list(default_allowed_hosts)
    if require_allowed_hosts and not ALLOWED_HOSTS:
        raise ImproperlyConfigured(
            "DJANGO_ALLOWED_HOSTS must be provided (comma separated) when secure defaults are enforced."
        )

    SECURE_SSL_REDIRECT = _get_bool_env("DJANGO_SECURE_SSL_REDIRECT", secure_defaults)
    SECURE_HSTS_SECONDS = _parse_int_env(
        "DJANGO_SECURE_HSTS_SECONDS", 3600 if secure_defaults else 0, minimum=0
    )
    SESSION_COOKIE_SECURE = _get_bool_env("DJANGO_SESSION_COOKIE_SECURE", secure_defaults)
    CSRF_COOKIE_SECURE = _get_bool_env("DJANGO_CSRF_COOKIE_SECURE", secure_defaults)

    db_options = DATABASES["default"].setdefault("OPTIONS", {})
    if _get_bool_env("DATABASE_SSL_REQUIRE", secure_defaults):
        db_options["sslmode"] = os.environ.get("DATABASE_SSLMODE", "require")
    else:
        db_options.pop("sslmode", None)


# --- Application Configuration ---

INSTALLED_APPS = [
    # Custom applications for this project
    "users.apps.UsersConfig",
    "checkin.apps.CheckinConfig",
    # Third-party packages
    "rest_framework",
    "django_ratelimit",
    # Core Django applications
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "school_attendance.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "school_attendance.wsgi.application"


# --- Database Configuration ---

default_db_url = os.environ.get("DATABASE_URL", f"sqlite:///{(BASE_DIR / 'db.sqlite3').as_posix()}")

DATABASES = {
    "default": dj_database_url.parse(
        default_db_url,
        conn_max_age=_parse_int_env("DATABASE_CONN_MAX_AGE", 0, minimum=0),
    ),
}


def build_postgres_database_config() -> dict[str, object]:
    """Return a PostgreSQL configuration derived from discrete environment variables."""

    return {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.environ.get("DB_NAME", "school_attendance"),
        "USER": os.environ.get("DB_USER", "school_attendance"),
        "PASSWORD": os.environ.get("DB_PASSWORD", ""),
        "HOST": os.environ.get("DB_HOST", "localhost"),
        "PORT": os.environ.get("DB_PORT", "5432"),
        "CONN_MAX_AGE": _parse_int_env("DB_CONN_MAX_AGE", 600, minimum=0),
    }


configure_environment(
    secure_defaults=not (DEBUG or TESTING),
    default_allowed_hosts=LOCALHOST_ALIASES + ("testserver",) if TESTING else LOCALHOST_ALIASES,
    require_allowed_hosts=not (DEBUG or TESTING),
)


# --- Cache Configuration ---
# django-ratelimit counts requests in the default cache. Configure a shared
# backend (Redis/Memcached) for multi-process deployments.
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "school-attendance",
    }
}

SILENCED_SYSTEM_CHECKS = [
    "django_ratelimit.E003",  # LocMemCache not a shared cache
    "django_ratelimit.W001",  # LocMemCache not officially supported
]


# --- Password Validation ---

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "users.validators.PasswordStrengthValidator"},
]


# --- Internationalization ---
# The attendance date is the calendar day in TIME_ZONE; one check-in per
# profile per local day.

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.environ.get("DJANGO_TIME_ZONE", "America/Sao_Paulo")
USE_I18N = True
USE_TZ = True


# --- Static Files ---

STATIC_URL = "/static/"
STATIC_ROOT = Path(os.environ.get("DJANGO_STATIC_ROOT", BASE_DIR / "staticfiles"))

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# --- Logging ---

LOG_LEVEL = os.environ.get("DJANGO_LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "checkin": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "users": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}


# --- REST API ---

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
}


# --- Check-in pipeline ---

# Maximum Euclidean distance between a live descriptor and the stored
# reference for the face to be accepted. Lower values reject more impostors
# and more legitimate users photographed in poor lighting.
CHECKIN_FACE_MATCH_THRESHOLD = _get_float_env(
    "CHECKIN_FACE_MATCH_THRESHOLD",
    default=0.5,
    minimum=0.0,
)

CHECKIN_MODEL_NAME = os.environ.get("CHECKIN_MODEL_NAME", "Facenet")
CHECKIN_DETECTOR_BACKEND = os.environ.get("CHECKIN_DETECTOR_BACKEND", "opencv")

# Weights are loaded from the local directory first; the fallback home lets
# DeepFace download them when the local copy is missing or corrupt.
CHECKIN_MODEL_PRIMARY_HOME = Path(
    os.environ.get("CHECKIN_MODEL_PRIMARY_HOME", BASE_DIR / "models")
)
CHECKIN_MODEL_FALLBACK_HOME = os.environ.get("CHECKIN_MODEL_FALLBACK_HOME") or None

CHECKIN_CAMERA_INDEX = _parse_int_env("CHECKIN_CAMERA_INDEX", 0, minimum=0)
CHECKIN_PREFERRED_WIDTH = _parse_int_env("CHECKIN_PREFERRED_WIDTH", 1280, minimum=1)
CHECKIN_PREFERRED_HEIGHT = _parse_int_env("CHECKIN_PREFERRED_HEIGHT", 720, minimum=1)
CHECKIN_METADATA_TIMEOUT_SECONDS = _get_float_env(
    "CHECKIN_METADATA_TIMEOUT_SECONDS",
    default=3.0,
    minimum=0.0,
)
CHECKIN_GEOLOCATION_TIMEOUT_SECONDS = _get_float_env(
    "CHECKIN_GEOLOCATION_TIMEOUT_SECONDS",
    default=10.0,
    minimum=0.0,
)

# Requests from plain HTTP are only trusted from these hosts, mirroring the
# browser's secure-context rule for camera access.
CHECKIN_TRUSTED_INSECURE_HOSTS = ("localhost", "127.0.0.1")

RATELIMIT_USE_CACHE = "default"
CHECKIN_RATE_LIMIT = os.environ.get("CHECKIN_RATE_LIMIT", "10/m")
SIGNUP_RATE_LIMIT = os.environ.get("SIGNUP_RATE_LIMIT", "5/h")

CHECKIN_MODEL_LOAD_ALERT_SECONDS = _get_float_env(
    "CHECKIN_MODEL_LOAD_ALERT_SECONDS",
    default=4.0,
    minimum=0.0,
)
CHECKIN_CAMERA_START_ALERT_SECONDS = _get_float_env(
    "CHECKIN_CAMERA_START_ALERT_SECONDS",
    default=3.0,
    minimum=0.0,
)
CHECKIN_HEALTH_ALERT_HISTORY = _parse_int_env(
    "CHECKIN_HEALTH_ALERT_HISTORY",
    default=50,
    minimum=1,
)

CHECKIN_MAX_UPLOAD_SIZE = _parse_int_env(
    "CHECKIN_MAX_UPLOAD_SIZE",
    default=5 * 1024 * 1024,
    minimum=1024,
)
