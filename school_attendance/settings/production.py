"""Production settings: PostgreSQL, HTTPS-only cookies and Sentry."""

from __future__ import annotations

from .base import *  # noqa: F401,F403
from .base import DATABASES, _get_bool_env, build_postgres_database_config, configure_environment
from .sentry import initialize_sentry

DEBUG = False

# SQLite is only the development default; fall back to the DB_* variables.
if DATABASES["default"].get("ENGINE") == "django.db.backends.sqlite3":
    DATABASES["default"] = build_postgres_database_config()


configure_environment(
    secure_defaults=True,
    default_allowed_hosts=(),
    require_allowed_hosts=True,
)

# configure_environment rebinds names in the base module; pick the results up here.
from .base import (  # noqa: E402
    ALLOWED_HOSTS,
    CSRF_COOKIE_SECURE,
    SECURE_HSTS_SECONDS,
    SECURE_SSL_REDIRECT,
    SESSION_COOKIE_SECURE,
)

# Cameras are only exposed to HTTPS origins once deployed.
CHECKIN_TRUSTED_INSECURE_HOSTS: tuple[str, ...] = ()

if _get_bool_env("DJANGO_BEHIND_TLS_PROXY"):
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")


initialize_sentry()
