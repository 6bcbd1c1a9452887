"""Sentry configuration helpers used by production deployments."""

from __future__ import annotations

import logging
import os
from collections.abc import MutableMapping
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.django import DjangoIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from .base import _get_bool_env, _get_float_env

__all__ = ["before_send", "initialize_sentry"]

FILTERED = "[Filtered]"

# Credentials, face images and positions never leave the deployment.
_SCRUBBED_FIELDS = {
    "headers": frozenset({"authorization", "cookie", "set-cookie"}),
    "data": frozenset({"image", "latitude", "longitude"}),
}


def _filter_fields(section: MutableMapping[str, Any], names: frozenset[str]) -> None:
    for name in names.intersection(section):
        section[name] = FILTERED


def before_send(event: dict[str, Any], _hint: object | None) -> dict[str, Any] | None:
    request = event.get("request")
    if isinstance(request, dict):
        for key, names in _SCRUBBED_FIELDS.items():
            section = request.get(key)
            if isinstance(section, MutableMapping):
                _filter_fields(section, names)
    if not _get_bool_env("SENTRY_SEND_DEFAULT_PII"):
        event.pop("user", None)
    return event


def initialize_sentry() -> None:
    """Initialise the Sentry SDK when ``SENTRY_DSN`` is set; otherwise do nothing."""

    dsn = os.environ.get("SENTRY_DSN")
    if not dsn:
        return

    sentry_sdk.init(
        dsn=dsn,
        environment=os.environ.get("SENTRY_ENVIRONMENT", "production"),
        release=os.environ.get("SENTRY_RELEASE"),
        integrations=[
            DjangoIntegration(transaction_style="url"),
            LoggingIntegration(level=None, event_level=logging.ERROR),
        ],
        traces_sample_rate=_get_float_env(
            "SENTRY_TRACES_SAMPLE_RATE", 0.0, minimum=0.0, maximum=1.0
        ),
        send_default_pii=_get_bool_env("SENTRY_SEND_DEFAULT_PII"),
        before_send=before_send,
    )
