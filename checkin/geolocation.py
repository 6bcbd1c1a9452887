"""Device geolocation providers and the bounded position request."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Protocol

from .config import get_geolocation_timeout
from .errors import LocationError, LocationErrorCode
from .geo import Coordinates

logger = logging.getLogger(__name__)


class GeolocationProvider(Protocol):
    def current_position(self) -> Coordinates:
        """Return the device position or raise :class:`LocationError`."""


@dataclass(frozen=True)
class FixedGeolocation:
    """A kiosk installed at a known position."""

    coordinates: Coordinates

    def current_position(self) -> Coordinates:
        return self.coordinates


@dataclass(frozen=True)
class ReportedGeolocation:
    """What a browser reported alongside a check-in request.

    Either ``coordinates`` or ``error_code`` is set; a request that carried
    neither is treated as an unavailable position.
    """

    coordinates: Optional[Coordinates] = None
    error_code: Optional[LocationErrorCode] = None
    detail: str = ""

    def current_position(self) -> Coordinates:
        if self.error_code is not None:
            raise LocationError(self.error_code, self.detail)
        if self.coordinates is None:
            raise LocationError(LocationErrorCode.UNAVAILABLE, "no position was reported")
        return self.coordinates


class _PositionRequest(threading.Thread):
    """One fire-once position request on its own daemon thread.

    A request that outlives its timeout is abandoned; it never holds up a
    later request.
    """

    def __init__(self, provider: GeolocationProvider) -> None:
        super().__init__(name="geolocation", daemon=True)
        self.provider = provider
        self.position: Optional[Coordinates] = None
        self.error: Optional[Exception] = None

    def run(self) -> None:
        try:
            self.position = self.provider.current_position()
        except Exception as exc:
            # Re-raised on the caller's thread by acquire_position.
            self.error = exc


def acquire_position(
    provider: GeolocationProvider, timeout: Optional[float] = None
) -> Coordinates:
    """Ask ``provider`` for one position, giving up after ``timeout`` seconds.

    The caller is never blocked beyond the timeout; a late answer is
    discarded so a fresh attempt can start straight away.
    """

    limit = get_geolocation_timeout() if timeout is None else timeout
    request = _PositionRequest(provider)
    request.start()
    request.join(limit)
    if request.is_alive():
        logger.warning(
            "Geolocation request timed out after %.1fs",
            limit,
            extra={"event": "geolocation", "status": "timeout"},
        )
        raise LocationError(LocationErrorCode.TIMEOUT, f"no position after {limit:.1f}s")

    if isinstance(request.error, LocationError):
        logger.info(
            "Geolocation request failed: %s",
            request.error.code.value,
            extra={"event": "geolocation", "status": request.error.code.value},
        )
        raise request.error
    if isinstance(request.error, ValueError):
        # Coordinates outside the valid range are not a usable position.
        raise LocationError(LocationErrorCode.UNAVAILABLE, str(request.error)) from request.error
    if request.error is not None:
        raise request.error
    return request.position


__all__ = [
    "FixedGeolocation",
    "GeolocationProvider",
    "ReportedGeolocation",
    "acquire_position",
]
