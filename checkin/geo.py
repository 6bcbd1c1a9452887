"""Great-circle distance and coordinate validation."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

EARTH_RADIUS_METERS = 6_371_000.0


def _check_coordinate(latitude: float, longitude: float) -> None:
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        raise ValueError(f"Coordinates must be finite, got ({latitude!r}, {longitude!r})")
    if not -90.0 <= latitude <= 90.0:
        raise ValueError(f"Latitude {latitude!r} is outside [-90, 90]")
    if not -180.0 <= longitude <= 180.0:
        raise ValueError(f"Longitude {longitude!r} is outside [-180, 180]")


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the haversine distance in metres between two points in degrees.

    Raises ``ValueError`` for non-finite or out-of-range input; nothing is clamped.
    """

    _check_coordinate(lat1, lon1)
    _check_coordinate(lat2, lon2)

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    # Rounding can push ``a`` a hair above 1 for antipodal points.
    a = min(1.0, a)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


@dataclass(frozen=True)
class Coordinates:
    """A validated (latitude, longitude) pair with optional accuracy in metres."""

    latitude: float
    longitude: float
    accuracy: Optional[float] = None

    def __post_init__(self) -> None:
        _check_coordinate(self.latitude, self.longitude)
        if self.accuracy is not None and not (
            math.isfinite(self.accuracy) and self.accuracy >= 0
        ):
            raise ValueError(f"Accuracy must be a non-negative finite number, got {self.accuracy!r}")

    def distance_to(self, other: "Coordinates") -> float:
        return distance_meters(self.latitude, self.longitude, other.latitude, other.longitude)


__all__ = ["EARTH_RADIUS_METERS", "Coordinates", "distance_meters"]
