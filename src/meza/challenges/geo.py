"""Great-circle distance between two coordinates."""

from __future__ import annotations

import math
from typing import NamedTuple

# IUGG mean Earth radius.
EARTH_MEAN_RADIUS_M = 6_371_008.8


class Coordinate(NamedTuple):
    latitude: float
    longitude: float


def distance(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance in meters.

    Raises:
        ValueError: If any component is NaN or infinite.
    """
    for value in (*a, *b):
        if not math.isfinite(value):
            msg = f"Coordinate components must be finite, got {value!r}"
            raise ValueError(msg)

    lat1, lon1 = math.radians(a.latitude), math.radians(a.longitude)
    lat2, lon2 = math.radians(b.latitude), math.radians(b.longitude)
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Rounding can push h marginally past 1 for antipodal points.
    h = min(1.0, h)
    return 2 * EARTH_MEAN_RADIUS_M * math.asin(math.sqrt(h))
