"""Challenge input validation.

Checks run in a fixed order and stop at the first violation, so the reported
field is deterministic for any given input.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

from meza.challenges.geo import Coordinate
from meza.challenges.time_utils import parse_target_time
from meza.errors import ValidationError

LATITUDE_RANGE = (-90.0, 90.0)
LONGITUDE_RANGE = (-180.0, 180.0)

# (field, (min, max), required)
COORDINATE_FIELDS: tuple[tuple[str, tuple[float, float], bool], ...] = (
    ("home_latitude", LATITUDE_RANGE, True),
    ("home_longitude", LONGITUDE_RANGE, True),
    ("target_latitude", LATITUDE_RANGE, True),
    ("target_longitude", LONGITUDE_RANGE, True),
    ("wake_up_location_lat", LATITUDE_RANGE, False),
    ("wake_up_location_lng", LONGITUDE_RANGE, False),
)

CHECK_ORDER: tuple[str, ...] = ("target_time", "penalty_amount", *(f for f, _, _ in COORDINATE_FIELDS))


@dataclass(frozen=True)
class ValidChallengeInput:
    target_time: str
    penalty_amount: int
    home_latitude: float
    home_longitude: float
    target_latitude: float
    target_longitude: float
    home_address: str = ""
    target_address: str = ""
    wake_up_location_lat: float | None = None
    wake_up_location_lng: float | None = None
    wake_up_location_address: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _coerce_float(field: str, value: Any) -> float:  # noqa: ANN401
    if isinstance(value, bool):
        raise ValidationError(field, "must be a number")
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            raise ValidationError(field, "must be a number") from None
    else:
        raise ValidationError(field, "must be a number")
    if not math.isfinite(number):
        raise ValidationError(field, "must be a finite number")
    return number


def _coerce_positive_int(field: str, value: Any) -> int:  # noqa: ANN401
    if isinstance(value, bool):
        raise ValidationError(field, "must be an integer")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        number = int(value.strip())
    else:
        raise ValidationError(field, "must be an integer")
    if number <= 0:
        raise ValidationError(field, "must be positive")
    return number


def _check_coordinate(field: str, value: Any, bounds: tuple[float, float]) -> float:  # noqa: ANN401
    number = _coerce_float(field, value)
    low, high = bounds
    if not low <= number <= high:
        raise ValidationError(field, f"must be between {low:g} and {high:g}")
    return number


def validate_challenge_input(data: Mapping[str, Any]) -> ValidChallengeInput:
    """Validate raw challenge fields.

    Raises:
        ValidationError: On the first violation, in ``CHECK_ORDER``.
    """
    target_time = data.get("target_time")
    if target_time is None or (isinstance(target_time, str) and not target_time.strip()):
        raise ValidationError("target_time", "is required")
    try:
        parsed = parse_target_time(target_time)
    except ValueError:
        raise ValidationError("target_time", "must be HH:MM") from None

    if data.get("penalty_amount") is None:
        raise ValidationError("penalty_amount", "is required")
    penalty_amount = _coerce_positive_int("penalty_amount", data["penalty_amount"])

    coordinates: dict[str, float | None] = {}
    for field, bounds, required in COORDINATE_FIELDS:
        value = data.get(field)
        if value is None:
            if required:
                raise ValidationError(field, "is required")
            coordinates[field] = None
            continue
        coordinates[field] = _check_coordinate(field, value, bounds)

    return ValidChallengeInput(
        target_time=parsed.strftime("%H:%M"),
        penalty_amount=penalty_amount,
        home_latitude=coordinates["home_latitude"],  # type: ignore[arg-type]
        home_longitude=coordinates["home_longitude"],  # type: ignore[arg-type]
        target_latitude=coordinates["target_latitude"],  # type: ignore[arg-type]
        target_longitude=coordinates["target_longitude"],  # type: ignore[arg-type]
        home_address=data.get("home_address") or "",
        target_address=data.get("target_address") or "",
        wake_up_location_lat=coordinates["wake_up_location_lat"],
        wake_up_location_lng=coordinates["wake_up_location_lng"],
        wake_up_location_address=data.get("wake_up_location_address"),
    )


def validate_location(latitude: Any, longitude: Any) -> Coordinate:  # noqa: ANN401
    """Validate a reported position (e.g. an arrival fix).

    Raises:
        ValidationError: On field ``latitude`` or ``longitude``.
    """
    if latitude is None:
        raise ValidationError("latitude", "is required")
    lat = _check_coordinate("latitude", latitude, LATITUDE_RANGE)
    if longitude is None:
        raise ValidationError("longitude", "is required")
    lng = _check_coordinate("longitude", longitude, LONGITUDE_RANGE)
    return Coordinate(lat, lng)
