"""Unit tests for challenge input validation."""

from __future__ import annotations

import math

import pytest

from meza.challenges.validator import CHECK_ORDER, validate_challenge_input, validate_location
from meza.errors import ValidationError
from tests.conftest import challenge_input


class TestValidChallengeInput:
    def test_reference_input_is_valid(self):
        valid = validate_challenge_input(challenge_input())
        assert valid.target_time == "07:00"
        assert valid.penalty_amount == 500
        assert valid.home_latitude == 35.68
        assert valid.target_longitude == 139.70
        assert valid.wake_up_location_lat is None

    def test_addresses_default_to_empty(self):
        data = challenge_input()
        del data["home_address"]
        data["target_address"] = None
        valid = validate_challenge_input(data)
        assert valid.home_address == ""
        assert valid.target_address == ""

    def test_numeric_strings_accepted(self):
        valid = validate_challenge_input(challenge_input(penalty_amount="1000", home_latitude="35.5"))
        assert valid.penalty_amount == 1000
        assert valid.home_latitude == 35.5

    def test_boundary_coordinates_accepted(self):
        valid = validate_challenge_input(challenge_input(home_latitude=-90, home_longitude=180))
        assert valid.home_latitude == -90.0
        assert valid.home_longitude == 180.0

    def test_optional_wake_up_location(self):
        valid = validate_challenge_input(challenge_input(wake_up_location_lat=35.0, wake_up_location_lng=139.0))
        assert (valid.wake_up_location_lat, valid.wake_up_location_lng) == (35.0, 139.0)

    def test_as_dict_matches_fields(self):
        fields = validate_challenge_input(challenge_input()).as_dict()
        assert fields["target_time"] == "07:00"
        assert set(CHECK_ORDER) <= set(fields)


class TestRejections:
    def _field(self, **overrides) -> tuple[str, str]:
        with pytest.raises(ValidationError) as exc_info:
            validate_challenge_input(challenge_input(**overrides))
        return exc_info.value.field, exc_info.value.reason

    def test_latitude_out_of_range(self):
        field, reason = self._field(home_latitude=200)
        assert field == "home_latitude"
        assert "between -90 and 90" in reason

    def test_longitude_out_of_range(self):
        assert self._field(target_longitude=-180.5)[0] == "target_longitude"

    def test_missing_target_time(self):
        assert self._field(target_time=None) == ("target_time", "is required")

    @pytest.mark.parametrize("bad", ["7am", "25:00", "07:00:00", 7])
    def test_malformed_target_time(self, bad):
        assert self._field(target_time=bad) == ("target_time", "must be HH:MM")

    @pytest.mark.parametrize(("bad", "reason"), [
        (0, "must be positive"),
        (-500, "must be positive"),
        (12.5, "must be an integer"),
        ("abc", "must be an integer"),
        (True, "must be an integer"),
    ])
    def test_bad_penalty(self, bad, reason):
        assert self._field(penalty_amount=bad) == ("penalty_amount", reason)

    def test_non_finite_coordinate(self):
        assert self._field(home_longitude=math.nan) == ("home_longitude", "must be a finite number")

    def test_non_numeric_coordinate(self):
        assert self._field(target_latitude="north") == ("target_latitude", "must be a number")

    def test_bool_coordinate(self):
        assert self._field(home_latitude=False) == ("home_latitude", "must be a number")

    def test_optional_field_still_range_checked(self):
        assert self._field(wake_up_location_lng=999)[0] == "wake_up_location_lng"

    def test_first_violation_in_check_order_wins(self):
        """Several bad fields: the earliest in CHECK_ORDER is reported."""
        field, _ = self._field(penalty_amount=-1, home_latitude=200, target_longitude=500)
        assert field == "penalty_amount"

    def test_missing_coordinate(self):
        data = challenge_input()
        del data["target_latitude"]
        with pytest.raises(ValidationError) as exc_info:
            validate_challenge_input(data)
        assert exc_info.value.field == "target_latitude"


class TestValidateLocation:
    def test_valid(self):
        assert tuple(validate_location("35.65", 139.7)) == (35.65, 139.7)

    def test_missing_longitude(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_location(35.65, None)
        assert exc_info.value.field == "longitude"

    def test_out_of_range_latitude(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_location(91, 0)
        assert exc_info.value.field == "latitude"
