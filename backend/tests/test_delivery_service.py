"""
Delivery pricing tests.

Verifies:
- zero / invalid distances cost nothing
- any positive distance costs at least the 500 TZS floor
- fees never decrease as distance grows
- haversine distance is symmetric
- the service radius check
"""

import math

import pytest

from shopbot.services.delivery_service import (
    MIN_FEE_TZS,
    distance_from_office_km,
    fee_for_dar_distance,
    haversine_km,
    is_outside_service_radius,
    outside_dar_fee,
    round_to_step,
)


class TestDeliveryFee:

    def test_zero_distance_is_free(self):
        assert fee_for_dar_distance(0, 1000, 500) == 0

    @pytest.mark.parametrize("km", [-3, float("nan"), float("inf"), None, "abc"])
    def test_invalid_distance_treated_as_zero(self, km):
        assert fee_for_dar_distance(km, 1000, 500) == 0

    @pytest.mark.parametrize("km", [0.001, 0.1, 0.24, 0.5, 1, 7.3, 42])
    def test_positive_distance_has_floor(self, km):
        assert fee_for_dar_distance(km, 1000, 500) >= MIN_FEE_TZS

    def test_rounds_half_up_to_step(self):
        # 2.25 km * 1000 = 2250 -> 2500
        assert fee_for_dar_distance(2.25, 1000, 500) == 2500
        # 2.2 km * 1000 = 2200 -> 2000
        assert fee_for_dar_distance(2.2, 1000, 500) == 2000

    def test_no_rounding_when_step_not_positive(self):
        assert fee_for_dar_distance(3.5, 1000, 0) == 3500
        assert round_to_step(1234.0, -1) == 1234.0

    def test_monotonic_in_distance(self):
        distances = [i * 0.37 for i in range(0, 200)]
        fees = [fee_for_dar_distance(d, 1000, 500) for d in distances]
        assert all(a <= b for a, b in zip(fees, fees[1:]))

    def test_uses_app_config_by_default(self, app):
        app.config["DELIVERY_RATE_PER_KM"] = 2000.0
        try:
            assert fee_for_dar_distance(3) == 6000
        finally:
            app.config["DELIVERY_RATE_PER_KM"] = 1000.0


class TestDistance:

    def test_haversine_symmetric(self):
        a = (-6.8357, 39.2724)
        b = (-3.3869, 36.6830)
        assert math.isclose(haversine_km(*a, *b), haversine_km(*b, *a))

    def test_same_point_is_zero(self):
        assert haversine_km(-6.8, 39.2, -6.8, 39.2) == 0

    def test_known_distance_dar_to_arusha(self):
        km = haversine_km(-6.8357, 39.2724, -3.3869, 36.6830)
        assert 460 < km < 500

    def test_office_distance_from_config(self, app):
        assert distance_from_office_km(app.config["OFFICE_LAT"], app.config["OFFICE_LON"]) == 0


class TestServiceRadius:

    def test_unlimited_when_radius_not_positive(self):
        assert is_outside_service_radius(500, 0) is False
        assert is_outside_service_radius(500, -1) is False

    def test_outside_when_beyond_radius(self):
        assert is_outside_service_radius(12.5, 10) is True
        assert is_outside_service_radius(10, 10) is False

    def test_outside_dar_fee_from_config(self):
        assert outside_dar_fee() == 10_000
