# Overview: Service-layer operations for delivery pricing; pure functions plus config lookups.

"""
Delivery Fee Calculator

Dar es Salaam deliveries are priced by straight-line distance from the
office: distance x rate, rounded to a step, with a 500 TZS floor.
Deliveries outside Dar use a flat fee.

All functions are pure when their optional parameters are passed; when
omitted they fall back to the Flask app config.
"""

from __future__ import annotations

import math

from flask import current_app

EARTH_RADIUS_KM = 6371.0
MIN_FEE_TZS = 500

DEFAULT_RATE_PER_KM = 1000.0
DEFAULT_ROUND_TO = 500


def _config(key: str, default):
    try:
        return current_app.config.get(key, default)
    except RuntimeError:
        # Outside an application context
        return default


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in km between two WGS84 points."""
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dphi = p2 - p1
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def distance_from_office_km(lat: float, lon: float) -> float:
    office_lat = _config("OFFICE_LAT", -6.8357)
    office_lon = _config("OFFICE_LON", 39.2724)
    return haversine_km(office_lat, office_lon, lat, lon)


def round_to_step(value: float, step: float) -> float:
    """Half-up rounding to the nearest multiple of step; step <= 0 disables rounding."""
    if not step or step <= 0:
        return value
    return math.floor(value / step + 0.5) * step


def fee_for_dar_distance(
    km: float,
    rate_per_km: float | None = None,
    round_to: float | None = None,
) -> int:
    """
    Delivery fee in TZS for a Dar es Salaam distance.

    - non-finite or negative distance is treated as 0
    - 0 km costs 0
    - otherwise max(500, round(km * rate, step))
    """
    if rate_per_km is None:
        rate_per_km = _config("DELIVERY_RATE_PER_KM", DEFAULT_RATE_PER_KM)
    if round_to is None:
        round_to = _config("DELIVERY_ROUND_TO", DEFAULT_ROUND_TO)

    try:
        d = float(km)
    except (TypeError, ValueError):
        d = 0.0
    if not math.isfinite(d) or d < 0:
        d = 0.0
    if d == 0:
        return 0

    rounded = round_to_step(d * rate_per_km, round_to)
    return int(max(MIN_FEE_TZS, rounded))


def is_outside_service_radius(km: float, radius_km: float | None = None) -> bool:
    """True when km exceeds the configured radius; radius <= 0 means unlimited."""
    if radius_km is None:
        radius_km = _config("SERVICE_RADIUS_KM", 0.0)
    if not radius_km or radius_km <= 0:
        return False
    return km > radius_km


def outside_dar_fee() -> int:
    return int(_config("OUTSIDE_DAR_FEE_TZS", 10_000))
