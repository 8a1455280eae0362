"""Elapsed-time and distance proximity scores (0-100).

Both scores are pure and clamped to [0, 100].
"""
from __future__ import annotations

from datetime import datetime
from math import atan2, cos, radians, sin, sqrt
from typing import Optional

from reunite.models.reports import GeoPoint, ensure_utc

EARTH_RADIUS_M = 6_371_000.0

NEAR_DISTANCE_M = 200.0
FAR_DISTANCE_M = 4000.0
NEUTRAL_DISTANCE_SCORE = 50.0

# found before lost: reporting delay on the lost side
MAX_DELAY_BEFORE_LOST_H = 12.0
# found after lost
MAX_HOURS_AFTER_LOST = 168.0


def clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return min(max(value, lo), hi)


def distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance (haversine, spherical earth)."""
    lat1, lon1 = radians(a.latitude), radians(a.longitude)
    lat2, lon2 = radians(b.latitude), radians(b.longitude)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    return EARTH_RADIUS_M * 2 * atan2(sqrt(h), sqrt(1 - h))


def distance_score(lost_point: Optional[GeoPoint], found_point: Optional[GeoPoint]) -> float:
    if lost_point is None or found_point is None:
        return NEUTRAL_DISTANCE_SCORE
    d = distance_meters(lost_point, found_point)
    if d <= NEAR_DISTANCE_M:
        score = 100.0
    elif d <= FAR_DISTANCE_M:
        score = 100.0 - (d - NEAR_DISTANCE_M) / (FAR_DISTANCE_M - NEAR_DISTANCE_M) * 100.0
    else:
        score = 0.0
    return clamp(score)


def hours_between(lost_ts: datetime, found_ts: datetime) -> float:
    """found - lost, in hours (negative when the found event is earlier)."""
    return (ensure_utc(found_ts) - ensure_utc(lost_ts)).total_seconds() / 3600.0


def time_score(lost_ts: datetime, found_ts: datetime) -> float:
    delta = hours_between(lost_ts, found_ts)
    if delta < 0:
        window = MAX_DELAY_BEFORE_LOST_H
        delta = -delta
    else:
        window = MAX_HOURS_AFTER_LOST
    if delta >= window:
        return 0.0
    return clamp(100.0 - delta / window * 100.0)
