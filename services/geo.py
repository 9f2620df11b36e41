"""Bounding box and calendar helpers used by location search and history queries."""

from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Tuple

MILES_TO_KMS = 1.60934
KM_PER_DEGREE_LATITUDE = 111.2


def get_bounds_from_lat_long(latitude: float, longitude: float, radius_km: float) -> List[float]:
    """Return ``[south_lat, east_lng, north_lat, west_lng]`` around a point.

    Flat-earth approximation: the latitude delta is ``radius / 111.2`` degrees and
    the longitude delta is ``radius * |cos(latitude)|`` degrees.
    """
    lat_change = radius_km / KM_PER_DEGREE_LATITUDE
    long_change = radius_km * abs(math.cos(math.radians(latitude)))
    return [
        latitude - lat_change,
        longitude + long_change,
        latitude + lat_change,
        longitude - long_change,
    ]


def bounds_for_radius_miles(latitude: float, longitude: float, radius_miles: float) -> List[float]:
    return get_bounds_from_lat_long(latitude, longitude, radius_miles * MILES_TO_KMS)


def get_days_array(start: date, end: date) -> List[str]:
    """ISO dates for every calendar day from ``start`` to ``end`` inclusive."""
    if isinstance(start, datetime):
        start = start.date()
    if isinstance(end, datetime):
        end = end.date()
    days: List[str] = []
    current = start
    while current <= end:
        days.append(current.isoformat())
        current += timedelta(days=1)
    return days


def day_window(day: str) -> Tuple[int, int]:
    """Unix seconds spanning ``00:00:00`` to ``24:00:00`` UTC of an ISO date."""
    start = datetime.combine(date.fromisoformat(day), time.min, tzinfo=timezone.utc)
    end = start + timedelta(days=1)
    return int(start.timestamp()), int(end.timestamp())


def epoch_to_iso(epoch_seconds: float) -> str:
    """Render Unix seconds as an ISO-8601 UTC string with milliseconds and ``Z``."""
    moment = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
