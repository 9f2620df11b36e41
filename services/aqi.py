"""Particulate matter to Air Quality Index conversion."""

from __future__ import annotations

import math
from numbers import Real
from typing import Optional

from models.records import AQIValue

UNAVAILABLE = "-"
MAX_VALID_PM = 1000

# (lower PM threshold, I_high, I_low, BP_high, BP_low), checked top-down with ``pm > threshold``
_PM_SEGMENTS = (
    (350.5, 500, 401, 500.0, 350.5),
    (250.5, 400, 301, 350.4, 250.5),
    (150.5, 300, 201, 250.4, 150.5),
    (55.5, 200, 151, 150.4, 55.5),
    (35.5, 150, 101, 55.4, 35.5),
    (12.1, 100, 51, 35.4, 12.1),
)
_LOWEST_SEGMENT = (50, 0, 12.0, 0.0)

_DESCRIPTIONS = (
    (401, "Hazardous"),
    (301, "Hazardous"),
    (201, "Very Unhealthy"),
    (151, "Unhealthy"),
    (101, "Unhealthy for Sensitive Groups"),
    (51, "Moderate"),
    (0, "Good"),
)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _as_number(value: object) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Real):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def calc_aqi(cp: float, i_high: float, i_low: float, bp_high: float, bp_low: float) -> int:
    """Linear interpolation of a concentration inside one breakpoint segment."""
    return _round_half_up((i_high - i_low) / (bp_high - bp_low) * (cp - bp_low) + i_low)


def get_aqi_from_pm(pm: object) -> AQIValue:
    """Convert a PM concentration to an AQI value.

    Missing or non-numeric input and concentrations above 1000 yield ``"-"``.
    Negative concentrations are returned unchanged.
    """
    value = _as_number(pm)
    if value is None:
        return UNAVAILABLE
    if value < 0:
        return pm  # type: ignore[return-value]
    if value > MAX_VALID_PM:
        return UNAVAILABLE

    for threshold, i_high, i_low, bp_high, bp_low in _PM_SEGMENTS:
        if value > threshold:
            return calc_aqi(value, i_high, i_low, bp_high, bp_low)
    return calc_aqi(value, *_LOWEST_SEGMENT)


def get_aqi_description(aqi: object) -> Optional[str]:
    """Map an AQI value to its descriptive band, or ``None`` below zero."""
    value = _as_number(aqi)
    if value is None:
        return None
    for lower_bound, description in _DESCRIPTIONS:
        if value >= lower_bound:
            return description
    return None
