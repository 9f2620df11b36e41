"""Per-session form state for a location search and data fetch."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from typing import List, Optional

DEFAULT_RADIUS_MILES = 10.0


@dataclass
class SessionState:
    """Mutable session context, owned by whoever created it and passed explicitly.

    A latitude/longitude pair of exactly (0, 0) means "no location selected".
    A real place on the equator at the prime meridian is therefore
    indistinguishable from an unset location.
    """

    latitude: float = 0.0
    longitude: float = 0.0
    city: str = ""
    region: str = ""
    postal_code: str = ""
    bounding_box: List[float] = field(default_factory=list)
    radius_miles: float = DEFAULT_RADIUS_MILES
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    averaging_minutes: int = 0
    sensor_limit: int = 0

    @classmethod
    def default(cls, radius_miles: float = DEFAULT_RADIUS_MILES) -> "SessionState":
        return cls(radius_miles=radius_miles)

    def has_location(self) -> bool:
        return bool(self.city) and not (self.latitude == 0.0 and self.longitude == 0.0)

    def location_label(self) -> str:
        return self.city

    def apply_location(
        self,
        *,
        city: str,
        region: str,
        postal_code: str,
        latitude: float,
        longitude: float,
        bounding_box: List[float],
    ) -> None:
        self.city = city
        self.region = region
        self.postal_code = postal_code
        self.latitude = latitude
        self.longitude = longitude
        self.bounding_box = list(bounding_box)

    def set_radius(self, radius_miles: float, bounding_box: List[float]) -> None:
        self.radius_miles = radius_miles
        self.bounding_box = list(bounding_box)

    def clear_location(self) -> None:
        self.city = ""
        self.region = ""
        self.postal_code = ""
        self.latitude = 0.0
        self.longitude = 0.0

    def reset(self, today: date, radius_miles: float = DEFAULT_RADIUS_MILES) -> None:
        """Return every field to the default record, then default both dates to today.

        The date inputs are shown pre-filled with today after a reset, so the
        stored dates match them instead of staying empty until the next edit.
        """
        defaults = SessionState.default(radius_miles)
        for name in self.__dataclass_fields__:
            setattr(self, name, getattr(defaults, name))
        self.start_date = today
        self.end_date = today

    def snapshot(self) -> "SessionState":
        return replace(self, bounding_box=list(self.bounding_box))
