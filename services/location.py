"""Location search and radius handling for a session."""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

import httpx

from models.records import PlaceCandidate
from models.session import DEFAULT_RADIUS_MILES, SessionState
from services.geo import bounds_for_radius_miles
from services.geocoding import GeoapifyClient, GeonamesClient

logger = logging.getLogger(__name__)

MISSING_SEARCH_TEXT = "Please enter city name to search for"
MISSING_LOCATION_FOR_RADIUS = (
    "Please fetch / search your desired location before moving forward"
)


class SessionValidationError(ValueError):
    """User input is incomplete; the message is meant to be shown as-is."""


class LocationNotFoundError(LookupError):
    """The geocoder had no match for the requested text or coordinate."""


def _split_place_name(name: str) -> tuple[str, str]:
    city, _, region = name.partition(",")
    return city.strip(), region.strip()


class LocationService:
    """Updates a session's location fields from geocoding results."""

    def __init__(
        self,
        geoapify: GeoapifyClient,
        geonames: GeonamesClient,
        default_radius_miles: float = DEFAULT_RADIUS_MILES,
    ) -> None:
        self.geoapify = geoapify
        self.geonames = geonames
        self.default_radius_miles = default_radius_miles

    async def search_location(self, session: SessionState, text: str) -> SessionState:
        """Forward-geocode free-form ``city, state`` text into the session."""
        query = (text or "").strip()
        if not query:
            raise SessionValidationError(MISSING_SEARCH_TEXT)

        logger.info("Searching location", extra={"query": query})
        place = await self.geoapify.forward(query)
        if place is None:
            raise LocationNotFoundError(f"No location found for {query!r}.")

        postcode = place.postcode
        try:
            reverse_postcode = await self.geoapify.reverse_postcode(place.latitude, place.longitude)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Reverse postcode lookup failed", extra={"reason": str(exc)})
        else:
            if reverse_postcode:
                postcode = reverse_postcode

        session.apply_location(
            city=place.city,
            region=place.state_code,
            postal_code=postcode,
            latitude=place.latitude,
            longitude=place.longitude,
            bounding_box=bounds_for_radius_miles(
                place.latitude, place.longitude, session.radius_miles
            ),
        )
        logger.info("Location updated", extra={"location": session.location_label()})
        return session

    def select_place(self, session: SessionState, place: PlaceCandidate) -> SessionState:
        """Apply a candidate picked from the autocomplete list."""
        city, region = _split_place_name(place.name)
        session.apply_location(
            city=city,
            region=region,
            postal_code="",
            latitude=place.latitude,
            longitude=place.longitude,
            bounding_box=bounds_for_radius_miles(
                place.latitude, place.longitude, session.radius_miles
            ),
        )
        logger.info("Location selected", extra={"location": session.location_label()})
        return session

    async def locate_coordinates(
        self, session: SessionState, latitude: float, longitude: float
    ) -> SessionState:
        """Name a coordinate with the nearest populated place and apply it."""
        place: Optional[PlaceCandidate] = await self.geonames.find_nearby_place(latitude, longitude)
        if place is None:
            raise LocationNotFoundError(f"No place found near {latitude}, {longitude}.")
        return self.select_place(
            session, PlaceCandidate(name=place.name, latitude=latitude, longitude=longitude)
        )

    def change_radius(self, session: SessionState, radius_miles: float) -> SessionState:
        # Either coordinate being zero counts as "no location" here.
        if session.latitude == 0.0 or session.longitude == 0.0:
            raise SessionValidationError(MISSING_LOCATION_FOR_RADIUS)
        session.set_radius(
            radius_miles,
            bounds_for_radius_miles(session.latitude, session.longitude, radius_miles),
        )
        logger.info("Radius changed", extra={"location": session.location_label()})
        return session

    def clear_location(self, session: SessionState) -> SessionState:
        session.clear_location()
        logger.info("Location cleared")
        return session

    def reset(self, session: SessionState, today: Optional[date] = None) -> SessionState:
        session.reset(today or date.today(), self.default_radius_miles)
        logger.info("Form has been reset")
        return session
