"""Clients for the geocoding services used to pick a search location."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from models.records import PlaceCandidate
from settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROWS = 5


@dataclass(slots=True)
class GeocodedPlace:
    """First forward-geocoding match for free-form city text."""

    city: str
    state_code: str
    postcode: str
    latitude: float
    longitude: float


class GeonamesClient:
    """GeoNames prefix search and nearby-place lookups.

    API documented at https://www.geonames.org/export/geonames-search.html
    """

    def __init__(
        self,
        username: str,
        search_url: str,
        nearby_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.username = username
        self.search_url = search_url
        self.nearby_url = nearby_url
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "GeonamesClient":
        return cls(
            username=settings.geonames_username,
            search_url=settings.geonames_search_url,
            nearby_url=settings.geonames_nearby_url,
            timeout=settings.http_timeout,
            transport=transport,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def search(self, prefix: str, max_rows: int | None = None) -> List[PlaceCandidate]:
        """Return US places whose name starts with ``prefix``, in server order."""
        params = {
            "username": self.username,
            "country": "US",
            "maxRows": max_rows or DEFAULT_MAX_ROWS,
            "lang": "en",
            "type": "json",
            "isNameRequired": "true",
            "name_startsWith": prefix,
        }
        async with self._client() as client:
            response = await client.get(self.search_url, params=params)
        if not response.is_success:
            logger.warning(
                "Place search returned an error status",
                extra={"query": prefix, "status": response.status_code},
            )
            return []

        try:
            payload = response.json()
        except ValueError:
            return []
        if not isinstance(payload, dict) or not payload.get("totalResultsCount"):
            return []

        places = payload.get("geonames")
        if not isinstance(places, list):
            return []

        candidates: List[PlaceCandidate] = []
        for place in places:
            if not isinstance(place, dict):
                continue
            try:
                candidates.append(
                    PlaceCandidate(
                        name=f"{place['name']}, {place.get('adminCode1', '')}",
                        latitude=float(place["lat"]),
                        longitude=float(place["lng"]),
                    )
                )
            except (KeyError, TypeError, ValueError):
                continue
        return candidates

    async def find_nearby_place(self, latitude: float, longitude: float) -> Optional[PlaceCandidate]:
        """Resolve a coordinate to the nearest populated place name."""
        params = {"lat": latitude, "lon": longitude, "username": self.username}
        async with self._client() as client:
            response = await client.get(self.nearby_url, params=params)
        response.raise_for_status()

        places = response.json().get("geonames") or []
        if not places:
            return None
        place = places[0]
        return PlaceCandidate(
            name=f"{place['name']}, {place.get('adminCode1', '')}",
            latitude=float(place.get("lat", latitude)),
            longitude=float(place.get("lng", longitude)),
        )


class GeoapifyClient:
    """Forward city geocoding and reverse postcode lookups keyed by a static API key."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "GeoapifyClient":
        return cls(
            api_key=settings.geoapify_api_key,
            base_url=settings.geoapify_base_url,
            timeout=settings.http_timeout,
            transport=transport,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def forward(self, text: str) -> Optional[GeocodedPlace]:
        params = {
            "apiKey": self.api_key,
            "text": text,
            "type": "city",
            "lang": "en",
            "filter": "countrycode:us",
            "format": "json",
        }
        async with self._client() as client:
            response = await client.get(f"{self.base_url}/autocomplete", params=params)
        response.raise_for_status()

        results: List[Dict[str, Any]] = response.json().get("results") or []
        if not results:
            return None
        result = results[0]
        return GeocodedPlace(
            city=result.get("city") or "",
            state_code=result.get("state_code") or "",
            postcode=str(result.get("postcode") or ""),
            latitude=float(result["lat"]),
            longitude=float(result["lon"]),
        )

    async def reverse_postcode(self, latitude: float, longitude: float) -> Optional[str]:
        params = {"lat": latitude, "lon": longitude, "apiKey": self.api_key}
        async with self._client() as client:
            response = await client.get(f"{self.base_url}/reverse", params=params)
        response.raise_for_status()

        features = response.json().get("features") or []
        if not features:
            return None
        postcode = (features[0].get("properties") or {}).get("postcode")
        return str(postcode) if postcode else None
