"""Shared fixtures: canned upstream services behind an ``httpx.MockTransport``."""

from __future__ import annotations

import re
from datetime import date
from typing import Any, Dict, List, Set

import httpx
import pytest

from settings import Settings

# 2022-03-21T00:00:00Z
DAY_START = 1647820800

_HISTORY_PATH = re.compile(r"^/v1/sensors/(?P<index>\d+)/history$")


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = dict(
        geonames_username="codap",
        geonames_search_url="https://secure.geonames.org/search",
        geonames_nearby_url="https://secure.geonames.org/findNearbyPlaceNameJSON",
        geoapify_api_key="geo-key",
        geoapify_base_url="https://api.geoapify.com/v1/geocode",
        purpleair_api_key="pa-key",
        purpleair_base_url="https://api.purpleair.com/v1",
        http_timeout=5.0,
        autocomplete_max_rows=5,
        autocomplete_min_length=3,
        autocomplete_debounce_ms=20,
        default_radius_miles=10.0,
        pipeline_concurrency=1,
        fetch_workers=1,
        support_email="support@example.org",
        log_level="INFO",
    )
    values.update(overrides)
    return Settings(**values)


def history_rows(offset: float = 0.0) -> List[List[Any]]:
    return [
        [DAY_START, 30.0, 55, 5.2 + offset, 8.4],
        [DAY_START + 3600, 31.5, 54.5, 12.8 + offset, 40.0],
        [DAY_START + 7200, 33.0, 53, 60.0 + offset, 160.0],
    ]


class FakeServices:
    """Routes requests to canned GeoNames, Geoapify and PurpleAir payloads."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.places: List[Dict[str, Any]] = [
            {"name": "Flagstaff", "adminCode1": "AZ", "lat": "35.19807", "lng": "-111.65127"},
            {"name": "Flagler", "adminCode1": "CO", "lat": "39.29305", "lng": "-103.06660"},
            {"name": "Flagtown", "adminCode1": "NJ", "lat": "40.51899", "lng": "-74.68766"},
        ]
        self.sensors: List[List[Any]] = [
            [101, "Sensor A", 35.20, -111.60],
            [202, "Sensor B", 35.10, -111.70],
        ]
        self.history: Dict[int, List[List[Any]]] = {}
        self.failing_sensors: Set[int] = set()
        self.sensors_status = 200
        self.geocode_results: List[Dict[str, Any]] = [
            {
                "city": "Flagstaff",
                "state_code": "AZ",
                "postcode": None,
                "lat": 35.1987522,
                "lon": -111.6518229,
            }
        ]
        self.reverse_postcode: Any = "86001"

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def requests_to(self, path: str) -> List[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]

    def history_requests(self) -> List[httpx.Request]:
        return [request for request in self.requests if _HISTORY_PATH.match(request.url.path)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        path = request.url.path
        params = request.url.params

        if host == "secure.geonames.org" and path == "/search":
            prefix = params.get("name_startsWith", "")
            matches = [place for place in self.places if place["name"].startswith(prefix)]
            matches = matches[: int(params.get("maxRows", "5"))]
            return httpx.Response(200, json={"totalResultsCount": len(matches), "geonames": matches})

        if host == "secure.geonames.org" and path == "/findNearbyPlaceNameJSON":
            return httpx.Response(200, json={"geonames": self.places[:1]})

        if host == "api.geoapify.com" and path.endswith("/autocomplete"):
            return httpx.Response(200, json={"results": self.geocode_results})

        if host == "api.geoapify.com" and path.endswith("/reverse"):
            if isinstance(self.reverse_postcode, Exception):
                raise self.reverse_postcode
            return httpx.Response(
                200, json={"features": [{"properties": {"postcode": self.reverse_postcode}}]}
            )

        if host == "api.purpleair.com" and path == "/v1/sensors":
            if self.sensors_status != 200:
                return httpx.Response(self.sensors_status, json={"error": "ApiKeyRestrictedError"})
            return httpx.Response(200, json={"fields": ["sensor_index", "name"], "data": self.sensors})

        match = _HISTORY_PATH.match(path) if host == "api.purpleair.com" else None
        if match:
            index = int(match.group("index"))
            if index in self.failing_sensors:
                return httpx.Response(500, json={"error": "InternalError"})
            rows = self.history.get(index, history_rows(offset=index / 1000))
            return httpx.Response(200, json={"sensor_index": index, "data": rows})

        return httpx.Response(404, json={"error": "NotFound"})


@pytest.fixture()
def fake_services() -> FakeServices:
    return FakeServices()


@pytest.fixture()
def today() -> date:
    return date(2022, 3, 21)
