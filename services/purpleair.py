"""Client for the PurpleAir sensor directory and history endpoints."""

from __future__ import annotations

import logging
from typing import Any, List, Sequence

import httpx

from models.records import MeasurementRecord, Sensor
from services.aqi import get_aqi_from_pm
from services.geo import day_window, epoch_to_iso
from settings import Settings

logger = logging.getLogger(__name__)

SENSOR_FIELDS = "name,latitude,longitude"
HISTORY_FIELDS = "temperature,humidity,pm2.5_cf_1,pm10.0_atm"


class PurpleAirResponseError(ValueError):
    """Raised when a response body does not carry the expected ``data`` rows."""


def _format_temperature(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    elif value is None:
        value = "null"
    return f"{value} °F"


def _data_rows(payload: Any, what: str) -> List[Sequence[Any]]:
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
        raise PurpleAirResponseError(f"Unexpected {what} response: missing 'data' rows.")
    return payload["data"]


class PurpleAirClient:

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
    ) -> "PurpleAirClient":
        return cls(
            api_key=settings.purpleair_api_key,
            base_url=settings.purpleair_base_url,
            timeout=settings.http_timeout,
            transport=transport,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def list_sensors(
        self, bounding_box: Sequence[float], location: str, limit: int = 0
    ) -> List[Sensor]:
        """Sensors inside ``[south_lat, east_lng, north_lat, west_lng]``.

        ``limit`` of 0 keeps every row; otherwise only the first ``limit`` rows.
        """
        selat, selng, nwlat, nwlng = bounding_box
        params = {
            "api_key": self.api_key,
            "fields": SENSOR_FIELDS,
            "selat": selat,
            "selng": selng,
            "nwlat": nwlat,
            "nwlng": nwlng,
        }
        async with self._client() as client:
            response = await client.get(f"{self.base_url}/sensors", params=params)
        response.raise_for_status()

        sensors: List[Sensor] = []
        for row in _data_rows(response.json(), "sensor directory"):
            sensors.append(
                Sensor(
                    sensor_index=int(row[0]),
                    name=row[1],
                    latitude=row[2],
                    longitude=row[3],
                    location=location,
                )
            )
            if limit > 0 and len(sensors) >= limit:
                break
        return sensors

    async def fetch_history(
        self, sensor: Sensor, day: str, average_minutes: int
    ) -> List[MeasurementRecord]:
        """History rows for one sensor over one UTC day, AQI derived from PM10.0."""
        start_timestamp, end_timestamp = day_window(day)
        params = {
            "fields": HISTORY_FIELDS,
            "start_timestamp": start_timestamp,
            "end_timestamp": end_timestamp,
            "average": average_minutes,
        }
        async with self._client() as client:
            response = await client.get(
                f"{self.base_url}/sensors/{sensor.sensor_index}/history",
                params=params,
                headers={"X-API-Key": self.api_key},
            )
        response.raise_for_status()

        records: List[MeasurementRecord] = []
        for row in _data_rows(response.json(), "sensor history"):
            epoch, humidity, temperature, pm2_5, pm10_0 = row[:5]
            records.append(
                MeasurementRecord(
                    sensor=sensor,
                    timestamp=epoch_to_iso(epoch),
                    humidity=humidity,
                    temperature_f=_format_temperature(temperature),
                    pm2_5=pm2_5,
                    pm10_0=pm10_0,
                    aqi=get_aqi_from_pm(pm10_0),
                )
            )
        logger.debug(
            "Fetched sensor history",
            extra={"sensor_index": sensor.sensor_index, "day": day, "record_count": len(records)},
        )
        return records
