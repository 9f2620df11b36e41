"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Union

AQIValue = Union[int, float, str, None]


@dataclass(slots=True)
class PlaceCandidate:
    """A place suggested by a geocoding prefix search."""

    name: str
    latitude: float
    longitude: float


@dataclass(slots=True)
class Sensor:
    """A sensor returned by the sensor directory for a bounding box."""

    sensor_index: int
    name: str
    latitude: float
    longitude: float
    location: str = ""

    def to_item(self) -> Dict[str, Any]:
        return {
            "Location": self.location,
            "sensor_index": self.sensor_index,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


@dataclass(slots=True)
class MeasurementRecord:
    """One history row for a sensor, enriched with its AQI."""

    sensor: Sensor
    timestamp: str
    humidity: float | None
    temperature_f: str
    pm2_5: float | None
    pm10_0: float | None
    aqi: AQIValue

    def to_item(self) -> Dict[str, Any]:
        """Flatten into the attribute names declared by the dataset schema."""
        item: Dict[str, Any] = {
            "created_at": self.timestamp,
            "Humidity": self.humidity,
            "Temperature": self.temperature_f,
            "PM 2.5": self.pm2_5,
            "PM 10.0": self.pm10_0,
            "AQI": self.aqi,
        }
        item.update(self.sensor.to_item())
        return item
