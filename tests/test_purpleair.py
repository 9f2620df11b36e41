from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import DAY_START, FakeServices, make_settings
from models.records import Sensor
from services.purpleair import PurpleAirClient, PurpleAirResponseError

BOUNDING_BOX = [35.05, -111.45, 35.34, -111.85]


def _client(transport: httpx.AsyncBaseTransport) -> PurpleAirClient:
    return PurpleAirClient.from_settings(make_settings(), transport=transport)


def test_list_sensors_maps_rows_and_bbox_params(fake_services: FakeServices) -> None:
    sensors = asyncio.run(_client(fake_services.transport).list_sensors(BOUNDING_BOX, "Flagstaff"))

    assert sensors == [
        Sensor(101, "Sensor A", 35.20, -111.60, "Flagstaff"),
        Sensor(202, "Sensor B", 35.10, -111.70, "Flagstaff"),
    ]
    (request,) = fake_services.requests_to("/v1/sensors")
    params = request.url.params
    assert params["api_key"] == "pa-key"
    assert params["fields"] == "name,latitude,longitude"
    assert params["selat"] == "35.05"
    assert params["selng"] == "-111.45"
    assert params["nwlat"] == "35.34"
    assert params["nwlng"] == "-111.85"


def test_list_sensors_applies_limit(fake_services: FakeServices) -> None:
    sensors = asyncio.run(
        _client(fake_services.transport).list_sensors(BOUNDING_BOX, "Flagstaff", limit=1)
    )

    assert [sensor.sensor_index for sensor in sensors] == [101]


def test_list_sensors_without_data_rows_raises() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"error": "x"}))

    with pytest.raises(PurpleAirResponseError):
        asyncio.run(_client(transport).list_sensors(BOUNDING_BOX, "Flagstaff"))


def test_fetch_history_derives_aqi_from_pm10(fake_services: FakeServices) -> None:
    sensor = Sensor(101, "Sensor A", 35.20, -111.60, "Flagstaff")
    fake_services.history[101] = [
        [DAY_START, 30.0, 55, 5.2, 8.4],
        [DAY_START + 3600, 31.5, 54.5, 12.8, 40.0],
        [DAY_START + 7200, 33.0, 53.0, 60.0, 160.0],
        [DAY_START + 10800, 34.0, None, 2000.0, 2000.0],
    ]

    records = asyncio.run(_client(fake_services.transport).fetch_history(sensor, "2022-03-21", 60))

    assert [record.aqi for record in records] == [35, 112, 210, "-"]
    assert [record.temperature_f for record in records] == [
        "55 °F",
        "54.5 °F",
        "53 °F",
        "null °F",
    ]
    assert records[0].timestamp == "2022-03-21T00:00:00.000Z"
    assert records[1].to_item() == {
        "created_at": "2022-03-21T01:00:00.000Z",
        "Humidity": 31.5,
        "Temperature": "54.5 °F",
        "PM 2.5": 12.8,
        "PM 10.0": 40.0,
        "AQI": 112,
        "Location": "Flagstaff",
        "sensor_index": 101,
        "name": "Sensor A",
        "latitude": 35.20,
        "longitude": -111.60,
    }


def test_fetch_history_request_window_and_header(fake_services: FakeServices) -> None:
    sensor = Sensor(202, "Sensor B", 35.10, -111.70)

    asyncio.run(_client(fake_services.transport).fetch_history(sensor, "2022-03-21", 30))

    (request,) = fake_services.history_requests()
    assert request.url.path == "/v1/sensors/202/history"
    assert request.headers["X-API-Key"] == "pa-key"
    params = request.url.params
    assert params["fields"] == "temperature,humidity,pm2.5_cf_1,pm10.0_atm"
    assert params["start_timestamp"] == str(DAY_START)
    assert params["end_timestamp"] == str(DAY_START + 86400)
    assert params["average"] == "30"


def test_fetch_history_error_status_raises(fake_services: FakeServices) -> None:
    fake_services.failing_sensors.add(101)
    sensor = Sensor(101, "Sensor A", 35.20, -111.60)

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(_client(fake_services.transport).fetch_history(sensor, "2022-03-21", 60))
