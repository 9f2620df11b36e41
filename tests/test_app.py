import time
import uuid
from datetime import date
from typing import Iterator, List

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.main import create_app
from conftest import FakeServices, make_settings
from services.pipeline import MISSING_AVERAGING, MISSING_LOCATION
from services.plugin import PluginService, build_default_plugin, build_plugin


@pytest.fixture
def api_client(fake_services: FakeServices, monkeypatch) -> Iterator[TestClient]:
    plugins: List[PluginService] = []

    def build_test_plugin() -> PluginService:
        if not plugins:
            plugins.append(
                build_plugin(
                    make_settings(),
                    transport=fake_services.transport,
                    today=lambda: date(2022, 3, 21),
                )
            )
        return plugins[0]

    def cache_clear() -> None:
        while plugins:
            plugins.pop().shutdown()

    build_test_plugin.cache_clear = cache_clear  # type: ignore[attr-defined]

    monkeypatch.setattr("app.main.build_default_plugin", build_test_plugin)
    monkeypatch.setattr("app.api.build_default_plugin", build_test_plugin)
    monkeypatch.setattr("app.web.build_default_plugin", build_test_plugin)
    monkeypatch.setattr("services.plugin.build_default_plugin", build_test_plugin)

    app = create_app()
    with TestClient(app) as client:
        yield client

    cache_clear()


def test_lifespan_shuts_down_plugin_and_clears_cache() -> None:
    app = create_app()

    with TestClient(app):
        plugin_during = build_default_plugin()
        assert plugin_during.executor._shutdown is False

    plugin_after = build_default_plugin()
    try:
        assert plugin_after is not plugin_during
        assert plugin_after.executor._shutdown is False
    finally:
        plugin_after.shutdown()
        build_default_plugin.cache_clear()


def _poll_for_completion(client: TestClient, job_id: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    last_payload: dict | None = None
    while time.monotonic() < deadline:
        response = client.get(f"/jobs/{job_id}")
        assert response.status_code == 200
        payload = response.json()
        last_payload = payload
        if payload["status"] not in {"pending", "running"}:
            return payload
        time.sleep(0.05)
    pytest.fail(f"Fetch job {job_id} did not finish: {last_payload}")


def _new_session(client: TestClient) -> str:
    response = client.post("/sessions")
    assert response.status_code == 201
    return response.json()["session_id"]


def test_create_session_defaults(api_client: TestClient) -> None:
    response = api_client.post("/sessions")

    assert response.status_code == 201
    payload = response.json()
    assert payload["city"] == ""
    assert payload["radius_miles"] == 10.0
    assert payload["start_date"] == "2022-03-21"
    assert payload["end_date"] == "2022-03-21"
    assert payload["averaging_minutes"] == 0


def test_search_fetch_and_read_dataset(api_client: TestClient) -> None:
    session_id = _new_session(api_client)

    located = api_client.post(f"/sessions/{session_id}/location", json={"query": "Flagstaff, AZ"})
    assert located.status_code == 200
    assert located.json()["city"] == "Flagstaff"
    assert located.json()["postal_code"] == "86001"
    assert len(located.json()["bounding_box"]) == 4

    patched = api_client.patch(f"/sessions/{session_id}", json={"averaging_minutes": 60})
    assert patched.json()["averaging_minutes"] == 60

    started = api_client.post(f"/sessions/{session_id}/fetch")
    assert started.status_code == 202
    job = _poll_for_completion(api_client, started.json()["job_id"])

    assert job["status"] == "completed"
    assert job["record_count"] == 6
    assert job["session_id"] == session_id
    assert isinstance(job["processing_ms"], int)

    dataset = api_client.get(f"/sessions/{session_id}/dataset").json()
    assert len(dataset["items"]) == 6
    assert dataset["items"][0]["AQI"] == 35
    assert [component["type"] for component in dataset["components"]] == ["map", "caseTable"]
    assert dataset["description"]["collections"][0]["name"] == "Search"


def test_failed_fetch_reports_message(api_client: TestClient, fake_services: FakeServices) -> None:
    fake_services.failing_sensors.add(101)
    session_id = _new_session(api_client)
    api_client.post(f"/sessions/{session_id}/location", json={"query": "Flagstaff"})
    api_client.patch(f"/sessions/{session_id}", json={"averaging_minutes": 30})

    job = _poll_for_completion(
        api_client, api_client.post(f"/sessions/{session_id}/fetch").json()["job_id"]
    )

    assert job["status"] == "failed"
    assert "email us a screenshot" in job["message"]


def test_fetch_without_location_is_bad_request(api_client: TestClient) -> None:
    session_id = _new_session(api_client)

    response = api_client.post(f"/sessions/{session_id}/fetch")

    assert response.status_code == 400
    assert response.json()["detail"] == MISSING_LOCATION


def test_fetch_without_averaging_is_bad_request(api_client: TestClient) -> None:
    session_id = _new_session(api_client)
    api_client.post(f"/sessions/{session_id}/location", json={"query": "Flagstaff"})

    response = api_client.post(f"/sessions/{session_id}/fetch")

    assert response.status_code == 400
    assert response.json()["detail"] == MISSING_AVERAGING


def test_radius_requires_location(api_client: TestClient) -> None:
    session_id = _new_session(api_client)

    response = api_client.put(f"/sessions/{session_id}/radius", json={"radius_miles": 5})

    assert response.status_code == 400


def test_radius_and_clear_and_reset(api_client: TestClient) -> None:
    session_id = _new_session(api_client)
    api_client.post(
        f"/sessions/{session_id}/location/place",
        json={"name": "Flagstaff, AZ", "latitude": 35.2, "longitude": -111.65},
    )

    widened = api_client.put(f"/sessions/{session_id}/radius", json={"radius_miles": 25})
    assert widened.json()["radius_miles"] == 25

    cleared = api_client.delete(f"/sessions/{session_id}/location")
    assert cleared.json()["city"] == ""
    assert cleared.json()["bounding_box"] == widened.json()["bounding_box"]

    reset = api_client.post(f"/sessions/{session_id}/reset")
    assert reset.json()["radius_miles"] == 10.0


def test_locate_coordinates(api_client: TestClient) -> None:
    session_id = _new_session(api_client)

    response = api_client.post(
        f"/sessions/{session_id}/location/coordinates",
        json={"latitude": 35.25, "longitude": -111.55},
    )

    assert response.status_code == 200
    assert response.json()["city"] == "Flagstaff"
    assert response.json()["latitude"] == 35.25


def test_unknown_location_is_not_found(api_client: TestClient, fake_services: FakeServices) -> None:
    fake_services.geocode_results = []
    session_id = _new_session(api_client)

    response = api_client.post(f"/sessions/{session_id}/location", json={"query": "Nowhere"})

    assert response.status_code == 404


def test_place_search(api_client: TestClient) -> None:
    response = api_client.get("/places", params={"q": "Flag", "max_rows": 2})

    assert response.status_code == 200
    assert [place["name"] for place in response.json()] == ["Flagstaff, AZ", "Flagler, CO"]
    assert api_client.get("/places", params={"q": "Fl"}).json() == []


def test_aqi_conversion(api_client: TestClient) -> None:
    response = api_client.get("/aqi", params={"pm": 55.6})

    assert response.json() == {"pm": 55.6, "aqi": 151, "description": "Unhealthy"}
    assert api_client.get("/aqi", params={"pm": 1200}).json()["aqi"] == "-"


def test_missing_session_and_job_return_not_found(api_client: TestClient) -> None:
    missing_id = str(uuid.uuid4())

    response = api_client.get(f"/sessions/{missing_id}")
    assert response.status_code == 404
    assert missing_id in response.json()["detail"]
    assert api_client.get(f"/jobs/{missing_id}").status_code == 404
    assert api_client.get(f"/sessions/{missing_id}/dataset").status_code == 404


def test_autocomplete_socket_selects_place(api_client: TestClient) -> None:
    session_id = _new_session(api_client)

    with api_client.websocket_connect(f"/sessions/{session_id}/autocomplete") as websocket:
        websocket.send_json({"type": "input", "text": "Flag"})
        state = websocket.receive_json()
        for _ in range(10):
            if state["popup_visible"]:
                break
            state = websocket.receive_json()
        assert state["popup_visible"] is True
        assert [option["text"] for option in state["options"]] == [
            "Flagstaff, AZ",
            "Flagler, CO",
            "Flagtown, NJ",
        ]

        websocket.send_json({"type": "key", "key": "ArrowDown"})
        state = websocket.receive_json()
        while state["highlighted"] != 1:
            state = websocket.receive_json()

        websocket.send_json({"type": "click", "index": 1})
        state = websocket.receive_json()
        while state["selected_place"] is None:
            state = websocket.receive_json()

    assert state["text"] == "Flagler, CO"
    assert state["popup_visible"] is False
    assert api_client.get(f"/sessions/{session_id}").json()["city"] == "Flagler"


def test_autocomplete_socket_ignores_bad_index(api_client: TestClient) -> None:
    session_id = _new_session(api_client)

    with api_client.websocket_connect(f"/sessions/{session_id}/autocomplete") as websocket:
        websocket.send_json({"type": "hover", "index": "abc"})
        state = websocket.receive_json()
        assert state["highlighted"] is None

        websocket.send_json({"type": "click", "index": None})
        websocket.send_json({"type": "input", "text": "Flag"})
        state = websocket.receive_json()
        for _ in range(10):
            if state["popup_visible"]:
                break
            state = websocket.receive_json()

    assert state["popup_visible"] is True
    assert state["selected_place"] is None


def test_autocomplete_socket_unknown_session(api_client: TestClient) -> None:
    with pytest.raises(WebSocketDisconnect):
        with api_client.websocket_connect("/sessions/missing/autocomplete") as websocket:
            websocket.receive_json()


def test_ui_session_flow(api_client: TestClient) -> None:
    created = api_client.post("/ui/sessions")
    assert created.status_code == 200
    assert "Air quality search" in created.text
    session_id = str(created.url).rsplit("/", 1)[-1]

    located = api_client.post(f"/ui/sessions/{session_id}/location", data={"query": "Flagstaff"})
    assert located.status_code == 200
    assert "86001" in located.text

    refused = api_client.post(f"/ui/sessions/{session_id}/fetch")
    assert MISSING_AVERAGING in refused.text

    saved = api_client.post(
        f"/ui/sessions/{session_id}/settings",
        data={
            "radius_miles": "10",
            "start_date": "2022-03-21",
            "end_date": "2022-03-21",
            "averaging_minutes": "60",
            "sensor_limit": "0",
        },
    )
    assert saved.status_code == 200
    assert '<option value="60" selected>' in saved.text

    assert "Sessions" in api_client.get("/ui").text


def test_health_endpoints(api_client: TestClient) -> None:
    assert api_client.get("/health").json() == {"status": "ok"}
    assert api_client.get("/").json()["status"] == "ok"
