"""HTTP route definitions for the service."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from app.schemas import (
    AQIResponse,
    AutocompleteState,
    CandidateOption,
    CoordinatesRequest,
    DatasetResponse,
    FetchAccepted,
    FetchJob,
    LocationSearchRequest,
    Place,
    RadiusRequest,
    SessionUpdate,
    SessionView,
)
from models.records import PlaceCandidate
from models.session import SessionState
from services.aqi import get_aqi_description, get_aqi_from_pm
from services.autocomplete import AutocompleteController, CandidateListView
from services.location import LocationNotFoundError, SessionValidationError
from services.plugin import FetchInProgressError, PluginService, build_default_plugin

logger = logging.getLogger(__name__)

router = APIRouter()


def get_plugin() -> PluginService:
    return build_default_plugin()


def _session_view(session_id: str, session: SessionState) -> SessionView:
    return SessionView(
        session_id=session_id,
        latitude=session.latitude,
        longitude=session.longitude,
        city=session.city,
        region=session.region,
        postal_code=session.postal_code,
        bounding_box=list(session.bounding_box),
        radius_miles=session.radius_miles,
        start_date=session.start_date,
        end_date=session.end_date,
        averaging_minutes=session.averaging_minutes,
        sensor_limit=session.sensor_limit,
    )


def _place(candidate: PlaceCandidate) -> Place:
    return Place(name=candidate.name, latitude=candidate.latitude, longitude=candidate.longitude)


def _not_found(exc: LookupError) -> HTTPException:
    detail = exc.args[0] if exc.args else str(exc)
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def _bad_request(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _upstream_error(exc: httpx.HTTPError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"Geocoding service request failed: {exc}",
    )


@router.post(
    "/sessions",
    status_code=status.HTTP_201_CREATED,
    response_model=SessionView,
    summary="Start a new session with default form values.",
)
async def create_session(plugin: PluginService = Depends(get_plugin)) -> SessionView:
    session_id, session = plugin.create_session()
    return _session_view(session_id, session)


@router.get("/sessions/{session_id}", response_model=SessionView)
async def get_session(session_id: str, plugin: PluginService = Depends(get_plugin)) -> SessionView:
    try:
        session = plugin.get_session(session_id)
    except KeyError as exc:
        raise _not_found(exc) from exc
    return _session_view(session_id, session)


@router.patch(
    "/sessions/{session_id}",
    response_model=SessionView,
    summary="Update dates, averaging interval or sensor limit.",
)
async def update_session(
    session_id: str,
    payload: SessionUpdate,
    plugin: PluginService = Depends(get_plugin),
) -> SessionView:
    try:
        session = plugin.update_session(session_id, **payload.model_dump(exclude_unset=True))
    except KeyError as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return _session_view(session_id, session)


@router.post(
    "/sessions/{session_id}/location",
    response_model=SessionView,
    summary="Forward-geocode a 'city, state' search into the session.",
)
async def search_location(
    session_id: str,
    payload: LocationSearchRequest,
    plugin: PluginService = Depends(get_plugin),
) -> SessionView:
    try:
        session = await plugin.search_location(session_id, payload.query)
    except (KeyError, LocationNotFoundError) as exc:
        raise _not_found(exc) from exc
    except SessionValidationError as exc:
        raise _bad_request(exc) from exc
    except httpx.HTTPError as exc:
        raise _upstream_error(exc) from exc
    return _session_view(session_id, session)


@router.post(
    "/sessions/{session_id}/location/place",
    response_model=SessionView,
    summary="Apply a place picked from the autocomplete candidates.",
)
async def select_place(
    session_id: str,
    payload: Place,
    plugin: PluginService = Depends(get_plugin),
) -> SessionView:
    try:
        session = plugin.select_place(
            session_id,
            PlaceCandidate(name=payload.name, latitude=payload.latitude, longitude=payload.longitude),
        )
    except KeyError as exc:
        raise _not_found(exc) from exc
    return _session_view(session_id, session)


@router.post(
    "/sessions/{session_id}/location/coordinates",
    response_model=SessionView,
    summary="Name a coordinate with the nearest place and apply it.",
)
async def locate_coordinates(
    session_id: str,
    payload: CoordinatesRequest,
    plugin: PluginService = Depends(get_plugin),
) -> SessionView:
    try:
        session = await plugin.locate_coordinates(session_id, payload.latitude, payload.longitude)
    except (KeyError, LocationNotFoundError) as exc:
        raise _not_found(exc) from exc
    except httpx.HTTPError as exc:
        raise _upstream_error(exc) from exc
    return _session_view(session_id, session)


@router.delete("/sessions/{session_id}/location", response_model=SessionView)
async def clear_location(session_id: str, plugin: PluginService = Depends(get_plugin)) -> SessionView:
    try:
        session = plugin.clear_location(session_id)
    except KeyError as exc:
        raise _not_found(exc) from exc
    return _session_view(session_id, session)


@router.put("/sessions/{session_id}/radius", response_model=SessionView)
async def change_radius(
    session_id: str,
    payload: RadiusRequest,
    plugin: PluginService = Depends(get_plugin),
) -> SessionView:
    try:
        session = plugin.change_radius(session_id, payload.radius_miles)
    except KeyError as exc:
        raise _not_found(exc) from exc
    except SessionValidationError as exc:
        raise _bad_request(exc) from exc
    return _session_view(session_id, session)


@router.post("/sessions/{session_id}/reset", response_model=SessionView)
async def reset_session(session_id: str, plugin: PluginService = Depends(get_plugin)) -> SessionView:
    try:
        session = plugin.reset_session(session_id)
    except KeyError as exc:
        raise _not_found(exc) from exc
    return _session_view(session_id, session)


@router.post(
    "/sessions/{session_id}/fetch",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=FetchAccepted,
    summary="Fetch sensor history for the session in the background.",
)
async def start_fetch(session_id: str, plugin: PluginService = Depends(get_plugin)) -> FetchAccepted:
    try:
        job_id = plugin.start_fetch(session_id)
    except KeyError as exc:
        raise _not_found(exc) from exc
    except SessionValidationError as exc:
        raise _bad_request(exc) from exc
    except FetchInProgressError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return FetchAccepted(job_id=job_id)


@router.get("/jobs/{job_id}", response_model=FetchJob, summary="Fetch progress and outcome.")
async def get_job(job_id: str, plugin: PluginService = Depends(get_plugin)) -> FetchJob:
    try:
        return plugin.fetch_job(job_id)
    except KeyError as exc:
        raise _not_found(exc) from exc


@router.get("/sessions/{session_id}/dataset", response_model=DatasetResponse)
async def get_dataset(session_id: str, plugin: PluginService = Depends(get_plugin)) -> DatasetResponse:
    try:
        description, items, components = plugin.dataset(session_id)
    except KeyError as exc:
        raise _not_found(exc) from exc
    return DatasetResponse(description=description, items=items, components=components)


@router.get(
    "/places",
    response_model=List[Place],
    summary="Prefix search for US place names.",
)
async def search_places(
    q: str = Query(..., description="Beginning of a place name."),
    max_rows: Optional[int] = Query(None, ge=1, le=1000),
    plugin: PluginService = Depends(get_plugin),
) -> List[Place]:
    try:
        candidates = await plugin.search_places(q, max_rows)
    except httpx.HTTPError as exc:
        raise _upstream_error(exc) from exc
    return [_place(candidate) for candidate in candidates]


@router.get("/aqi", response_model=AQIResponse, summary="Convert a PM concentration to AQI.")
async def convert_pm(pm: float = Query(...)) -> AQIResponse:
    aqi = get_aqi_from_pm(pm)
    return AQIResponse(pm=pm, aqi=aqi, description=get_aqi_description(aqi))


class _PushingCandidateView(CandidateListView):
    """Candidate view that announces every render so the socket can push state."""

    def __init__(self, changed: asyncio.Event) -> None:
        super().__init__()
        self._changed = changed

    def render(
        self,
        candidates: Sequence[PlaceCandidate],
        highlighted: Optional[int],
        visible: bool,
    ) -> None:
        super().render(candidates, highlighted, visible)
        self._changed.set()


def _autocomplete_state(controller: AutocompleteController) -> AutocompleteState:
    view = controller.view
    slots = view.visible_slots() if view is not None else []
    selected = controller.selected_place
    return AutocompleteState(
        text=controller.text,
        popup_visible=controller.popup_visible,
        highlighted=controller.highlighted,
        query_in_progress=controller.query_in_progress,
        selected_place=_place(selected) if selected is not None else None,
        options=[
            CandidateOption(text=slot.text, index=slot.index, candidate=slot.candidate)
            for slot in slots
        ],
    )


def _message_index(message: dict) -> Optional[int]:
    try:
        return int(message.get("index", -1))
    except (OverflowError, TypeError, ValueError):
        logger.debug("Ignoring autocomplete message with bad index", extra={"index": message.get("index")})
        return None


async def _dispatch(controller: AutocompleteController, message: dict) -> None:
    kind = message.get("type")
    if kind == "input":
        controller.handle_input(str(message.get("text", "")))
    elif kind == "key":
        await controller.handle_key(str(message.get("key", "")))
    elif kind in ("hover", "click"):
        index = _message_index(message)
        if index is None:
            return
        if kind == "hover":
            controller.hover(index)
        else:
            controller.click(index)


@router.websocket("/sessions/{session_id}/autocomplete")
async def autocomplete_socket(
    websocket: WebSocket,
    session_id: str,
    plugin: PluginService = Depends(get_plugin),
) -> None:
    """Drive a server-side autocomplete field.

    Clients send ``{"type": "input", "text": ...}``, ``{"type": "key", "key": ...}``,
    ``{"type": "hover", "index": ...}`` or ``{"type": "click", "index": ...}``.
    The field state is pushed back after each message and after each search.
    """
    changed = asyncio.Event()
    try:
        controller = plugin.build_autocomplete(session_id, view=_PushingCandidateView(changed))
    except KeyError:
        await websocket.close(code=4404)
        return

    await websocket.accept()

    async def push_updates() -> None:
        while True:
            await changed.wait()
            changed.clear()
            await websocket.send_json(_autocomplete_state(controller).model_dump(mode="json"))

    pusher = asyncio.create_task(push_updates())
    try:
        while True:
            message = await websocket.receive_json()
            if isinstance(message, dict):
                await _dispatch(controller, message)
            changed.set()
    except WebSocketDisconnect:
        logger.debug("Autocomplete socket closed", extra={"session_id": session_id})
    finally:
        controller.cancel_pending()
        pusher.cancel()


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
