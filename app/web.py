from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from fastapi import APIRouter, Depends, Form, HTTPException, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from app.schemas import FetchStatus
from services.aqi import get_aqi_description
from services.location import LocationNotFoundError, SessionValidationError
from services.plugin import FetchInProgressError, PluginService, build_default_plugin


templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))
templates.env.filters["aqi_description"] = lambda value: get_aqi_description(value) or ""

AVERAGING_CHOICES = (10, 30, 60, 360, 1440)


def get_plugin() -> PluginService:
    return build_default_plugin()


def _redirect_to_session(request: Request, session_id: str, message: Optional[str] = None) -> RedirectResponse:
    url = request.url_for("ui_session_detail", session_id=session_id)
    if message:
        url = url.include_query_params(message=message)
    return RedirectResponse(url=str(url), status_code=status.HTTP_303_SEE_OTHER)


def _parse_date(value: str) -> Optional[date]:
    candidate = value.strip()
    if not candidate:
        return None
    return date.fromisoformat(candidate)


def _sensor_markers(hierarchy: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    markers: List[Dict[str, Any]] = []
    for location in hierarchy:
        for sensor in location["sensors"]:
            measures = sensor["measures"]
            latest = measures[-1] if measures else {}
            markers.append({**sensor["values"], "measure_count": len(measures), "latest_aqi": latest.get("AQI")})
    return markers


router = APIRouter(include_in_schema=False)


@router.get("/ui", name="ui_index", response_class=HTMLResponse)
async def ui_index(
    request: Request,
    plugin: PluginService = Depends(get_plugin),
) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "ui/index.html",
        {"sessions": plugin.list_sessions()},
    )


@router.post("/ui/sessions", name="ui_create_session")
async def ui_create_session(
    request: Request,
    plugin: PluginService = Depends(get_plugin),
) -> RedirectResponse:
    session_id, _session = plugin.create_session()
    return _redirect_to_session(request, session_id)


@router.get("/ui/sessions/{session_id}", name="ui_session_detail", response_class=HTMLResponse)
async def ui_session_detail(
    request: Request,
    session_id: str,
    message: Optional[str] = None,
    plugin: PluginService = Depends(get_plugin),
) -> HTMLResponse:
    try:
        session = plugin.get_session(session_id)
        _description, items, components = plugin.dataset(session_id)
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc

    job = plugin.latest_job(session_id)
    should_poll = job is not None and job.status in {FetchStatus.pending, FetchStatus.running}
    if job is not None and job.status is FetchStatus.failed and not message:
        message = job.message

    return templates.TemplateResponse(
        request,
        "ui/session.html",
        {
            "session_id": session_id,
            "session": session,
            "message": message,
            "job": job,
            "should_poll": should_poll,
            "items": items,
            "components": components,
            "markers": _sensor_markers(plugin.data.hierarchy(session_id)),
            "averaging_choices": AVERAGING_CHOICES,
        },
    )


@router.post("/ui/sessions/{session_id}/location", name="ui_search_location")
async def ui_search_location(
    request: Request,
    session_id: str,
    query: str = Form(""),
    plugin: PluginService = Depends(get_plugin),
) -> RedirectResponse:
    try:
        await plugin.search_location(session_id, query)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (SessionValidationError, LocationNotFoundError) as exc:
        return _redirect_to_session(request, session_id, str(exc.args[0] if exc.args else exc))
    except httpx.HTTPError as exc:
        return _redirect_to_session(request, session_id, f"Location search failed: {exc}")
    return _redirect_to_session(request, session_id)


@router.post("/ui/sessions/{session_id}/settings", name="ui_update_settings")
async def ui_update_settings(
    request: Request,
    session_id: str,
    radius_miles: float = Form(...),
    start_date: str = Form(""),
    end_date: str = Form(""),
    averaging_minutes: int = Form(0),
    sensor_limit: int = Form(0),
    plugin: PluginService = Depends(get_plugin),
) -> RedirectResponse:
    try:
        session = plugin.update_session(
            session_id,
            start_date=_parse_date(start_date),
            end_date=_parse_date(end_date),
            averaging_minutes=averaging_minutes,
            sensor_limit=max(sensor_limit, 0),
        )
        if radius_miles != session.radius_miles:
            plugin.change_radius(session_id, radius_miles)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        return _redirect_to_session(request, session_id, str(exc))
    return _redirect_to_session(request, session_id)


@router.post("/ui/sessions/{session_id}/clear", name="ui_clear_location")
async def ui_clear_location(
    request: Request,
    session_id: str,
    plugin: PluginService = Depends(get_plugin),
) -> RedirectResponse:
    try:
        plugin.clear_location(session_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _redirect_to_session(request, session_id)


@router.post("/ui/sessions/{session_id}/reset", name="ui_reset_session")
async def ui_reset_session(
    request: Request,
    session_id: str,
    plugin: PluginService = Depends(get_plugin),
) -> RedirectResponse:
    try:
        plugin.reset_session(session_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _redirect_to_session(request, session_id, "Form has been reset")


@router.post("/ui/sessions/{session_id}/fetch", name="ui_start_fetch")
async def ui_start_fetch(
    request: Request,
    session_id: str,
    plugin: PluginService = Depends(get_plugin),
) -> RedirectResponse:
    try:
        plugin.start_fetch(session_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (SessionValidationError, FetchInProgressError) as exc:
        return _redirect_to_session(request, session_id, str(exc))
    return _redirect_to_session(request, session_id)
