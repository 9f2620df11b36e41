"""Session ownership and background data fetches."""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import date, datetime, timezone
from functools import lru_cache
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from app.schemas import Component, FetchJob, FetchStatus
from datastore.data_context import (
    DataContextStore,
    case_table_component,
    map_component,
)
from datastore.job_table import FetchJobTable
from models.records import PlaceCandidate
from models.session import SessionState
from services.autocomplete import AutocompleteController, CandidateListView
from services.geocoding import GeoapifyClient, GeonamesClient
from services.location import LocationService
from services.pipeline import AggregationPipeline, PipelineProgress, validate_session
from services.purpleair import PurpleAirClient
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

_ACTIVE_STATUSES = {FetchStatus.pending, FetchStatus.running}
_EDITABLE_FIELDS = {"start_date", "end_date", "averaging_minutes", "sensor_limit"}


class FetchInProgressError(RuntimeError):
    """A fetch for the session is still pending or running."""


class PluginService:
    """Coordinates sessions, location lookups, fetch jobs and the data context."""

    def __init__(
        self,
        location: LocationService,
        pipeline: AggregationPipeline,
        jobs: FetchJobTable,
        data: DataContextStore,
        workers: int = 4,
        support_email: str = "",
        autocomplete_max_rows: int = 5,
        autocomplete_min_length: int = 3,
        autocomplete_debounce: float = 0.8,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.location = location
        self.pipeline = pipeline
        self.jobs = jobs
        self.data = data
        self.support_email = support_email
        self.autocomplete_max_rows = autocomplete_max_rows
        self.autocomplete_min_length = autocomplete_min_length
        self.autocomplete_debounce = autocomplete_debounce
        self._today = today
        self.executor = ThreadPoolExecutor(max_workers=workers)
        self._sessions: Dict[str, SessionState] = {}
        self._sessions_lock = Lock()
        self._futures: Dict[str, Future[None]] = {}
        self._futures_lock = Lock()

    # -- sessions -----------------------------------------------------------

    def create_session(self) -> Tuple[str, SessionState]:
        session_id = str(uuid4())
        session = SessionState.default(self.location.default_radius_miles)
        self.location.reset(session, self._today())
        with self._sessions_lock:
            self._sessions[session_id] = session
        self.data.init_dataset(session_id)
        logger.info("Session created", extra={"session_id": session_id})
        return session_id, session

    def get_session(self, session_id: str) -> SessionState:
        with self._sessions_lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Session {session_id!r} not found.")
        return session

    def list_sessions(self) -> List[Tuple[str, SessionState]]:
        with self._sessions_lock:
            return list(self._sessions.items())

    def update_session(self, session_id: str, **changes: Any) -> SessionState:
        session = self.get_session(session_id)
        for name, value in changes.items():
            if name not in _EDITABLE_FIELDS:
                raise ValueError(f"Field {name!r} cannot be edited directly.")
            setattr(session, name, value)
        return session

    async def search_location(self, session_id: str, text: str) -> SessionState:
        return await self.location.search_location(self.get_session(session_id), text)

    def select_place(self, session_id: str, place: PlaceCandidate) -> SessionState:
        return self.location.select_place(self.get_session(session_id), place)

    async def locate_coordinates(
        self, session_id: str, latitude: float, longitude: float
    ) -> SessionState:
        return await self.location.locate_coordinates(
            self.get_session(session_id), latitude, longitude
        )

    def change_radius(self, session_id: str, radius_miles: float) -> SessionState:
        return self.location.change_radius(self.get_session(session_id), radius_miles)

    def clear_location(self, session_id: str) -> SessionState:
        return self.location.clear_location(self.get_session(session_id))

    def reset_session(self, session_id: str) -> SessionState:
        return self.location.reset(self.get_session(session_id), self._today())

    # -- autocomplete -------------------------------------------------------

    async def search_places(self, prefix: str, max_rows: Optional[int] = None) -> List[PlaceCandidate]:
        if len(prefix) < self.autocomplete_min_length:
            return []
        return await self.location.geonames.search(prefix, max_rows or self.autocomplete_max_rows)

    def build_autocomplete(
        self, session_id: str, view: Optional[CandidateListView] = None
    ) -> AutocompleteController:
        """Autocomplete whose committed candidate becomes the session location."""
        self.get_session(session_id)
        return AutocompleteController(
            self.location.geonames.search,
            max_rows=self.autocomplete_max_rows,
            min_length=self.autocomplete_min_length,
            debounce=self.autocomplete_debounce,
            view=view,
            on_select=lambda place: self.select_place(session_id, place),
        )

    # -- fetch jobs ---------------------------------------------------------

    def start_fetch(self, session_id: str) -> str:
        """Validate the session and run the pipeline in the background."""
        session = self.get_session(session_id)
        validate_session(session)
        if any(job.status in _ACTIVE_STATUSES for job in self.jobs.scan(session_id)):
            raise FetchInProgressError("A data fetch is already running for this session.")

        job_id = str(uuid4())
        created_at = datetime.now(timezone.utc)
        self.jobs.put_item(
            FetchJob(
                job_id=job_id,
                session_id=session_id,
                status=FetchStatus.pending,
                created_at=created_at,
            )
        )

        future = self.executor.submit(
            self._run_fetch, job_id=job_id, session_id=session_id, snapshot=session.snapshot()
        )
        with self._futures_lock:
            self._futures[job_id] = future
        future.add_done_callback(lambda _f, jid=job_id: self._clear_future(jid))
        logger.info("Fetch queued", extra={"session_id": session_id, "job_id": job_id})
        return job_id

    def fetch_job(self, job_id: str) -> FetchJob:
        job = self.jobs.get_item(job_id)
        if job is None:
            raise KeyError(f"Fetch job {job_id!r} not found.")
        return job

    def latest_job(self, session_id: str) -> Optional[FetchJob]:
        jobs = self.jobs.scan(session_id)
        if not jobs:
            return None
        return max(jobs, key=lambda job: job.created_at)

    def dataset(self, session_id: str) -> Tuple[Dict[str, Any], List[Dict[str, Any]], List[Component]]:
        self.get_session(session_id)
        return (
            self.data.description,
            self.data.items(session_id),
            self.data.components(session_id),
        )

    def failure_message(self, cause: Exception) -> str:
        return (
            f"Error\n{cause}\n\nPlease refresh the window & try again - if the error persists"
            f" - email us a screenshot of this window @ {self.support_email}\n"
        )

    def shutdown(self) -> None:
        """Clean up executor resources during application shutdown."""
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _clear_future(self, job_id: str) -> None:
        with self._futures_lock:
            self._futures.pop(job_id, None)

    def _run_fetch(self, job_id: str, session_id: str, snapshot: SessionState) -> None:
        start_time = time.perf_counter()
        self.jobs.update_item(job_id, status=FetchStatus.running)

        def on_progress(event: PipelineProgress) -> None:
            changes: Dict[str, Any] = {"progress": event.message}
            if event.sensor_count is not None:
                changes["sensor_count"] = event.sensor_count
            self.jobs.update_item(job_id, **changes)

        changes: Dict[str, Any]
        try:
            records = asyncio.run(self.pipeline.run(snapshot, on_progress))
            added = self.data.create_items(session_id, (record.to_item() for record in records))
            self.data.create_component(session_id, map_component())
            self.data.create_component(session_id, case_table_component())
            changes = {"status": FetchStatus.completed, "record_count": added, "progress": ""}
        except Exception as exc:
            logger.error(
                "Fetch failed",
                extra={"session_id": session_id, "job_id": job_id, "reason": str(exc)},
            )
            changes = {"status": FetchStatus.failed, "message": self.failure_message(exc)}

        changes["finished_at"] = datetime.now(timezone.utc)
        changes["processing_ms"] = int((time.perf_counter() - start_time) * 1000)
        job = self.jobs.update_item(job_id, **changes)
        logger.info(
            "Fetch finished",
            extra={"job_id": job_id, "status": job.status.value, "record_count": job.record_count},
        )


def build_plugin(
    settings: Settings,
    transport: Any = None,
    today: Callable[[], date] = date.today,
) -> PluginService:
    """Wire a plugin service from settings, optionally over a shared HTTP transport."""
    geonames = GeonamesClient.from_settings(settings, transport=transport)
    geoapify = GeoapifyClient.from_settings(settings, transport=transport)
    purpleair = PurpleAirClient.from_settings(settings, transport=transport)
    return PluginService(
        location=LocationService(geoapify, geonames, settings.default_radius_miles),
        pipeline=AggregationPipeline(purpleair, concurrency=settings.pipeline_concurrency),
        jobs=FetchJobTable(),
        data=DataContextStore(),
        workers=settings.fetch_workers,
        support_email=settings.support_email,
        autocomplete_max_rows=settings.autocomplete_max_rows,
        autocomplete_min_length=settings.autocomplete_min_length,
        autocomplete_debounce=settings.autocomplete_debounce_ms / 1000,
        today=today,
    )


@lru_cache
def build_default_plugin() -> PluginService:
    """Factory that wires the plugin with live service clients."""
    return build_plugin(get_settings())
