"""Sensor discovery, per-day history retrieval and record flattening."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import httpx

from models.records import MeasurementRecord, Sensor
from models.session import SessionState
from services.geo import get_days_array
from services.location import SessionValidationError
from services.purpleair import PurpleAirClient

logger = logging.getLogger(__name__)

MISSING_LOCATION = "Please fetch & search your desired location before moving forward"
MISSING_START_DATE = "Please select start date before moving forward"
MISSING_END_DATE = "Please select end date before moving forward"
MISSING_AVERAGING = "Please select averaging minutes before moving forward"


class PipelineError(RuntimeError):
    """A discovery or history request failed; no records are returned."""


@dataclass(frozen=True)
class PipelineProgress:
    """Progress update for whoever is displaying the running fetch."""

    message: str
    sensor_count: Optional[int] = None
    sensor_position: Optional[int] = None
    day: Optional[str] = None


ProgressCallback = Callable[[PipelineProgress], None]


def describe_failure(exc: Exception) -> str:
    """User-facing cause for an aborted fetch.

    Status errors are reduced to status and URL with the ``api_key`` query
    parameter removed, since the text ends up in job messages.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        url = exc.request.url.copy_remove_param("api_key")
        return f"{exc.response.status_code} {exc.response.reason_phrase} from {url}"
    return str(exc) or exc.__class__.__name__


def validate_session(session: SessionState) -> None:
    """Raise ``SessionValidationError`` for the first missing precondition."""
    if session.city == "" or (session.latitude == 0.0 and session.longitude == 0.0):
        raise SessionValidationError(MISSING_LOCATION)
    if session.start_date is None:
        raise SessionValidationError(MISSING_START_DATE)
    if session.end_date is None:
        raise SessionValidationError(MISSING_END_DATE)
    if not session.averaging_minutes:
        raise SessionValidationError(MISSING_AVERAGING)


class AggregationPipeline:
    """Validate → discover sensors → fetch history → flatten.

    With ``concurrency`` of 1 every history request is awaited in turn. Larger
    values fan requests out under a semaphore; results are reassembled by
    position so the output order is the same either way.
    """

    def __init__(self, client: PurpleAirClient, concurrency: int = 1) -> None:
        self.client = client
        self.concurrency = max(1, concurrency)

    async def run(
        self,
        session: SessionState,
        progress: Optional[ProgressCallback] = None,
    ) -> List[MeasurementRecord]:
        validate_session(session)
        days = get_days_array(session.start_date, session.end_date)
        notify = progress or (lambda _event: None)
        location = session.location_label()

        try:
            notify(PipelineProgress("Fetching Data from Purple Air"))
            sensors = await self.client.list_sensors(
                session.bounding_box, location, session.sensor_limit
            )
            logger.info(
                "Sensors discovered",
                extra={"location": location, "sensor_count": len(sensors)},
            )
            notify(
                PipelineProgress(f"Found {len(sensors)} sensor(s)", sensor_count=len(sensors))
            )

            if self.concurrency == 1:
                batches = await self._fetch_sequential(
                    sensors, days, session.averaging_minutes, notify
                )
            else:
                batches = await self._fetch_concurrent(
                    sensors, days, session.averaging_minutes, notify
                )
        except Exception as exc:
            cause = describe_failure(exc)
            logger.error("Aggregation aborted", extra={"location": location, "reason": cause})
            raise PipelineError(cause) from exc

        records = [record for batch in batches for record in batch]
        logger.info(
            "Aggregation finished",
            extra={"location": location, "record_count": len(records)},
        )
        return records

    async def _fetch_sequential(
        self,
        sensors: Sequence[Sensor],
        days: Sequence[str],
        average: int,
        notify: ProgressCallback,
    ) -> List[List[MeasurementRecord]]:
        batches: List[List[MeasurementRecord]] = []
        total = len(sensors)
        for position, sensor in enumerate(sensors, start=1):
            notify(
                PipelineProgress(
                    f"Sensor {position}/{total} - {sensor.name}",
                    sensor_count=total,
                    sensor_position=position,
                )
            )
            for day in days:
                notify(PipelineProgress(f"Fetching Date {day}", sensor_position=position, day=day))
                batches.append(await self.client.fetch_history(sensor, day, average))
        return batches

    async def _fetch_concurrent(
        self,
        sensors: Sequence[Sensor],
        days: Sequence[str],
        average: int,
        notify: ProgressCallback,
    ) -> List[List[MeasurementRecord]]:
        semaphore = asyncio.Semaphore(self.concurrency)
        total = len(sensors)
        work: List[Tuple[int, Sensor, str]] = [
            (position, sensor, day)
            for position, sensor in enumerate(sensors, start=1)
            for day in days
        ]

        async def fetch(position: int, sensor: Sensor, day: str) -> List[MeasurementRecord]:
            async with semaphore:
                notify(
                    PipelineProgress(
                        f"Sensor {position}/{total} - {sensor.name}",
                        sensor_count=total,
                        sensor_position=position,
                        day=day,
                    )
                )
                notify(PipelineProgress(f"Fetching Date {day}", sensor_position=position, day=day))
                return await self.client.fetch_history(sensor, day, average)

        tasks: List[asyncio.Task[List[MeasurementRecord]]] = [
            asyncio.ensure_future(fetch(*item)) for item in work
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
