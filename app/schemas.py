"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class FetchStatus(str, Enum):
    """Lifecycle states of a background data fetch."""

    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"


class FetchJob(BaseModel):
    """Progress and outcome of one pipeline run for a session."""

    job_id: str
    session_id: str
    status: FetchStatus
    created_at: datetime
    finished_at: Optional[datetime] = None
    processing_ms: Optional[int] = Field(
        default=None, description="Duration in milliseconds from start to finish."
    )
    progress: str = ""
    sensor_count: Optional[int] = Field(default=None, ge=0)
    record_count: Optional[int] = Field(default=None, ge=0)
    message: Optional[str] = None


class FetchAccepted(BaseModel):
    job_id: str = Field(..., description="Identifier to poll for fetch progress.")


class SessionView(BaseModel):
    """Current form state of a session."""

    session_id: str
    latitude: float
    longitude: float
    city: str
    region: str
    postal_code: str
    bounding_box: List[float] = Field(default_factory=list)
    radius_miles: float
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    averaging_minutes: int
    sensor_limit: int


class SessionUpdate(BaseModel):
    """Form fields that can be changed without a geocoding lookup."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    averaging_minutes: Optional[int] = Field(default=None, ge=0)
    sensor_limit: Optional[int] = Field(default=None, ge=0)


class LocationSearchRequest(BaseModel):
    query: str = Field(..., description="Free-form 'city, state' text.")


class CoordinatesRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class RadiusRequest(BaseModel):
    radius_miles: float = Field(..., gt=0)


class Place(BaseModel):
    name: str
    latitude: float
    longitude: float


class Component(BaseModel):
    """A host component created to display the dataset."""

    type: str
    name: Optional[str] = None
    values: Dict[str, Any] = Field(default_factory=dict)
    notifications: List[Dict[str, Any]] = Field(default_factory=list)


class DatasetResponse(BaseModel):
    description: Dict[str, Any]
    items: List[Dict[str, Any]] = Field(default_factory=list)
    components: List[Component] = Field(default_factory=list)


class AQIResponse(BaseModel):
    pm: float
    aqi: Union[int, float, str, None]
    description: Optional[str] = None


class CandidateOption(BaseModel):
    text: str
    index: int
    candidate: bool


class AutocompleteState(BaseModel):
    """Snapshot of the autocomplete field pushed to the client after every change."""

    text: str
    popup_visible: bool
    highlighted: Optional[int] = None
    query_in_progress: bool = False
    selected_place: Optional[Place] = None
    options: List[CandidateOption] = Field(default_factory=list)
