"""In-process stand-in for the host environment that displays fetched records.

Each session owns one data context: a dataset declared with a three-level
schema (location → sensor → measurement), the flat items submitted against it,
and the map and case table components requested to display them.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, Iterable, List, Mapping, Optional

from app.schemas import Component

DATASET_NAME = "dataset"
MAP_COMPONENT_NAME = "my_location_map"

DATASET_DESCRIPTION: Dict[str, Any] = {
    "name": DATASET_NAME,
    "title": "Purple Air Table",
    "description": "A set of values including humidity, precipitation, temperature, pm2.5 & pm10.0, AQI",
    "dimensions": {"width": 1000, "height": 500},
    "collections": [
        {
            "name": "Search",
            "parent": None,
            "labels": {
                "singleCase": "location",
                "pluralCase": "locations",
                "setOfCasesWithArticle": "Set of locations",
            },
            "attrs": [
                {
                    "name": "Location",
                    "type": "categorical",
                    "description": "user's searched location / current location",
                },
            ],
        },
        {
            "name": "Sensors",
            "parent": "Search",
            "labels": {
                "singleCase": "sensor",
                "pluralCase": "sensors",
                "setOfCasesWithArticle": "Set of Values",
            },
            "attrs": [
                {"name": "sensor_index", "type": "numeric", "description": "Sensors id"},
                {"name": "name", "type": "categorical", "description": "Sensors Name"},
                {"name": "latitude", "type": "numeric", "description": "sensor's latitude"},
                {"name": "longitude", "type": "numeric", "description": "sensor's longitude"},
                {"name": "elevation", "type": "numeric", "description": "sensor's elevation"},
            ],
        },
        {
            "name": "Sensor Data",
            "title": "List of Measures",
            "parent": "Sensors",
            "labels": {"singleCase": "measure", "pluralCase": "measures"},
            "attrs": [
                {"name": "created_at", "type": "date", "description": "date created data"},
                {"name": "Humidity", "type": "numeric", "precision": 3, "description": "estimated value"},
                {"name": "Temperature", "type": "text", "description": "estimated value"},
                {
                    "name": "PM 10.0",
                    "type": "numeric",
                    "precision": 3,
                    "description": "estimated value of Particulate Matter 10.0",
                },
                {
                    "name": "PM 2.5",
                    "type": "numeric",
                    "precision": 3,
                    "description": "estimated value of Particulate Matter 2.5",
                },
                {"name": "AQI", "type": "numeric", "precision": 3, "description": "Air Quality Index"},
            ],
        },
    ],
}


def attribute_names(description: Mapping[str, Any]) -> List[str]:
    return [
        attr["name"]
        for collection in description["collections"]
        for attr in collection["attrs"]
    ]


def collection_attributes(description: Mapping[str, Any], name: str) -> List[str]:
    for collection in description["collections"]:
        if collection["name"] == name:
            return [attr["name"] for attr in collection["attrs"]]
    raise KeyError(f"Collection {name!r} not declared.")


def map_component(dataset_name: str = DATASET_NAME) -> Component:
    return Component(
        type="map",
        name=MAP_COMPONENT_NAME,
        values={
            "title": "map",
            "dataContextName": dataset_name,
            "legendAttributeName": "Legend",
            "dimensions": {"width": 380, "height": 380},
        },
    )


def case_table_component(dataset_name: str = DATASET_NAME) -> Component:
    return Component(
        type="caseTable",
        name=f"{dataset_name}_table",
        values={
            "dataContext": dataset_name,
            "dimensions": {"width": 1000, "height": 800},
        },
        notifications=[{"request": "autoScale", "position": "bottom"}],
    )


@dataclass
class DataContext:
    description: Dict[str, Any]
    items: List[Dict[str, Any]] = field(default_factory=list)
    components: List[Component] = field(default_factory=list)


class DataContextStore:

    def __init__(self, description: Optional[Mapping[str, Any]] = None) -> None:
        self.description: Dict[str, Any] = copy.deepcopy(dict(description or DATASET_DESCRIPTION))
        self._allowed = set(attribute_names(self.description))
        self._contexts: Dict[str, DataContext] = {}
        self._lock = Lock()

    def init_dataset(self, session_id: str) -> None:
        """Declare the dataset for a session; a no-op if it already exists."""
        with self._lock:
            if session_id not in self._contexts:
                self._contexts[session_id] = DataContext(
                    description=copy.deepcopy(self.description)
                )

    def create_items(self, session_id: str, items: Iterable[Mapping[str, Any]]) -> int:
        """Append items to a session's dataset; returns how many were added."""
        batch = [dict(item) for item in items]
        for item in batch:
            unknown = sorted(set(item) - self._allowed)
            if unknown:
                raise ValueError(f"Item has undeclared attributes: {', '.join(unknown)}")
        with self._lock:
            context = self._require(session_id)
            context.items.extend(batch)
        return len(batch)

    def create_component(self, session_id: str, component: Component) -> Component:
        """Register a component, replacing an earlier one of the same type and name."""
        with self._lock:
            context = self._require(session_id)
            context.components = [
                existing
                for existing in context.components
                if (existing.type, existing.name) != (component.type, component.name)
            ]
            context.components.append(component.model_copy(deep=True))
        return component

    def items(self, session_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._require(session_id).items)

    def components(self, session_id: str) -> List[Component]:
        with self._lock:
            return [item.model_copy(deep=True) for item in self._require(session_id).components]

    def hierarchy(self, session_id: str) -> List[Dict[str, Any]]:
        """Group items by the declared collections: location → sensor → measures."""
        location_attrs = collection_attributes(self.description, "Search")
        sensor_attrs = collection_attributes(self.description, "Sensors")
        measure_attrs = collection_attributes(self.description, "Sensor Data")

        locations: Dict[tuple, Dict[str, Any]] = {}
        for item in self.items(session_id):
            location_key = tuple(item.get(name) for name in location_attrs)
            location = locations.setdefault(
                location_key,
                {
                    "values": {name: item.get(name) for name in location_attrs},
                    "sensors": {},
                },
            )
            sensor_key = tuple(item.get(name) for name in sensor_attrs)
            sensor = location["sensors"].setdefault(
                sensor_key,
                {
                    "values": {name: item.get(name) for name in sensor_attrs},
                    "measures": [],
                },
            )
            sensor["measures"].append({name: item.get(name) for name in measure_attrs})

        return [
            {"values": location["values"], "sensors": list(location["sensors"].values())}
            for location in locations.values()
        ]

    def _require(self, session_id: str) -> DataContext:
        context = self._contexts.get(session_id)
        if context is None:
            raise KeyError(f"Dataset for session {session_id!r} not found.")
        return context
