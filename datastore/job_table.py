from __future__ import annotations

from threading import Lock
from typing import Any, Dict, Optional

from app.schemas import FetchJob


class FetchJobTable:
    """In-memory table of fetch jobs keyed by job id.

    Items are stored and returned as deep copies so callers never share state
    with the worker thread that updates them.
    """

    def __init__(self, name: str = "fetch_jobs") -> None:
        self.name = name
        self._items: Dict[str, FetchJob] = {}
        self._lock = Lock()

    def put_item(self, item: FetchJob) -> None:
        with self._lock:
            self._items[item.job_id] = item.model_copy(deep=True)

    def get_item(self, key: str) -> Optional[FetchJob]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            return item.model_copy(deep=True)

    def update_item(self, key: str, **changes: Any) -> FetchJob:
        """Apply field changes to a stored job and return the updated copy."""
        with self._lock:
            item = self._items.get(key)
            if item is None:
                raise KeyError(f"Fetch job {key!r} not found.")
            updated = item.model_copy(update=changes, deep=True)
            self._items[key] = updated
            return updated.model_copy(deep=True)

    def scan(self, session_id: Optional[str] = None) -> list[FetchJob]:
        """Return deep copies of stored jobs, optionally only one session's."""

        with self._lock:
            return [
                item.model_copy(deep=True)
                for item in self._items.values()
                if session_id is None or item.session_id == session_id
            ]
