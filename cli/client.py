from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the explorer service."""

    def __init__(self, config: CLIConfig, transport: httpx.BaseTransport | None = None) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=30.0, transport=transport)

    def close(self) -> None:
        self._client.close()

    def search_places(self, text: str, max_rows: Optional[int] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"q": text}
        if max_rows is not None:
            params["max_rows"] = max_rows
        return self._request("GET", "/places", params=params)

    def convert_pm(self, pm: float) -> Dict[str, Any]:
        return self._request("GET", "/aqi", params={"pm": pm})

    def create_session(self) -> Dict[str, Any]:
        return self._request("POST", "/sessions")

    def search_location(self, session_id: str, query: str) -> Dict[str, Any]:
        return self._request("POST", f"/sessions/{session_id}/location", json={"query": query})

    def change_radius(self, session_id: str, radius_miles: float) -> Dict[str, Any]:
        return self._request(
            "PUT", f"/sessions/{session_id}/radius", json={"radius_miles": radius_miles}
        )

    def update_session(self, session_id: str, **fields: Any) -> Dict[str, Any]:
        return self._request("PATCH", f"/sessions/{session_id}", json=fields)

    def start_fetch(self, session_id: str) -> str:
        payload = self._request("POST", f"/sessions/{session_id}/fetch")
        job_id = payload.get("job_id")
        if not isinstance(job_id, str):
            raise typer.BadParameter("Unexpected response payload when starting a fetch.")
        return job_id

    def get_job(self, job_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/jobs/{job_id}")

    def get_dataset(self, session_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/sessions/{session_id}/dataset")

    def poll_job(
        self,
        job_id: str,
        interval: float,
        timeout: float,
        on_update: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> Dict[str, Any]:
        deadline = time.monotonic() + timeout
        last_payload: Dict[str, Any] | None = None
        while time.monotonic() <= deadline:
            last_payload = self.get_job(job_id)
            if on_update is not None:
                on_update(last_payload)
            status = last_payload.get("status")
            if status not in {"pending", "running"}:
                return last_payload
            time.sleep(interval)
        typer.secho(
            (
                f"Timed out waiting for fetch {job_id}. "
                f"Last status: {last_payload.get('status') if last_payload else 'unknown'}"
            ),
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(
                f"Could not reach {self._config.base_url}: {exc}", fg=typer.colors.RED, err=True
            )
            raise typer.Exit(code=1) from exc
        return response.json()

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
