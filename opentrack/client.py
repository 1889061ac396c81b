"""Async HTTP client for the tracking API, as used by compose integrations."""

from __future__ import annotations

from typing import Any

import httpx

from opentrack.core.logging import log_error, log_info


class TrackerClientError(RuntimeError):
    """Raised when the tracking backend responds with an error status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TrackerClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = str(base_url or "").strip().rstrip("/")
        if not self.base_url:
            raise TrackerClientError("Tracker backend URL is not configured")
        self._timeout = timeout
        self._transport = transport

    def absolute_url(self, path: str) -> str:
        return f"{self.base_url}{path if path.startswith('/') else f'/{path}'}"

    async def _request(self, method: str, path: str, *, json: Any | None = None) -> dict[str, Any]:
        url = self.absolute_url(path)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(method, url, json=json)
        except httpx.HTTPError as exc:
            log_error("Tracker backend request failed", method=method, url=url, error=str(exc))
            raise TrackerClientError(str(exc)) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {"data": payload}

        if response.status_code >= 400:
            message = payload.get("error") or f"Tracker backend responded with {response.status_code}"
            log_error(
                "Tracker backend returned an error",
                method=method,
                url=url,
                status_code=response.status_code,
                error=message,
            )
            raise TrackerClientError(str(message), status_code=response.status_code)
        return payload

    async def health(self) -> bool:
        try:
            payload = await self._request("GET", "/health")
        except TrackerClientError:
            return False
        return payload.get("status") == "ok"

    async def generate_pixel(self, subject: str, recipient: str) -> dict[str, Any]:
        payload = await self._request(
            "POST",
            "/api/pixel/generate",
            json={"subject": subject, "recipient": recipient},
        )
        log_info("Generated tracking pixel", tracking_id=payload.get("trackingId"))
        return payload

    async def get_tracking(self, tracking_id: str) -> dict[str, Any]:
        payload = await self._request("GET", f"/api/tracking/{tracking_id}")
        return payload.get("data") or {}

    async def list_tracking(self) -> dict[str, Any]:
        return await self._request("GET", "/api/tracking/all")

    async def delete_tracking(self, tracking_id: str) -> None:
        await self._request("DELETE", f"/api/tracking/{tracking_id}")

    async def remove_self_opens(self, tracking_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/api/tracking/{tracking_id}/remove-self-opens")
