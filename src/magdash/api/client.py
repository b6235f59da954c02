"""Async HTTP client for a running magdash server."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from magdash.api.errors import ApiError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:3100"
DEFAULT_TIMEOUT = 10.0


class MagdashClient:
    """Thin wrapper over :class:`httpx.AsyncClient` for the REST endpoints.

    Usable as an async context manager::

        async with MagdashClient("http://pi.local:3100") as client:
            status = await client.get_status()
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> MagdashClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # -- Transport ------------------------------------------------------------

    async def get(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        resp = await self._client.get(path, params=params)
        return self._handle(resp)

    async def post(self, path: str, *, json: dict[str, Any] | None = None) -> Any:
        resp = await self._client.post(path, json=json if json is not None else {})
        return self._handle(resp)

    @staticmethod
    def _handle(resp: httpx.Response) -> Any:
        logger.debug("%s %s -> %d", resp.request.method, resp.request.url, resp.status_code)
        if resp.is_success:
            return resp.json()
        try:
            message = resp.json().get("error") or resp.text
        except (ValueError, AttributeError):
            message = resp.text or resp.reason_phrase
        raise ApiError(
            f"{resp.request.method} {resp.request.url.path} failed: {message}",
            status_code=resp.status_code,
        )

    # -- Endpoints ------------------------------------------------------------

    async def get_status(self) -> dict[str, Any]:
        result: dict[str, Any] = await self.get("/api/status")
        return result

    async def get_logs(self, limit: int | None = None) -> list[dict[str, Any]]:
        params = {"limit": limit} if limit is not None else None
        result: list[dict[str, Any]] = await self.get("/api/logs", params=params)
        return result

    async def get_chart(self, bucket_seconds: float | None = None) -> list[dict[str, Any]]:
        params = {"bucketSeconds": bucket_seconds} if bucket_seconds is not None else None
        data = await self.get("/api/chart", params=params)
        points: list[dict[str, Any]] = data.get("points", [])
        return points

    async def get_histogram(self, bins: int | None = None) -> list[dict[str, Any]]:
        params = {"bins": bins} if bins is not None else None
        data = await self.get("/api/histogram", params=params)
        result: list[dict[str, Any]] = data.get("bins", [])
        return result

    async def health(self) -> dict[str, Any]:
        result: dict[str, Any] = await self.get("/healthz")
        return result

    async def reset(self) -> None:
        await self.post("/api/reset")

    async def set_enabled(self, enabled: bool) -> bool:
        data = await self.post("/api/enable", json={"enabled": enabled})
        return bool(data.get("enabled", enabled))

    async def control(
        self, *, buzzer_on: bool | None = None, servo_angle: int | None = None
    ) -> None:
        body: dict[str, Any] = {}
        if buzzer_on is not None:
            body["buzzer_on"] = buzzer_on
        if servo_angle is not None:
            body["servo_angle"] = servo_angle
        await self.post("/api/control", json=body)

    async def ingest(self, value: float, **fields: Any) -> None:
        """Push one reading as if it came from the device."""
        body = {"value": value}
        body.update({k: v for k, v in fields.items() if v is not None})
        await self.post("/api/ingest", json=body)

    async def display(self, lines: list[str]) -> list[str]:
        data = await self.post("/api/display", json={"lines": lines})
        result: list[str] = data.get("lines", lines)
        return result
