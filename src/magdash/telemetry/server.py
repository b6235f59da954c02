"""Starlette application: REST endpoints and the two WebSocket channels.

``/ws/telemetry`` carries broadcasts to dashboards; ``/ws/device`` carries
actuator commands to the detector and accepts its telemetry pushes.  All
state lives on one :class:`~magdash.telemetry.pipeline.IngestPipeline`
stored at ``app.state.pipeline``.
"""

from __future__ import annotations

import contextlib
import json
import logging
import math
from pathlib import Path
from typing import TYPE_CHECKING, Any

from starlette.applications import Starlette
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute

from magdash import __version__
from magdash._internal.rounding import js_round
from magdash.api.errors import (
    InvalidCommandError,
    InvalidIngestError,
    MalformedMessageError,
    RequestError,
)
from magdash.models.config import AppSettings
from magdash.telemetry.buffer import SampleBuffer
from magdash.telemetry.csv_sink import CSVStore, resolve_data_dir
from magdash.telemetry.ledger import DetectionLedger
from magdash.telemetry.pipeline import IngestPipeline
from magdash.telemetry.store import StoreMirror

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from starlette.requests import Request
    from starlette.websockets import WebSocket

logger = logging.getLogger(__name__)

MAX_HISTOGRAM_BINS = 256


def build_pipeline(settings: AppSettings) -> IngestPipeline:
    """Wire a pipeline (and its CSV store, unless disabled) from *settings*."""
    mirror: StoreMirror | None = None
    if settings.store_enabled:
        directory = resolve_data_dir(Path(settings.data_dir).expanduser() / "data")
        mirror = StoreMirror(
            CSVStore(directory),
            timeout=settings.store_timeout,
            maxsize=settings.mirror_queue_size,
        )
        logger.info("Durable store: %s", directory)
    else:
        logger.info("Durable store disabled; detection log is memory-only")

    return IngestPipeline(
        buffer=SampleBuffer(settings.retention_seconds),
        ledger=DetectionLedger(
            mirror,
            capacity=settings.ledger_capacity,
            compact_to=min(settings.ledger_compact_to, settings.ledger_capacity),
        ),
        mirror=mirror,
        queue_size=settings.subscriber_queue_size,
        send_timeout=settings.send_timeout,
    )


# -- Request helpers ---------------------------------------------------------


def _pipeline(conn: Request | WebSocket) -> IngestPipeline:
    pipeline: IngestPipeline = conn.app.state.pipeline
    return pipeline


def _settings(conn: Request | WebSocket) -> AppSettings:
    settings: AppSettings = conn.app.state.settings
    return settings


async def _json_body(
    request: Request, error: type[RequestError] = InvalidCommandError
) -> Any:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise error("request body is not valid JSON") from exc


def _float_param(request: Request, name: str, default: float) -> float:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RequestError(f"{name} must be a number") from None
    if not math.isfinite(value):
        raise RequestError(f"{name} must be a finite number")
    return value


def _int_param(request: Request, name: str, default: int) -> int:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RequestError(f"{name} must be an integer") from None


def _peer(websocket: WebSocket) -> str:
    client = websocket.client
    if client is None:
        return "unknown"
    return f"{client.host}:{client.port}"


# -- Error handling ----------------------------------------------------------


async def _request_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestError)
    body: dict[str, Any] = {"ok": False, "error": str(exc)}
    if exc.details:
        body["details"] = exc.details
    logger.debug("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(body, status_code=exc.status_code)


# -- HTTP endpoints ----------------------------------------------------------


async def status(request: Request) -> JSONResponse:
    return JSONResponse(_pipeline(request).status().to_dict())


async def logs(request: Request) -> JSONResponse:
    cap = _settings(request).logs_limit
    limit = _int_param(request, "limit", cap)
    if limit < 1:
        raise RequestError("limit must be at least 1")
    events = await _pipeline(request).logs(min(limit, cap))
    return JSONResponse([event.to_dict() for event in events])


async def chart(request: Request) -> JSONResponse:
    step = _float_param(request, "bucketSeconds", _settings(request).chart_bucket_seconds)
    if step < 1:
        raise RequestError("bucketSeconds must be at least 1")
    points = _pipeline(request).chart(step)
    return JSONResponse({"points": [{"t": js_round(p.t * 1000), "avg": p.avg} for p in points]})


async def histogram(request: Request) -> JSONResponse:
    bins = _int_param(request, "bins", _settings(request).histogram_bins)
    if not 1 <= bins <= MAX_HISTOGRAM_BINS:
        raise RequestError(f"bins must be between 1 and {MAX_HISTOGRAM_BINS}")
    return JSONResponse(
        {"bins": [{"i": b.i, "count": b.count} for b in _pipeline(request).histogram(bins)]}
    )


async def reset(request: Request) -> JSONResponse:
    _pipeline(request).reset()
    return JSONResponse({"ok": True})


async def enable(request: Request) -> JSONResponse:
    enabled = _pipeline(request).set_enabled(await _json_body(request))
    return JSONResponse({"ok": True, "enabled": enabled})


async def control(request: Request) -> JSONResponse:
    _pipeline(request).control(await _json_body(request))
    return JSONResponse({"ok": True})


async def ingest(request: Request) -> JSONResponse:
    _pipeline(request).ingest(await _json_body(request, InvalidIngestError))
    return JSONResponse({"ok": True})


async def display(request: Request) -> JSONResponse:
    lines = _pipeline(request).override_display(await _json_body(request))
    return JSONResponse({"ok": True, "lines": list(lines)})


async def healthz(request: Request) -> JSONResponse:
    pipeline = _pipeline(request)
    return JSONResponse(
        {
            "ok": True,
            "version": __version__,
            "viewers": pipeline.viewer_hub.subscriber_count,
            "devices": pipeline.device_hub.subscriber_count,
        }
    )


# -- WebSocket endpoints -----------------------------------------------------


async def viewer_socket(websocket: WebSocket) -> None:
    """Dashboard channel: server-to-client broadcasts; inbound frames ignored."""
    hub = _pipeline(websocket).viewer_hub
    await websocket.accept()
    sub = hub.subscribe(websocket.send_text, name=f"viewer {_peer(websocket)}")
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except Exception:
        logger.debug("Viewer socket closed: %s", sub.name, exc_info=True)
    finally:
        hub.unsubscribe(sub)


def handle_device_message(pipeline: IngestPipeline, message: dict[str, Any]) -> None:
    """Interpret one inbound ``/ws/device`` frame.

    Raises :class:`MalformedMessageError` for anything that is not a JSON
    telemetry object (or a ``ping``, which is ignored).
    """
    text = message.get("text")
    if text is None:
        raise MalformedMessageError("binary frames are not accepted")
    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise MalformedMessageError("frame is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise MalformedMessageError("frame is not a JSON object")

    kind = payload.get("type", "telemetry")
    if kind == "ping":
        return
    if kind != "telemetry":
        raise MalformedMessageError(f"unknown message type {kind!r}")
    try:
        pipeline.ingest(payload)
    except InvalidIngestError as exc:
        raise MalformedMessageError(str(exc)) from exc


async def device_socket(websocket: WebSocket) -> None:
    """Device channel: actuator commands out, telemetry pushes in."""
    pipeline = _pipeline(websocket)
    hub = pipeline.device_hub
    await websocket.accept()
    sub = hub.subscribe(websocket.send_text, name=f"device {_peer(websocket)}")
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            try:
                handle_device_message(pipeline, message)
            except MalformedMessageError as exc:
                logger.debug("Dropped message from %s: %s", sub.name, exc)
    except Exception:
        logger.debug("Device socket closed: %s", sub.name, exc_info=True)
    finally:
        hub.unsubscribe(sub)


# -- Application -------------------------------------------------------------


def create_app(
    settings: AppSettings | None = None,
    *,
    pipeline: IngestPipeline | None = None,
) -> Starlette:
    """Build the ASGI app.

    Parameters:
        settings: Defaults to :class:`AppSettings` read from the environment.
        pipeline: Pre-built pipeline (tests); otherwise built from *settings*.
    """
    settings = settings or AppSettings()
    pipeline = pipeline or build_pipeline(settings)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        if pipeline.mirror is not None:
            pipeline.mirror.start()
        logger.info("magdash %s ready", __version__)
        try:
            yield
        finally:
            await pipeline.viewer_hub.close()
            await pipeline.device_hub.close()
            if pipeline.mirror is not None:
                await pipeline.mirror.stop()
            logger.info(
                "magdash stopped after %d ingests (%d rejected)",
                pipeline.ingest_count,
                pipeline.rejected_count,
            )

    routes = [
        Route("/api/status", status, methods=["GET"]),
        Route("/api/logs", logs, methods=["GET"]),
        Route("/api/chart", chart, methods=["GET"]),
        Route("/api/histogram", histogram, methods=["GET"]),
        Route("/api/reset", reset, methods=["POST"]),
        Route("/api/enable", enable, methods=["POST"]),
        Route("/api/control", control, methods=["POST"]),
        Route("/api/ingest", ingest, methods=["POST"]),
        Route("/api/display", display, methods=["POST"]),
        Route("/healthz", healthz, methods=["GET"]),
        WebSocketRoute("/ws/telemetry", viewer_socket),
        WebSocketRoute("/ws/device", device_socket),
    ]

    app = Starlette(
        routes=routes,
        exception_handlers={RequestError: _request_error},
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.pipeline = pipeline
    return app
