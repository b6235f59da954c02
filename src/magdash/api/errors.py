"""Exception hierarchy for the telemetry hub and its HTTP client."""

from __future__ import annotations

from typing import Any


class MagdashError(Exception):
    """Base class for all magdash errors."""


class RequestError(MagdashError):
    """A client request was rejected before any state was mutated.

    Carries the HTTP status the server answers with.
    """

    status_code: int = 400

    def __init__(self, message: str, *, details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class InvalidIngestError(RequestError):
    """Inbound telemetry is missing ``value`` or carries an unusable one."""


class InvalidCommandError(RequestError):
    """A command body (display override, non-object JSON) is malformed."""


class DurableStoreUnavailable(MagdashError):
    """The durable store failed, timed out, or is disabled.

    Never surfaced to request callers; reads fall back to memory.
    """


class SubscriberDeliveryError(MagdashError):
    """Sending a broadcast message to one subscriber failed."""

    def __init__(self, subscriber: str, message: str) -> None:
        super().__init__(f"Delivery to {subscriber} failed: {message}")
        self.subscriber = subscriber


class MalformedMessageError(MagdashError):
    """An inbound WebSocket message could not be interpreted."""


class ApiError(MagdashError):
    """The magdash server answered with a non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
