"""Best-effort durable mirroring of samples and detection events.

The live state never depends on the durable store.  Writes are handed to a
:class:`StoreMirror`, which owns a bounded queue and a single background
worker; the caller only does a ``put_nowait``.  A full queue drops the write,
and every store call is bounded by a timeout, so a slow or dead store cannot
push back on ingestion.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from magdash.api.errors import DurableStoreUnavailable
from magdash.telemetry.buffer import Sample

if TYPE_CHECKING:
    from magdash.telemetry.ledger import DetectionEvent

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000
DEFAULT_TIMEOUT = 5.0


class DurableStore:
    """Append-only sink with a best-effort read-back of detections."""

    async def insert_sample(self, sample: Sample) -> None:
        raise NotImplementedError

    async def insert_detection(self, event: DetectionEvent) -> None:
        raise NotImplementedError

    async def read_detections(self, limit: int) -> list[DetectionEvent]:
        """Return up to *limit* detection events, newest first."""
        raise NotImplementedError

    def close(self) -> None:  # noqa: B027
        """Release any held resources."""


class NullStore(DurableStore):
    """Store used when persistence is disabled: writes vanish, reads fail."""

    async def insert_sample(self, sample: Sample) -> None:
        return None

    async def insert_detection(self, event: DetectionEvent) -> None:
        return None

    async def read_detections(self, limit: int) -> list[DetectionEvent]:
        raise DurableStoreUnavailable("durable store disabled")


class StoreMirror:
    """Bounded work queue that forwards writes to a :class:`DurableStore`.

    Parameters:
        store: Destination store.
        timeout: Upper bound in seconds for every store call.
        maxsize: Queue capacity; writes beyond it are dropped and counted.
    """

    def __init__(
        self,
        store: DurableStore,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        maxsize: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self._store = store
        self._timeout = timeout
        self._queue: asyncio.Queue[Sample | DetectionEvent | None] = asyncio.Queue(
            maxsize=maxsize
        )
        self._task: asyncio.Task[None] | None = None
        self._written = 0
        self._dropped = 0
        self._failed = 0

    # -- Properties -----------------------------------------------------------

    @property
    def store(self) -> DurableStore:
        return self._store

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def written_count(self) -> int:
        return self._written

    @property
    def dropped_count(self) -> int:
        return self._dropped

    @property
    def failed_count(self) -> int:
        return self._failed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # -- Producer side --------------------------------------------------------

    def submit(self, item: Sample | DetectionEvent) -> bool:
        """Queue *item* for the store without waiting.  Returns ``False`` if dropped."""
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self._dropped += 1
            if self._dropped % 100 == 1:
                logger.warning(
                    "Durable mirror queue full; dropped %d writes so far", self._dropped
                )
            return False
        return True

    # -- Lifecycle ------------------------------------------------------------

    def start(self) -> None:
        """Start the background worker on the running loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="store-mirror")

    async def stop(self, drain_timeout: float | None = None) -> None:
        """Flush what is queued (within *drain_timeout*) and stop the worker."""
        if self._task is not None and not self._task.done():
            try:
                await asyncio.wait_for(
                    self._drain(),
                    timeout=drain_timeout if drain_timeout is not None else self._timeout,
                )
            except TimeoutError:
                logger.warning("Durable mirror did not drain in time; %d writes lost", self.pending)
                self._task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._task
        self._task = None
        self._store.close()

    async def _drain(self) -> None:
        # The sentinel waits for room behind the queued writes.
        await self._queue.put(None)
        if self._task is not None:
            await asyncio.shield(self._task)

    # -- Worker ---------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            try:
                if isinstance(item, Sample):
                    await asyncio.wait_for(self._store.insert_sample(item), self._timeout)
                else:
                    await asyncio.wait_for(self._store.insert_detection(item), self._timeout)
                self._written += 1
            except TimeoutError:
                self._failed += 1
                logger.warning("Durable store write timed out after %.1fs", self._timeout)
            except Exception:
                self._failed += 1
                logger.warning("Durable store write failed", exc_info=True)
