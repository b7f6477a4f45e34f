"""Fire-and-forget handoff between the serving path and the collector.

The serving path calls ``submit``, which never blocks and never raises. A
single worker task drains the queue and runs the handler with a timeout.
Failures are counted and logged, never surfaced to the client.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Handler = Callable[[T], Coroutine[Any, Any, Any]]

DEFAULT_QUEUE_MAX_SIZE = 1000
DEFAULT_PROCESS_TIMEOUT_SECONDS = 5.0

# Log the first drop, then every Nth, to keep a saturated queue quiet.
_DROP_LOG_EVERY = 100


@dataclass
class DispatchStats:
    """Counters for the dispatcher.

    Attributes:
        submitted: Items accepted onto the queue.
        processed: Items the handler completed.
        dropped: Items rejected because the queue was full or stopped.
        timed_out: Items abandoned after the processing timeout.
        failed: Items whose handler raised.
    """

    submitted: int = 0
    processed: int = 0
    dropped: int = 0
    timed_out: int = 0
    failed: int = 0


class ObservationDispatcher(Generic[T]):
    """Bounded asyncio queue with a single consuming worker.

    Example:
        ```python
        dispatcher = ObservationDispatcher(collector.collect)
        await dispatcher.start()
        dispatcher.submit(exchange)
        await dispatcher.stop()
        ```
    """

    def __init__(
        self,
        handler: Handler[T],
        max_queue_size: int = DEFAULT_QUEUE_MAX_SIZE,
        process_timeout: float = DEFAULT_PROCESS_TIMEOUT_SECONDS,
    ) -> None:
        self._handler = handler
        self._max_queue_size = max_queue_size
        self._process_timeout = process_timeout
        self._queue: asyncio.Queue[T] | None = None
        self._worker: asyncio.Task[None] | None = None
        self.stats = DispatchStats()

    @property
    def running(self) -> bool:
        """Return True while the worker task is alive."""
        return self._worker is not None and not self._worker.done()

    def _get_queue(self) -> asyncio.Queue[T]:
        """Get or create the queue (lazy to avoid event loop issues)."""
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._max_queue_size)
        return self._queue

    def submit(self, item: T) -> bool:
        """Enqueue an item without waiting.

        Returns:
            True if the item was queued, False if it was dropped.
        """
        if not self.running:
            self._record_drop("dispatcher not running")
            return False
        try:
            self._get_queue().put_nowait(item)
        except asyncio.QueueFull:
            self._record_drop("queue full")
            return False
        self.stats.submitted += 1
        return True

    def _record_drop(self, reason: str) -> None:
        self.stats.dropped += 1
        if self.stats.dropped == 1 or self.stats.dropped % _DROP_LOG_EVERY == 0:
            logger.warning(
                "Dropped observation (%s); %d dropped so far",
                reason,
                self.stats.dropped,
            )

    async def start(self) -> None:
        """Start the worker task. Calling start twice is a no-op."""
        if self.running:
            return
        queue = self._get_queue()
        self._worker = asyncio.create_task(self._run(queue))

    async def stop(self, drain: bool = True) -> None:
        """Stop the worker.

        Args:
            drain: Wait for queued items to be processed before stopping.
                   Otherwise pending items are discarded.
        """
        if self._worker is None:
            return
        if drain and self._queue is not None and not self._worker.done():
            await self._queue.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._queue = None

    async def join(self) -> None:
        """Wait until every queued item has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def _run(self, queue: asyncio.Queue[T]) -> None:
        while True:
            item = await queue.get()
            try:
                await self._handle(item)
            finally:
                queue.task_done()

    async def _handle(self, item: T) -> None:
        try:
            await asyncio.wait_for(self._handler(item), timeout=self._process_timeout)
        except asyncio.TimeoutError:
            self.stats.timed_out += 1
            logger.warning(
                "Observation processing timed out after %.1fs", self._process_timeout
            )
        except Exception:
            self.stats.failed += 1
            logger.exception("Observation processing failed")
        else:
            self.stats.processed += 1
