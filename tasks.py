"""
Background work for the front end.

Long operations (fetching, LLM triage, batch updates) run on a worker thread
and hand results back through a Future. Batch-update progress is streamed over
a ProgressChannel that the worker closes when it is done, so a consumer
looping over the channel always stops.
"""

import logging
import queue
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Iterator, List, Optional, Tuple

from models import BatchUpdateProgress, BatchUpdateResult, UpdateRequest

logger = logging.getLogger(__name__)

_CLOSED = object()


class ProgressChannel:
    """Single-producer, single-consumer stream of progress events."""

    def __init__(self):
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._closed = False

    def send(self, event: BatchUpdateProgress) -> None:
        if self._closed:
            raise RuntimeError("send on closed progress channel")
        self._queue.put(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    def receive(self, timeout: Optional[float] = None) -> Optional[BatchUpdateProgress]:
        """Next event, or None once the channel is closed and drained."""
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            self._queue.put(_CLOSED)  # keep later receives returning None
            return None
        return item

    def __iter__(self) -> Iterator[BatchUpdateProgress]:
        while True:
            event = self.receive()
            if event is None:
                return
            yield event


class BackgroundTasks:
    """One worker thread; operations queue behind each other."""

    def __init__(self):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="triage")

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> Future:
        return self._executor.submit(fn, *args, **kwargs)

    def start_batch_update(
        self, client, updates: List[UpdateRequest]
    ) -> Tuple["Future[BatchUpdateResult]", ProgressChannel]:
        channel = ProgressChannel()

        def run() -> BatchUpdateResult:
            try:
                return client.batch_update(updates, progress=channel)
            finally:
                channel.close()

        future = self._executor.submit(run)
        logger.debug(f"Queued batch update of {len(updates)} documents")
        # A batch cancelled before it started never reaches the finally above.
        future.add_done_callback(lambda f: channel.close() if f.cancelled() else None)
        return future, channel

    def shutdown(self) -> None:
        """Drop queued work; an HTTP call already in flight is left to finish."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "BackgroundTasks":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
