"""
Reporter/Progress.py — Unbounded progress channel.

Crawlers and the executor emit :class:`~Models.ProgressUpdate` events
synchronously from inside their work; a :class:`ProgressStream` decouples
them from a consumer that may be slow (a console renderer, a websocket
push, ...).  ``emit`` never blocks, and no event emitted before ``close``
is dropped.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

from Models import ProgressUpdate

logger = logging.getLogger(__name__)

_CLOSED = object()


class ProgressStream:
    """FIFO of progress events with one async consumer.

    Usage::

        stream = ProgressStream()
        consumer = asyncio.create_task(stream.drain(render))
        await crawler.crawl(url)          # crawler built with on_progress=stream.emit
        stream.close()
        await consumer
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self.emitted = 0

    def emit(self, update: ProgressUpdate) -> None:
        """Enqueue *update*; usable directly as an ``on_progress`` callback."""
        if self._closed:
            logger.debug("Progress event after close dropped: %s", update.message)
            return
        self._queue.put_nowait(update)
        self.emitted += 1

    def close(self) -> None:
        """Signal the consumer to stop once every queued event is handled."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    async def drain(self, handler: Callable[[ProgressUpdate], Any]) -> int:
        """Feed queued events to *handler* in order until :meth:`close`.

        *handler* may be sync or async.  A handler error is logged and the
        stream keeps draining.  Returns the number of events handled.
        """
        handled = 0
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return handled
            try:
                outcome = handler(item)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:
                logger.warning("Progress handler raised %s: %s", type(exc).__name__, exc)
            handled += 1
