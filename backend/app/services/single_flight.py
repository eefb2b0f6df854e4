"""
Single-flight coordination for live rate fetches.

At most one fetch runs per key. Callers that arrive while a fetch for the
same key is running wait for that fetch and get the same rate or the same
exception. The slot is released when the fetch finishes either way; failures
are not remembered.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable

logger = logging.getLogger(__name__)


class SingleFlight:
    """Per-key deduplication of in-flight coroutines on one event loop."""

    def __init__(self):
        self._in_flight: Dict[Hashable, asyncio.Task] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._in_flight

    async def run(self, key: Hashable, fetch: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run ``fetch()`` for ``key`` unless a run for that key is already active.

        The lookup and registration below contain no ``await``, so they run as
        one step on the event loop and two callers can't both start a fetch.
        The fetch is a task owned by the coordinator: a caller that is
        cancelled stops waiting but the fetch keeps running for the others.
        """
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(fetch())
            self._in_flight[key] = task
            task.add_done_callback(lambda done, key=key: self._release(key, done))
        else:
            logger.debug(f"Joining in-flight fetch for {key}")
        return await asyncio.shield(task)

    def _release(self, key: Hashable, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled() and task.exception() is not None:
            # Retrieved here so an unawaited failure isn't logged as "never retrieved"
            logger.debug(f"In-flight fetch for {key} failed: {task.exception()}")
