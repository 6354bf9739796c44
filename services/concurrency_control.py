"""
Concurrency control for input-driven fetches.

Fetches triggered by changing inputs (the active-coupon list for the current
cart total) are debounced and tagged with a generation number. Only the
result of the latest generation is ever handed back; anything superseded is
cancelled or discarded.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from settings import COUPON_FETCH_DEBOUNCE_MS

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LatestResultGuard:
    """
    Debounced latest-wins runner.

    Each ``run`` call starts a new generation, cancels the pending fetch of
    the previous one, waits ``debounce_ms`` and then awaits the fetch. A run
    whose generation has been superseded returns ``None`` instead of its
    result.
    """

    def __init__(self, debounce_ms: int = COUPON_FETCH_DEBOUNCE_MS, name: str = "fetch"):
        self.debounce_seconds = max(debounce_ms, 0) / 1000
        self.name = name
        self._generation = 0
        self._pending: Optional[asyncio.Task] = None

    @property
    def generation(self) -> int:
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def cancel(self) -> None:
        """Invalidate whatever is in flight (e.g. the consumer went away)."""
        self._generation += 1
        self._cancel_pending()

    def _cancel_pending(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    async def _debounced(self, fetch: Callable[[], Awaitable[T]]) -> T:
        if self.debounce_seconds:
            await asyncio.sleep(self.debounce_seconds)
        return await fetch()

    async def run(self, fetch: Callable[[], Awaitable[T]]) -> Optional[T]:
        """
        Run ``fetch`` as the newest generation.

        Returns:
            The fetch result, or None when a newer run superseded this one.
            Exceptions from the fetch propagate only for the current generation.
        """
        self._generation += 1
        generation = self._generation
        self._cancel_pending()

        task = asyncio.ensure_future(self._debounced(fetch))
        self._pending = task
        try:
            result = await task
        except asyncio.CancelledError:
            if task.cancelled() and not self.is_current(generation):
                logger.debug(f"{self.name}: generation {generation} superseded before completion")
                return None
            raise
        except Exception:
            if not self.is_current(generation):
                logger.debug(f"{self.name}: dropping error from stale generation {generation}")
                return None
            raise
        finally:
            if self._pending is task:
                self._pending = None

        if not self.is_current(generation):
            logger.debug(f"{self.name}: discarding stale result of generation {generation}")
            return None
        return result
