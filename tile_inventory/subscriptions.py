import asyncio
from typing import Awaitable, Callable, List, Optional

from tile_inventory.logging_config import get_child_logger
from tile_inventory.models.tile import TileRecord

logger = get_child_logger("subscriptions")

DEFAULT_POLL_SECONDS = 5.0


class LiveQuery:
    """
    A live subscription to a tile query.

    Runs the query, delivers the batch, then re-runs it every poll interval
    and delivers again only when the (id, etag) signature of the result
    changed. The first error is delivered to ``on_error`` and ends the
    subscription.

    ``unsubscribe`` takes effect immediately: no batch is delivered after it
    returns, even when a fetch is already in flight.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[List[TileRecord]]],
        on_next: Callable[[List[TileRecord]], Awaitable[None]],
        on_error: Callable[[Exception], Awaitable[None]],
        poll_interval: float = DEFAULT_POLL_SECONDS,
        name: str = "tiles",
    ):
        self._fetch = fetch
        self._on_next = on_next
        self._on_error = on_error
        self._poll_interval = poll_interval
        self._name = name
        self._closed = False
        self._task: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> "LiveQuery":
        if self._task is None and not self._closed:
            self._task = asyncio.create_task(self._run(), name=f"live-query:{self._name}")
        return self

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.debug("Live query unsubscribed", extra={"query": self._name})

    async def _run(self) -> None:
        previous = None
        while not self._closed:
            try:
                records = await self._fetch()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self._closed:
                    self._closed = True
                    logger.error(
                        "Live query failed",
                        extra={"query": self._name, "error_type": type(e).__name__},
                        exc_info=True,
                    )
                    await self._on_error(e)
                return

            if self._closed:
                return

            signature = [(record.id, record.etag) for record in records]
            if signature != previous:
                previous = signature
                try:
                    await self._on_next(records)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    # The consumer is gone; nothing left to deliver to
                    self._closed = True
                    logger.error(
                        "Live query delivery failed",
                        extra={"query": self._name},
                        exc_info=True,
                    )
                    return

            await asyncio.sleep(self._poll_interval)


class ListenerRegistry:
    """
    Single slot recording the live query one list view currently owns.

    Every open view has its own registry, so a view only ever replaces its
    own query. The auth session force-clears all of a user's registries on
    sign-out so a still-open query stops before the store starts rejecting it.
    """

    def __init__(self):
        self._current: Optional[LiveQuery] = None

    @property
    def current(self) -> Optional[LiveQuery]:
        return self._current

    def set(self, handle: LiveQuery) -> None:
        if self._current is not None and self._current is not handle:
            self._current.unsubscribe()
        self._current = handle

    def clear(self, handle: Optional[LiveQuery] = None) -> None:
        """Release the slot, but only when ``handle`` is still its owner."""
        if handle is None or self._current is handle:
            self._current = None

    def force_clear(self) -> None:
        if self._current is not None:
            self._current.unsubscribe()
            logger.info("Active live query force-cleared")
        self._current = None
