from typing import Awaitable, Callable, List, Optional, Tuple

from tile_inventory.auth import AuthSession
from tile_inventory.exceptions import PermissionDeniedError
from tile_inventory.grouping import group_tiles
from tile_inventory.i18n import suffix_labeler, translate
from tile_inventory.logging_config import get_child_logger, tracer
from tile_inventory.models.pagination import (
    ITEMS_PER_PAGE_OPTIONS,
    DEFAULT_ITEMS_PER_PAGE,
    Notification,
    PageQuery,
    PaginationState,
    QueryDirection,
    TilePageSnapshot,
)
from tile_inventory.models.tile import TileCursor, TileRecord
from tile_inventory.subscriptions import DEFAULT_POLL_SECONDS, ListenerRegistry, LiveQuery

logger = get_child_logger("pagination")

FetchPage = Callable[[PageQuery], Awaitable[List[TileRecord]]]
CountTiles = Callable[[], Awaitable[int]]
Publish = Callable[[TilePageSnapshot], Awaitable[None]]
Notify = Callable[[Notification], Awaitable[None]]


async def _ignore(_):
    return None


class TilePaginator:
    """
    Cursor-based pagination for one live list view.

    Every page transition replaces the view's live query with a new bounded
    one. Delivered batches update the visible records and the cursor table
    used to step back without re-reading earlier pages.
    """

    def __init__(
        self,
        session: AuthSession,
        fetch_page: FetchPage,
        count_tiles: CountTiles,
        publish: Publish = _ignore,
        notify: Notify = _ignore,
        items_per_page: int = DEFAULT_ITEMS_PER_PAGE,
        poll_interval: float = DEFAULT_POLL_SECONDS,
        locale: Optional[str] = None,
    ):
        if items_per_page not in ITEMS_PER_PAGE_OPTIONS:
            raise ValueError(f"items_per_page must be one of {list(ITEMS_PER_PAGE_OPTIONS)}")
        self.session = session
        self.state = PaginationState(items_per_page=items_per_page)
        self.records: List[TileRecord] = []
        self.is_loading = True
        self.error: Optional[str] = None

        self._fetch_page = fetch_page
        self._count_tiles = count_tiles
        self._publish = publish
        self._notify = notify
        self._poll_interval = poll_interval
        self._locale = locale
        self._subscription: Optional[LiveQuery] = None
        self.registry: ListenerRegistry = session.open_registry()

    @property
    def is_first_page(self) -> bool:
        return self.state.current_page == 1

    @property
    def is_last_page(self) -> bool:
        per_page = self.state.items_per_page
        total = self.state.total_count
        return len(self.records) < per_page or (
            total is not None and self.state.current_page * per_page >= total
        )

    def snapshot(self) -> TilePageSnapshot:
        return TilePageSnapshot(
            items=self.records,
            groups=group_tiles(self.records, suffix_labeler(self._locale)),
            current_page=self.state.current_page,
            items_per_page=self.state.items_per_page,
            items_per_page_options=list(ITEMS_PER_PAGE_OPTIONS),
            total_count=self.state.total_count,
            is_first_page=self.is_first_page,
            is_last_page=self.is_last_page,
            is_loading=self.is_loading,
            error=self.error,
        )

    def plan(self, direction: QueryDirection) -> Tuple[PageQuery, int, QueryDirection]:
        """
        Decide the query for a page transition.

        Returns the query, the page it lands on and the direction actually
        used. NEXT without a last visible record and PREV without a cursor
        for the page being left fall back to the first page.
        """
        state = self.state
        per_page = state.items_per_page

        if direction == QueryDirection.NEXT and state.last_visible is not None:
            return (
                PageQuery(direction=direction, limit=per_page, cursor=state.last_visible),
                state.current_page + 1,
                direction,
            )

        if direction == QueryDirection.PREV and state.current_page > 1:
            slot = state.current_page - 1
            cursor = state.page_cursors[slot] if slot < len(state.page_cursors) else None
            if cursor is not None:
                return (
                    PageQuery(direction=direction, limit=per_page, cursor=cursor),
                    state.current_page - 1,
                    direction,
                )

        return PageQuery(direction=QueryDirection.INITIAL, limit=per_page), 1, QueryDirection.INITIAL

    async def start(self) -> None:
        await self.go_to_page(QueryDirection.INITIAL)
        await self.fetch_total_count()

    async def go_to_page(self, direction: QueryDirection) -> None:
        with tracer.start_as_current_span("go_to_page") as span:
            span.set_attribute("direction", direction.value)
            span.set_attribute("current_page", self.state.current_page)

            if not self.session.is_signed_in:
                await self._stop_signed_out()
                return

            page_query, target_page, used_direction = self.plan(direction)
            if used_direction != direction:
                logger.info(
                    "Page transition fell back to the first page",
                    extra={"requested": direction.value, "current_page": self.state.current_page},
                )

            if used_direction == QueryDirection.INITIAL:
                self.state.page_cursors = [None]

            self.state.query_direction = used_direction
            self.state.current_page = target_page
            self.is_loading = True
            span.set_attribute("target_page", target_page)

            self._subscribe(page_query, target_page, used_direction)
            await self._publish(self.snapshot())

    async def change_items_per_page(self, items_per_page: int) -> None:
        if items_per_page not in ITEMS_PER_PAGE_OPTIONS:
            raise ValueError(f"items_per_page must be one of {list(ITEMS_PER_PAGE_OPTIONS)}")
        self.state.items_per_page = items_per_page
        self.state.current_page = 1
        self.state.reset_cursors()
        await self.go_to_page(QueryDirection.INITIAL)

    async def fetch_total_count(self) -> None:
        if not self.session.is_signed_in:
            return
        try:
            self.state.total_count = await self._count_tiles()
        except Exception as e:
            # The total is advisory; the page query does not depend on it
            logger.warning(
                "Error fetching total tile count",
                extra={"error_type": type(e).__name__},
                exc_info=True,
            )
            return
        await self._publish(self.snapshot())

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self.registry.clear(self._subscription)
            self._subscription = None

    def dispose(self) -> None:
        """Close the live query and hand the view's registry back to the session."""
        self.close()
        self.session.release_registry(self.registry)

    def _subscribe(self, page_query: PageQuery, target_page: int, direction: QueryDirection) -> None:
        # The previous query is torn down before the next one is issued
        self.close()

        async def fetch():
            return await self._fetch_page(page_query)

        async def on_next(records):
            await self._apply_batch(records, target_page, direction)

        subscription = LiveQuery(
            fetch,
            on_next,
            self._handle_error,
            poll_interval=self._poll_interval,
            name=f"page-{target_page}",
        )
        self._subscription = subscription
        self.registry.set(subscription)
        subscription.start()

    async def _apply_batch(
        self, records: List[TileRecord], page: int, direction: QueryDirection
    ) -> None:
        state = self.state
        self.records = list(records)

        if records:
            first = TileCursor.from_record(records[0])
            state.first_visible = first
            state.last_visible = TileCursor.from_record(records[-1])

            if direction == QueryDirection.NEXT:
                slot = page - 1
                if len(state.page_cursors) <= slot:
                    state.page_cursors.extend([None] * (slot + 1 - len(state.page_cursors)))
                state.page_cursors[slot] = first
            elif direction == QueryDirection.INITIAL or page == 1:
                state.page_cursors = [first]
        elif page == 1:
            state.reset_cursors()

        self.is_loading = False
        self.error = None
        await self._publish(self.snapshot())

    async def _handle_error(self, exc: Exception) -> None:
        self.is_loading = False
        self.registry.clear(self._subscription)

        if not self.session.is_signed_in:
            self.records = []
        elif isinstance(exc, PermissionDeniedError):
            # Most likely a race with a sign-out in flight
            logger.warning("Tile query permission denied while signed in; suppressing")
            self.records = []
        else:
            self.error = translate("fetchErrorDescription", self._locale)
            await self._notify(
                Notification(
                    title=translate("fetchErrorTitle", self._locale),
                    description=str(exc),
                    variant="destructive",
                )
            )
        await self._publish(self.snapshot())

    async def _stop_signed_out(self) -> None:
        self.close()
        self.records = []
        self.is_loading = False
        self.state.reset_cursors()
        await self._publish(self.snapshot())
