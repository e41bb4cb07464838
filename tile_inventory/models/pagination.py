from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from tile_inventory.models.tile import TileCursor, TileGroup, TileRecord

ITEMS_PER_PAGE_OPTIONS = (5, 10, 25, 50)
DEFAULT_ITEMS_PER_PAGE = ITEMS_PER_PAGE_OPTIONS[1]


class QueryDirection(str, Enum):
    """
    Which boundary the next page query is built from.
    INITIAL: first page, no boundary
    NEXT: strictly after the last visible record
    PREV: strictly before the first record of the page being left
    """

    INITIAL = "initial"
    NEXT = "next"
    PREV = "prev"


class PageQuery(BaseModel):
    """
    A bounded query against the tile container.
    """

    direction: QueryDirection = QueryDirection.INITIAL
    limit: int = Field(DEFAULT_ITEMS_PER_PAGE, gt=0)
    cursor: Optional[TileCursor] = None

    model_config = ConfigDict(frozen=True)


class PaginationState(BaseModel):
    """
    Cursor bookkeeping for one list view.

    ``page_cursors[k]`` holds the cursor of the first record shown on
    page ``k + 1``, or None while that page has not been visited.
    """

    items_per_page: int = DEFAULT_ITEMS_PER_PAGE
    current_page: int = 1
    page_cursors: List[Optional[TileCursor]] = Field(default_factory=lambda: [None])
    first_visible: Optional[TileCursor] = None
    last_visible: Optional[TileCursor] = None
    query_direction: QueryDirection = QueryDirection.INITIAL
    total_count: Optional[int] = None

    def reset_cursors(self) -> None:
        self.page_cursors = [None]
        self.first_visible = None
        self.last_visible = None


class Notification(BaseModel):
    """
    A dismissible user-facing message.
    """

    title: str
    description: str
    variant: str = "default"


class TilePageSnapshot(BaseModel):
    """
    What the live list view pushes to the client after every change.
    """

    items: List[TileRecord]
    groups: List[TileGroup]
    current_page: int = Field(alias="currentPage")
    items_per_page: int = Field(alias="itemsPerPage")
    items_per_page_options: List[int] = Field(alias="itemsPerPageOptions")
    total_count: Optional[int] = Field(default=None, alias="totalCount")
    is_first_page: bool = Field(alias="isFirstPage")
    is_last_page: bool = Field(alias="isLastPage")
    is_loading: bool = Field(alias="isLoading")
    error: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)
