import csv
import io
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query, status
from fastapi.responses import StreamingResponse
from azure.cosmos.aio import ContainerProxy

from tile_inventory.auth import AuthSession, get_session
from tile_inventory.crud.tile_crud import (
    count_tiles,
    get_tile_by_id,
    list_tiles,
    query_tile_page,
)
from tile_inventory.db import ContainerType, get_container
from tile_inventory.exceptions import (
    DatabaseError,
    PermissionDeniedError,
    StoreInitializationError,
    TileNotFoundError,
)
from tile_inventory.grouping import filter_tiles, format_dimension, group_tiles
from tile_inventory.i18n import suffix_labeler
from tile_inventory.logging_config import get_child_logger, tracer
from tile_inventory.models.pagination import (
    ITEMS_PER_PAGE_OPTIONS,
    DEFAULT_ITEMS_PER_PAGE,
    PageQuery,
    QueryDirection,
)
from tile_inventory.models.tile import TileCount, TileCursor, TileGroup, TileList, TileRecord

logger = get_child_logger("routes.tile")

router = APIRouter(prefix="/tiles", tags=["tiles"])


async def get_tiles_container() -> ContainerProxy:
    try:
        return await get_container(ContainerType.TILES)
    except StoreInitializationError as e:
        logger.error(f"Tile store unavailable: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="The tile store is not available.",
        )


def request_locale(
    locale: Optional[str] = Query(None, title="Locale for display labels"),
    accept_language: Optional[str] = Header(None, alias="Accept-Language"),
) -> Optional[str]:
    return locale or accept_language


def raise_http_error(e: Exception, action: str):
    """
    Convert an application error raised by the CRUD layer to an HTTP error.
    """
    if isinstance(e, TileNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, PermissionDeniedError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if isinstance(e, DatabaseError):
        logger.error(f"Database error during {action}: {e}", exc_info=e.original_exception)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="A database error occurred.",
        )
    logger.error(f"Unexpected error during {action}: {e}", exc_info=True)
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected internal server error occurred.",
    )


@router.get("/", response_model=TileList)
async def get_tiles(
    limit: int = Query(DEFAULT_ITEMS_PER_PAGE, title="Maximum number of items to return"),
    direction: QueryDirection = Query(QueryDirection.INITIAL, title="Page direction"),
    cursor: Optional[str] = Query(None, title="Cursor token for pagination"),
    session: AuthSession = Depends(get_session),
    container: ContainerProxy = Depends(get_tiles_container),
    locale: Optional[str] = Depends(request_locale),
):
    if limit not in ITEMS_PER_PAGE_OPTIONS:
        raise ValueError(f"limit must be one of {list(ITEMS_PER_PAGE_OPTIONS)}")

    with tracer.start_as_current_span("api_get_tiles") as span:
        span.set_attribute("limit", limit)
        span.set_attribute("direction", direction.value)

        page_cursor = TileCursor.decode(cursor) if cursor else None
        if direction != QueryDirection.INITIAL and page_cursor is None:
            direction = QueryDirection.INITIAL

        try:
            records = await query_tile_page(
                container,
                session.user.user_id,
                PageQuery(direction=direction, limit=limit, cursor=page_cursor),
            )
        except Exception as e:
            span.set_attribute("error", True)
            raise_http_error(e, "tile listing")

        next_cursor = prev_cursor = None
        if records:
            if len(records) == limit:
                next_cursor = TileCursor.from_record(records[-1]).encode()
            if direction != QueryDirection.INITIAL:
                prev_cursor = TileCursor.from_record(records[0]).encode()

        span.set_attribute("tiles.count", len(records))
        return TileList(
            items=records,
            groups=group_tiles(records, suffix_labeler(locale)),
            next_cursor=next_cursor,
            prev_cursor=prev_cursor,
        )


@router.get("/count", response_model=TileCount)
async def get_tile_count(
    session: AuthSession = Depends(get_session),
    container: ContainerProxy = Depends(get_tiles_container),
):
    try:
        return TileCount(total=await count_tiles(container, session.user.user_id))
    except Exception as e:
        raise_http_error(e, "tile count")


async def _load_groups(
    container: ContainerProxy,
    session: AuthSession,
    locale: Optional[str],
    type_term: Optional[str],
    width: Optional[str],
    height: Optional[str],
) -> List[TileGroup]:
    label = suffix_labeler(locale)
    try:
        records = await list_tiles(container, session.user.user_id)
    except Exception as e:
        raise_http_error(e, "group listing")
    return group_tiles(filter_tiles(records, type_term, width, height, label), label)


@router.get("/groups", response_model=List[TileGroup])
async def get_tile_groups(
    type_term: Optional[str] = Query(None, alias="type", title="Search by type"),
    width: Optional[str] = Query(None, title="Search by width"),
    height: Optional[str] = Query(None, title="Search by height"),
    session: AuthSession = Depends(get_session),
    container: ContainerProxy = Depends(get_tiles_container),
    locale: Optional[str] = Depends(request_locale),
):
    return await _load_groups(container, session, locale, type_term, width, height)


@router.get("/groups/export")
async def export_tile_groups(
    type_term: Optional[str] = Query(None, alias="type", title="Search by type"),
    width: Optional[str] = Query(None, title="Search by width"),
    height: Optional[str] = Query(None, title="Search by height"),
    session: AuthSession = Depends(get_session),
    container: ContainerProxy = Depends(get_tiles_container),
    locale: Optional[str] = Depends(request_locale),
):
    groups = await _load_groups(container, session, locale, type_term, width, height)

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["Model Number Prefix", "Width", "Height", "Type", "Quantity"])
    for group in groups:
        for variant in group.variants:
            writer.writerow(
                [
                    group.model_number_prefix,
                    format_dimension(group.width),
                    format_dimension(group.height),
                    variant.label,
                    variant.quantity,
                ]
            )

    return StreamingResponse(
        iter([buffer.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="tile-inventory.csv"'},
    )


@router.get("/{tile_id}", response_model=TileRecord)
async def get_tile(
    tile_id: str = Path(..., title="The ID of the tile to retrieve"),
    session: AuthSession = Depends(get_session),
    container: ContainerProxy = Depends(get_tiles_container),
):
    try:
        return await get_tile_by_id(container, session.user.user_id, tile_id)
    except Exception as e:
        raise_http_error(e, f"retrieving tile {tile_id}")
