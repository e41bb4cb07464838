from azure.cosmos.exceptions import CosmosHttpResponseError
from azure.cosmos.aio import ContainerProxy
from typing import Any, Dict, List, Tuple
from datetime import datetime, timezone

from pydantic import ValidationError

from tile_inventory.models.tile import NO_PREFIX, TileGroupRef, TileRecord
from tile_inventory.models.pagination import PageQuery, QueryDirection

from tile_inventory.exceptions import (
    TileNotFoundError,
    PermissionDeniedError,
    DatabaseError,
)

from tile_inventory.logging_config import get_child_logger, tracer

logger = get_child_logger("crud.tile")

ORDER_DESC = "ORDER BY c.createdAt DESC, c.id DESC"
ORDER_ASC = "ORDER BY c.createdAt ASC, c.id ASC"

# Legacy records without createdAt sort after every timestamped record in DESC order
MISSING_CREATED_AT = "(NOT IS_DEFINED(c.createdAt) OR IS_NULL(c.createdAt))"
HAS_CREATED_AT = "(IS_DEFINED(c.createdAt) AND NOT IS_NULL(c.createdAt))"


def format_timestamp(value: datetime) -> str:
    """
    Timestamps are stored as fixed-width UTC ISO strings so that string
    order in the container equals time order.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utc_now() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def translate_cosmos_error(e: CosmosHttpResponseError, action: str, **context) -> Exception:
    """
    Map a Cosmos DB HTTP error to the application exception the caller
    should raise.
    """
    if e.status_code in (401, 403):
        logger.warning(
            f"Permission denied during {action}",
            extra={"status_code": e.status_code, **context},
        )
        return PermissionDeniedError(f"Permission denied during {action}.")

    logger.error(
        f"Cosmos DB error during {action}",
        extra={"status_code": e.status_code, "cosmos_message": e.message, **context},
        exc_info=True,
    )
    return DatabaseError(
        f"Cosmos DB error during {action}: Status Code {e.status_code}, Message: {e.message}",
        original_exception=e,
    )


def _to_records(items: List[Dict[str, Any]]) -> List[TileRecord]:
    records = []
    for item in items:
        try:
            records.append(TileRecord.model_validate(item))
        except ValidationError as e:
            logger.debug(f"Pydantic validation errors: {e.errors()}")
            continue
    return records


def build_page_query(user_id: str, page_query: PageQuery) -> Tuple[str, List[Dict[str, Any]]]:
    """
    Build the SQL for one page of a user's tiles.

    NEXT pages start strictly after the cursor in ``createdAt DESC, id DESC``
    order. PREV pages end strictly before it; they are read in ascending
    order so TOP keeps the records closest to the cursor, and must be
    reversed by the caller. Records without a createdAt come after every
    timestamped record, ordered by id alone.
    """
    params = [
        {"name": "@userId", "value": user_id},
        {"name": "@limit", "value": page_query.limit},
    ]
    where = "c.userId = @userId"
    order = ORDER_DESC
    cursor = page_query.cursor

    if page_query.direction != QueryDirection.INITIAL and cursor is not None:
        forward = page_query.direction == QueryDirection.NEXT
        op = "<" if forward else ">"
        if cursor.created_at is None:
            if forward:
                where += f" AND {MISSING_CREATED_AT} AND c.id < @cursorId"
            else:
                where += f" AND ({HAS_CREATED_AT} OR ({MISSING_CREATED_AT} AND c.id > @cursorId))"
        else:
            tail = f" OR {MISSING_CREATED_AT}" if forward else ""
            where += (
                f" AND (c.createdAt {op} @cursorCreatedAt"
                f" OR (c.createdAt = @cursorCreatedAt AND c.id {op} @cursorId){tail})"
            )
            params.append({"name": "@cursorCreatedAt", "value": format_timestamp(cursor.created_at)})
        params.append({"name": "@cursorId", "value": cursor.id})
        if page_query.direction == QueryDirection.PREV:
            order = ORDER_ASC

    return f"SELECT TOP @limit * FROM c WHERE {where} {order}", params


async def query_tile_page(
    container: ContainerProxy,
    user_id: str,
    page_query: PageQuery,
) -> List[TileRecord]:
    """
    Retrieve one bounded page of a user's tiles, newest first.
    """
    with tracer.start_as_current_span("query_tile_page") as span:
        span.set_attribute("direction", page_query.direction.value)
        span.set_attribute("limit", page_query.limit)
        span.set_attribute("has_cursor", page_query.cursor is not None)

        query, params = build_page_query(user_id, page_query)

        try:
            items = [
                item
                async for item in container.query_items(
                    query=query, parameters=params, partition_key=user_id
                )
            ]
        except CosmosHttpResponseError as e:
            span.set_attribute("error", True)
            span.set_attribute("error.status_code", e.status_code)
            raise translate_cosmos_error(e, "tile page query", user_id=user_id) from e
        except Exception as e:
            span.set_attribute("error", True)
            span.set_attribute("error.type", type(e).__name__)
            logger.error(
                "Unexpected error during tile page query",
                extra={"error_type": type(e).__name__, "user_id": user_id},
                exc_info=True,
            )
            raise DatabaseError(
                "An unexpected error occurred during database operation.",
                original_exception=e,
            ) from e

        records = _to_records(items)
        if page_query.direction == QueryDirection.PREV and page_query.cursor is not None:
            records.reverse()

        span.set_attribute("tiles.count", len(records))
        return records


async def list_tiles(container: ContainerProxy, user_id: str) -> List[TileRecord]:
    """
    Retrieve every tile of a user, newest first.
    """
    with tracer.start_as_current_span("list_tiles") as span:
        logger.info("Listing all tiles", extra={"user_id": user_id})

        query = f"SELECT * FROM c WHERE c.userId = @userId {ORDER_DESC}"
        params = [{"name": "@userId", "value": user_id}]

        try:
            items = [
                item
                async for item in container.query_items(
                    query=query, parameters=params, partition_key=user_id
                )
            ]
        except CosmosHttpResponseError as e:
            span.set_attribute("error", True)
            raise translate_cosmos_error(e, "tile listing", user_id=user_id) from e
        except Exception as e:
            span.set_attribute("error", True)
            logger.error(f"Unexpected error during tile listing: {e}", exc_info=True)
            raise DatabaseError(
                "An unexpected error occurred during database operation.",
                original_exception=e,
            ) from e

        records = _to_records(items)
        logger.info(f"Retrieved {len(records)} tiles", extra={"count": len(records)})
        span.set_attribute("tiles.count", len(records))
        return records


async def count_tiles(container: ContainerProxy, user_id: str) -> int:
    query = "SELECT VALUE COUNT(1) FROM c WHERE c.userId = @userId"
    params = [{"name": "@userId", "value": user_id}]
    try:
        results = [
            value
            async for value in container.query_items(
                query=query, parameters=params, partition_key=user_id
            )
        ]
    except CosmosHttpResponseError as e:
        raise translate_cosmos_error(e, "tile count", user_id=user_id) from e
    except Exception as e:
        logger.error(f"Unexpected error during tile count: {e}", exc_info=True)
        raise DatabaseError(
            "An unexpected error occurred during database operation.",
            original_exception=e,
        ) from e
    return int(results[0]) if results else 0


async def list_group_members(
    container: ContainerProxy, user_id: str, group: TileGroupRef
) -> List[TileRecord]:
    """
    Retrieve the records currently forming a display group.
    Records without a prefix belong to the "N/A" group.
    """
    if group.model_number_prefix == NO_PREFIX:
        prefix_clause = (
            "(c.modelNumberPrefix = @prefix OR c.modelNumberPrefix = ''"
            " OR IS_NULL(c.modelNumberPrefix) OR NOT IS_DEFINED(c.modelNumberPrefix))"
        )
    else:
        prefix_clause = "c.modelNumberPrefix = @prefix"

    query = (
        "SELECT * FROM c WHERE c.userId = @userId"
        f" AND {prefix_clause} AND c.width = @width AND c.height = @height"
        f" {ORDER_DESC}"
    )
    params = [
        {"name": "@userId", "value": user_id},
        {"name": "@prefix", "value": group.model_number_prefix},
        {"name": "@width", "value": group.width},
        {"name": "@height", "value": group.height},
    ]

    try:
        items = [
            item
            async for item in container.query_items(
                query=query, parameters=params, partition_key=user_id
            )
        ]
    except CosmosHttpResponseError as e:
        raise translate_cosmos_error(
            e, "group lookup", user_id=user_id, prefix=group.model_number_prefix
        ) from e
    except Exception as e:
        logger.error(f"Unexpected error during group lookup: {e}", exc_info=True)
        raise DatabaseError(
            "An unexpected error occurred during database operation.",
            original_exception=e,
        ) from e
    return _to_records(items)


async def get_tile_by_id(container: ContainerProxy, user_id: str, tile_id: str) -> TileRecord:
    """
    Retrieve a tile record by its ID.

    Args:
        container: Cosmos DB container client
        user_id: Owner of the record (partition key)
        tile_id: ID of the record to retrieve

    Returns:
        The retrieved record

    Raises:
        TileNotFoundError: If the record doesn't exist
        PermissionDeniedError: If the store rejects the credentials
        DatabaseError: If a database operation fails
    """
    with tracer.start_as_current_span("get_tile_by_id") as span:
        span.set_attribute("tile.id", tile_id)

        try:
            item = await container.read_item(item=tile_id, partition_key=user_id)
            return TileRecord.model_validate(item)
        except CosmosHttpResponseError as e:
            span.set_attribute("error", True)
            span.set_attribute("error.status_code", e.status_code)
            if e.status_code == 404:
                logger.warning("Tile not found", extra={"tile_id": tile_id})
                raise TileNotFoundError(f"Tile with ID '{tile_id}' not found") from e
            raise translate_cosmos_error(e, "tile retrieval", tile_id=tile_id) from e
        except Exception as e:
            span.set_attribute("error", True)
            logger.error(
                "Unexpected error retrieving tile",
                extra={"tile_id": tile_id, "error_type": type(e).__name__},
                exc_info=True,
            )
            raise DatabaseError(
                "An unexpected error occurred during database operation.",
                original_exception=e,
            ) from e
