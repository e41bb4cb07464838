import json
import os
from functools import partial
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from tile_inventory.auth import principal_from_headers, sessions
from tile_inventory.crud.tile_crud import count_tiles, query_tile_page
from tile_inventory.db import ContainerType, get_container
from tile_inventory.exceptions import StoreInitializationError
from tile_inventory.i18n import translate
from tile_inventory.logging_config import get_child_logger
from tile_inventory.models.pagination import Notification, QueryDirection, TilePageSnapshot
from tile_inventory.pagination import TilePaginator
from tile_inventory.subscriptions import DEFAULT_POLL_SECONDS

logger = get_child_logger("routes.live")

router = APIRouter(tags=["tiles-live"])


def live_poll_seconds() -> float:
    return float(os.environ.get("TILES_LIVE_POLL_SECONDS", DEFAULT_POLL_SECONDS))


def open_tiles_container():
    return get_container(ContainerType.TILES)


def get_container_opener():
    return open_tiles_container


async def dispatch(paginator: TilePaginator, message: dict) -> Optional[Notification]:
    """
    Apply one client command to the paginator.
    Returns a notification when the command was rejected.
    """
    action = message.get("action") if isinstance(message, dict) else None

    try:
        if action == "page":
            await paginator.go_to_page(QueryDirection(message.get("direction", "initial")))
        elif action == "items_per_page":
            await paginator.change_items_per_page(int(message.get("value")))
        elif action == "count":
            await paginator.fetch_total_count()
        else:
            raise ValueError(f"Unknown action: {action!r}")
    except (TypeError, ValueError) as e:
        logger.warning("Rejected live view command", extra={"action": str(action)})
        return Notification(title="Invalid command", description=str(e), variant="destructive")
    return None


@router.websocket("/tiles/live")
async def live_tiles(
    websocket: WebSocket,
    locale: Optional[str] = Query(None),
    open_container=Depends(get_container_opener),
):
    """
    Live list view. Reachable when the app runs under an ASGI server such
    as uvicorn; the Functions HTTP trigger does not forward WebSocket upgrades.
    """
    user =principal_from_headers(websocket.headers)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    session = sessions.sign_in(user)
    locale = locale or websocket.headers.get("accept-language")

    try:
        container = await open_container()
    except StoreInitializationError as e:
        logger.error(f"Live view could not open the tile store: {e}")
        await websocket.send_json(
            {"type": "error", "fatal": True, "detail": translate("storeInitError", locale)}
        )
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    async def publish(snapshot: TilePageSnapshot):
        await websocket.send_json(
            {"type": "snapshot", "data": snapshot.model_dump(mode="json", by_alias=True)}
        )

    async def notify(notification: Notification):
        await websocket.send_json({"type": "notification", "data": notification.model_dump(mode="json")})

    paginator = TilePaginator(
        session,
        partial(query_tile_page, container, user.user_id),
        partial(count_tiles, container, user.user_id),
        publish=publish,
        notify=notify,
        poll_interval=live_poll_seconds(),
        locale=locale,
    )
    logger.info("Live view opened", extra={"user_id": user.user_id})

    try:
        await paginator.start()
        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except ValueError as e:
                logger.warning("Rejected malformed live view frame", extra={"user_id": user.user_id})
                await notify(
                    Notification(title="Invalid command", description=str(e), variant="destructive")
                )
                continue
            rejected = await dispatch(paginator, message)
            if rejected is not None:
                await notify(rejected)
    except WebSocketDisconnect:
        logger.info("Live view closed", extra={"user_id": user.user_id})
    finally:
        paginator.dispose()
