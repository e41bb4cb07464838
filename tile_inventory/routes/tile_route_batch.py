from typing import List
from fastapi import APIRouter, HTTPException, status, Depends
from azure.cosmos.aio import ContainerProxy

from tile_inventory.auth import AuthSession, get_session
from tile_inventory.crud.tile_crud_batch import (
    create_tile_group,
    update_tile_group,
    delete_tile_group,
)
from tile_inventory.exceptions import (
    PreconditionFailedError,
    TileGroupNotFoundError,
    TileValidationError,
)
from tile_inventory.logging_config import get_child_logger, tracer
from tile_inventory.models.tile import (
    TileGroupDeleteResult,
    TileGroupRef,
    TileGroupSave,
    TileGroupUpdate,
    TileRecord,
)
from tile_inventory.routes.tile_route import get_tiles_container, raise_http_error

logger = get_child_logger("routes.tile_batch")

router = APIRouter(prefix="/tiles/groups", tags=["tile-groups"])


@router.post("/", response_model=List[TileRecord], status_code=status.HTTP_201_CREATED)
async def add_tile_group(
    form: TileGroupSave,
    session: AuthSession = Depends(get_session),
    container: ContainerProxy = Depends(get_tiles_container),
):
    with tracer.start_as_current_span("api_add_tile_group") as span:
        span.set_attribute("types.count", len(form.types))

        try:
            result = await create_tile_group(container, session.user.user_id, form)
        except TileValidationError as e:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
        except Exception as e:
            span.set_attribute("error", True)
            span.set_attribute("error.type", type(e).__name__)
            raise_http_error(e, "tile group creation")

        span.set_attribute("batch.success_count", len(result))
        logger.info(
            f"Created {len(result)} tile variants",
            extra={"success_count": len(result), "prefix": form.stored_prefix},
        )
        return result


@router.put("/", response_model=List[TileRecord])
async def update_tile_group_batch(
    update: TileGroupUpdate,
    session: AuthSession = Depends(get_session),
    container: ContainerProxy = Depends(get_tiles_container),
):
    try:
        return await update_tile_group(
            container, session.user.user_id, update.group, update.changes
        )
    except TileValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except TileGroupNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PreconditionFailedError as e:
        raise HTTPException(status_code=status.HTTP_412_PRECONDITION_FAILED, detail=str(e))
    except Exception as e:
        raise_http_error(e, "tile group update")


@router.delete("/", response_model=TileGroupDeleteResult)
async def delete_tile_group_batch(
    group: TileGroupRef,
    session: AuthSession = Depends(get_session),
    container: ContainerProxy = Depends(get_tiles_container),
):
    try:
        deleted = await delete_tile_group(container, session.user.user_id, group)
    except TileGroupNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        raise_http_error(e, "tile group deletion")
    return TileGroupDeleteResult(deleted_ids=deleted)
