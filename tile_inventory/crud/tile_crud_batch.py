from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosBatchOperationError
from azure.cosmos.aio import ContainerProxy
import uuid
from typing import Any, Dict, List, Tuple

from tile_inventory.models.tile import (
    TileGroupRef,
    TileGroupSave,
    TileRecord,
    TypeSuffix,
)
from tile_inventory.crud.tile_crud import (
    list_group_members,
    translate_cosmos_error,
    utc_now,
)
from tile_inventory.exceptions import (
    DatabaseError,
    PermissionDeniedError,
    PreconditionFailedError,
    TileGroupNotFoundError,
    TileValidationError,
)
from tile_inventory.logging_config import get_child_logger, tracer

logger = get_child_logger("crud.tile_batch")

# Cosmos DB transactional batch limit
MAX_BATCH_OPERATIONS = 100

BatchOperation = Tuple[str, Tuple[Any, ...], Dict[str, Any]]


def build_variants(form: TileGroupSave) -> List[Dict[str, Any]]:
    """
    Turn a save form into the variant documents to write.

    Every checked type with a positive quantity becomes one variant. When no
    type is checked, a base variant is written if both a prefix and a
    positive quantity were given.

    Raises:
        TileValidationError: If the form would not write anything
    """
    prefix = form.stored_prefix
    variants = []

    if form.types:
        for selected in form.types:
            if selected.quantity is not None and selected.quantity > 0:
                variants.append(
                    {
                        "modelNumberPrefix": prefix,
                        "typeSuffix": selected.type_suffix.value,
                        "width": form.width,
                        "height": form.height,
                        "quantity": selected.quantity,
                    }
                )
    elif form.model_number_prefix is not None and form.quantity is not None and form.quantity > 0:
        variants.append(
            {
                "modelNumberPrefix": prefix,
                "typeSuffix": TypeSuffix.BASE.value,
                "width": form.width,
                "height": form.height,
                "quantity": form.quantity,
            }
        )

    if not variants:
        raise TileValidationError(
            "Enter a model number and quantity, or check at least one type with a quantity."
        )
    return variants


def _result_bodies(batch_results) -> List[TileRecord]:
    records = []
    for result_item in batch_results:
        body = result_item.get("resourceBody", result_item) if isinstance(result_item, dict) else None
        if isinstance(body, dict) and body.get("id"):
            records.append(TileRecord.model_validate(body))
    return records


async def execute_batch(
    container: ContainerProxy,
    user_id: str,
    operations: List[BatchOperation],
    action: str,
):
    """
    Run operations as one transactional batch in the user's partition.
    Either every operation is applied or none is.
    """
    if len(operations) > MAX_BATCH_OPERATIONS:
        raise TileValidationError(
            f"A group can change at most {MAX_BATCH_OPERATIONS} records at once."
        )

    try:
        return await container.execute_item_batch(
            batch_operations=operations, partition_key=user_id
        )
    except CosmosBatchOperationError as e:
        logger.error(
            f"Cosmos DB batch error during {action}: "
            f"First failed op index: {e.error_index}. Msg: {str(e)}",
            extra={"user_id": user_id},
            exc_info=True,
        )
        failed_status = None
        for i, op_response in enumerate(e.operation_responses or []):
            status_code = op_response.get("statusCode", 200)
            if status_code >= 400 and i < len(operations):
                op_name, op_args, _ = operations[i]
                logger.error(f"  Failed {op_name} op in batch: {op_args[0] if op_args else ''} -> {op_response}")
                if failed_status is None or status_code != 424:
                    failed_status = status_code

        if failed_status in (401, 403):
            raise PermissionDeniedError(f"Permission denied during {action}.") from e
        if failed_status == 412:
            raise PreconditionFailedError(
                "The group was modified since it was last retrieved (ETag mismatch)."
            ) from e
        raise DatabaseError(
            f"Cosmos DB batch error during {action}; no changes were applied.",
            original_exception=e,
        ) from e
    except CosmosHttpResponseError as e:
        raise translate_cosmos_error(e, action, user_id=user_id) from e
    except Exception as e:
        logger.error(f"Unexpected error during {action}: {e}", exc_info=True)
        raise DatabaseError(
            "An unexpected error occurred during database operation.",
            original_exception=e,
        ) from e


async def create_tile_group(
    container: ContainerProxy,
    user_id: str,
    form: TileGroupSave,
) -> List[TileRecord]:
    """
    Create every variant of a new group in a single batch.

    Args:
        container: Cosmos DB container client
        user_id: Owner of the records (partition key)
        form: The submitted save form

    Returns:
        The created records
    """
    with tracer.start_as_current_span("create_tile_group") as span:
        variants = build_variants(form)
        now = utc_now()

        operations: List[BatchOperation] = []
        for variant in variants:
            data = {
                **variant,
                "id": str(uuid.uuid4()),
                "userId": user_id,
                "createdAt": now,
                "updatedAt": now,
            }
            operations.append(("create", (data,), {}))

        span.set_attribute("batch.size", len(operations))
        logger.info(
            f"Creating {len(operations)} tile variants",
            extra={"user_id": user_id, "prefix": form.stored_prefix, "batch_size": len(operations)},
        )

        results = await execute_batch(container, user_id, operations, "group create")
        return _result_bodies(results)


async def update_tile_group(
    container: ContainerProxy,
    user_id: str,
    group: TileGroupRef,
    form: TileGroupSave,
) -> List[TileRecord]:
    """
    Rewrite an existing group from an edit form in a single batch.

    Each submitted variant patches the first existing record with the same
    type tag, or is created when no such record exists. Existing records
    whose tag is no longer submitted are deleted.

    Returns:
        The patched and created records

    Raises:
        TileGroupNotFoundError: If the group has no records
        TileValidationError: If the form would not write anything
        PreconditionFailedError: If a record changed since it was read
        DatabaseError: If the batch fails
    """
    with tracer.start_as_current_span("update_tile_group") as span:
        variants = build_variants(form)
        members = await list_group_members(container, user_id, group)
        if not members:
            raise TileGroupNotFoundError(
                f"Tile group '{group.model_number_prefix}' "
                f"{group.width}x{group.height} not found"
            )

        existing_by_suffix: Dict[str, TileRecord] = {}
        for member in members:
            existing_by_suffix.setdefault(member.type_suffix, member)

        now = utc_now()
        operations: List[BatchOperation] = []
        submitted = set()

        for variant in variants:
            submitted.add(variant["typeSuffix"])
            existing = existing_by_suffix.get(variant["typeSuffix"])
            if existing is not None:
                patch_operations = [
                    {"op": "set", "path": f"/{key}", "value": value}
                    for key, value in {**variant, "updatedAt": now}.items()
                ]
                kwargs = {"if_match_etag": existing.etag} if existing.etag else {}
                operations.append(("patch", (existing.id, patch_operations), kwargs))
            else:
                data = {
                    **variant,
                    "id": str(uuid.uuid4()),
                    "userId": user_id,
                    "createdAt": now,
                    "updatedAt": now,
                }
                operations.append(("create", (data,), {}))

        for member in members:
            if member.type_suffix not in submitted:
                operations.append(("delete", (member.id,), {}))

        span.set_attribute("batch.size", len(operations))
        logger.info(
            f"Updating tile group with {len(operations)} operations",
            extra={"user_id": user_id, "prefix": group.model_number_prefix, "batch_size": len(operations)},
        )

        results = await execute_batch(container, user_id, operations, "group update")
        return _result_bodies(results)


async def delete_tile_group(
    container: ContainerProxy,
    user_id: str,
    group: TileGroupRef,
) -> List[str]:
    """
    Delete every record of a group in a single batch.

    Returns:
        IDs of the deleted records

    Raises:
        TileGroupNotFoundError: If the group has no records
        DatabaseError: If the batch fails; nothing is deleted then
    """
    with tracer.start_as_current_span("delete_tile_group") as span:
        members = await list_group_members(container, user_id, group)
        if not members:
            raise TileGroupNotFoundError(
                f"Tile group '{group.model_number_prefix}' "
                f"{group.width}x{group.height} not found"
            )

        operations: List[BatchOperation] = [("delete", (member.id,), {}) for member in members]
        span.set_attribute("batch.size", len(operations))

        await execute_batch(container, user_id, operations, "group delete")

        logger.info(
            f"Deleted {len(operations)} tile variants",
            extra={"user_id": user_id, "prefix": group.model_number_prefix},
        )
        return [member.id for member in members]
