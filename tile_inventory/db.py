from typing import Optional
from azure.cosmos.aio import CosmosClient, ContainerProxy
from azure.identity.aio import DefaultAzureCredential
import os

from enum import Enum

from tile_inventory.exceptions import StoreInitializationError
from tile_inventory.logging_config import get_child_logger

logger = get_child_logger("db")


class ContainerType(str, Enum):
    TILES = "tiles"


_client: Optional[CosmosClient] = None
_credential: Optional[DefaultAzureCredential] = None


def _containers():
    return {
        ContainerType.TILES: os.environ.get("COSMOSDB_CONTAINER_TILES", "tiles"),
    }


async def _ensure_client() -> CosmosClient:
    global _client, _credential
    if _client is None:
        endpoint = os.environ.get("COSMOSDB_ENDPOINT")
        if not endpoint:
            raise StoreInitializationError("COSMOSDB_ENDPOINT environment variable must be set")
        try:
            logger.info("Creating CosmosDB client with DefaultAzureCredential")
            _credential = DefaultAzureCredential()
            _client = CosmosClient(endpoint, _credential)
        except Exception as e:
            logger.error(f"Could not create CosmosDB client: {e}", exc_info=True)
            raise StoreInitializationError("The tile store could not be initialized.") from e
    return _client


async def get_container(container_type: ContainerType) -> ContainerProxy:
    container_name = _containers().get(container_type)
    if not container_name:
        raise ValueError(
            f"Container '{container_type}' not configured. "
            f"Valid options: {[c.value for c in ContainerType]}"
        )

    database_name = os.environ.get("COSMOSDB_DATABASE")
    if not database_name:
        raise StoreInitializationError("COSMOSDB_DATABASE environment variable must be set")

    client = await _ensure_client()
    database = client.get_database_client(database_name)
    return database.get_container_client(container_name)


async def close_client() -> None:
    global _client, _credential
    if _client is not None:
        await _client.close()
        _client = None
    if _credential is not None:
        await _credential.close()
        _credential = None
