"""Shared fixtures: an in-memory stand-in for a Cosmos DB container."""

import asyncio
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from azure.cosmos.exceptions import CosmosBatchOperationError, CosmosHttpResponseError
from fastapi.testclient import TestClient

from function_app import app
from tile_inventory.auth import AuthSession, UserContext, sessions
from tile_inventory.routes.live_route import get_container_opener
from tile_inventory.routes.tile_route import get_tiles_container

USER_ID = "user-1"
BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)

AUTH_HEADERS = {
    "x-functions-key": "test-key",
    "x-ms-client-principal-id": USER_ID,
    "x-ms-client-principal-name": "tiles@example.com",
}


def stamp(minutes: int) -> str:
    return (BASE_TIME + timedelta(minutes=minutes)).isoformat(timespec="microseconds")


def make_doc(
    doc_id: str,
    prefix: Optional[str] = "100",
    suffix: str = "",
    width: float = 12,
    height: float = 12,
    quantity: int = 1,
    minutes: Optional[int] = 0,
    user_id: str = USER_ID,
) -> Dict[str, Any]:
    doc = {
        "id": doc_id,
        "userId": user_id,
        "modelNumberPrefix": prefix,
        "typeSuffix": suffix,
        "width": width,
        "height": height,
        "quantity": quantity,
        "_etag": f"etag-{doc_id}",
    }
    if minutes is not None:
        doc["createdAt"] = stamp(minutes)
        doc["updatedAt"] = stamp(minutes)
    return doc


class Absent:
    """An undefined or null field; Cosmos comparisons against it never match."""

    def __init__(self, null: bool):
        self.null = null

    def __eq__(self, other):
        return False

    __lt__ = __gt__ = __le__ = __ge__ = __eq__
    __hash__ = object.__hash__


UNDEFINED = Absent(null=False)
NULL = Absent(null=True)


def field(doc: Dict[str, Any], name: str) -> Any:
    if name not in doc:
        return UNDEFINED
    return NULL if doc[name] is None else doc[name]


# Rewrites applied in order to turn the WHERE clauses the crud modules emit
# into a Python expression over ``doc`` and ``params``
WHERE_REWRITES = [
    (r"(?<![<>!=])=(?!=)", "=="),
    (r"\bIS_DEFINED\(c\.(\w+)\)", r'(field(doc, "\1") is not UNDEFINED)'),
    (r"\bIS_NULL\(c\.(\w+)\)", r'(field(doc, "\1") is NULL)'),
    (r"\bc\.(\w+)", r'field(doc, "\1")'),
    (r"@(\w+)", r'params["@\1"]'),
    (r"\bAND\b", "and"),
    (r"\bOR\b", "or"),
    (r"\bNOT\b", "not"),
]


def compile_where(where: str):
    expression = where
    for pattern, replacement in WHERE_REWRITES:
        expression = re.sub(pattern, replacement, expression)
    return eval(
        f"lambda doc, params: {expression}",
        {"field": field, "UNDEFINED": UNDEFINED, "NULL": NULL},
    )


def sort_key(doc: Dict[str, Any]):
    """``createdAt, id`` order with undefined and null timestamps lowest."""
    created_at = field(doc, "createdAt")
    if isinstance(created_at, Absent):
        return (0, "", doc["id"])
    return (1, created_at, doc["id"])


class FakeContainer:
    """
    Evaluates the queries built by ``tile_inventory.crud`` against a dict of
    documents and applies transactional batches all-or-nothing.
    """

    def __init__(self, docs: Optional[List[Dict[str, Any]]] = None):
        self.items: Dict[str, Dict[str, Any]] = {d["id"]: dict(d) for d in docs or []}
        self.queries: List[Dict[str, Any]] = []
        self.batches: List[List[Any]] = []
        self.query_error: Optional[Exception] = None
        self.batch_error_status: Optional[int] = None

    def query_items(self, query, parameters=None, partition_key=None, **kwargs):
        self.queries.append({"query": query, "parameters": parameters, "partition_key": partition_key})
        error = self.query_error
        results = [] if error else self._evaluate(query, parameters or [])

        async def iterate():
            if error is not None:
                raise error
            for result in results:
                yield result

        return iterate()

    def _evaluate(self, query: str, parameters: List[Dict[str, Any]]):
        params = {p["name"]: p["value"] for p in parameters}
        match = re.search(r"\bWHERE (.*?)(?: ORDER BY (.*))?$", query)
        where, order = match.group(1), match.group(2)
        predicate = compile_where(where)
        docs = [d for d in self.items.values() if predicate(d, params)]

        if "COUNT(1)" in query:
            return [len(docs)]

        if order:
            docs = sorted(docs, key=sort_key, reverse=" DESC" in order)

        if "@limit" in params:
            docs = docs[: params["@limit"]]
        return [dict(d) for d in docs]

    async def read_item(self, item, partition_key):
        doc = self.items.get(item)
        if doc is None or doc.get("userId") != partition_key:
            raise CosmosHttpResponseError(status_code=404, message="Not found")
        return dict(doc)

    async def execute_item_batch(self, batch_operations, partition_key):
        self.batches.append(list(batch_operations))

        if self.batch_error_status is not None:
            responses = [{"statusCode": 424} for _ in batch_operations]
            responses[0] = {"statusCode": self.batch_error_status}
            raise CosmosBatchOperationError(
                error_index=0,
                headers={},
                status_code=self.batch_error_status,
                message="Batch failed",
                operation_responses=responses,
            )

        staged = dict(self.items)
        results = []
        for name, args, kwargs in batch_operations:
            if name == "create":
                body = dict(args[0])
                body["_etag"] = str(uuid.uuid4())
                staged[body["id"]] = body
                results.append({"statusCode": 201, "resourceBody": dict(body)})
            elif name == "patch":
                item_id, operations = args
                current = dict(staged[item_id])
                if kwargs.get("if_match_etag") not in (None, current.get("_etag")):
                    raise CosmosBatchOperationError(
                        error_index=0,
                        headers={},
                        status_code=412,
                        message="Precondition failed",
                        operation_responses=[{"statusCode": 412}],
                    )
                for op in operations:
                    current[op["path"].lstrip("/")] = op["value"]
                current["_etag"] = str(uuid.uuid4())
                staged[item_id] = current
                results.append({"statusCode": 200, "resourceBody": dict(current)})
            elif name == "delete":
                staged.pop(args[0])
                results.append({"statusCode": 204})

        self.items = staged
        return results


@pytest.fixture
def user() -> UserContext:
    return UserContext(user_id=USER_ID, name="tiles@example.com")


@pytest.fixture
def session(user: UserContext) -> AuthSession:
    session = AuthSession()
    session.sign_in(user)
    return session


@pytest.fixture
def container() -> FakeContainer:
    return FakeContainer()


@pytest.fixture(autouse=True)
def clear_sessions():
    yield
    sessions.clear()


async def wait_for(predicate, timeout: float = 2.0):
    """Yield to the event loop until ``predicate`` holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def client(container: FakeContainer):
    async def open_container():
        return container

    app.dependency_overrides[get_tiles_container] = lambda: container
    app.dependency_overrides[get_container_opener] = lambda: open_container
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
