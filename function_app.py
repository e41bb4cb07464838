import os
from contextlib import asynccontextmanager
from typing import Optional

import azure.functions as func
from fastapi import (
    FastAPI,
    HTTPException,
    Security,
    status,
    Request,
)
from fastapi.responses import HTMLResponse, JSONResponse
from azure.cosmos import exceptions as cosmos_exceptions
from fastapi.security import APIKeyHeader, APIKeyQuery
from fastapi.openapi.docs import get_swagger_ui_html

from tile_inventory.db import close_client
from tile_inventory.exceptions import PermissionDeniedError, StoreInitializationError
from tile_inventory.grouping import configure_collation
from tile_inventory.i18n import translate
from tile_inventory.logging_config import logger, tracer
from tile_inventory.routes.auth_route import router as auth_router
from tile_inventory.routes.live_route import router as live_router
from tile_inventory.routes.tile_route import router as tile_router
from tile_inventory.routes.tile_route_batch import router as tile_batch_router

FUNCTION_KEY_HEADER = "x-functions-key"
FUNCTION_KEY_QUERY = "code"
SWAGGER_CDN = "https://cdnjs.cloudflare.com/ajax/libs/swagger-ui/5.17.14"

configure_collation(os.environ.get("TILES_COLLATION_LOCALE", ""))

function_key_header = APIKeyHeader(
    name=FUNCTION_KEY_HEADER,
    auto_error=False,
    scheme_name="FunctionKeyHeader",
    description="Function key in the x-functions-key header",
)
function_key_query = APIKeyQuery(
    name=FUNCTION_KEY_QUERY,
    auto_error=False,
    scheme_name="FunctionKeyQuery",
    description="Function key in the code query parameter",
)


def expected_function_key(request: Optional[Request]) -> Optional[str]:
    """
    The key Azure Functions expects for this function, or None when the app
    runs outside the Functions host.
    """
    context = getattr(request, "function_context", None) if request is not None else None
    directory = getattr(context, "function_directory", None)
    if directory is None:
        return None
    return directory.get_function_key()


async def require_function_key(
    request: Request,
    key_from_header: Optional[str] = Security(function_key_header),
    key_from_query: Optional[str] = Security(function_key_query),
) -> str:
    provided = key_from_header or key_from_query
    expected = expected_function_key(request)

    if expected is None and not provided:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Function key required.",
        )
    if expected is not None and provided != expected:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid function key.",
        )
    return provided


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    await close_client()
    logger.info("Cosmos DB client closed")


app = FastAPI(
    title="Tile Inventory API",
    version="1.0.0",
    openapi_url="/api/openapi.json",
    docs_url=None,
    redoc_url=None,
    lifespan=lifespan,
    openapi_components={
        "securitySchemes": {
            scheme.scheme_name: scheme.model.model_dump(exclude_none=True)
            for scheme in (function_key_header, function_key_query)
        }
    },
)


@app.get("/docs", include_in_schema=False)
async def swagger_ui() -> HTMLResponse:
    # The schema is inlined since the Functions host prefixes every route
    return get_swagger_ui_html(
        openapi_url="",
        title=f"{app.title} - Swagger UI",
        swagger_ui_parameters={"spec": app.openapi()},
        swagger_js_url=f"{SWAGGER_CDN}/swagger-ui-bundle.js",
        swagger_css_url=f"{SWAGGER_CDN}/swagger-ui.css",
        swagger_favicon_url="https://fastapi.tiangolo.com/img/favicon.png",
    )


@app.middleware("http")
async def protect_docs(request: Request, call_next):
    """Docs and schema need the function key when hosted in Azure."""
    if request.url.path in ("/docs", app.openapi_url):
        expected = expected_function_key(request)
        provided = request.headers.get(FUNCTION_KEY_HEADER) or request.query_params.get(
            FUNCTION_KEY_QUERY
        )
        if expected is not None and provided != expected:
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"detail": "Access to documentation requires a valid function key."},
            )
    return await call_next(request)


@app.exception_handler(cosmos_exceptions.CosmosHttpResponseError)
async def handle_cosmos_http_error(
    request: Request, exc: cosmos_exceptions.CosmosHttpResponseError
):
    with tracer.start_as_current_span("handle_cosmos_error") as span:
        span.set_attribute("error", True)
        span.set_attribute("error.status_code", exc.status_code)

        if exc.status_code in (401, 403):
            logger.warning(
                "Tile store rejected the credentials",
                extra={"status_code": exc.status_code, "path": request.url.path},
            )
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": "Unauthorized" if exc.status_code == 401 else "Forbidden"},
            )

        logger.error(
            "Unhandled tile store error",
            extra={
                "status_code": exc.status_code,
                "cosmos_message": exc.message,
                "path": request.url.path,
            },
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "A database error occurred."},
        )


@app.exception_handler(StoreInitializationError)
async def handle_store_initialization_error(request: Request, exc: StoreInitializationError):
    logger.error(f"Tile store unavailable: {exc}", extra={"path": request.url.path})
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": translate("storeInitError", request.headers.get("accept-language"))},
    )


@app.exception_handler(PermissionDeniedError)
async def handle_permission_denied(request: Request, exc: PermissionDeniedError):
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def handle_value_error(_: Request, exc: ValueError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


# The live view authenticates per connection; HTTP routes require the function key.
# func.AsgiMiddleware forwards HTTP only, so /tiles/live is served when
# function_app:app runs under an ASGI server such as uvicorn.
for http_router in (tile_router, tile_batch_router, auth_router):
    app.include_router(http_router, dependencies=[Security(require_function_key)])
app.include_router(live_router)

function_app = func.FunctionApp()


@function_app.route(route="{*route}", auth_level=func.AuthLevel.FUNCTION)
async def main(req: func.HttpRequest) -> func.HttpResponse:
    """Forward every HTTP request of the function to the FastAPI app."""
    route = req.route_params.get("route", "")

    with tracer.start_as_current_span("process_request") as span:
        span.set_attribute("http.method", req.method)
        span.set_attribute("http.route", route)
        logger.info(f"Processing {req.method} /{route}", extra={"method": req.method, "route": route})

        try:
            response = await func.AsgiMiddleware(app).handle_async(req)
        except Exception as e:
            span.set_attribute("error", True)
            span.set_attribute("error.type", type(e).__name__)
            logger.error(
                f"Error processing request: {e}",
                extra={"error_type": type(e).__name__, "route": route},
                exc_info=True,
            )
            return func.HttpResponse(body="An unexpected internal server error occurred.", status_code=500)

        span.set_attribute("http.status_code", response.status_code)
        return response
