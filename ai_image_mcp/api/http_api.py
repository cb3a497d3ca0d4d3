"""HTTP API adapter for the image tools.

Architectural role:
- Expose the same tool catalog as the stdio server over plain HTTP/JSON.
- Delegate every call to `ImageToolHandlers.dispatch`.
- Map typed failures to HTTP status codes.

Endpoint responsibilities:
- `GET /healthz`: liveness probe.
- `GET /v1/tools`: tool names, descriptions and input schemas.
- `POST /v1/tools/{name}`: run one tool with the JSON body as arguments.
- `GET /v1/images`: search the local cache (`query`, `model`, `limit`,
  `before`, `after`).
- `GET /v1/images/{record_id}`: blob + JSON description of one record.

Error mapping:
- invalid_request -> 400
- not_found / unknown_tool -> 404
- remote_service / job_failed / binary_unavailable -> 502
- timeout -> 504
- anything else -> 500 (logged with traceback)

Lifecycle:
- `create_app(handlers)` uses the given handlers (tests).
- `create_app(config=...)` owns a `RemoteServiceClient` for the lifetime of
  the application and closes it on shutdown.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ai_image_mcp import __version__
from ai_image_mcp.errors import ImageGatewayError, InvalidRequestError, describe_error
from ai_image_mcp.provider_config import GatewayConfig, load_config
from ai_image_mcp.remote.client import RemoteServiceClient
from ai_image_mcp.storage.record_store import RecordStore, resource_uri
from ai_image_mcp.tools.definitions import tool_definitions
from ai_image_mcp.tools.handlers import ImageToolHandlers


logger = logging.getLogger(__name__)

STATUS_BY_CATEGORY = {
    "invalid_request": 400,
    "not_found": 404,
    "unknown_tool": 404,
    "remote_service": 502,
    "job_failed": 502,
    "binary_unavailable": 502,
    "timeout": 504,
}


def status_for(exc: ImageGatewayError) -> int:
    return STATUS_BY_CATEGORY.get(exc.category, 500)


def error_response(operation: str, exc: BaseException) -> JSONResponse:
    if isinstance(exc, ImageGatewayError):
        status, category = status_for(exc), exc.category
    else:
        status, category = 500, "internal_error"
    return JSONResponse(
        status_code=status,
        content={"error": {"category": category, "message": describe_error(operation, exc)}},
    )


def create_app(handlers: ImageToolHandlers | None = None, config: GatewayConfig | None = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if handlers is not None:
            app.state.handlers = handlers
            yield
            return

        runtime_config = config or load_config()
        async with RemoteServiceClient(runtime_config) as client:
            app.state.handlers = ImageToolHandlers(client, RecordStore(runtime_config.storage_root))
            logger.info("HTTP adapter ready (cache: %s)", app.state.handlers.store.root)
            yield

    app = FastAPI(title="AI Image API MCP", version=__version__, lifespan=lifespan)

    # ============================================================
    # Health / catalog
    # ============================================================

    @app.get("/healthz")
    def healthz():
        return {"status": "ok", "version": __version__}

    @app.get("/v1/tools")
    def list_tools():
        return {"tools": tool_definitions()}

    # ============================================================
    # Tool calls
    # ============================================================

    @app.post("/v1/tools/{name}")
    async def call_tool(name: str, request: Request):
        """
        Run one tool.

        Input validation behavior:
        - Empty body -> no arguments.
        - Body that is not a JSON object -> HTTP 400.
        """
        raw = await request.body()
        arguments = {}
        if raw.strip():
            try:
                arguments = await request.json()
            except ValueError:
                return error_response(name, InvalidRequestError("Request body is not valid JSON"))
            if not isinstance(arguments, dict):
                return error_response(name, InvalidRequestError("Request body must be a JSON object"))

        try:
            content = await request.app.state.handlers.dispatch(name, arguments)
        except ImageGatewayError as exc:
            logger.warning("%s", describe_error(name, exc))
            return error_response(name, exc)
        except Exception as exc:
            logger.exception("Unexpected error in tool %s", name)
            return error_response(name, exc)
        return {"content": content}

    # ============================================================
    # Cached images
    # ============================================================

    @app.get("/v1/images")
    def search_images(
        request: Request,
        query: str | None = None,
        model: str | None = None,
        limit: int | None = None,
        before: str | None = None,
        after: str | None = None,
    ):
        store = request.app.state.handlers.store
        try:
            result = store.search(query=query, model=model, before=before, after=after, limit=limit)
        except ImageGatewayError as exc:
            return error_response("search_images", exc)
        return {
            "total": result.total_matches,
            "images": [{"uri": resource_uri(record.id), **record.to_dict()} for record in result.records],
        }

    @app.get("/v1/images/{record_id}")
    def read_image(record_id: str, request: Request):
        try:
            contents = request.app.state.handlers.read_resource(resource_uri(record_id))
        except ImageGatewayError as exc:
            return error_response("read_resource", exc)
        return {"contents": contents}

    return app
