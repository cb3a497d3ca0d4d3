"""Tool-protocol server over stdio.

Architectural role:
    Thin adapter between the MCP low-level `Server` and `ImageToolHandlers`.
    It publishes the tool catalog and cached-image resources, forwards calls,
    and converts typed failures into protocol errors.

Error mapping:
    - `UnknownToolError` -> METHOD_NOT_FOUND.
    - `InvalidRequestError`, `NotFoundError` -> INVALID_PARAMS.
    - Every other `ImageGatewayError` -> INTERNAL_ERROR with the categorized
      message from `describe_error`.
    - Unexpected exceptions are logged with a traceback and reported as
      INTERNAL_ERROR.

Side effects:
    stdout belongs to the protocol stream; all logging goes to stderr.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Iterable

from mcp import types
from mcp.server import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server
from mcp.shared.exceptions import McpError

from ai_image_mcp.errors import (
    ImageGatewayError,
    InvalidRequestError,
    NotFoundError,
    UnknownToolError,
    describe_error,
)
from ai_image_mcp.provider_config import GatewayConfig
from ai_image_mcp.remote.client import RemoteServiceClient
from ai_image_mcp.storage.record_store import RecordStore
from ai_image_mcp.tools.definitions import tool_definitions
from ai_image_mcp.tools.handlers import ImageToolHandlers


logger = logging.getLogger(__name__)

SERVER_NAME = "ai-image-api-mcp-server"


def error_code_for(exc: BaseException) -> int:
    if isinstance(exc, UnknownToolError):
        return types.METHOD_NOT_FOUND
    if isinstance(exc, (InvalidRequestError, NotFoundError)):
        return types.INVALID_PARAMS
    return types.INTERNAL_ERROR


def to_protocol_error(operation: str, exc: BaseException) -> McpError:
    return McpError(types.ErrorData(code=error_code_for(exc), message=describe_error(operation, exc)))


def to_protocol_content(entry: dict[str, Any]) -> types.TextContent | types.ImageContent:
    if entry["type"] == "image":
        return types.ImageContent(type="image", data=entry["data"], mimeType=entry["mimeType"])
    return types.TextContent(type="text", text=entry["text"])


def create_server(handlers: ImageToolHandlers) -> Server:
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [
            types.Tool(name=tool["name"], description=tool["description"], inputSchema=tool["inputSchema"])
            for tool in tool_definitions()
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any] | None) -> list[types.TextContent | types.ImageContent]:
        try:
            content = await handlers.dispatch(name, arguments or {})
        except ImageGatewayError as exc:
            logger.warning("%s", describe_error(name, exc))
            raise to_protocol_error(name, exc) from exc
        except Exception as exc:
            logger.exception("Unexpected error in tool %s", name)
            raise to_protocol_error(name, exc) from exc
        return [to_protocol_content(entry) for entry in content]

    @server.list_resources()
    async def list_resources() -> list[types.Resource]:
        entries = await asyncio.to_thread(handlers.list_resources)
        return [
            types.Resource(
                uri=entry["uri"],
                name=entry["name"],
                description=entry["description"],
                mimeType=entry["mimeType"],
            )
            for entry in entries
        ]

    @server.read_resource()
    async def read_resource(uri: Any) -> Iterable[ReadResourceContents]:
        try:
            entries = await asyncio.to_thread(handlers.read_resource, str(uri))
        except ImageGatewayError as exc:
            logger.warning("%s", describe_error("read_resource", exc))
            raise to_protocol_error("read_resource", exc) from exc

        contents = []
        for entry in entries:
            if "blob" in entry:
                contents.append(ReadResourceContents(content=base64.b64decode(entry["blob"]), mime_type=entry["mimeType"]))
            else:
                contents.append(ReadResourceContents(content=entry["text"], mime_type=entry["mimeType"]))
        return contents

    return server


async def serve(config: GatewayConfig) -> None:
    """Run the stdio server until the client disconnects."""
    store = RecordStore(config.storage_root)
    async with RemoteServiceClient(config) as client:
        handlers = ImageToolHandlers(client, store)
        server = create_server(handlers)
        logger.info("AI Image API MCP server running on stdio (cache: %s)", store.root)
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
