"""Tests for the stdio protocol adapter."""

import pytest
from conftest import PNG_BASE64
from mcp import types
from mcp.server import Server

from ai_image_mcp.api.mcp_server import create_server, error_code_for, to_protocol_content, to_protocol_error
from ai_image_mcp.errors import (
    InvalidRequestError,
    JobFailedError,
    NotFoundError,
    RemoteServiceError,
    UnknownToolError,
)
from ai_image_mcp.storage.record_store import SaveImageInfo, resource_uri


@pytest.fixture
def server(handlers) -> Server:
    return create_server(handlers)


async def _call(server: Server, name: str, arguments: dict) -> types.CallToolResult:
    request = types.CallToolRequest(
        method="tools/call", params=types.CallToolRequestParams(name=name, arguments=arguments)
    )
    result = await server.request_handlers[types.CallToolRequest](request)
    return result.root


class TestErrorMapping:
    @pytest.mark.parametrize(
        ("exc", "code"),
        [
            (UnknownToolError("Unknown tool: x"), types.METHOD_NOT_FOUND),
            (InvalidRequestError("bad"), types.INVALID_PARAMS),
            (NotFoundError("gone"), types.INVALID_PARAMS),
            (RemoteServiceError("remote", status_code=500), types.INTERNAL_ERROR),
            (JobFailedError("j1", "failed"), types.INTERNAL_ERROR),
            (RuntimeError("boom"), types.INTERNAL_ERROR),
        ],
    )
    def test_error_codes(self, exc, code) -> None:
        assert error_code_for(exc) == code

    def test_protocol_error_carries_category(self) -> None:
        error = to_protocol_error("generate_image", InvalidRequestError("prompt is required"))

        assert error.error.code == types.INVALID_PARAMS
        assert error.error.message == "generate_image failed [invalid_request]: prompt is required"


class TestContent:
    def test_image_entry(self) -> None:
        content = to_protocol_content({"type": "image", "data": PNG_BASE64, "mimeType": "image/png"})

        assert isinstance(content, types.ImageContent)
        assert content.mimeType == "image/png"

    def test_text_entry(self) -> None:
        content = to_protocol_content({"type": "text", "text": "hello"})

        assert isinstance(content, types.TextContent)
        assert content.text == "hello"


class TestServer:
    @pytest.mark.asyncio
    async def test_lists_every_tool(self, server, handlers) -> None:
        result = await server.request_handlers[types.ListToolsRequest](types.ListToolsRequest(method="tools/list"))

        tools = result.root.tools
        assert {tool.name for tool in tools} == set(handlers.tool_names)
        generate = next(tool for tool in tools if tool.name == "generate_image")
        assert generate.inputSchema["required"] == ["prompt"]

    @pytest.mark.asyncio
    async def test_call_tool_returns_content(self, server, fake_client) -> None:
        result = await _call(server, "get_job_status", {"job_id": "j1"})

        assert not result.isError
        assert "status: running" in result.content[0].text
        assert fake_client.calls_to("job_status") == ["j1"]

    @pytest.mark.asyncio
    async def test_call_tool_failure_is_reported(self, server, fake_client) -> None:
        fake_client.job_status_result = RemoteServiceError("Failed to get status of job j1", status_code=503)

        result = await _call(server, "get_job_status", {"job_id": "j1"})

        assert result.isError
        assert "get_job_status failed [remote_service/unavailable]" in result.content[0].text

    @pytest.mark.asyncio
    async def test_unknown_tool_is_reported(self, server) -> None:
        result = await _call(server, "does_not_exist", {})

        assert result.isError
        assert "Unknown tool: does_not_exist" in result.content[0].text

    @pytest.mark.asyncio
    async def test_resources(self, server, store) -> None:
        record = store.save_image(PNG_BASE64, SaveImageInfo(prompt="a cat", model="dreamshaper8", image_token="t"))
        uri = resource_uri(record.id)

        listed = await server.request_handlers[types.ListResourcesRequest](
            types.ListResourcesRequest(method="resources/list")
        )
        read = await server.request_handlers[types.ReadResourceRequest](
            types.ReadResourceRequest(method="resources/read", params=types.ReadResourceRequestParams(uri=uri))
        )

        assert [str(resource.uri) for resource in listed.root.resources] == [uri]
        blob, details = read.root.contents
        assert blob.blob == PNG_BASE64
        assert blob.mimeType == "image/png"
        assert details.mimeType == "application/json"
        assert '"image_token": "t"' in details.text
