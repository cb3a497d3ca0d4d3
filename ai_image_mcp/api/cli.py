"""
Command line entrypoint (`ai-image-mcp`).

Interface responsibilities:
- `serve`: run the stdio tool-protocol server (default command).
- `http`: run the FastAPI adapter on uvicorn.
- `check`: probe the remote service and summarize the local cache.

Side effects:
- Loads `.env` through `load_config()`.
- Configures root logging to stderr; stdout is reserved for the protocol
  stream in `serve` mode and for operator output in `check` mode.

Exit codes:
- 0 on success, 1 when `check` cannot reach the remote service, 2 on
  configuration errors.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import uvicorn

from ai_image_mcp import __version__
from ai_image_mcp.errors import InvalidRequestError
from ai_image_mcp.provider_config import GatewayConfig, load_config
from ai_image_mcp.remote.client import RemoteServiceClient
from ai_image_mcp.storage.record_store import RecordStore


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(config: GatewayConfig) -> None:
    level = logging.DEBUG if config.debug else getattr(logging, config.log_level, logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ai-image-mcp", description="AI image service tool adapter")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command")

    commands.add_parser("serve", help="Run the stdio tool-protocol server")

    http = commands.add_parser("http", help="Run the HTTP adapter")
    http.add_argument("--host", default="127.0.0.1")
    http.add_argument("--port", type=int, default=8000)

    commands.add_parser("check", help="Test the remote connection and list cached images")
    return parser


async def run_check(config: GatewayConfig) -> int:
    store = RecordStore(config.storage_root)
    async with RemoteServiceClient(config) as client:
        connected = await client.test_connection()

    print(f"Endpoint template: {config.endpoint_template}")
    print(f"API key: {'configured' if config.api_key else 'not configured'}")
    print(f"Remote service: {'reachable' if connected else 'unreachable'}")

    records = store.list_images()
    print(f"Cache: {store.root} ({len(records)} record(s))")
    for record in records[:5]:
        print(f"  {record.created_at} | {record.model} | {record.id}")
    return 0 if connected else 1


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config()
    except InvalidRequestError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    configure_logging(config)
    command = args.command or "serve"

    if command == "http":
        from ai_image_mcp.api.http_api import create_app

        uvicorn.run(create_app(config=config), host=args.host, port=args.port, log_level=config.log_level.lower())
        return 0

    if command == "check":
        return asyncio.run(run_check(config))

    from ai_image_mcp.api.mcp_server import serve

    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
