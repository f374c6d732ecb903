"""
MCP server for the PoSH knowledge base.

Exposes the tool catalog over the Model Context Protocol on stdio (the
default) or serves the HTTP API with uvicorn.

Usage:
    posh-knowledge-mcp
    posh-knowledge-mcp --transport http --port 8000
    python -m execution.posh_knowledge.mcp_server

stdout carries the protocol, so logging goes to stderr only.
"""

import sys
import asyncio
import argparse
import logging
from typing import Optional

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server
from dotenv import load_dotenv

from .config import SERVER_NAME, SERVER_VERSION, ServerConfig
from .dispatcher import ToolDispatcher, build_dispatcher
from .errors import DatastoreError
from .knowledge_store import KnowledgeStore

logger = logging.getLogger(__name__)


def build_mcp_server(dispatcher: ToolDispatcher) -> Server:
    """Adapt a dispatcher to the MCP tools/list and tools/call requests."""
    server = Server(SERVER_NAME, version=SERVER_VERSION)

    @server.list_tools()
    async def _list_tools() -> list[types.Tool]:
        return [
            types.Tool(
                name=tool["name"],
                description=tool["description"],
                inputSchema=tool["inputSchema"],
            )
            for tool in dispatcher.list_tools()
        ]

    # Arguments are validated by the dispatcher so failures come back as tool errors
    @server.call_tool(validate_input=False)
    async def _call_tool(name: str, arguments: Optional[dict]) -> types.CallToolResult:
        response = await dispatcher.call_tool(name, arguments)
        return types.CallToolResult(
            content=[
                types.TextContent(type="text", text=block["text"])
                for block in response.content
            ],
            isError=response.is_error,
        )

    return server


async def serve_stdio(config: ServerConfig) -> None:
    """Run the MCP server on stdin/stdout until the client disconnects."""
    store = KnowledgeStore(config.store)
    try:
        await asyncio.to_thread(store.connect)
    except DatastoreError as e:
        # Queries retry the connection lazily; tools report the failure meanwhile
        logger.warning(f"Starting without a database connection: {e}")

    try:
        dispatcher = build_dispatcher(config, store)
        server = build_mcp_server(dispatcher)
        async with stdio_server() as (read_stream, write_stream):
            logger.info(f"{SERVER_NAME} {SERVER_VERSION} running on stdio")
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:
        store.close()


def serve_http(config: ServerConfig, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Serve the FastAPI app with uvicorn."""
    import uvicorn

    uvicorn.run(
        "execution.posh_knowledge.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        log_level=config.log_level.lower(),
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: Optional[list[str]] = None) -> None:
    arg_parser = argparse.ArgumentParser(description="PoSH knowledge base tool server")
    arg_parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="stdio for MCP clients (default), http for the REST API",
    )
    arg_parser.add_argument("--host", type=str, default=None, help="HTTP bind host (default: API_HOST)")
    arg_parser.add_argument("--port", type=int, default=None, help="HTTP port (default: API_PORT)")
    args = arg_parser.parse_args(argv)

    load_dotenv()
    config = ServerConfig.from_env()
    configure_logging(config.log_level)

    try:
        if args.transport == "http":
            serve_http(config, host=args.host, port=args.port)
        else:
            asyncio.run(serve_stdio(config))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except Exception:
        logger.exception(f"Fatal error running {SERVER_NAME}")
        sys.exit(1)


if __name__ == "__main__":
    main()
