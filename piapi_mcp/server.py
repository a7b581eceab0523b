import asyncio
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import aiohttp
import mcp.types as types
from loguru import logger
from mcp.server.lowlevel import Server
from mcp.server.session import ServerSession
from mcp.server.stdio import stdio_server

from piapi_mcp.config import Settings, configure_logging, load_settings
from piapi_mcp.errors import ConfigurationError, MediaTaskError
from piapi_mcp.task_client import PiAPITaskClient
from piapi_mcp.tools import TOOLS, get_tool, run_tool

SERVER_NAME = "piapi"


class McpProgressReporter:
    """Forwards progress to the caller when it asked for progress notifications"""

    def __init__(self, session: ServerSession, progress_token: Optional[str | int]):
        self.session = session
        self.progress_token = progress_token

    async def report(self, progress: float, total: float = 100) -> None:
        if self.progress_token is None:
            return
        await self.session.send_progress_notification(
            self.progress_token, progress, total
        )


class McpTaskLogger:
    """Logs locally through loguru and mirrors each message to the MCP client"""

    def __init__(self, session: ServerSession, tool_name: str):
        self.session = session
        self.logger = logger.bind(tool=tool_name)

    async def _send(self, level: types.LoggingLevel, message: str) -> None:
        self.logger.log(level.upper(), message)
        await self.session.send_log_message(level=level, data=message, logger=SERVER_NAME)

    async def debug(self, message: str) -> None:
        await self._send("debug", message)

    async def info(self, message: str) -> None:
        await self._send("info", message)

    async def warning(self, message: str) -> None:
        await self._send("warning", message)

    async def error(self, message: str) -> None:
        await self._send("error", message)


def build_server(settings: Settings) -> Server:
    @asynccontextmanager
    async def lifespan(_server: Server) -> AsyncIterator[dict[str, Any]]:
        async with aiohttp.ClientSession() as session:
            yield {"client": PiAPITaskClient(settings, session)}

    server = Server(SERVER_NAME, lifespan=lifespan)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [
            types.Tool(
                name=tool.name,
                description=tool.description,
                inputSchema=tool.input_schema(),
            )
            for tool in TOOLS.values()
        ]

    # numeric strings are coerced by the parameter models, not rejected by the schema
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
        ctx = server.request_context
        client: PiAPITaskClient = ctx.lifespan_context["client"]
        progress_token = ctx.meta.progressToken if ctx.meta else None

        try:
            tool = get_tool(name)
        except KeyError as e:
            raise ValueError(f"Unknown tool: {name}") from e

        try:
            blocks = await run_tool(
                tool,
                arguments,
                client,
                McpProgressReporter(ctx.session, progress_token),
                McpTaskLogger(ctx.session, name),
            )
        except MediaTaskError as e:
            logger.warning(f"{name} failed: {e}")
            raise
        except Exception as e:
            logger.exception(f"Unexpected error while running {name}")
            raise RuntimeError(f"Internal error while running {name}") from e

        return [types.TextContent(type="text", text=block) for block in blocks]

    return server


async def serve(settings: Settings) -> None:
    server = build_server(settings)
    async with stdio_server() as (read_stream, write_stream):
        logger.info(f"{SERVER_NAME} MCP server started on stdio")
        await server.run(
            read_stream, write_stream, server.create_initialization_options()
        )


def main() -> None:
    try:
        settings = load_settings()
    except ConfigurationError as e:
        configure_logging()
        logger.error(f"Error: {e}")
        sys.exit(1)

    configure_logging(settings.log_level)
    try:
        asyncio.run(serve(settings))
    except Exception as e:
        logger.exception(f"Fatal error in main(): {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
