from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from mcp.server.fastmcp import FastMCP

from beadrelay.store.client import StoreClient
from beadrelay.tools import beads as bead_tools
from beadrelay.utils.config import get_config
from beadrelay.utils.logger import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle for the worker tool server."""
    config = get_config()

    store = StoreClient(config.bd_path, timeout=config.store_timeout)
    if not await store.is_installed():
        logger.warning("beads CLI %r not found; tool calls will fail until it is installed", config.bd_path)

    bead_tools.register(server, store)

    @server.resource("beadrelay://config")
    async def get_config_resource() -> str:
        return (
            "beadrelay configuration:\n"
            f"- bd: {config.bd_path}\n"
            f"- store timeout: {config.store_timeout:g}s\n"
        )

    logger.info("beadrelay MCP server ready")
    try:
        yield
    finally:
        logger.info("beadrelay MCP server stopped")


def create_server() -> FastMCP:
    """Build and return the configured FastMCP server."""
    config = get_config()
    setup_logging(config.log_level)

    return FastMCP("beadrelay", lifespan=lifespan)


# Module-level instance used by the CLI and ``python -m``
mcp = create_server()

if __name__ == "__main__":
    mcp.run()
