"""WebP converter MCP server.

Wires the asset store, conversion manager and settings together and exposes
them as MCP tools. Host applications that embed the converter can use the
managers directly instead.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from mcp.server.fastmcp import FastMCP

from asset_processor import webp_available
from managers.asset_store import JsonFileAssetStore
from managers.conversion_manager import ConversionManager, LibraryConfig
from managers.defaults_manager import DefaultsManager
from tools.asset import register_asset_tools
from tools.configuration import register_configuration_tools
from tools.conversion import register_conversion_tools

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("WebP_Converter")

library_config = LibraryConfig()
defaults_manager = DefaultsManager()
asset_store = JsonFileAssetStore(library_config.store_path)
conversion_manager = ConversionManager(
    asset_store,
    library_config.library_root,
    settings=defaults_manager.get_settings(),
    base_url=library_config.base_url,
)


class AppContext:
    def __init__(self, conversion_manager: ConversionManager):
        self.conversion_manager = conversion_manager


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Manage application lifecycle"""
    logger.info("Starting WebP converter server...")
    if not webp_available():
        logger.warning("Pillow has no WebP support; conversions will report codec-unavailable")
    try:
        yield AppContext(conversion_manager=conversion_manager)
    finally:
        logger.info("Shutting down WebP converter server")


mcp = FastMCP("WebP_Converter", lifespan=app_lifespan)

register_asset_tools(mcp, conversion_manager)
register_conversion_tools(mcp, conversion_manager)
register_configuration_tools(mcp, conversion_manager, defaults_manager)


def main():
    mcp.run(transport="streamable-http")


if __name__ == "__main__":
    main()
