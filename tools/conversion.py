"""Conversion tools for the WebP converter server"""

import logging
from typing import List

from mcp.server.fastmcp import FastMCP

from managers.conversion_manager import BULK_ACTION
from tools.helpers import build_conversion_response

logger = logging.getLogger("WebP_Converter")


def register_conversion_tools(
    mcp: FastMCP,
    conversion_manager
):
    """Register conversion tools with the MCP server"""

    @mcp.tool()
    def convert_image(asset_id: str) -> dict:
        """Convert one library asset to WebP.

        Idempotent: an asset that already has a WebP variant is reported as
        skipped with reason "already-converted".

        Returns:
            Dict with status ("converted" | "skipped"), the recorded variant or
            the skip reason, and the asset metadata
        """
        result = conversion_manager.convert(asset_id)
        return build_conversion_response(result, conversion_manager)

    @mcp.tool()
    def bulk_convert(asset_ids: List[str], action: str = BULK_ACTION, max_workers: int = 1) -> dict:
        """Convert a batch of assets to WebP.

        Args:
            asset_ids: Asset IDs to convert (e.g. from list_unconverted)
            action: Bulk action tag; only "convert_to_webp" is handled
            max_workers: Number of parallel conversions (default: 1)

        Returns:
            Dict with converted / failed / skipped counts. Non-images and
            already converted assets are skipped, not failed.
        """
        report = conversion_manager.handle_bulk_action(action, asset_ids, max_workers=max(1, max_workers))
        if report is None:
            return {"error": f"Unsupported bulk action '{action}'. Use '{BULK_ACTION}'."}

        response = report.as_dict()
        response["failures"] = [
            result.to_dict() for result in report.results if result.failed
        ]
        return response
