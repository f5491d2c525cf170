"""Asset library tools for the WebP converter server"""

import logging
from itertools import islice
from typing import Optional

from mcp.server.fastmcp import FastMCP

from asset_processor import ImageTooLargeError, fetch_asset_bytes
from managers.inventory_scanner import scan_unconverted
from tools.helpers import build_conversion_response, describe_asset, filename_from_url

logger = logging.getLogger("WebP_Converter")


def register_asset_tools(
    mcp: FastMCP,
    conversion_manager
):
    """Register asset library tools with the MCP server"""

    @mcp.tool()
    def ingest_image(source: str, subfolder: str = "") -> dict:
        """Add an image to the library and convert it to WebP.

        Args:
            source: Path of a file inside the library root (relative or
                absolute), or an http(s) URL to download into the library
            subfolder: Library subfolder for downloaded files (e.g. "2024/05");
                ignored for local paths

        Returns:
            Conversion result with the asset metadata and its resolved URL, or
            an error dict if the upload gate or path checks reject the file.
        """
        try:
            if source.startswith(("http://", "https://")):
                data = fetch_asset_bytes(source)
                stored = conversion_manager.store_upload(filename_from_url(source), data, subfolder=subfolder)
                try:
                    result = conversion_manager.ingest(stored)
                except Exception:
                    # Unrecorded downloads are not left in the library
                    stored.unlink(missing_ok=True)
                    raise
            else:
                result = conversion_manager.ingest(source)
        except ImageTooLargeError as e:
            return {"error": str(e), "error_code": "IMAGE_TOO_LARGE"}
        except ValueError as e:
            return {"error": str(e), "error_code": "INVALID_SOURCE"}
        except Exception as e:
            logger.exception(f"Failed to ingest {source}")
            return {"error": f"Failed to ingest image: {e}", "error_code": "INGEST_FAILED"}

        return build_conversion_response(result, conversion_manager)

    @mcp.tool()
    def get_asset(asset_id: str) -> dict:
        """Get the metadata record of an asset, including all recorded variants."""
        record = conversion_manager.store.get(asset_id)
        if not record:
            return {"error": f"Asset {asset_id} not found"}
        return describe_asset(record, conversion_manager.resolve_url(asset_id))

    @mcp.tool()
    def resolve_image_url(asset_id: str, base_url: Optional[str] = None) -> dict:
        """Resolve the public URL of an asset (the WebP variant once converted).

        Args:
            asset_id: Asset ID
            base_url: Optional URL prefix of the library root (defaults to the
                configured base URL)
        """
        url = conversion_manager.resolve_url(asset_id, base_url=base_url)
        if url is None:
            return {"error": f"Asset {asset_id} not found"}
        return {"asset_id": asset_id, "url": url}

    @mcp.tool()
    def list_unconverted(limit: Optional[int] = None) -> dict:
        """List library images (JPEG, PNG, GIF) that have no WebP variant yet.

        Nothing is converted; use bulk_convert with the returned ids.

        Args:
            limit: Optional maximum number of rows to return
        """
        rows = scan_unconverted(conversion_manager.store)
        if limit is not None:
            rows = islice(rows, max(0, limit))
        images = [row.to_dict() for row in rows]
        return {"images": images, "count": len(images)}
