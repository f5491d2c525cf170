"""Shared helper functions for tool implementations"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import unquote, urlsplit

from models.asset import AssetRecord, ConversionResult

logger = logging.getLogger("WebP_Converter")


def describe_asset(record: AssetRecord, url: Optional[str] = None) -> Dict[str, Any]:
    """Metadata view of an asset record for tool responses"""
    data = {
        "asset_id": record.asset_id,
        "file": record.file,
        "mime_type": record.mime_type,
        "width": record.width,
        "height": record.height,
        "sizes": {name: variant.to_dict() for name, variant in record.sizes.items()},
        "converted": record.is_converted,
    }
    if url:
        data["url"] = url
    return data


def build_conversion_response(result: ConversionResult, conversion_manager) -> Dict[str, Any]:
    """Turn a ConversionResult into a tool response.

    Includes the asset metadata and its resolved URL when the asset is known.
    """
    response = result.to_dict()
    if result.asset is not None:
        url = conversion_manager.resolve_url(result.asset.asset_id)
        response["asset"] = describe_asset(result.asset, url)
    return response


def filename_from_url(url: str) -> str:
    """Last path segment of a URL, percent-decoded"""
    path = urlsplit(url).path
    return unquote(path.rsplit("/", 1)[-1])
