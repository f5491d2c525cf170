"""Inventory of images that still lack a WebP variant"""

from typing import Iterator

from managers.asset_store import AssetStore
from models.asset import SUPPORTED_MIME_TYPES, AssetRecord, UnconvertedAsset


def format_dimensions(record: AssetRecord) -> str:
    if record.width is not None and record.height is not None:
        return f"{record.width} x {record.height}"
    return "Unknown"


def scan_unconverted(store: AssetStore) -> Iterator[UnconvertedAsset]:
    """Yield every convertible image without a converted variant.

    Read-only. Records come out in the store's own enumeration order, and the
    generator is single-pass.
    """
    for record in store.iter_assets():
        if record.mime_type not in SUPPORTED_MIME_TYPES:
            continue
        if not record.file or record.is_converted:
            continue
        yield UnconvertedAsset(
            asset_id=record.asset_id,
            filename=record.filename,
            mime_type=record.mime_type,
            dimensions=format_dimensions(record),
        )
