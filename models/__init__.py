"""Data models for the WebP converter"""

from models.settings import ConverterSettings
from models.asset import (
    CONVERTED_VARIANT_KEY,
    SUPPORTED_MIME_TYPES,
    TARGET_EXTENSION,
    TARGET_MIME_TYPE,
    AssetRecord,
    BulkConversionReport,
    ConversionResult,
    SkipReason,
    SourceKind,
    UnconvertedAsset,
    Variant,
)

__all__ = [
    "CONVERTED_VARIANT_KEY",
    "SUPPORTED_MIME_TYPES",
    "TARGET_EXTENSION",
    "TARGET_MIME_TYPE",
    "AssetRecord",
    "ConverterSettings",
    "BulkConversionReport",
    "ConversionResult",
    "SkipReason",
    "SourceKind",
    "UnconvertedAsset",
    "Variant",
]
