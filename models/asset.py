"""Asset data models"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

# Reserved key for the converted variant; resize-derived names never use it
CONVERTED_VARIANT_KEY = "webp"
TARGET_MIME_TYPE = "image/webp"
TARGET_EXTENSION = ".webp"


class SourceKind(Enum):
    """Raster kinds that can be converted to WebP"""
    JPEG = "image/jpeg"
    PNG = "image/png"
    GIF = "image/gif"

    @property
    def mime_type(self) -> str:
        return self.value


SUPPORTED_MIME_TYPES = tuple(kind.mime_type for kind in SourceKind)


class SkipReason(str, Enum):
    """Why a conversion did not produce a variant"""
    UNSUPPORTED_FORMAT = "unsupported-format"
    ALREADY_CONVERTED = "already-converted"
    CODEC_UNAVAILABLE = "codec-unavailable"
    ENCODE_FAILED = "encode-failed"


@dataclass(frozen=True)
class Variant:
    """One file of an asset, relative to the directory of the original"""
    file: str
    width: Optional[int]
    height: Optional[int]
    mime_type: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file,
            "width": self.width,
            "height": self.height,
            "mime-type": self.mime_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Variant":
        return cls(
            file=data["file"],
            width=data.get("width"),
            height=data.get("height"),
            mime_type=data.get("mime-type") or data.get("mime_type") or "application/octet-stream",
        )


@dataclass(frozen=True)
class AssetRecord:
    """Metadata record of a library asset.

    ``file`` is relative to the library base directory. ``version`` is bumped by
    the store on every successful compare-and-set and is what optimistic writes
    are checked against.
    """
    asset_id: str
    file: str
    mime_type: str
    width: Optional[int]
    height: Optional[int]
    sizes: Dict[str, Variant] = field(default_factory=dict)
    version: int = 0

    @property
    def converted_variant(self) -> Optional[Variant]:
        return self.sizes.get(CONVERTED_VARIANT_KEY)

    @property
    def is_converted(self) -> bool:
        return CONVERTED_VARIANT_KEY in self.sizes

    @property
    def is_image(self) -> bool:
        return bool(self.mime_type) and self.mime_type.startswith("image/")

    @property
    def filename(self) -> str:
        return self.file.rsplit("/", 1)[-1]

    def with_converted_variant(self, variant: Variant) -> "AssetRecord":
        """Return a copy carrying ``variant`` under the reserved key and the target mime type"""
        sizes = dict(self.sizes)
        sizes[CONVERTED_VARIANT_KEY] = variant
        return replace(self, sizes=sizes, mime_type=variant.mime_type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file,
            "width": self.width,
            "height": self.height,
            "mime": self.mime_type,
            "sizes": {name: variant.to_dict() for name, variant in self.sizes.items()},
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, asset_id: str, data: Dict[str, Any]) -> "AssetRecord":
        sizes = {
            name: Variant.from_dict(entry)
            for name, entry in (data.get("sizes") or {}).items()
        }
        return cls(
            asset_id=asset_id,
            file=data.get("file", ""),
            mime_type=data.get("mime", ""),
            width=data.get("width"),
            height=data.get("height"),
            sizes=sizes,
            version=int(data.get("version", 0)),
        )


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of converting one asset.

    Either ``converted`` with the new variant and the patched record, or skipped
    with a reason. The record is returned unchanged on a skip.
    """
    asset_id: str
    converted: bool
    variant: Optional[Variant] = None
    reason: Optional[SkipReason] = None
    message: str = ""
    asset: Optional[AssetRecord] = None

    @classmethod
    def success(cls, asset: AssetRecord, variant: Variant) -> "ConversionResult":
        return cls(asset_id=asset.asset_id, converted=True, variant=variant, asset=asset)

    @classmethod
    def skipped(
        cls,
        asset_id: str,
        reason: SkipReason,
        message: str = "",
        asset: Optional[AssetRecord] = None,
    ) -> "ConversionResult":
        return cls(asset_id=asset_id, converted=False, reason=reason, message=message, asset=asset)

    @property
    def failed(self) -> bool:
        """True when the transcode itself could not run or failed"""
        return self.reason in (SkipReason.CODEC_UNAVAILABLE, SkipReason.ENCODE_FAILED)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "asset_id": self.asset_id,
            "status": "converted" if self.converted else "skipped",
        }
        if self.variant:
            result["variant"] = self.variant.to_dict()
        if self.reason:
            result["reason"] = self.reason.value
        if self.message:
            result["message"] = self.message
        return result


@dataclass
class BulkConversionReport:
    """Aggregate counts of a bulk run"""
    converted: int = 0
    failed: int = 0
    skipped: int = 0
    results: list = field(default_factory=list)

    def record(self, result: ConversionResult):
        self.results.append(result)
        if result.converted:
            self.converted += 1
        elif result.failed:
            self.failed += 1
        else:
            self.skipped += 1

    def as_dict(self) -> Dict[str, int]:
        return {"converted": self.converted, "failed": self.failed, "skipped": self.skipped}


@dataclass(frozen=True)
class UnconvertedAsset:
    """Inventory row for an image that has no WebP variant yet"""
    asset_id: str
    filename: str
    mime_type: str
    dimensions: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.asset_id,
            "filename": self.filename,
            "type": self.mime_type,
            "dimensions": self.dimensions,
        }
