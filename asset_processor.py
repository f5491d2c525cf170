"""Image processing utilities for WebP conversion"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from io import BytesIO
from typing import Any, Dict, Optional, Tuple

import requests

from models.asset import TARGET_MIME_TYPE, SkipReason, SourceKind
from models.settings import ConverterSettings

try:
    from PIL import Image, features
    PIL_AVAILABLE = True
except ImportError:
    PIL_AVAILABLE = False
    logging.warning("Pillow not available. WebP conversion is disabled.")

logger = logging.getLogger("AssetProcessor")

# Content signatures, checked against the leading bytes of a file
_SIGNATURES = (
    (b"\xff\xd8\xff", SourceKind.JPEG),
    (b"\x89PNG\r\n\x1a\n", SourceKind.PNG),
    (b"GIF87a", SourceKind.GIF),
    (b"GIF89a", SourceKind.GIF),
)
_PIL_FORMATS = {
    SourceKind.JPEG: "JPEG",
    SourceKind.PNG: "PNG",
    SourceKind.GIF: "GIF",
}


class TranscodeError(Exception):
    """Raised when an image cannot be turned into WebP bytes"""

    def __init__(self, reason: SkipReason, message: str):
        super().__init__(message)
        self.reason = reason


class ImageTooLargeError(ValueError):
    """Raised by the upload gate when an image exceeds the maximum dimension"""


@dataclass(frozen=True)
class EncodedImage:
    """Encoded WebP output"""
    data: bytes
    mime_type: str  # image/webp
    size_px: Tuple[int, int]  # Always the source dimensions
    quality: int
    has_alpha: bool

    @property
    def bytes_len(self) -> int:
        return len(self.data)


def fetch_asset_bytes(asset_url: str, timeout: int = 30) -> bytes:
    """Fetch image bytes from a remote URL"""
    try:
        response = requests.get(asset_url, timeout=timeout)
        response.raise_for_status()
        return response.content
    except requests.RequestException as e:
        logger.error(f"Failed to fetch asset from {asset_url}: {e}")
        raise


def get_image_metadata(image_bytes: bytes) -> Dict[str, Any]:
    """Extract width, height, format and mime type from image bytes"""
    if not PIL_AVAILABLE:
        return {"width": None, "height": None, "format": None, "mime_type": None}

    try:
        with Image.open(BytesIO(image_bytes)) as img:
            return {
                "width": img.width,
                "height": img.height,
                "format": img.format,
                "mime_type": Image.MIME.get(img.format),
            }
    except Exception as e:
        logger.warning(f"Failed to extract image metadata: {e}")
        return {"width": None, "height": None, "format": None, "mime_type": None}


def should_reject(width: Optional[int], height: Optional[int], max_dim: int) -> bool:
    """Determine if either side is over the upload limit"""
    if width is None or height is None:
        return False
    return width > max_dim or height > max_dim


def validate_image_size(width: Optional[int], height: Optional[int], max_dim: int):
    """Upload gate: reject images larger than ``max_dim`` on either side.

    Unknown dimensions pass; the gate only judges what it can measure.

    Raises:
        ImageTooLargeError: If width or height exceeds ``max_dim``
    """
    if should_reject(width, height, max_dim):
        raise ImageTooLargeError(
            f"Image dimensions are too large ({width}x{height}). "
            f"Please upload images no larger than {max_dim}px in width or height."
        )


@lru_cache(maxsize=1)
def webp_available() -> bool:
    """Whether the runtime can encode WebP. Computed once per process."""
    if not PIL_AVAILABLE:
        return False
    try:
        return bool(features.check("webp"))
    except Exception as e:
        logger.warning(f"Could not query Pillow for WebP support: {e}")
        return False


def detect_source_kind(data: bytes) -> Optional[SourceKind]:
    """Classify image bytes by content signature.

    The extension and any declared mime type are ignored. Returns None for
    anything outside the supported set, including data that claims a supported
    signature but cannot be parsed.
    """
    if not data:
        return None

    kind = None
    for signature, candidate in _SIGNATURES:
        if data.startswith(signature):
            kind = candidate
            break
    if kind is None:
        return None

    if PIL_AVAILABLE:
        try:
            with Image.open(BytesIO(data)) as img:
                if img.format != _PIL_FORMATS[kind]:
                    return None
                img.verify()
        except Exception as e:
            logger.debug(f"Rejecting unreadable {kind.name} data: {e}")
            return None

    return kind


def quality_for(kind: SourceKind, settings: ConverterSettings) -> int:
    """JPEG sources get the higher preset, everything else the default one"""
    if kind is SourceKind.JPEG:
        return settings.jpeg_quality
    return settings.default_quality


def _has_transparency(img) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or "transparency" in img.info


def _prepare_image(img, kind: SourceKind):
    """Normalize the decoded image into a mode the WebP encoder writes verbatim.

    Palettes are expanded to full color. Images with any transparency keep
    their alpha channel in RGBA; nothing is composited onto a background.
    """
    if kind in (SourceKind.PNG, SourceKind.GIF) and _has_transparency(img):
        if img.mode != "RGBA":
            img = img.convert("RGBA")
        return img, True

    if img.mode != "RGB":
        img = img.convert("RGB")
    return img, False


def transcode_to_webp(
    data: bytes,
    kind: SourceKind,
    dimensions: Optional[Tuple[Optional[int], Optional[int]]] = None,
    settings: Optional[ConverterSettings] = None,
) -> EncodedImage:
    """Encode supported image bytes as WebP.

    Args:
        data: Source image bytes
        kind: Detected source kind
        dimensions: Recorded (width, height); when both are known the decoded
            image must match them
        settings: Quality presets and encoder effort (defaults if None)

    Returns:
        EncodedImage with the same pixel dimensions as the source

    Raises:
        TranscodeError: With reason codec-unavailable, unsupported-format or
            encode-failed
    """
    if not webp_available():
        raise TranscodeError(SkipReason.CODEC_UNAVAILABLE, "WebP encoding is not available in this runtime")

    if not isinstance(kind, SourceKind):
        raise TranscodeError(SkipReason.UNSUPPORTED_FORMAT, f"Unsupported source kind: {kind!r}")

    settings = settings or ConverterSettings()
    quality = quality_for(kind, settings)

    try:
        with Image.open(BytesIO(data)) as loaded:
            loaded.load()
            src_size = loaded.size
            exif = loaded.info.get("exif")
            icc_profile = loaded.info.get("icc_profile")

            if dimensions and None not in dimensions and tuple(dimensions) != src_size:
                raise TranscodeError(
                    SkipReason.ENCODE_FAILED,
                    f"Decoded size {src_size[0]}x{src_size[1]} does not match recorded "
                    f"size {dimensions[0]}x{dimensions[1]}",
                )

            img, has_alpha = _prepare_image(loaded, kind)

            save_kwargs = {
                "format": "WEBP",
                "quality": quality,
                "method": settings.method,
            }
            if has_alpha:
                # Keep RGB values under transparent pixels untouched
                save_kwargs["exact"] = True
            if exif:
                save_kwargs["exif"] = exif
            if icc_profile:
                save_kwargs["icc_profile"] = icc_profile

            buf = BytesIO()
            img.save(buf, **save_kwargs)
            encoded = buf.getvalue()
    except TranscodeError:
        raise
    except Exception as e:
        raise TranscodeError(SkipReason.ENCODE_FAILED, f"Failed to encode {kind.name} as WebP: {e}") from e

    if img.size != src_size:
        raise TranscodeError(SkipReason.ENCODE_FAILED, "Encoder changed the image dimensions")

    logger.debug(
        f"transcode: kind={kind.name} dims={src_size[0]}x{src_size[1]} quality={quality} "
        f"alpha={has_alpha} src={len(data)}B webp={len(encoded)}B"
    )

    return EncodedImage(
        data=encoded,
        mime_type=TARGET_MIME_TYPE,
        size_px=src_size,
        quality=quality,
        has_alpha=has_alpha,
    )
