"""Conversion settings model"""

from dataclasses import dataclass

# Quality used for JPEG sources (high-fidelity lossy content)
DEFAULT_JPEG_QUALITY = 90
# Quality used for every other supported source kind
DEFAULT_QUALITY = 80
# Upload gate: either side above this many pixels is rejected
DEFAULT_MAX_IMAGE_DIMENSION = 2500
# libwebp effort (0 = fast, 6 = slowest/smallest)
DEFAULT_METHOD = 4


@dataclass(frozen=True)
class ConverterSettings:
    """Effective settings handed to the transcoder and the conversion manager"""
    jpeg_quality: int = DEFAULT_JPEG_QUALITY
    default_quality: int = DEFAULT_QUALITY
    max_image_dimension: int = DEFAULT_MAX_IMAGE_DIMENSION
    method: int = DEFAULT_METHOD
