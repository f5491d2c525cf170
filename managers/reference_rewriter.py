"""Point image references at the converted WebP variant.

All functions are pure and return their input unchanged when the asset has no
converted variant, so callers can run them on every resolution without
checking first.
"""

import re
from typing import Any, List, Mapping, Optional, Sequence
from urllib.parse import urlsplit, urlunsplit

from models.asset import AssetRecord

_SRCSET_SPLIT = re.compile(r"\s*,\s*(?=\S)")


def _converted_filename(asset: Optional[AssetRecord]) -> Optional[str]:
    if asset is None:
        return None
    variant = asset.converted_variant
    if variant is None or not variant.file:
        return None
    return variant.file


def _replace_filename(url: str, filename: str) -> str:
    parts = urlsplit(url)
    head, sep, last = parts.path.rpartition("/")
    if not last:
        # No file name segment (e.g. "https://host/" or "")
        return url
    return urlunsplit(parts._replace(path=f"{head}{sep}{filename}"))


def rewrite_url(url: str, asset: Optional[AssetRecord]) -> str:
    """Replace the final path segment of ``url`` with the converted file name.

    Query string and fragment are preserved.
    """
    filename = _converted_filename(asset)
    if not filename or not url:
        return url
    return _replace_filename(url, filename)


def rewrite_sized_image(image: Any, asset: Optional[AssetRecord]) -> Any:
    """Rewrite the URL of a ``(url, width, height, is_intrinsic)`` tuple.

    Lists stay lists; falsy or non-sequence values are returned as-is.
    """
    filename = _converted_filename(asset)
    if not filename or not image or not isinstance(image, (tuple, list)):
        return image
    if not isinstance(image[0], str):
        return image

    rewritten = [_replace_filename(image[0], filename), *image[1:]]
    return rewritten if isinstance(image, list) else tuple(rewritten)


def rewrite_srcset_candidates(candidates: Sequence[Any], asset: Optional[AssetRecord]) -> List[Any]:
    """Rewrite every candidate URL of a responsive image set.

    Each candidate is a mapping with a ``"url"`` key (other keys are kept) or a
    ``(url, descriptor)`` tuple. Order is preserved.
    """
    filename = _converted_filename(asset)
    if not filename:
        return list(candidates)

    rewritten = []
    for candidate in candidates:
        if isinstance(candidate, Mapping):
            url = candidate.get("url")
            if isinstance(url, str):
                candidate = {**candidate, "url": _replace_filename(url, filename)}
        elif isinstance(candidate, (tuple, list)) and candidate and isinstance(candidate[0], str):
            values = [_replace_filename(candidate[0], filename), *candidate[1:]]
            candidate = values if isinstance(candidate, list) else tuple(values)
        rewritten.append(candidate)
    return rewritten


def rewrite_srcset_attribute(srcset: str, asset: Optional[AssetRecord]) -> str:
    """Rewrite an HTML ``srcset`` attribute, e.g. ``"a.jpg 300w, b.jpg 600w"``"""
    filename = _converted_filename(asset)
    if not filename or not srcset or not srcset.strip():
        return srcset

    entries = []
    for entry in _SRCSET_SPLIT.split(srcset.strip()):
        url, _, descriptor = entry.strip().partition(" ")
        url = _replace_filename(url, filename)
        entries.append(f"{url} {descriptor.strip()}" if descriptor.strip() else url)
    return ", ".join(entries)
