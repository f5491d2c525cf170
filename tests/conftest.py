"""Shared fixtures for the WebP converter tests"""

from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

from managers.asset_store import InMemoryAssetStore
from managers.conversion_manager import ConversionManager
from models.settings import ConverterSettings


def _encode(img, fmt, **save_kwargs) -> bytes:
    buf = BytesIO()
    img.save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()


@pytest.fixture
def make_image():
    """Factory for encoded test images"""

    def _make(fmt="JPEG", size=(32, 24), mode="RGB", color=(200, 30, 30), **save_kwargs):
        img = Image.new(mode, size, color)
        return _encode(img, fmt, **save_kwargs)

    return _make


@pytest.fixture
def transparent_png():
    """20x10 PNG: left half fully transparent, right half opaque red"""
    img = Image.new("RGBA", (20, 10), (0, 0, 0, 0))
    img.paste((255, 0, 0, 255), (10, 0, 20, 10))
    return _encode(img, "PNG")


@pytest.fixture
def palette_png():
    """16x16 palette PNG: index 0 is transparent, a 8x8 opaque red square at the center"""
    img = Image.new("P", (16, 16), 0)
    img.putpalette([0, 0, 0, 255, 0, 0] + [0] * (256 * 3 - 6))
    img.paste(1, (4, 4, 12, 12))
    return _encode(img, "PNG", transparency=0)


@pytest.fixture
def palette_gif():
    """16x16 GIF with the same layout as palette_png: index 0 transparent, red center square"""
    img = Image.new("P", (16, 16), 0)
    img.putpalette([0, 0, 0, 255, 0, 0] + [0] * (256 * 3 - 6))
    img.paste(1, (4, 4, 12, 12))
    return _encode(img, "GIF", transparency=0, optimize=False)


@pytest.fixture
def library(tmp_path) -> Path:
    root = tmp_path / "uploads"
    root.mkdir()
    return root


@pytest.fixture
def store():
    return InMemoryAssetStore()


@pytest.fixture
def manager(store, library):
    return ConversionManager(store, library, settings=ConverterSettings(), base_url="https://host/uploads")


@pytest.fixture
def add_asset(store, library, make_image):
    """Write an image into the library and record it in the store"""

    def _add(relpath, fmt="JPEG", size=(32, 24), mime_type=None, data=None, record_size=True, **image_kwargs):
        path = library / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        if data is None:
            data = make_image(fmt=fmt, size=size, **image_kwargs)
        path.write_bytes(data)
        mime_type = mime_type or Image.MIME[fmt]
        width, height = size if record_size else (None, None)
        return store.add(file=relpath, mime_type=mime_type, width=width, height=height)

    return _add


class FakeMCP:
    """Collects tools registered through ``@mcp.tool()``"""

    def __init__(self):
        self.tools = {}

    def tool(self, name=None, description=None):
        def decorator(fn):
            self.tools[name or fn.__name__] = fn
            return fn
        return decorator


@pytest.fixture
def fake_mcp():
    return FakeMCP()
