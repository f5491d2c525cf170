"""Manager classes for the WebP converter"""

from managers.asset_store import AssetStore, InMemoryAssetStore, JsonFileAssetStore
from managers.conversion_manager import ConversionManager, LibraryConfig
from managers.defaults_manager import DefaultsManager

__all__ = [
    "AssetStore",
    "ConversionManager",
    "DefaultsManager",
    "InMemoryAssetStore",
    "JsonFileAssetStore",
    "LibraryConfig",
]
