"""Asset metadata stores with optimistic-concurrency writes"""

import copy
import json
import logging
import threading
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

from models.asset import AssetRecord, Variant

logger = logging.getLogger("WebP_Converter")


class AssetStore:
    """Per-asset metadata records behind get / compare-and-set.

    Subclasses only provide ``_read`` and ``_write`` over the serialized
    documents (asset id -> record dict); every mutation runs under the store
    lock so a compare-and-set is a single read-check-write step.
    """

    def __init__(self):
        self._lock = threading.Lock()  # Process-level lock for record updates

    def _read(self) -> Dict[str, Dict[str, Any]]:
        raise NotImplementedError

    def _write(self, documents: Dict[str, Dict[str, Any]]):
        raise NotImplementedError

    def get(self, asset_id: str) -> Optional[AssetRecord]:
        """Retrieve the current record, or None for an unknown id"""
        with self._lock:
            document = self._read().get(asset_id)
        if document is None:
            return None
        return AssetRecord.from_dict(asset_id, document)

    def add(
        self,
        file: str,
        mime_type: str,
        width: Optional[int] = None,
        height: Optional[int] = None,
        sizes: Optional[Dict[str, Variant]] = None,
        asset_id: Optional[str] = None,
    ) -> AssetRecord:
        """Register a newly ingested original and return its record"""
        asset_id = asset_id or str(uuid.uuid4())
        record = AssetRecord(
            asset_id=asset_id,
            file=file,
            mime_type=mime_type,
            width=width,
            height=height,
            sizes=dict(sizes or {}),
            version=1,
        )
        with self._lock:
            documents = self._read()
            if asset_id in documents:
                raise ValueError(f"Asset {asset_id} already exists")
            documents[asset_id] = record.to_dict()
            self._write(documents)

        logger.debug(f"Registered asset {asset_id} ({file}, {mime_type})")
        return record

    def compare_and_set(self, asset_id: str, expected_version: int, new_record: AssetRecord) -> bool:
        """Replace the record only if it is still at ``expected_version``.

        Returns:
            True if the write happened (the stored version becomes
            expected_version + 1), False if the record changed or vanished
        """
        with self._lock:
            documents = self._read()
            current = documents.get(asset_id)
            if current is None or int(current.get("version", 0)) != expected_version:
                logger.debug(f"Compare-and-set lost for asset {asset_id} at version {expected_version}")
                return False
            stored = replace(new_record, asset_id=asset_id, version=expected_version + 1)
            documents[asset_id] = stored.to_dict()
            self._write(documents)
        return True

    def iter_assets(self) -> Iterator[AssetRecord]:
        """Yield records lazily in the store's enumeration order.

        The id list is captured when iteration starts; each record is read when
        it is reached, and ids removed in between are skipped.
        """
        with self._lock:
            asset_ids = list(self._read().keys())
        for asset_id in asset_ids:
            record = self.get(asset_id)
            if record is not None:
                yield record

    def __len__(self) -> int:
        with self._lock:
            return len(self._read())


class InMemoryAssetStore(AssetStore):
    """Store kept in process memory (tests, embedding hosts)"""

    def __init__(self):
        super().__init__()
        self._documents: Dict[str, Dict[str, Any]] = {}

    def _read(self) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(self._documents)

    def _write(self, documents: Dict[str, Dict[str, Any]]):
        self._documents = copy.deepcopy(documents)


class JsonFileAssetStore(AssetStore):
    """Store persisted as one JSON document keyed by asset id"""

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized JsonFileAssetStore at {self.path}")

    def _read(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                documents = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Asset store {self.path} is not valid JSON: {e}")
            raise
        if not isinstance(documents, dict):
            raise ValueError(f"Asset store {self.path} must contain a JSON object")
        return documents

    def _write(self, documents: Dict[str, Dict[str, Any]]):
        # Atomic write: write to temp file then rename
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(documents, f, indent=2)
            temp_path.replace(self.path)
        except (OSError, TypeError) as e:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            logger.error(f"Failed to write asset store {self.path}: {e}")
            raise
