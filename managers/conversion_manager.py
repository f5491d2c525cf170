"""Conversion manager: turns library originals into WebP variants and records them"""

import logging
import os
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Dict, Iterable, Optional, Union

from asset_processor import (
    TranscodeError,
    detect_source_kind,
    get_image_metadata,
    transcode_to_webp,
    validate_image_size,
    webp_available,
)
from managers.asset_store import AssetStore
from managers.reference_rewriter import rewrite_url
from models.asset import (
    TARGET_EXTENSION,
    TARGET_MIME_TYPE,
    AssetRecord,
    BulkConversionReport,
    ConversionResult,
    SkipReason,
    Variant,
)
from models.settings import ConverterSettings

logger = logging.getLogger("WebP_Converter")

BULK_ACTION = "convert_to_webp"

# Numbered names tried before giving up on a free WebP file name
MAX_TARGET_NAME_ATTEMPTS = 100

# Upload filename validation regex: simple filename only, no paths
UPLOAD_FILENAME_REGEX = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._-]{0,127}\.(jpe?g|png|gif)$', re.IGNORECASE)
# Subfolder validation regex: relative segments only, e.g. "2024/05"
SUBFOLDER_REGEX = re.compile(r'^[A-Za-z0-9_-]+(/[A-Za-z0-9_-]+)*$')


def canonicalize_path(path: Union[str, Path], must_exist: bool = True) -> Path:
    """Resolve path to absolute real path (handles symlinks).

    Raises:
        ValueError: If path cannot be resolved and must_exist=True
    """
    try:
        return Path(path).resolve(strict=must_exist)
    except (OSError, RuntimeError) as e:
        raise ValueError(f"Cannot resolve path {path}: {e}")


def is_within(child_path: Union[str, Path], parent_path: Union[str, Path], child_must_exist: bool = True) -> bool:
    """Check if child_path is within parent_path using real path resolution.

    Both paths are canonicalized (symlinks resolved) before comparison, which
    stops traversal through ``..`` segments or symlinks.
    """
    try:
        child_real = canonicalize_path(child_path, must_exist=child_must_exist)
        parent_real = canonicalize_path(parent_path, must_exist=True)
        return child_real.is_relative_to(parent_real)
    except (ValueError, OSError):
        return False


def validate_upload_filename(filename: str) -> bool:
    return bool(UPLOAD_FILENAME_REGEX.match(filename))


def converted_path_for(source_path: Path, attempt: int = 0) -> Path:
    """WebP path beside the original: same directory, same stem, .webp extension.

    Later attempts add a numeric suffix (``photo-1.webp``, ``photo-2.webp``)
    for when the plain name is already taken.
    """
    suffix = f"-{attempt}" if attempt else ""
    return source_path.with_name(f"{source_path.stem}{suffix}{TARGET_EXTENSION}")


class _AssetLock:
    """Lock for one asset id plus the number of callers holding or waiting on it"""

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class LibraryConfig:
    """Where the media library lives and how it is addressed."""

    def __init__(
        self,
        library_root: Optional[Union[str, Path]] = None,
        base_url: Optional[str] = None,
        store_path: Optional[Union[str, Path]] = None,
    ):
        """Initialize library configuration.

        Args:
            library_root: Base directory of all asset files
                (env WEBP_CONVERTER_LIBRARY_ROOT, else ./uploads)
            base_url: Public URL prefix of library_root
                (env WEBP_CONVERTER_BASE_URL, else /uploads)
            store_path: JSON metadata store
                (env WEBP_CONVERTER_STORE, else <library_root>/.webp-converter/assets.json)
        """
        root = library_root or os.getenv("WEBP_CONVERTER_LIBRARY_ROOT") or (Path.cwd() / "uploads")
        self.library_root = Path(root).resolve()
        self.library_root.mkdir(parents=True, exist_ok=True)

        self.base_url = (base_url or os.getenv("WEBP_CONVERTER_BASE_URL") or "/uploads").rstrip("/")

        store = store_path or os.getenv("WEBP_CONVERTER_STORE")
        self.store_path = Path(store).resolve() if store else self.library_root / ".webp-converter" / "assets.json"


class ConversionManager:
    """Converts library assets to WebP and records the result in the asset store.

    Every per-asset operation returns a ConversionResult; failures are logged
    and reported, never raised. Work on one asset id is serialized by a
    per-id lock, so ingestion and bulk runs cannot convert the same asset
    twice.
    """

    def __init__(
        self,
        store: AssetStore,
        library_root: Union[str, Path],
        settings: Optional[ConverterSettings] = None,
        base_url: str = "/uploads",
    ):
        self.store = store
        self.library_root = Path(library_root).resolve()
        self.settings = settings or ConverterSettings()
        self.base_url = base_url.rstrip("/")
        self._id_locks: Dict[str, _AssetLock] = {}
        self._id_locks_guard = threading.Lock()
        logger.info(f"Initialized ConversionManager with library_root={self.library_root}")

    @contextmanager
    def _asset_lock(self, asset_id: str):
        """Hold the lock of one asset id; the entry is dropped when its last user leaves"""
        with self._id_locks_guard:
            entry = self._id_locks.get(asset_id)
            if entry is None:
                entry = self._id_locks[asset_id] = _AssetLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._id_locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._id_locks[asset_id]

    def resolve_source_path(self, file: str) -> Path:
        """Resolve a library-relative (or absolute) file path.

        Raises:
            ValueError: If the path is outside the library root, missing, or
                not a file
        """
        candidate = Path(file)
        if not candidate.is_absolute():
            candidate = self.library_root / candidate

        source_real = canonicalize_path(candidate)
        if not is_within(source_real, self.library_root):
            raise ValueError(f"Source path {source_real} is outside library root {self.library_root}")
        if not source_real.is_file():
            raise ValueError(f"Source path is not a file: {source_real}")
        return source_real

    def convert(self, asset: Union[AssetRecord, str]) -> ConversionResult:
        """Convert one asset to WebP.

        The store's current record is authoritative; a passed-in record only
        names the asset.
        """
        asset_id = asset.asset_id if isinstance(asset, AssetRecord) else asset
        with self._asset_lock(asset_id):
            return self._convert_locked(asset_id)

    def _convert_locked(self, asset_id: str) -> ConversionResult:
        record = self.store.get(asset_id)
        if record is None:
            logger.debug(f"Asset {asset_id} not found; nothing to convert")
            return ConversionResult.skipped(asset_id, SkipReason.UNSUPPORTED_FORMAT, "Asset not found")

        if not record.is_image:
            logger.debug(f"Asset {asset_id} is not an image ({record.mime_type})")
            return ConversionResult.skipped(
                asset_id, SkipReason.UNSUPPORTED_FORMAT, f"Not an image: {record.mime_type}", asset=record
            )

        if record.is_converted:
            return ConversionResult.skipped(
                asset_id, SkipReason.ALREADY_CONVERTED, "WebP variant already recorded", asset=record
            )

        if not webp_available():
            logger.warning(f"WebP encoding unavailable; leaving asset {asset_id} unconverted")
            return ConversionResult.skipped(
                asset_id, SkipReason.CODEC_UNAVAILABLE, "WebP encoding is not available", asset=record
            )

        try:
            source_path = self.resolve_source_path(record.file)
            data = source_path.read_bytes()
        except (OSError, ValueError) as e:
            logger.error(f"Cannot read original of asset {asset_id} ({record.file}): {e}")
            return ConversionResult.skipped(asset_id, SkipReason.ENCODE_FAILED, str(e), asset=record)

        kind = detect_source_kind(data)
        if kind is None:
            logger.info(f"Unsupported image content for WebP conversion: {source_path}")
            return ConversionResult.skipped(
                asset_id, SkipReason.UNSUPPORTED_FORMAT, "Unsupported image content", asset=record
            )

        try:
            encoded = transcode_to_webp(data, kind, (record.width, record.height), self.settings)
        except TranscodeError as e:
            logger.error(f"WebP conversion failed for {source_path}: {e}")
            return ConversionResult.skipped(asset_id, e.reason, str(e), asset=record)

        try:
            target_path = self._claim_target(source_path)
        except OSError as e:
            logger.error(f"No WebP file name available for {source_path}: {e}")
            return ConversionResult.skipped(asset_id, SkipReason.ENCODE_FAILED, str(e), asset=record)

        width, height = encoded.size_px
        variant = Variant(file=target_path.name, width=width, height=height, mime_type=TARGET_MIME_TYPE)
        updated = record.with_converted_variant(variant)
        if record.width is None or record.height is None:
            # Unknown dimensions are filled in from the decoded original
            updated = replace(updated, width=width, height=height)

        result = self._commit(record, updated, variant, target_path, encoded.data)
        if result.converted:
            logger.info(
                f"WebP conversion successful for: {source_path} -> {target_path.name} "
                f"({len(data)}B -> {encoded.bytes_len}B, quality={encoded.quality})"
            )
        return result

    def _commit(
        self,
        record: AssetRecord,
        updated: AssetRecord,
        variant: Variant,
        target_path: Path,
        data: bytes,
    ) -> ConversionResult:
        """Publish the file, then record it; undo the file if the record write fails.

        ``target_path`` was claimed by this call, so removing it never touches a
        file another asset owns.
        """
        asset_id = record.asset_id
        try:
            self._publish_file(target_path, data)
        except OSError as e:
            logger.error(f"Failed to write WebP file {target_path}: {e}")
            self._discard_file(target_path)
            return ConversionResult.skipped(asset_id, SkipReason.ENCODE_FAILED, str(e), asset=record)

        try:
            committed = self.store.compare_and_set(asset_id, record.version, updated)
        except Exception as e:
            logger.exception(f"Failed to record WebP variant for asset {asset_id}")
            self._discard_file(target_path)
            return ConversionResult.skipped(asset_id, SkipReason.ENCODE_FAILED, str(e), asset=record)

        if not committed:
            current = self.store.get(asset_id)
            if current is not None and current.is_converted:
                if current.converted_variant.file != variant.file:
                    # Another writer recorded its own file; ours is unreferenced
                    self._discard_file(target_path)
                logger.info(f"Asset {asset_id} was converted concurrently")
                return ConversionResult.skipped(
                    asset_id, SkipReason.ALREADY_CONVERTED, "WebP variant already recorded", asset=current
                )
            self._discard_file(target_path)
            logger.error(f"Asset {asset_id} changed during conversion; WebP variant discarded")
            return ConversionResult.skipped(
                asset_id, SkipReason.ENCODE_FAILED, "Asset metadata changed during conversion", asset=current or record
            )

        committed_record = self.store.get(asset_id) or updated
        return ConversionResult.success(committed_record, variant)

    def _claim_target(self, source_path: Path) -> Path:
        """Reserve a free WebP path beside the original.

        The name is created exclusively (empty until published), so an existing
        file, such as another original's variant or a ``.webp`` original, is
        never overwritten.

        Raises:
            OSError: If no free name is found or the directory is not writable
        """
        for attempt in range(MAX_TARGET_NAME_ATTEMPTS):
            candidate = converted_path_for(source_path, attempt)
            try:
                with open(candidate, "xb"):
                    pass
            except FileExistsError:
                continue
            if attempt:
                logger.info(f"{converted_path_for(source_path).name} is taken; using {candidate.name}")
            return candidate
        raise OSError(f"No free WebP file name after {MAX_TARGET_NAME_ATTEMPTS} attempts")

    def _publish_file(self, target_path: Path, data: bytes):
        """Write bytes beside the target and rename into place"""
        temp_path = target_path.with_suffix(target_path.suffix + ".tmp")
        try:
            with open(temp_path, "wb") as f:
                f.write(data)
            temp_path.replace(target_path)
        except OSError:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            raise

    def _discard_file(self, target_path: Path):
        try:
            target_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to remove unrecorded WebP file {target_path}: {e}")

    def convert_with_timeout(self, asset: Union[AssetRecord, str], timeout: float) -> ConversionResult:
        """Run convert on a worker thread; give up waiting after ``timeout`` seconds.

        An abandoned conversion keeps running in the background and either
        commits completely or leaves nothing behind.
        """
        asset_id = asset.asset_id if isinstance(asset, AssetRecord) else asset
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="webp-convert")
        try:
            future = executor.submit(self.convert, asset)
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            logger.error(f"WebP conversion of asset {asset_id} timed out after {timeout}s")
            return ConversionResult.skipped(
                asset_id, SkipReason.ENCODE_FAILED, f"Conversion timed out after {timeout}s"
            )
        finally:
            executor.shutdown(wait=False)

    def bulk_convert(self, asset_ids: Iterable[str], max_workers: int = 1) -> BulkConversionReport:
        """Convert a batch of assets.

        Benign skips (not an image, unsupported content, already converted)
        count as ``skipped``; an unavailable codec or a failed encode counts as
        ``failed``.
        """
        asset_ids = list(asset_ids)
        report = BulkConversionReport()

        if max_workers > 1:
            with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="webp-bulk") as executor:
                for result in executor.map(self.convert, asset_ids):
                    report.record(result)
        else:
            for asset_id in asset_ids:
                report.record(self.convert(asset_id))

        logger.info(
            f"Bulk WebP conversion: {report.converted} converted, {report.failed} failed, "
            f"{report.skipped} skipped ({len(asset_ids)} requested)"
        )
        return report

    def handle_bulk_action(
        self, action: str, asset_ids: Iterable[str], max_workers: int = 1
    ) -> Optional[BulkConversionReport]:
        """Bulk trigger entry point. Returns None for actions this manager does not handle."""
        if action != BULK_ACTION:
            return None
        return self.bulk_convert(asset_ids, max_workers=max_workers)

    def ingest(self, file: Union[str, Path], asset_id: Optional[str] = None) -> ConversionResult:
        """Record a new original from the library and convert it.

        Raises:
            ValueError: If the file is outside the library or missing
            ImageTooLargeError: If the upload gate rejects the dimensions
        """
        source_path = self.resolve_source_path(str(file))
        data = source_path.read_bytes()
        info = get_image_metadata(data)
        validate_image_size(info["width"], info["height"], self.settings.max_image_dimension)

        record = self.store.add(
            file=source_path.relative_to(self.library_root).as_posix(),
            mime_type=info["mime_type"] or "application/octet-stream",
            width=info["width"],
            height=info["height"],
            asset_id=asset_id,
        )
        logger.info(f"Ingested asset {record.asset_id} from {source_path}")
        return self.convert(record)

    def store_upload(self, filename: str, data: bytes, subfolder: str = "") -> Path:
        """Write uploaded bytes into the library, applying the upload gate first.

        Raises:
            ValueError: If filename or subfolder is invalid, or the target exists
            ImageTooLargeError: If the upload gate rejects the dimensions
        """
        if not validate_upload_filename(filename):
            raise ValueError(
                f"Invalid upload filename: '{filename}'. "
                f"Must match regex: {UPLOAD_FILENAME_REGEX.pattern}"
            )
        if subfolder and not SUBFOLDER_REGEX.match(subfolder):
            raise ValueError(f"Invalid subfolder: '{subfolder}'")

        info = get_image_metadata(data)
        validate_image_size(info["width"], info["height"], self.settings.max_image_dimension)

        target_dir = self.library_root / subfolder if subfolder else self.library_root
        target_dir.mkdir(parents=True, exist_ok=True)
        target_path = target_dir / filename
        if not is_within(target_path, self.library_root, child_must_exist=False):
            raise ValueError(f"Upload path {target_path} is outside library root {self.library_root}")
        if target_path.exists():
            raise ValueError(f"File already exists in library: {target_path}")

        self._publish_file(target_path, data)
        logger.info(f"Stored upload {target_path} ({len(data)} bytes)")
        return target_path

    def resolve_url(self, asset_id: str, base_url: Optional[str] = None) -> Optional[str]:
        """Public URL of an asset, pointing at the WebP variant when one is recorded"""
        record = self.store.get(asset_id)
        if record is None:
            return None
        prefix = (base_url or self.base_url).rstrip("/")
        return rewrite_url(f"{prefix}/{record.file}", record)
