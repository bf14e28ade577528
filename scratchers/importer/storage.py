"""Filesystem-backed object storage for uploaded CSV files."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from urllib.parse import unquote, urlparse

from scratchers.importer.errors import StorageFetchError

logger = logging.getLogger(__name__)

STORAGE_ROOT = os.getenv("STORAGE_ROOT", "./storage")
STORAGE_PUBLIC_URL = os.getenv("STORAGE_PUBLIC_URL", "http://localhost:8000").rstrip("/")
PUBLIC_OBJECT_PREFIX = "/storage/v1/object/public/"
STORAGE_SCHEME = "storage://"
CSV_BUCKET = "game-images"
CSV_IMPORT_PREFIX = "csv_imports"


class LocalObjectStorage:
    """Stores objects as files under ``<root>/<bucket>/<path>``."""

    def __init__(self, root: str | Path, public_base_url: str) -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _object_path(self, bucket: str, path: str) -> Path:
        """Resolve bucket/path under the root, rejecting traversal attempts."""
        if not bucket or not path or "/" in bucket or bucket in {".", ".."}:
            raise StorageFetchError(f"Invalid storage object: bucket={bucket!r} path={path!r}")
        bucket_dir = (self.root / bucket).resolve()
        target = (bucket_dir / path).resolve()
        if not target.is_relative_to(bucket_dir):
            raise StorageFetchError(f"Invalid storage path: {path}")
        return target

    def download(self, bucket: str, path: str) -> bytes:
        target = self._object_path(bucket, path)
        try:
            return target.read_bytes()
        except OSError as exc:
            raise StorageFetchError(
                f"Storage download failed: {bucket}/{path}: {exc.strerror or exc}"
            ) from exc

    def upload(self, bucket: str, path: str, content: bytes, *, upsert: bool = False) -> str:
        target = self._object_path(bucket, path)
        if target.exists() and not upsert:
            raise FileExistsError(f"Storage object already exists: {bucket}/{path}")
        target.parent.mkdir(parents=True, exist_ok=True)

        # Atomic write: temp file in the same directory, then rename
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".upload-")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(content)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("Stored object bucket=%s path=%s size=%s", bucket, path, len(content))
        return path

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}{PUBLIC_OBJECT_PREFIX}{bucket}/{path}"

    def parse_locator(self, locator: str) -> tuple[str, str] | None:
        """Return (bucket, path) when *locator* points at this storage, else None.

        Accepts ``storage://bucket/path`` and this storage's own public URLs.
        """
        cleaned = locator.strip()
        if cleaned.startswith(STORAGE_SCHEME):
            remainder = cleaned[len(STORAGE_SCHEME):]
        elif cleaned.startswith(self.public_base_url + PUBLIC_OBJECT_PREFIX):
            remainder = urlparse(cleaned).path.split(PUBLIC_OBJECT_PREFIX, 1)[1]
        else:
            return None

        bucket, _, path = unquote(remainder).partition("/")
        if not bucket or not path:
            raise StorageFetchError(f"Invalid storage locator: {locator}")
        return bucket, path


def csv_import_path(source_url: str, timestamp_ms: int) -> str:
    """Object path for a CSV copied from *source_url*, e.g. csv_imports/games_1700000000000.csv."""

    filename = urlparse(source_url).path.rstrip("/").rsplit("/", 1)[-1] or "download.csv"
    stem = re.sub(r"\.csv$", "", filename, flags=re.IGNORECASE)
    stem = re.sub(r"[^A-Za-z0-9._-]", "_", stem).strip("._") or "download"
    return f"{CSV_IMPORT_PREFIX}/{stem}_{timestamp_ms}.csv"


def get_storage() -> LocalObjectStorage:
    return LocalObjectStorage(STORAGE_ROOT, STORAGE_PUBLIC_URL)
