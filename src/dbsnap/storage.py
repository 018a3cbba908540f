"""On-disk snapshot store.

Snapshots are saved as indented JSON files named
``<key>_<YYYYmmdd_HHMMSS>.json`` under one directory. A key may have many
files; the newest one is the current snapshot for that key.

Usage:
    from dbsnap.storage import SnapshotStorage

    storage = SnapshotStorage("./db_snapshots")
    path = storage.save(snapshot)
    baseline = storage.load("before_migration")
    for info in storage.list():
        print(info.key, info.timestamp, info.tables)
"""

import logging
import os
import re
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ValidationError

from dbsnap.schema.models import SchemaSnapshot

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
_FILE_SUFFIX = re.compile(r"_\d{8}_\d{6}\.json$")


class SnapshotNotFoundError(Exception):
    """Raised when no snapshot file exists for a key."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"No snapshot found with key: {key}")


class SnapshotInfo(BaseModel):
    """Listing entry for the newest snapshot of a key."""

    key: str
    database: str
    timestamp: datetime
    tables: int
    file_path: Path


class SnapshotStorage:
    """Reads and writes snapshot files in *base_dir*."""

    def __init__(self, base_dir: str | Path = "./db_snapshots"):
        self.base_dir = Path(base_dir)

    def _files_for(self, key: str) -> list[Path]:
        """Files of *key*, oldest first."""
        if not self.base_dir.is_dir():
            return []
        pattern = re.compile(re.escape(key) + _FILE_SUFFIX.pattern)
        return sorted(
            path for path in self.base_dir.iterdir() if pattern.fullmatch(path.name)
        )

    def save(self, snapshot: SchemaSnapshot) -> Path:
        """Write *snapshot* and return the file path.

        Raises:
            ValueError: If the snapshot has no key or the key is not a plain
                file name component.
        """
        if not snapshot.key:
            raise ValueError("Cannot save a snapshot without a key")
        if "/" in snapshot.key or os.sep in snapshot.key or ".." in snapshot.key:
            raise ValueError(f"Invalid snapshot key: {snapshot.key!r}")

        self.base_dir.mkdir(parents=True, exist_ok=True)
        filename = f"{snapshot.key}_{snapshot.timestamp.strftime(TIMESTAMP_FORMAT)}.json"
        path = self.base_dir / filename
        path.write_text(snapshot.model_dump_json(indent=2))
        logger.info("Saved snapshot %s to %s", snapshot.key, path)
        return path

    def load(self, key: str) -> SchemaSnapshot:
        """Load the newest snapshot for *key*.

        Raises:
            SnapshotNotFoundError: If the key has no files.
            pydantic.ValidationError: If the newest file is not a valid snapshot.
        """
        files = self._files_for(key)
        if not files:
            raise SnapshotNotFoundError(key)
        return SchemaSnapshot.model_validate_json(files[-1].read_bytes())

    def list(self) -> list[SnapshotInfo]:
        """Newest snapshot per key, newest first. Unreadable files are skipped."""
        if not self.base_dir.is_dir():
            return []

        latest: dict[str, SnapshotInfo] = {}
        for path in sorted(self.base_dir.glob("*.json")):
            try:
                snapshot = SchemaSnapshot.model_validate_json(path.read_bytes())
            except (OSError, ValidationError) as e:
                logger.warning("Skipping unreadable snapshot %s: %s", path, e)
                continue

            existing = latest.get(snapshot.key)
            if existing is None or snapshot.timestamp > existing.timestamp:
                latest[snapshot.key] = SnapshotInfo(
                    key=snapshot.key,
                    database=snapshot.database,
                    timestamp=snapshot.timestamp,
                    tables=len(snapshot.tables),
                    file_path=path,
                )

        return sorted(latest.values(), key=lambda info: info.timestamp, reverse=True)

    def delete(self, key: str) -> int:
        """Delete every file of *key* and return how many were removed.

        Raises:
            SnapshotNotFoundError: If the key has no files.
        """
        files = self._files_for(key)
        if not files:
            raise SnapshotNotFoundError(key)
        for path in files:
            path.unlink()
        logger.info("Deleted %d snapshot file(s) for %s", len(files), key)
        return len(files)
