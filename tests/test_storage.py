"""Tests for the on-disk snapshot store."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from conftest import make_snapshot

from dbsnap.storage import SnapshotNotFoundError, SnapshotStorage

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def storage(tmp_path: Path) -> SnapshotStorage:
    return SnapshotStorage(tmp_path / "snapshots")


class TestSave:
    """Verify snapshot files are written under the key and timestamp."""

    def test_file_name(self, storage: SnapshotStorage) -> None:
        path = storage.save(make_snapshot("before", timestamp=T0))
        assert path.name == "before_20250101_120000.json"
        assert path.parent == storage.base_dir

    def test_creates_directory(self, storage: SnapshotStorage) -> None:
        assert not storage.base_dir.exists()
        storage.save(make_snapshot("before"))
        assert storage.base_dir.is_dir()

    def test_indented_json(self, storage: SnapshotStorage) -> None:
        path = storage.save(make_snapshot("before"))
        assert path.read_text().startswith('{\n  "key": "before"')

    def test_empty_key_rejected(self, storage: SnapshotStorage) -> None:
        with pytest.raises(ValueError, match="without a key"):
            storage.save(make_snapshot(""))

    @pytest.mark.parametrize("key", ["../x", "a/b", "a..b"])
    def test_path_like_key_rejected(self, storage: SnapshotStorage, tmp_path: Path, key: str) -> None:
        with pytest.raises(ValueError, match="Invalid snapshot key"):
            storage.save(make_snapshot(key))
        assert list(tmp_path.rglob("*.json")) == []


class TestLoad:
    """Verify loading picks the newest file of a key."""

    def test_round_trip(self, storage: SnapshotStorage) -> None:
        snapshot = make_snapshot("before")
        storage.save(snapshot)
        assert storage.load("before") == snapshot

    def test_newest_wins(self, storage: SnapshotStorage) -> None:
        storage.save(make_snapshot("k", timestamp=T0, database="old"))
        storage.save(make_snapshot("k", timestamp=T0 + timedelta(hours=1), database="new"))
        assert storage.load("k").database == "new"

    def test_missing_key(self, storage: SnapshotStorage) -> None:
        with pytest.raises(SnapshotNotFoundError, match="No snapshot found with key: nope"):
            storage.load("nope")

    def test_key_prefix_does_not_match_longer_key(self, storage: SnapshotStorage) -> None:
        storage.save(make_snapshot("a_b", timestamp=T0))
        with pytest.raises(SnapshotNotFoundError):
            storage.load("a")

    def test_key_with_regex_characters(self, storage: SnapshotStorage) -> None:
        storage.save(make_snapshot("v1.2+rc", timestamp=T0))
        storage.save(make_snapshot("v1x2+rc", timestamp=T0 + timedelta(hours=1)))
        assert storage.load("v1.2+rc").key == "v1.2+rc"

    def test_corrupt_file_raises(self, storage: SnapshotStorage) -> None:
        storage.base_dir.mkdir(parents=True)
        (storage.base_dir / "bad_20250101_120000.json").write_text("{")
        with pytest.raises(ValueError):
            storage.load("bad")


class TestList:
    """Verify listing returns the newest snapshot per key."""

    def test_empty_when_directory_missing(self, storage: SnapshotStorage) -> None:
        assert storage.list() == []

    def test_one_entry_per_key_newest_first(self, storage: SnapshotStorage) -> None:
        storage.save(make_snapshot("a", timestamp=T0))
        storage.save(make_snapshot("a", timestamp=T0 + timedelta(hours=2)))
        storage.save(make_snapshot("b", timestamp=T0 + timedelta(hours=1)))

        infos = storage.list()

        assert [i.key for i in infos] == ["a", "b"]
        assert infos[0].timestamp == T0 + timedelta(hours=2)
        assert infos[0].tables == 2
        assert infos[0].database == "shop"
        assert infos[0].file_path.name == "a_20250101_140000.json"

    def test_unreadable_files_skipped(self, storage: SnapshotStorage) -> None:
        storage.save(make_snapshot("good"))
        (storage.base_dir / "junk.json").write_text("not json")
        assert [i.key for i in storage.list()] == ["good"]

    def test_non_utf8_file_skipped(self, storage: SnapshotStorage) -> None:
        storage.save(make_snapshot("good"))
        (storage.base_dir / "junk_20250101_000000.json").write_bytes(b"\xff\xfe\x00garbage")
        assert [i.key for i in storage.list()] == ["good"]


class TestDelete:
    """Verify delete removes every file of a key."""

    def test_delete_all_files(self, storage: SnapshotStorage) -> None:
        storage.save(make_snapshot("a", timestamp=T0))
        storage.save(make_snapshot("a", timestamp=T0 + timedelta(hours=1)))
        storage.save(make_snapshot("ab", timestamp=T0))

        assert storage.delete("a") == 2
        with pytest.raises(SnapshotNotFoundError):
            storage.load("a")
        assert storage.load("ab").key == "ab"

    def test_delete_missing(self, storage: SnapshotStorage) -> None:
        with pytest.raises(SnapshotNotFoundError):
            storage.delete("nope")
