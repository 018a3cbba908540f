"""Tests for the bundled SQLite driver against real database files."""

import io
import json
import sqlite3
from contextlib import closing
from pathlib import Path

import pytest

from dbsnap.drivers import sqlite as sqlite_driver
from dbsnap.drivers.protocol import ExtractParams
from dbsnap.schema.comparator import compare_snapshots

SCHEMA = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY,
    email VARCHAR(255) NOT NULL UNIQUE,
    status TEXT DEFAULT 'active'
);
CREATE TABLE orders (
    id INTEGER PRIMARY KEY,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    total DECIMAL(10, 2)
);
CREATE INDEX idx_orders_user ON orders(user_id, total);
CREATE TABLE order_lines (
    order_id INTEGER,
    line_no INTEGER,
    sku TEXT,
    PRIMARY KEY (order_id, line_no)
);
CREATE TABLE shipments (
    id INTEGER PRIMARY KEY,
    order_id INTEGER,
    line_no INTEGER,
    FOREIGN KEY (order_id, line_no) REFERENCES order_lines(order_id, line_no)
);
INSERT INTO users (email) VALUES ('a@example.com'), ('b@example.com');
INSERT INTO orders (user_id, total) VALUES (1, 9.99);
"""


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "shop.db"
    with closing(sqlite3.connect(path)) as conn:
        conn.executescript(SCHEMA)
        conn.commit()
    return path


def _params(path: Path, **overrides) -> ExtractParams:
    return ExtractParams(database=str(path), **overrides)


class TestExtraction:
    """Verify tables, columns, indexes and foreign keys are extracted."""

    def test_tables_sorted_by_name(self, db_path: Path) -> None:
        snapshot = sqlite_driver.extract_schema(_params(db_path))
        assert snapshot.table_names == ["order_lines", "orders", "shipments", "users"]
        assert snapshot.db_type == "sqlite"
        assert snapshot.metadata.duration.endswith("s")

    def test_columns(self, db_path: Path) -> None:
        users = sqlite_driver.extract_schema(_params(db_path)).get_table("users")
        by_name = {c.name: c for c in users.columns}

        assert [c.position for c in users.columns] == [1, 2, 3]
        assert by_name["id"].key == "PRI"
        assert by_name["email"].column_type == "varchar(255)"
        assert by_name["email"].data_type == "varchar"
        assert by_name["email"].is_nullable is False
        assert by_name["status"].default_value == "'active'"
        assert by_name["status"].is_nullable is True

    def test_indexes_keep_column_order(self, db_path: Path) -> None:
        orders = sqlite_driver.extract_schema(_params(db_path)).get_table("orders")
        index = next(i for i in orders.indexes if i.name == "idx_orders_user")
        assert index.column_names == ["user_id", "total"]
        assert index.is_unique is False

    def test_unique_constraint_index(self, db_path: Path) -> None:
        users = sqlite_driver.extract_schema(_params(db_path)).get_table("users")
        assert any(i.is_unique and i.column_names == ["email"] for i in users.indexes)
        assert any(c.type == "UNIQUE" for c in users.constraints)

    def test_foreign_key(self, db_path: Path) -> None:
        orders = sqlite_driver.extract_schema(_params(db_path)).get_table("orders")
        [fk] = orders.foreign_keys
        assert fk.column == "user_id"
        assert fk.referenced_table == "users"
        assert fk.referenced_column == "id"
        assert fk.on_delete == "CASCADE"

    def test_composite_foreign_key_is_one_entry(self, db_path: Path) -> None:
        shipments = sqlite_driver.extract_schema(_params(db_path)).get_table("shipments")
        [fk] = shipments.foreign_keys
        assert fk.column == "order_id,line_no"
        assert fk.referenced_column == "order_id,line_no"

    def test_row_counts_when_requested(self, db_path: Path) -> None:
        snapshot = sqlite_driver.extract_schema(_params(db_path, verify_row_counts=True))
        users = snapshot.get_table("users")
        assert users.row_count == 2
        assert users.exact_row_count == 2

    def test_no_row_counts_by_default(self, db_path: Path) -> None:
        users = sqlite_driver.extract_schema(_params(db_path)).get_table("users")
        assert users.exact_row_count is None
        assert users.checksum == ""

    def test_connection_string_wins(self, db_path: Path) -> None:
        snapshot = sqlite_driver.extract_schema(
            ExtractParams(database="ignored.db", connection_string=str(db_path))
        )
        assert "users" in snapshot.table_names

    def test_missing_path(self) -> None:
        with pytest.raises(ValueError, match="database path"):
            sqlite_driver.extract_schema(ExtractParams())

    def test_missing_file_is_not_created(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            sqlite_driver.extract_schema(_params(tmp_path / "missing.db"))
        assert not (tmp_path / "missing.db").exists()


class TestChecksums:
    """Verify data checksums track row content."""

    def test_checksum_stable(self, db_path: Path) -> None:
        first = sqlite_driver.extract_schema(_params(db_path, verify_data=True))
        second = sqlite_driver.extract_schema(_params(db_path, verify_data=True))
        assert first.get_table("users").checksum
        assert first.get_table("users").checksum == second.get_table("users").checksum

    def test_checksum_changes_with_data(self, db_path: Path) -> None:
        before = sqlite_driver.extract_schema(_params(db_path, verify_data=True))
        with closing(sqlite3.connect(db_path)) as conn:
            conn.execute("UPDATE users SET email = 'c@example.com' WHERE id = 2")
            conn.commit()
        after = sqlite_driver.extract_schema(_params(db_path, verify_data=True))

        changes = compare_snapshots(before, after)

        assert [d.name for d in changes.tables_modified] == ["users"]
        assert changes.tables_modified[0].checksum_changed is True


class TestSchemaDrift:
    """Verify a migration shows up in the change set."""

    def test_added_column(self, db_path: Path) -> None:
        before = sqlite_driver.extract_schema(_params(db_path))
        with closing(sqlite3.connect(db_path)) as conn:
            conn.execute("ALTER TABLE users ADD COLUMN phone VARCHAR(20)")
            conn.commit()
        after = sqlite_driver.extract_schema(_params(db_path))

        changes = compare_snapshots(before, after)

        assert [d.name for d in changes.tables_modified] == ["users"]
        assert [c.name for c in changes.tables_modified[0].columns_added] == ["phone"]


class TestMain:
    """Verify the driver entry point speaks the wire protocol."""

    def test_server_round_trip(self, db_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        request = {"method": "extract_schema", "params": {"database": str(db_path)}}
        monkeypatch.setattr("sys.stdin", io.StringIO(json.dumps(request)))
        stdout = io.StringIO()
        monkeypatch.setattr("sys.stdout", stdout)

        assert sqlite_driver.main() == 0

        response = json.loads(stdout.getvalue())
        assert response["success"] is True
        assert response["data"]["db_type"] == "sqlite"
        assert len(response["data"]["tables"]) == 4
