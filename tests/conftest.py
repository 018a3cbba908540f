"""Shared fixtures: sample snapshots and throwaway driver executables."""

import stat
import sys
import textwrap
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import pytest

from dbsnap.schema.models import (
    Column,
    ForeignKey,
    Index,
    IndexColumn,
    SchemaSnapshot,
    Table,
)


def make_users_table(**overrides) -> Table:
    fields = {
        "name": "users",
        "row_count": 10,
        "columns": [
            Column(name="id", position=1, data_type="int", column_type="int(11)",
                   is_nullable=False, key="PRI", extra="auto_increment"),
            Column(name="email", position=2, data_type="varchar",
                   column_type="varchar(255)", is_nullable=False, key="UNI"),
        ],
        "indexes": [
            Index(name="PRIMARY", is_unique=True, is_primary=True, type="BTREE",
                  columns=[IndexColumn(name="id", sequence=1)]),
        ],
    }
    fields.update(overrides)
    return Table(**fields)


def make_orders_table(**overrides) -> Table:
    fields = {
        "name": "orders",
        "row_count": 5,
        "columns": [
            Column(name="id", position=1, column_type="int(11)", is_nullable=False, key="PRI"),
            Column(name="user_id", position=2, column_type="int(11)", key="MUL"),
        ],
        "foreign_keys": [
            ForeignKey(name="fk_orders_user", column="user_id", referenced_table="users",
                       referenced_column="id", on_delete="CASCADE", on_update="RESTRICT"),
        ],
    }
    fields.update(overrides)
    return Table(**fields)


def make_snapshot(key: str = "before", tables: list[Table] | None = None, **overrides) -> SchemaSnapshot:
    fields = {
        "key": key,
        "timestamp": datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc),
        "database": "shop",
        "host": "localhost",
        "db_type": "mysql",
        "tables": tables if tables is not None else [make_users_table(), make_orders_table()],
    }
    fields.update(overrides)
    return SchemaSnapshot(**fields)


# Payload a fake driver returns for extract_schema
FAKE_SNAPSHOT = {
    "timestamp": "2025-01-01T12:00:00Z",
    "database": "shop",
    "db_type": "fake",
    "tables": [
        {
            "name": "users",
            "row_count": 3,
            "columns": [{"name": "id", "column_type": "int", "default": None}],
            "indexes": None,
            "foreign_keys": None,
        }
    ],
}


@pytest.fixture
def write_driver(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing an executable Python script that acts as a driver.

    The script body runs with ``request`` bound to the decoded request and
    ``respond(obj, code=0)`` available to write a response and exit.
    """

    def _write(body: str, name: str = "fake", directory: Path | None = None) -> Path:
        directory = directory or tmp_path
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"dbsnap-driver-{name}"
        script = (
            f"#!{sys.executable}\n"
            "import json, os, sys, time\n"
            "raw = sys.stdin.read()\n"
            "request = json.loads(raw) if raw else {}\n"
            "def respond(obj, code=0):\n"
            "    sys.stdout.write(json.dumps(obj))\n"
            "    sys.stdout.flush()\n"
            "    sys.exit(code)\n"
            + textwrap.dedent(body)
        )
        path.write_text(script)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _write


# Driver answering the three protocol methods
WELL_BEHAVED_DRIVER = f"""
method = request.get("method")
if method == "get_version":
    respond({{"success": True, "data": {{"name": "fake", "version": "1.2.3"}}}})
elif method == "get_features":
    respond({{"success": True, "data": {{"features": {{"SupportsRowCounts": True}}}}}})
elif method == "extract_schema":
    snapshot = {FAKE_SNAPSHOT!r}
    snapshot["host"] = request["params"]["host"]
    respond({{"success": True, "data": snapshot}})
else:
    respond({{"success": False, "error": "unknown method: " + str(method)}}, 1)
"""
