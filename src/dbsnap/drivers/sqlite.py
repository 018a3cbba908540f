"""SQLite schema driver (``dbsnap-driver-sqlite``).

Extracts tables, columns, indexes and foreign keys from a SQLite file via
``sqlite_master`` and the table PRAGMAs. The database is opened read-only.

Connection: ``connection_string`` (when set) or ``database`` is the file
path.
"""

import hashlib
import sqlite3
import sys
import time
from pathlib import Path

from dbsnap import __version__
from dbsnap.drivers.protocol import DriverFeatures, ExtractParams
from dbsnap.drivers.server import DriverServer
from dbsnap.schema.models import (
    Column,
    Constraint,
    ForeignKey,
    Index,
    IndexColumn,
    SchemaSnapshot,
    SnapshotMetadata,
    Table,
)

DRIVER_NAME = "sqlite"

FEATURES = DriverFeatures(
    SupportsChecksums=True,
    SupportsRowCounts=True,
    SupportsIndexes=True,
    SupportsForeignKeys=True,
    SupportsConstraints=True,
)


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _open(path: str) -> sqlite3.Connection:
    if path == ":memory:":
        return sqlite3.connect(path)
    db_file = Path(path)
    if not db_file.is_file():
        raise FileNotFoundError(f"SQLite database not found: {path}")
    return sqlite3.connect(f"{db_file.resolve().as_uri()}?mode=ro", uri=True)


class SQLiteExtractor:
    """Reads schema metadata from an open SQLite connection.

    Usage:
        with closing(sqlite3.connect("app.db")) as conn:
            tables = SQLiteExtractor(conn).get_tables()
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def get_table_names(self) -> list[str]:
        rows = self._conn.execute(
            """
            SELECT name
            FROM sqlite_master
            WHERE type = 'table'
              AND name NOT LIKE 'sqlite_%'
            ORDER BY name
            """
        ).fetchall()
        return [row[0] for row in rows]

    def get_columns(self, table_name: str) -> list[Column]:
        rows = self._conn.execute(f"PRAGMA table_info({_quote(table_name)})")
        columns = []
        for cid, name, declared_type, not_null, default, pk in rows.fetchall():
            declared_type = declared_type or ""
            columns.append(
                Column(
                    name=name,
                    position=cid + 1,
                    data_type=declared_type.split("(")[0].strip().lower(),
                    column_type=declared_type.lower(),
                    is_nullable=not not_null,
                    default_value=default,
                    key="PRI" if pk else "",
                )
            )
        return columns

    def get_indexes(self, table_name: str) -> list[Index]:
        """Indexes of a table; the implicit primary key index is flagged."""
        rows = self._conn.execute(f"PRAGMA index_list({_quote(table_name)})")
        indexes = []
        for row in rows.fetchall():
            # seq, name, unique, origin, partial
            name, unique, origin = row[1], row[2], row[3]
            info = self._conn.execute(f"PRAGMA index_info({_quote(name)})")
            columns = [
                IndexColumn(name=col_name, sequence=seqno)
                for seqno, _cid, col_name in info.fetchall()
                if col_name is not None
            ]
            indexes.append(
                Index(
                    name=name,
                    is_unique=bool(unique),
                    is_primary=origin == "pk",
                    type="BTREE",
                    columns=columns,
                )
            )
        return sorted(indexes, key=lambda idx: idx.name)

    def get_foreign_keys(self, table_name: str) -> list[ForeignKey]:
        """Foreign keys, with composite keys folded into one entry."""
        rows = self._conn.execute(f"PRAGMA foreign_key_list({_quote(table_name)})")
        grouped: dict[int, dict] = {}
        for fk_id, _seq, ref_table, from_col, to_col, on_update, on_delete, _match in (
            rows.fetchall()
        ):
            entry = grouped.setdefault(
                fk_id,
                {
                    "name": f"fk_{table_name}_{ref_table}_{fk_id}",
                    "columns": [],
                    "referenced_table": ref_table,
                    "referenced_columns": [],
                    "on_update": on_update,
                    "on_delete": on_delete,
                },
            )
            entry["columns"].append(from_col)
            # A missing target column means the referenced primary key.
            entry["referenced_columns"].append(to_col or "")

        return [
            ForeignKey(
                name=entry["name"],
                column=",".join(entry["columns"]),
                referenced_table=entry["referenced_table"],
                referenced_column=",".join(entry["referenced_columns"]),
                on_delete=entry["on_delete"],
                on_update=entry["on_update"],
            )
            for _, entry in sorted(grouped.items())
        ]

    def get_constraints(self, columns: list[Column], indexes: list[Index]) -> list[Constraint]:
        constraints = []
        if any(col.key == "PRI" for col in columns):
            constraints.append(Constraint(name="PRIMARY", type="PRIMARY KEY"))
        for index in indexes:
            if index.is_unique and not index.is_primary:
                constraints.append(Constraint(name=index.name, type="UNIQUE"))
        return constraints

    def count_rows(self, table_name: str) -> int:
        return self._conn.execute(
            f"SELECT COUNT(*) FROM {_quote(table_name)}"
        ).fetchone()[0]

    def checksum(self, table_name: str, column_count: int) -> str:
        """SHA-256 over all rows in a stable order."""
        order = ", ".join(str(i) for i in range(1, column_count + 1)) or "1"
        digest = hashlib.sha256()
        cursor = self._conn.execute(
            f"SELECT * FROM {_quote(table_name)} ORDER BY {order}"
        )
        for row in cursor:
            digest.update(repr(row).encode())
            digest.update(b"\n")
        return digest.hexdigest()

    def get_tables(self, verify_data: bool = False, verify_row_counts: bool = False) -> list[Table]:
        tables = []
        for name in self.get_table_names():
            columns = self.get_columns(name)
            indexes = self.get_indexes(name)
            table = {
                "name": name,
                "engine": "sqlite",
                "columns": columns,
                "indexes": indexes,
                "foreign_keys": self.get_foreign_keys(name),
                "constraints": self.get_constraints(columns, indexes),
            }
            if verify_row_counts:
                count = self.count_rows(name)
                table["row_count"] = count
                table["exact_row_count"] = count
            if verify_data:
                table["checksum"] = self.checksum(name, len(columns))
            tables.append(Table(**table))
        return tables


def extract_schema(params: ExtractParams) -> SchemaSnapshot:
    """Extract a snapshot of the SQLite database named by *params*."""
    path = params.connection_string or params.database
    if not path:
        raise ValueError("SQLite driver requires a database path")

    started = time.monotonic()
    conn = _open(path)
    try:
        tables = SQLiteExtractor(conn).get_tables(
            verify_data=params.verify_data,
            verify_row_counts=params.verify_row_counts,
        )
    finally:
        conn.close()

    return SchemaSnapshot(
        database=params.database or path,
        db_type=DRIVER_NAME,
        tables=tables,
        metadata=SnapshotMetadata(
            version=__version__,
            verify_data=params.verify_data,
            verify_row_counts=params.verify_row_counts,
            workers=params.workers,
            duration=f"{time.monotonic() - started:.3f}s",
        ),
    )


def main() -> int:
    server = DriverServer(
        name=DRIVER_NAME,
        version=__version__,
        features=FEATURES,
        extract=extract_schema,
    )
    return server.run()


if __name__ == "__main__":
    sys.exit(main())
