"""Tests for the bundled PostgreSQL driver.

Query results are mocked at ``PostgresExtractor._fetch``; no database
server is needed.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import psycopg
import pytest

from dbsnap.drivers import postgres as pg_driver
from dbsnap.drivers.postgres import PostgresExtractor, build_connection_url
from dbsnap.drivers.protocol import ExtractParams


def _extractor(fetch_results: list) -> PostgresExtractor:
    extractor = PostgresExtractor("postgresql://localhost/test")
    extractor._fetch = AsyncMock(side_effect=fetch_results)
    return extractor


# ------------------------------------------------------------------
# Connection URL
# ------------------------------------------------------------------


class TestConnectionUrl:
    """Verify URL construction from extract params."""

    def test_discrete_fields(self) -> None:
        url = build_connection_url(
            ExtractParams(host="db", port=5433, user="app", password="p@ss/w", database="shop")
        )
        assert url == "postgresql://app:p%40ss%2Fw@db:5433/shop?sslmode=disable"

    def test_default_port_and_host(self) -> None:
        url = build_connection_url(ExtractParams(user="app", database="shop"))
        assert url == "postgresql://app@localhost:5432/shop?sslmode=disable"

    def test_connection_string_wins(self) -> None:
        url = build_connection_url(
            ExtractParams(host="ignored", connection_string="postgres://u@h:1/d")
        )
        assert url == "postgres://u@h:1/d"


# ------------------------------------------------------------------
# Metadata queries
# ------------------------------------------------------------------


class TestExtractor:
    """Verify query rows map to snapshot models."""

    async def test_fetch_requires_connection(self) -> None:
        extractor = PostgresExtractor("postgresql://localhost/test")
        with pytest.raises(RuntimeError, match="not connected"):
            await extractor._fetch("SELECT 1")

    async def test_get_columns(self) -> None:
        extractor = _extractor(
            [
                [
                    ("id", 1, "integer", "integer", "NO", None, "YES", "PRIMARY KEY"),
                    ("email", 2, "character varying", "character varying(255)", "NO", None, "NO", "UNIQUE"),
                    ("status", 3, "text", "text", "YES", "'active'::text", "NO", None),
                ]
            ]
        )

        columns = await extractor.get_columns("users")

        assert [c.name for c in columns] == ["id", "email", "status"]
        assert columns[0].key == "PRI"
        assert columns[0].extra == "identity"
        assert columns[0].data_type == "int"
        assert columns[1].key == "UNI"
        assert columns[1].column_type == "character varying(255)"
        assert columns[1].data_type == "varchar"
        assert columns[2].is_nullable is True
        assert columns[2].default_value == "'active'::text"
        assert columns[2].key == ""

    async def test_get_indexes(self) -> None:
        extractor = _extractor(
            [
                [
                    ("users_pkey", ["id"], True, True, "btree"),
                    ("idx_users_name", ["last_name", "first_name"], False, False, "btree"),
                ]
            ]
        )

        indexes = await extractor.get_indexes("users")

        assert indexes[0].is_primary is True
        assert indexes[0].type == "BTREE"
        assert indexes[1].column_names == ["last_name", "first_name"]
        assert [c.sequence for c in indexes[1].columns] == [1, 2]

    async def test_get_foreign_keys(self) -> None:
        extractor = _extractor(
            [[("fk_ship_line", "order_id,line_no", "order_lines", "order_id,line_no", "CASCADE", None)]]
        )

        [fk] = await extractor.get_foreign_keys("shipments")

        assert fk.name == "fk_ship_line"
        assert fk.column == "order_id,line_no"
        assert fk.on_delete == "CASCADE"
        assert fk.on_update == ""

    async def test_get_tables_excludes_migration_tables(self) -> None:
        extractor = _extractor([[("users", 10, 8192), ("schema_migrations", 3, 100)]])
        extractor.get_columns = AsyncMock(return_value=[])
        extractor.get_indexes = AsyncMock(return_value=[])
        extractor.get_foreign_keys = AsyncMock(return_value=[])
        extractor.get_constraints = AsyncMock(return_value=[])

        tables = await extractor.get_tables()

        assert [t.name for t in tables] == ["users"]
        assert tables[0].row_count == 10
        assert tables[0].exact_row_count is None
        assert tables[0].avg_row_length == 819

    async def test_get_tables_with_counts_and_checksums(self) -> None:
        extractor = _extractor([[("users", 0, 8192)]])
        extractor.get_columns = AsyncMock(return_value=[])
        extractor.get_indexes = AsyncMock(return_value=[])
        extractor.get_foreign_keys = AsyncMock(return_value=[])
        extractor.get_constraints = AsyncMock(return_value=[])
        extractor.count_rows = AsyncMock(return_value=42)
        extractor.checksum = AsyncMock(return_value="d41d8cd98f00b204e9800998ecf8427e")

        [table] = await extractor.get_tables(verify_data=True, verify_row_counts=True)

        assert table.row_count == 42
        assert table.exact_row_count == 42
        assert table.checksum == "d41d8cd98f00b204e9800998ecf8427e"


# ------------------------------------------------------------------
# Driver entry point
# ------------------------------------------------------------------


class TestExtractSchema:
    """Verify extract_schema wiring and error mapping."""

    async def test_connection_failure(self) -> None:
        with patch(
            "dbsnap.drivers.postgres.AsyncConnection.connect",
            new=AsyncMock(side_effect=psycopg.OperationalError("connection refused")),
        ):
            with pytest.raises(ConnectionError, match="connection refused"):
                await pg_driver.extract_schema(ExtractParams(database="shop"))

    async def test_snapshot_fields(self) -> None:
        conn = MagicMock()
        conn.close = AsyncMock()
        with (
            patch("dbsnap.drivers.postgres.AsyncConnection.connect", new=AsyncMock(return_value=conn)),
            patch.object(PostgresExtractor, "get_tables", new=AsyncMock(return_value=[])),
        ):
            snapshot = await pg_driver.extract_schema(
                ExtractParams(host="db", database="shop", workers=4)
            )

        assert snapshot.db_type == "postgres"
        assert snapshot.database == "shop"
        assert snapshot.host == "db"
        assert snapshot.metadata.workers == 4
        conn.close.assert_awaited_once()
