"""PostgreSQL schema driver (``dbsnap-driver-postgres``).

Queries information_schema and pg_catalog to extract:
- Tables with estimated row counts (``pg_class.reltuples``) and sizes
- Columns with full types (``format_type``), nullability, defaults, key tags
- Indexes (ordered columns, access method, primary flag)
- Foreign keys (composite keys folded, delete/update rules)
- Constraints (primary key, unique, check, foreign key)

Uses psycopg (v3) ``AsyncConnection``.
"""

import sys
import time
from urllib.parse import quote

import psycopg
from psycopg import AsyncConnection, sql

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

DRIVER_NAME = "postgres"

FEATURES = DriverFeatures(
    SupportsChecksums=True,
    SupportsRowCounts=True,
    SupportsIndexes=True,
    SupportsForeignKeys=True,
    SupportsConstraints=True,
)

# Tables to exclude from extraction (extension/tooling tables)
EXCLUDED_TABLES_DEFAULT = frozenset(
    {
        "schema_migrations",
        "pg_stat_statements",
        "spatial_ref_sys",
    }
)


def build_connection_url(params: ExtractParams) -> str:
    """Return the connection URL for *params*.

    ``connection_string`` wins when set; otherwise the URL is built from the
    discrete fields with percent-encoded credentials.

    Example:
        >>> build_connection_url(ExtractParams(
        ...     host="db", port=5432, user="app", password="p@ss", database="shop"
        ... ))
        'postgresql://app:p%40ss@db:5432/shop?sslmode=disable'
    """
    if params.connection_string:
        return params.connection_string
    credentials = quote(params.user, safe="")
    if params.password:
        credentials += ":" + quote(params.password, safe="")
    port = params.port or 5432
    return (
        f"postgresql://{credentials}@{params.host or 'localhost'}:{port}/"
        f"{quote(params.database, safe='')}?sslmode=disable"
    )


class PostgresExtractor:
    """Extracts schema metadata from a PostgreSQL database.

    Usage:
        async with PostgresExtractor(url) as extractor:
            tables = await extractor.get_tables()
    """

    def __init__(
        self,
        database_url: str,
        schema_name: str = "public",
        excluded_tables: set[str] | frozenset[str] | None = None,
        connect_timeout: int = 10,
    ):
        self._database_url = database_url
        self._schema = schema_name
        self._excluded_tables = (
            set(excluded_tables)
            if excluded_tables is not None
            else set(EXCLUDED_TABLES_DEFAULT)
        )
        self._connect_timeout = connect_timeout
        self._conn: AsyncConnection | None = None

    async def __aenter__(self) -> "PostgresExtractor":
        self._conn = await AsyncConnection.connect(
            self._database_url, connect_timeout=self._connect_timeout
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def _fetch(self, query, params: tuple = ()) -> list[tuple]:
        if not self._conn:
            raise RuntimeError("Extractor not connected. Use async with statement.")
        async with self._conn.cursor() as cur:
            await cur.execute(query, params)
            return await cur.fetchall()

    async def get_table_rows(self) -> list[tuple]:
        """Base tables with planner estimates and storage sizes."""
        query = """
            SELECT
                c.relname,
                GREATEST(c.reltuples, 0)::bigint AS estimated_rows,
                pg_total_relation_size(c.oid) AS total_size
            FROM pg_class c
            JOIN pg_namespace n ON n.oid = c.relnamespace
            WHERE n.nspname = %s
              AND c.relkind IN ('r', 'p')
            ORDER BY c.relname
        """
        rows = await self._fetch(query, (self._schema,))
        return [row for row in rows if row[0] not in self._excluded_tables]

    async def get_columns(self, table_name: str) -> list[Column]:
        query = """
            SELECT
                c.column_name,
                c.ordinal_position,
                c.data_type,
                format_type(a.atttypid, a.atttypmod) AS column_type,
                c.is_nullable,
                c.column_default,
                c.is_identity,
                (
                    SELECT string_agg(tc.constraint_type, ',')
                    FROM information_schema.key_column_usage kcu
                    JOIN information_schema.table_constraints tc
                        ON tc.constraint_name = kcu.constraint_name
                        AND tc.table_schema = kcu.table_schema
                    WHERE kcu.table_schema = c.table_schema
                      AND kcu.table_name = c.table_name
                      AND kcu.column_name = c.column_name
                      AND tc.constraint_type IN ('PRIMARY KEY', 'UNIQUE')
                ) AS key_types
            FROM information_schema.columns c
            JOIN pg_attribute a
                ON a.attrelid = format('%%I.%%I', c.table_schema, c.table_name)::regclass
                AND a.attname = c.column_name
            WHERE c.table_schema = %s
              AND c.table_name = %s
            ORDER BY c.ordinal_position
        """
        columns = []
        for row in await self._fetch(query, (self._schema, table_name)):
            (
                name,
                position,
                data_type,
                column_type,
                is_nullable,
                default,
                is_identity,
                key_types,
            ) = row
            key_types = key_types or ""
            if "PRIMARY KEY" in key_types:
                key = "PRI"
            elif "UNIQUE" in key_types:
                key = "UNI"
            else:
                key = ""
            columns.append(
                Column(
                    name=name,
                    position=position,
                    data_type=self._normalize_data_type(data_type),
                    column_type=column_type,
                    is_nullable=(is_nullable == "YES"),
                    default_value=default,
                    key=key,
                    extra="identity" if is_identity == "YES" else "",
                )
            )
        return columns

    def _normalize_data_type(self, data_type: str) -> str:
        """Map verbose information_schema type names to short ones."""
        type_map = {
            "character varying": "varchar",
            "character": "char",
            "timestamp with time zone": "timestamptz",
            "timestamp without time zone": "timestamp",
            "integer": "int",
            "boolean": "bool",
        }
        return type_map.get(data_type.lower(), data_type.lower())

    async def get_indexes(self, table_name: str) -> list[Index]:
        query = """
            SELECT
                i.relname AS index_name,
                array_agg(a.attname ORDER BY x.ordinality) AS columns,
                ix.indisunique AS is_unique,
                ix.indisprimary AS is_primary,
                am.amname AS index_type
            FROM pg_index ix
            JOIN pg_class t ON t.oid = ix.indrelid
            JOIN pg_class i ON i.oid = ix.indexrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            JOIN pg_am am ON am.oid = i.relam
            JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS x(attnum, ordinality) ON TRUE
            JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = x.attnum
            WHERE n.nspname = %s
              AND t.relname = %s
            GROUP BY i.relname, ix.indisunique, ix.indisprimary, am.amname
            ORDER BY i.relname
        """
        indexes = []
        for name, columns, is_unique, is_primary, idx_type in await self._fetch(
            query, (self._schema, table_name)
        ):
            indexes.append(
                Index(
                    name=name,
                    is_unique=is_unique,
                    is_primary=is_primary,
                    type=idx_type.upper(),
                    columns=[
                        IndexColumn(name=col, sequence=seq)
                        for seq, col in enumerate(columns, start=1)
                    ],
                )
            )
        return indexes

    async def get_foreign_keys(self, table_name: str) -> list[ForeignKey]:
        """Foreign keys; composite keys become comma-joined column lists."""
        query = """
            SELECT
                con.conname,
                string_agg(src.attname, ',' ORDER BY k.ordinality) AS columns,
                ref.relname AS referenced_table,
                string_agg(dst.attname, ',' ORDER BY k.ordinality) AS referenced_columns,
                rc.delete_rule,
                rc.update_rule
            FROM pg_constraint con
            JOIN pg_class t ON t.oid = con.conrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            JOIN pg_class ref ON ref.oid = con.confrelid
            JOIN LATERAL unnest(con.conkey, con.confkey)
                WITH ORDINALITY AS k(src_attnum, dst_attnum, ordinality) ON TRUE
            JOIN pg_attribute src ON src.attrelid = con.conrelid AND src.attnum = k.src_attnum
            JOIN pg_attribute dst ON dst.attrelid = con.confrelid AND dst.attnum = k.dst_attnum
            LEFT JOIN information_schema.referential_constraints rc
                ON rc.constraint_name = con.conname
                AND rc.constraint_schema = n.nspname
            WHERE con.contype = 'f'
              AND n.nspname = %s
              AND t.relname = %s
            GROUP BY con.conname, ref.relname, rc.delete_rule, rc.update_rule
            ORDER BY con.conname
        """
        return [
            ForeignKey(
                name=name,
                column=columns,
                referenced_table=ref_table,
                referenced_column=ref_columns,
                on_delete=delete_rule or "",
                on_update=update_rule or "",
            )
            for name, columns, ref_table, ref_columns, delete_rule, update_rule in (
                await self._fetch(query, (self._schema, table_name))
            )
        ]

    async def get_constraints(self, table_name: str) -> list[Constraint]:
        query = """
            SELECT constraint_name, constraint_type
            FROM information_schema.table_constraints
            WHERE table_schema = %s
              AND table_name = %s
              AND constraint_name NOT LIKE '%%_not_null'
            ORDER BY constraint_name
        """
        return [
            Constraint(name=name, type=ctype)
            for name, ctype in await self._fetch(query, (self._schema, table_name))
        ]

    async def count_rows(self, table_name: str) -> int:
        query = sql.SQL("SELECT COUNT(*) FROM {}").format(
            sql.Identifier(self._schema, table_name)
        )
        rows = await self._fetch(query)
        return rows[0][0]

    async def checksum(self, table_name: str) -> str:
        """MD5 over the text form of every row, in row-text order."""
        query = sql.SQL(
            "SELECT md5(COALESCE(string_agg(t::text, E'\\n' ORDER BY t::text), '')) "
            "FROM {} AS t"
        ).format(sql.Identifier(self._schema, table_name))
        rows = await self._fetch(query)
        return rows[0][0]

    async def get_tables(
        self, verify_data: bool = False, verify_row_counts: bool = False
    ) -> list[Table]:
        tables = []
        for name, estimated_rows, total_size in await self.get_table_rows():
            table = {
                "name": name,
                "engine": "postgres",
                "row_count": estimated_rows,
                "data_length": total_size,
                "columns": await self.get_columns(name),
                "indexes": await self.get_indexes(name),
                "foreign_keys": await self.get_foreign_keys(name),
                "constraints": await self.get_constraints(name),
            }
            if verify_row_counts:
                count = await self.count_rows(name)
                table["row_count"] = count
                table["exact_row_count"] = count
            if verify_data:
                table["checksum"] = await self.checksum(name)
            if table["row_count"]:
                table["avg_row_length"] = total_size // table["row_count"]
            tables.append(Table(**table))
        return tables


async def extract_schema(params: ExtractParams) -> SchemaSnapshot:
    """Extract a snapshot of the PostgreSQL database named by *params*."""
    started = time.monotonic()
    url = build_connection_url(params)
    try:
        async with PostgresExtractor(url) as extractor:
            tables = await extractor.get_tables(
                verify_data=params.verify_data,
                verify_row_counts=params.verify_row_counts,
            )
    except psycopg.OperationalError as e:
        raise ConnectionError(f"Failed to connect to PostgreSQL: {e}") from e

    return SchemaSnapshot(
        database=params.database,
        host=params.host,
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
