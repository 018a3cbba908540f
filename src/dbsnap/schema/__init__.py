"""Snapshot models and snapshot comparison.

Usage:
    from dbsnap.schema import SchemaSnapshot, compare_snapshots
"""

from dbsnap.schema.comparator import compare_snapshots
from dbsnap.schema.models import (
    ChangeSet,
    ChangeSummary,
    Column,
    ColumnDiff,
    Constraint,
    ForeignKey,
    ForeignKeyDiff,
    Index,
    IndexColumn,
    IndexDiff,
    SchemaSnapshot,
    SnapshotMetadata,
    Table,
    TableDiff,
)

__all__ = [
    "compare_snapshots",
    "SchemaSnapshot",
    "SnapshotMetadata",
    "Table",
    "Column",
    "Index",
    "IndexColumn",
    "ForeignKey",
    "Constraint",
    "ChangeSet",
    "ChangeSummary",
    "TableDiff",
    "ColumnDiff",
    "IndexDiff",
    "ForeignKeyDiff",
]
