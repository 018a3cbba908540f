"""Schema comparison between two snapshots.

Computes the structural change set between a baseline and a target
snapshot. Pure logic -- no I/O, no database connections, inputs are never
modified.

Usage:
    from dbsnap.schema.comparator import compare_snapshots
    from dbsnap.storage import SnapshotStorage

    storage = SnapshotStorage("./db_snapshots")
    changes = compare_snapshots(storage.load("before"), storage.load("after"))
    if changes.has_changes:
        print(changes.summary)
"""

from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from dbsnap.schema.models import (
    ChangeSet,
    ChangeSummary,
    Column,
    ColumnDiff,
    ForeignKey,
    ForeignKeyDiff,
    Index,
    IndexDiff,
    SchemaSnapshot,
    Table,
    TableDiff,
)

T = TypeVar("T")


# ============================================================================
# Equality Rules
# ============================================================================


def columns_equal(a: Column, b: Column) -> bool:
    """Compare the attributes that make up a column definition.

    ``position``, ``extra`` and ``data_type`` are ignored: reordering a
    column is not a change, and ``column_type`` already carries the type.
    """
    return (
        a.name == b.name
        and a.column_type == b.column_type
        and a.is_nullable == b.is_nullable
        and a.key == b.key
        and a.default_value == b.default_value
    )


def indexes_equal(a: Index, b: Index) -> bool:
    """Compare two indexes, including the order of their columns."""
    return (
        a.name == b.name
        and a.is_unique == b.is_unique
        and a.is_primary == b.is_primary
        and a.type == b.type
        and a.columns == b.columns
    )


def foreign_keys_equal(a: ForeignKey, b: ForeignKey) -> bool:
    return (
        a.name == b.name
        and a.column == b.column
        and a.referenced_table == b.referenced_table
        and a.referenced_column == b.referenced_column
        and a.on_delete == b.on_delete
        and a.on_update == b.on_update
    )


# ============================================================================
# Comparison
# ============================================================================


def _by_name(items: Iterable[T]) -> dict[str, T]:
    return {item.name: item for item in items}  # type: ignore[attr-defined]


def _diff_entities(
    baseline: Iterable[T],
    target: Iterable[T],
    equal: Callable[[T, T], bool],
) -> tuple[list[T], list[T], list[tuple[T, T]]]:
    """Classify name-keyed entities as added, removed or modified.

    Added and modified follow target order, removed follows baseline order.
    """
    old = _by_name(baseline)
    new = _by_name(target)

    added: list[T] = []
    modified: list[tuple[T, T]] = []
    for name, after in new.items():
        before = old.get(name)
        if before is None:
            added.append(after)
        elif not equal(before, after):
            modified.append((before, after))

    removed = [before for name, before in old.items() if name not in new]
    return added, removed, modified


def compare_tables(baseline: Table, target: Table) -> TableDiff:
    """Compare two versions of the same table.

    Args:
        baseline: Table as it was in the baseline snapshot.
        target: Table of the same name in the target snapshot.

    Returns:
        ``TableDiff`` for the pair. Check ``has_changes`` before reporting it.
    """
    cols_added, cols_removed, cols_modified = _diff_entities(
        baseline.columns, target.columns, columns_equal
    )
    idx_added, idx_removed, idx_modified = _diff_entities(
        baseline.indexes, target.indexes, indexes_equal
    )
    fks_added, fks_removed, fks_modified = _diff_entities(
        baseline.foreign_keys, target.foreign_keys, foreign_keys_equal
    )

    row_count_change: int | None = None
    if baseline.row_count != target.row_count:
        row_count_change = target.row_count - baseline.row_count

    checksum_changed = bool(
        baseline.checksum and target.checksum and baseline.checksum != target.checksum
    )

    return TableDiff(
        name=target.name,
        columns_added=cols_added,
        columns_removed=cols_removed,
        columns_modified=[
            ColumnDiff(name=after.name, before=before, after=after)
            for before, after in cols_modified
        ],
        indexes_added=idx_added,
        indexes_removed=idx_removed,
        indexes_modified=[
            IndexDiff(name=after.name, before=before, after=after)
            for before, after in idx_modified
        ],
        foreign_keys_added=fks_added,
        foreign_keys_removed=fks_removed,
        foreign_keys_modified=[
            ForeignKeyDiff(name=after.name, before=before, after=after)
            for before, after in fks_modified
        ],
        row_count_change=row_count_change,
        checksum_changed=checksum_changed,
    )


def summarize(
    tables_added: list[Table],
    tables_removed: list[Table],
    tables_modified: list[TableDiff],
) -> ChangeSummary:
    """Count changes, summing entity counts over modified tables."""
    counts: dict[str, Any] = {
        "tables_added": len(tables_added),
        "tables_removed": len(tables_removed),
        "tables_modified": len(tables_modified),
    }
    for kind in ("columns", "indexes", "foreign_keys"):
        for action in ("added", "removed", "modified"):
            field = f"{kind}_{action}"
            counts[field] = sum(len(getattr(diff, field)) for diff in tables_modified)
    counts["has_changes"] = bool(tables_added or tables_removed or tables_modified)
    return ChangeSummary(**counts)


def compare_snapshots(baseline: SchemaSnapshot, target: SchemaSnapshot) -> ChangeSet:
    """Compute the structural changes from *baseline* to *target*.

    Tables are matched by name:
    - Added tables: in *target* but not in *baseline*
    - Removed tables: in *baseline* but not in *target*
    - Modified tables: in both, with at least one added, removed or modified
      column, index or foreign key, a row count delta, or a changed checksum

    Args:
        baseline: The earlier snapshot.
        target: The later snapshot.

    Returns:
        ``ChangeSet`` with both snapshot keys, the table lists and a
        ``ChangeSummary``. Added and modified entries follow target order,
        removed entries follow baseline order.

    Examples:
        >>> users = Table(name="users", columns=[Column(name="id")])
        >>> snap = SchemaSnapshot(key="a", tables=[users])
        >>> compare_snapshots(snap, snap).has_changes
        False

        >>> # Column added
        >>> wider = Table(
        ...     name="users", columns=[Column(name="id"), Column(name="phone")]
        ... )
        >>> changes = compare_snapshots(snap, SchemaSnapshot(key="b", tables=[wider]))
        >>> [c.name for c in changes.tables_modified[0].columns_added]
        ['phone']

        >>> # Table removed
        >>> changes = compare_snapshots(snap, SchemaSnapshot(key="c"))
        >>> [t.name for t in changes.tables_removed]
        ['users']
    """
    old_tables = _by_name(baseline.tables)

    tables_added: list[Table] = []
    tables_modified: list[TableDiff] = []
    for table in target.tables:
        before = old_tables.get(table.name)
        if before is None:
            tables_added.append(table)
            continue
        diff = compare_tables(before, table)
        if diff.has_changes:
            tables_modified.append(diff)

    new_names = {table.name for table in target.tables}
    tables_removed = [t for t in baseline.tables if t.name not in new_names]

    return ChangeSet(
        baseline_key=baseline.key,
        target_key=target.key,
        tables_added=tables_added,
        tables_removed=tables_removed,
        tables_modified=tables_modified,
        summary=summarize(tables_added, tables_removed, tables_modified),
    )
