"""Plain-text and JSON renderings of a change set.

Both renderers list tables and their columns, indexes and foreign keys
sorted by name, so a report does not depend on driver row order.

Usage:
    from dbsnap.report import format_text, format_json

    print(format_text(changes))
    Path("diff.json").write_text(format_json(changes))
"""

import json

from dbsnap.schema.models import ChangeSet, Column, TableDiff


def _by_name(items: list) -> list:
    return sorted(items, key=lambda item: item.name)


def sorted_change_set(change_set: ChangeSet) -> ChangeSet:
    """Copy of *change_set* with every collection sorted by name."""
    modified = []
    for diff in _by_name(change_set.tables_modified):
        modified.append(
            diff.model_copy(
                update={
                    field: _by_name(getattr(diff, field))
                    for field in TableDiff.model_fields
                    if field not in ("name", "row_count_change", "checksum_changed")
                }
            )
        )
    return change_set.model_copy(
        update={
            "tables_added": _by_name(change_set.tables_added),
            "tables_removed": _by_name(change_set.tables_removed),
            "tables_modified": modified,
        }
    )


def format_text(change_set: ChangeSet) -> str:
    """Render *change_set* as a human-readable report.

    Example:
        >>> print(format_text(ChangeSet(baseline_key="a", target_key="b")))  # doctest: +ELLIPSIS
        === Schema Comparison: a → b ===
        ...
        No changes detected.
    """
    cs = sorted_change_set(change_set)
    summary = cs.summary

    lines = [
        f"=== Schema Comparison: {cs.baseline_key} → {cs.target_key} ===",
        "",
        "Summary:",
        f"  Tables Added:    {summary.tables_added}",
        f"  Tables Removed:  {summary.tables_removed}",
        f"  Tables Modified: {summary.tables_modified}",
        "",
    ]

    if cs.tables_added:
        lines.append("Added Tables:")
        for table in cs.tables_added:
            lines.append(
                f"  + {table.name} ({len(table.columns)} columns, {table.row_count} rows)"
            )
        lines.append("")

    if cs.tables_removed:
        lines.append("Removed Tables:")
        for table in cs.tables_removed:
            lines.append(
                f"  - {table.name} ({len(table.columns)} columns, {table.row_count} rows)"
            )
        lines.append("")

    if cs.tables_modified:
        lines.append("Modified Tables:")
        for diff in cs.tables_modified:
            lines.append(f"  ~ {diff.name}")
            lines.extend(_table_diff_lines(diff))
            lines.append("")

    if not cs.has_changes:
        lines.append("No changes detected.")

    return "\n".join(lines) + "\n"


def _table_diff_lines(diff: TableDiff) -> list[str]:
    lines: list[str] = []

    def section(title: str, entries: list[str]) -> None:
        if entries:
            lines.append(f"    {title}:")
            lines.extend(f"      {entry}" for entry in entries)

    section("Added Columns", [f"+ {c.name} ({c.column_type})" for c in diff.columns_added])
    section(
        "Removed Columns", [f"- {c.name} ({c.column_type})" for c in diff.columns_removed]
    )
    section(
        "Modified Columns",
        [_column_change(d.before, d.after) for d in diff.columns_modified],
    )
    section("Added Indexes", [f"+ {i.name}" for i in diff.indexes_added])
    section("Removed Indexes", [f"- {i.name}" for i in diff.indexes_removed])
    section(
        "Modified Indexes",
        [
            f"~ {d.name}: unique={d.before.is_unique}→{d.after.is_unique}, "
            f"primary={d.before.is_primary}→{d.after.is_primary}, "
            f"columns=({', '.join(d.before.column_names)})→"
            f"({', '.join(d.after.column_names)})"
            for d in diff.indexes_modified
        ],
    )
    section(
        "Added Foreign Keys",
        [
            f"+ {fk.column} → {fk.referenced_table}({fk.referenced_column})"
            for fk in diff.foreign_keys_added
        ],
    )
    section(
        "Removed Foreign Keys",
        [
            f"- {fk.column} → {fk.referenced_table}({fk.referenced_column})"
            for fk in diff.foreign_keys_removed
        ],
    )
    section(
        "Modified Foreign Keys",
        [
            f"~ {d.name}: {d.before.referenced_table}({d.before.referenced_column})→"
            f"{d.after.referenced_table}({d.after.referenced_column}), "
            f"OnDelete:{d.before.on_delete}→{d.after.on_delete}"
            for d in diff.foreign_keys_modified
        ],
    )

    if diff.row_count_change:
        lines.append(f"    Row Count: {diff.row_count_change:+d}")
    if diff.checksum_changed:
        lines.append("    ⚠ Data Checksum Changed (data modified)")
    return lines


def _column_change(before: Column, after: Column) -> str:
    parts = []
    if before.column_type != after.column_type:
        parts.append(f"{before.column_type} → {after.column_type}")
    if before.is_nullable != after.is_nullable:
        parts.append("NULL" if after.is_nullable else "NOT NULL")
    if before.key != after.key:
        parts.append(f"key {before.key or '-'} → {after.key or '-'}")
    if before.default_value != after.default_value:
        parts.append(f"default {before.default_value} → {after.default_value}")
    return f"~ {after.name}: {', '.join(parts)}"


def format_json(change_set: ChangeSet) -> str:
    """Render *change_set* as an indented JSON document.

    Layout::

        {"baseline_key": ..., "target_key": ..., "summary": {...},
         "changes": {"tables_added": [...], "tables_removed": [...],
                     "tables_modified": [...]}}
    """
    cs = sorted_change_set(change_set)
    report = {
        "baseline_key": cs.baseline_key,
        "target_key": cs.target_key,
        "summary": cs.summary.model_dump(mode="json"),
        "changes": {
            "tables_added": [t.model_dump(mode="json") for t in cs.tables_added],
            "tables_removed": [t.model_dump(mode="json") for t in cs.tables_removed],
            "tables_modified": [d.model_dump(mode="json") for d in cs.tables_modified],
        },
    }
    return json.dumps(report, indent=2, ensure_ascii=False)
