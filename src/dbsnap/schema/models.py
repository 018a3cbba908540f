"""Pydantic models for schema snapshots and change sets.

This module contains schema-domain models:
- Snapshot models: SchemaSnapshot, SnapshotMetadata, Table, Column, Index,
  IndexColumn, ForeignKey, Constraint
- Change-set models: ChangeSet, TableDiff, ColumnDiff, IndexDiff,
  ForeignKeyDiff, ChangeSummary

Snapshot models are frozen: a snapshot is built once by a driver and then
only copied (``model_copy(update=...)``), never changed in place.

Drivers written in other languages emit ``null`` for empty arrays and
absent optionals, so every snapshot model reads a ``null`` field as its
default.
"""

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)


def _duplicate_names(items: Iterable[Any]) -> list[str]:
    """Return names that occur more than once, in first-seen order."""
    seen: set[str] = set()
    duplicates: list[str] = []
    for item in items:
        if item.name in seen and item.name not in duplicates:
            duplicates.append(item.name)
        seen.add(item.name)
    return duplicates


class SnapshotModel(BaseModel):
    """Base for frozen snapshot values."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


# ============================================================================
# Snapshot Models
# ============================================================================


class Column(SnapshotModel):
    """Schema for a table column.

    Example:
        >>> col = Column(name="id", column_type="int(11)")
        >>> col.is_nullable
        True
    """

    name: str
    position: int = 0
    data_type: str = ""
    column_type: str = ""  # Full type definition, e.g. varchar(255)
    is_nullable: bool = True
    default_value: str | None = Field(
        default=None,
        validation_alias=AliasChoices("default_value", "default"),
    )
    key: str = ""  # PRI, UNI, MUL
    extra: str = ""  # auto_increment, etc.


class IndexColumn(SnapshotModel):
    """One member column of an index."""

    name: str
    sequence: int = 0
    collation: str = ""  # ASC, DESC


class Index(SnapshotModel):
    """Schema for a table index."""

    name: str
    is_unique: bool = False
    is_primary: bool = False
    type: str = ""  # BTREE, HASH, etc.
    columns: list[IndexColumn] = Field(default_factory=list)

    @property
    def column_names(self) -> list[str]:
        return [col.name for col in self.columns]


class ForeignKey(SnapshotModel):
    """Schema for a foreign key.

    Composite keys carry comma-joined column lists in ``column`` and
    ``referenced_column``.
    """

    name: str = Field(validation_alias=AliasChoices("name", "constraint_name"))
    column: str = Field(
        default="", validation_alias=AliasChoices("column", "column_name")
    )
    referenced_table: str = ""
    referenced_column: str = ""
    on_delete: str = Field(
        default="", validation_alias=AliasChoices("on_delete", "delete_rule")
    )
    on_update: str = Field(
        default="", validation_alias=AliasChoices("on_update", "update_rule")
    )


class Constraint(SnapshotModel):
    """Schema for a table constraint (not compared, informational)."""

    name: str
    type: str = ""  # PRIMARY KEY, UNIQUE, CHECK


class Table(SnapshotModel):
    """Schema for a database table."""

    name: str
    engine: str = ""
    collation: str = ""
    row_count: int = 0  # Estimated
    exact_row_count: int | None = None
    data_length: int = 0
    avg_row_length: int = 0
    create_time: datetime | None = None
    update_time: datetime | None = None
    checksum: str = ""  # Empty means not captured
    columns: list[Column] = Field(default_factory=list)
    indexes: list[Index] = Field(default_factory=list)
    foreign_keys: list[ForeignKey] = Field(default_factory=list)
    constraints: list[Constraint] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def fold_composite_foreign_keys(cls, data: Any) -> Any:
        # Some drivers send one row per column of a composite key, all
        # under the constraint's name.
        if not isinstance(data, dict) or not isinstance(data.get("foreign_keys"), list):
            return data
        try:
            fks = [ForeignKey.model_validate(fk) for fk in data["foreign_keys"]]
        except ValidationError:
            return data

        grouped: dict[str, list[ForeignKey]] = {}
        for fk in fks:
            grouped.setdefault(fk.name, []).append(fk)
        folded = []
        for parts in grouped.values():
            first = parts[0]
            if len(parts) > 1:
                first = first.model_copy(
                    update={
                        "column": ",".join(p.column for p in parts),
                        "referenced_column": ",".join(p.referenced_column for p in parts),
                    }
                )
            folded.append(first)
        return {**data, "foreign_keys": folded}

    @model_validator(mode="after")
    def check_unique_member_names(self) -> "Table":
        for kind, items in (
            ("column", self.columns),
            ("index", self.indexes),
        ):
            duplicates = _duplicate_names(items)
            if duplicates:
                raise ValueError(
                    f"Table '{self.name}' has duplicate {kind} names: "
                    f"{', '.join(duplicates)}"
                )
        return self


class SnapshotMetadata(SnapshotModel):
    """Capture settings recorded alongside a snapshot."""

    version: str = ""
    verify_data: bool = False
    verify_row_counts: bool = False
    workers: int = 0
    duration: str = ""


class SchemaSnapshot(SnapshotModel):
    """Point-in-time view of one database's structure.

    Example:
        >>> snap = SchemaSnapshot(database="shop", tables=[Table(name="users")])
        >>> snap.table_names
        ['users']
    """

    key: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    database: str = ""
    host: str = ""
    db_type: str = ""
    tables: list[Table] = Field(default_factory=list)
    metadata: SnapshotMetadata = Field(default_factory=SnapshotMetadata)

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        # Naive timestamps are UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def check_unique_table_names(self) -> "SchemaSnapshot":
        duplicates = _duplicate_names(self.tables)
        if duplicates:
            raise ValueError(f"Duplicate table names: {', '.join(duplicates)}")
        return self

    @property
    def table_names(self) -> list[str]:
        return [table.name for table in self.tables]

    def get_table(self, name: str) -> Table | None:
        """Look up a table by name."""
        for table in self.tables:
            if table.name == name:
                return table
        return None


# ============================================================================
# Change-Set Models
# ============================================================================


class ColumnDiff(BaseModel):
    """A column present on both sides with different attributes."""

    name: str
    before: Column
    after: Column


class IndexDiff(BaseModel):
    """An index present on both sides with different attributes."""

    name: str
    before: Index
    after: Index


class ForeignKeyDiff(BaseModel):
    """A foreign key present on both sides with different attributes."""

    name: str
    before: ForeignKey
    after: ForeignKey


class TableDiff(BaseModel):
    """Differences within one table present in both snapshots."""

    name: str
    columns_added: list[Column] = Field(default_factory=list)
    columns_removed: list[Column] = Field(default_factory=list)
    columns_modified: list[ColumnDiff] = Field(default_factory=list)
    indexes_added: list[Index] = Field(default_factory=list)
    indexes_removed: list[Index] = Field(default_factory=list)
    indexes_modified: list[IndexDiff] = Field(default_factory=list)
    foreign_keys_added: list[ForeignKey] = Field(default_factory=list)
    foreign_keys_removed: list[ForeignKey] = Field(default_factory=list)
    foreign_keys_modified: list[ForeignKeyDiff] = Field(default_factory=list)
    row_count_change: int | None = None
    checksum_changed: bool = False

    @property
    def has_changes(self) -> bool:
        """True if any sub-collection is non-empty or the data changed."""
        return bool(
            self.columns_added
            or self.columns_removed
            or self.columns_modified
            or self.indexes_added
            or self.indexes_removed
            or self.indexes_modified
            or self.foreign_keys_added
            or self.foreign_keys_removed
            or self.foreign_keys_modified
            or self.row_count_change
            or self.checksum_changed
        )


class ChangeSummary(BaseModel):
    """Counts over a change set."""

    tables_added: int = 0
    tables_removed: int = 0
    tables_modified: int = 0
    columns_added: int = 0
    columns_removed: int = 0
    columns_modified: int = 0
    indexes_added: int = 0
    indexes_removed: int = 0
    indexes_modified: int = 0
    foreign_keys_added: int = 0
    foreign_keys_removed: int = 0
    foreign_keys_modified: int = 0
    has_changes: bool = False


class ChangeSet(BaseModel):
    """Structural delta between a baseline and a target snapshot.

    Example:
        >>> ChangeSet().has_changes
        False
    """

    baseline_key: str = ""
    target_key: str = ""
    tables_added: list[Table] = Field(default_factory=list)
    tables_removed: list[Table] = Field(default_factory=list)
    tables_modified: list[TableDiff] = Field(default_factory=list)
    summary: ChangeSummary = Field(default_factory=ChangeSummary)

    @property
    def has_changes(self) -> bool:
        return bool(self.tables_added or self.tables_removed or self.tables_modified)
