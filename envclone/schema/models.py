"""Schema snapshot data structures.

A snapshot describes the structure of one PostgreSQL database at a point in
time. Definitions are frozen dataclasses with tuple collections so snapshots
can be shared freely and compared structurally.
"""

from dataclasses import dataclass, field
from datetime import datetime

from ..core.runtime import utc_now


@dataclass(frozen=True)
class ColumnDefinition:
    """A table column."""

    name: str
    data_type: str
    is_nullable: bool = True
    max_length: int | None = None
    numeric_precision: int | None = None
    numeric_scale: int | None = None
    default_value: str | None = None
    is_identity: bool = False
    comment: str | None = None


@dataclass(frozen=True)
class ConstraintDefinition:
    """A table constraint (PRIMARY KEY, UNIQUE, FOREIGN KEY or CHECK)."""

    name: str
    constraint_type: str
    column_names: tuple[str, ...] = ()
    referenced_schema: str | None = None
    referenced_table: str | None = None
    referenced_columns: tuple[str, ...] = ()
    check_clause: str | None = None
    on_delete: str | None = None

    @property
    def kind(self) -> str:
        return self.constraint_type.upper().replace("_", " ")

    @property
    def is_foreign_key(self) -> bool:
        return self.kind == "FOREIGN KEY"

    @property
    def references(self) -> str | None:
        """Schema-qualified referenced table of a foreign key."""
        if not self.is_foreign_key or not self.referenced_table:
            return None
        return f"{self.referenced_schema or 'public'}.{self.referenced_table}"


@dataclass(frozen=True)
class FunctionParameter:
    data_type: str
    name: str | None = None
    mode: str = "IN"
    default_value: str | None = None


@dataclass(frozen=True)
class FunctionDefinition:
    """A stored function or procedure."""

    schema_name: str
    name: str
    return_type: str
    parameters: tuple[FunctionParameter, ...] = ()
    language: str = "plpgsql"
    body: str = ""
    is_security_definer: bool = False
    volatility: str = "VOLATILE"
    comment: str | None = None

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"

    @property
    def argument_types(self) -> str:
        return ", ".join(
            p.data_type for p in self.parameters if p.mode.upper() != "OUT"
        )

    @property
    def signature(self) -> str:
        """Qualified name plus argument types; distinguishes overloads."""
        return f"{self.qualified_name}({self.argument_types})"


@dataclass(frozen=True)
class TriggerDefinition:
    """A trigger attached to a table."""

    schema_name: str
    table_name: str
    name: str
    timing: str
    events: tuple[str, ...]
    function_name: str
    function_schema: str = "public"
    orientation: str = "ROW"
    condition: str | None = None

    @property
    def qualified_table(self) -> str:
        return f"{self.schema_name}.{self.table_name}"

    @property
    def qualified_name(self) -> str:
        return f"{self.qualified_table}.{self.name}"

    @property
    def qualified_function(self) -> str:
        return f"{self.function_schema}.{self.function_name}"


@dataclass(frozen=True)
class IndexColumn:
    name: str
    sort_order: str = "ASC"


@dataclass(frozen=True)
class IndexDefinition:
    """A table index."""

    schema_name: str
    table_name: str
    name: str
    columns: tuple[IndexColumn, ...]
    method: str = "btree"
    is_unique: bool = False
    is_primary: bool = False
    where_clause: str | None = None

    @property
    def qualified_table(self) -> str:
        return f"{self.schema_name}.{self.table_name}"

    @property
    def qualified_name(self) -> str:
        return f"{self.qualified_table}.{self.name}"


@dataclass(frozen=True)
class PolicyDefinition:
    """A row-level security policy."""

    schema_name: str
    table_name: str
    name: str
    command: str = "ALL"
    roles: tuple[str, ...] = ("public",)
    using_expression: str | None = None
    check_expression: str | None = None
    is_permissive: bool = True

    @property
    def qualified_table(self) -> str:
        return f"{self.schema_name}.{self.table_name}"

    @property
    def qualified_name(self) -> str:
        return f"{self.qualified_table}.{self.name}"


@dataclass(frozen=True)
class ExtensionDefinition:
    name: str
    version: str | None = None
    schema_name: str = "public"


@dataclass(frozen=True)
class TableDefinition:
    """A table with its columns, constraints and attached objects."""

    schema_name: str
    name: str
    columns: tuple[ColumnDefinition, ...]
    constraints: tuple[ConstraintDefinition, ...] = ()
    indexes: tuple[IndexDefinition, ...] = ()
    triggers: tuple[TriggerDefinition, ...] = ()
    policies: tuple[PolicyDefinition, ...] = ()
    comment: str | None = None

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"

    @property
    def column_names(self) -> set[str]:
        return {column.name for column in self.columns}

    def get_column(self, name: str) -> ColumnDefinition | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None


@dataclass(frozen=True)
class SchemaDefinition:
    """Snapshot of a database's structure.

    The top-level ``triggers``, ``indexes`` and ``policies`` collections are
    the union of the per-table collections; use :meth:`from_tables` to derive
    them.
    """

    schemas: tuple[str, ...] = ("public",)
    tables: tuple[TableDefinition, ...] = ()
    functions: tuple[FunctionDefinition, ...] = ()
    triggers: tuple[TriggerDefinition, ...] = ()
    indexes: tuple[IndexDefinition, ...] = ()
    policies: tuple[PolicyDefinition, ...] = ()
    extensions: tuple[ExtensionDefinition, ...] = ()
    captured_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_tables(
        cls,
        tables: tuple[TableDefinition, ...] | list[TableDefinition],
        functions: tuple[FunctionDefinition, ...] | list[FunctionDefinition] = (),
        extensions: tuple[ExtensionDefinition, ...] | list[ExtensionDefinition] = (),
        schemas: tuple[str, ...] | None = None,
        captured_at: datetime | None = None,
    ) -> "SchemaDefinition":
        """Build a snapshot whose attached-object lists come from the tables."""
        tables = tuple(tables)
        if schemas is None:
            names = {table.schema_name for table in tables}
            names.update(function.schema_name for function in functions)
            schemas = tuple(sorted(names)) or ("public",)

        return cls(
            schemas=schemas,
            tables=tables,
            functions=tuple(functions),
            triggers=tuple(t for table in tables for t in table.triggers),
            indexes=tuple(i for table in tables for i in table.indexes),
            policies=tuple(p for table in tables for p in table.policies),
            extensions=tuple(extensions),
            captured_at=captured_at or utc_now(),
        )


class SnapshotLoadError(Exception):
    """Raised when a schema snapshot cannot be read or is invalid."""

    def __init__(self, message: str, source: str | None = None):
        super().__init__(message)
        self.source = source
