"""Schema snapshot model and loading."""

from .loader import FileSnapshotLoader, SnapshotLoader, load_snapshot_data
from .models import (
    ColumnDefinition,
    ConstraintDefinition,
    ExtensionDefinition,
    FunctionDefinition,
    FunctionParameter,
    IndexColumn,
    IndexDefinition,
    PolicyDefinition,
    SchemaDefinition,
    SnapshotLoadError,
    TableDefinition,
    TriggerDefinition,
)

__all__ = [
    "ColumnDefinition",
    "ConstraintDefinition",
    "ExtensionDefinition",
    "FileSnapshotLoader",
    "FunctionDefinition",
    "FunctionParameter",
    "IndexColumn",
    "IndexDefinition",
    "PolicyDefinition",
    "SchemaDefinition",
    "SnapshotLoadError",
    "SnapshotLoader",
    "TableDefinition",
    "TriggerDefinition",
    "load_snapshot_data",
]
