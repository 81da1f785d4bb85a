"""envclone - schema comparison, migration generation and clone monitoring.

The package compares PostgreSQL schema snapshots, turns the resulting diff into
dependency-ordered migration scripts, and tracks environment clone operations.
"""

from .analysis import (
    ComparisonOptions,
    DiffAction,
    MigrationGenerator,
    MigrationGeneratorOptions,
    MigrationScript,
    ObjectType,
    RiskLevel,
    SchemaComparator,
    SchemaDiff,
    SchemaDifference,
    compare_schemas,
    generate_migration_script,
)
from .schema import FileSnapshotLoader, SchemaDefinition, SnapshotLoader

__version__ = "0.1.0"

__all__ = [
    "ComparisonOptions",
    "DiffAction",
    "FileSnapshotLoader",
    "MigrationGenerator",
    "MigrationGeneratorOptions",
    "MigrationScript",
    "ObjectType",
    "RiskLevel",
    "SchemaComparator",
    "SchemaDefinition",
    "SchemaDiff",
    "SchemaDifference",
    "SnapshotLoader",
    "__version__",
    "compare_schemas",
    "generate_migration_script",
]
