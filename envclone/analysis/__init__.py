"""Schema comparison and migration generation."""

from .comparator import SchemaComparator, compare_schemas
from .dependencies import DependencyGraph, DependencyRef
from .diff import (
    ColumnChange,
    ComparisonOptions,
    DiffSummary,
    ExtensionDetails,
    FunctionDetails,
    IndexDetails,
    PolicyDetails,
    SchemaDiff,
    SchemaDifference,
    TableChanges,
    TableDetails,
    TriggerDetails,
)
from .errors import (
    InvalidOperationError,
    MigrationGenerationError,
    SchemaAnalysisError,
    SchemaDiffError,
    SyntaxValidationError,
    UnsupportedOperationError,
)
from .estimation import CostModel, DefaultCostModel
from .generator import MigrationGenerator, generate_migration_script
from .safety import MigrationSafetyValidator, SafetyReport, SafetyViolation
from .script import MigrationGeneratorOptions, MigrationOperation, MigrationScript
from .types import DiffAction, ObjectType, RiskLevel, ViolationType

__all__ = [
    "ColumnChange",
    "ComparisonOptions",
    "CostModel",
    "DefaultCostModel",
    "DependencyGraph",
    "DependencyRef",
    "DiffAction",
    "DiffSummary",
    "ExtensionDetails",
    "FunctionDetails",
    "IndexDetails",
    "InvalidOperationError",
    "MigrationGenerationError",
    "MigrationGenerator",
    "MigrationGeneratorOptions",
    "MigrationOperation",
    "MigrationSafetyValidator",
    "MigrationScript",
    "ObjectType",
    "PolicyDetails",
    "RiskLevel",
    "SafetyReport",
    "SafetyViolation",
    "SchemaAnalysisError",
    "SchemaComparator",
    "SchemaDiff",
    "SchemaDiffError",
    "SchemaDifference",
    "SyntaxValidationError",
    "TableChanges",
    "TableDetails",
    "TriggerDetails",
    "UnsupportedOperationError",
    "ViolationType",
    "compare_schemas",
    "generate_migration_script",
]
