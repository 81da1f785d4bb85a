"""Exceptions raised by schema comparison and migration generation."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .diff import SchemaDifference


class SchemaAnalysisError(Exception):
    """Base exception for schema analysis.

    Callers can catch every comparison and generation failure with a single
    except clause.
    """

    def __init__(self, message: str, cause: Exception | None = None):
        """Initialize analysis error.

        Args:
            message: Human-readable error description
            cause: Optional underlying exception that caused this error
        """
        super().__init__(message)
        self.cause = cause


class SchemaDiffError(SchemaAnalysisError):
    """Comparing two snapshots failed unexpectedly."""

    pass


class MigrationGenerationError(SchemaAnalysisError):
    """Generating a migration script failed.

    Generation is all-or-nothing: when this is raised no script is returned.
    """

    pass


class InvalidOperationError(MigrationGenerationError):
    """A difference cannot be translated into SQL.

    Raised when:
    - a create has no ``after`` definition
    - a drop has no ``before`` definition
    - an alter is missing either side
    """

    def __init__(self, difference: "SchemaDifference", message: str):
        super().__init__(f"{difference.qualified_name}: {message}")
        self.difference = difference
        self.object_name = difference.qualified_name
        self.reason = message


class UnsupportedOperationError(MigrationGenerationError):
    """No translation rule exists for an object type and action."""

    pass


class SyntaxValidationError(MigrationGenerationError):
    """A generated statement does not have the expected statement shape."""

    def __init__(self, message: str, sql: str):
        super().__init__(message)
        self.sql = sql
