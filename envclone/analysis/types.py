"""Type definitions for schema analysis and migration generation."""

from enum import Enum


class ObjectType(str, Enum):
    """Categories of database objects tracked by the comparator."""

    TABLE = "table"
    FUNCTION = "function"
    TRIGGER = "trigger"
    INDEX = "index"
    POLICY = "policy"
    EXTENSION = "extension"


class DiffAction(str, Enum):
    """What must happen to the target for it to match the source."""

    CREATE = "create"
    ALTER = "alter"
    DROP = "drop"


class RiskLevel(str, Enum):
    """Operational risk of applying a migration operation."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    @classmethod
    def highest(cls, levels: "list[RiskLevel]") -> "RiskLevel":
        """Return the most severe level, or LOW for an empty list."""
        return max(levels, key=lambda level: level.rank, default=cls.LOW)


_RISK_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


class ViolationType(str, Enum):
    """Destructive or locking changes reported by the safety validator."""

    TABLE_DROPPED = "table_dropped"
    COLUMN_DROPPED = "column_dropped"
    COLUMN_TYPE_CHANGED = "column_type_changed"
    COLUMN_MADE_NOT_NULL = "column_made_not_null"
    REQUIRED_COLUMN_ADDED = "required_column_added"
    FUNCTION_DROPPED = "function_dropped"
    POLICY_DROPPED = "policy_dropped"
    EXTENSION_DROPPED = "extension_dropped"
