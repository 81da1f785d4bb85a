"""Destructive-change detection for schema diffs.

This module flags differences whose migration would lose data, weaken
row-level security, or take long exclusive locks, so they can be reviewed
before a script is applied.
"""

from dataclasses import dataclass, field

from .diff import SchemaDiff, SchemaDifference, TableChanges
from .types import DiffAction, ObjectType, ViolationType


@dataclass
class SafetyViolation:
    """A destructive or locking change."""

    violation_type: ViolationType
    object_name: str
    message: str


@dataclass
class SafetyReport:
    """Result of safety validation."""

    is_safe: bool
    violations: list[SafetyViolation] = field(default_factory=list)

    def messages(self) -> list[str]:
        return [violation.message for violation in self.violations]


_DROP_VIOLATIONS = {
    ObjectType.TABLE: (
        ViolationType.TABLE_DROPPED,
        "Table '{name}' is dropped; its data will be lost.",
    ),
    ObjectType.FUNCTION: (
        ViolationType.FUNCTION_DROPPED,
        "Function '{name}' is dropped; callers will fail.",
    ),
    ObjectType.POLICY: (
        ViolationType.POLICY_DROPPED,
        "Policy '{name}' is dropped; row-level security is weakened.",
    ),
    ObjectType.EXTENSION: (
        ViolationType.EXTENSION_DROPPED,
        "Extension '{name}' is dropped; dependent objects may break.",
    ),
}


class MigrationSafetyValidator:
    """Reports destructive changes in a diff."""

    def validate(self, diff: SchemaDiff) -> SafetyReport:
        """Validate every difference of a diff.

        Args:
            diff: Diff to inspect

        Returns:
            SafetyReport with is_safe flag and list of violations
        """
        violations: list[SafetyViolation] = []
        for difference in diff.differences:
            violations.extend(self._validate_difference(difference))

        return SafetyReport(is_safe=len(violations) == 0, violations=violations)

    def _validate_difference(
        self, difference: SchemaDifference
    ) -> list[SafetyViolation]:
        name = difference.qualified_name

        if difference.action == DiffAction.DROP:
            rule = _DROP_VIOLATIONS.get(difference.object_type)
            if rule is None:
                return []
            violation_type, template = rule
            return [SafetyViolation(violation_type, name, template.format(name=name))]

        changes = getattr(difference.details, "changes", None)
        if difference.action == DiffAction.ALTER and isinstance(changes, TableChanges):
            return self._validate_table_changes(name, changes)

        return []

    def _validate_table_changes(
        self, table: str, changes: TableChanges
    ) -> list[SafetyViolation]:
        violations = []

        for column in changes.columns_dropped:
            violations.append(
                SafetyViolation(
                    ViolationType.COLUMN_DROPPED,
                    f"{table}.{column.name}",
                    f"Column '{column.name}' is dropped from '{table}'; "
                    "its data will be lost.",
                )
            )

        for column in changes.columns_added:
            if not column.is_nullable and column.default_value is None:
                violations.append(
                    SafetyViolation(
                        ViolationType.REQUIRED_COLUMN_ADDED,
                        f"{table}.{column.name}",
                        f"NOT NULL column '{column.name}' is added to '{table}' "
                        "without a default; existing rows will be rejected.",
                    )
                )

        for change in changes.columns_modified:
            if change.type_changed:
                violations.append(
                    SafetyViolation(
                        ViolationType.COLUMN_TYPE_CHANGED,
                        f"{table}.{change.name}",
                        f"Column '{change.name}' of '{table}' changes type from "
                        f"'{change.before.data_type}' to '{change.after.data_type}'; "
                        "the table is rewritten and values may not convert.",
                    )
                )
            if change.before.is_nullable and not change.after.is_nullable:
                violations.append(
                    SafetyViolation(
                        ViolationType.COLUMN_MADE_NOT_NULL,
                        f"{table}.{change.name}",
                        f"Column '{change.name}' of '{table}' becomes NOT NULL; "
                        "existing NULL values will make the migration fail.",
                    )
                )

        return violations
