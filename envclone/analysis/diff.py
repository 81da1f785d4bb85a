"""Schema diff data structures.

A :class:`SchemaDiff` lists every object that must be created, altered or
dropped in the target for it to match the source. Each difference carries a
details payload whose variant matches its object category.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

from pydantic_core import to_jsonable_python

from ..schema.models import (
    ColumnDefinition,
    ConstraintDefinition,
    ExtensionDefinition,
    FunctionDefinition,
    IndexDefinition,
    PolicyDefinition,
    TableDefinition,
    TriggerDefinition,
)
from .normalize import normalize_type_name
from .types import DiffAction, ObjectType

if TYPE_CHECKING:
    from ..core.config import EnvCloneSettings

T = TypeVar("T")


@dataclass(frozen=True)
class ColumnChange:
    """A column present on both sides with differing definitions."""

    name: str
    before: ColumnDefinition
    after: ColumnDefinition

    @property
    def type_changed(self) -> bool:
        return (
            normalize_type_name(self.before.data_type)
            != normalize_type_name(self.after.data_type)
            or self.before.max_length != self.after.max_length
            or self.before.numeric_precision != self.after.numeric_precision
            or self.before.numeric_scale != self.after.numeric_scale
        )

    @property
    def nullability_changed(self) -> bool:
        return self.before.is_nullable != self.after.is_nullable

    @property
    def default_changed(self) -> bool:
        # Identity columns carry no default of their own
        before = None if self.before.is_identity else self.before.default_value
        after = None if self.after.is_identity else self.after.default_value
        return before != after

    @property
    def identity_changed(self) -> bool:
        return self.before.is_identity != self.after.is_identity

    @property
    def comment_changed(self) -> bool:
        return self.before.comment != self.after.comment

    @property
    def is_structural(self) -> bool:
        """Whether the change needs an ALTER COLUMN clause."""
        return (
            self.type_changed
            or self.nullability_changed
            or self.default_changed
            or self.identity_changed
        )


@dataclass(frozen=True)
class TableChanges:
    """Column and constraint level changes of an altered table."""

    columns_added: tuple[ColumnDefinition, ...] = ()
    columns_dropped: tuple[ColumnDefinition, ...] = ()
    columns_modified: tuple[ColumnChange, ...] = ()
    constraints_added: tuple[ConstraintDefinition, ...] = ()
    constraints_dropped: tuple[ConstraintDefinition, ...] = ()
    comment_before: str | None = None
    comment_after: str | None = None

    @property
    def comment_changed(self) -> bool:
        return self.comment_before != self.comment_after

    @property
    def is_empty(self) -> bool:
        return not (
            self.columns_added
            or self.columns_dropped
            or self.columns_modified
            or self.constraints_added
            or self.constraints_dropped
            or self.comment_changed
        )

    @property
    def is_comment_only(self) -> bool:
        """Whether only table or column comments differ."""
        return not (
            self.columns_added
            or self.columns_dropped
            or self.constraints_added
            or self.constraints_dropped
            or any(c.is_structural for c in self.columns_modified)
        )

    def inverted(self) -> "TableChanges":
        """Changes that undo this set."""
        return TableChanges(
            columns_added=self.columns_dropped,
            columns_dropped=self.columns_added,
            columns_modified=tuple(
                ColumnChange(c.name, before=c.after, after=c.before)
                for c in self.columns_modified
            ),
            constraints_added=self.constraints_dropped,
            constraints_dropped=self.constraints_added,
            comment_before=self.comment_after,
            comment_after=self.comment_before,
        )


@dataclass(frozen=True)
class _Details(Generic[T]):
    reason: str
    before: T | None = None
    after: T | None = None

    object_type: ClassVar[ObjectType]

    def inverted(self, reason: str) -> "_Details[T]":
        return replace(self, reason=reason, before=self.after, after=self.before)


@dataclass(frozen=True)
class TableDetails(_Details[TableDefinition]):
    object_type: ClassVar[ObjectType] = ObjectType.TABLE

    changes: TableChanges | None = None

    def inverted(self, reason: str) -> "TableDetails":
        return replace(
            self,
            reason=reason,
            before=self.after,
            after=self.before,
            changes=self.changes.inverted() if self.changes else None,
        )


@dataclass(frozen=True)
class FunctionDetails(_Details[FunctionDefinition]):
    object_type: ClassVar[ObjectType] = ObjectType.FUNCTION


@dataclass(frozen=True)
class TriggerDetails(_Details[TriggerDefinition]):
    object_type: ClassVar[ObjectType] = ObjectType.TRIGGER


@dataclass(frozen=True)
class IndexDetails(_Details[IndexDefinition]):
    object_type: ClassVar[ObjectType] = ObjectType.INDEX


@dataclass(frozen=True)
class PolicyDetails(_Details[PolicyDefinition]):
    object_type: ClassVar[ObjectType] = ObjectType.POLICY


@dataclass(frozen=True)
class ExtensionDetails(_Details[ExtensionDefinition]):
    object_type: ClassVar[ObjectType] = ObjectType.EXTENSION


DifferenceDetails = (
    TableDetails
    | FunctionDetails
    | TriggerDetails
    | IndexDetails
    | PolicyDetails
    | ExtensionDetails
)


@dataclass
class SchemaDifference:
    """One object that differs between source and target.

    ``before`` in the details is the target's definition and ``after`` the
    source's; a create has no ``before`` and a drop no ``after``.
    """

    object_type: ObjectType
    action: DiffAction
    object_name: str
    schema_name: str
    details: DifferenceDetails
    dependencies: list[str] = field(default_factory=list)
    priority: int = 0
    table_name: str | None = None

    def __post_init__(self) -> None:
        if self.details.object_type != self.object_type:
            raise ValueError(
                f"{type(self.details).__name__} cannot describe a "
                f"{self.object_type.value} difference"
            )

    @property
    def qualified_name(self) -> str:
        parts = [self.schema_name, self.table_name, self.object_name]
        return ".".join(part for part in parts if part)

    @property
    def sort_key(self) -> tuple[str, str, str]:
        return (self.object_type.value, self.action.value, self.qualified_name)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = to_jsonable_python(self)
        data["qualified_name"] = self.qualified_name
        return data


@dataclass(frozen=True)
class DiffSummary:
    """Per-category difference counts."""

    total_differences: int = 0
    table_changes: int = 0
    function_changes: int = 0
    trigger_changes: int = 0
    index_changes: int = 0
    policy_changes: int = 0
    extension_changes: int = 0

    @classmethod
    def from_differences(cls, differences: list[SchemaDifference]) -> "DiffSummary":
        counts = dict.fromkeys(ObjectType, 0)
        for difference in differences:
            counts[difference.object_type] += 1
        return cls(
            total_differences=len(differences),
            table_changes=counts[ObjectType.TABLE],
            function_changes=counts[ObjectType.FUNCTION],
            trigger_changes=counts[ObjectType.TRIGGER],
            index_changes=counts[ObjectType.INDEX],
            policy_changes=counts[ObjectType.POLICY],
            extension_changes=counts[ObjectType.EXTENSION],
        )


@dataclass
class SchemaDiff:
    """Result of comparing a source snapshot against a target snapshot."""

    source_label: str
    target_label: str
    differences: list[SchemaDifference]
    summary: DiffSummary
    generated_at: datetime
    dependency_cycles: list[list[str]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.differences

    def filter(
        self,
        object_type: ObjectType | None = None,
        action: DiffAction | None = None,
    ) -> list[SchemaDifference]:
        return [
            d
            for d in self.differences
            if (object_type is None or d.object_type == object_type)
            and (action is None or d.action == action)
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_label": self.source_label,
            "target_label": self.target_label,
            "generated_at": self.generated_at.isoformat(),
            "summary": to_jsonable_python(self.summary),
            "differences": [d.to_dict() for d in self.differences],
            "dependency_cycles": self.dependency_cycles,
        }


@dataclass
class ComparisonOptions:
    """Options that control what the comparator looks at."""

    ignore_comments: bool = True
    ignore_indexes: bool = False
    ignore_policies: bool = False
    ignore_extensions: bool = False
    custom_ignore_patterns: list[str] = field(default_factory=list)
    dependency_analysis: bool = True

    @classmethod
    def from_settings(cls, settings: "EnvCloneSettings") -> "ComparisonOptions":
        return cls(
            ignore_comments=settings.ignore_comments,
            ignore_indexes=settings.ignore_indexes,
            ignore_policies=settings.ignore_policies,
            ignore_extensions=settings.ignore_extensions,
            custom_ignore_patterns=list(settings.ignore_patterns),
            dependency_analysis=settings.dependency_analysis,
        )
