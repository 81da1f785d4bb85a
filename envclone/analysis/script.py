"""Migration script data structures."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic_core import to_jsonable_python

from .types import DiffAction, ObjectType, RiskLevel

if TYPE_CHECKING:
    from ..core.config import EnvCloneSettings


@dataclass
class MigrationGeneratorOptions:
    """Options that control script generation.

    ``batch_size`` is the row chunk size assumed for data-bearing work and
    ``timeout_per_operation`` (milliseconds) is advisory: operations estimated
    to exceed it are flagged, never cut short.
    """

    include_rollback: bool = True
    validate_syntax: bool = False
    add_comments: bool = True
    batch_size: int = 100
    timeout_per_operation: int = 30000
    safe_mode: bool = True

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if self.timeout_per_operation <= 0:
            raise ValueError("timeout_per_operation must be positive")

    @classmethod
    def from_settings(cls, settings: "EnvCloneSettings") -> "MigrationGeneratorOptions":
        return cls(
            include_rollback=settings.include_rollback,
            validate_syntax=settings.validate_syntax,
            add_comments=settings.add_comments,
            batch_size=settings.batch_size,
            timeout_per_operation=settings.timeout_per_operation_ms,
            safe_mode=settings.safe_mode,
        )


@dataclass
class MigrationOperation:
    """One unit of migration work; its SQL may hold several statements."""

    id: str
    description: str
    sql: str
    object_type: ObjectType
    action: DiffAction
    object_name: str
    dependencies: list[str] = field(default_factory=list)
    estimated_duration: int = 0
    risk_level: RiskLevel = RiskLevel.LOW
    kind: str = "ddl"

    def to_dict(self) -> dict[str, Any]:
        return to_jsonable_python(self)


@dataclass
class MigrationScript:
    """Ordered forward operations plus the operations that undo them."""

    id: str
    source_label: str
    target_label: str
    operations: list[MigrationOperation]
    rollback_operations: list[MigrationOperation]
    dependencies: list[str]
    estimated_duration: int
    risk_level: RiskLevel
    generated_at: datetime
    warnings: list[str] = field(default_factory=list)

    def _render(self, operations: list[MigrationOperation], title: str) -> str:
        header = [
            f"-- {title} {self.id}",
            f"-- {self.source_label} -> {self.target_label}",
            f"-- Generated at {self.generated_at.isoformat()}",
            f"-- Risk level: {self.risk_level.value}",
        ]
        body = [operation.sql for operation in operations]
        return "\n\n".join(["\n".join(header), *body]) + "\n"

    def to_sql(self) -> str:
        """Forward operations as one SQL document."""
        return self._render(self.operations, "Migration")

    def rollback_sql(self) -> str:
        """Rollback operations as one SQL document."""
        return self._render(self.rollback_operations, "Rollback of migration")

    def to_dict(self) -> dict[str, Any]:
        return to_jsonable_python(self)
