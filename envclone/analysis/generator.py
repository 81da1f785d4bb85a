"""Migration script generation.

The generator translates a :class:`SchemaDiff` into forward operations in
ascending priority order and, optionally, rollback operations that undo them
in reverse order. Generation is all-or-nothing: a difference that cannot be
translated aborts the whole script.
"""

from collections.abc import Callable, Mapping
from typing import Any

from ..core.logging import TimedOperationLogger, get_logger
from ..core.runtime import Clock, IdGenerator, TimestampIdGenerator, utc_now
from .comparator import table_changes
from .diff import SchemaDiff, SchemaDifference, TableChanges, TableDetails
from .errors import (
    InvalidOperationError,
    MigrationGenerationError,
    UnsupportedOperationError,
)
from .estimation import CostModel, DefaultCostModel, table_of
from .normalize import normalize_type_name
from .render import DdlRenderer
from .safety import MigrationSafetyValidator
from .script import MigrationGeneratorOptions, MigrationOperation, MigrationScript
from .syntax import check_statement_shape, parse_statements
from .types import DiffAction, ObjectType, RiskLevel

logger = get_logger(__name__)

RISK_RULES: Mapping[tuple[ObjectType, DiffAction], RiskLevel] = {
    (ObjectType.TABLE, DiffAction.CREATE): RiskLevel.LOW,
    (ObjectType.TABLE, DiffAction.ALTER): RiskLevel.MEDIUM,
    (ObjectType.TABLE, DiffAction.DROP): RiskLevel.HIGH,
    (ObjectType.FUNCTION, DiffAction.CREATE): RiskLevel.LOW,
    (ObjectType.FUNCTION, DiffAction.ALTER): RiskLevel.MEDIUM,
    (ObjectType.FUNCTION, DiffAction.DROP): RiskLevel.HIGH,
    (ObjectType.TRIGGER, DiffAction.CREATE): RiskLevel.LOW,
    (ObjectType.TRIGGER, DiffAction.ALTER): RiskLevel.MEDIUM,
    (ObjectType.TRIGGER, DiffAction.DROP): RiskLevel.MEDIUM,
    (ObjectType.INDEX, DiffAction.CREATE): RiskLevel.LOW,
    (ObjectType.INDEX, DiffAction.ALTER): RiskLevel.MEDIUM,
    (ObjectType.INDEX, DiffAction.DROP): RiskLevel.MEDIUM,
    (ObjectType.POLICY, DiffAction.CREATE): RiskLevel.LOW,
    (ObjectType.POLICY, DiffAction.ALTER): RiskLevel.MEDIUM,
    (ObjectType.POLICY, DiffAction.DROP): RiskLevel.MEDIUM,
    (ObjectType.EXTENSION, DiffAction.CREATE): RiskLevel.LOW,
    (ObjectType.EXTENSION, DiffAction.ALTER): RiskLevel.MEDIUM,
    (ObjectType.EXTENSION, DiffAction.DROP): RiskLevel.MEDIUM,
}

_VERBS = {
    DiffAction.CREATE: "Create",
    DiffAction.ALTER: "Alter",
    DiffAction.DROP: "Drop",
}

_INVERSE_ACTIONS = {
    DiffAction.CREATE: DiffAction.DROP,
    DiffAction.DROP: DiffAction.CREATE,
    DiffAction.ALTER: DiffAction.ALTER,
}


def describe(difference: SchemaDifference) -> str:
    """Human-readable summary, e.g. ``Create trigger audit on public.users``."""
    verb = _VERBS[difference.action]
    if difference.object_type == ObjectType.FUNCTION and difference.action == DiffAction.ALTER:
        verb = "Replace"
    kind = difference.object_type.value
    if difference.table_name:
        return (
            f"{verb} {kind} {difference.object_name} on "
            f"{difference.schema_name}.{difference.table_name}"
        )
    if difference.object_type == ObjectType.EXTENSION:
        return f"{verb} {kind} {difference.object_name}"
    return f"{verb} {kind} {difference.schema_name}.{difference.object_name}"


def invert(difference: SchemaDifference) -> SchemaDifference:
    """The difference that undoes ``difference``."""
    return SchemaDifference(
        object_type=difference.object_type,
        action=_INVERSE_ACTIONS[difference.action],
        object_name=difference.object_name,
        schema_name=difference.schema_name,
        table_name=difference.table_name,
        details=difference.details.inverted(
            reason=f"Rollback: {difference.details.reason}"
        ),
        dependencies=list(difference.dependencies),
        priority=difference.priority,
    )


class MigrationGenerator:
    """Translates schema diffs into migration scripts.

    Ids, the clock and the duration model are injected so output can be made
    deterministic.
    """

    def __init__(
        self,
        id_generator: IdGenerator | None = None,
        cost_model: CostModel | None = None,
        row_counts: Mapping[str, int] | None = None,
        clock: Clock = utc_now,
    ):
        """Initialize the generator.

        Args:
            id_generator: Produces script and operation ids
            cost_model: Estimates operation durations
            row_counts: Approximate row counts keyed by ``schema.table``
            clock: Source of the script timestamp
        """
        self.clock = clock
        self.id_generator = id_generator or TimestampIdGenerator(clock)
        self.cost_model = cost_model or DefaultCostModel()
        self.row_counts = dict(row_counts or {})
        self.safety_validator = MigrationSafetyValidator()

    def generate_migration_script(
        self, diff: SchemaDiff, options: MigrationGeneratorOptions | None = None
    ) -> MigrationScript:
        """Generate a migration script for a diff.

        Args:
            diff: Diff to translate
            options: Generation options; defaults apply when omitted

        Returns:
            The migration script

        Raises:
            InvalidOperationError: If a difference lacks the definitions its action needs
            UnsupportedOperationError: If no translation rule exists for a difference
            SyntaxValidationError: If syntax validation is on and a statement is malformed
            MigrationGenerationError: If generation fails for any other reason
        """
        options = options or MigrationGeneratorOptions()
        renderer = DdlRenderer(safe_mode=options.safe_mode, add_comments=options.add_comments)

        with TimedOperationLogger(logger, "generate_migration_script") as timer:
            try:
                # Stable sort keeps comparator order among equal priorities
                ordered = sorted(diff.differences, key=lambda d: d.priority)
                for difference in ordered:
                    self._validate_payload(difference)

                # COMMENT ON cannot open an operation on its own
                warnings: list[str] = [
                    f"{d.qualified_name}: only comments differ; no operation generated"
                    for d in ordered
                    if self._is_comment_only(d)
                ]
                ordered = [d for d in ordered if not self._is_comment_only(d)]
                operations = [
                    self._build_operation(d, renderer, options, warnings, "op")
                    for d in ordered
                ]

                rollback_operations: list[MigrationOperation] = []
                if options.include_rollback:
                    for difference in reversed(ordered):
                        if (
                            difference.object_type == ObjectType.TABLE
                            and difference.action == DiffAction.DROP
                        ):
                            warnings.append(
                                f"Rolling back the drop of {difference.qualified_name} "
                                "recreates its structure only; data is not restored."
                            )
                        rollback_operations.append(
                            self._build_operation(
                                invert(difference), renderer, options, [], "rollback"
                            )
                        )

                if options.validate_syntax:
                    warnings += self._validate_syntax(operations + rollback_operations)

                if options.safe_mode:
                    report = self.safety_validator.validate(diff)
                    warnings += report.messages()

                script = MigrationScript(
                    id=self.id_generator("migration"),
                    source_label=diff.source_label,
                    target_label=diff.target_label,
                    operations=operations,
                    rollback_operations=rollback_operations,
                    dependencies=self._collect_dependencies(operations),
                    estimated_duration=sum(op.estimated_duration for op in operations),
                    risk_level=RiskLevel.highest([op.risk_level for op in operations]),
                    generated_at=self.clock(),
                    warnings=warnings,
                )
            except MigrationGenerationError:
                raise
            except Exception as e:
                raise MigrationGenerationError(
                    f"Failed to generate migration script: {e}", cause=e
                ) from e

            timer.log_progress(
                "Migration script generated",
                script_id=script.id,
                operations=len(script.operations),
                rollback_operations=len(script.rollback_operations),
                risk_level=script.risk_level.value,
                estimated_duration_ms=script.estimated_duration,
            )
            return script

    @staticmethod
    def _validate_payload(difference: SchemaDifference) -> None:
        details = difference.details
        if difference.action == DiffAction.CREATE and details.after is None:
            raise InvalidOperationError(
                difference, "create difference has no source definition"
            )
        if difference.action == DiffAction.DROP and details.before is None:
            raise InvalidOperationError(
                difference, "drop difference has no target definition"
            )
        if difference.action == DiffAction.ALTER and (
            details.before is None or details.after is None
        ):
            raise InvalidOperationError(
                difference, "alter difference needs both definitions"
            )
        if (difference.object_type, difference.action) not in RISK_RULES:
            raise UnsupportedOperationError(
                f"No migration rule for {difference.action} {difference.object_type}"
            )

    def _build_operation(
        self,
        difference: SchemaDifference,
        renderer: DdlRenderer,
        options: MigrationGeneratorOptions,
        warnings: list[str],
        id_prefix: str,
    ) -> MigrationOperation:
        description = describe(difference)
        sql = self._render(difference, renderer)
        if options.add_comments:
            sql = f"-- {description}\n{sql}"

        table = table_of(difference)
        row_count = self.row_counts.get(table) if table else None
        duration = self.cost_model.estimate(difference, options, row_count)

        risk = RISK_RULES[(difference.object_type, difference.action)]
        if (
            difference.object_type == ObjectType.INDEX
            and difference.action == DiffAction.CREATE
            and not options.safe_mode
        ):
            # Without CONCURRENTLY the build blocks writes
            risk = RiskLevel.highest([risk, RiskLevel.MEDIUM])
        if duration > options.timeout_per_operation:
            risk = RiskLevel.highest([risk, RiskLevel.MEDIUM])
            warnings.append(
                f"{description}: estimated {duration}ms exceeds the "
                f"{options.timeout_per_operation}ms operation timeout"
            )

        return MigrationOperation(
            id=self.id_generator(id_prefix),
            description=description,
            sql=sql,
            object_type=difference.object_type,
            action=difference.action,
            object_name=difference.qualified_name,
            dependencies=list(difference.dependencies),
            estimated_duration=duration,
            risk_level=risk,
        )

    def _render(self, difference: SchemaDifference, renderer: DdlRenderer) -> str:
        action = difference.action
        before = difference.details.before
        after = difference.details.after

        match difference.object_type:
            case ObjectType.TABLE:
                return self._render_table(difference, renderer)
            case ObjectType.FUNCTION:
                if action == DiffAction.DROP:
                    return renderer.drop_function(before)
                if action == DiffAction.ALTER and normalize_type_name(
                    before.return_type
                ) != normalize_type_name(after.return_type):
                    # CREATE OR REPLACE cannot change the return type
                    return "\n".join(
                        [renderer.drop_function(before), renderer.create_function(after)]
                    )
                return renderer.create_function(after)
            case ObjectType.TRIGGER:
                return self._replace(
                    action, before, after, renderer.create_trigger, renderer.drop_trigger
                )
            case ObjectType.INDEX:
                return self._replace(
                    action, before, after, renderer.create_index, renderer.drop_index
                )
            case ObjectType.POLICY:
                return self._replace(
                    action, before, after, renderer.create_policy, renderer.drop_policy
                )
            case ObjectType.EXTENSION:
                if action == DiffAction.CREATE:
                    return renderer.create_extension(after)
                if action == DiffAction.ALTER:
                    return renderer.alter_extension(after)
                return renderer.drop_extension(before)

        raise UnsupportedOperationError(
            f"No migration rule for object type {difference.object_type}"
        )

    @staticmethod
    def _replace(
        action: DiffAction,
        before: Any,
        after: Any,
        create: Callable[[Any], str],
        drop: Callable[[Any], str],
    ) -> str:
        """Create, drop, or (for alters) drop and re-create an object."""
        if action == DiffAction.CREATE:
            return create(after)
        if action == DiffAction.DROP:
            return drop(before)
        return "\n".join([drop(before), create(after)])

    @staticmethod
    def _alter_changes(difference: SchemaDifference) -> TableChanges | None:
        details = difference.details
        if not isinstance(details, TableDetails):
            raise InvalidOperationError(
                difference, f"{type(details).__name__} cannot describe a table"
            )
        return details.changes or table_changes(details.before, details.after)

    def _is_comment_only(self, difference: SchemaDifference) -> bool:
        if (
            difference.object_type != ObjectType.TABLE
            or difference.action != DiffAction.ALTER
        ):
            return False
        changes = self._alter_changes(difference)
        return changes is not None and changes.is_comment_only

    def _render_table(self, difference: SchemaDifference, renderer: DdlRenderer) -> str:
        before = difference.details.before
        after = difference.details.after

        if difference.action == DiffAction.CREATE:
            return renderer.create_table(after)
        if difference.action == DiffAction.DROP:
            return renderer.drop_table(before)

        changes = self._alter_changes(difference)
        sql = renderer.alter_table(after, changes) if changes else ""
        if not sql:
            raise InvalidOperationError(
                difference, "alter difference carries no table changes"
            )
        return sql

    @staticmethod
    def _validate_syntax(operations: list[MigrationOperation]) -> list[str]:
        warnings: list[str] = []
        for operation in operations:
            check_statement_shape(operation.sql)
            report = parse_statements(operation.sql)
            warnings += [f"{operation.description}: {w}" for w in report.warnings]
        return warnings

    @staticmethod
    def _collect_dependencies(operations: list[MigrationOperation]) -> list[str]:
        seen: dict[str, None] = {}
        for operation in operations:
            for dependency in operation.dependencies:
                seen.setdefault(dependency, None)
        return list(seen)


def generate_migration_script(
    diff: SchemaDiff,
    options: MigrationGeneratorOptions | None = None,
    *,
    id_generator: IdGenerator | None = None,
    cost_model: CostModel | None = None,
    row_counts: Mapping[str, int] | None = None,
    clock: Clock = utc_now,
) -> MigrationScript:
    """Generate a migration script with a fresh :class:`MigrationGenerator`."""
    generator = MigrationGenerator(
        id_generator=id_generator,
        cost_model=cost_model,
        row_counts=row_counts,
        clock=clock,
    )
    return generator.generate_migration_script(diff, options)
