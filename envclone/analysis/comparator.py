"""Schema comparison.

The comparator walks each object category of two snapshots independently and
reports what has to be created, altered or dropped in the target for it to
match the source. Equality is structural: SQL text is compared after
normalization and optional comments are ignored on request.
"""

from collections.abc import Callable, Hashable, Iterable
from fnmatch import fnmatchcase
from typing import Any, TypeVar

from ..core.logging import TimedOperationLogger, get_logger
from ..core.runtime import Clock, utc_now
from ..schema.models import (
    ColumnDefinition,
    ConstraintDefinition,
    ExtensionDefinition,
    FunctionDefinition,
    IndexDefinition,
    PolicyDefinition,
    SchemaDefinition,
    TableDefinition,
    TriggerDefinition,
)
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
from .errors import SchemaAnalysisError, SchemaDiffError
from .normalize import normalize_sql_text, normalize_type_name
from .types import DiffAction, ObjectType

logger = get_logger(__name__)

D = TypeVar("D")

_KIND_LABELS = {
    ObjectType.TABLE: "Table",
    ObjectType.FUNCTION: "Function",
    ObjectType.TRIGGER: "Trigger",
    ObjectType.INDEX: "Index",
    ObjectType.POLICY: "Policy",
    ObjectType.EXTENSION: "Extension",
}

_Collected = list[tuple[SchemaDifference, list[DependencyRef]]]


def _function_key(function: FunctionDefinition) -> str:
    arguments = ", ".join(
        normalize_type_name(p.data_type)
        for p in function.parameters
        if p.mode.upper() != "OUT"
    )
    return f"{function.qualified_name}({arguments})"


class SchemaComparator:
    """Computes the difference between a source and a target snapshot."""

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock

    def compare_schemas(
        self,
        source: SchemaDefinition,
        target: SchemaDefinition,
        options: ComparisonOptions | None = None,
        *,
        source_label: str = "source",
        target_label: str = "target",
    ) -> SchemaDiff:
        """Compare two snapshots.

        Args:
            source: Snapshot the target should be brought in line with
            target: Snapshot to be migrated
            options: Comparison options; defaults apply when omitted
            source_label: Label recorded on the diff for the source
            target_label: Label recorded on the diff for the target

        Returns:
            The diff, ordered by priority when dependency analysis is enabled

        Raises:
            SchemaDiffError: If the comparison fails unexpectedly
        """
        options = options or ComparisonOptions()

        with TimedOperationLogger(logger, "compare_schemas") as timer:
            try:
                collected = self._collect(source, target, options)
                differences = [difference for difference, _ in collected]
                cycles: list[list[str]] = []

                if options.dependency_analysis:
                    references = {
                        index: refs for index, (_, refs) in enumerate(collected)
                    }
                    graph = DependencyGraph(differences, references)
                    differences = graph.order()
                    cycles = graph.cycles
                    for priority, difference in enumerate(differences):
                        difference.priority = priority

                diff = SchemaDiff(
                    source_label=source_label,
                    target_label=target_label,
                    differences=differences,
                    summary=DiffSummary.from_differences(differences),
                    generated_at=self.clock(),
                    dependency_cycles=cycles,
                )
            except SchemaAnalysisError:
                raise
            except Exception as e:
                raise SchemaDiffError(f"Unable to analyze schema: {e}", cause=e) from e

            timer.log_progress(
                "Schema comparison finished",
                total_differences=diff.summary.total_differences,
                tables=diff.summary.table_changes,
                functions=diff.summary.function_changes,
            )
            return diff

    def _collect(
        self,
        source: SchemaDefinition,
        target: SchemaDefinition,
        options: ComparisonOptions,
    ) -> _Collected:
        collected: _Collected = []

        collected += self._compare_category(
            ObjectType.TABLE,
            source.tables,
            target.tables,
            key=lambda t: t.qualified_name,
            changes=lambda before, after: self._table_changes(before, after, options),
            build=self._table_difference,
            options=options,
        )
        collected += self._compare_category(
            ObjectType.FUNCTION,
            source.functions,
            target.functions,
            key=_function_key,
            changes=lambda before, after: self._changed_fields(
                self._function_signature(before, options),
                self._function_signature(after, options),
            ),
            build=self._function_difference,
            options=options,
        )
        collected += self._compare_category(
            ObjectType.TRIGGER,
            source.triggers,
            target.triggers,
            key=lambda t: t.qualified_name,
            changes=lambda before, after: self._changed_fields(
                self._trigger_signature(before, options),
                self._trigger_signature(after, options),
            ),
            build=self._trigger_difference,
            options=options,
        )

        if not options.ignore_indexes:
            new_tables = {t.qualified_name: t for t in source.tables}
            old_tables = {t.qualified_name: t for t in target.tables}

            def build_index(
                action: DiffAction,
                index: IndexDefinition,
                before: IndexDefinition | None,
                after: IndexDefinition | None,
                reason: str,
                changed: Any,
            ) -> tuple[SchemaDifference, list[DependencyRef]]:
                tables = new_tables if after is not None else old_tables
                return self._index_difference(
                    action, index, before, after, reason, changed, tables
                )

            collected += self._compare_category(
                ObjectType.INDEX,
                source.indexes,
                target.indexes,
                key=lambda i: i.qualified_name,
                changes=lambda before, after: self._changed_fields(
                    self._index_signature(before, options),
                    self._index_signature(after, options),
                ),
                build=build_index,
                options=options,
            )

        if not options.ignore_policies:
            collected += self._compare_category(
                ObjectType.POLICY,
                source.policies,
                target.policies,
                key=lambda p: p.qualified_name,
                changes=lambda before, after: self._changed_fields(
                    self._policy_signature(before, options),
                    self._policy_signature(after, options),
                ),
                build=self._policy_difference,
                options=options,
            )

        if not options.ignore_extensions:
            collected += self._compare_category(
                ObjectType.EXTENSION,
                source.extensions,
                target.extensions,
                key=lambda e: e.name,
                changes=lambda before, after: (
                    ["version"] if before.version != after.version else []
                ),
                build=self._extension_difference,
                options=options,
            )

        if not options.dependency_analysis:
            for difference, _ in collected:
                difference.dependencies = []

        return collected

    def _compare_category(
        self,
        object_type: ObjectType,
        source_items: Iterable[D],
        target_items: Iterable[D],
        key: Callable[[D], Hashable],
        changes: Callable[[D, D], Any],
        build: Callable[
            [DiffAction, D, D | None, D | None, str, Any],
            tuple[SchemaDifference, list[DependencyRef]],
        ],
        options: ComparisonOptions,
    ) -> _Collected:
        """Compare one object category.

        Creates come first (source order), then drops (target order), then
        alters (source order).
        """
        kind = _KIND_LABELS[object_type]
        source_map = self._index_by_key(object_type, source_items, key, "source")
        target_map = self._index_by_key(object_type, target_items, key, "target")
        collected: _Collected = []

        for name, item in source_map.items():
            if name not in target_map:
                collected.append(
                    build(
                        DiffAction.CREATE,
                        item,
                        None,
                        item,
                        f"{kind} exists in source but not in target",
                        None,
                    )
                )

        for name, item in target_map.items():
            if name not in source_map:
                collected.append(
                    build(
                        DiffAction.DROP,
                        item,
                        item,
                        None,
                        f"{kind} exists in target but not in source",
                        None,
                    )
                )

        for name, item in source_map.items():
            if name not in target_map:
                continue
            changed = changes(target_map[name], item)
            if changed:
                collected.append(
                    build(
                        DiffAction.ALTER,
                        item,
                        target_map[name],
                        item,
                        self._alter_reason(kind, changed),
                        changed,
                    )
                )

        return [
            entry
            for entry in collected
            if not self._is_ignored(entry[0], options.custom_ignore_patterns)
        ]

    @staticmethod
    def _index_by_key(
        object_type: ObjectType,
        items: Iterable[D],
        key: Callable[[D], Hashable],
        side: str,
    ) -> dict[Hashable, D]:
        mapping: dict[Hashable, D] = {}
        for item in items:
            name = key(item)
            if name in mapping:
                logger.warning(
                    "Duplicate object in snapshot, keeping the first definition",
                    object_type=object_type.value,
                    name=str(name),
                    side=side,
                )
                continue
            mapping[name] = item
        return mapping

    @staticmethod
    def _is_ignored(difference: SchemaDifference, patterns: list[str]) -> bool:
        if not patterns:
            return False
        candidates = {
            difference.object_name,
            f"{difference.schema_name}.{difference.object_name}",
            difference.qualified_name,
        }
        return any(
            fnmatchcase(candidate, pattern)
            for pattern in patterns
            for candidate in candidates
        )

    @staticmethod
    def _alter_reason(kind: str, changed: Any) -> str:
        if isinstance(changed, TableChanges):
            parts = []
            if changed.columns_added:
                parts.append(f"{len(changed.columns_added)} column(s) added")
            if changed.columns_dropped:
                parts.append(f"{len(changed.columns_dropped)} column(s) dropped")
            if changed.columns_modified:
                parts.append(f"{len(changed.columns_modified)} column(s) modified")
            if changed.constraints_added or changed.constraints_dropped:
                parts.append("constraints changed")
            if changed.comment_changed:
                parts.append("comment changed")
            detail = ", ".join(parts)
        else:
            detail = ", ".join(changed)
        return f"{kind} structure differs between source and target ({detail})"

    @staticmethod
    def _changed_fields(before: dict[str, Any], after: dict[str, Any]) -> list[str]:
        return [name for name in before if before[name] != after[name]]

    # Structural signatures -------------------------------------------------

    @staticmethod
    def _function_signature(
        function: FunctionDefinition, options: ComparisonOptions
    ) -> dict[str, Any]:
        signature = {
            "return_type": normalize_type_name(function.return_type),
            "parameters": tuple(
                (
                    p.mode.upper(),
                    p.name,
                    normalize_type_name(p.data_type),
                    normalize_sql_text(p.default_value),
                )
                for p in function.parameters
            ),
            "language": function.language.lower(),
            "body": normalize_sql_text(
                function.body, strip_comments=options.ignore_comments
            ),
            "security_definer": function.is_security_definer,
            "volatility": function.volatility.upper(),
        }
        if not options.ignore_comments:
            signature["comment"] = function.comment
        return signature

    @staticmethod
    def _trigger_signature(
        trigger: TriggerDefinition, options: ComparisonOptions
    ) -> dict[str, Any]:
        return {
            "timing": trigger.timing.upper(),
            "events": frozenset(event.upper() for event in trigger.events),
            "orientation": trigger.orientation.upper(),
            "function": trigger.qualified_function,
            "condition": normalize_sql_text(
                trigger.condition, strip_comments=options.ignore_comments
            ),
        }

    @staticmethod
    def _index_signature(
        index: IndexDefinition, options: ComparisonOptions
    ) -> dict[str, Any]:
        return {
            "columns": tuple(
                (column.name, column.sort_order.upper()) for column in index.columns
            ),
            "method": index.method.lower(),
            "unique": index.is_unique,
            "primary": index.is_primary,
            "where_clause": normalize_sql_text(
                index.where_clause, strip_comments=options.ignore_comments
            ),
        }

    @staticmethod
    def _policy_signature(
        policy: PolicyDefinition, options: ComparisonOptions
    ) -> dict[str, Any]:
        return {
            "command": policy.command.upper(),
            "roles": frozenset(policy.roles),
            "using_expression": normalize_sql_text(
                policy.using_expression, strip_comments=options.ignore_comments
            ),
            "check_expression": normalize_sql_text(
                policy.check_expression, strip_comments=options.ignore_comments
            ),
            "permissive": policy.is_permissive,
        }

    @staticmethod
    def _column_signature(
        column: ColumnDefinition, options: ComparisonOptions
    ) -> tuple[Any, ...]:
        signature: tuple[Any, ...] = (
            normalize_type_name(column.data_type),
            column.is_nullable,
            column.max_length,
            column.numeric_precision,
            column.numeric_scale,
            None if column.is_identity else normalize_sql_text(column.default_value),
            column.is_identity,
        )
        if not options.ignore_comments:
            signature += (column.comment,)
        return signature

    @staticmethod
    def _constraint_signature(constraint: ConstraintDefinition) -> tuple[Any, ...]:
        return (
            constraint.kind,
            constraint.column_names,
            constraint.references,
            constraint.referenced_columns,
            normalize_sql_text(constraint.check_clause),
            (constraint.on_delete or "").upper(),
        )

    def _table_changes(
        self, before: TableDefinition, after: TableDefinition, options: ComparisonOptions
    ) -> TableChanges | None:
        old_columns = {c.name: c for c in before.columns}
        new_columns = {c.name: c for c in after.columns}
        old_constraints = {c.name: c for c in before.constraints}
        new_constraints = {c.name: c for c in after.constraints}

        modified = tuple(
            ColumnChange(name, before=old_columns[name], after=column)
            for name, column in new_columns.items()
            if name in old_columns
            and self._column_signature(old_columns[name], options)
            != self._column_signature(column, options)
        )

        # A constraint whose definition changed is dropped and re-added
        redefined = {
            name
            for name, constraint in new_constraints.items()
            if name in old_constraints
            and self._constraint_signature(old_constraints[name])
            != self._constraint_signature(constraint)
        }

        changes = TableChanges(
            columns_added=tuple(
                c for name, c in new_columns.items() if name not in old_columns
            ),
            columns_dropped=tuple(
                c for name, c in old_columns.items() if name not in new_columns
            ),
            columns_modified=modified,
            constraints_added=tuple(
                c
                for name, c in new_constraints.items()
                if name not in old_constraints or name in redefined
            ),
            constraints_dropped=tuple(
                c
                for name, c in old_constraints.items()
                if name not in new_constraints or name in redefined
            ),
            comment_before=None if options.ignore_comments else before.comment,
            comment_after=None if options.ignore_comments else after.comment,
        )
        return None if changes.is_empty else changes

    # Difference builders ---------------------------------------------------

    def _table_difference(
        self,
        action: DiffAction,
        table: TableDefinition,
        before: TableDefinition | None,
        after: TableDefinition | None,
        reason: str,
        changed: TableChanges | None = None,
    ) -> tuple[SchemaDifference, list[DependencyRef]]:
        notes = self._table_integrity_notes(table)
        if notes:
            reason = f"{reason}; note: {'; '.join(notes)}"

        references = sorted(
            {
                constraint.references
                for constraint in table.constraints
                if constraint.references
                and constraint.references != table.qualified_name
            }
        )
        refs = [DependencyRef(ObjectType.TABLE, name) for name in references]
        difference = SchemaDifference(
            object_type=ObjectType.TABLE,
            action=action,
            object_name=table.name,
            schema_name=table.schema_name,
            details=TableDetails(
                reason=reason, before=before, after=after, changes=changed
            ),
            dependencies=list(references),
        )
        return difference, refs

    @staticmethod
    def _table_integrity_notes(table: TableDefinition) -> list[str]:
        columns = table.column_names
        notes = []
        for constraint in table.constraints:
            missing = [name for name in constraint.column_names if name not in columns]
            if missing:
                notes.append(
                    f"constraint {constraint.name} references unknown "
                    f"column(s) {', '.join(missing)}"
                )
        return notes

    def _function_difference(
        self,
        action: DiffAction,
        function: FunctionDefinition,
        before: FunctionDefinition | None,
        after: FunctionDefinition | None,
        reason: str,
        changed: Any = None,
    ) -> tuple[SchemaDifference, list[DependencyRef]]:
        difference = SchemaDifference(
            object_type=ObjectType.FUNCTION,
            action=action,
            object_name=function.name,
            schema_name=function.schema_name,
            details=FunctionDetails(reason=reason, before=before, after=after),
        )
        return difference, []

    def _trigger_difference(
        self,
        action: DiffAction,
        trigger: TriggerDefinition,
        before: TriggerDefinition | None,
        after: TriggerDefinition | None,
        reason: str,
        changed: Any = None,
    ) -> tuple[SchemaDifference, list[DependencyRef]]:
        refs = [
            DependencyRef(ObjectType.TABLE, trigger.qualified_table),
            DependencyRef(ObjectType.FUNCTION, trigger.qualified_function),
        ]
        difference = SchemaDifference(
            object_type=ObjectType.TRIGGER,
            action=action,
            object_name=trigger.name,
            schema_name=trigger.schema_name,
            table_name=trigger.table_name,
            details=TriggerDetails(reason=reason, before=before, after=after),
            dependencies=[ref.name for ref in refs],
        )
        return difference, refs

    def _index_difference(
        self,
        action: DiffAction,
        index: IndexDefinition,
        before: IndexDefinition | None,
        after: IndexDefinition | None,
        reason: str,
        changed: Any,
        tables: dict[str, TableDefinition],
    ) -> tuple[SchemaDifference, list[DependencyRef]]:
        table = tables.get(index.qualified_table)
        if table is not None:
            missing = [c.name for c in index.columns if c.name not in table.column_names]
            if missing:
                reason = (
                    f"{reason}; note: index references unknown column(s) "
                    f"{', '.join(missing)}"
                )

        refs = [DependencyRef(ObjectType.TABLE, index.qualified_table)]
        difference = SchemaDifference(
            object_type=ObjectType.INDEX,
            action=action,
            object_name=index.name,
            schema_name=index.schema_name,
            table_name=index.table_name,
            details=IndexDetails(reason=reason, before=before, after=after),
            dependencies=[ref.name for ref in refs],
        )
        return difference, refs

    def _policy_difference(
        self,
        action: DiffAction,
        policy: PolicyDefinition,
        before: PolicyDefinition | None,
        after: PolicyDefinition | None,
        reason: str,
        changed: Any = None,
    ) -> tuple[SchemaDifference, list[DependencyRef]]:
        refs = [DependencyRef(ObjectType.TABLE, policy.qualified_table)]
        difference = SchemaDifference(
            object_type=ObjectType.POLICY,
            action=action,
            object_name=policy.name,
            schema_name=policy.schema_name,
            table_name=policy.table_name,
            details=PolicyDetails(reason=reason, before=before, after=after),
            dependencies=[ref.name for ref in refs],
        )
        return difference, refs

    def _extension_difference(
        self,
        action: DiffAction,
        extension: ExtensionDefinition,
        before: ExtensionDefinition | None,
        after: ExtensionDefinition | None,
        reason: str,
        changed: Any = None,
    ) -> tuple[SchemaDifference, list[DependencyRef]]:
        difference = SchemaDifference(
            object_type=ObjectType.EXTENSION,
            action=action,
            object_name=extension.name,
            schema_name=extension.schema_name,
            details=ExtensionDetails(reason=reason, before=before, after=after),
        )
        return difference, []


def compare_schemas(
    source: SchemaDefinition,
    target: SchemaDefinition,
    options: ComparisonOptions | None = None,
    *,
    source_label: str = "source",
    target_label: str = "target",
    clock: Clock = utc_now,
) -> SchemaDiff:
    """Compare two snapshots with a fresh :class:`SchemaComparator`."""
    return SchemaComparator(clock=clock).compare_schemas(
        source,
        target,
        options,
        source_label=source_label,
        target_label=target_label,
    )


def table_changes(
    before: TableDefinition, after: TableDefinition, ignore_comments: bool = True
) -> TableChanges | None:
    """Column and constraint changes turning ``before`` into ``after``."""
    options = ComparisonOptions(ignore_comments=ignore_comments)
    return SchemaComparator()._table_changes(before, after, options)
