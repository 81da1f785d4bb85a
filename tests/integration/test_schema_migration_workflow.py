"""End-to-end tests from snapshot files to a tracked migration run.

These exercise the loader, the comparator, the generator and the operation
monitor together, the way the CLI and a deployment job use them.
"""

from dataclasses import replace
from pathlib import Path

import pytest

from envclone.analysis import (
    DiffAction,
    MigrationGeneratorOptions,
    ObjectType,
    RiskLevel,
    compare_schemas,
    generate_migration_script,
)
from envclone.core import EnvCloneSettings, SequentialIdGenerator
from envclone.monitoring import (
    EnvironmentType,
    LogLevel,
    OperationMonitor,
    OperationStatus,
    SecurityIncidentManager,
)
from envclone.schema import (
    ColumnDefinition,
    ConstraintDefinition,
    FileSnapshotLoader,
    SchemaDefinition,
    TableDefinition,
)

FIXTURES = Path(__file__).parent.parent / "fixtures"


def build_users_snapshot() -> SchemaDefinition:
    return SchemaDefinition.from_tables(
        [
            TableDefinition(
                schema_name="public",
                name="users",
                columns=(
                    ColumnDefinition("id", "uuid", is_nullable=False),
                    ColumnDefinition(
                        "email", "varchar", is_nullable=False, max_length=255
                    ),
                ),
                constraints=(
                    ConstraintDefinition("users_pkey", "PRIMARY KEY", ("id",)),
                    ConstraintDefinition("users_email_key", "UNIQUE", ("email",)),
                ),
            )
        ]
    )


class TestScenarios:
    """Reference scenarios for comparison and generation."""

    def test_simple_create(self, simple_users_table, empty_schema, id_generator):
        source = SchemaDefinition.from_tables([simple_users_table])

        diff = compare_schemas(source, empty_schema)

        [difference] = diff.differences
        assert difference.object_type == ObjectType.TABLE
        assert difference.action == DiffAction.CREATE
        assert difference.object_name == "users"

        script = generate_migration_script(diff, id_generator=id_generator)
        sql = script.operations[0].sql
        for fragment in ("CREATE TABLE", "users", "id uuid", "NOT NULL"):
            assert fragment in sql

    def test_trigger_dependency(
        self, simple_users_table, audit_function, audit_trigger, empty_schema
    ):
        source = SchemaDefinition.from_tables(
            [replace(simple_users_table, triggers=(audit_trigger,))],
            functions=[audit_function],
        )

        diff = compare_schemas(source, empty_schema)

        assert len(diff.differences) == 3
        assert all(d.action == DiffAction.CREATE for d in diff.differences)
        [trigger] = [d for d in diff.differences if d.object_type == ObjectType.TRIGGER]
        assert trigger.dependencies == ["public.users", "public.audit_function"]

        script = generate_migration_script(diff)
        position = {
            op.object_type: index for index, op in enumerate(script.operations)
        }
        assert position[ObjectType.TABLE] < position[ObjectType.TRIGGER]
        assert position[ObjectType.FUNCTION] < position[ObjectType.TRIGGER]

    def test_identical_schemas(self):
        diff = compare_schemas(build_users_snapshot(), build_users_snapshot())

        assert diff.differences == []
        assert diff.is_empty


class TestRoundTrip:
    """Whole-database migrations in both directions."""

    def test_create_everything(self, full_schema, empty_schema):
        diff = compare_schemas(full_schema, empty_schema)
        script = generate_migration_script(diff)

        assert len(script.operations) == diff.summary.total_differences
        assert len(script.rollback_operations) == len(script.operations)
        assert script.estimated_duration == sum(
            op.estimated_duration for op in script.operations
        )
        assert [op.object_name for op in script.rollback_operations] == [
            op.object_name for op in reversed(script.operations)
        ]
        assert all(op.action == DiffAction.DROP for op in script.rollback_operations)

    def test_drop_everything(self, full_schema, empty_schema):
        diff = compare_schemas(empty_schema, full_schema)
        script = generate_migration_script(diff)

        assert all(d.action == DiffAction.DROP for d in diff.differences)
        names = [op.object_name for op in script.operations]
        assert names.index("public.posts") < names.index("public.users")
        assert names.index("public.users.audit_trigger") < names.index(
            "public.audit_function"
        )
        assert names[-1] == "public.uuid-ossp"
        assert script.risk_level == RiskLevel.HIGH
        assert any("data is not restored" in w for w in script.warnings)


class TestSnapshotFilesToTrackedRun:
    """Loading snapshot files and tracking the migration as a clone operation."""

    @pytest.mark.asyncio
    async def test_tracked_migration(self, clock):
        loader = FileSnapshotLoader()
        source = await loader.load(FIXTURES / "source_snapshot.yaml")
        target = await loader.load(FIXTURES / "target_snapshot.yaml")

        diff = compare_schemas(
            source, target, source_label="production", target_label="staging"
        )
        script = generate_migration_script(
            diff,
            MigrationGeneratorOptions(safe_mode=True),
            id_generator=SequentialIdGenerator(),
            clock=clock,
        )
        assert script.id == "migration_0001"
        assert len(script.operations) == 7

        incidents = SecurityIncidentManager(clock=clock)
        monitor = OperationMonitor(
            settings=EnvCloneSettings(),
            incident_manager=incidents,
            id_generator=SequentialIdGenerator(),
            clock=clock,
        )
        operation = monitor.create_operation(
            "production",
            "staging",
            EnvironmentType.PRODUCTION,
            EnvironmentType.STAGING,
            options={"script_id": script.id},
            user_email="dba@example.com",
        )
        monitor.update_operation_status(operation.id, OperationStatus.IN_PROGRESS)
        monitor.update_statistics(
            operation.id, total_tables=diff.summary.table_changes
        )

        total = len(script.operations)
        for done, migration_op in enumerate(script.operations, start=1):
            monitor.log_operation(
                operation.id,
                LogLevel.INFO,
                "migration",
                migration_op.description,
                metadata={"operation_id": migration_op.id},
                duration_ms=migration_op.estimated_duration,
            )
            monitor.update_progress(operation.id, done * 100 / total)
            if migration_op.object_type == ObjectType.TABLE:
                stats = monitor.get_operation(operation.id).statistics
                monitor.update_statistics(
                    operation.id, tables_processed=stats.tables_processed + 1
                )

        finished = monitor.update_operation_status(
            operation.id, OperationStatus.COMPLETED
        )

        assert finished.progress == 100
        assert finished.statistics.tables_processed == 2
        assert finished.statistics.total_tables == 2
        migration_logs = [log for log in finished.logs if log.component == "migration"]
        assert len(migration_logs) == 7

        [incident] = incidents.get_all_incidents()
        assert incident.operation_id == operation.id
        assert incident.environment_id == "production"

        report = monitor.generate_operation_report(operation.id)
        assert "Status: completed" in report
        assert "Tables: 2/2" in report
