"""Tests for the `envclone migrate` command."""

import json
from pathlib import Path

from click.testing import CliRunner
import pytest

from envclone.analysis import MigrationGenerationError
from envclone.cli.migrate import migrate_command

FIXTURES = Path(__file__).parent.parent / "fixtures"
SOURCE = str(FIXTURES / "source_snapshot.yaml")
TARGET = str(FIXTURES / "target_snapshot.yaml")
LEGACY = str(FIXTURES / "legacy_snapshot.json")


@pytest.fixture
def runner():
    """Create CLI runner for tests."""
    return CliRunner()


class TestMigrateSqlOutput:
    """SQL written to stdout."""

    def test_script_on_stdout(self, runner):
        result = runner.invoke(migrate_command, [SOURCE, TARGET])

        assert result.exit_code == 0
        sql = result.stdout
        assert sql.startswith("-- Migration migration_")
        assert f"-- {SOURCE} -> {TARGET}" in sql
        assert 'CREATE EXTENSION IF NOT EXISTS "uuid-ossp"' in sql
        assert "CREATE TABLE public.posts (" in sql
        assert "CREATE INDEX CONCURRENTLY users_email_idx" in sql

    def test_statements_are_dependency_ordered(self, runner):
        sql = runner.invoke(migrate_command, [SOURCE, TARGET]).stdout

        assert sql.index("CREATE EXTENSION") < sql.index("CREATE TABLE public.posts")
        assert sql.index("CREATE OR REPLACE FUNCTION public.audit_function") < (
            sql.index("CREATE TRIGGER audit_trigger")
        )

    def test_identical_snapshots_give_header_only(self, runner):
        result = runner.invoke(migrate_command, [TARGET, TARGET])

        assert result.exit_code == 0
        assert "CREATE" not in result.stdout
        assert "-- Risk level: low" in result.stdout

    def test_safe_mode_guards_drops(self, runner):
        result = runner.invoke(migrate_command, [SOURCE, LEGACY])

        assert result.exit_code == 0
        assert "DROP TABLE IF EXISTS public.sessions;" in result.stdout

    def test_unsafe_mode(self, runner):
        result = runner.invoke(migrate_command, [SOURCE, LEGACY, "--unsafe"])

        assert result.exit_code == 0
        assert "DROP TABLE public.sessions;" in result.stdout
        assert "CREATE INDEX users_email_idx" in result.stdout

    def test_ignore_pattern(self, runner):
        result = runner.invoke(migrate_command, [SOURCE, LEGACY, "--ignore", "sessions"])

        assert result.exit_code == 0
        assert "sessions" not in result.stdout


class TestMigrateJsonOutput:
    """Full script as JSON."""

    def test_json_script(self, runner):
        result = runner.invoke(migrate_command, [SOURCE, TARGET, "--format", "json"])

        assert result.exit_code == 0
        script = json.loads(result.stdout)
        assert script["id"].startswith("migration_")
        assert len(script["operations"]) == 7
        assert len(script["rollback_operations"]) == 7
        assert script["estimated_duration"] == sum(
            op["estimated_duration"] for op in script["operations"]
        )

    def test_no_rollback(self, runner):
        result = runner.invoke(
            migrate_command, [SOURCE, TARGET, "--format", "json", "--no-rollback"]
        )

        assert json.loads(result.stdout)["rollback_operations"] == []


class TestMigrateFiles:
    """Writing scripts to files."""

    def test_output_and_rollback_files(self, runner, tmp_path):
        migration = tmp_path / "out" / "migrate.sql"
        rollback = tmp_path / "out" / "rollback.sql"

        result = runner.invoke(
            migrate_command,
            [SOURCE, TARGET, "-o", str(migration), "--rollback-output", str(rollback)],
        )

        assert result.exit_code == 0
        assert result.stdout == ""
        assert "✅ 7 operations" in result.stderr
        assert "CREATE TABLE public.posts (" in migration.read_text()
        rollback_sql = rollback.read_text()
        assert rollback_sql.startswith("-- Rollback of migration migration_")
        assert "DROP TABLE IF EXISTS public.posts;" in rollback_sql

    def test_rollback_file_skipped_without_rollback(self, runner, tmp_path):
        rollback = tmp_path / "rollback.sql"

        result = runner.invoke(
            migrate_command,
            [SOURCE, TARGET, "--no-rollback", "--rollback-output", str(rollback)],
        )

        assert result.exit_code == 0
        assert not rollback.exists()

    def test_summary_lists_safety_warnings(self, runner, tmp_path):
        migration = tmp_path / "migrate.sql"

        result = runner.invoke(migrate_command, [SOURCE, LEGACY, "-o", str(migration)])

        assert result.exit_code == 0
        assert "Table 'public.sessions' is dropped" in result.stderr


class TestMigrateStrictMode:
    """Refusing destructive migrations."""

    def test_strict_rejects_drops(self, runner):
        result = runner.invoke(
            migrate_command, [SOURCE, LEGACY, "--strict", "--format", "json"]
        )

        assert result.exit_code == 1
        error = json.loads(result.stdout)
        assert error["error_type"] == "unsafe_migration"
        assert error["violations"] == [
            "Table 'public.sessions' is dropped; its data will be lost."
        ]

    def test_strict_accepts_additive_changes(self, runner):
        result = runner.invoke(migrate_command, [SOURCE, TARGET, "--strict"])

        assert result.exit_code == 0

    def test_strict_plain_error(self, runner):
        result = runner.invoke(migrate_command, [SOURCE, LEGACY, "--strict"])

        assert result.exit_code == 1
        assert "❌ Migration is unsafe: 1 violations" in result.stderr


class TestMigrateErrors:
    """Exit codes for failures."""

    def test_missing_target(self, runner, tmp_path):
        missing = str(tmp_path / "nope.json")

        result = runner.invoke(migrate_command, [SOURCE, missing])

        assert result.exit_code == 2
        assert "Snapshot file does not exist" in result.stderr

    def test_unsupported_suffix(self, runner, tmp_path):
        snapshot = tmp_path / "schema.txt"
        snapshot.write_text("tables: []\n")

        result = runner.invoke(migrate_command, [str(snapshot), TARGET])

        assert result.exit_code == 2
        assert "Unsupported snapshot format" in result.stderr

    @pytest.mark.parametrize("option", ["--batch-size", "--timeout-ms"])
    def test_non_positive_limits_are_rejected(self, runner, option):
        result = runner.invoke(migrate_command, [SOURCE, TARGET, option, "0"])

        assert result.exit_code == 2

    def test_generation_error(self, runner, monkeypatch):
        def explode(*args, **kwargs):
            raise MigrationGenerationError("renderer exploded")

        monkeypatch.setattr(
            "envclone.cli.migrate.MigrationGenerator.generate_migration_script",
            explode,
        )

        result = runner.invoke(migrate_command, [SOURCE, TARGET, "--format", "json"])

        assert result.exit_code == 4
        error = json.loads(result.stdout)
        assert error["error_type"] == "generation_error"
        assert error["message"] == "renderer exploded"

    def test_unexpected_error(self, runner, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(
            "envclone.cli.migrate.MigrationGenerator.generate_migration_script",
            explode,
        )

        result = runner.invoke(migrate_command, [SOURCE, TARGET])

        assert result.exit_code == 4
        assert "Internal error: disk on fire" in result.stderr
