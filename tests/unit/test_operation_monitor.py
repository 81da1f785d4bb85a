"""Tests for clone operation tracking."""

from datetime import UTC, datetime, timedelta

from pydantic import ValidationError
import pytest

from envclone.core import EnvCloneSettings, SequentialIdGenerator
from envclone.monitoring import (
    AlertAction,
    AlertActionType,
    AlertCondition,
    AlertRule,
    CloneError,
    ConcurrencyLimitError,
    ConditionOperator,
    EnvironmentType,
    IncidentType,
    InvalidStatusTransitionError,
    LogLevel,
    OperationMonitor,
    OperationNotFoundError,
    OperationStatus,
    SecurityIncidentManager,
    Severity,
)


class SteppingClock:
    """Clock the test advances explicitly."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def stepping_clock():
    return SteppingClock(datetime(2024, 1, 15, 12, 0, 0, tzinfo=UTC))


@pytest.fixture
def incidents(stepping_clock):
    return SecurityIncidentManager(clock=stepping_clock)


@pytest.fixture
def monitor(stepping_clock, incidents):
    return OperationMonitor(
        settings=EnvCloneSettings(),
        incident_manager=incidents,
        id_generator=SequentialIdGenerator(),
        clock=stepping_clock,
    )


def start_clone(monitor, target_type=EnvironmentType.STAGING, **kwargs):
    return monitor.create_operation(
        "prod-db",
        "staging-db",
        EnvironmentType.DEVELOPMENT,
        target_type,
        **kwargs,
    )


class TestCreateOperation:
    """Registering new operations."""

    def test_new_operation_is_pending(self, monitor, stepping_clock):
        operation = start_clone(monitor, user_id="u1", options={"anonymize": True})

        assert operation.id == "op_0001"
        assert operation.status == OperationStatus.PENDING
        assert operation.progress == 0
        assert operation.started_at == stepping_clock.now
        assert operation.options == {"anonymize": True}
        assert operation.logs[0].message == (
            "Clone operation created: prod-db -> staging-db"
        )

    def test_returned_record_is_a_copy(self, monitor):
        operation = start_clone(monitor)
        operation.progress = 99

        assert monitor.get_operation(operation.id).progress == 0

    def test_production_target_reports_critical_incident(self, monitor, incidents):
        operation = start_clone(
            monitor, EnvironmentType.PRODUCTION, user_email="dev@example.com"
        )

        [incident] = incidents.get_all_incidents()
        assert incident.type == IncidentType.PRODUCTION_ACCESS_ATTEMPT
        assert incident.severity == Severity.CRITICAL
        assert incident.operation_id == operation.id
        assert incident.environment_id == "staging-db"
        assert incident.metadata == {"user_email": "dev@example.com"}

    def test_production_source_reports_medium_incident(self, monitor, incidents):
        monitor.create_operation(
            "prod-db",
            "dev-db",
            EnvironmentType.PRODUCTION,
            EnvironmentType.DEVELOPMENT,
        )

        [incident] = incidents.get_all_incidents()
        assert incident.severity == Severity.MEDIUM
        assert incident.environment_id == "prod-db"

    def test_non_production_reports_nothing(self, monitor, incidents):
        start_clone(monitor)

        assert incidents.get_all_incidents() == []

    def test_concurrency_limit(self, stepping_clock, incidents):
        monitor = OperationMonitor(
            settings=EnvCloneSettings(max_concurrent_operations=2),
            incident_manager=incidents,
            clock=stepping_clock,
        )
        first = start_clone(monitor)
        start_clone(monitor)

        with pytest.raises(ConcurrencyLimitError):
            start_clone(monitor)

        monitor.cancel_operation(first.id)
        assert start_clone(monitor).status == OperationStatus.PENDING


class TestStatusTransitions:
    """Lifecycle state machine."""

    def test_complete_sets_timing(self, monitor, stepping_clock):
        operation = start_clone(monitor)
        monitor.update_operation_status(operation.id, OperationStatus.IN_PROGRESS)
        stepping_clock.advance(seconds=90)

        completed = monitor.update_operation_status(
            operation.id, OperationStatus.COMPLETED
        )

        assert completed.status == OperationStatus.COMPLETED
        assert completed.completed_at == stepping_clock.now
        assert completed.actual_duration_ms == 90_000
        assert completed.progress == 100

    def test_non_terminal_status_has_no_completion(self, monitor):
        operation = start_clone(monitor)

        running = monitor.update_operation_status(
            operation.id, OperationStatus.IN_PROGRESS
        )

        assert running.completed_at is None
        assert running.actual_duration_ms is None

    @pytest.mark.parametrize(
        "path",
        [
            [OperationStatus.COMPLETED],
            [OperationStatus.IN_PROGRESS, OperationStatus.PENDING],
            [OperationStatus.CANCELLED, OperationStatus.IN_PROGRESS],
            [OperationStatus.IN_PROGRESS, OperationStatus.COMPLETED, OperationStatus.FAILED],
        ],
    )
    def test_invalid_transitions(self, monitor, path):
        operation = start_clone(monitor)
        *allowed, rejected = path
        for status in allowed:
            monitor.update_operation_status(operation.id, status)

        with pytest.raises(InvalidStatusTransitionError):
            monitor.update_operation_status(operation.id, rejected)

    def test_unknown_operation(self, monitor):
        with pytest.raises(OperationNotFoundError) as exc_info:
            monitor.update_operation_status("op_9999", OperationStatus.IN_PROGRESS)

        assert exc_info.value.operation_id == "op_9999"

    def test_failure_records_error_and_incident(self, monitor, incidents, stepping_clock):
        operation = start_clone(monitor, user_id="u1")
        monitor.update_operation_status(operation.id, OperationStatus.IN_PROGRESS)

        failed = monitor.update_operation_status(
            operation.id,
            OperationStatus.FAILED,
            CloneError(code="COPY_FAILED", message="relation missing"),
        )

        assert failed.error.code == "COPY_FAILED"
        assert failed.error.timestamp == stepping_clock.now
        assert monitor.get_operation(operation.id).logs[-1].level == LogLevel.ERROR

        [incident] = incidents.get_all_incidents()
        assert incident.type == IncidentType.SYSTEM_ERROR
        assert incident.severity == Severity.HIGH
        assert incident.user_id == "u1"
        assert incident.metadata["code"] == "COPY_FAILED"

    def test_recoverable_error_is_medium(self, monitor, incidents):
        operation = start_clone(monitor)

        monitor.update_operation_status(
            operation.id,
            OperationStatus.IN_PROGRESS,
            CloneError(code="RETRY", message="lock timeout", recoverable=True),
        )

        [incident] = incidents.get_all_incidents()
        assert incident.severity == Severity.MEDIUM


class TestProgress:
    """Progress reporting."""

    def test_progress_is_clamped(self, monitor):
        operation = start_clone(monitor)

        assert monitor.update_progress(operation.id, 150).progress == 100

    def test_negative_progress_is_clamped(self, monitor):
        operation = start_clone(monitor)

        assert monitor.update_progress(operation.id, -5).progress == 0

    def test_regression_is_ignored(self, monitor):
        operation = start_clone(monitor)
        monitor.update_progress(operation.id, 60)

        assert monitor.update_progress(operation.id, 40).progress == 60

    def test_estimate_extrapolates_elapsed_time(self, monitor, stepping_clock):
        operation = start_clone(monitor)
        monitor.update_operation_status(operation.id, OperationStatus.IN_PROGRESS)
        stepping_clock.advance(seconds=30)

        updated = monitor.update_progress(operation.id, 25, "Copied users")

        assert updated.estimated_duration_ms == 120_000
        last_log = monitor.get_operation(operation.id).logs[-1]
        assert last_log.message == "Copied users"
        assert last_log.metadata == {"progress": 25}

    def test_pending_operation_has_no_estimate(self, monitor):
        operation = start_clone(monitor)

        assert monitor.update_progress(operation.id, 50).estimated_duration_ms is None


class TestLogging:
    """Per-operation log entries."""

    def test_entries_below_level_are_dropped(self, stepping_clock, incidents):
        monitor = OperationMonitor(
            settings=EnvCloneSettings(monitor_log_level="warning"),
            incident_manager=incidents,
            clock=stepping_clock,
        )
        operation = start_clone(monitor)

        monitor.log_operation(operation.id, LogLevel.INFO, "copy", "ignored")
        monitor.log_operation(operation.id, LogLevel.WARNING, "copy", "kept")

        logs = monitor.get_operation(operation.id).logs
        assert [entry.message for entry in logs] == ["kept"]

    def test_error_entries_report_incidents(self, monitor, incidents):
        operation = start_clone(monitor)

        monitor.log_operation(operation.id, LogLevel.ERROR, "copy", "row rejected")
        monitor.log_operation(operation.id, LogLevel.CRITICAL, "copy", "disk full")

        severities = sorted(i.severity.value for i in incidents.get_all_incidents())
        assert severities == ["high", "medium"]

    def test_log_trim_keeps_newest(self, stepping_clock, incidents):
        monitor = OperationMonitor(
            settings=EnvCloneSettings(max_operation_logs=10, retained_operation_logs=4),
            incident_manager=incidents,
            clock=stepping_clock,
        )
        operation = start_clone(monitor)

        for i in range(10):
            monitor.log_operation(operation.id, LogLevel.INFO, "copy", f"batch {i}")

        logs = monitor.get_operation(operation.id).logs
        assert [entry.message for entry in logs] == [
            "batch 6",
            "batch 7",
            "batch 8",
            "batch 9",
        ]

    def test_unknown_operation_is_ignored(self, monitor):
        monitor.log_operation("op_9999", LogLevel.INFO, "copy", "lost")

        assert monitor.get_operation("op_9999") is None


class TestStatistics:
    """Statistics counters."""

    def test_updates_are_merged(self, monitor):
        operation = start_clone(monitor)

        monitor.update_statistics(operation.id, total_tables=3, tables_processed=1)
        stats = monitor.update_statistics(operation.id, records_cloned=500)

        assert stats.total_tables == 3
        assert stats.tables_processed == 1
        assert stats.records_cloned == 500

    def test_negative_counter_is_rejected(self, monitor):
        operation = start_clone(monitor)

        with pytest.raises(ValidationError):
            monitor.update_statistics(operation.id, records_cloned=-1)

    def test_unknown_counter_is_rejected(self, monitor):
        operation = start_clone(monitor)

        with pytest.raises(ValidationError):
            monitor.update_statistics(operation.id, rows_teleported=1)


class TestCancel:
    """Cancellation."""

    def test_cancel_running_operation(self, monitor):
        operation = start_clone(monitor)
        monitor.update_operation_status(operation.id, OperationStatus.IN_PROGRESS)

        cancelled = monitor.cancel_operation(operation.id, "Maintenance window")

        assert cancelled.status == OperationStatus.CANCELLED
        assert cancelled.completed_at is not None
        assert cancelled.logs[-1].message == "Maintenance window"
        assert cancelled.logs[-1].level == LogLevel.WARNING

    def test_cancel_finished_operation(self, monitor):
        operation = start_clone(monitor)
        monitor.update_operation_status(operation.id, OperationStatus.CANCELLED)

        with pytest.raises(InvalidStatusTransitionError):
            monitor.cancel_operation(operation.id)

    def test_cancel_unknown_operation(self, monitor):
        with pytest.raises(OperationNotFoundError):
            monitor.cancel_operation("op_9999")

    def test_emergency_stop_cancels_active_operations(self, monitor, incidents):
        incidents.add_alert_rule(
            AlertRule(
                id="stop_on_tampering",
                name="Stop on tampering",
                conditions=[
                    AlertCondition(
                        metric="type",
                        operator=ConditionOperator.EQ,
                        threshold=IncidentType.CONFIGURATION_TAMPERING,
                    )
                ],
                actions=[AlertAction(type=AlertActionType.EMERGENCY_STOP)],
            )
        )
        running = start_clone(monitor)
        monitor.update_operation_status(running.id, OperationStatus.IN_PROGRESS)
        pending = start_clone(monitor)
        done = start_clone(monitor)
        monitor.update_operation_status(done.id, OperationStatus.IN_PROGRESS)
        monitor.update_operation_status(done.id, OperationStatus.COMPLETED)

        incidents.report_incident(
            IncidentType.CONFIGURATION_TAMPERING, Severity.HIGH, "Config edited"
        )

        assert monitor.get_operation(running.id).status == OperationStatus.CANCELLED
        assert monitor.get_operation(pending.id).status == OperationStatus.CANCELLED
        assert monitor.get_operation(done.id).status == OperationStatus.COMPLETED
        assert monitor.get_operation(running.id).logs[-1].message == (
            "Emergency stop: Stop on tampering"
        )


class TestQueriesAndReports:
    """Listing, reporting and cleanup."""

    def test_listing_is_newest_first(self, monitor, stepping_clock):
        first = start_clone(monitor)
        stepping_clock.advance(minutes=1)
        second = start_clone(monitor)
        monitor.update_operation_status(second.id, OperationStatus.IN_PROGRESS)

        assert [op.id for op in monitor.get_all_operations()] == [second.id, first.id]
        assert [op.id for op in monitor.get_operations_by_status(OperationStatus.PENDING)] == [
            first.id
        ]
        assert len(monitor.get_active_operations()) == 2

    def test_report_contents(self, monitor, stepping_clock):
        operation = start_clone(monitor, user_email="dev@example.com")
        monitor.update_operation_status(operation.id, OperationStatus.IN_PROGRESS)
        monitor.update_statistics(operation.id, total_tables=3, tables_processed=2)
        monitor.log_operation(operation.id, LogLevel.ERROR, "copy", "row rejected")
        stepping_clock.advance(seconds=5)
        monitor.update_operation_status(
            operation.id,
            OperationStatus.FAILED,
            CloneError(code="COPY_FAILED", message="relation missing"),
        )

        report = monitor.generate_operation_report(operation.id)

        assert "Clone Operation Report: op_0001" in report
        assert "Status: failed" in report
        assert "Duration: 5.0s" in report
        assert "User: dev@example.com" in report
        assert "  Tables: 2/3" in report
        assert "Error: [COPY_FAILED] relation missing" in report
        assert "ERROR copy: row rejected" in report

    def test_report_for_unknown_operation(self, monitor):
        with pytest.raises(OperationNotFoundError):
            monitor.generate_operation_report("op_9999")

    def test_cleanup_removes_old_finished_operations(self, monitor, stepping_clock):
        old = start_clone(monitor)
        monitor.update_operation_status(old.id, OperationStatus.CANCELLED)
        active = start_clone(monitor)
        stepping_clock.advance(days=31)
        recent = start_clone(monitor)
        monitor.update_operation_status(recent.id, OperationStatus.CANCELLED)

        assert monitor.cleanup() == 1
        assert monitor.get_operation(old.id) is None
        assert monitor.get_operation(active.id) is not None
        assert monitor.get_operation(recent.id) is not None
