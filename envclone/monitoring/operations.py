"""Tracking of long-running environment clone operations.

The monitor keeps one record per operation (status, progress, logs and
statistics). Updates to the same operation are serialized by a per-operation
lock; different operations can be updated in parallel. Errors reported by
callers are recorded on the operation rather than raised, since the monitor
only tracks work done elsewhere.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
import threading
from typing import Any

from ..core.config import EnvCloneSettings
from ..core.logging import get_logger
from ..core.runtime import Clock, IdGenerator, TimestampIdGenerator, utc_now
from .errors import (
    ConcurrencyLimitError,
    InvalidStatusTransitionError,
    OperationNotFoundError,
)
from .incidents import SecurityIncidentManager
from .models import (
    AlertAction,
    AlertActionType,
    AlertRule,
    CloneError,
    CloneLog,
    CloneOperation,
    CloneStatistics,
    EnvironmentType,
    IncidentType,
    LogLevel,
    OperationStatus,
    SecurityIncident,
    Severity,
)

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[OperationStatus, frozenset[OperationStatus]] = {
    OperationStatus.PENDING: frozenset(
        {
            OperationStatus.IN_PROGRESS,
            OperationStatus.FAILED,
            OperationStatus.CANCELLED,
        }
    ),
    OperationStatus.IN_PROGRESS: frozenset(
        {
            OperationStatus.COMPLETED,
            OperationStatus.FAILED,
            OperationStatus.CANCELLED,
        }
    ),
    OperationStatus.COMPLETED: frozenset(),
    OperationStatus.FAILED: frozenset(),
    OperationStatus.CANCELLED: frozenset(),
}

_INCIDENT_LOG_LEVELS = {LogLevel.ERROR: Severity.MEDIUM, LogLevel.CRITICAL: Severity.HIGH}


def _elapsed_ms(start: datetime, end: datetime) -> float:
    return max((end - start).total_seconds() * 1000, 0.0)


class OperationMonitor:
    """Tracks clone operations and reports security-relevant events."""

    def __init__(
        self,
        settings: EnvCloneSettings | None = None,
        incident_manager: SecurityIncidentManager | None = None,
        id_generator: IdGenerator | None = None,
        clock: Clock = utc_now,
    ):
        """Initialize the monitor.

        Args:
            settings: Monitoring settings (log level, log limits, retention)
            incident_manager: Receives incidents; a private one is created if omitted
            id_generator: Produces operation ids
            clock: Source of timestamps
        """
        self.settings = settings or EnvCloneSettings()
        self.clock = clock
        self.id_generator = id_generator or TimestampIdGenerator(clock)
        self.incident_manager = incident_manager or SecurityIncidentManager(clock=clock)
        self.min_log_level = LogLevel(self.settings.monitor_log_level)

        self._operations: dict[str, CloneOperation] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

        self.incident_manager.register_action_handler(
            AlertActionType.EMERGENCY_STOP, self._emergency_stop
        )

    @contextmanager
    def _locked(self, operation_id: str) -> Iterator[CloneOperation]:
        """Hold the operation's lock and yield its live record."""
        with self._registry_lock:
            lock = self._locks.get(operation_id)
        if lock is None:
            raise OperationNotFoundError(operation_id)
        with lock:
            operation = self._operations.get(operation_id)
            if operation is None:
                raise OperationNotFoundError(operation_id)
            yield operation

    # Lifecycle --------------------------------------------------------------

    def create_operation(
        self,
        source_environment_id: str,
        target_environment_id: str,
        source_environment_type: EnvironmentType,
        target_environment_type: EnvironmentType,
        options: dict[str, Any] | None = None,
        user_id: str | None = None,
        user_email: str | None = None,
    ) -> CloneOperation:
        """Start tracking a new operation in ``pending`` status.

        Operations touching production raise a production-access incident,
        critical when production is the target.

        Raises:
            ConcurrencyLimitError: If too many operations are already active
        """
        with self._registry_lock:
            active = sum(
                1 for op in self._operations.values() if not op.status.is_terminal
            )
            if active >= self.settings.max_concurrent_operations:
                raise ConcurrencyLimitError(
                    f"{active} operations already active "
                    f"(limit {self.settings.max_concurrent_operations})"
                )

            operation = CloneOperation(
                id=self.id_generator("op"),
                source_environment_id=source_environment_id,
                target_environment_id=target_environment_id,
                source_environment_type=source_environment_type,
                target_environment_type=target_environment_type,
                started_at=self.clock(),
                options=dict(options or {}),
                user_id=user_id,
                user_email=user_email,
            )
            self._operations[operation.id] = operation
            self._locks[operation.id] = threading.Lock()

        logger.info(
            "Clone operation created",
            operation_id=operation.id,
            source_environment_id=source_environment_id,
            target_environment_id=target_environment_id,
            target_environment_type=target_environment_type.value,
            user_id=user_id,
        )
        self.log_operation(
            operation.id,
            LogLevel.INFO,
            "operation-monitor",
            f"Clone operation created: {source_environment_id} -> "
            f"{target_environment_id}",
        )

        if operation.involves_production:
            production_target = (
                target_environment_type == EnvironmentType.PRODUCTION
            )
            self.incident_manager.report_incident(
                IncidentType.PRODUCTION_ACCESS_ATTEMPT,
                Severity.CRITICAL if production_target else Severity.MEDIUM,
                "Clone operation involving a production environment "
                f"({source_environment_id} -> {target_environment_id})",
                user_id=user_id,
                environment_id=(
                    target_environment_id if production_target else source_environment_id
                ),
                operation_id=operation.id,
                component="operation-monitor",
                metadata={"user_email": user_email} if user_email else None,
            )

        return self.get_operation(operation.id) or operation.model_copy(deep=True)

    def update_operation_status(
        self,
        operation_id: str,
        status: OperationStatus,
        error: CloneError | None = None,
    ) -> CloneOperation:
        """Move an operation to a new status.

        ``completed_at`` and ``actual_duration_ms`` are set exactly when the
        status becomes terminal. An error is stored on the record and reported
        as a system-error incident.

        Raises:
            OperationNotFoundError: If the operation is unknown
            InvalidStatusTransitionError: If the transition is not allowed
        """
        with self._locked(operation_id) as operation:
            previous = operation.status
            if status == previous and not status.is_terminal:
                # Same-status update; only records an error, if any
                if error is None:
                    return operation.model_copy(deep=True)
            elif status not in ALLOWED_TRANSITIONS[previous]:
                raise InvalidStatusTransitionError(
                    f"Cannot move operation {operation_id} from "
                    f"{previous.value} to {status.value}"
                )

            now = self.clock()
            operation.status = status
            if status.is_terminal and status != previous:
                operation.completed_at = now
                operation.actual_duration_ms = _elapsed_ms(operation.started_at, now)
            if status == OperationStatus.COMPLETED:
                operation.progress = 100
            if error is not None:
                operation.error = error.model_copy(
                    update={"timestamp": error.timestamp or now}
                )
            snapshot = operation.model_copy(deep=True)

        self.log_operation(
            operation_id,
            LogLevel.ERROR if status == OperationStatus.FAILED else LogLevel.INFO,
            "operation-monitor",
            f"Status changed from {previous.value} to {status.value}",
            metadata={"error": error.message} if error else None,
            report=False,
        )

        if error is not None:
            self.incident_manager.report_incident(
                IncidentType.SYSTEM_ERROR,
                Severity.MEDIUM if error.recoverable else Severity.HIGH,
                f"Clone operation error: {error.message}",
                user_id=snapshot.user_id,
                environment_id=snapshot.target_environment_id,
                operation_id=operation_id,
                component="operation-monitor",
                metadata={"code": error.code, **error.details},
            )

        return snapshot

    def update_progress(
        self, operation_id: str, progress: float, message: str | None = None
    ) -> CloneOperation:
        """Record progress, clamped to 0-100.

        Progress never decreases: a lower value than the current one is
        ignored with a warning. While in progress the estimated total duration
        is extrapolated from the elapsed time.
        """
        progress = min(max(progress, 0.0), 100.0)
        with self._locked(operation_id) as operation:
            if progress < operation.progress:
                logger.warning(
                    "Ignoring progress regression",
                    operation_id=operation_id,
                    current=operation.progress,
                    requested=progress,
                )
            else:
                operation.progress = progress
                if operation.status == OperationStatus.IN_PROGRESS and progress > 0:
                    elapsed = _elapsed_ms(operation.started_at, self.clock())
                    operation.estimated_duration_ms = elapsed * 100 / progress
            snapshot = operation.model_copy(deep=True)

        if message:
            self.log_operation(
                operation_id,
                LogLevel.INFO,
                "progress",
                message,
                metadata={"progress": snapshot.progress},
            )
        return snapshot

    def log_operation(
        self,
        operation_id: str,
        level: LogLevel,
        component: str,
        message: str,
        metadata: dict[str, Any] | None = None,
        duration_ms: float | None = None,
        *,
        report: bool = True,
    ) -> None:
        """Append a log entry to an operation.

        Entries below the configured level are dropped. Error and critical
        entries raise a system-error incident unless ``report`` is false.
        Logging to an unknown operation is only a warning.
        """
        if level.rank < self.min_log_level.rank:
            return

        entry = CloneLog(
            timestamp=self.clock(),
            level=level,
            component=component,
            message=message,
            metadata=dict(metadata or {}),
            duration_ms=duration_ms,
        )
        try:
            with self._locked(operation_id) as operation:
                operation.logs.append(entry)
                if len(operation.logs) > self.settings.max_operation_logs:
                    del operation.logs[: -self.settings.retained_operation_logs]
                environment_id = operation.target_environment_id
                user_id = operation.user_id
        except OperationNotFoundError:
            logger.warning(
                "Log entry for unknown operation dropped",
                operation_id=operation_id,
                message=message,
            )
            return

        getattr(logger, level.value)(
            message,
            operation_id=operation_id,
            component=component,
            metadata=entry.metadata,
        )

        if report and level in _INCIDENT_LOG_LEVELS:
            self.incident_manager.report_incident(
                IncidentType.SYSTEM_ERROR,
                _INCIDENT_LOG_LEVELS[level],
                f"{component}: {message}",
                user_id=user_id,
                environment_id=environment_id,
                operation_id=operation_id,
                component=component,
                metadata=entry.metadata,
            )

    def update_statistics(self, operation_id: str, **updates: Any) -> CloneStatistics:
        """Merge counter updates into an operation's statistics.

        Raises:
            OperationNotFoundError: If the operation is unknown
            pydantic.ValidationError: If a field is unknown or negative
        """
        with self._locked(operation_id) as operation:
            merged = CloneStatistics.model_validate(
                {**operation.statistics.model_dump(), **updates}
            )
            operation.statistics = merged
            return merged.model_copy()

    def cancel_operation(
        self, operation_id: str, reason: str = "Cancelled by user"
    ) -> CloneOperation:
        """Cancel a pending or running operation.

        Raises:
            OperationNotFoundError: If the operation is unknown
            InvalidStatusTransitionError: If the operation already finished
        """
        current = self.get_operation(operation_id)
        if current is None:
            raise OperationNotFoundError(operation_id)
        if current.status.is_terminal:
            raise InvalidStatusTransitionError(
                f"Cannot cancel operation {operation_id}: already {current.status.value}"
            )

        operation = self.update_operation_status(operation_id, OperationStatus.CANCELLED)
        self.log_operation(
            operation_id, LogLevel.WARNING, "operation-monitor", reason
        )
        return self.get_operation(operation_id) or operation

    # Queries ----------------------------------------------------------------

    def get_operation(self, operation_id: str) -> CloneOperation | None:
        try:
            with self._locked(operation_id) as operation:
                return operation.model_copy(deep=True)
        except OperationNotFoundError:
            return None

    def _snapshot_all(self) -> list[CloneOperation]:
        with self._registry_lock:
            operation_ids = list(self._operations)
        snapshots = [self.get_operation(operation_id) for operation_id in operation_ids]
        return [op for op in snapshots if op is not None]

    def get_all_operations(self) -> list[CloneOperation]:
        """All tracked operations, most recently started first."""
        return sorted(self._snapshot_all(), key=lambda op: op.started_at, reverse=True)

    def get_operations_by_status(self, status: OperationStatus) -> list[CloneOperation]:
        return [op for op in self.get_all_operations() if op.status == status]

    def get_active_operations(self) -> list[CloneOperation]:
        return [op for op in self.get_all_operations() if not op.status.is_terminal]

    def generate_operation_report(self, operation_id: str) -> str:
        """Plain-text report of an operation.

        Raises:
            OperationNotFoundError: If the operation is unknown
        """
        operation = self.get_operation(operation_id)
        if operation is None:
            raise OperationNotFoundError(operation_id)

        stats = operation.statistics
        lines = [
            f"Clone Operation Report: {operation.id}",
            f"Source: {operation.source_environment_id} "
            f"({operation.source_environment_type.value})",
            f"Target: {operation.target_environment_id} "
            f"({operation.target_environment_type.value})",
            f"Status: {operation.status.value}",
            f"Progress: {operation.progress:.1f}%",
            f"Started: {operation.started_at.isoformat()}",
        ]
        if operation.completed_at:
            lines.append(f"Completed: {operation.completed_at.isoformat()}")
        if operation.actual_duration_ms is not None:
            lines.append(f"Duration: {operation.actual_duration_ms / 1000:.1f}s")
        if operation.user_email or operation.user_id:
            lines.append(f"User: {operation.user_email or operation.user_id}")

        lines += [
            "",
            "Statistics:",
            f"  Tables: {stats.tables_processed}/{stats.total_tables}",
            f"  Records cloned: {stats.records_cloned}",
            f"  Records anonymized: {stats.records_anonymized}",
            f"  Functions cloned: {stats.functions_cloned}",
            f"  Triggers cloned: {stats.triggers_cloned}",
            f"  Indexes created: {stats.indexes_created}",
            f"  Policies applied: {stats.policies_applied}",
            f"  Data size: {stats.total_size_cloned} bytes",
        ]

        if operation.error:
            lines += [
                "",
                f"Error: [{operation.error.code}] {operation.error.message}",
                f"Recoverable: {'yes' if operation.error.recoverable else 'no'}",
            ]

        problems = [
            log for log in operation.logs if log.level in _INCIDENT_LOG_LEVELS
        ]
        if problems:
            lines += ["", "Errors and critical events:"]
            lines += [
                f"  [{log.timestamp.isoformat()}] {log.level.value.upper()} "
                f"{log.component}: {log.message}"
                for log in problems
            ]
        return "\n".join(lines)

    def cleanup(self) -> int:
        """Forget finished operations older than the retention window."""
        cutoff = self.clock() - timedelta(days=self.settings.metrics_retention_days)
        with self._registry_lock:
            stale = [
                operation_id
                for operation_id, op in self._operations.items()
                if op.status.is_terminal and op.completed_at and op.completed_at < cutoff
            ]
            for operation_id in stale:
                del self._operations[operation_id]
                del self._locks[operation_id]

        if stale:
            logger.info("Old clone operations removed", count=len(stale))
        return len(stale)

    def _emergency_stop(
        self, rule: AlertRule, action: AlertAction, incident: SecurityIncident
    ) -> None:
        """Cancel every active operation when an emergency-stop alert fires."""
        logger.critical(
            "Emergency stop triggered",
            rule_id=rule.id,
            incident_id=incident.id,
        )
        for operation in self.get_active_operations():
            try:
                self.cancel_operation(
                    operation.id, f"Emergency stop: {action.message or rule.name}"
                )
            except InvalidStatusTransitionError:
                # Finished between the snapshot and the cancel
                continue
