"""Environment health monitoring.

Health is computed from a set of pluggable checks. Each check is an async
callable taking the :class:`Environment` and returning a :class:`HealthCheck`.
Checks that need infrastructure (database connectivity, resource usage) are
built with :class:`ProbeCheck` around whatever probe the caller supplies.
"""

import asyncio
from collections.abc import Awaitable, Callable
import time
from typing import Any

from ..core.config import EnvCloneSettings
from ..core.logging import get_logger
from ..core.runtime import Clock, utc_now
from .incidents import SecurityIncidentManager
from .models import (
    CheckStatus,
    Environment,
    EnvironmentType,
    HealthCheck,
    HealthStatus,
    IncidentType,
    OverallHealth,
    Severity,
)

logger = get_logger(__name__)

HealthCheckFn = Callable[[Environment], Awaitable[HealthCheck]]
Probe = Callable[[Environment], Awaitable[dict[str, Any] | None]]


async def security_configuration_check(environment: Environment) -> HealthCheck:
    """Fail when a production environment accepts writes."""
    if environment.type == EnvironmentType.PRODUCTION and environment.allow_writes:
        return HealthCheck(
            name="Security",
            status=CheckStatus.FAIL,
            message="Production environment allows writes",
            details={"allow_writes": True},
        )
    return HealthCheck(
        name="Security",
        status=CheckStatus.PASS,
        message="Security configuration is valid",
        details={"allow_writes": environment.allow_writes},
    )


class ProbeCheck:
    """Wraps an async probe as a timed health check.

    The probe passes by returning (optionally with details), is reported as a
    warning when slower than ``slow_threshold_ms``, and fails when it raises.
    """

    def __init__(self, name: str, probe: Probe, slow_threshold_ms: float = 500.0):
        self.name = name
        self.probe = probe
        self.slow_threshold_ms = slow_threshold_ms

    async def __call__(self, environment: Environment) -> HealthCheck:
        start = time.perf_counter()
        try:
            details = await self.probe(environment) or {}
        except Exception as e:
            return HealthCheck(
                name=self.name,
                status=CheckStatus.FAIL,
                message=f"{self.name} check failed: {e}",
                response_time_ms=round((time.perf_counter() - start) * 1000, 2),
                details={"error_type": type(e).__name__},
            )

        elapsed = round((time.perf_counter() - start) * 1000, 2)
        if elapsed > self.slow_threshold_ms:
            return HealthCheck(
                name=self.name,
                status=CheckStatus.WARN,
                message=f"{self.name} responded slowly ({elapsed:.0f}ms)",
                response_time_ms=elapsed,
                details=details,
            )
        return HealthCheck(
            name=self.name,
            status=CheckStatus.PASS,
            message=f"{self.name} is healthy",
            response_time_ms=elapsed,
            details=details,
        )


def overall_status(checks: list[HealthCheck]) -> OverallHealth:
    """Critical if any check fails, warning if any warns, healthy otherwise."""
    if not checks:
        return OverallHealth.UNKNOWN
    if any(check.status == CheckStatus.FAIL for check in checks):
        return OverallHealth.CRITICAL
    if any(check.status == CheckStatus.WARN for check in checks):
        return OverallHealth.WARNING
    return OverallHealth.HEALTHY


class HealthMonitor:
    """Runs health checks per environment and keeps the latest status."""

    def __init__(
        self,
        checks: list[HealthCheckFn] | None = None,
        incident_manager: SecurityIncidentManager | None = None,
        settings: EnvCloneSettings | None = None,
        clock: Clock = utc_now,
    ):
        self.checks: list[HealthCheckFn] = (
            list(checks) if checks is not None else [security_configuration_check]
        )
        self.incident_manager = incident_manager or SecurityIncidentManager(clock=clock)
        self.settings = settings or EnvCloneSettings()
        self.clock = clock
        self._statuses: dict[str, HealthStatus] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def add_check(self, check: HealthCheckFn) -> None:
        self.checks.append(check)

    async def perform_health_check(self, environment: Environment) -> HealthStatus:
        """Run every check against an environment and record the result.

        A status change is logged; a warning or critical result is reported
        as a system-error incident. If running the checks itself fails, the
        environment is recorded as critical.
        """
        try:
            checks = list(
                await asyncio.gather(*(check(environment) for check in self.checks))
            )
        except Exception as e:
            logger.exception(
                "Health check execution failed", environment_id=environment.id
            )
            checks = [
                HealthCheck(
                    name="Health Check Execution",
                    status=CheckStatus.FAIL,
                    message=f"Health check failed: {e}",
                    details={"error_type": type(e).__name__},
                )
            ]

        status = HealthStatus(
            environment_id=environment.id,
            environment_name=environment.name,
            status=overall_status(checks),
            checks=checks,
            last_checked=self.clock(),
        )

        previous = self._statuses.get(environment.id)
        self._statuses[environment.id] = status

        if previous is None or previous.status != status.status:
            logger.info(
                "Environment health changed",
                environment_id=environment.id,
                previous=previous.status.value if previous else None,
                current=status.status.value,
            )

        if status.status in (OverallHealth.WARNING, OverallHealth.CRITICAL):
            failing = [c for c in checks if c.status != CheckStatus.PASS]
            self.incident_manager.report_incident(
                IncidentType.SYSTEM_ERROR,
                Severity.HIGH
                if status.status == OverallHealth.CRITICAL
                else Severity.MEDIUM,
                f"Environment {environment.name} health is {status.status.value}: "
                + "; ".join(c.message for c in failing),
                environment_id=environment.id,
                component="health-monitor",
                metadata={"failed_checks": [c.name for c in failing]},
            )

        return status.model_copy(deep=True)

    def get_health_status(self, environment_id: str) -> HealthStatus | None:
        status = self._statuses.get(environment_id)
        return status.model_copy(deep=True) if status else None

    def get_all_health_statuses(self) -> list[HealthStatus]:
        return [status.model_copy(deep=True) for status in self._statuses.values()]

    def get_unhealthy_environments(self) -> list[HealthStatus]:
        return [
            status
            for status in self.get_all_health_statuses()
            if status.status in (OverallHealth.WARNING, OverallHealth.CRITICAL)
        ]

    def generate_health_report(self) -> str:
        """Plain-text report of the latest status of every environment."""
        statuses = self.get_all_health_statuses()
        counts = {health: 0 for health in OverallHealth}
        for status in statuses:
            counts[status.status] += 1

        lines = [
            "Environment Health Report",
            f"Generated: {self.clock().isoformat()}",
            "",
            f"Environments: {len(statuses)}",
            *(f"  {health.value}: {count}" for health, count in counts.items()),
        ]
        for status in sorted(statuses, key=lambda s: s.environment_name):
            lines += [
                "",
                f"{status.environment_name} ({status.environment_id}): "
                f"{status.status.value.upper()}",
                f"  Last checked: {status.last_checked.isoformat()}",
            ]
            for check in status.checks:
                timing = (
                    f" ({check.response_time_ms:.0f}ms)"
                    if check.response_time_ms is not None
                    else ""
                )
                lines.append(
                    f"  - {check.name}: {check.status.value}{timing} {check.message}"
                )
        return "\n".join(lines)

    # Periodic monitoring ----------------------------------------------------

    def start_monitoring(
        self, environment: Environment, interval_seconds: float | None = None
    ) -> None:
        """Check an environment periodically in a background task.

        Must be called from a running event loop. Restarting monitoring for an
        environment replaces its previous task.
        """
        self.stop_monitoring(environment.id)
        interval = interval_seconds or self.settings.health_check_interval_seconds
        self._tasks[environment.id] = asyncio.get_running_loop().create_task(
            self._monitor(environment, interval),
            name=f"health-monitor-{environment.id}",
        )
        logger.info(
            "Health monitoring started",
            environment_id=environment.id,
            interval_seconds=interval,
        )

    async def _monitor(self, environment: Environment, interval: float) -> None:
        while True:
            try:
                await self.perform_health_check(environment)
            except Exception:
                # Keep monitoring after a failed round
                logger.exception(
                    "Periodic health check failed", environment_id=environment.id
                )
            await asyncio.sleep(interval)

    def stop_monitoring(self, environment_id: str) -> bool:
        task = self._tasks.pop(environment_id, None)
        if task is None:
            return False
        task.cancel()
        logger.info("Health monitoring stopped", environment_id=environment_id)
        return True

    def is_monitoring(self, environment_id: str) -> bool:
        task = self._tasks.get(environment_id)
        return task is not None and not task.done()

    async def aclose(self) -> None:
        """Stop every monitoring task and wait for them to finish."""
        tasks = list(self._tasks.values())
        for environment_id in list(self._tasks):
            self.stop_monitoring(environment_id)
        await asyncio.gather(*tasks, return_exceptions=True)
