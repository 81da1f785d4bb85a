"""Security incident tracking and alerting.

Incidents are reported by the operation and health monitors (and by callers
directly). Each report is matched against alert rules; matching rules fire
their actions at most once per cooldown window.
"""

from collections import defaultdict
from collections.abc import Callable
from datetime import timedelta
import threading
from typing import Any

from ..core.logging import get_logger
from ..core.runtime import Clock, IdGenerator, SequentialIdGenerator, utc_now
from .errors import IncidentNotFoundError
from .models import (
    AlertAction,
    AlertActionType,
    AlertCondition,
    AlertNotification,
    AlertRule,
    ConditionOperator,
    IncidentType,
    SecurityIncident,
    Severity,
)

logger = get_logger(__name__)

ActionHandler = Callable[[AlertRule, AlertAction, SecurityIncident], None]

_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


def default_alert_rules() -> list[AlertRule]:
    """Rules installed on a new manager unless disabled."""
    return [
        AlertRule(
            id="critical_production_access",
            name="Critical Production Access",
            description="Critical-severity access to a production environment",
            conditions=[
                AlertCondition(
                    metric="type",
                    operator=ConditionOperator.EQ,
                    threshold=IncidentType.PRODUCTION_ACCESS_ATTEMPT,
                ),
                AlertCondition(
                    metric="severity",
                    operator=ConditionOperator.EQ,
                    threshold=Severity.CRITICAL,
                ),
            ],
            actions=[
                AlertAction(type=AlertActionType.LOG),
                AlertAction(type=AlertActionType.EMAIL, target="security-team"),
            ],
            cooldown_seconds=60,
        ),
        AlertRule(
            id="system_error_pattern",
            name="System Error Pattern",
            description="High-severity system errors",
            conditions=[
                AlertCondition(
                    metric="type",
                    operator=ConditionOperator.EQ,
                    threshold=IncidentType.SYSTEM_ERROR,
                ),
                AlertCondition(
                    metric="severity",
                    operator=ConditionOperator.GTE,
                    threshold=Severity.HIGH,
                ),
            ],
            actions=[AlertAction(type=AlertActionType.LOG)],
            cooldown_seconds=300,
        ),
        AlertRule(
            id="suspicious_activity",
            name="Suspicious Activity",
            description="Any suspicious activity report",
            conditions=[
                AlertCondition(
                    metric="type",
                    operator=ConditionOperator.EQ,
                    threshold=IncidentType.SUSPICIOUS_ACTIVITY,
                )
            ],
            actions=[
                AlertAction(type=AlertActionType.LOG),
                AlertAction(type=AlertActionType.WEBHOOK, target="security-webhook"),
            ],
            cooldown_seconds=600,
        ),
    ]


def _comparable(metric: str, value: Any) -> Any:
    if metric == "severity" and value is not None:
        return _SEVERITY_RANK[Severity(value)]
    if hasattr(value, "value"):
        return value.value
    return value


def condition_matches(condition: AlertCondition, incident: SecurityIncident) -> bool:
    """Evaluate one condition against an incident attribute or metadata key."""
    metric = condition.metric
    if metric in SecurityIncident.model_fields and metric != "metadata":
        actual = getattr(incident, metric)
    else:
        actual = incident.metadata.get(metric)
    if actual is None:
        return False

    if condition.operator == ConditionOperator.CONTAINS:
        return str(_comparable("", condition.threshold)) in str(_comparable("", actual))

    actual = _comparable(metric, actual)
    threshold = _comparable(metric, condition.threshold)
    try:
        match condition.operator:
            case ConditionOperator.EQ:
                return actual == threshold
            case ConditionOperator.GT:
                return actual > threshold
            case ConditionOperator.LT:
                return actual < threshold
            case ConditionOperator.GTE:
                return actual >= threshold
            case ConditionOperator.LTE:
                return actual <= threshold
    except TypeError:
        return False
    return False


class SecurityIncidentManager:
    """Records security incidents and evaluates alert rules."""

    def __init__(
        self,
        id_generator: IdGenerator | None = None,
        clock: Clock = utc_now,
        install_default_rules: bool = True,
    ):
        self.clock = clock
        self.id_generator = id_generator or SequentialIdGenerator()
        self._incidents: dict[str, SecurityIncident] = {}
        self._rules: dict[str, AlertRule] = {}
        self._handlers: dict[AlertActionType, list[ActionHandler]] = defaultdict(list)
        self.notifications: list[AlertNotification] = []
        self._lock = threading.RLock()

        self.register_action_handler(AlertActionType.LOG, self._log_action)
        self.register_action_handler(AlertActionType.EMAIL, self._queue_notification)
        self.register_action_handler(AlertActionType.WEBHOOK, self._queue_notification)

        if install_default_rules:
            for rule in default_alert_rules():
                self.add_alert_rule(rule)

    # Incidents --------------------------------------------------------------

    def report_incident(
        self,
        type: IncidentType,
        severity: Severity,
        description: str,
        *,
        user_id: str | None = None,
        environment_id: str | None = None,
        operation_id: str | None = None,
        component: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SecurityIncident:
        """Record an incident and fire any matching alert rules.

        Returns:
            A copy of the recorded incident
        """
        with self._lock:
            incident = SecurityIncident(
                id=self.id_generator("incident"),
                type=type,
                severity=severity,
                description=description,
                timestamp=self.clock(),
                user_id=user_id,
                environment_id=environment_id,
                operation_id=operation_id,
                component=component,
                metadata=dict(metadata or {}),
            )
            self._incidents[incident.id] = incident

        log_method = logger.critical if severity == Severity.CRITICAL else logger.warning
        log_method(
            "Security incident reported",
            incident_id=incident.id,
            incident_type=incident.type.value,
            severity=incident.severity.value,
            description=description,
            environment_id=environment_id,
            operation_id=operation_id,
        )

        self._evaluate_rules(incident)
        return incident.model_copy(deep=True)

    def resolve_incident(
        self, incident_id: str, resolution: str, resolved_by: str
    ) -> SecurityIncident:
        """Mark an incident as resolved.

        Raises:
            IncidentNotFoundError: If no incident has the given id
        """
        with self._lock:
            incident = self._incidents.get(incident_id)
            if incident is None:
                raise IncidentNotFoundError(incident_id)
            incident.resolved = True
            incident.resolved_at = self.clock()
            incident.resolved_by = resolved_by
            incident.resolution = resolution
            resolved = incident.model_copy(deep=True)

        logger.info(
            "Security incident resolved",
            incident_id=incident_id,
            resolved_by=resolved_by,
        )
        return resolved

    def get_incident(self, incident_id: str) -> SecurityIncident | None:
        with self._lock:
            incident = self._incidents.get(incident_id)
            return incident.model_copy(deep=True) if incident else None

    def _select(
        self, predicate: Callable[[SecurityIncident], bool]
    ) -> list[SecurityIncident]:
        with self._lock:
            selected = [
                i.model_copy(deep=True) for i in self._incidents.values() if predicate(i)
            ]
        return sorted(selected, key=lambda i: i.timestamp, reverse=True)

    def get_all_incidents(self) -> list[SecurityIncident]:
        """All incidents, newest first."""
        return self._select(lambda i: True)

    def get_unresolved_incidents(self) -> list[SecurityIncident]:
        return self._select(lambda i: not i.resolved)

    def get_incidents_by_severity(self, severity: Severity) -> list[SecurityIncident]:
        return self._select(lambda i: i.severity == severity)

    def get_critical_incidents(self) -> list[SecurityIncident]:
        return self.get_incidents_by_severity(Severity.CRITICAL)

    def get_incidents_by_environment(
        self, environment_id: str
    ) -> list[SecurityIncident]:
        return self._select(lambda i: i.environment_id == environment_id)

    def get_incidents_by_user(self, user_id: str) -> list[SecurityIncident]:
        return self._select(lambda i: i.user_id == user_id)

    def get_recent_incidents(self, hours: float = 24) -> list[SecurityIncident]:
        cutoff = self.clock() - timedelta(hours=hours)
        return self._select(lambda i: i.timestamp >= cutoff)

    def generate_security_report(self, days: int = 7) -> str:
        """Plain-text summary of incidents from the last ``days`` days."""
        cutoff = self.clock() - timedelta(days=days)
        incidents = self._select(lambda i: i.timestamp >= cutoff)

        by_severity = {s: 0 for s in Severity}
        by_type = {t: 0 for t in IncidentType}
        for incident in incidents:
            by_severity[incident.severity] += 1
            by_type[incident.type] += 1
        unresolved = [i for i in incidents if not i.resolved]

        lines = [
            f"Security Report (last {days} days)",
            f"Generated: {self.clock().isoformat()}",
            "",
            f"Total incidents: {len(incidents)}",
            f"Unresolved incidents: {len(unresolved)}",
            "",
            "By severity:",
            *(f"  {s.value}: {count}" for s, count in by_severity.items()),
            "",
            "By type:",
            *(f"  {t.value}: {count}" for t, count in by_type.items() if count),
        ]

        critical = [i for i in unresolved if i.severity == Severity.CRITICAL]
        if critical:
            lines += ["", "Unresolved critical incidents:"]
            lines += [
                f"  [{i.timestamp.isoformat()}] {i.id}: {i.description}"
                for i in critical
            ]
        return "\n".join(lines)

    def cleanup(self, retention_days: int = 30) -> int:
        """Forget resolved incidents older than the retention window."""
        cutoff = self.clock() - timedelta(days=retention_days)
        with self._lock:
            stale = [
                incident_id
                for incident_id, incident in self._incidents.items()
                if incident.resolved and incident.timestamp < cutoff
            ]
            for incident_id in stale:
                del self._incidents[incident_id]
        return len(stale)

    # Alert rules ------------------------------------------------------------

    def add_alert_rule(self, rule: AlertRule) -> None:
        with self._lock:
            self._rules[rule.id] = rule.model_copy(deep=True)

    def remove_alert_rule(self, rule_id: str) -> bool:
        with self._lock:
            return self._rules.pop(rule_id, None) is not None

    def get_alert_rules(self) -> list[AlertRule]:
        with self._lock:
            return [rule.model_copy(deep=True) for rule in self._rules.values()]

    def register_action_handler(
        self, action_type: AlertActionType, handler: ActionHandler
    ) -> None:
        """Add a handler invoked whenever a rule fires an action of this type."""
        with self._lock:
            self._handlers[action_type].append(handler)

    def _evaluate_rules(self, incident: SecurityIncident) -> None:
        now = self.clock()
        fired: list[AlertRule] = []

        with self._lock:
            for rule in self._rules.values():
                if not rule.enabled or not rule.conditions:
                    continue
                if rule.last_triggered is not None and now - rule.last_triggered < (
                    timedelta(seconds=rule.cooldown_seconds)
                ):
                    continue
                if all(condition_matches(c, incident) for c in rule.conditions):
                    rule.last_triggered = now
                    fired.append(rule.model_copy(deep=True))
            handlers = {k: list(v) for k, v in self._handlers.items()}

        for rule in fired:
            for action in rule.actions:
                for handler in handlers.get(action.type, []):
                    try:
                        handler(rule, action, incident)
                    except Exception:
                        # One failing channel must not block the others
                        logger.exception(
                            "Alert action failed",
                            rule_id=rule.id,
                            action=action.type.value,
                            incident_id=incident.id,
                        )

    def _log_action(
        self, rule: AlertRule, action: AlertAction, incident: SecurityIncident
    ) -> None:
        logger.warning(
            "Alert rule triggered",
            rule_id=rule.id,
            rule_name=rule.name,
            incident_id=incident.id,
            severity=incident.severity.value,
            message=action.message,
        )

    def _queue_notification(
        self, rule: AlertRule, action: AlertAction, incident: SecurityIncident
    ) -> None:
        notification = AlertNotification(
            rule_id=rule.id,
            incident_id=incident.id,
            channel=action.type,
            target=action.target,
            message=action.message
            or f"[{incident.severity.value.upper()}] {rule.name}: {incident.description}",
            created_at=self.clock(),
        )
        with self._lock:
            self.notifications.append(notification)
