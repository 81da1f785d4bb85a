"""Clone operation, security incident and environment health monitoring."""

from .errors import (
    ConcurrencyLimitError,
    IncidentNotFoundError,
    InvalidStatusTransitionError,
    MonitoringError,
    OperationNotFoundError,
)
from .health import (
    HealthMonitor,
    ProbeCheck,
    overall_status,
    security_configuration_check,
)
from .incidents import SecurityIncidentManager, default_alert_rules
from .models import (
    AlertAction,
    AlertActionType,
    AlertCondition,
    AlertRule,
    CheckStatus,
    CloneError,
    CloneLog,
    CloneOperation,
    CloneStatistics,
    ConditionOperator,
    Environment,
    EnvironmentType,
    HealthCheck,
    HealthStatus,
    IncidentType,
    LogLevel,
    OperationStatus,
    OverallHealth,
    SecurityIncident,
    Severity,
)
from .operations import OperationMonitor

__all__ = [
    "AlertAction",
    "AlertActionType",
    "AlertCondition",
    "AlertRule",
    "CheckStatus",
    "CloneError",
    "CloneLog",
    "CloneOperation",
    "CloneStatistics",
    "ConcurrencyLimitError",
    "ConditionOperator",
    "Environment",
    "EnvironmentType",
    "HealthCheck",
    "HealthMonitor",
    "HealthStatus",
    "IncidentNotFoundError",
    "IncidentType",
    "InvalidStatusTransitionError",
    "LogLevel",
    "MonitoringError",
    "OperationMonitor",
    "OperationNotFoundError",
    "OperationStatus",
    "OverallHealth",
    "ProbeCheck",
    "SecurityIncident",
    "SecurityIncidentManager",
    "Severity",
    "default_alert_rules",
    "overall_status",
    "security_configuration_check",
]
