"""Pydantic models for clone operations, security incidents and health checks.

These records are what the monitors hand out; callers always receive copies,
never the monitor's live records.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EnvironmentType(str, Enum):
    PRODUCTION = "production"
    STAGING = "staging"
    DEVELOPMENT = "development"
    TESTING = "testing"


class OperationStatus(str, Enum):
    """Lifecycle states of a clone operation."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            OperationStatus.COMPLETED,
            OperationStatus.FAILED,
            OperationStatus.CANCELLED,
        )


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(LogLevel).index(self)


class CloneLog(BaseModel):
    """One entry of an operation's log."""

    timestamp: datetime
    level: LogLevel
    component: str
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    duration_ms: float | None = Field(None, ge=0)


class CloneStatistics(BaseModel):
    """Running counters of a clone operation."""

    model_config = ConfigDict(extra="forbid")

    tables_processed: int = Field(0, ge=0)
    total_tables: int = Field(0, ge=0)
    records_cloned: int = Field(0, ge=0)
    records_anonymized: int = Field(0, ge=0)
    functions_cloned: int = Field(0, ge=0)
    triggers_cloned: int = Field(0, ge=0)
    indexes_created: int = Field(0, ge=0)
    policies_applied: int = Field(0, ge=0)
    total_size_cloned: int = Field(0, ge=0, description="Bytes cloned")
    average_record_size: float = Field(0, ge=0, description="Bytes per record")
    peak_memory_usage: int = Field(0, ge=0, description="Peak memory in bytes")
    network_bytes_transferred: int = Field(0, ge=0)


class CloneError(BaseModel):
    """Terminal error of a failed operation."""

    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    recoverable: bool = False
    timestamp: datetime | None = None


class CloneOperation(BaseModel):
    """A long-running environment clone being tracked."""

    id: str
    source_environment_id: str
    target_environment_id: str
    source_environment_type: EnvironmentType
    target_environment_type: EnvironmentType
    status: OperationStatus = OperationStatus.PENDING
    progress: float = Field(0, ge=0, le=100)
    started_at: datetime
    completed_at: datetime | None = None
    estimated_duration_ms: float | None = None
    actual_duration_ms: float | None = None
    logs: list[CloneLog] = Field(default_factory=list)
    statistics: CloneStatistics = Field(default_factory=CloneStatistics)
    options: dict[str, Any] = Field(default_factory=dict)
    error: CloneError | None = None
    user_id: str | None = None
    user_email: str | None = None

    @property
    def involves_production(self) -> bool:
        return EnvironmentType.PRODUCTION in (
            self.source_environment_type,
            self.target_environment_type,
        )


class IncidentType(str, Enum):
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    PRODUCTION_ACCESS_ATTEMPT = "production_access_attempt"
    CONFIGURATION_TAMPERING = "configuration_tampering"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    SYSTEM_ERROR = "system_error"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SecurityIncident(BaseModel):
    """A reported security-relevant event."""

    id: str
    type: IncidentType
    severity: Severity
    description: str
    timestamp: datetime
    user_id: str | None = None
    environment_id: str | None = None
    operation_id: str | None = None
    component: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    resolved: bool = False
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    resolution: str | None = None


class ConditionOperator(str, Enum):
    EQ = "eq"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    CONTAINS = "contains"


class AlertCondition(BaseModel):
    """Matches an incident attribute (or metadata key) against a threshold."""

    metric: str
    operator: ConditionOperator
    threshold: Any


class AlertActionType(str, Enum):
    LOG = "log"
    EMERGENCY_STOP = "emergency_stop"
    EMAIL = "email"
    WEBHOOK = "webhook"


class AlertAction(BaseModel):
    type: AlertActionType
    target: str | None = Field(None, description="Address or URL for email/webhook")
    message: str | None = None


class AlertRule(BaseModel):
    """Actions fired when every condition matches, at most once per cooldown."""

    id: str
    name: str
    description: str = ""
    enabled: bool = True
    conditions: list[AlertCondition]
    actions: list[AlertAction]
    cooldown_seconds: float = Field(300, ge=0)
    last_triggered: datetime | None = None


class AlertNotification(BaseModel):
    """An email or webhook alert queued for delivery."""

    rule_id: str
    incident_id: str
    channel: AlertActionType
    target: str | None
    message: str
    created_at: datetime


class CheckStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


class OverallHealth(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


class Environment(BaseModel):
    """An environment whose health is monitored."""

    id: str
    name: str
    type: EnvironmentType
    allow_writes: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)


class HealthCheck(BaseModel):
    """Outcome of one named check."""

    name: str
    status: CheckStatus
    message: str
    response_time_ms: float | None = Field(None, ge=0)
    details: dict[str, Any] = Field(default_factory=dict)


class HealthStatus(BaseModel):
    """Latest health of an environment."""

    environment_id: str
    environment_name: str
    status: OverallHealth
    checks: list[HealthCheck] = Field(default_factory=list)
    last_checked: datetime
