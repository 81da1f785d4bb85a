"""Exceptions raised by the monitors."""


class MonitoringError(Exception):
    """Base exception for operation, incident and health monitoring."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class OperationNotFoundError(MonitoringError):
    """No operation is tracked under the given id."""

    def __init__(self, operation_id: str):
        super().__init__(f"Operation not found: {operation_id}")
        self.operation_id = operation_id


class InvalidStatusTransitionError(MonitoringError):
    """The requested status change is not allowed from the current status."""

    pass


class IncidentNotFoundError(MonitoringError):
    """No incident is recorded under the given id."""

    def __init__(self, incident_id: str):
        super().__init__(f"Incident not found: {incident_id}")
        self.incident_id = incident_id


class ConcurrencyLimitError(MonitoringError):
    """Starting another operation would exceed the configured limit."""

    pass
