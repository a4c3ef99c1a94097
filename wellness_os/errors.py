"""
Error taxonomy shared by the nightly jobs.

ConfigurationError aborts a run at startup. UpstreamServiceError and
DataIntegrityError are scoped to one user or enrollment and are logged and
skipped. StateConflictError marks a lost conditional write and is a no-op.
"""


class WellnessJobError(Exception):
    """Base exception for job pipeline errors."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class ConfigurationError(WellnessJobError):
    """Missing credentials or configuration."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message, operation="configuration", recoverable=False)
        self.missing = missing or []


class UpstreamServiceError(WellnessJobError):
    """Retrieval, generation or safety-scan failure for a single user."""

    def __init__(self, message: str, service: str, operation: str | None = None):
        super().__init__(message, operation=operation, recoverable=True)
        self.service = service


class DataIntegrityError(WellnessJobError):
    """A row is malformed or missing a required field."""

    def __init__(self, message: str, record_id: str | None = None):
        super().__init__(message, operation="validate_row", recoverable=True)
        self.record_id = record_id


class StateConflictError(WellnessJobError):
    """A conditional write lost a race; callers treat this as a no-op."""

    def __init__(self, message: str, user_id: str | None = None, operation: str | None = None):
        super().__init__(message, operation=operation, recoverable=True)
        self.user_id = user_id
