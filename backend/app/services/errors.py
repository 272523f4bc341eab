"""Error kinds shared by the trust services.

Attacker-controlled input never raises; it produces sentinel results. The
exceptions here cover configuration problems, persistence failures and
workflow preconditions.
"""


class ConfigurationError(RuntimeError):
    """Raised at startup when required configuration is missing."""


class PersistenceError(RuntimeError):
    """Generic persistence failure. Callers only ever see a generic error."""

    def __init__(self, operation: str):
        super().__init__(f"Persistence failure during {operation}")
        self.operation = operation


class PersistenceTimeoutError(PersistenceError):
    """The caller-supplied deadline passed before the unit of work committed."""

    def __init__(self, operation: str):
        super().__init__(operation)
        self.args = (f"Deadline exceeded during {operation}",)


class CertificationError(ValueError):
    """A certification workflow precondition was not met."""

    def __init__(self, code: str, message: str, *, status_code: int = 400, details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
