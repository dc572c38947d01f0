"""Exception types raised by Spend Assistant components."""


class SpendAssistantError(Exception):
    """Base class for all Spend Assistant errors."""

    pass


class ValidationError(SpendAssistantError):
    """Bad or unsupported input: enum value, missing required field, unknown tool."""

    pass


class UnsupportedGroupByError(ValidationError):
    """groupBy value is not one of category, merchant, day."""

    def __init__(self, group_by: str | None = None):
        message = "unsupported groupBy"
        if group_by:
            message = f"unsupported groupBy: {group_by}"
        super().__init__(message)
        self.group_by = group_by


class MalformedFunctionCallError(SpendAssistantError):
    """The language model attempted a tool call that violates the published schema."""

    def __init__(self, message: str = "malformed function call"):
        super().__init__(message)


class ExternalServiceError(SpendAssistantError):
    """Failure reported by an external provider (language model, Plaid)."""

    def __init__(self, service: str, message: str, transient: bool = False):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.transient = transient


class ModelTimeoutError(ExternalServiceError):
    """The language model did not answer within the configured timeout."""

    def __init__(self, timeout: float):
        super().__init__("model", f"no response within {timeout:g}s", transient=True)
        self.timeout = timeout


class SyncError(ExternalServiceError):
    """Error during synchronization with the Plaid API."""

    def __init__(self, message: str, transient: bool = False):
        super().__init__("plaid", message, transient=transient)


class DatabaseError(SpendAssistantError):
    """SQLite operation failed."""

    def __init__(self, operation: str, message: str):
        super().__init__(message)
        self.operation = operation
