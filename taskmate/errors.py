"""
Error taxonomy shared by the store, auth, cleanup and HTTP layers.

The HTTP layer maps these onto status codes:
    ValidationError    -> 400
    AuthorizationError -> 401
    DatabaseError      -> 500
"""
from typing import Any, Optional


class TaskMateError(Exception):
    """Base class for all TaskMate errors."""
    status_code = 500


class ConfigError(TaskMateError):
    """Raised when configuration is invalid or incomplete."""
    pass


class ValidationError(TaskMateError):
    """Raised when input is missing or malformed."""
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class AuthorizationError(TaskMateError):
    """Raised for missing/invalid sessions and for rows the caller does not own.

    Not-found conditions are reported this way too, so callers cannot
    probe for the existence of other users' rows.
    """
    status_code = 401

    def __init__(self, message: str = "Unauthorized access"):
        super().__init__(message)


class DatabaseError(TaskMateError):
    """Raised when a statement fails (constraint violations, connection failures)."""
    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.code = code
        self.details = details
