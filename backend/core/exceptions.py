"""
Portal exceptions.

Controllers raise these; main.py turns them into JSON responses. Errors that
come back from the backend platform are wrapped in BackendError so callers
never inspect raw response bodies.
"""

from typing import Any, Dict, Optional


class PortalError(Exception):
    """Base exception for all portal errors"""

    status_code = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, "errors": self.details}


class BackendError(PortalError):
    """Error reported by the backend platform (auth, rows or storage)"""

    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None, code: str = "BACKEND_ERROR"):
        super().__init__(message, code=code)
        self.status = status


class AuthApiError(BackendError):
    """Auth endpoint rejected the request"""

    status_code = 400

    def __init__(self, message: str, status: Optional[int] = 400):
        super().__init__(message, status=status, code="AUTH_ERROR")


class NetworkError(PortalError):
    status_code = 503

    def __init__(self, message: str = "Network error. Please check your connection."):
        super().__init__(message, code="NETWORK_ERROR")


class OperationTimeout(NetworkError):
    def __init__(self, operation: str = "Request"):
        super().__init__(f"{operation} timed out")
        self.code = "TIMEOUT"


class ValidationFailed(PortalError):
    """Form input failed validation; details maps field name to message"""

    status_code = 422

    def __init__(self, errors: Dict[str, str], message: str = "Please correct the highlighted fields"):
        super().__init__(message, code="VALIDATION_ERROR", details=errors)
        self.errors = errors


class AuthorizationError(PortalError):
    status_code = 403

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message, code="NOT_AUTHORIZED")


class NotFoundError(PortalError):
    status_code = 404

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} not found",
            code="NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class StorageError(PortalError):
    status_code = 502

    def __init__(self, message: str):
        super().__init__(message, code="STORAGE_ERROR")


class RetriesExhausted(PortalError):
    """An operation failed on every attempt of its retry loop"""

    status_code = 503

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message, code="RETRIES_EXHAUSTED")
        self.last_error = last_error


# Known fragments of platform error messages and what users should see instead
_FRIENDLY_MESSAGES = (
    ("row-level security", "You do not have permission to perform this action."),
    ("permission denied", "You do not have permission to perform this action."),
    ("bucket not found", "File storage is not configured. Please contact an administrator."),
    ("payload too large", "The file is too large. Maximum size is 50MB."),
    ("exceeded the maximum allowed size", "The file is too large. Maximum size is 50MB."),
    ("jwt expired", "Your session has expired. Please sign in again."),
    ("duplicate key", "This record already exists."),
    ("failed to fetch", "Network error. Please check your connection."),
    ("network", "Network error. Please check your connection."),
    ("timed out", "The request timed out. Please try again."),
)


def friendly_message(error: BaseException, default: Optional[str] = None) -> str:
    text = str(error)
    lowered = text.lower()
    for fragment, message in _FRIENDLY_MESSAGES:
        if fragment in lowered:
            return message
    return default or text
