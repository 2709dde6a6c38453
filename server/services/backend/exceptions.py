"""Backend client exception hierarchy."""

from typing import Any, Dict, Optional


class ApiError(Exception):
    """Structured error raised for any failed backend call.

    ``status`` mirrors the HTTP status (408 for timeouts, 500 when the
    failure has no usable status) and ``details`` carries the parsed error
    body when there is one.
    """

    def __init__(self, message: str, status: int, details: Optional[Any] = None):
        self.message = message
        self.status = status
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "status": self.status, "details": self.details}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status}, message={self.message!r})"


class RequestTimeoutError(ApiError):
    """Backend did not answer within the request timeout."""

    def __init__(self, message: str = "Request timeout", details: Optional[Any] = None):
        super().__init__(message, 408, details)


class AuthenticationRequiredError(ApiError):
    """Backend answered with an HTML page where JSON was expected.

    The backend serves its login page instead of JSON when the session is
    missing or expired.
    """

    def __init__(self, message: str = "Authentication required. Please log in again.",
                 details: Optional[Any] = "Backend returned HTML error page"):
        super().__init__(message, 401, details)
