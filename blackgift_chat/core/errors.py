# blackgift_chat/core/errors.py
"""
Error taxonomy for the chat backend.

Every error carries the HTTP status it maps to, a human-readable `error`
string and optional `details` for diagnostics. The handlers registered in
main.py turn them into `{"error": ..., "details": ...}` bodies.
"""
from typing import Any, Dict, Optional


class ChatServiceError(Exception):
    status_code: int = 500
    error: str = "Internal server error"

    def __init__(self, details: Optional[Any] = None, error: Optional[str] = None):
        self.details = details
        if error is not None:
            self.error = error
        super().__init__(str(details) if details is not None else self.error)

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        return body


class ChatValidationError(ChatServiceError):
    status_code = 400
    error = "message is required"


class BackendUnavailable(ChatServiceError):
    """Durable or session storage could not be reached (or is not configured)."""
    status_code = 503
    error = "Storage backend unavailable"


class IdentityVerificationFailure(ChatServiceError):
    """Raised by the identity client; identity resolution turns it into anonymous."""
    status_code = 401
    error = "Identity verification failed"


class CompletionServiceFailure(ChatServiceError):
    status_code = 500
    error = "Failed to process chat"


class PersistenceFailure(ChatServiceError):
    status_code = 500
    error = "Failed to process chat"


class AuthenticationRequired(ChatServiceError):
    status_code = 401
    error = "Authentication required to view usage"
