# blackgift_chat/core/__init__.py
from .config import settings, get_allowed_origins, Settings
from .database import DocumentStore
from .security import setup_security
from .errors import (
    ChatServiceError,
    ChatValidationError,
    BackendUnavailable,
    IdentityVerificationFailure,
    CompletionServiceFailure,
    PersistenceFailure,
    AuthenticationRequired,
)

__all__ = [
    "settings",
    "Settings",
    "get_allowed_origins",
    "DocumentStore",
    "setup_security",
    "ChatServiceError",
    "ChatValidationError",
    "BackendUnavailable",
    "IdentityVerificationFailure",
    "CompletionServiceFailure",
    "PersistenceFailure",
    "AuthenticationRequired",
]
