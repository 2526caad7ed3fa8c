# blackgift_chat/models/__init__.py
from .chat import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    TokenBreakdown,
    ResetResponse,
    HistoryResponse,
    ErrorResponse,
    now_ms,
)
from .document import UsageCounter, UsageResponse, UserHistoryDocument
from .identity import Anonymous, Authenticated, VerificationFailed, Identity, effective_identity

__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "TokenBreakdown",
    "ResetResponse",
    "HistoryResponse",
    "ErrorResponse",
    "now_ms",
    "UsageCounter",
    "UsageResponse",
    "UserHistoryDocument",
    "Anonymous",
    "Authenticated",
    "VerificationFailed",
    "Identity",
    "effective_identity",
]
