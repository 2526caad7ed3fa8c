# blackgift_chat/services/__init__.py
from .tokens import TokenEstimator
from .trimming import TrimResult, seed_history, trim_messages
from .conversation import ConversationBuilder, BuiltConversation
from .history_store import HistoryStore, HistoryRecord, SessionHistoryStore, DurableHistoryStore
from .identity import IdentityProvider, resolve_identity
from .llm import CompletionClient
from .orchestrator import ChatOrchestrator, ChatResult

__all__ = [
    "TokenEstimator",
    "TrimResult",
    "seed_history",
    "trim_messages",
    "ConversationBuilder",
    "BuiltConversation",
    "HistoryStore",
    "HistoryRecord",
    "SessionHistoryStore",
    "DurableHistoryStore",
    "IdentityProvider",
    "resolve_identity",
    "CompletionClient",
    "ChatOrchestrator",
    "ChatResult",
]
