# blackgift_chat/services/conversation.py
import logging
from dataclasses import dataclass
from typing import List, Sequence

from blackgift_chat.models.chat import ChatMessage
from blackgift_chat.models.identity import Identity
from blackgift_chat.services.tokens import TokenEstimator
from blackgift_chat.services.trimming import TrimResult, seed_history, trim_messages

logger = logging.getLogger(__name__)


@dataclass
class BuiltConversation:
    messages: List[ChatMessage]
    total_tokens: int
    user_message: ChatMessage


class ConversationBuilder:
    """Appends the new user turn to a loaded history and bounds it. Never writes."""

    def __init__(self, estimator: TokenEstimator, max_tokens: int, system_prompt: str):
        self.estimator = estimator
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt

    def _seeded(self, history: Sequence[ChatMessage]) -> List[ChatMessage]:
        if not history:
            return seed_history(self.system_prompt, self.estimator).messages
        return list(history)

    def build(self, identity: Identity, history: Sequence[ChatMessage], user_message: str) -> BuiltConversation:
        history = self._seeded(history)
        message = ChatMessage(role="user", content=user_message)
        trimmed = trim_messages([*history, message], self.max_tokens, self.estimator, self.system_prompt)
        evicted = len(history) + 1 - len(trimmed.messages)
        if evicted:
            logger.debug(f"Trimmed {evicted} message(s) for {identity.kind} request ({trimmed.total_tokens} tokens)")
        return BuiltConversation(
            messages=trimmed.messages,
            total_tokens=trimmed.total_tokens,
            user_message=message,
        )

    def append_reply(self, history: Sequence[ChatMessage], user_message: ChatMessage, reply: str) -> TrimResult:
        """History to persist after a successful completion: prior turns + this exchange, bounded."""
        history = self._seeded(history)
        assistant = ChatMessage(role="assistant", content=reply)
        return trim_messages(
            [*history, user_message, assistant],
            self.max_tokens,
            self.estimator,
            self.system_prompt,
        )
