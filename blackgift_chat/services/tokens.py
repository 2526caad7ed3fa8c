# blackgift_chat/services/tokens.py
"""
Approximate token counting for history budgeting.

Counts do not need to match the completion model's tokenizer exactly; they
only need to be deterministic so trimming decisions are stable. tiktoken is
used when its encoding can be loaded, otherwise a 4-characters-per-token
heuristic is used.
"""
import logging
import math
from typing import Optional, Sequence

import tiktoken

from blackgift_chat.models.chat import ChatMessage

logger = logging.getLogger(__name__)

# GPT-2/GPT-3 BPE, close enough for gpt-3.5 style models
DEFAULT_ENCODING = "r50k_base"
MESSAGE_OVERHEAD = 4
CONVERSATION_OVERHEAD = 2


def heuristic_tokens(text: str) -> int:
    """Fallback estimate: one token per 4 characters, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


class TokenEstimator:
    def __init__(
        self,
        encoding_name: Optional[str] = DEFAULT_ENCODING,
        message_overhead: int = MESSAGE_OVERHEAD,
        conversation_overhead: int = CONVERSATION_OVERHEAD,
    ):
        self.message_overhead = message_overhead
        self.conversation_overhead = conversation_overhead
        self.encoding = None
        if encoding_name:
            try:
                self.encoding = tiktoken.get_encoding(encoding_name)
                logger.info(f"Token estimator using tiktoken encoding {encoding_name}")
            except Exception as e:
                logger.error(f"Failed to load tiktoken encoding {encoding_name}, using heuristic: {e}")

    def estimate(self, text: Optional[str]) -> int:
        if not text:
            return 0
        if self.encoding is not None:
            try:
                return len(self.encoding.encode(text, disallowed_special=()))
            except Exception as e:
                logger.warning(f"Token encoding failed, using heuristic: {e}")
        return heuristic_tokens(text)

    def estimate_messages(self, messages: Sequence[ChatMessage]) -> int:
        total = 0
        for message in messages:
            total += self.estimate(message.content) + self.message_overhead
        return total + self.conversation_overhead
