# blackgift_chat/services/trimming.py
from dataclasses import dataclass
from typing import List, Sequence

from blackgift_chat.models.chat import ChatMessage
from blackgift_chat.services.tokens import TokenEstimator


@dataclass
class TrimResult:
    messages: List[ChatMessage]
    total_tokens: int


def seed_history(system_prompt: str, estimator: TokenEstimator) -> TrimResult:
    """A fresh history: just the system instruction."""
    return TrimResult(
        messages=[ChatMessage(role="system", content=system_prompt)],
        total_tokens=estimator.estimate(system_prompt),
    )


def trim_messages(
    messages: Sequence[ChatMessage],
    max_tokens: int,
    estimator: TokenEstimator,
    system_prompt: str,
) -> TrimResult:
    """
    Fits a history into `max_tokens` by evicting the oldest messages after
    index 0. Index 0 (the system instruction) is never removed and no message
    is ever shortened, so a system message that is over budget on its own is
    returned alone with its real count.
    """
    if not messages:
        return seed_history(system_prompt, estimator)

    total = estimator.estimate_messages(messages)
    if total <= max_tokens:
        return TrimResult(messages=list(messages), total_tokens=total)

    system = messages[0]
    rest = list(messages[1:])
    while rest and total > max_tokens:
        rest.pop(0)
        total = estimator.estimate_messages([system, *rest])
    return TrimResult(messages=[system, *rest], total_tokens=total)
