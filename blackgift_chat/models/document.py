# blackgift_chat/models/document.py
"""
Durable per-user record, stored as one document in the `user_histories`
collection keyed by user id.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .chat import ChatMessage, now_ms


class UsageCounter(BaseModel):
    """Lifetime token consumption. Never reduced by trimming or reset."""
    total: int = Field(0, ge=0)
    last_updated: Optional[int] = None

    def add(self, tokens: int) -> "UsageCounter":
        return UsageCounter(total=self.total + max(0, tokens), last_updated=now_ms())


class UsageResponse(BaseModel):
    usage: UsageCounter


class UserHistoryDocument(BaseModel):
    history: List[ChatMessage] = Field(default_factory=list)
    total_tokens: int = 0
    token_usage: UsageCounter = Field(default_factory=UsageCounter)
    updated_at: int = Field(default_factory=now_ms)

    @classmethod
    def from_stored(cls, data: Optional[Dict[str, Any]]) -> "UserHistoryDocument":
        return cls.model_validate(data or {})

    def to_stored(self) -> Dict[str, Any]:
        return self.model_dump()

    def merge(self, partial: Dict[str, Any]) -> "UserHistoryDocument":
        """
        Returns a copy where only the top-level fields present in `partial`
        are replaced; every other field (e.g. token_usage on a history save)
        is kept as stored.
        """
        unknown = set(partial) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown document fields: {sorted(unknown)}")
        merged = self.model_dump()
        for key, value in partial.items():
            if isinstance(value, BaseModel):
                value = value.model_dump()
            elif key == "history":
                value = [m.model_dump() if isinstance(m, BaseModel) else m for m in value]
            merged[key] = value
        return type(self).model_validate(merged)
