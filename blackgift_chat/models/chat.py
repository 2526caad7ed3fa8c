# blackgift_chat/models/chat.py
import time
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field

Role = Literal["system", "user", "assistant"]


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


class ChatMessage(BaseModel):
    """
    A single conversation message.

    Example:
        {
            "role": "user",
            "content": "Mhoro",
            "timestamp": 1726159200123
        }
    """
    role: Role = Field(..., description="Sender role: 'system', 'user' or 'assistant'")
    content: str = Field(..., description="Message text")
    timestamp: int = Field(default_factory=now_ms, description="Epoch milliseconds")

    class Config:
        extra = "forbid"

    def to_completion(self) -> dict:
        """Shape sent to the completion API (role/content only)."""
        return {"role": self.role, "content": self.content}


class ChatRequest(BaseModel):
    """
    Request body for /api/chat.

    Example:
        {"message": "Mhoro"}
    """
    # Optional so that a missing message is reported as 400 by the orchestrator
    message: Optional[str] = Field(None, description="User message")

    class Config:
        json_schema_extra = {"example": {"message": "Mhoro"}}


class TokenBreakdown(BaseModel):
    prompt: int = Field(..., ge=0)
    completion: int = Field(..., ge=0)
    total: int = Field(..., ge=0)


class ChatResponse(BaseModel):
    """
    Response from /api/chat.

    Example:
        {
            "reply": "Mhoro, ndeipi?",
            "tokens": {"prompt": 58, "completion": 4, "total": 62}
        }
    """
    reply: str = Field(..., description="Assistant reply")
    tokens: TokenBreakdown


class ResetResponse(BaseModel):
    ok: bool = True
    message: str


class HistoryResponse(BaseModel):
    history: List[ChatMessage]


class ErrorResponse(BaseModel):
    error: str
    details: Optional[Any] = None
