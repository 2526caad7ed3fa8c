# blackgift_chat/api/chat.py
import logging
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import APIRouter, Depends, Header, Request

from blackgift_chat.core.errors import ChatServiceError, ChatValidationError
from blackgift_chat.models.chat import (
    ChatRequest,
    ChatResponse,
    ErrorResponse,
    HistoryResponse,
    ResetResponse,
    TokenBreakdown,
)
from blackgift_chat.models.document import UsageResponse
from blackgift_chat.models.identity import Identity
from blackgift_chat.services.orchestrator import ChatOrchestrator

logger = logging.getLogger(__name__)

# The /api prefix is added in main.py
router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


# === Dependencies ===

def get_orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.orchestrator


def get_session_id(request: Request) -> str:
    """Opaque id kept in the signed session cookie, created on first use."""
    session_id = request.session.get("sid")
    if not session_id:
        session_id = uuid.uuid4().hex
        request.session["sid"] = session_id
    return session_id


async def get_identity(
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
    session_id: str = Depends(get_session_id),
    authorization: Optional[str] = Header(None),
) -> Identity:
    return await orchestrator.resolve_identity(authorization, session_id)


def require_message(body: ChatRequest) -> str:
    """Rejects a blank message before the session or identity is touched."""
    message = (body.message or "").strip()
    if not message:
        raise ChatValidationError()
    return message


@contextmanager
def downstream_errors(error: str) -> Iterator[None]:
    """Reports server-side failures under this endpoint's error message."""
    try:
        yield
    except ChatServiceError as e:
        if e.status_code < 500:
            raise
        raise ChatServiceError(e.details if e.details is not None else str(e), error=error) from e


# === Routes ===

@router.post("/chat", response_model=ChatResponse, responses=ERROR_RESPONSES)
async def chat_endpoint(
    message: str = Depends(require_message),
    identity: Identity = Depends(get_identity),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> ChatResponse:
    with downstream_errors("Failed to process chat"):
        result = await orchestrator.chat(identity, message)

    return ChatResponse(
        reply=result.reply,
        tokens=TokenBreakdown(
            prompt=result.prompt_tokens,
            completion=result.completion_tokens,
            total=result.total_tokens,
        ),
    )


@router.post("/reset", response_model=ResetResponse, responses=ERROR_RESPONSES)
async def reset_endpoint(
    identity: Identity = Depends(get_identity),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> ResetResponse:
    with downstream_errors("Failed to reset history"):
        message = await orchestrator.reset(identity)
    return ResetResponse(ok=True, message=message)


@router.get("/history", response_model=HistoryResponse, responses=ERROR_RESPONSES)
async def history_endpoint(
    identity: Identity = Depends(get_identity),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> HistoryResponse:
    with downstream_errors("Failed to load history"):
        history = await orchestrator.history(identity)
    return HistoryResponse(history=history)


@router.get(
    "/usage",
    response_model=UsageResponse,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
)
async def usage_endpoint(
    identity: Identity = Depends(get_identity),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> UsageResponse:
    with downstream_errors("Failed to load usage"):
        usage = await orchestrator.usage(identity)
    return UsageResponse(usage=usage)
