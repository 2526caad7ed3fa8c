# blackgift_chat/models/identity.py
"""
Who a request belongs to.

Every variant carries the browser session id so that any request can fall
back to session-scoped history.
"""
from typing import Literal, Optional, Union

from pydantic import BaseModel


class Anonymous(BaseModel):
    kind: Literal["anonymous"] = "anonymous"
    session_id: str

    class Config:
        frozen = True


class Authenticated(BaseModel):
    kind: Literal["authenticated"] = "authenticated"
    session_id: str
    user_id: str
    email: Optional[str] = None

    class Config:
        frozen = True


class VerificationFailed(BaseModel):
    kind: Literal["verification_failed"] = "verification_failed"
    session_id: str
    reason: str

    class Config:
        frozen = True


Identity = Union[Anonymous, Authenticated, VerificationFailed]


def effective_identity(identity: Identity) -> Union[Anonymous, Authenticated]:
    """Policy: a token that could not be verified is treated as no token at all."""
    if isinstance(identity, VerificationFailed):
        return Anonymous(session_id=identity.session_id)
    return identity
