# blackgift_chat/core/security.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.sessions import SessionMiddleware
from starlette.requests import Request

from .config import Settings, get_allowed_origins

logger = logging.getLogger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        logger.info(f"Incoming request: {request.method} {request.url.path}")
        response = await call_next(request)
        logger.info(f"Response: {request.method} {request.url.path} -> {response.status_code}")
        return response


def setup_cors(app: FastAPI, settings: Settings):
    """CORS for the application"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=settings.ALLOW_CREDENTIALS,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def setup_sessions(app: FastAPI, settings: Settings):
    """
    Signed session cookie. The cookie only carries the opaque session id;
    the history itself lives in the session store.
    """
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SESSION_SECRET,
        session_cookie=settings.SESSION_COOKIE,
        max_age=settings.session_ttl_seconds,
        same_site="lax",
    )


def setup_security(app: FastAPI, settings: Settings):
    setup_sessions(app, settings)
    setup_cors(app, settings)
    # Added last so it wraps everything and sees the final status code
    app.add_middleware(LoggingMiddleware)
