# blackgift_chat/main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from blackgift_chat.api import chat
from blackgift_chat.core.config import Settings, settings as default_settings
from blackgift_chat.core.errors import ChatServiceError
from blackgift_chat.core.security import setup_security
from blackgift_chat.services.orchestrator import ChatOrchestrator

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings):
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[ChatOrchestrator] = None,
) -> FastAPI:
    """
    Builds the application. When `orchestrator` is given it is used as-is
    (its dependencies still go through init/close with the app lifespan).
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        instance = app.state.orchestrator or ChatOrchestrator.from_settings(settings)
        await instance.init()
        app.state.orchestrator = instance
        logger.info(f"{settings.APP_NAME} backend started")
        try:
            yield
        finally:
            await instance.close()
            logger.info(f"{settings.APP_NAME} backend stopped")

    app = FastAPI(
        title=f"{settings.APP_NAME} Chat API",
        description="Chat backend with token-bounded per-user history",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    setup_security(app, settings)
    app.include_router(chat.router, prefix="/api", tags=["chat"])

    # === Health check with real service checks ===
    @app.get("/health")
    async def health_check(request: Request):
        """Health of the session store, durable store, completion service and identity provider"""
        checks = await request.app.state.orchestrator.health_check()

        if not checks["session_store"]:
            status = "unhealthy"
        # None marks an optional service that is not configured
        elif all(ok for ok in checks.values() if ok is not None):
            status = "healthy"
        else:
            status = "degraded"
        return {"status": status, "services": checks}

    # === Error handlers ===
    @app.exception_handler(ChatServiceError)
    async def chat_service_error_handler(request: Request, exc: ChatServiceError):
        if exc.status_code >= 500:
            logger.error(f"{exc.error} in {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_body()))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Logs every unhandled exception"""
        logger.error(f"Unhandled exception in {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "details": str(exc)},
        )

    return app


configure_logging(default_settings)
app = create_app()


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting server on {default_settings.HOST}:{default_settings.PORT}")
    uvicorn.run(
        app,
        host=default_settings.HOST,
        port=default_settings.PORT,
        log_level=default_settings.LOG_LEVEL.lower(),
        reload=False,
    )
