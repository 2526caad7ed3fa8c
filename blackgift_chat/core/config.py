# blackgift_chat/core/config.py
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

APP_NAME = "BLACKGIFT AI"


class Settings(BaseSettings):
    """
    Application settings.
    Values can be overridden through environment variables or a .env file.
    """

    APP_NAME: str = APP_NAME

    # --- Completion service ---
    COMPLETION_API_KEY: str
    COMPLETION_API_URL: str = "https://api.openai.com/v1"
    COMPLETION_MODEL: str = "gpt-3.5-turbo"
    COMPLETION_MAX_TOKENS: int = 800
    COMPLETION_TEMPERATURE: float = 0.7
    COMPLETION_TIMEOUT: float = 60  # seconds
    DEFAULT_REPLY: str = "Handina kupindura zvakanaka. Edza zvakare."

    # --- Sessions ---
    SESSION_SECRET: str
    SESSION_STORE_URL: str = "redis://127.0.0.1:6379/0"
    SESSION_EXPIRE_HOURS: int = 24
    SESSION_COOKIE: str = "blackgift_session"

    # --- Durable per-user storage (unset disables authenticated persistence) ---
    DURABLE_STORE_PATH: Optional[str] = None

    # --- Identity provider ---
    IDENTITY_VERIFY_URL: str = "https://identitytoolkit.googleapis.com/v1/accounts:lookup"
    IDENTITY_API_KEY: Optional[str] = None
    IDENTITY_TIMEOUT: float = 5

    # --- History / tokens ---
    HISTORY_MAX_TOKENS: int = 3000
    TOKEN_ENCODING: Optional[str] = "r50k_base"
    MESSAGE_TOKEN_OVERHEAD: int = 4
    CONVERSATION_TOKEN_OVERHEAD: int = 2

    SYSTEM_PROMPT: str = (
        f"Ndiri mubatsiri we{APP_NAME}. Gara uchipindura muChiShona (Shona) chete. "
        "Kana mushandisi akakumbira kuchinja mutauro, bvunza mubvunzo muChiShona kuti "
        "uverenge kana vachida kuchinja. Shandisa mutauro unonzwisisika, wakapfava, "
        "uye unoenderana nemamiriro emubvunzo."
    )

    # --- CORS ---
    ALLOWED_ORIGINS: str = "http://localhost:8000,http://127.0.0.1:8000"
    ALLOW_CREDENTIALS: bool = True

    # --- Server ---
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # --- Startup retries ---
    DB_CONNECT_RETRY_DELAY: float = 2  # seconds, exponential backoff multiplier
    DB_MAX_RETRIES: int = 5

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"

    # --- Validators ---
    @field_validator("COMPLETION_API_KEY", "SESSION_SECRET", mode="before")
    @classmethod
    def validate_secret(cls, v):
        if not v or not str(v).strip():
            raise ValueError("secret cannot be empty")
        return v

    @field_validator("HISTORY_MAX_TOKENS")
    @classmethod
    def validate_history_budget(cls, v):
        if v <= 0:
            raise ValueError("HISTORY_MAX_TOKENS must be positive")
        return v

    @field_validator("DURABLE_STORE_PATH", mode="before")
    @classmethod
    def create_store_dir(cls, v):
        if not v:
            return None
        Path(v).parent.mkdir(parents=True, exist_ok=True)
        return v

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def validate_origins(cls, v):
        if isinstance(v, str):
            origins = [origin.strip() for origin in v.split(",") if origin.strip()]
            if not origins:
                raise ValueError("ALLOWED_ORIGINS cannot be empty")
            if "*" in origins:
                logger.warning("ALLOWED_ORIGINS='*' allows every origin. Do not use this in production!")
        return v

    @property
    def session_ttl_seconds(self) -> int:
        return self.SESSION_EXPIRE_HOURS * 60 * 60


# --- Single settings instance ---
settings = Settings()


# --- Helpers ---
def get_allowed_origins() -> List[str]:
    """Returns the list of allowed CORS origins."""
    raw = settings.ALLOWED_ORIGINS
    if raw == "*":
        return ["*"]
    return [origin.strip() for origin in raw.split(",") if origin.strip()]
