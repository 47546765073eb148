from __future__ import annotations

import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv


load_dotenv()


class ConfigError(RuntimeError):
    """Raised when required configuration is missing or malformed."""


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    """Application settings loaded from environment variables.

    Keep all credentials and config centralized here.
    """

    REQUIRED = {
        "whatsapp_token": "WHATSAPP_TOKEN",
        "google_api_key": "GEMINI_API_KEY",
        "phone_number_id": "PHONE_NUMBER_ID",
        "verify_token": "VERIFY_TOKEN",
    }

    def __init__(self) -> None:
        self.app_env: str = os.getenv("APP_ENV", "development")
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
        self.port: int = _env_int("PORT", 3000)

        # Credentials
        self.whatsapp_token: Optional[str] = os.getenv("WHATSAPP_TOKEN") or None
        self.google_api_key: Optional[str] = (
            os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or None
        )
        self.phone_number_id: Optional[str] = os.getenv("PHONE_NUMBER_ID") or None
        self.verify_token: Optional[str] = os.getenv("VERIFY_TOKEN") or None

        # Generation backend
        self.gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
        self.temperature: float = _env_float("MODEL_TEMPERATURE", 0.7)
        self.top_p: float = _env_float("MODEL_TOP_P", 0.9)
        self.generation_timeout: float = _env_float("GENERATION_TIMEOUT", 30.0)

        # WhatsApp Graph API
        self.whatsapp_api_url: str = os.getenv(
            "WHATSAPP_API_URL", "https://graph.facebook.com"
        )
        self.whatsapp_api_version: str = os.getenv("WHATSAPP_API_VERSION", "v17.0")
        self.delivery_timeout: float = _env_float("DELIVERY_TIMEOUT", 10.0)

        # Session store bounds, 0 disables a bound
        self.max_sessions: int = _env_int("MAX_SESSIONS", 1000)
        self.max_turns_per_session: int = _env_int("MAX_TURNS_PER_SESSION", 40)
        self.dedupe_message_ids: bool = _env_bool("DEDUPE_MESSAGE_IDS", False)

    def missing(self) -> List[str]:
        return [env for attr, env in self.REQUIRED.items() if not getattr(self, attr)]

    def validate(self) -> "Settings":
        missing = self.missing()
        if missing:
            raise ConfigError(
                "Missing required environment variables: " + ", ".join(missing)
            )
        if self.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ConfigError(f"Unknown LOG_LEVEL: {self.log_level}")
        if not 0 < self.port < 65536:
            raise ConfigError(f"PORT out of range: {self.port}")
        if self.max_sessions < 0 or self.max_turns_per_session < 0:
            raise ConfigError("MAX_SESSIONS and MAX_TURNS_PER_SESSION must be >= 0")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
