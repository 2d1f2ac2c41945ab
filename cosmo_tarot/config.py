"""Application configuration."""

from __future__ import annotations

import os
from typing import Literal, Optional

from pydantic import BaseModel, Field

# Constants - avoid magic numbers
DEFAULT_DRAW_TTL_SECONDS = 60 * 60
DEFAULT_MAX_SESSIONS = 5000
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_LLM_TIMEOUT_SECONDS = 20.0

ReadingMode = Literal["auto", "template", "llm"]
LogLevel = Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    draw_ttl_seconds: float = Field(DEFAULT_DRAW_TTL_SECONDS, gt=0)
    max_sessions: int = Field(DEFAULT_MAX_SESSIONS, ge=1)
    reading_mode: ReadingMode = "auto"
    reading_hard_fail: bool = False
    share_text_ascii_only: bool = True
    openai_api_key: Optional[str] = None
    openai_model: str = DEFAULT_OPENAI_MODEL
    llm_timeout_seconds: float = Field(DEFAULT_LLM_TIMEOUT_SECONDS, gt=0)
    log_level: LogLevel = "INFO"

    @property
    def llm_enabled(self) -> bool:
        if self.reading_mode == "template":
            return False
        if self.reading_mode == "llm":
            return True
        return bool(self.openai_api_key)

    @classmethod
    def from_env(cls) -> "Settings":
        api_key = (os.getenv("OPENAI_API_KEY") or "").strip() or None
        return cls(
            draw_ttl_seconds=float(os.getenv("COSMO_DRAW_TTL_SECONDS", DEFAULT_DRAW_TTL_SECONDS)),
            max_sessions=int(os.getenv("COSMO_MAX_SESSIONS", DEFAULT_MAX_SESSIONS)),
            reading_mode=os.getenv("COSMO_READING_MODE", "auto").strip().lower(),
            reading_hard_fail=_env_bool("COSMO_READING_HARD_FAIL", False),
            share_text_ascii_only=_env_bool("COSMO_SHARE_TEXT_ASCII_ONLY", True),
            openai_api_key=api_key,
            openai_model=os.getenv("COSMO_OPENAI_MODEL", DEFAULT_OPENAI_MODEL),
            llm_timeout_seconds=float(os.getenv("COSMO_LLM_TIMEOUT_SECONDS", DEFAULT_LLM_TIMEOUT_SECONDS)),
            log_level=os.getenv("COSMO_LOG_LEVEL", "INFO").strip().upper(),
        )
