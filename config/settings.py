from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


load_dotenv()


class Settings:
    """Application settings loaded from environment variables.

    Keep all credentials and config centralized here.
    """

    app_env: str = os.getenv("APP_ENV", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8000"))

    google_api_key: Optional[str] = os.getenv("GOOGLE_API_KEY")
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
    temperature: float = float(os.getenv("MODEL_TEMPERATURE", "0.3"))
    top_p: float = float(os.getenv("MODEL_TOP_P", "0.9"))
    max_tool_rounds: int = int(os.getenv("MAX_TOOL_ROUNDS", "5"))

    # Remote agent runtime owning the conversation threads. When unset the
    # service keeps threads in process memory.
    thread_api_url: Optional[str] = os.getenv("THREAD_API_URL")
    thread_api_key: Optional[str] = os.getenv("THREAD_API_KEY")
    http_timeout: float = float(os.getenv("HTTP_TIMEOUT", "10.0"))

    history_dir: str = os.getenv("HISTORY_DIR", ".history")
    image_api_url: Optional[str] = os.getenv("IMAGE_API_URL")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
