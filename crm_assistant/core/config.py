"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseSettings):
    # ── Postgres ─────────────────────────────────────────
    postgres_user: str = "crm"
    postgres_password: str = "crm_pw"
    postgres_db: str = "crm"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    database_url_override: str = ""  # full SQLAlchemy async URL, wins over the parts above
    query_timeout_ms: int = 10_000

    # ── LLM ──────────────────────────────────────────────
    llm_provider: str = "mock"  # mock | openai | anthropic
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    llm_model: str = ""
    llm_timeout_seconds: float = 30.0

    # ── Delegated CRM endpoints ──────────────────────────
    crm_api_base_url: str = "http://localhost:5000"
    endpoint_timeout_seconds: float = 30.0

    # ── Analytics ────────────────────────────────────────
    timezone: str = "UTC"
    leaderboard_concurrency: int = 8
    leaderboard_size: int = 10
    kpi_default_days: int = 7

    # ── App ──────────────────────────────────────────────
    environment: str = "development"  # development | production
    api_port: int = 8000
    log_level: str = "INFO"
    request_timeout_seconds: float = 60.0

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
