from __future__ import annotations
"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """SDLC AI orchestrator settings.

    Loaded from environment variables or .env file.
    """

    # --- Application ---
    APP_NAME: str = "SDLC AI Orchestrator"
    DEBUG: bool = False

    # --- Remote agent service ---
    AGENT_SERVICE_URL: str = "http://localhost:8000"
    AGENT_TIMEOUT: int = 180
    VALIDATE_ENDPOINT: str = "/agent/validate"

    # --- Pipeline ---
    DEFAULT_AGENTS: str = "KnowledgeBase,Requirements,Architecture,Skeletons,Generator"  # comma-separated, in run order

    # --- Review surface & audit ---
    REVIEW_DIR: str = "review_volume"
    AUDIT_DIR: str = "audit_volume"
    AUTO_SAVE_AUDIT: bool = False

    # --- Redis (optional event relay, empty disables) ---
    REDIS_URL: str = ""

    @property
    def default_agent_sequence(self) -> list[str]:
        return [a.strip() for a in self.DEFAULT_AGENTS.split(",") if a.strip()]

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton."""
    return Settings()
