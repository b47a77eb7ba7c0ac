"""Configuration management for erengine.

Uses pydantic-settings to load configuration from environment variables.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_env_file() -> Path | None:
    """Search for .env file in common locations."""
    cwd = Path.cwd()
    if (cwd / ".env").exists():
        return cwd / ".env"

    # Check parent directories (up to 5 levels) for project root .env
    check_dir = cwd
    for _ in range(5):
        if (check_dir / ".env").exists():
            return check_dir / ".env"
        parent = check_dir.parent
        if parent == check_dir:
            break
        check_dir = parent

    # src/erengine/config.py -> project root
    project_root = Path(__file__).resolve().parent.parent.parent
    if (project_root / ".env").exists():
        return project_root / ".env"

    return None


_env_file = _find_env_file()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(_env_file) if _env_file else ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================
    # Environment
    # =========================
    environment: Literal["development", "staging", "production"] = "development"

    # =========================
    # Registry database
    # =========================
    database_url: str = Field(
        default="postgresql+asyncpg://erengine:@localhost:5432/erengine",
        repr=False,
    )
    database_echo: bool = False

    # =========================
    # Matching thresholds
    # =========================
    # Empirically chosen; tune per deployment rather than in code.
    match_confidence_threshold: float = Field(default=0.70, ge=0.0, le=1.0)
    match_high_threshold: float = Field(default=0.90, ge=0.0, le=1.0)
    match_medium_threshold: float = Field(default=0.80, ge=0.0, le=1.0)
    match_top_k: int = Field(default=5, ge=1)
    match_allow_fuzzy: bool = True
    match_require_user_confirmation: bool = True
    match_alias_boost: float = Field(default=1.1, ge=1.0)
    match_alias_score_cap: float = Field(default=0.94, ge=0.0, lt=1.0)

    # =========================
    # Concurrency
    # =========================
    batch_max_workers: int = Field(default=8, ge=1)
    executor_max_workers: int = Field(default=4, ge=1)

    # =========================
    # Logging
    # =========================
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
