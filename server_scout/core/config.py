"""
Scanner configuration with environment-specific secrets management.

Supported environment files (loaded in order of precedence):
1. .env.{ENVIRONMENT} (e.g., .env.production, .env.development)
2. .env (fallback)

Required secrets:
- STEAM_API_KEY (only when player enrichment is enabled)
"""
import os
import logging
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root (two levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Scanner settings. Values only; loading happens in load_settings()."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # Environment
    ENVIRONMENT: Literal["development", "production", "test"] = "development"
    APP_NAME: str = "server-scout"

    # Database
    DATABASE_URL: str = f"sqlite:///{PROJECT_ROOT / 'data' / 'scout.db'}"
    DB_POOL_SIZE: int = 10
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_BASE_DELAY: float = 1.0
    SNAPSHOT_RETENTION_DAYS: int = 30

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Target game
    GAME_DIR: str = "garrysmod"
    GAME_APP_ID: int = 4000

    # Discovery sources
    MASTER_SERVER_HOST: str = "hl2master.steampowered.com"
    MASTER_SERVER_PORT: int = 27011
    MASTER_QUERY_BUDGET: float = 10.0  # seconds spent collecting directory replies
    LISTING_URL: str = "https://api.gametracker.com/v1/games/garrysmod/servers"
    LISTING_LIMIT: int = 1000
    LISTING_TIMEOUT: float = 10.0

    # Scanner
    SCAN_INTERVAL_MINUTES: int = 10
    HOT_SCAN_INTERVAL_MINUTES: int = 5
    MAX_CONCURRENT_QUERIES: int = 50
    QUERY_TIMEOUT: float = 5.0
    BATCH_PAUSE: float = 1.0
    OFFLINE_AFTER_FAILURES: int = 3

    # Steam Web API (profile enrichment)
    STEAM_API_KEY: str = ""
    PROFILE_API_BASE: str = "https://api.steampowered.com"
    PROFILE_REQUEST_TIMEOUT: float = 10.0
    RATE_LIMIT_WINDOW_SECONDS: float = 300.0  # 5 minutes
    RATE_LIMIT_MAX_REQUESTS: int = 200
    PROFILE_CACHE_TTL: int = 86400  # 24 hours
    PROFILE_CACHE_MAX_ENTRIES: int = 10000
    PROFILE_RETRY_ATTEMPTS: int = 3
    PROFILE_RETRY_BASE_DELAY: float = 1.0  # 1s, 2s, 4s
    ENRICHMENT_ENABLED: bool = True

    # Enrichment queue
    ENRICHMENT_BATCH_SIZE: int = 50
    ENRICHMENT_BATCH_DELAY: float = 2.0
    ENRICHMENT_MAX_RETRIES: int = 3
    PLAYER_REFRESH_HOURS: int = 24
    STALE_SWEEP_INTERVAL_MINUTES: int = 60
    STALE_SWEEP_LIMIT: int = 1000

    # Classification
    GAMEMODE_RULE_CONFIDENT: float = 0.8
    GAMEMODE_CONFIDENCE_THRESHOLD: float = 0.6
    REGIONAL_CONFIDENCE_THRESHOLD: float = 0.7
    REVIEW_THRESHOLD: float = 0.5
    REGIONAL_REVIEW_FLOOR: float = 0.3
    VOCABULARY_SIZE: int = 100
    RETRAIN_INTERVAL_MINUTES: int = 60
    RETRAIN_EPOCHS: int = 10
    MODEL_DIR: Optional[str] = None

    def validate_required_secrets(self) -> list[str]:
        """
        Validate that required secrets are set for the current configuration.

        Returns:
            List of missing secret names (empty if all present)
        """
        missing = []

        if self.ENRICHMENT_ENABLED and not self.STEAM_API_KEY:
            missing.append("STEAM_API_KEY")

        return missing

    @property
    def model_dir(self) -> Path:
        """Directory holding persisted learned-model weights."""
        if self.MODEL_DIR:
            return Path(self.MODEL_DIR)
        return PROJECT_ROOT / "data" / "models"


def _load_env_file() -> Path:
    """
    Pick the environment file based on the ENVIRONMENT variable.

    Loads in order of precedence:
    1. .env.{ENVIRONMENT}
    2. .env (fallback)
    """
    environment = os.getenv("ENVIRONMENT", "development")

    env_file = PROJECT_ROOT / f".env.{environment}"
    if env_file.exists():
        logger.info(f"Loading environment from {env_file.name}")
        return env_file

    default_env = PROJECT_ROOT / ".env"
    if default_env.exists():
        logger.info(f"Loading environment from .env (environment: {environment})")
    else:
        logger.debug(f"No environment file found for '{environment}', using process environment")
    return default_env


def load_settings(**overrides) -> Settings:
    """
    Build a Settings instance from the auto-detected environment file.

    Keyword overrides take precedence over the environment (used by tests
    and the CLI).
    """
    return Settings(_env_file=str(_load_env_file()), **overrides)
