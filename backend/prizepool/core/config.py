"""
Prize pool backend settings
Everything tunable lives here: database and Redis URLs, the CoinGecko client,
retry and cache policy, team rules and the optional pool watcher.
"""

from pathlib import Path
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


def get_env_file() -> str | None:
    """
    Pick the dotenv file to load, if one exists.
    .env.production wins over .env; with neither, only real environment variables count.
    """
    if Path(".env.production").exists():
        return ".env.production"
    elif Path(".env").exists():
        return ".env"
    return None


class Settings(BaseSettings):
    """
    Settings read from the environment (or the dotenv file above).

    Only DATABASE_URL and FRONTEND_URL are required. Redis, the admin key and
    the CoinGecko key are optional and the features behind them degrade when unset.
    """

    model_config = SettingsConfigDict(
        env_file=get_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database (e.g. postgresql+asyncpg://...)
    DATABASE_URL: str

    @field_validator("DATABASE_URL")
    @classmethod
    def use_async_driver(cls, value: str) -> str:
        """Hosted Postgres hands out postgres:// URLs; the engine needs asyncpg"""
        for prefix in ("postgres://", "postgresql://"):
            if value.startswith(prefix):
                return "postgresql+asyncpg://" + value[len(prefix):]
        return value

    # Redis (optional - price cache and pool update fan-out)
    REDIS_URL: str | None = None

    # Admin API access (shared key sent as X-Admin-Key)
    ADMIN_API_KEY: str | None = None

    # Application URLs
    FRONTEND_URL: str

    # Environment
    ENVIRONMENT: Literal["development", "staging", "production"] = "production"
    DEBUG: bool = False

    # CORS
    @property
    def CORS_ORIGINS(self) -> list[str]:
        """Get allowed CORS origins"""
        origins = [self.FRONTEND_URL]
        if self.ENVIRONMENT == "development":
            origins.extend([
                "http://localhost:3000",
                "http://localhost:8000"
            ])
        return origins

    # Rate limits (slowapi syntax), keyed by client address
    RATE_LIMIT_LEADERBOARD: str = "120/minute"
    RATE_LIMIT_JOIN: str = "20/minute"

    # CoinGecko market data
    COINGECKO_API_KEY: str | None = None
    COINGECKO_BASE_URL: str = "https://api.coingecko.com/api/v3"
    COINGECKO_TIMEOUT_SECONDS: float = 10.0
    COINGECKO_IDS_PER_REQUEST: int = 100

    # Price fetch retry policy: at most N attempts, capped exponential backoff
    PRICE_FETCH_MAX_ATTEMPTS: int = 3
    PRICE_FETCH_BACKOFF_SECONDS: float = 0.5
    PRICE_FETCH_BACKOFF_MAX_SECONDS: float = 2.0

    # Redis cache TTLs (seconds)
    PRICE_CACHE_TTL_SECONDS: int = 15
    TOP_COINS_CACHE_TTL_SECONDS: int = 300

    # Team rules
    TEAM_SIZE: int = 11
    TEAM_POINTS_BUDGET: int = 250
    TEAM_NAME_MAX_LENGTH: int = 50
    MAX_TEAMS_PER_POOL_PER_USER: int = 5
    TEAM_TOKEN_UNIVERSE: int = 200  # only the top N coins by market cap can be picked

    # Background finish checks (one more observer, never required)
    POOL_WATCHER_ENABLED: bool = False
    POOL_WATCHER_INTERVAL_SECONDS: float = 5.0


# Global settings instance
settings = Settings()
