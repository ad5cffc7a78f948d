import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel, Field


# coin key exposed by the API -> CoinGecko id
TRACKED_COINS = {
    "bitcoin": "bitcoin",
    "matic": "matic-network",
    "ethereum": "ethereum",
}


class Settings(BaseModel):
    database_url: str = "sqlite:///./coinstats.db"
    port: int = Field(default=3000, ge=1, le=65535)

    ingest_interval_seconds: float = Field(default=7200, gt=0)
    scheduler_enabled: bool = True

    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: str | None = None
    http_timeout_seconds: float = Field(default=10, gt=0)

    deviation_window: int = Field(default=100, ge=1)

    log_level: str = "INFO"

    db_wait_retries: int = Field(default=30, ge=1)
    db_wait_delay_seconds: float = Field(default=2, ge=0)

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()

        values = {
            "database_url": os.getenv("DATABASE_URL"),
            "port": os.getenv("PORT"),
            "ingest_interval_seconds": os.getenv("INGEST_INTERVAL_SECONDS"),
            "scheduler_enabled": os.getenv("SCHEDULER_ENABLED"),
            "coingecko_base_url": os.getenv("COINGECKO_BASE_URL"),
            "coingecko_api_key": os.getenv("COINGECKO_API_KEY"),
            "http_timeout_seconds": os.getenv("HTTP_TIMEOUT_SECONDS"),
            "deviation_window": os.getenv("DEVIATION_WINDOW"),
            "log_level": os.getenv("LOG_LEVEL"),
            "db_wait_retries": os.getenv("DB_WAIT_RETRIES"),
            "db_wait_delay_seconds": os.getenv("DB_WAIT_DELAY_SECONDS"),
        }

        settings = {k: v for k, v in values.items() if v not in (None, "")}

        return cls(**settings)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
