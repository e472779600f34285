from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_CACHE_BACKENDS = {"redis", "inmem", "off"}
_BUS_BACKENDS = {"kafka", "inmem", "off"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # cache store
    CACHE_BACKEND: str = "redis"
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: Optional[str] = None
    REDIS_DB: int = 0
    REDIS_TIMEOUT_MS: int = 2000
    REDIS_POOL_MAX: int = 8

    # message bus
    BUS_BACKEND: str = "kafka"
    KAFKA_BOOTSTRAP_SERVERS: str = "localhost:29092,localhost:29093,localhost:29094"
    NOTIFY_TOPIC: str = "nse.data"

    # relational store; empty URL disables persistence
    DATABASE_URL: str = ""
    DB_POOL_MIN: int = 1
    DB_POOL_MAX: int = 4
    DB_STATEMENT_TIMEOUT_MS: Optional[int] = None
    ALEMBIC_INI: str = "alembic.ini"

    # upstream
    NSE_BASE_URL: str = "https://www.nseindia.com"
    CONNECT_TIMEOUT_S: float = 15.0
    DEFAULT_TIMEOUT_MS: int = 30_000
    EQUITY_TIMEOUT_MS: int = 600_000
    DEFAULT_SYMBOL: str = "NIFTY"
    SERVER_NAME: str = "nse"

    # analytics provider; empty URL disables enrichment and ltp tasks
    ANALYTICS_URL: str = ""
    ANALYTICS_API_KEY: str = ""
    ANALYTICS_TIMEOUT_S: float = 30.0
    GREEKS_EXCHANGE: str = "NSE_INDEX"
    API_CALL_PAUSE_MS: int = 500

    LOG_LEVEL: str = "INFO"
    METRICS_PORT: int = 0

    @field_validator("CACHE_BACKEND")
    def _cache_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in _CACHE_BACKENDS:
            raise ValueError(f"Invalid cache backend: {v}. Must be one of {sorted(_CACHE_BACKENDS)}")
        return v

    @field_validator("BUS_BACKEND")
    def _bus_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in _BUS_BACKENDS:
            raise ValueError(f"Invalid bus backend: {v}. Must be one of {sorted(_BUS_BACKENDS)}")
        return v

    @property
    def database_url(self) -> str:
        return self.DATABASE_URL

    @property
    def sqlalchemy_url(self) -> str:
        """Same database, addressed through SQLAlchemy's psycopg 3 dialect."""
        url = self.DATABASE_URL
        for prefix in ("postgresql://", "postgres://"):
            if url.startswith(prefix):
                return "postgresql+psycopg://" + url[len(prefix):]
        return url


@lru_cache()
def get_settings() -> Settings:
    return Settings()
