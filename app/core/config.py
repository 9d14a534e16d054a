from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

class Settings(BaseSettings):
    PROJECT_NAME: str = "coinpaprika-market-cache"

    # Upstream
    COINPAPRIKA_BASE_URL: str = "https://api.coinpaprika.com/v1"
    LOGO_URL_TEMPLATE: str = "https://static.coinpaprika.com/coin/{coin_id}/logo.png"
    UPSTREAM_TIMEOUT_SECONDS: float = 10.0

    # Currencies
    BASE_CURRENCY: str = "USD"
    SUPPORTED_CURRENCIES: List[str] = ["USD", "EUR", "BRL", "GBP"]

    # Cache policy (seconds)
    COINS_TTL_SECONDS: float = 300
    TICKERS_TTL_SECONDS: float = 120
    DETAIL_TTL_SECONDS: float = 60
    BACKOFF_SECONDS: float = 10
    DETAIL_CACHE_MAX_ENTRIES: int = 1024

    # Startup
    WARMUP_ON_STARTUP: bool = True
    WARMUP_SORT_KEYS: List[str] = ["price_desc"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        extra="ignore"
    )

@lru_cache()
def get_settings():
    return Settings()
