"""Application configuration."""

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from src.core.use_cases.standings import TOURNAMENT_START
from src.infrastructure.gateways.polymarket_api import POLYMARKET_API_URL

REQUIRED_FOR_REFRESH = ("DATABASE_URL", "RPC_URL", "USDC_TOKEN_ADDRESS")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_date(name: str, default: datetime) -> datetime:
    value = os.getenv(name)
    if not value:
        return default
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # API settings
    host: str = "0.0.0.0"
    port: int = 4000
    log_level: str = "INFO"
    admin_key: Optional[str] = None

    # Storage
    database_url: Optional[str] = None
    db_pool_size: int = 10
    redis_url: Optional[str] = None

    # Ledger
    rpc_url: Optional[str] = None
    usdc_token_address: Optional[str] = None
    start_block: int = 0
    block_lookup_pause: float = 0.1

    # Valuation API
    polymarket_api_url: str = POLYMARKET_API_URL
    polymarket_api_key: Optional[str] = None
    request_timeout: float = 30.0

    # Backoff for ledger and valuation calls
    retry_max_attempts: int = 3
    retry_initial_delay: float = 1.0

    # Refresh runs
    batch_size: int = 25
    batch_pause_seconds: float = 2.0
    max_concurrency: int = 1
    update_cron: str = "0 */12 * * *"
    scheduler_enabled: bool = True
    tournament_start: datetime = TOURNAMENT_START

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "4000")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            admin_key=os.getenv("ADMIN_KEY") or None,
            database_url=os.getenv("DATABASE_URL") or None,
            db_pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
            redis_url=os.getenv("REDIS_URL") or None,
            rpc_url=os.getenv("RPC_URL") or None,
            usdc_token_address=os.getenv("USDC_TOKEN_ADDRESS") or None,
            start_block=int(os.getenv("START_BLOCK", "0")),
            block_lookup_pause=float(os.getenv("BLOCK_LOOKUP_PAUSE", "0.1")),
            polymarket_api_url=os.getenv("POLYMARKET_API_URL", POLYMARKET_API_URL),
            polymarket_api_key=os.getenv("POLYMARKET_API_KEY") or None,
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "30")),
            retry_max_attempts=int(os.getenv("RETRY_MAX_ATTEMPTS", "3")),
            retry_initial_delay=float(os.getenv("RETRY_INITIAL_DELAY", "1")),
            batch_size=int(os.getenv("BATCH_SIZE", "25")),
            batch_pause_seconds=float(os.getenv("BATCH_PAUSE_SECONDS", "2")),
            max_concurrency=int(os.getenv("MAX_CONCURRENCY", "1")),
            update_cron=os.getenv("UPDATE_CRON", "0 */12 * * *"),
            scheduler_enabled=_env_bool("SCHEDULER_ENABLED", True),
            tournament_start=_env_date("TOURNAMENT_START", TOURNAMENT_START),
        )

    def missing_required(self) -> list[str]:
        """Names of the settings a refresh run cannot work without."""
        values = {
            "DATABASE_URL": self.database_url,
            "RPC_URL": self.rpc_url,
            "USDC_TOKEN_ADDRESS": self.usdc_token_address,
        }
        return [name for name in REQUIRED_FOR_REFRESH if not values[name]]
