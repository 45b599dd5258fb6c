"""Builds the object graph shared by the API process and the manual refresh command."""

import logging
from dataclasses import dataclass
from typing import Optional

from src.config import Config
from src.core.interfaces.datasource import ILedger, IValuationApi
from src.core.interfaces.persistence import IPersistenceGateway
from src.core.services import LeaderboardService, RefreshService
from src.core.use_cases.batch_scheduler import BatchScheduler
from src.core.use_cases.chain_reader import ChainReader
from src.core.use_cases.reconciliation import ReconciliationEngine
from src.core.use_cases.retry import RetryExecutor
from src.core.use_cases.valuation_provider import ValuationProvider
from src.infrastructure.cache.redis_service import RedisService
from src.infrastructure.gateways.evm_rpc import EvmRpcClient
from src.infrastructure.gateways.polymarket_api import PolymarketApiClient
from src.infrastructure.persistence.memory_repo import InMemoryRepo
from src.infrastructure.persistence.postgres_repo import PostgresRepo

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: Config
    repo: IPersistenceGateway
    cache: RedisService
    leaderboard: LeaderboardService
    refresh: Optional[RefreshService]
    ledger: Optional[ILedger]
    valuation_api: IValuationApi

    async def close(self) -> None:
        if self.refresh is not None:
            await self.refresh.shutdown()
        if self.ledger is not None:
            await self.ledger.close()
        await self.valuation_api.close()
        await self.repo.close()
        self.cache.close()


def build_repo(config: Config) -> IPersistenceGateway:
    if config.database_url:
        return PostgresRepo(config.database_url, max_connections=config.db_pool_size)
    logger.warning("DATABASE_URL not set. Using in-memory storage; data is lost on restart.")
    return InMemoryRepo()


def build_services(
    config: Config,
    repo: Optional[IPersistenceGateway] = None,
    ledger: Optional[ILedger] = None,
    valuation_api: Optional[IValuationApi] = None,
    cache: Optional[RedisService] = None,
) -> Services:
    """
    Wire gateways, use cases and services. Any collaborator passed in is used
    as-is; the rest are built from config.
    """
    repo = repo or build_repo(config)
    cache = cache or RedisService(config.redis_url or "")
    valuation_api = valuation_api or PolymarketApiClient(
        api_url=config.polymarket_api_url,
        api_key=config.polymarket_api_key,
        timeout=config.request_timeout,
    )
    if ledger is None and config.rpc_url:
        ledger = EvmRpcClient(config.rpc_url, timeout=config.request_timeout)

    leaderboard = LeaderboardService(repo, cache)

    refresh = None
    if ledger is not None and config.usdc_token_address:
        retry = RetryExecutor()
        engine = ReconciliationEngine(
            repo=repo,
            chain_reader=ChainReader(
                ledger,
                config.usdc_token_address,
                block_lookup_pause=config.block_lookup_pause,
            ),
            valuation=ValuationProvider(
                valuation_api,
                retry=retry,
                max_attempts=config.retry_max_attempts,
                initial_delay=config.retry_initial_delay,
            ),
            retry=retry,
            max_attempts=config.retry_max_attempts,
            initial_delay=config.retry_initial_delay,
            start_block=config.start_block,
            tournament_start=config.tournament_start,
        )
        scheduler = BatchScheduler(
            batch_size=config.batch_size,
            batch_pause=config.batch_pause_seconds,
            max_concurrency=config.max_concurrency,
        )
        refresh = RefreshService(repo, engine, scheduler, leaderboard=leaderboard, cache=cache)
    else:
        logger.warning("RPC_URL or USDC_TOKEN_ADDRESS not set. Leaderboard refresh is disabled.")

    return Services(
        config=config,
        repo=repo,
        cache=cache,
        leaderboard=leaderboard,
        refresh=refresh,
        ledger=ledger,
        valuation_api=valuation_api,
    )
