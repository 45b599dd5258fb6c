"""
Pytest configuration and shared fixtures.

The ledger and valuation API are replaced by in-memory fakes; persistence uses
InMemoryRepo and Redis is disabled unless a test injects a mock client.
"""
import pytest
from httpx import AsyncClient, ASGITransport

from src.api.main import create_app
from src.config import Config
from src.core.entities.participant import ParticipantSeed
from src.core.use_cases.batch_scheduler import BatchScheduler
from src.core.use_cases.chain_reader import ChainReader
from src.core.use_cases.reconciliation import ReconciliationEngine
from src.core.use_cases.retry import RetryExecutor
from src.core.use_cases.valuation_provider import ValuationProvider
from src.infrastructure.cache.redis_service import RedisService
from src.infrastructure.persistence.memory_repo import InMemoryRepo

from tests.fakes import ADMIN_KEY, ALICE, BOB, CAROL, USDC, FakeLedger, FakeValuationApi, SleepRecorder


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def valuation_api():
    return FakeValuationApi()


@pytest.fixture
def repo():
    return InMemoryRepo()


@pytest.fixture
def retry(sleeper):
    return RetryExecutor(sleep=sleeper)


@pytest.fixture
def chain_reader(ledger, sleeper):
    return ChainReader(ledger, USDC, sleep=sleeper)


@pytest.fixture
def valuation(valuation_api, retry):
    return ValuationProvider(valuation_api, retry=retry)


@pytest.fixture
def engine(repo, chain_reader, valuation, retry):
    return ReconciliationEngine(repo, chain_reader, valuation, retry=retry)


@pytest.fixture
def scheduler():
    return BatchScheduler(batch_size=25, batch_pause=0)


@pytest.fixture
async def seeded(repo):
    """Three participants: Alice (#1), Bob (#2), Carol (#3)."""
    await repo.seed_participants([
        ParticipantSeed(entry_order=1, nickname="Alice", wallet=ALICE),
        ParticipantSeed(entry_order=2, nickname="Bob", wallet=BOB),
        ParticipantSeed(entry_order=3, nickname="Carol", wallet=CAROL),
    ])
    return await repo.find_all_participants()


@pytest.fixture
def config():
    return Config(
        admin_key=ADMIN_KEY,
        rpc_url="http://ledger.test",
        usdc_token_address=USDC,
        block_lookup_pause=0,
        retry_initial_delay=0,
        batch_pause_seconds=0,
        scheduler_enabled=False,
    )


@pytest.fixture
def app(config, repo, ledger, valuation_api):
    return create_app(
        config,
        repo=repo,
        ledger=ledger,
        valuation_api=valuation_api,
        cache=RedisService(redis_url=""),
    )


@pytest.fixture
async def client(app):
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
