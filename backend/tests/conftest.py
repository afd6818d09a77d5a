"""Pytest configuration and fixtures for vault sync tests."""

import os
import pytest
import sys
from pathlib import Path

# Add backend to Python path
backend_path = Path(__file__).parent.parent
sys.path.insert(0, str(backend_path))

# Set required env vars for tests before importing shards modules
# DATABASE_URL points to test DB so imports never boot prod engine during collection
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("ENABLE_SCHEDULER", "false")

# Load apscheduler up front so tests that patch.dict(sys.modules) cannot drop
# it and leave shards.core.scheduler bound to stale apscheduler classes.
import apscheduler.executors.asyncio  # noqa: E402,F401
import apscheduler.schedulers.asyncio  # noqa: E402,F401


class FakeCache:
    """In-memory stand-in for shards.core.redis.Cache.

    Records every write so tests can assert on cache side effects.
    """

    def __init__(self, initial=None):
        self.store = dict(initial or {})
        self.sets = []
        self.gets = []

    async def get(self, key):
        self.gets.append(key)
        return self.store.get(key)

    async def set(self, key, value, ttl=None):
        self.sets.append((key, value, ttl))
        self.store[key] = value

    async def delete(self, key):
        self.store.pop(key, None)


@pytest.fixture
def fake_cache():
    return FakeCache()


@pytest.fixture
def settings():
    """Real Settings with test endpoints, isolated from any .env file."""
    from shards.core.config import Settings

    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        coingecko_base_url="https://coingecko.test/api/v3",
        subgraph_url_base="https://subgraph.test/base",
        subgraph_url_ethereum="https://subgraph.test/ethereum",
        rpc_url_base="https://rpc.test/base",
        eligible_vaults_base="0xAAAA000000000000000000000000000000000001, 0xBBBB000000000000000000000000000000000002",
        rpc_log_lookback_blocks=5000,
        rpc_log_chunk_size=2000,
    )


@pytest.fixture
async def session_factory():
    """SQLite in-memory database with the schema created."""
    from sqlalchemy.ext.asyncio import create_async_engine
    from sqlalchemy.pool import StaticPool

    from shards.core.database import Base, make_session_factory
    import shards.models  # noqa: F401

    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield make_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def make_raw_position():
    """Build RawPositionRecord objects with sensible defaults."""
    from shards.services.chain.models import RawPositionRecord

    def _make(
        account="0xwallet000000000000000000000000000000001",
        vault="0xvault0000000000000000000000000000000001",
        shares=100 * 10**18,
        total_assets=1000 * 10**18,
        total_supply=900 * 10**18,
        symbol="ETH",
        decimals=18,
    ):
        return RawPositionRecord.model_validate({
            "id": f"{vault}-{account}",
            "vault": {
                "id": vault,
                "totalAssets": str(total_assets),
                "totalSupply": str(total_supply),
                "asset": {"id": "0xasset000000000000000000000000000000000001", "symbol": symbol, "decimals": decimals},
            },
            "account": account,
            "shares": str(shares),
            "lastUpdated": "1700000000",
        })

    return _make


@pytest.fixture
def make_cache():
    """Build a FakeCache pre-seeded with entries."""
    return FakeCache
