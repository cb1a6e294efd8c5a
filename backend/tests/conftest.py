"""
Pytest configuration and shared fixtures for all tests.

External services are replaced for testing:
- Redis: InMemoryRedis, a dict-backed double that records TTLs and locks
- Database: in-memory SQLite through aiosqlite with a StaticPool
- Prover HTTP endpoints: AsyncMock probes configured per test
"""
import asyncio
import sys
from pathlib import Path
from typing import AsyncGenerator, Dict, List, Optional, Tuple, Union
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Add backend directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from prover_registry.core.cache import CoreCacheService
from prover_registry.core.exceptions import ProbeError
from prover_registry.db.database import Base
from prover_registry.models.prover_endpoint import ProverEndpoint
from prover_registry.schemas.provers import CacheSnapshot, Namespace, Prover
from prover_registry.services.endpoint_store import EndpointStore
from prover_registry.services.prover_probe import ProverProbe
from prover_registry.services.prover_service import ProverService
from prover_registry.services.refresh import RefreshCoordinator


NOW = 1_700_000_000
SQLITE_ASYNC_TEST_URL = "sqlite+aiosqlite:///:memory:"


# ============================================================================
# Test doubles
# ============================================================================

class FakeClock:
    """Callable wall clock frozen at ``now`` until moved"""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now


class InMemoryLock:
    """Stand-in for redis.asyncio.lock.Lock backed by an asyncio.Lock"""

    def __init__(self, lock: asyncio.Lock, acquirable: bool = True):
        self._lock = lock
        self._acquirable = acquirable

    async def acquire(self) -> bool:
        if not self._acquirable:
            return False
        await self._lock.acquire()
        return True

    async def release(self) -> None:
        self._lock.release()


class InMemoryRedis:
    """Dict-backed subset of the redis.asyncio client used by the cache service"""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.setex_calls: List[Tuple[str, int, str]] = []
        self.lock_names: List[str] = []
        self.fail_reads = False
        self.fail_writes = False
        self.locks_acquirable = True
        self._locks: Dict[str, asyncio.Lock] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, name: str) -> Optional[str]:
        if self.fail_reads:
            raise RedisConnectionError("Connection refused")
        return self.values.get(name)

    async def setex(self, name: str, time: int, value: str) -> bool:
        if self.fail_writes:
            raise RedisConnectionError("Connection refused")
        self.values[name] = value
        self.ttls[name] = int(time)
        self.setex_calls.append((name, int(time), value))
        return True

    async def ttl(self, name: str) -> int:
        return self.ttls.get(name, -2)

    def lock(self, name: str, timeout=None, blocking_timeout=None) -> InMemoryLock:
        self.lock_names.append(name)
        lock = self._locks.setdefault(name, asyncio.Lock())
        return InMemoryLock(lock, acquirable=self.locks_acquirable)

    def expire(self, name: str) -> None:
        """Simulate TTL eviction"""
        self.values.pop(name, None)
        self.ttls.pop(name, None)

    async def close(self) -> None:
        return None


def probe_results(results: Dict[str, Union[int, None, Exception]]):
    """
    Build a side effect for ProverProbe.probe from url -> fee, None or exception.

    Unknown urls raise ProbeError like an unreachable host.
    """

    async def _probe(url: str) -> Optional[Prover]:
        if url not in results:
            raise ProbeError(url, "error making HTTP request: connection refused")
        outcome = results[url]
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            return None
        return Prover(url=url, minimum_gas=outcome)

    return _probe


def make_snapshot(timestamp: int, *provers: Tuple[str, int]) -> CacheSnapshot:
    return CacheSnapshot(
        timestamp=timestamp,
        data=[Prover(url=url, minimum_gas=fee) for url, fee in provers],
    )


# ============================================================================
# Core Fixtures
# ============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def cache(fake_redis: InMemoryRedis) -> CoreCacheService:
    return CoreCacheService(redis_client=fake_redis)


@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """In-memory SQLite session factory with tables created"""
    engine = create_async_engine(
        SQLITE_ASYNC_TEST_URL,
        echo=False,
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def endpoint_store(session_factory: async_sessionmaker) -> EndpointStore:
    return EndpointStore(session_factory=session_factory)


@pytest.fixture
def probe() -> AsyncMock:
    """ProverProbe double; tests set probe.probe.side_effect"""
    mock_probe = AsyncMock(spec=ProverProbe)
    mock_probe.probe.side_effect = probe_results({})
    return mock_probe


@pytest.fixture
def coordinator(
    cache: CoreCacheService, endpoint_store: EndpointStore, probe: AsyncMock, clock: FakeClock
) -> RefreshCoordinator:
    return RefreshCoordinator(
        cache,
        endpoint_store,
        probe,
        full_refresh_ttl=86400,
        enumeration_limit=1000,
        clock=clock,
    )


@pytest.fixture
def service(
    cache: CoreCacheService,
    probe: AsyncMock,
    coordinator: RefreshCoordinator,
    endpoint_store: EndpointStore,
    clock: FakeClock,
) -> ProverService:
    prover_service = ProverService(
        cache,
        probe,
        coordinator,
        stale_after=3600,
        incremental_ttl=3600,
        clock=clock,
    )
    endpoint_store.on_before_create(prover_service.validate_new_endpoint)
    endpoint_store.on_create_failed(prover_service.discard_unsaved_endpoint)
    return prover_service


async def seed_endpoints(
    session_factory: async_sessionmaker, namespace: Namespace, *urls: str
) -> None:
    """Insert endpoint records directly, bypassing before-create hooks"""
    async with session_factory() as session:
        for url in urls:
            session.add(ProverEndpoint(url=url, network=namespace.network.value))
        await session.commit()
