"""Pytest configuration and fixtures."""

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from dexengine.api.main import create_app
from dexengine.config import EngineConfig, RetryPolicy
from dexengine.engine import Engine, build_engine
from dexengine.settlement.ledger import SimulatedLedger
from dexengine.storage import MemoryStore, Store
from tests.helpers import (
    STORE_KINDS,
    USDC,
    WETH,
    FixedClock,
    Stack,
    make_stack,
    make_store,
    seed_pool,
)


@pytest.fixture(params=STORE_KINDS)
def store(request: pytest.FixtureRequest) -> Iterator[Store]:
    """Every storage backend in turn: in-memory and SQLite."""
    store = make_store(request.param)
    yield store
    engine = getattr(store, "engine", None)
    if engine is not None:
        engine.dispose()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def stack(store: Store, clock: FixedClock) -> Stack:
    """Router stack over the parametrized store, 25 bps LP fee and 5 bps protocol fee."""
    return make_stack(store, clock=clock)


@pytest.fixture
def memory_stack(clock: FixedClock) -> Stack:
    """Router stack over a fresh in-memory store."""
    return make_stack(clock=clock)


@pytest.fixture
def seeded_stack(memory_stack: Stack) -> Stack:
    """In-memory stack with a USDC/WETH pool at reserves (1_000_000, 4_000_000)."""
    seed_pool(memory_stack.router, USDC, WETH, 1_000_000, 4_000_000)
    return memory_stack


@pytest.fixture
def ledger() -> SimulatedLedger:
    return SimulatedLedger()


# =============================================================================
# Async helpers
# =============================================================================


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


# =============================================================================
# API fixtures
# =============================================================================


@pytest.fixture
def engine(ledger: SimulatedLedger) -> Engine:
    """In-memory engine with the simulated ledger and zero retry delays."""
    config = EngineConfig(retry=RetryPolicy(max_retries=2, initial_delay=0.0, max_delay=0.0))
    return build_engine(config, store=MemoryStore(), ledger=ledger)


@pytest.fixture
def client(engine: Engine) -> Iterator[TestClient]:
    with TestClient(create_app(engine)) as client:
        yield client
