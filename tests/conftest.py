"""Shared fixtures: a controllable clock, a fresh store and engine per test."""

import threading
import time

import pytest
from fastapi.testclient import TestClient

from cosmo_tarot.ai import ReadingGenerator
from cosmo_tarot.config import Settings
from cosmo_tarot.draw_engine import DrawEngine
from cosmo_tarot.errors import GenerationError
from cosmo_tarot.main import create_app
from cosmo_tarot.models import CosmicContext, DrawInput, DrawSession
from cosmo_tarot.storage import SessionStore

TTL = 3600.0
START = 1_760_000_000.0


class FakeClock:
    def __init__(self, start: float = START):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingGenerator(ReadingGenerator):
    """Template generator that counts calls and can be slowed down or made to fail."""

    def __init__(self, clock, delay: float = 0.0, fail: bool = False):
        super().__init__(clock=clock)
        self.delay = delay
        self.fail = fail
        self.calls = 0
        self._calls_lock = threading.Lock()

    def generate(self, session):
        with self._calls_lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise GenerationError("upstream unavailable")
        return super().generate(session)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(ttl_seconds=TTL, max_sessions=5000, clock=clock)


@pytest.fixture
def generator(clock):
    return CountingGenerator(clock)


@pytest.fixture
def engine(store, generator):
    return DrawEngine(store, generator)


@pytest.fixture
def client(engine):
    app = create_app(settings=Settings(reading_mode="template"), engine=engine)
    return TestClient(app)


@pytest.fixture
def start(engine):
    """Start a session and return it."""

    def _start(spread_size: int = 3, **kw):
        result = engine.start_draw(
            name=kw.pop("name", "Ada"),
            question=kw.pop("question", "Where is my work heading?"),
            spread_size=spread_size,
            **kw,
        )
        assert result.ok, result.error
        return result.session

    return _start


@pytest.fixture
def revealed(engine, start):
    """Start a session, pick the first N cards of its deck order and reveal them all."""

    def _revealed(spread_size: int = 3, **kw):
        s = start(spread_size, **kw)
        for i in range(spread_size):
            assert engine.toggle_select(s.session_id, deck_index=i).ok
        for pos in range(spread_size):
            assert engine.reveal(s.session_id, pos).ok
        return engine.get_state(s.session_id).session

    return _revealed


@pytest.fixture
def make_session():
    """Build a bare DrawSession for store-level tests."""

    def _make(session_id: str, created_at: float = START, ttl: float = TTL) -> DrawSession:
        return DrawSession(
            session_id=session_id,
            input=DrawInput(name="Ada", question="Q?", spread_size=3),
            deck_order=("rider", "clover", "ship"),
            cosmic=CosmicContext(day_of_year=1, descriptor="d", metaphor="tide"),
            created_at=created_at,
            expires_at=created_at + ttl,
        )

    return _make
