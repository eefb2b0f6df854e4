"""
Shared fixtures: an in-memory database and stub rate sources.
"""
import os

# Must be set before app.db.session builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

import asyncio
from datetime import date, datetime, timedelta
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from app.db.base import Base
from app.models import User
from app.models.exchange_rate import RateSource
from app.core.exceptions import SourceUnavailable
from app.services.rate_sources import RateSourceAdapter


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = datetime(2026, 1, 16, 12, 0, 0)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class StubSource(RateSourceAdapter):
    """Rate source returning a fixed rate or failing, counting calls.

    ``history=True`` makes it a historical source answering with
    ``historical_rate`` (or failing when that is None).
    """

    def __init__(self, source: RateSource, rate: float = None, error: bool = False,
                 delay: float = 0.0, timeout: float = 1.0, ttl: timedelta = timedelta(hours=1),
                 history: bool = False, historical_rate: float = None):
        super().__init__(timeout=timeout, ttl=ttl)
        self.source = source
        self.rate = rate
        self.error = error
        self.delay = delay
        self.supports_history = history
        self.historical_rate = historical_rate
        self.calls = []
        self.historical_calls = []

    async def fetch(self, base: str, target: str) -> float:
        self.calls.append((base, target))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error or self.rate is None:
            raise SourceUnavailable(self.source.value, "stub failure")
        return self.rate

    async def fetch_historical(self, base: str, target: str, as_of: date) -> float:
        self.historical_calls.append((base, target, as_of))
        if self.historical_rate is None:
            raise SourceUnavailable(self.source.value, f"no rate on {as_of}")
        return self.historical_rate


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def user(db):
    """User whose default currency is USD."""
    user = User(username="alice", email="alice@example.com", default_currency="USD")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def idr_user(db):
    """User whose default currency is IDR."""
    user = User(username="budi", email="budi@example.com", default_currency="IDR")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin(db):
    """User allowed to change global settings."""
    user = User(username="admin", email="admin@example.com", default_currency="USD", is_admin=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
