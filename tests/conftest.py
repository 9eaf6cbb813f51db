"""Shared fixtures: temp database, frozen clock, stub oracle and generator."""

import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from market.database import MarketDatabase
from market.errors import GenerationFailed, QuoteUnavailable
from market.models import AssetType, Direction, MarketConfig
from service import ProphetService

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = T0):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)

    def set(self, now: datetime):
        self.current = now


class StubOracle:
    """Returns whatever price was last set for an asset; raises when unset or failing."""

    def __init__(self, prices=None):
        self.prices = dict(prices or {})
        self.failing = False
        self.calls = []

    def set_price(self, asset_id: str, price):
        self.prices[asset_id] = Decimal(str(price))

    def get_quote(self, asset_type: AssetType, asset_id: str) -> Decimal:
        self.calls.append((asset_type, asset_id))
        if self.failing or asset_id not in self.prices:
            raise QuoteUnavailable(f"no quote for {asset_id}")
        return self.prices[asset_id]


class StubGenerator:
    def __init__(self, bullets=None):
        self.bullets = bullets if bullets is not None else ["Volume is rising", "Funding is flat"]
        self.failing = False
        self.calls = []

    def generate(self, asset_type, asset_name, direction, threshold_percent, mode):
        self.calls.append((asset_type, asset_name, direction, threshold_percent, mode))
        if self.failing:
            raise GenerationFailed("model unavailable")
        return list(self.bullets)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def oracle():
    return StubOracle({"pepe": Decimal("100")})


@pytest.fixture
def generator():
    return StubGenerator()


@pytest.fixture
def config():
    return MarketConfig(data_mode="live")


@pytest.fixture
def db(tmp_path):
    return MarketDatabase(str(tmp_path / "prophet.db"))


@pytest.fixture
def service(db, config, oracle, generator, clock):
    return ProphetService(
        db=db,
        config=config,
        oracle=oracle,
        rationale_generator=generator,
        clock=clock,
        rng=random.Random(7),
    )


@pytest.fixture
def make_market(service, clock):
    """Create an OPEN market on pepe with the standard window starting now."""

    def _make(direction=Direction.UP, threshold_bps=500, asset_id="pepe"):
        start = clock.now()
        return service.lifecycle.create_market(
            asset_type=AssetType.TOKEN,
            asset_id=asset_id,
            asset_name=asset_id.upper(),
            direction=direction,
            threshold_bps=threshold_bps,
            start_time=start,
            lock_time=start + timedelta(minutes=30),
            end_time=start + timedelta(hours=24),
        )

    return _make


def settle_at(service, clock, oracle, market, price1):
    """Move past end_time, set the closing quote and settle."""
    clock.set(market.end_time + timedelta(seconds=1))
    oracle.set_price(market.asset_id, price1)
    return service.lifecycle.settle(market.id)
