"""Money helpers, model properties and configuration."""

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import T0
from market.models import (
    Market, MarketConfig, MarketStatus, AssetType, Direction, Side,
    from_units, make_ticket_id, normalize_user, to_decimal, to_units,
)


def _market(**overrides):
    fields = dict(
        id="m1", market_id=7, asset_type=AssetType.TOKEN, asset_id="pepe", asset_name="PEPE",
        direction=Direction.UP, threshold_bps=300,
        start_time=T0, lock_time=T0 + timedelta(minutes=30), end_time=T0 + timedelta(hours=24),
    )
    fields.update(overrides)
    return Market(**fields)


def test_units_conversion():
    assert to_units(Decimal("1.5")) == 1_500_000
    assert from_units(1_500_000) == Decimal("1.5")
    assert to_units(Decimal("0.000001")) == 1


def test_to_decimal_accepts_floats_exactly():
    assert to_decimal(0.1) == Decimal("0.1")
    with pytest.raises(ValueError):
        to_decimal("ten")


def test_ticket_ids():
    assert make_ticket_id(7, Side.RIGHT) == "71"
    assert make_ticket_id(12, Side.WRONG) == "122"


def test_normalize_user():
    assert normalize_user("  0xABC ") == "0xabc"


def test_market_odds_and_threshold():
    empty = _market()
    assert empty.right_odds == empty.wrong_odds == 0.5
    assert empty.threshold_percent == Decimal("3")

    market = _market(pool_right=Decimal("75"), pool_wrong=Decimal("25"))
    assert market.total_pool == Decimal("100")
    assert market.right_odds == 0.75
    assert market.to_dict()["total_pool"] == "100"


def test_accepting_bets_is_time_gated():
    market = _market()
    assert market.is_accepting_bets(T0)
    assert not market.is_accepting_bets(market.lock_time)
    assert not _market(status=MarketStatus.LOCKED).is_accepting_bets(T0)


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("PROPHET_FEE_RATE", "0.05")
    monkeypatch.setenv("PROPHET_DATA_MODE", "live")
    monkeypatch.setenv("PROPHET_MAX_BALANCE", "500")

    config = MarketConfig.from_env()

    assert config.fee_rate == Decimal("0.05")
    assert config.data_mode == "live"
    assert config.max_balance == Decimal("500")
    assert config.tie_band_percent == Decimal("0.1")
