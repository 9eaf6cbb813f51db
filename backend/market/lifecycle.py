"""
Market Lifecycle - ProphetX

Owns market creation and the OPEN → LOCKED → SETTLED state machine
(OPEN/LOCKED → REFUND for operational aborts), and computes the outcome
from price movement.

Oracle and rationale failures never fail a call here: a documented
simulation value is used instead so every market reaches a well-formed
terminal state. Storage failures propagate.
"""

import logging
import random
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type

from market.assets import AssetRegistry
from market.clock import Clock, SystemClock
from market.database import MarketDatabase
from market.errors import (
    InvalidDirection, InvalidMarketWindow, InvalidTransition, MarketNotFound, QuoteUnavailable,
    ValidationError,
)
from market.models import (
    Market, Rationale, MarketConfig,
    AssetType, Direction, MarketStatus, Winner, TERMINAL_STATUSES,
    generate_market_uuid, to_decimal,
)
from oracles.base import PriceOracle
from oracles.simulated import synthesize_opening_price, simulate_settlement_price

logger = logging.getLogger(__name__)


def fallback_rationale(asset_type: str) -> List[str]:
    """Fixed rationale stored when generation fails. Never empty."""
    return [
        "Technical indicators suggest potential price movement",
        "Market sentiment analysis shows trending patterns",
        "Volume profile indicates active trading interest",
        f"{asset_type} sector showing correlation with broader market trends",
    ]


def determine_winner(
    direction: Direction,
    threshold_percent: Decimal,
    price0: Decimal,
    price1: Decimal,
    tie_band_percent: Decimal = Decimal("0.1"),
) -> Tuple[Winner, Decimal]:
    """
    Winner for a price move, plus the actual percentage move.

    UP is RIGHT when the move is at least +threshold, DOWN is RIGHT when it is
    at most -threshold. A move whose magnitude lands within the tie band of the
    threshold is a TIE, whatever the RIGHT/WRONG result would have been.
    """
    if price0 <= 0:
        raise ValueError("price0 must be positive")

    actual_percent = (price1 - price0) / price0 * 100

    if direction == Direction.UP:
        winner = Winner.RIGHT if actual_percent >= threshold_percent else Winner.WRONG
    else:
        winner = Winner.RIGHT if actual_percent <= -threshold_percent else Winner.WRONG

    if abs(abs(actual_percent) - threshold_percent) < tie_band_percent:
        winner = Winner.TIE

    return winner, actual_percent


def checked_quote(value: Any, asset_id: str) -> Decimal:
    """An oracle quote as a positive finite Decimal, or QuoteUnavailable."""
    try:
        price = to_decimal(value)
    except ValueError:
        raise QuoteUnavailable(f"Unparseable quote for {asset_id}: {value!r}")
    if not price.is_finite() or price <= 0:
        raise QuoteUnavailable(f"Non-positive quote for {asset_id}: {value!r}")
    return price


def needs_price0(price0: Optional[Decimal]) -> bool:
    return price0 is None or not price0.is_finite() or price0 <= 0


def _coerce(enum_cls: Type[Enum], value: Any, error_cls: Type[ValidationError]):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).upper())
    except ValueError:
        raise error_cls(f"Invalid {enum_cls.__name__}: {value!r}")


class MarketLifecycle:
    """Creates markets and drives them through their transitions."""

    def __init__(
        self,
        db: MarketDatabase,
        oracle: PriceOracle,
        rationale_generator,
        config: MarketConfig = None,
        clock: Clock = None,
        registry: AssetRegistry = None,
        rng: random.Random = None,
    ):
        self.db = db
        self.oracle = oracle
        self.rationale_generator = rationale_generator
        self.config = config or MarketConfig()
        self.clock = clock or SystemClock()
        self.registry = registry or AssetRegistry()
        self.rng = rng or random.Random()

    # ==================== CREATION ====================

    def create_market(
        self,
        asset_type,
        asset_id: str,
        asset_name: str,
        direction,
        threshold_bps: int,
        start_time: datetime,
        lock_time: datetime,
        end_time: datetime,
        asset_logo: Optional[str] = None,
    ) -> Market:
        """Create an OPEN market with an opening quote and a stored rationale."""
        asset_type = _coerce(AssetType, asset_type, ValidationError)
        direction = _coerce(Direction, direction, InvalidDirection)

        if not isinstance(threshold_bps, int) or isinstance(threshold_bps, bool) or threshold_bps <= 0:
            raise ValidationError(f"threshold_bps must be a positive integer, got {threshold_bps!r}")
        if not asset_id or not asset_name:
            raise ValidationError("asset_id and asset_name are required")
        if not (start_time <= lock_time <= end_time):
            raise InvalidMarketWindow("Market window must satisfy start_time <= lock_time <= end_time")

        price0 = self._opening_quote(asset_type, asset_id)

        market = Market(
            id=generate_market_uuid(),
            market_id=0,
            asset_type=asset_type,
            asset_id=asset_id,
            asset_name=asset_name,
            asset_logo=asset_logo,
            direction=direction,
            threshold_bps=threshold_bps,
            start_time=start_time,
            lock_time=lock_time,
            end_time=end_time,
            price0=price0,
            created_at=self.clock.now(),
        )

        with self.db.transaction() as conn:
            market.market_id = self.db.insert_market(conn, market)

        logger.info(
            f"Market #{market.market_id} created: {asset_name} {direction.value} "
            f"{market.threshold_percent}% (price0={price0})"
        )

        # Generated outside the write transaction; a slow model must not hold the lock
        self._store_rationale(market)
        return market

    def _opening_quote(self, asset_type: AssetType, asset_id: str) -> Decimal:
        try:
            return checked_quote(self.oracle.get_quote(asset_type, asset_id), asset_id)
        except Exception as e:
            price = synthesize_opening_price(asset_type, asset_id, self.rng)
            logger.warning(f"Opening quote unavailable for {asset_id} ({e}); using simulated price {price}")
            return price

    def _store_rationale(self, market: Market):
        is_fallback = False
        try:
            bullets = self.rationale_generator.generate(
                market.asset_type.value,
                market.asset_name,
                market.direction.value,
                float(market.threshold_percent),
                self.config.data_mode,
            )
            if not bullets:
                raise ValueError("empty rationale")
        except Exception as e:
            logger.warning(f"Rationale generation failed for market #{market.market_id}: {e}")
            bullets = fallback_rationale(market.asset_type.value)
            is_fallback = True

        with self.db.transaction() as conn:
            self.db.save_rationale(conn, Rationale(
                market_id=market.id,
                bullets=bullets,
                data_mode=self.config.data_mode,
                is_fallback=is_fallback,
                created_at=self.clock.now(),
            ))

    def create_daily_market(self, now: Optional[datetime] = None) -> Market:
        """Create the day's market on a randomly picked registry asset."""
        now = now or self.clock.now()
        asset = self.registry.pick(self.rng)
        direction = Direction.UP if self.rng.random() > 0.5 else Direction.DOWN
        threshold_bps = 300 if self.rng.random() > 0.7 else 500

        lock_offset = timedelta(minutes=self.config.lock_after_minutes)
        start_time = now.replace(hour=self.config.daily_market_hour, minute=0, second=0, microsecond=0)
        if now >= start_time + lock_offset:
            # Too late for today's slot; open the window now
            start_time = now.replace(second=0, microsecond=0)

        return self.create_market(
            asset_type=asset.asset_type,
            asset_id=asset.asset_id,
            asset_name=asset.name,
            asset_logo=asset.logo,
            direction=direction,
            threshold_bps=threshold_bps,
            start_time=start_time,
            lock_time=start_time + lock_offset,
            end_time=start_time + timedelta(hours=self.config.market_duration_hours),
        )

    def ensure_daily_market(self, now: Optional[datetime] = None) -> Optional[Market]:
        """Create today's market unless one was already created today."""
        now = now or self.clock.now()
        latest = self.get_today_market()
        if latest and latest.created_at.date() == now.date():
            return None
        return self.create_daily_market(now)

    # ==================== TRANSITIONS ====================

    def lock(self, market_uuid: str) -> Market:
        """OPEN → LOCKED. Calling it on a market past OPEN is a no-op."""
        with self.db.transaction() as conn:
            market = self._require(conn, market_uuid)
            if self.db.transition_market(conn, market_uuid, [MarketStatus.OPEN], MarketStatus.LOCKED):
                logger.info(f"Market #{market.market_id} locked")
            market = self.db.get_market(conn, market_uuid)
        return market

    def settle(self, market_uuid: str) -> Market:
        """
        LOCKED → SETTLED with price1 and winner.
        An OPEN market past its lock_time is locked and settled in one step.
        Settling an already settled market returns it unchanged.
        """
        with self.db.reader() as conn:
            market = self._require(conn, market_uuid)

        if market.status == MarketStatus.SETTLED:
            return market
        if market.status == MarketStatus.REFUND:
            raise InvalidTransition(f"Market #{market.market_id} was refunded and cannot be settled")

        now = self.clock.now()
        if market.status == MarketStatus.OPEN and now < market.lock_time:
            raise InvalidTransition(f"Market #{market.market_id} is still open for betting")

        price0 = market.price0
        repaired_price0 = needs_price0(price0)
        if repaired_price0:
            price0 = synthesize_opening_price(market.asset_type, market.asset_id, random.Random(market.id))
            logger.warning(f"Market #{market.market_id} had no usable price0 ({market.price0}); using simulated {price0}")

        price1 = self._closing_quote(market, price0)
        winner, actual_percent = determine_winner(
            market.direction, market.threshold_percent, price0, price1, self.config.tie_band_percent
        )

        with self.db.transaction() as conn:
            if repaired_price0:
                self.db.set_price0(conn, market_uuid, price0)
            self.db.transition_market(conn, market_uuid, [MarketStatus.OPEN], MarketStatus.LOCKED)
            settled = self.db.transition_market(
                conn, market_uuid, [MarketStatus.LOCKED], MarketStatus.SETTLED,
                price1=price1, winner=winner, settled_at=now,
            )
            current = self.db.get_market(conn, market_uuid)

        if not settled:
            # Lost a race with another settle or refund
            if current.status == MarketStatus.REFUND:
                raise InvalidTransition(f"Market #{current.market_id} was refunded and cannot be settled")
            return current

        logger.info(
            f"Market #{market.market_id} settled: winner={winner.value}, "
            f"price {price0} → {price1} ({actual_percent:.4f}%)"
        )
        return current

    def _closing_quote(self, market: Market, price0: Decimal) -> Decimal:
        if self.config.data_mode == "simulate":
            return simulate_settlement_price(price0, market.direction, market.threshold_percent, seed=market.id)
        try:
            return checked_quote(self.oracle.get_quote(market.asset_type, market.asset_id), market.asset_id)
        except Exception as e:
            price1 = simulate_settlement_price(price0, market.direction, market.threshold_percent, seed=market.id)
            logger.warning(
                f"Closing quote unavailable for market #{market.market_id} ({e}); using simulated price {price1}"
            )
            return price1

    def refund(self, market_uuid: str) -> Market:
        """OPEN/LOCKED → REFUND. Every bet becomes claimable at face value."""
        with self.db.transaction() as conn:
            market = self._require(conn, market_uuid)
            if market.status == MarketStatus.SETTLED:
                raise InvalidTransition(f"Market #{market.market_id} is settled and cannot be refunded")
            if self.db.transition_market(
                conn, market_uuid, [MarketStatus.OPEN, MarketStatus.LOCKED], MarketStatus.REFUND
            ):
                logger.info(f"Market #{market.market_id} refunded")
            market = self.db.get_market(conn, market_uuid)
        return market

    # ==================== SWEEPS ====================

    def sweep(self, now: Optional[datetime] = None) -> Dict[str, List[int]]:
        """
        Lock every OPEN market past lock_time and settle every LOCKED market
        past end_time. A failure on one market is logged and does not stop
        the others.
        """
        now = now or self.clock.now()
        summary: Dict[str, List[int]] = {"locked": [], "settled": [], "failed": []}

        with self.db.reader() as conn:
            candidates = [m for m in self.db.list_markets(conn) if m.status not in TERMINAL_STATUSES]

        for market in sorted(candidates, key=lambda m: m.market_id):
            try:
                if market.status == MarketStatus.OPEN and now >= market.lock_time:
                    market = self.lock(market.id)
                    summary["locked"].append(market.market_id)
                if market.status == MarketStatus.LOCKED and now >= market.end_time:
                    market = self.settle(market.id)
                    summary["settled"].append(market.market_id)
            except Exception as e:
                logger.error(f"Sweep failed for market #{market.market_id}: {e}", exc_info=True)
                summary["failed"].append(market.market_id)

        return summary

    def backfill_opening_prices(self) -> List[int]:
        """Fill price0 on live markets that were created without one."""
        with self.db.reader() as conn:
            missing = [
                m for m in self.db.list_markets(conn)
                if needs_price0(m.price0) and m.status not in TERMINAL_STATUSES
            ]

        fixed = []
        for market in missing:
            price0 = self._opening_quote(market.asset_type, market.asset_id)
            with self.db.transaction() as conn:
                if self.db.set_price0(conn, market.id, price0):
                    fixed.append(market.market_id)
                    logger.info(f"Market #{market.market_id} price0 backfilled: {price0}")
        return fixed

    # ==================== READ ACCESSORS ====================

    def _require(self, conn, market_uuid: str) -> Market:
        market = self.db.get_market(conn, market_uuid)
        if not market:
            raise MarketNotFound(f"Market {market_uuid} not found")
        return market

    def get_market(self, market_uuid: str) -> Optional[Market]:
        with self.db.reader() as conn:
            return self.db.get_market(conn, market_uuid)

    def get_market_by_number(self, market_id: int) -> Optional[Market]:
        with self.db.reader() as conn:
            return self.db.get_market_by_number(conn, market_id)

    def list_markets(self, status: Optional[MarketStatus] = None) -> List[Market]:
        with self.db.reader() as conn:
            return self.db.list_markets(conn, status)

    def get_today_market(self) -> Optional[Market]:
        """Most recently created market."""
        with self.db.reader() as conn:
            return self.db.latest_market(conn)

    def get_rationale(self, market_uuid: str) -> Optional[Rationale]:
        with self.db.reader() as conn:
            return self.db.get_rationale(conn, market_uuid)
