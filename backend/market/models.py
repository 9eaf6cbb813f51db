"""
Prediction Market Models - ProphetX

Data models for the daily oracle prediction game.
The oracle calls an asset UP or DOWN past a threshold; users bet on whether
the oracle will be RIGHT or WRONG.
"""

import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional


# ==================== ENUMS ====================

class AssetType(Enum):
    TOKEN = "TOKEN"
    NFT = "NFT"


class Direction(Enum):
    """The oracle's call."""
    UP = "UP"
    DOWN = "DOWN"


class Side(Enum):
    """Bet sides."""
    RIGHT = "RIGHT"    # Betting the oracle is right
    WRONG = "WRONG"    # Betting the oracle is wrong


class MarketStatus(Enum):
    """Market lifecycle status. Only ever moves forward."""
    OPEN = "OPEN"          # Accepting bets until lock_time
    LOCKED = "LOCKED"      # No more bets, waiting for end_time
    SETTLED = "SETTLED"    # Winner determined, claims available
    REFUND = "REFUND"      # Aborted, every stake is refunded


class Winner(Enum):
    RIGHT = "RIGHT"
    WRONG = "WRONG"
    TIE = "TIE"


TERMINAL_STATUSES = (MarketStatus.SETTLED, MarketStatus.REFUND)


# ==================== MONEY ====================

# Money is kept to 6 decimal places and stored as integer micro-units.
MONEY_PLACES = Decimal("0.000001")
UNITS_PER_COIN = 1_000_000
# Largest amount whose micro-unit value fits a signed 64-bit SQLite INTEGER
MAX_AMOUNT = Decimal(2 ** 63 - 1) / UNITS_PER_COIN


def to_decimal(value: Any) -> Decimal:
    """Convert user input (str, int, float, Decimal) to a Decimal."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValueError(f"Not a decimal amount: {value!r}")


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_PLACES, rounding=ROUND_HALF_EVEN)


def to_units(value: Decimal) -> int:
    """Decimal coins -> integer micro-units."""
    return int(quantize_money(value) * UNITS_PER_COIN)


def from_units(units: int) -> Decimal:
    """Integer micro-units -> Decimal coins."""
    return quantize_money(Decimal(units) / UNITS_PER_COIN)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==================== CONFIG ====================

@dataclass
class MarketConfig:
    """Configuration for the market game."""
    # Balances
    starting_balance: Decimal = Decimal("1000")
    max_balance: Decimal = Decimal("10000")       # Simulation-money cap on deposits

    # Settlement
    fee_rate: Decimal = Decimal("0.02")           # Taken from winnings only
    tie_band_percent: Decimal = Decimal("0.1")    # Percentage points around threshold

    # Points
    points_per_unit_wagered: int = 1
    bonus_point_rate: Decimal = Decimal("0.3")    # Bonus on outright wins
    referral_bonus_referrer: int = 50
    referral_bonus_referee: int = 10

    # Timing
    lock_after_minutes: int = 30
    market_duration_hours: int = 24
    daily_market_hour: int = 9                    # UTC
    sweep_interval_seconds: int = 300

    # "simulate" or "live"
    data_mode: str = "simulate"

    @classmethod
    def from_env(cls) -> "MarketConfig":
        """Build config from PROPHET_* environment variables."""
        defaults = cls()
        return cls(
            starting_balance=Decimal(os.getenv("PROPHET_STARTING_BALANCE", str(defaults.starting_balance))),
            max_balance=Decimal(os.getenv("PROPHET_MAX_BALANCE", str(defaults.max_balance))),
            fee_rate=Decimal(os.getenv("PROPHET_FEE_RATE", str(defaults.fee_rate))),
            tie_band_percent=Decimal(os.getenv("PROPHET_TIE_BAND", str(defaults.tie_band_percent))),
            points_per_unit_wagered=int(os.getenv("PROPHET_POINTS_PER_UNIT", defaults.points_per_unit_wagered)),
            bonus_point_rate=Decimal(os.getenv("PROPHET_BONUS_POINT_RATE", str(defaults.bonus_point_rate))),
            referral_bonus_referrer=int(os.getenv("PROPHET_REFERRAL_BONUS", defaults.referral_bonus_referrer)),
            referral_bonus_referee=int(os.getenv("PROPHET_REFEREE_BONUS", defaults.referral_bonus_referee)),
            lock_after_minutes=int(os.getenv("PROPHET_LOCK_AFTER_MINUTES", defaults.lock_after_minutes)),
            market_duration_hours=int(os.getenv("PROPHET_MARKET_HOURS", defaults.market_duration_hours)),
            daily_market_hour=int(os.getenv("PROPHET_DAILY_MARKET_HOUR", defaults.daily_market_hour)),
            sweep_interval_seconds=int(os.getenv("PROPHET_SWEEP_INTERVAL", defaults.sweep_interval_seconds)),
            data_mode=os.getenv("PROPHET_DATA_MODE", defaults.data_mode),
        )


# ==================== ID GENERATORS ====================

def generate_market_uuid() -> str:
    return uuid.uuid4().hex


def generate_bet_id() -> str:
    return f"bet_{uuid.uuid4().hex[:16]}"


def make_ticket_id(market_id: int, side: Side) -> str:
    """Human-readable ticket: sequential market number + 1 (RIGHT) or 2 (WRONG)."""
    return f"{market_id}{1 if side == Side.RIGHT else 2}"


def normalize_user(user_address: str) -> str:
    """User keys are case-insensitive."""
    return user_address.strip().lower()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _money(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


# ==================== DATA MODELS ====================

@dataclass
class Market:
    """A single daily prediction."""
    id: str
    market_id: int
    asset_type: AssetType
    asset_id: str
    asset_name: str
    direction: Direction
    threshold_bps: int
    start_time: datetime
    lock_time: datetime
    end_time: datetime
    asset_logo: Optional[str] = None

    price0: Optional[Decimal] = None    # Quote at creation
    price1: Optional[Decimal] = None    # Quote at settlement

    pool_right: Decimal = Decimal("0")
    pool_wrong: Decimal = Decimal("0")

    status: MarketStatus = MarketStatus.OPEN
    winner: Optional[Winner] = None
    settled_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def threshold_percent(self) -> Decimal:
        return Decimal(self.threshold_bps) / 100

    @property
    def total_pool(self) -> Decimal:
        return self.pool_right + self.pool_wrong

    @property
    def right_odds(self) -> float:
        """Implied probability of RIGHT."""
        if self.total_pool == 0:
            return 0.5
        return float(self.pool_right / self.total_pool)

    @property
    def wrong_odds(self) -> float:
        if self.total_pool == 0:
            return 0.5
        return float(self.pool_wrong / self.total_pool)

    def pool_for(self, side: Side) -> Decimal:
        return self.pool_right if side == Side.RIGHT else self.pool_wrong

    def is_accepting_bets(self, now: datetime) -> bool:
        """Time is authoritative; status is advisory."""
        return self.status == MarketStatus.OPEN and now < self.lock_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "market_id": self.market_id,
            "asset_type": self.asset_type.value,
            "asset_id": self.asset_id,
            "asset_name": self.asset_name,
            "asset_logo": self.asset_logo,
            "direction": self.direction.value,
            "threshold_bps": self.threshold_bps,
            "threshold_percent": float(self.threshold_percent),
            "start_time": _iso(self.start_time),
            "lock_time": _iso(self.lock_time),
            "end_time": _iso(self.end_time),
            "price0": _money(self.price0),
            "price1": _money(self.price1),
            "pool_right": _money(self.pool_right),
            "pool_wrong": _money(self.pool_wrong),
            "total_pool": _money(self.total_pool),
            "right_odds": self.right_odds,
            "wrong_odds": self.wrong_odds,
            "status": self.status.value,
            "winner": self.winner.value if self.winner else None,
            "settled_at": _iso(self.settled_at),
            "created_at": _iso(self.created_at),
        }


@dataclass
class Bet:
    """Individual bet placed by a user. Amount is fixed at creation."""
    id: str
    market_id: str
    user_address: str
    side: Side
    amount: Decimal
    ticket_id: str
    claimed: bool = False
    payout: Optional[Decimal] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "market_id": self.market_id,
            "user_address": self.user_address,
            "side": self.side.value,
            "amount": _money(self.amount),
            "ticket_id": self.ticket_id,
            "claimed": self.claimed,
            "payout": _money(self.payout),
            "created_at": _iso(self.created_at),
        }


@dataclass
class Balance:
    user_address: str
    amount: Decimal
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_address": self.user_address,
            "balance": _money(self.amount),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class UserStats:
    """Points and volume ledger, loosely coupled to the core."""
    user_address: str
    total_bets: int = 0
    won_bets: int = 0
    total_wagered: Decimal = Decimal("0")
    total_winnings: Decimal = Decimal("0")
    current_streak: int = 0
    best_streak: int = 0
    points: int = 0
    volume_traded: Decimal = Decimal("0")
    referral_code: Optional[str] = None
    referred_by: Optional[str] = None
    referral_count: int = 0
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def win_rate(self) -> float:
        if self.total_bets == 0:
            return 0.0
        return self.won_bets / self.total_bets

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_address": self.user_address,
            "total_bets": self.total_bets,
            "won_bets": self.won_bets,
            "win_rate": self.win_rate,
            "total_wagered": _money(self.total_wagered),
            "total_winnings": _money(self.total_winnings),
            "current_streak": self.current_streak,
            "best_streak": self.best_streak,
            "points": self.points,
            "volume_traded": _money(self.volume_traded),
            "referral_code": self.referral_code,
            "referred_by": self.referred_by,
            "referral_count": self.referral_count,
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class Rationale:
    """The oracle's justification for a market, as bullet points."""
    market_id: str
    bullets: List[str]
    data_mode: str
    is_fallback: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "market_id": self.market_id,
            "bullets": self.bullets,
            "data_mode": self.data_mode,
            "is_fallback": self.is_fallback,
            "created_at": _iso(self.created_at),
        }


@dataclass
class ClaimedBet:
    bet_id: str
    ticket_id: str
    side: Side
    amount: Decimal
    payout: Decimal
    result: str     # "won" or "refund"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bet_id": self.bet_id,
            "ticket_id": self.ticket_id,
            "side": self.side.value,
            "amount": _money(self.amount),
            "payout": _money(self.payout),
            "result": self.result,
        }


@dataclass
class ClaimResult:
    """Outcome of one claim call (all eligible bets of one user on one market)."""
    market_id: str
    user_address: str
    payout: Decimal
    bets: List[ClaimedBet]
    balance: Decimal
    bonus_points: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "market_id": self.market_id,
            "user_address": self.user_address,
            "payout": _money(self.payout),
            "bets": [b.to_dict() for b in self.bets],
            "balance": _money(self.balance),
            "bonus_points": self.bonus_points,
        }
