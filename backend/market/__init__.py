"""
Prediction Market Module - ProphetX

Daily oracle calls with pari-mutuel RIGHT/WRONG pools.
Core services live in market.lifecycle, market.ledger, market.claims and
market.stats; they are wired together in service.py.
"""

from market.models import (
    Market, Bet, Balance, UserStats, Rationale, ClaimedBet, ClaimResult,
    AssetType, Direction, Side, MarketStatus, Winner,
    MarketConfig,
    generate_market_uuid, generate_bet_id, make_ticket_id, normalize_user,
)
from market.errors import MarketError

__all__ = [
    # Models
    "Market",
    "Bet",
    "Balance",
    "UserStats",
    "Rationale",
    "ClaimedBet",
    "ClaimResult",
    "AssetType",
    "Direction",
    "Side",
    "MarketStatus",
    "Winner",
    "MarketConfig",

    # Utilities
    "generate_market_uuid",
    "generate_bet_id",
    "make_ticket_id",
    "normalize_user",

    # Errors
    "MarketError",
]
