"""
Pari-Mutuel Ledger - ProphetX

User balances, deposits and withdrawals, and bet placement into the two
per-market pools. Every mutation runs in one write transaction; a bet either
debits the balance, grows the pool and records the bet, or does none of it.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from market.clock import Clock, SystemClock
from market.database import MarketDatabase
from market.errors import (
    InsufficientBalance, InvalidAmount, InvalidSide, LimitExceeded,
    MarketLocked, MarketNotFound, MarketNotOpen,
)
from market.models import (
    Bet, MarketConfig, MarketStatus, Side, Winner, MAX_AMOUNT,
    generate_bet_id, make_ticket_id, normalize_user, quantize_money, to_decimal,
)
from market.stats import points_for_amount

logger = logging.getLogger(__name__)


def parse_amount(value: Any) -> Decimal:
    """Validate a user-supplied money amount: positive, at most 6 decimal places."""
    try:
        amount = to_decimal(value)
    except ValueError:
        raise InvalidAmount(f"Invalid amount: {value!r}")
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmount("Amount must be greater than 0")
    if amount > MAX_AMOUNT:
        raise InvalidAmount(f"Amount exceeds the maximum of {MAX_AMOUNT}")
    try:
        exact = quantize_money(amount) == amount
    except InvalidOperation:
        exact = False
    if not exact:
        raise InvalidAmount("Amount supports at most 6 decimal places")
    return amount


def parse_side(value: Any) -> Side:
    if isinstance(value, Side):
        return value
    try:
        return Side(str(value).upper())
    except ValueError:
        raise InvalidSide(f"Side must be RIGHT or WRONG, got {value!r}")


def bet_outcome(bet: Bet, status: MarketStatus, winner: Optional[Winner]) -> str:
    """pending, won, lost, tie or refund, from the bettor's point of view."""
    if status == MarketStatus.REFUND:
        return "refund"
    if status != MarketStatus.SETTLED or winner is None:
        return "pending"
    if winner == Winner.TIE:
        return "tie"
    return "won" if bet.side.value == winner.value else "lost"


class PariMutuelLedger:
    """Balances and bet placement."""

    def __init__(self, db: MarketDatabase, config: MarketConfig = None, clock: Clock = None):
        self.db = db
        self.config = config or MarketConfig()
        self.clock = clock or SystemClock()

    # ==================== BALANCES ====================

    def get_balance(self, user_address: str) -> Decimal:
        """Balance for a user. First touch creates it at the starting balance."""
        user = normalize_user(user_address)
        with self.db.reader() as conn:
            balance = self.db.get_balance(conn, user)
        if balance:
            return balance.amount

        with self.db.transaction() as conn:
            self.db.ensure_balance(conn, user, self.config.starting_balance)
            return self.db.get_balance(conn, user).amount

    def deposit(self, user_address: str, amount) -> Decimal:
        amount = parse_amount(amount)
        user = normalize_user(user_address)

        with self.db.transaction() as conn:
            self.db.ensure_balance(conn, user, self.config.starting_balance)
            current = self.db.get_balance(conn, user).amount
            if current + amount > self.config.max_balance:
                raise LimitExceeded(
                    f"Deposit would exceed max balance of {self.config.max_balance}",
                    current_balance=current,
                )
            self.db.credit_balance(conn, user, amount)
            new_balance = self.db.get_balance(conn, user).amount

        logger.info(f"Deposit: {user} +{amount} (balance {new_balance})")
        return new_balance

    def withdraw(self, user_address: str, amount) -> Decimal:
        amount = parse_amount(amount)
        user = normalize_user(user_address)

        with self.db.transaction() as conn:
            self.db.ensure_balance(conn, user, self.config.starting_balance)
            if not self.db.debit_balance(conn, user, amount):
                current = self.db.get_balance(conn, user).amount
                raise InsufficientBalance(f"Insufficient balance: have {current}, need {amount}")
            new_balance = self.db.get_balance(conn, user).amount

        logger.info(f"Withdraw: {user} -{amount} (balance {new_balance})")
        return new_balance

    # ==================== BETTING ====================

    def place_bet(self, market_uuid: str, user_address: str, side, amount) -> Bet:
        """
        Stake on RIGHT or WRONG. Bets are accepted strictly before lock_time,
        whatever the stored status says; a market the sweep has not locked yet
        still refuses late bets.
        """
        side = parse_side(side)
        amount = parse_amount(amount)
        user = normalize_user(user_address)
        now = self.clock.now()

        with self.db.transaction() as conn:
            market = self.db.get_market(conn, market_uuid)
            if not market:
                raise MarketNotFound(f"Market {market_uuid} not found")
            if now >= market.lock_time:
                raise MarketLocked(f"Market #{market.market_id} is locked for betting")
            if market.status != MarketStatus.OPEN:
                raise MarketNotOpen(f"Market #{market.market_id} is {market.status.value}")

            self.db.ensure_balance(conn, user, self.config.starting_balance)
            if not self.db.debit_balance(conn, user, amount):
                current = self.db.get_balance(conn, user).amount
                raise InsufficientBalance(f"Insufficient balance: have {current}, need {amount}")

            bet = Bet(
                id=generate_bet_id(),
                market_id=market.id,
                user_address=user,
                side=side,
                amount=amount,
                ticket_id=make_ticket_id(market.market_id, side),
                created_at=now,
            )
            self.db.increment_pool(conn, market.id, side, amount)
            self.db.insert_bet(conn, bet)
            self.db.increment_stats(
                conn, user,
                total_bets=1,
                total_wagered=amount,
                volume_traded=amount,
                points=points_for_amount(amount, self.config.points_per_unit_wagered),
            )

        logger.info(f"Bet placed: {user} {side.value} {amount} on market #{market.market_id} ({bet.ticket_id})")
        return bet

    # ==================== POSITIONS ====================

    def get_positions(self, user_address: str) -> List[Dict[str, Any]]:
        """All bets of a user, newest first, each with a snapshot of its market."""
        user = normalize_user(user_address)
        positions = []
        with self.db.reader() as conn:
            markets = {}
            for bet in self.db.get_user_bets(conn, user):
                if bet.market_id not in markets:
                    markets[bet.market_id] = self.db.get_market(conn, bet.market_id)
                market = markets[bet.market_id]

                position = bet.to_dict()
                position["market"] = market.to_dict() if market else None
                position["outcome"] = bet_outcome(bet, market.status, market.winner) if market else "pending"
                positions.append(position)
        return positions

    def recent_activity(self, limit: int = 5) -> Dict[str, Any]:
        """Summary of unclaimed bets across all users."""
        with self.db.reader() as conn:
            count, volume = self.db.unclaimed_totals(conn)
            largest = self.db.largest_unclaimed_bet(conn)
            recent = self.db.recent_unclaimed_bets(conn, limit)

        return {
            "total_bets": count,
            "total_volume": str(volume),
            "largest_bet": largest.to_dict() if largest else None,
            "recent_bets": [b.to_dict() for b in recent],
        }

    def pool_conservation_gap(self, market_uuid: str) -> Decimal:
        """Pool total minus the sum of bets on a market. Zero when consistent."""
        with self.db.reader() as conn:
            market = self.db.get_market(conn, market_uuid)
            if not market:
                raise MarketNotFound(f"Market {market_uuid} not found")
            return market.total_pool - self.db.sum_market_bets(conn, market_uuid)
