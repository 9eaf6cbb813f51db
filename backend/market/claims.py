"""
Claim Engine - ProphetX

Pays out settled and refunded markets. A claim covers every eligible,
still-unclaimed bet the user holds on the market and flips each one with a
conditional latch, so a bet is credited exactly once however many claims race.
"""

import logging
from decimal import Decimal, ROUND_DOWN
from typing import List, Optional

from market.database import MarketDatabase
from market.errors import MarketNotFound, MarketNotSettled, NoPayoutAvailable, NoUnclaimedBet
from market.models import (
    Bet, ClaimedBet, ClaimResult, Market, MarketConfig, MarketStatus, Side, Winner,
    MONEY_PLACES, normalize_user,
)
from market.stats import points_for_amount

logger = logging.getLogger(__name__)


def compute_payout(bet: Bet, market: Market, fee_rate: Decimal) -> Optional[Decimal]:
    """
    Payout for one bet on a finished market, or None for a losing bet.

    REFUND and TIE return the stake. A winning bet gets its stake plus a share
    of the losing pool proportional to its weight in the winning pool, less
    the platform fee. Rounded down so payouts never exceed the pools.
    """
    if market.status == MarketStatus.REFUND or market.winner == Winner.TIE:
        return bet.amount

    if bet.side.value != market.winner.value:
        return None

    winning_pool = market.pool_for(bet.side)
    losing_pool = market.pool_for(Side.WRONG if bet.side == Side.RIGHT else Side.RIGHT)
    if winning_pool <= 0:
        return bet.amount

    share = bet.amount / winning_pool
    gross = bet.amount + losing_pool * share
    return (gross * (1 - fee_rate)).quantize(MONEY_PLACES, rounding=ROUND_DOWN)


class ClaimEngine:
    """Exactly-once payouts."""

    def __init__(self, db: MarketDatabase, config: MarketConfig = None):
        self.db = db
        self.config = config or MarketConfig()

    def claim(self, market_uuid: str, user_address: str) -> ClaimResult:
        user = normalize_user(user_address)

        with self.db.transaction() as conn:
            market = self.db.get_market(conn, market_uuid)
            if not market:
                raise MarketNotFound(f"Market {market_uuid} not found")
            if market.status not in (MarketStatus.SETTLED, MarketStatus.REFUND):
                raise MarketNotSettled(f"Market #{market.market_id} is {market.status.value}")

            unclaimed = self.db.get_unclaimed_bets(conn, market_uuid, user)
            if not unclaimed:
                raise NoUnclaimedBet(f"No unclaimed bets on market #{market.market_id}")

            eligible = []
            for bet in unclaimed:
                payout = compute_payout(bet, market, self.config.fee_rate)
                if payout is not None:
                    eligible.append((bet, payout))
            if not eligible:
                raise NoPayoutAvailable(f"No winning bets to claim on market #{market.market_id}")

            outright = market.status == MarketStatus.SETTLED and market.winner != Winner.TIE
            claimed: List[ClaimedBet] = []
            total = Decimal("0")
            bonus_points = 0
            for bet, payout in eligible:
                if not self.db.mark_bet_claimed(conn, bet.id, payout):
                    continue
                total += payout
                if outright:
                    bonus_points += points_for_amount(bet.amount, self.config.bonus_point_rate)
                claimed.append(ClaimedBet(
                    bet_id=bet.id,
                    ticket_id=bet.ticket_id,
                    side=bet.side,
                    amount=bet.amount,
                    payout=payout,
                    result="won" if outright else "refund",
                ))

            if not claimed:
                raise NoUnclaimedBet(f"No unclaimed bets on market #{market.market_id}")

            self.db.ensure_balance(conn, user, self.config.starting_balance)
            self.db.credit_balance(conn, user, total)

            if outright:
                self.db.increment_stats(
                    conn, user,
                    won_bets=len(claimed),
                    total_winnings=total,
                    points=bonus_points,
                )
                self.db.record_win(conn, user)

            balance = self.db.get_balance(conn, user).amount

        logger.info(
            f"Claim: {user} received {total} for {len(claimed)} bet(s) on market #{market.market_id}"
            + (f" (+{bonus_points} pts)" if bonus_points else "")
        )
        return ClaimResult(
            market_id=market.id,
            user_address=user,
            payout=total,
            bets=claimed,
            balance=balance,
            bonus_points=bonus_points,
        )
