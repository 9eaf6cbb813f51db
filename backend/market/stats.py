"""
User Stats - ProphetX

Points, volume, leaderboard and referrals. Kept apart from the money path:
nothing here touches balances or pools.
"""

import logging
import math
import random
import sqlite3
import string
from decimal import Decimal
from typing import Any, Dict, List

from market.database import MarketDatabase
from market.errors import InvalidAmount, InvalidReferral
from market.models import MarketConfig, UserStats, normalize_user

logger = logging.getLogger(__name__)

REFERRAL_CODE_LENGTH = 8
REFERRAL_ALPHABET = string.ascii_uppercase + string.digits


def points_for_amount(amount: Decimal, rate) -> int:
    """Whole points for a money amount, rounded down."""
    return math.floor(amount * rate)


class UserStatsService:
    """Read and update per-user stats."""

    def __init__(self, db: MarketDatabase, config: MarketConfig = None, rng: random.Random = None):
        self.db = db
        self.config = config or MarketConfig()
        self.rng = rng or random.SystemRandom()

    def get_stats(self, user_address: str) -> UserStats:
        user = normalize_user(user_address)
        with self.db.reader() as conn:
            stats = self.db.get_stats(conn, user)
        return stats or UserStats(user_address=user)

    def increment_points(self, user_address: str, points: int):
        if points < 0:
            raise InvalidAmount("Points increment must not be negative")
        with self.db.transaction() as conn:
            self.db.increment_stats(conn, normalize_user(user_address), points=points)

    def increment_volume(self, user_address: str, amount: Decimal):
        if amount < 0:
            raise InvalidAmount("Volume increment must not be negative")
        with self.db.transaction() as conn:
            self.db.increment_stats(conn, normalize_user(user_address), volume_traded=amount)

    def leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Top users by points."""
        with self.db.reader() as conn:
            top = self.db.top_stats(conn, limit)
        return [
            {
                "rank": rank,
                "user_address": stats.user_address,
                "points": stats.points,
                "total_bets": stats.total_bets,
                "won_bets": stats.won_bets,
                "win_rate": stats.win_rate,
                "volume_traded": str(stats.volume_traded),
            }
            for rank, stats in enumerate(top, start=1)
        ]

    # ==================== REFERRALS ====================

    def _new_code(self) -> str:
        return "".join(self.rng.choice(REFERRAL_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))

    def generate_referral_code(self, user_address: str, max_attempts: int = 5) -> str:
        """The user's referral code, created on first call."""
        user = normalize_user(user_address)
        for _ in range(max_attempts):
            with self.db.transaction() as conn:
                stats = self.db.get_stats(conn, user)
                if stats and stats.referral_code:
                    return stats.referral_code
                code = self._new_code()
                try:
                    self.db.set_referral_code(conn, user, code)
                except sqlite3.IntegrityError:
                    # Code already taken by someone else
                    continue
            logger.info(f"Referral code {code} generated for {user}")
            return code
        raise InvalidReferral("Could not allocate a unique referral code")

    def apply_referral_code(self, user_address: str, code: str) -> Dict[str, Any]:
        user = normalize_user(user_address)
        code = (code or "").strip().upper()
        if not code:
            raise InvalidReferral("Referral code is required")

        with self.db.transaction() as conn:
            referrer = self.db.get_stats_by_referral_code(conn, code)
            if not referrer:
                raise InvalidReferral("Invalid referral code")
            if referrer.user_address == user:
                raise InvalidReferral("Cannot use your own referral code")
            if not self.db.set_referred_by(conn, user, referrer.user_address):
                raise InvalidReferral("Referral code already applied")

            self.db.increment_stats(
                conn, referrer.user_address,
                points=self.config.referral_bonus_referrer,
                referral_count=1,
            )
            self.db.increment_stats(conn, user, points=self.config.referral_bonus_referee)

        logger.info(f"Referral applied: {user} referred by {referrer.user_address}")
        return {
            "referrer": referrer.user_address,
            "referrer_points": self.config.referral_bonus_referrer,
            "referee_points": self.config.referral_bonus_referee,
            "message": f"Referral applied! You earned {self.config.referral_bonus_referee} points",
        }
