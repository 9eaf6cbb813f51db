"""
SQLite Database for the ProphetX market
Provides persistent storage for markets, balances, bets, rationales, and user stats.

All money columns hold integer micro-units so that pool and balance changes
are single atomic SQL additions.
"""

import sqlite3
import json
import os
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterator, List, Optional, Tuple

from market.errors import ConcurrencyConflict
from market.models import (
    Market, Bet, Balance, UserStats, Rationale,
    AssetType, Direction, Side, MarketStatus, Winner,
    from_units, to_units,
)

logger = logging.getLogger(__name__)

# Database file path - use environment variable or fallback to local storage
DEFAULT_DB_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), "storage", "prophet.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS markets (
    id TEXT PRIMARY KEY,
    market_id INTEGER NOT NULL UNIQUE,
    asset_type TEXT NOT NULL,
    asset_id TEXT NOT NULL,
    asset_name TEXT NOT NULL,
    asset_logo TEXT,
    direction TEXT NOT NULL,
    threshold_bps INTEGER NOT NULL,
    start_time TEXT NOT NULL,
    lock_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    price0 TEXT,
    price1 TEXT,
    pool_right INTEGER NOT NULL DEFAULT 0 CHECK (pool_right >= 0),
    pool_wrong INTEGER NOT NULL DEFAULT 0 CHECK (pool_wrong >= 0),
    status TEXT NOT NULL DEFAULT 'OPEN',
    winner TEXT,
    settled_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS balances (
    user_address TEXT PRIMARY KEY,
    amount INTEGER NOT NULL CHECK (amount >= 0),
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS bets (
    id TEXT PRIMARY KEY,
    market_id TEXT NOT NULL,
    user_address TEXT NOT NULL,
    side TEXT NOT NULL,
    amount INTEGER NOT NULL CHECK (amount > 0),
    ticket_id TEXT NOT NULL,
    claimed INTEGER NOT NULL DEFAULT 0,
    payout INTEGER,
    created_at TEXT NOT NULL,
    FOREIGN KEY (market_id) REFERENCES markets(id)
);

CREATE TABLE IF NOT EXISTS rationales (
    market_id TEXT PRIMARY KEY,
    content TEXT NOT NULL,  -- JSON array of bullets
    data_mode TEXT NOT NULL,
    is_fallback INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    FOREIGN KEY (market_id) REFERENCES markets(id)
);

CREATE TABLE IF NOT EXISTS user_stats (
    user_address TEXT PRIMARY KEY,
    total_bets INTEGER NOT NULL DEFAULT 0,
    won_bets INTEGER NOT NULL DEFAULT 0,
    total_wagered INTEGER NOT NULL DEFAULT 0,
    total_winnings INTEGER NOT NULL DEFAULT 0,
    current_streak INTEGER NOT NULL DEFAULT 0,
    best_streak INTEGER NOT NULL DEFAULT 0,
    points INTEGER NOT NULL DEFAULT 0,
    volume_traded INTEGER NOT NULL DEFAULT 0,
    referral_code TEXT UNIQUE,
    referred_by TEXT,
    referral_count INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_markets_status ON markets(status);
CREATE INDEX IF NOT EXISTS idx_bets_market ON bets(market_id);
CREATE INDEX IF NOT EXISTS idx_bets_user ON bets(user_address);
CREATE INDEX IF NOT EXISTS idx_stats_points ON user_stats(points);
"""

# Counter columns of user_stats that may be incremented
STATS_COUNTERS = (
    "total_bets", "won_bets", "points", "referral_count",
)
STATS_MONEY = (
    "total_wagered", "total_winnings", "volume_traded",
)


def _ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _parse_price(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


def _is_lock_error(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


class MarketDatabase:
    """SQLite-backed market storage with explicit transactions."""

    def __init__(self, db_path: str = None, timeout: float = 10.0):
        if db_path:
            self.db_path = db_path
        else:
            self.db_path = os.getenv("PROPHET_DB_PATH", DEFAULT_DB_PATH)
        self.timeout = timeout

        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self.init_schema()
        logger.info(f"MarketDatabase initialized at {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly below
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_schema(self):
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA)
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Write transaction. Takes the database write lock up front
        (BEGIN IMMEDIATE) so read-modify-write sequences inside cannot interleave.
        Commits on success, rolls back on any exception.
        """
        conn = self._connect()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                if _is_lock_error(e):
                    raise ConcurrencyConflict("Storage is busy, retry the operation") from e
                raise
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise
        except sqlite3.OperationalError as e:
            if _is_lock_error(e):
                raise ConcurrencyConflict("Storage is busy, retry the operation") from e
            raise
        finally:
            conn.close()

    @contextmanager
    def reader(self) -> Iterator[sqlite3.Connection]:
        """Read-only access, no write lock."""
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    # ==================== MARKET OPERATIONS ====================

    def insert_market(self, conn: sqlite3.Connection, market: Market) -> int:
        """
        Insert a market and return its sequential number.
        The number is computed inside the INSERT while the write lock is held,
        so concurrent creations can never share one.
        """
        conn.execute("""
            INSERT INTO markets (
                id, market_id, asset_type, asset_id, asset_name, asset_logo,
                direction, threshold_bps, start_time, lock_time, end_time,
                price0, price1, pool_right, pool_wrong, status, winner,
                settled_at, created_at
            ) VALUES (
                ?, (SELECT COALESCE(MAX(market_id), 0) + 1 FROM markets),
                ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, 0, 0, ?, NULL, NULL, ?
            )
        """, (
            market.id,
            market.asset_type.value,
            market.asset_id,
            market.asset_name,
            market.asset_logo,
            market.direction.value,
            market.threshold_bps,
            _ts(market.start_time),
            _ts(market.lock_time),
            _ts(market.end_time),
            str(market.price0) if market.price0 is not None else None,
            MarketStatus.OPEN.value,
            _ts(market.created_at),
        ))
        row = conn.execute("SELECT market_id FROM markets WHERE id = ?", (market.id,)).fetchone()
        return row["market_id"]

    def get_market(self, conn: sqlite3.Connection, market_uuid: str) -> Optional[Market]:
        row = conn.execute("SELECT * FROM markets WHERE id = ?", (market_uuid,)).fetchone()
        return _row_to_market(row) if row else None

    def get_market_by_number(self, conn: sqlite3.Connection, market_id: int) -> Optional[Market]:
        row = conn.execute("SELECT * FROM markets WHERE market_id = ?", (market_id,)).fetchone()
        return _row_to_market(row) if row else None

    def list_markets(self, conn: sqlite3.Connection, status: Optional[MarketStatus] = None) -> List[Market]:
        """Markets newest first, optionally filtered by status."""
        if status is None:
            rows = conn.execute("SELECT * FROM markets ORDER BY created_at DESC, market_id DESC").fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM markets WHERE status = ? ORDER BY created_at DESC, market_id DESC",
                (status.value,)
            ).fetchall()
        return [_row_to_market(row) for row in rows]

    def latest_market(self, conn: sqlite3.Connection) -> Optional[Market]:
        row = conn.execute(
            "SELECT * FROM markets ORDER BY created_at DESC, market_id DESC LIMIT 1"
        ).fetchone()
        return _row_to_market(row) if row else None

    def transition_market(
        self,
        conn: sqlite3.Connection,
        market_uuid: str,
        from_statuses: List[MarketStatus],
        to_status: MarketStatus,
        price1: Optional[Decimal] = None,
        winner: Optional[Winner] = None,
        settled_at: Optional[datetime] = None,
    ) -> bool:
        """
        Conditional status change. Only rows currently in one of from_statuses
        are touched; returns False when nothing matched.
        """
        placeholders = ", ".join("?" for _ in from_statuses)
        cursor = conn.execute(f"""
            UPDATE markets
            SET status = ?,
                price1 = COALESCE(?, price1),
                winner = COALESCE(?, winner),
                settled_at = COALESCE(?, settled_at)
            WHERE id = ? AND status IN ({placeholders})
        """, [
            to_status.value,
            str(price1) if price1 is not None else None,
            winner.value if winner else None,
            _ts(settled_at) if settled_at else None,
            market_uuid,
        ] + [s.value for s in from_statuses])
        return cursor.rowcount > 0

    def set_price0(self, conn: sqlite3.Connection, market_uuid: str, price0: Decimal) -> bool:
        """Fill in a missing or unusable opening quote. Never overwrites a positive one."""
        cursor = conn.execute(
            "UPDATE markets SET price0 = ? WHERE id = ? AND (price0 IS NULL OR CAST(price0 AS REAL) <= 0)",
            (str(price0), market_uuid)
        )
        return cursor.rowcount > 0

    def increment_pool(self, conn: sqlite3.Connection, market_uuid: str, side: Side, amount: Decimal):
        column = "pool_right" if side == Side.RIGHT else "pool_wrong"
        conn.execute(
            f"UPDATE markets SET {column} = {column} + ? WHERE id = ?",
            (to_units(amount), market_uuid)
        )

    # ==================== BALANCE OPERATIONS ====================

    def ensure_balance(self, conn: sqlite3.Connection, user_address: str, starting: Decimal):
        """Create the balance row on first touch."""
        conn.execute(
            "INSERT OR IGNORE INTO balances (user_address, amount, updated_at) VALUES (?, ?, ?)",
            (user_address, to_units(starting), _ts(datetime.now(timezone.utc)))
        )

    def get_balance(self, conn: sqlite3.Connection, user_address: str) -> Optional[Balance]:
        row = conn.execute("SELECT * FROM balances WHERE user_address = ?", (user_address,)).fetchone()
        if not row:
            return None
        return Balance(
            user_address=row["user_address"],
            amount=from_units(row["amount"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def credit_balance(self, conn: sqlite3.Connection, user_address: str, amount: Decimal):
        conn.execute(
            "UPDATE balances SET amount = amount + ?, updated_at = ? WHERE user_address = ?",
            (to_units(amount), _ts(datetime.now(timezone.utc)), user_address)
        )

    def debit_balance(self, conn: sqlite3.Connection, user_address: str, amount: Decimal) -> bool:
        """Debit only if the balance covers it. Returns False otherwise."""
        units = to_units(amount)
        cursor = conn.execute(
            "UPDATE balances SET amount = amount - ?, updated_at = ? WHERE user_address = ? AND amount >= ?",
            (units, _ts(datetime.now(timezone.utc)), user_address, units)
        )
        return cursor.rowcount > 0

    # ==================== BET OPERATIONS ====================

    def insert_bet(self, conn: sqlite3.Connection, bet: Bet):
        conn.execute("""
            INSERT INTO bets (id, market_id, user_address, side, amount, ticket_id, claimed, payout, created_at)
            VALUES (?, ?, ?, ?, ?, ?, 0, NULL, ?)
        """, (
            bet.id,
            bet.market_id,
            bet.user_address,
            bet.side.value,
            to_units(bet.amount),
            bet.ticket_id,
            _ts(bet.created_at),
        ))

    def get_user_bets(self, conn: sqlite3.Connection, user_address: str) -> List[Bet]:
        rows = conn.execute(
            "SELECT * FROM bets WHERE user_address = ? ORDER BY created_at DESC, rowid DESC",
            (user_address,)
        ).fetchall()
        return [_row_to_bet(row) for row in rows]

    def get_unclaimed_bets(self, conn: sqlite3.Connection, market_uuid: str, user_address: str) -> List[Bet]:
        rows = conn.execute(
            "SELECT * FROM bets WHERE market_id = ? AND user_address = ? AND claimed = 0 ORDER BY created_at, rowid",
            (market_uuid, user_address)
        ).fetchall()
        return [_row_to_bet(row) for row in rows]

    def mark_bet_claimed(self, conn: sqlite3.Connection, bet_id: str, payout: Decimal) -> bool:
        """One-way latch: only flips a bet that is still unclaimed."""
        cursor = conn.execute(
            "UPDATE bets SET claimed = 1, payout = ? WHERE id = ? AND claimed = 0",
            (to_units(payout), bet_id)
        )
        return cursor.rowcount > 0

    def unclaimed_totals(self, conn: sqlite3.Connection) -> Tuple[int, Decimal]:
        """Count and summed amount of all unclaimed bets."""
        row = conn.execute(
            "SELECT COUNT(*) AS count, COALESCE(SUM(amount), 0) AS total FROM bets WHERE claimed = 0"
        ).fetchone()
        return row["count"], from_units(row["total"])

    def largest_unclaimed_bet(self, conn: sqlite3.Connection) -> Optional[Bet]:
        row = conn.execute(
            "SELECT * FROM bets WHERE claimed = 0 ORDER BY amount DESC, created_at DESC, rowid DESC LIMIT 1"
        ).fetchone()
        return _row_to_bet(row) if row else None

    def recent_unclaimed_bets(self, conn: sqlite3.Connection, limit: int) -> List[Bet]:
        rows = conn.execute(
            "SELECT * FROM bets WHERE claimed = 0 ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (limit,)
        ).fetchall()
        return [_row_to_bet(row) for row in rows]

    def sum_market_bets(self, conn: sqlite3.Connection, market_uuid: str) -> Decimal:
        row = conn.execute(
            "SELECT COALESCE(SUM(amount), 0) AS total FROM bets WHERE market_id = ?",
            (market_uuid,)
        ).fetchone()
        return from_units(row["total"])

    # ==================== RATIONALE OPERATIONS ====================

    def save_rationale(self, conn: sqlite3.Connection, rationale: Rationale):
        conn.execute("""
            INSERT OR REPLACE INTO rationales (market_id, content, data_mode, is_fallback, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, (
            rationale.market_id,
            json.dumps(rationale.bullets),
            rationale.data_mode,
            1 if rationale.is_fallback else 0,
            _ts(rationale.created_at),
        ))

    def get_rationale(self, conn: sqlite3.Connection, market_uuid: str) -> Optional[Rationale]:
        row = conn.execute("SELECT * FROM rationales WHERE market_id = ?", (market_uuid,)).fetchone()
        if not row:
            return None
        return Rationale(
            market_id=row["market_id"],
            bullets=json.loads(row["content"]),
            data_mode=row["data_mode"],
            is_fallback=bool(row["is_fallback"]),
            created_at=_parse_ts(row["created_at"]),
        )

    # ==================== USER STATS OPERATIONS ====================

    def ensure_stats(self, conn: sqlite3.Connection, user_address: str):
        conn.execute(
            "INSERT OR IGNORE INTO user_stats (user_address, updated_at) VALUES (?, ?)",
            (user_address, _ts(datetime.now(timezone.utc)))
        )

    def get_stats(self, conn: sqlite3.Connection, user_address: str) -> Optional[UserStats]:
        row = conn.execute("SELECT * FROM user_stats WHERE user_address = ?", (user_address,)).fetchone()
        return _row_to_stats(row) if row else None

    def increment_stats(self, conn: sqlite3.Connection, user_address: str, **deltas: Any):
        """Atomic in-place increments of counter and money columns."""
        self.ensure_stats(conn, user_address)
        assignments = []
        values: List[Any] = []
        for column, delta in deltas.items():
            if column in STATS_COUNTERS:
                values.append(int(delta))
            elif column in STATS_MONEY:
                values.append(to_units(delta))
            else:
                raise KeyError(f"Unknown stats column: {column}")
            assignments.append(f"{column} = {column} + ?")
        if not assignments:
            return
        assignments.append("updated_at = ?")
        values.append(_ts(datetime.now(timezone.utc)))
        values.append(user_address)
        conn.execute(
            f"UPDATE user_stats SET {', '.join(assignments)} WHERE user_address = ?",
            values
        )

    def record_win(self, conn: sqlite3.Connection, user_address: str):
        """Extend the win streak and track the best one."""
        self.ensure_stats(conn, user_address)
        conn.execute("""
            UPDATE user_stats
            SET current_streak = current_streak + 1,
                best_streak = MAX(best_streak, current_streak + 1),
                updated_at = ?
            WHERE user_address = ?
        """, (_ts(datetime.now(timezone.utc)), user_address))

    def set_referral_code(self, conn: sqlite3.Connection, user_address: str, code: str) -> bool:
        self.ensure_stats(conn, user_address)
        cursor = conn.execute(
            "UPDATE user_stats SET referral_code = ? WHERE user_address = ? AND referral_code IS NULL",
            (code, user_address)
        )
        return cursor.rowcount > 0

    def get_stats_by_referral_code(self, conn: sqlite3.Connection, code: str) -> Optional[UserStats]:
        row = conn.execute("SELECT * FROM user_stats WHERE referral_code = ?", (code,)).fetchone()
        return _row_to_stats(row) if row else None

    def set_referred_by(self, conn: sqlite3.Connection, user_address: str, referrer: str) -> bool:
        self.ensure_stats(conn, user_address)
        cursor = conn.execute(
            "UPDATE user_stats SET referred_by = ? WHERE user_address = ? AND referred_by IS NULL",
            (referrer, user_address)
        )
        return cursor.rowcount > 0

    def top_stats(self, conn: sqlite3.Connection, limit: int = 10) -> List[UserStats]:
        rows = conn.execute(
            "SELECT * FROM user_stats ORDER BY points DESC, volume_traded DESC LIMIT ?",
            (limit,)
        ).fetchall()
        return [_row_to_stats(row) for row in rows]


# ==================== ROW CONVERSION ====================

def _row_to_market(row: sqlite3.Row) -> Market:
    return Market(
        id=row["id"],
        market_id=row["market_id"],
        asset_type=AssetType(row["asset_type"]),
        asset_id=row["asset_id"],
        asset_name=row["asset_name"],
        asset_logo=row["asset_logo"],
        direction=Direction(row["direction"]),
        threshold_bps=row["threshold_bps"],
        start_time=_parse_ts(row["start_time"]),
        lock_time=_parse_ts(row["lock_time"]),
        end_time=_parse_ts(row["end_time"]),
        price0=_parse_price(row["price0"]),
        price1=_parse_price(row["price1"]),
        pool_right=from_units(row["pool_right"]),
        pool_wrong=from_units(row["pool_wrong"]),
        status=MarketStatus(row["status"]),
        winner=Winner(row["winner"]) if row["winner"] else None,
        settled_at=_parse_ts(row["settled_at"]),
        created_at=_parse_ts(row["created_at"]),
    )


def _row_to_bet(row: sqlite3.Row) -> Bet:
    return Bet(
        id=row["id"],
        market_id=row["market_id"],
        user_address=row["user_address"],
        side=Side(row["side"]),
        amount=from_units(row["amount"]),
        ticket_id=row["ticket_id"],
        claimed=bool(row["claimed"]),
        payout=from_units(row["payout"]) if row["payout"] is not None else None,
        created_at=_parse_ts(row["created_at"]),
    )


def _row_to_stats(row: sqlite3.Row) -> UserStats:
    return UserStats(
        user_address=row["user_address"],
        total_bets=row["total_bets"],
        won_bets=row["won_bets"],
        total_wagered=from_units(row["total_wagered"]),
        total_winnings=from_units(row["total_winnings"]),
        current_streak=row["current_streak"],
        best_streak=row["best_streak"],
        points=row["points"],
        volume_traded=from_units(row["volume_traded"]),
        referral_code=row["referral_code"],
        referred_by=row["referred_by"],
        referral_count=row["referral_count"],
        updated_at=_parse_ts(row["updated_at"]),
    )
