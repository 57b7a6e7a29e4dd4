from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .models import TRADE_STATUS_RESOLVED, TradeStatus
from .strategy import now_ts, to_int


def _open(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


class PriceBook:
    """Reference prices keyed by market name, the bot's maximum willingness to pay."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        with _open(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    market_hash_name TEXT NOT NULL UNIQUE
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS item_prices (
                    item_id INTEGER PRIMARY KEY REFERENCES items(id),
                    price_empire INTEGER NOT NULL,
                    updated_ts INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.commit()

    def get_price(self, market_name: str) -> Optional[int]:
        with self._lock, _open(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT price_empire
                  FROM item_prices
                  JOIN items ON item_prices.item_id = items.id
                 WHERE market_hash_name = ?
                """,
                (market_name,),
            ).fetchone()
            if row is None:
                return None
            return to_int(row["price_empire"])

    def _upsert(self, conn: sqlite3.Connection, market_name: str, price: int, ts: int) -> None:
        conn.execute(
            "INSERT OR IGNORE INTO items (market_hash_name) VALUES (?)",
            (market_name,),
        )
        item_id = conn.execute(
            "SELECT id FROM items WHERE market_hash_name = ?",
            (market_name,),
        ).fetchone()["id"]
        conn.execute(
            """
            INSERT INTO item_prices (item_id, price_empire, updated_ts) VALUES (?, ?, ?)
            ON CONFLICT(item_id) DO UPDATE SET
                price_empire = excluded.price_empire,
                updated_ts = excluded.updated_ts
            """,
            (item_id, int(price), ts),
        )

    def set_price(self, market_name: str, price: int) -> None:
        with self._lock, _open(self.db_path) as conn:
            self._upsert(conn, market_name, price, now_ts())
            conn.commit()

    def import_prices(self, prices: Mapping[str, Any]) -> int:
        ts = now_ts()
        imported = 0
        with self._lock, _open(self.db_path) as conn:
            for name, raw_price in prices.items():
                price = to_int(raw_price)
                name = str(name).strip()
                if not name or price is None or price < 0:
                    continue
                self._upsert(conn, name, price, ts)
                imported += 1
            conn.commit()
        return imported


@dataclass
class BidStats:
    attempts: int
    accepted: int
    accepted_value: int
    resolved_trades: int


class BidJournal:
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        with _open(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bids (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    ts INTEGER NOT NULL,
                    item_id INTEGER NOT NULL,
                    market_name TEXT NOT NULL,
                    bid_value INTEGER NOT NULL,
                    bid_max INTEGER NOT NULL,
                    outcome TEXT NOT NULL,
                    source TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS trades (
                    trade_id TEXT NOT NULL,
                    status INTEGER NOT NULL,
                    type TEXT NOT NULL,
                    market_name TEXT NOT NULL,
                    total_value INTEGER NOT NULL,
                    ts INTEGER NOT NULL,
                    PRIMARY KEY(trade_id, status)
                )
                """
            )
            conn.commit()

    def record_bid(
        self,
        *,
        item_id: int,
        market_name: str,
        bid_value: int,
        bid_max: int,
        outcome: str,
        source: str,
    ) -> None:
        with self._lock, _open(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO bids (ts, item_id, market_name, bid_value, bid_max, outcome, source)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (now_ts(), item_id, market_name, int(bid_value), int(bid_max), outcome, source),
            )
            conn.commit()

    def record_trade_status(self, trade: TradeStatus) -> bool:
        """Store one trade status transition. Repeats of the same transition return False."""
        with self._lock, _open(self.db_path) as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO trades (trade_id, status, type, market_name, total_value, ts)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    trade.trade_id,
                    trade.status,
                    trade.type,
                    trade.market_name,
                    trade.total_value,
                    now_ts(),
                ),
            )
            conn.commit()
            return cur.rowcount > 0

    def get_recent_bids(self, limit: int = 10) -> List[Dict[str, Any]]:
        with self._lock, _open(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT ts, item_id, market_name, bid_value, bid_max, outcome, source
                  FROM bids
                 ORDER BY id DESC
                 LIMIT ?
                """,
                (max(1, limit),),
            ).fetchall()
            return [dict(row) for row in rows]

    def get_bid_stats(self, since_ts: int = 0) -> BidStats:
        with self._lock, _open(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS attempts,
                       COALESCE(SUM(outcome = 'accepted'), 0) AS accepted,
                       COALESCE(SUM(CASE WHEN outcome = 'accepted' THEN bid_value ELSE 0 END), 0)
                           AS accepted_value
                  FROM bids
                 WHERE ts >= ?
                """,
                (int(since_ts),),
            ).fetchone()
            marks = ", ".join("?" for _ in TRADE_STATUS_RESOLVED)
            resolved = conn.execute(
                f"SELECT COUNT(*) AS n FROM trades WHERE ts >= ? AND status IN ({marks})",
                (int(since_ts), *sorted(TRADE_STATUS_RESOLVED)),
            ).fetchone()
            return BidStats(
                attempts=int(row["attempts"]),
                accepted=int(row["accepted"]),
                accepted_value=int(row["accepted_value"]),
                resolved_trades=int(resolved["n"]),
            )
