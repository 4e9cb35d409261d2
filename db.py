"""
db.py
SQLite helpers + initialization (creates DB/tables, default settings row).
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from models import DEFAULT_SUBSCRIPTION_COST

logger = logging.getLogger(__name__)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class Database:
    """One SQLite file. Each `get_conn()` block commits once or rolls back."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    @contextmanager
    def get_conn(self):
        conn = sqlite3.connect(self.path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def execute(self, sql: str, params: tuple = ()) -> int:
        with self.get_conn() as conn:
            cur = conn.execute(sql, params)
            return cur.rowcount

    def executemany(self, sql: str, seq_of_params: list[tuple]) -> None:
        with self.get_conn() as conn:
            conn.executemany(sql, seq_of_params)

    def fetch_one(self, sql: str, params: tuple = ()):
        with self.get_conn() as conn:
            cur = conn.execute(sql, params)
            return cur.fetchone()

    def fetch_all(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self.get_conn() as conn:
            cur = conn.execute(sql, params)
            return cur.fetchall()

    def _create_tables(self) -> None:
        with self.get_conn() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS members (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    payment_type TEXT NOT NULL CHECK(payment_type IN ('Monthly','Yearly')),
                    payment_status TEXT NOT NULL CHECK(payment_status IN ('Paid','Unpaid')),
                    last_payment_date TEXT NOT NULL,
                    next_due_date TEXT NOT NULL,
                    notes TEXT NOT NULL DEFAULT '',
                    is_owner INTEGER NOT NULL DEFAULT 0,
                    monthly_amount REAL NOT NULL,
                    yearly_amount REAL NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_members_status_due ON members(payment_status, next_due_date)"
            )

            # member_id is nullable: general costs are not tied to a member
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transactions (
                    id TEXT PRIMARY KEY,
                    date TEXT NOT NULL,
                    amount REAL NOT NULL CHECK(amount > 0),
                    member_id TEXT REFERENCES members(id) ON DELETE CASCADE,
                    description TEXT NOT NULL,
                    type TEXT NOT NULL CHECK(type IN ('Incoming','Outgoing')),
                    category TEXT NOT NULL DEFAULT 'Other',
                    payment_method TEXT NOT NULL DEFAULT 'Other',
                    status TEXT NOT NULL DEFAULT 'Completed',
                    receipt_number TEXT,
                    notes TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(date)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_member ON transactions(member_id, date)"
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cards (
                    id TEXT PRIMARY KEY,
                    card_name TEXT NOT NULL,
                    last_four_digits TEXT NOT NULL UNIQUE,
                    expiry_date TEXT NOT NULL,
                    card_type TEXT NOT NULL DEFAULT 'Other',
                    bank_name TEXT NOT NULL DEFAULT '',
                    card_holder_name TEXT NOT NULL DEFAULT '',
                    is_active INTEGER NOT NULL DEFAULT 1,
                    notes TEXT NOT NULL DEFAULT '',
                    monthly_limit REAL NOT NULL DEFAULT 1000,
                    current_balance REAL NOT NULL DEFAULT 0 CHECK(current_balance >= 0),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

            # RESTRICT: a card with transactions cannot be deleted
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS card_transactions (
                    id TEXT PRIMARY KEY,
                    card_id TEXT NOT NULL REFERENCES cards(id) ON DELETE RESTRICT,
                    date TEXT NOT NULL,
                    amount REAL NOT NULL CHECK(amount > 0),
                    description TEXT NOT NULL,
                    type TEXT NOT NULL CHECK(type IN ('Deposit','Withdrawal')),
                    category TEXT NOT NULL DEFAULT 'Other',
                    status TEXT NOT NULL DEFAULT 'Completed',
                    reference_number TEXT,
                    notes TEXT NOT NULL DEFAULT '',
                    balance_after REAL NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_card_transactions_card ON card_transactions(card_id, date)"
            )

            # Singleton row (id = 1)
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS app_settings (
                    id INTEGER PRIMARY KEY CHECK(id = 1),
                    youtube_premium_cost REAL NOT NULL,
                    last_updated TEXT NOT NULL
                )
                """
            )

    def init_db(self, default_cost: float = DEFAULT_SUBSCRIPTION_COST) -> None:
        """
        Initialize the database.
        - Create tables
        - Insert the settings row if missing
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._create_tables()
        row = self.fetch_one("SELECT id FROM app_settings WHERE id = 1")
        if not row:
            self.execute(
                "INSERT INTO app_settings(id, youtube_premium_cost, last_updated) VALUES(1, ?, ?)",
                (default_cost, now_iso()),
            )
            logger.info("Initialized database at %s", self.path)
