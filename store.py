"""
store.py
FinanceStore: member ledger, transaction ledger, card balance engine and
settings over one explicitly constructed Database.

Inputs are plain dicts keyed in camelCase (the REST/JSON shape) or
snake_case; every mutation validates fully before it writes, and writes in
a single SQLite transaction.
"""

from __future__ import annotations

import logging
import math
import re
import uuid
from dataclasses import dataclass
from datetime import date

import ledger
import utils
from db import Database, now_iso
from errors import BusinessRuleError, ConflictError, NotFoundError, ValidationError
from models import (
    COST_SOURCES,
    DEFAULT_MONTHLY_AMOUNT,
    DEFAULT_MONTHLY_LIMIT,
    DEFAULT_YEARLY_AMOUNT,
    AppSettings,
    CardDetail,
    CardTransaction,
    Member,
    Transaction,
)

logger = logging.getLogger(__name__)

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")

MEMBER_FIELDS = (
    "name", "payment_type", "payment_status", "last_payment_date", "next_due_date",
    "notes", "is_owner", "monthly_amount", "yearly_amount",
)
TRANSACTION_FIELDS = (
    "date", "amount", "member_id", "description", "type", "category",
    "payment_method", "status", "receipt_number", "notes",
)
CARD_FIELDS = (
    "card_name", "last_four_digits", "expiry_date", "card_type", "bank_name",
    "card_holder_name", "is_active", "notes", "monthly_limit", "current_balance",
)
CARD_TRANSACTION_FIELDS = (
    "date", "amount", "description", "type", "category", "status", "reference_number", "notes",
)
# Editing a card transaction never re-applies it to the balance
CARD_TRANSACTION_EDITABLE = ("date", "description", "category", "status", "reference_number", "notes")

TRANSACTION_SELECT = """
    SELECT t.*, m.name AS member_name
    FROM transactions t
    LEFT JOIN members m ON m.id = t.member_id
"""


def _snake(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


def normalize(payload: dict | None, allowed: tuple) -> dict:
    """camelCase/snake_case payload -> snake_case dict restricted to `allowed`."""
    out = {}
    for key, value in (payload or {}).items():
        name = _snake(key)
        if name in allowed:
            out[name] = value
    return out


def _new_id() -> str:
    return uuid.uuid4().hex


def _day(value) -> str:
    return str(value)[:10]


def _strip(value) -> str:
    return (value or "").strip()


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _claim(seen: set, value: str, message: str) -> None:
    if value in seen:
        raise ConflictError(message)
    seen.add(value)


def _opening_deposit(card_id: str, amount: float, day: str, now: str) -> dict:
    return {
        "id": _new_id(),
        "card_id": card_id,
        "date": day,
        "amount": amount,
        "description": "Opening balance",
        "type": "Deposit",
        "category": "Manual Deposit",
        "status": "Completed",
        "reference_number": None,
        "notes": "",
        "balance_after": amount,
        "created_at": now,
        "updated_at": now,
    }


def _check(errors: list[str]) -> None:
    if errors:
        raise ValidationError(errors)


def _positive_int(value, label: str) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be an integer.")
    if n < 1:
        raise ValidationError(f"{label} must be at least 1.")
    return n


@dataclass
class Page:
    items: list
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> dict:
        return {"page": self.page, "limit": self.limit, "pages": self.pages}


class FinanceStore:
    def __init__(self, db: Database, cost_source: str = "settings"):
        if cost_source not in COST_SOURCES:
            raise ValueError(f"Unknown cost source: {cost_source}")
        self.db = db
        self.cost_source = cost_source

    @classmethod
    def open(cls, path, cost_source: str = "settings", default_cost: float | None = None) -> "FinanceStore":
        db = Database(path)
        if default_cost is None:
            db.init_db()
        else:
            db.init_db(default_cost)
        return cls(db, cost_source=cost_source)

    # ---------- Members ----------

    def _member_row(self, member_id: str):
        row = self.db.fetch_one("SELECT * FROM members WHERE id = ?", (member_id,))
        if not row:
            raise NotFoundError("Member not found")
        return row

    def _clean_member(self, data: dict) -> dict:
        _check(utils.validate_member_inputs(data))
        return {
            "name": _strip(data["name"]),
            "payment_type": data["payment_type"],
            "payment_status": data["payment_status"],
            "last_payment_date": _day(data["last_payment_date"]),
            "next_due_date": _day(data["next_due_date"]),
            "notes": _strip(data.get("notes")),
            "is_owner": 1 if utils.parse_bool(data.get("is_owner")) else 0,
            "monthly_amount": float(data["monthly_amount"]),
            "yearly_amount": float(data["yearly_amount"]),
        }

    def _ensure_unique_name(self, name: str, exclude_id: str | None = None) -> None:
        sql = "SELECT id FROM members WHERE lower(name) = lower(?)"
        params: list = [name]
        if exclude_id:
            sql += " AND id != ?"
            params.append(exclude_id)
        if self.db.fetch_one(sql, tuple(params)):
            raise ConflictError("Member with this name already exists")

    def create_member(self, payload: dict) -> Member:
        data = {
            "payment_status": "Unpaid",
            "notes": "",
            "is_owner": False,
            "monthly_amount": DEFAULT_MONTHLY_AMOUNT,
            "yearly_amount": DEFAULT_YEARLY_AMOUNT,
        }
        data.update({k: v for k, v in normalize(payload, MEMBER_FIELDS).items() if v is not None})
        clean = self._clean_member(data)
        self._ensure_unique_name(clean["name"])

        now = now_iso()
        clean.update(id=_new_id(), created_at=now, updated_at=now)
        self._insert("members", clean)
        logger.info("Created member %s (%s)", clean["id"], clean["name"])
        return self.get_member(clean["id"])

    def get_member(self, member_id: str) -> Member:
        return Member.from_row(self._member_row(member_id))

    def list_members(self, status: str | None = None, payment_type: str | None = None,
                     search: str | None = None) -> list[Member]:
        sql = "SELECT * FROM members WHERE 1=1"
        params = []

        if status:
            sql += " AND payment_status = ?"
            params.append(status)

        if payment_type:
            sql += " AND payment_type = ?"
            params.append(payment_type)

        if search and search.strip():
            sql += " AND name LIKE ? ESCAPE '\\'"
            params.append(f"%{_escape_like(search.strip())}%")

        sql += " ORDER BY name COLLATE NOCASE ASC"
        return [Member.from_row(r) for r in self.db.fetch_all(sql, tuple(params))]

    def update_member(self, member_id: str, payload: dict) -> Member:
        existing = dict(self._member_row(member_id))
        existing.update({k: v for k, v in normalize(payload, MEMBER_FIELDS).items() if v is not None})
        clean = self._clean_member(existing)
        self._ensure_unique_name(clean["name"], exclude_id=member_id)

        clean["updated_at"] = now_iso()
        self._update("members", member_id, clean)
        logger.info("Updated member %s", member_id)
        return self.get_member(member_id)

    def delete_member(self, member_id: str) -> int:
        """Delete the member and its transactions. Returns the number of transactions removed."""
        self._member_row(member_id)
        with self.db.get_conn() as conn:
            removed = conn.execute("DELETE FROM transactions WHERE member_id = ?", (member_id,)).rowcount
            conn.execute("DELETE FROM members WHERE id = ?", (member_id,))
        logger.info("Deleted member %s and %d transaction(s)", member_id, removed)
        return removed

    def mark_paid(self, member_id: str, today: date | None = None) -> Member:
        member = ledger.mark_paid(self.get_member(member_id), today)
        self._update("members", member_id, {
            "payment_status": member.payment_status,
            "last_payment_date": member.last_payment_date,
            "next_due_date": member.next_due_date,
            "updated_at": now_iso(),
        })
        logger.info("Member %s marked paid, next due %s", member_id, member.next_due_date)
        return self.get_member(member_id)

    def overdue_members(self, today: date | None = None) -> list[Member]:
        return ledger.overdue_members(self.list_members(status="Unpaid"), today)

    def upcoming_members(self, days: int = ledger.UPCOMING_DAYS, today: date | None = None) -> list[Member]:
        return ledger.upcoming_members(self.list_members(status="Unpaid"), days, today)

    def member_stats(self, today: date | None = None) -> dict:
        return ledger.member_stats(self.list_members(), today)

    # ---------- Transactions ----------

    def _transaction_row(self, transaction_id: str):
        row = self.db.fetch_one(TRANSACTION_SELECT + " WHERE t.id = ?", (transaction_id,))
        if not row:
            raise NotFoundError("Transaction not found")
        return row

    def _clean_transaction(self, data: dict) -> dict:
        _check(utils.validate_transaction_inputs(data))
        member_id = data.get("member_id") or None
        if member_id:
            self._member_row(member_id)
        if data["type"] == "Incoming" and not member_id:
            raise BusinessRuleError("Incoming transactions must be associated with a member")
        return {
            "date": _day(data["date"]),
            "amount": float(data["amount"]),
            "member_id": member_id,
            "description": _strip(data["description"]),
            "type": data["type"],
            "category": data["category"],
            "payment_method": data["payment_method"],
            "status": data["status"],
            "receipt_number": _strip(data.get("receipt_number")) or None,
            "notes": _strip(data.get("notes")),
        }

    def create_transaction(self, payload: dict) -> Transaction:
        data = {"category": "Other", "payment_method": "Other", "status": "Completed", "notes": ""}
        data.update({k: v for k, v in normalize(payload, TRANSACTION_FIELDS).items()
                     if v is not None or k == "member_id"})
        clean = self._clean_transaction(data)

        now = now_iso()
        clean.update(id=_new_id(), created_at=now, updated_at=now)
        self._insert("transactions", clean)
        logger.info("Created %s transaction %s (%.2f)", clean["type"], clean["id"], clean["amount"])
        return self.get_transaction(clean["id"])

    def get_transaction(self, transaction_id: str) -> Transaction:
        return Transaction.from_row(self._transaction_row(transaction_id))

    def update_transaction(self, transaction_id: str, payload: dict) -> Transaction:
        existing = dict(self._transaction_row(transaction_id))
        existing.update({k: v for k, v in normalize(payload, TRANSACTION_FIELDS).items()
                         if v is not None or k == "member_id"})
        clean = self._clean_transaction(existing)

        clean["updated_at"] = now_iso()
        self._update("transactions", transaction_id, clean)
        logger.info("Updated transaction %s", transaction_id)
        return self.get_transaction(transaction_id)

    def delete_transaction(self, transaction_id: str) -> None:
        self._transaction_row(transaction_id)
        self.db.execute("DELETE FROM transactions WHERE id = ?", (transaction_id,))
        logger.info("Deleted transaction %s", transaction_id)

    def _transaction_filters(self, type=None, member_id=None, category=None, status=None,
                             start_date=None, end_date=None) -> tuple[str, list]:
        sql = " WHERE 1=1"
        params = []
        for column, value in (("t.type", type), ("t.member_id", member_id),
                              ("t.category", category), ("t.status", status)):
            if value:
                sql += f" AND {column} = ?"
                params.append(value)
        if start_date:
            sql += " AND t.date >= ?"
            params.append(_day(start_date))
        if end_date:
            sql += " AND t.date <= ?"
            params.append(_day(end_date))
        return sql, params

    def list_transactions(self, **filters) -> list[Transaction]:
        """All matching transactions, newest first."""
        where, params = self._transaction_filters(**filters)
        rows = self.db.fetch_all(
            TRANSACTION_SELECT + where + " ORDER BY t.date DESC, t.created_at DESC, t.rowid DESC", tuple(params)
        )
        return [Transaction.from_row(r) for r in rows]

    def query_transactions(self, page=1, limit=10, **filters) -> Page:
        page = _positive_int(page, "Page")
        limit = _positive_int(limit, "Limit")
        where, params = self._transaction_filters(**filters)
        total = self.db.fetch_one("SELECT COUNT(*) AS c FROM transactions t" + where, tuple(params))["c"]
        rows = self.db.fetch_all(
            TRANSACTION_SELECT + where + " ORDER BY t.date DESC, t.created_at DESC, t.rowid DESC LIMIT ? OFFSET ?",
            tuple(params) + (limit, (page - 1) * limit),
        )
        return Page([Transaction.from_row(r) for r in rows], total, page, limit)

    def transactions_by_member(self, member_id: str, limit=10) -> list[Transaction]:
        self._member_row(member_id)
        return self.query_transactions(page=1, limit=limit, member_id=member_id).items

    def transactions_by_category(self, category: str, page=1, limit=10) -> Page:
        return self.query_transactions(page=page, limit=limit, category=category)

    def recent_transactions(self, limit: int = 5) -> list[Transaction]:
        return self.query_transactions(page=1, limit=limit).items

    def transaction_stats(self, start_date: str | None = None, end_date: str | None = None) -> dict:
        return ledger.transaction_totals(self.list_transactions(), start_date, end_date)

    # ---------- Cards ----------

    def _card_row(self, card_id: str):
        row = self.db.fetch_one("SELECT * FROM cards WHERE id = ?", (card_id,))
        if not row:
            raise NotFoundError("Card not found")
        return row

    def _clean_card(self, data: dict, today: date | None = None) -> dict:
        _check(utils.validate_card_inputs(data))
        is_active = data.get("is_active") is None or utils.parse_bool(data["is_active"])
        if ledger.is_expired(data["expiry_date"], today):
            is_active = False
        return {
            "card_name": _strip(data["card_name"]),
            "last_four_digits": str(data["last_four_digits"]),
            "expiry_date": data["expiry_date"],
            "card_type": data["card_type"],
            "bank_name": _strip(data.get("bank_name")),
            "card_holder_name": _strip(data.get("card_holder_name")),
            "is_active": 1 if is_active else 0,
            "notes": _strip(data.get("notes")),
            "monthly_limit": float(data["monthly_limit"]),
            "current_balance": float(data["current_balance"]),
        }

    def _ensure_unique_card(self, last_four: str, exclude_id: str | None = None) -> None:
        sql = "SELECT id FROM cards WHERE last_four_digits = ?"
        params: list = [last_four]
        if exclude_id:
            sql += " AND id != ?"
            params.append(exclude_id)
        if self.db.fetch_one(sql, tuple(params)):
            raise ConflictError("Card with these last four digits already exists")

    def _card_transaction_count(self, card_id: str) -> int:
        row = self.db.fetch_one("SELECT COUNT(*) AS c FROM card_transactions WHERE card_id = ?", (card_id,))
        return row["c"]

    def create_card(self, payload: dict, today: date | None = None) -> CardDetail:
        data = {
            "card_type": "Other",
            "bank_name": "",
            "card_holder_name": "",
            "is_active": True,
            "notes": "",
            "monthly_limit": DEFAULT_MONTHLY_LIMIT,
            "current_balance": 0.0,
        }
        data.update({k: v for k, v in normalize(payload, CARD_FIELDS).items() if v is not None})
        clean = self._clean_card(data, today)
        self._ensure_unique_card(clean["last_four_digits"])

        now = now_iso()
        clean.update(id=_new_id(), created_at=now, updated_at=now)
        with self.db.get_conn() as conn:
            self._insert("cards", clean, conn=conn)
            # a starting balance enters the ledger as its first deposit
            if clean["current_balance"] > 0:
                day = (today or date.today()).isoformat()
                self._insert("card_transactions",
                             _opening_deposit(clean["id"], clean["current_balance"], day, now), conn=conn)
        logger.info("Created card %s (*%s)", clean["id"], clean["last_four_digits"])
        return self.get_card(clean["id"])

    def get_card(self, card_id: str) -> CardDetail:
        return CardDetail.from_row(self._card_row(card_id))

    def list_cards(self, is_active: bool | None = None, card_type: str | None = None) -> list[CardDetail]:
        sql = "SELECT * FROM cards WHERE 1=1"
        params = []
        if is_active is not None:
            sql += " AND is_active = ?"
            params.append(1 if is_active else 0)
        if card_type:
            sql += " AND card_type = ?"
            params.append(card_type)
        sql += " ORDER BY created_at DESC, rowid DESC"
        return [CardDetail.from_row(r) for r in self.db.fetch_all(sql, tuple(params))]

    def update_card(self, card_id: str, payload: dict, today: date | None = None) -> CardDetail:
        existing = dict(self._card_row(card_id))
        changes = {k: v for k, v in normalize(payload, CARD_FIELDS).items() if v is not None}
        if "current_balance" in changes:
            try:
                changed = float(changes["current_balance"]) != existing["current_balance"]
            except (TypeError, ValueError):
                changed = True
            if changed:
                raise BusinessRuleError("Card balance can only change through card transactions")
        existing.update(changes)
        clean = self._clean_card(existing, today)
        self._ensure_unique_card(clean["last_four_digits"], exclude_id=card_id)

        clean["updated_at"] = now_iso()
        self._update("cards", card_id, clean)
        logger.info("Updated card %s", card_id)
        return self.get_card(card_id)

    def delete_card(self, card_id: str) -> None:
        self._card_row(card_id)
        if self._card_transaction_count(card_id):
            raise BusinessRuleError("Cannot delete card with existing transactions")
        self.db.execute("DELETE FROM cards WHERE id = ?", (card_id,))
        logger.info("Deleted card %s", card_id)

    def expiring_cards(self, days: int = ledger.EXPIRING_SOON_DAYS, today: date | None = None) -> list[CardDetail]:
        return [c for c in self.list_cards(is_active=True) if ledger.expires_within(c.expiry_date, days, today)]

    def primary_card(self) -> CardDetail | None:
        """The card the owner UI works with: oldest active card, else oldest card."""
        row = self.db.fetch_one(
            "SELECT * FROM cards ORDER BY is_active DESC, created_at ASC, rowid ASC LIMIT 1"
        )
        return CardDetail.from_row(row) if row else None

    # ---------- Card transactions ----------

    def _card_transaction_row(self, transaction_id: str, card_id: str | None = None):
        row = self.db.fetch_one("SELECT * FROM card_transactions WHERE id = ?", (transaction_id,))
        if not row or (card_id is not None and row["card_id"] != card_id):
            raise NotFoundError("Card transaction not found")
        return row

    def add_card_transaction(self, card_id: str, payload: dict) -> CardTransaction:
        """
        Apply a deposit/withdrawal to the card. The transaction row and the
        card's new current_balance are written together or not at all.
        """
        data = {"category": "Other", "status": "Completed", "notes": ""}
        data.update({k: v for k, v in normalize(payload, CARD_TRANSACTION_FIELDS).items() if v is not None})
        _check(utils.validate_card_transaction_inputs(data))
        amount = float(data["amount"])

        with self.db.get_conn() as conn:
            conn.execute("BEGIN IMMEDIATE")
            card = conn.execute("SELECT current_balance FROM cards WHERE id = ?", (card_id,)).fetchone()
            if not card:
                raise NotFoundError("Card not found")
            try:
                balance_after = ledger.apply_card_transaction(card["current_balance"], data["type"], amount)
            except BusinessRuleError:
                logger.warning(
                    "Rejected %s of %.2f on card %s (balance %.2f)",
                    data["type"], amount, card_id, card["current_balance"],
                )
                raise

            now = now_iso()
            record = {
                "id": _new_id(),
                "card_id": card_id,
                "date": _day(data["date"]),
                "amount": amount,
                "description": _strip(data["description"]),
                "type": data["type"],
                "category": data["category"],
                "status": data["status"],
                "reference_number": _strip(data.get("reference_number")) or None,
                "notes": _strip(data.get("notes")),
                "balance_after": balance_after,
                "created_at": now,
                "updated_at": now,
            }
            self._insert("card_transactions", record, conn=conn)
            conn.execute(
                "UPDATE cards SET current_balance = ?, updated_at = ? WHERE id = ?",
                (balance_after, now, card_id),
            )

        logger.info("Applied %s of %.2f to card %s, balance %.2f", data["type"], amount, card_id, balance_after)
        return self.get_card_transaction(record["id"])

    def get_card_transaction(self, transaction_id: str, card_id: str | None = None) -> CardTransaction:
        return CardTransaction.from_row(self._card_transaction_row(transaction_id, card_id))

    def update_card_transaction(self, transaction_id: str, payload: dict,
                                card_id: str | None = None) -> CardTransaction:
        existing = dict(self._card_transaction_row(transaction_id, card_id))
        changes = {k: v for k, v in normalize(payload, CARD_TRANSACTION_FIELDS).items() if v is not None}
        for key in ("amount", "type"):
            if key in changes and changes[key] != existing[key]:
                try:
                    same = key == "amount" and float(changes[key]) == existing[key]
                except (TypeError, ValueError):
                    same = False
                if not same:
                    raise BusinessRuleError("Amount and type of an applied card transaction cannot change")
        existing.update(changes)
        _check(utils.validate_card_transaction_inputs(existing))

        clean = {k: existing[k] for k in CARD_TRANSACTION_EDITABLE}
        clean["date"] = _day(clean["date"])
        clean["description"] = _strip(clean["description"])
        clean["updated_at"] = now_iso()
        self._update("card_transactions", transaction_id, clean)
        logger.info("Updated card transaction %s", transaction_id)
        return self.get_card_transaction(transaction_id)

    def delete_card_transaction(self, transaction_id: str, card_id: str | None = None) -> None:
        """Removes the record only; the card balance is not recomputed."""
        self._card_transaction_row(transaction_id, card_id)
        self.db.execute("DELETE FROM card_transactions WHERE id = ?", (transaction_id,))
        logger.info("Deleted card transaction %s", transaction_id)

    def _card_transaction_filters(self, card_id, type=None, category=None,
                                  start_date=None, end_date=None) -> tuple[str, list]:
        sql = " WHERE card_id = ?"
        params: list = [card_id]
        if type:
            sql += " AND type = ?"
            params.append(type)
        if category:
            sql += " AND category = ?"
            params.append(category)
        if start_date:
            sql += " AND date >= ?"
            params.append(_day(start_date))
        if end_date:
            sql += " AND date <= ?"
            params.append(_day(end_date))
        return sql, params

    def list_card_transactions(self, card_id: str, **filters) -> list[CardTransaction]:
        """All matching transactions of the card, in the order they were applied."""
        self._card_row(card_id)
        where, params = self._card_transaction_filters(card_id, **filters)
        rows = self.db.fetch_all(
            "SELECT * FROM card_transactions" + where + " ORDER BY created_at ASC, rowid ASC", tuple(params)
        )
        return [CardTransaction.from_row(r) for r in rows]

    def query_card_transactions(self, card_id: str, page=1, limit=10, **filters) -> Page:
        self._card_row(card_id)
        page = _positive_int(page, "Page")
        limit = _positive_int(limit, "Limit")
        where, params = self._card_transaction_filters(card_id, **filters)
        total = self.db.fetch_one("SELECT COUNT(*) AS c FROM card_transactions" + where, tuple(params))["c"]
        rows = self.db.fetch_all(
            "SELECT * FROM card_transactions" + where
            + " ORDER BY date DESC, created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            tuple(params) + (limit, (page - 1) * limit),
        )
        return Page([CardTransaction.from_row(r) for r in rows], total, page, limit)

    def card_stats(self, card_id: str, start_date: str | None = None, end_date: str | None = None) -> dict:
        card = self.get_card(card_id)
        totals = ledger.card_totals(self.list_card_transactions(card_id), start_date, end_date)
        return {
            "currentBalance": card.current_balance,
            **totals,
            "recentTransactions": self.query_card_transactions(card_id, page=1, limit=5).items,
        }

    # ---------- Settings / money needed ----------

    def get_settings(self) -> AppSettings:
        row = self.db.fetch_one("SELECT youtube_premium_cost, last_updated FROM app_settings WHERE id = 1")
        return AppSettings.from_row(row)

    def update_settings(self, payload: dict) -> AppSettings:
        data = normalize(payload, ("youtube_premium_cost",))
        _check(utils.validate_settings_inputs(data))
        self.db.execute(
            "UPDATE app_settings SET youtube_premium_cost = ?, last_updated = ? WHERE id = 1",
            (float(data["youtube_premium_cost"]), now_iso()),
        )
        logger.info("Subscription cost set to %.2f", float(data["youtube_premium_cost"]))
        return self.get_settings()

    def money_summary(self, card_id: str | None = None) -> dict:
        card = self.get_card(card_id) if card_id else self.primary_card()
        card_txns = self.list_card_transactions(card.id) if card else []
        # oldest first: the "transaction" cost source takes the first match
        transactions = [Transaction.from_row(r) for r in self.db.fetch_all(
            TRANSACTION_SELECT + " ORDER BY t.created_at ASC, t.rowid ASC"
        )]
        balance = ledger.card_balance(card_txns)
        cost = ledger.subscription_cost(self.cost_source, self.get_settings(), transactions)
        return {
            "cardId": card.id if card else None,
            "cardBalance": balance,
            "subscriptionCost": cost,
            "moneyNeeded": ledger.money_needed(cost, balance),
            "costSource": self.cost_source,
        }

    def dashboard(self, today: date | None = None) -> dict:
        members = self.list_members()
        stats = ledger.member_stats(members, today)
        upcoming = ledger.upcoming_members(members, ledger.UPCOMING_DAYS, today)
        totals = ledger.transaction_totals(self.list_transactions())
        return {
            "members": {k: stats[k] for k in ("total", "paid", "unpaid", "overdue", "upcoming")},
            "transactions": {k: totals[k] for k in ("totalIncome", "totalOutgoing", "netBalance")},
            "cards": {
                "active": len(self.list_cards(is_active=True)),
                "expiring": len(self.expiring_cards(ledger.EXPIRING_SOON_DAYS, today)),
            },
            "money": self.money_summary(),
            "upcomingPayments": upcoming[:5],
        }

    # ---------- Whole-state blob ----------

    def export_state(self) -> dict:
        """
        Everything, as one JSON-ready dict. `cards` holds every card with its
        ledger; `cardDetail`/`cardTransactions` repeat the primary card.
        """
        primary = self.primary_card()
        return {
            "members": [m.to_dict() for m in self.list_members()],
            "transactions": [t.to_dict() for t in self.list_transactions()],
            "cardDetail": primary.to_dict() if primary else None,
            "cardTransactions": [t.to_dict() for t in self.list_card_transactions(primary.id)] if primary else [],
            "cards": [
                {**card.to_dict(), "transactions": [t.to_dict() for t in self.list_card_transactions(card.id)]}
                for card in reversed(self.list_cards())
            ],
            "settings": self.get_settings().to_dict(),
        }

    def import_state(self, state: dict) -> None:
        """
        Replace all data with `state` (the export_state shape, or the older
        single-card shape without `cards`). Card balances are re-derived by
        applying each card's transactions in order, starting from zero.
        Everything is validated before anything is written.
        """
        now = now_iso()
        members, names, member_ids = [], set(), set()
        for raw in state.get("members") or []:
            data = {"payment_status": "Unpaid", "notes": "", "is_owner": False,
                    "monthly_amount": DEFAULT_MONTHLY_AMOUNT, "yearly_amount": DEFAULT_YEARLY_AMOUNT}
            data.update({k: v for k, v in normalize(raw, MEMBER_FIELDS).items() if v is not None})
            clean = self._clean_member(data)
            _claim(names, clean["name"].lower(), f"Duplicate member name: {clean['name']}")
            clean.update(id=str(raw.get("id") or _new_id()), created_at=now, updated_at=now)
            _claim(member_ids, clean["id"], f"Duplicate member id: {clean['id']}")
            members.append(clean)

        transactions, transaction_ids = [], set()
        for raw in state.get("transactions") or []:
            data = {"category": "Other", "payment_method": "Other", "status": "Completed", "notes": ""}
            data.update({k: v for k, v in normalize(raw, TRANSACTION_FIELDS).items() if v is not None})
            _check(utils.validate_transaction_inputs(data))
            member_id = data.get("member_id") or None
            if member_id and member_id not in member_ids:
                raise NotFoundError("Member not found")
            if data["type"] == "Incoming" and not member_id:
                raise BusinessRuleError("Incoming transactions must be associated with a member")
            record = {
                "id": str(raw.get("id") or _new_id()),
                "date": _day(data["date"]), "amount": float(data["amount"]), "member_id": member_id,
                "description": _strip(data["description"]), "type": data["type"],
                "category": data["category"], "payment_method": data["payment_method"],
                "status": data["status"], "receipt_number": _strip(data.get("receipt_number")) or None,
                "notes": _strip(data.get("notes")), "created_at": now, "updated_at": now,
            }
            _claim(transaction_ids, record["id"], f"Duplicate transaction id: {record['id']}")
            transactions.append(record)

        raw_cards = state.get("cards")
        if raw_cards is None:
            raw_cards = []
            if state.get("cardDetail"):
                raw_cards.append({**state["cardDetail"], "transactions": state.get("cardTransactions") or []})

        cards, card_transactions = [], []
        card_ids, last_fours, card_transaction_ids = set(), set(), set()
        for raw_card in raw_cards:
            card, ledger_rows = self._import_card(raw_card, now)
            _claim(card_ids, card["id"], f"Duplicate card id: {card['id']}")
            _claim(last_fours, card["last_four_digits"], "Card with these last four digits already exists")
            for row in ledger_rows:
                _claim(card_transaction_ids, row["id"], f"Duplicate card transaction id: {row['id']}")
            cards.append(card)
            card_transactions.extend(ledger_rows)

        settings = normalize(state.get("settings"), ("youtube_premium_cost",))
        if settings:
            _check(utils.validate_settings_inputs(settings))

        with self.db.get_conn() as conn:
            for table in ("card_transactions", "cards", "transactions", "members"):
                conn.execute(f"DELETE FROM {table}")
            for m in members:
                self._insert("members", m, conn=conn)
            for t in transactions:
                self._insert("transactions", t, conn=conn)
            for c in cards:
                self._insert("cards", c, conn=conn)
            for t in card_transactions:
                self._insert("card_transactions", t, conn=conn)
            if settings:
                conn.execute(
                    "UPDATE app_settings SET youtube_premium_cost = ?, last_updated = ? WHERE id = 1",
                    (float(settings["youtube_premium_cost"]), now),
                )
        logger.info(
            "Imported state: %d members, %d transactions, %d cards, %d card transactions",
            len(members), len(transactions), len(cards), len(card_transactions),
        )

    def _import_card(self, raw_card: dict, now: str) -> tuple[dict, list[dict]]:
        data = {"card_type": "Other", "is_active": True, "monthly_limit": DEFAULT_MONTHLY_LIMIT}
        data.update({k: v for k, v in normalize(raw_card, CARD_FIELDS).items() if v is not None})
        recorded = data.setdefault("current_balance", 0.0)
        card = self._clean_card(data)
        card.update(id=str(raw_card.get("id") or _new_id()), created_at=now, updated_at=now)

        rows = []
        for raw in raw_card.get("transactions") or []:
            tx = {"category": "Other", "status": "Completed", "notes": ""}
            tx.update({k: v for k, v in normalize(raw, CARD_TRANSACTION_FIELDS).items() if v is not None})
            _check(utils.validate_card_transaction_inputs(tx))
            rows.append({
                "id": str(raw.get("id") or _new_id()), "card_id": card["id"],
                "date": _day(tx["date"]), "amount": float(tx["amount"]),
                "description": _strip(tx["description"]), "type": tx["type"],
                "category": tx["category"], "status": tx["status"],
                "reference_number": _strip(tx.get("reference_number")) or None,
                "notes": _strip(tx.get("notes")), "created_at": now, "updated_at": now,
            })

        # the ledger alone must never overdraw
        balance = 0.0
        for row in rows:
            balance = ledger.apply_card_transaction(balance, row["type"], row["amount"])

        # a recorded balance above the ledger total becomes an opening deposit
        opening = round(card["current_balance"] - balance, 2) if recorded else 0.0
        if opening > 0:
            day = rows[0]["date"] if rows else date.today().isoformat()
            rows.insert(0, _opening_deposit(card["id"], opening, day, now))

        balance = 0.0
        for row in rows:
            balance = ledger.apply_card_transaction(balance, row["type"], row["amount"])
            row["balance_after"] = balance
        card["current_balance"] = balance
        return card, rows

    # ---------- SQL plumbing ----------

    def _insert(self, table: str, values: dict, conn=None) -> None:
        columns = ", ".join(values)
        marks = ", ".join("?" for _ in values)
        sql = f"INSERT INTO {table}({columns}) VALUES({marks})"
        if conn is None:
            self.db.execute(sql, tuple(values.values()))
        else:
            conn.execute(sql, tuple(values.values()))

    def _update(self, table: str, row_id: str, values: dict) -> None:
        assignments = ", ".join(f"{k}=?" for k in values)
        self.db.execute(f"UPDATE {table} SET {assignments} WHERE id=?", tuple(values.values()) + (row_id,))
