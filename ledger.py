"""
ledger.py
Pure domain derivations shared by the Streamlit UI and the REST API:
due-date rollover, member aggregates, income/outgoing totals, card status,
card balance application and the money-needed calculation.

Nothing in here touches the database.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta
from typing import Iterable

from errors import InsufficientBalanceError, ValidationError
from models import CADENCE_MONTHS, AppSettings, Member
from utils import add_months, parse_iso

EXPIRING_SOON_DAYS = 30
UPCOMING_DAYS = 30
SUBSCRIPTION_KEYWORD = "YouTube Premium"


# ---------- Members ----------

def next_due_date(payment_type: str, paid_on: date) -> date:
    """One calendar month (Monthly) or one year (Yearly) after `paid_on`."""
    if payment_type not in CADENCE_MONTHS:
        raise ValidationError(f"Unknown payment type: {payment_type}")
    return add_months(paid_on, CADENCE_MONTHS[payment_type])


def mark_paid(member: Member, today: date | None = None) -> Member:
    today = today or date.today()
    return replace(
        member,
        payment_status="Paid",
        last_payment_date=today.isoformat(),
        next_due_date=next_due_date(member.payment_type, today).isoformat(),
    )


def overdue_members(members: Iterable[Member], today: date | None = None) -> list[Member]:
    today = today or date.today()
    return [m for m in members if m.payment_status == "Unpaid" and parse_iso(m.next_due_date) < today]


def upcoming_members(
    members: Iterable[Member], days: int = UPCOMING_DAYS, today: date | None = None
) -> list[Member]:
    """Unpaid members due between today and today + days (inclusive), soonest first."""
    today = today or date.today()
    horizon = today + timedelta(days=days)
    rows = [
        m for m in members
        if m.payment_status == "Unpaid" and today <= parse_iso(m.next_due_date) <= horizon
    ]
    return sorted(rows, key=lambda m: m.next_due_date)


def member_stats(members: Iterable[Member], today: date | None = None) -> dict:
    members = list(members)
    return {
        "total": len(members),
        "paid": sum(1 for m in members if m.payment_status == "Paid"),
        "unpaid": sum(1 for m in members if m.payment_status == "Unpaid"),
        "overdue": len(overdue_members(members, today)),
        "upcoming": len(upcoming_members(members, UPCOMING_DAYS, today)),
        "monthly": sum(1 for m in members if m.payment_type == "Monthly"),
        "yearly": sum(1 for m in members if m.payment_type == "Yearly"),
    }


# ---------- Transactions ----------

def in_date_range(d: str, start: str | None = None, end: str | None = None) -> bool:
    day = parse_iso(d[:10])
    if start and day < parse_iso(start[:10]):
        return False
    if end and day > parse_iso(end[:10]):
        return False
    return True


def transaction_totals(transactions: Iterable, start: str | None = None, end: str | None = None) -> dict:
    """
    totalIncome / totalOutgoing / netBalance (+ counts) for the transactions
    whose date falls inside [start, end]. Either bound may be omitted.
    """
    income = outgoing = 0.0
    income_count = outgoing_count = 0
    for t in transactions:
        if not in_date_range(t.date, start, end):
            continue
        if t.type == "Incoming":
            income += t.amount
            income_count += 1
        elif t.type == "Outgoing":
            outgoing += t.amount
            outgoing_count += 1
    return {
        "totalIncome": income,
        "totalOutgoing": outgoing,
        "netBalance": income - outgoing,
        "incomeCount": income_count,
        "outgoingCount": outgoing_count,
    }


# ---------- Cards ----------

def parse_expiry(expiry: str) -> date:
    """MM/YY -> first day of that month (20YY)."""
    month, year = expiry.split("/")
    return date(2000 + int(year), int(month), 1)


def is_expired(expiry: str, today: date | None = None) -> bool:
    today = today or date.today()
    return parse_expiry(expiry) < today


def expires_within(expiry: str, days: int = EXPIRING_SOON_DAYS, today: date | None = None) -> bool:
    today = today or date.today()
    return parse_expiry(expiry) < today + timedelta(days=days)


def card_status(expiry: str, is_active: bool, today: date | None = None) -> str:
    if not is_active:
        return "Inactive"
    today = today or date.today()
    if is_expired(expiry, today):
        return "Expired"
    if expires_within(expiry, EXPIRING_SOON_DAYS, today):
        return "Expiring Soon"
    return "Active"


def apply_card_transaction(current_balance: float, tx_type: str, amount: float) -> float:
    """
    Balance after applying one deposit/withdrawal. A withdrawal larger than
    the current balance raises InsufficientBalanceError.
    """
    if amount is None or amount <= 0:
        raise ValidationError("Amount must be greater than 0.")
    if tx_type == "Deposit":
        return current_balance + amount
    if tx_type == "Withdrawal":
        if amount > current_balance:
            raise InsufficientBalanceError(current_balance, amount)
        return current_balance - amount
    raise ValidationError("Transaction type must be either Deposit or Withdrawal.")


def card_balance(card_transactions: Iterable) -> float:
    """Sum of deposits minus sum of withdrawals."""
    balance = 0.0
    for t in card_transactions:
        if t.type == "Deposit":
            balance += t.amount
        elif t.type == "Withdrawal":
            balance -= t.amount
    return balance


def card_totals(card_transactions: Iterable, start: str | None = None, end: str | None = None) -> dict:
    deposits = withdrawals = 0.0
    for t in card_transactions:
        if not in_date_range(t.date, start, end):
            continue
        if t.type == "Deposit":
            deposits += t.amount
        elif t.type == "Withdrawal":
            withdrawals += t.amount
    return {"totalDeposits": deposits, "totalWithdrawals": withdrawals}


# ---------- Money needed ----------

def cost_from_transactions(transactions: Iterable, keyword: str = SUBSCRIPTION_KEYWORD) -> float:
    for t in transactions:
        if t.type == "Outgoing" and keyword in (t.description or ""):
            return t.amount
    return 0.0


def subscription_cost(strategy: str, settings: AppSettings | None, transactions: Iterable = ()) -> float:
    """
    'settings'    -> AppSettings.youtube_premium_cost
    'transaction' -> first Outgoing transaction mentioning the subscription
    """
    if strategy == "settings":
        return settings.youtube_premium_cost if settings else 0.0
    if strategy == "transaction":
        return cost_from_transactions(transactions)
    raise ValueError(f"Unknown cost source: {strategy}")


def money_needed(cost: float, balance: float) -> float:
    return max(0.0, cost - balance)
