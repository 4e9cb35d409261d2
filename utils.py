"""
utils.py
Validation, dates, money formatting, exports, sample data.
"""

from __future__ import annotations

import re
from datetime import date, timedelta

import pandas as pd

from models import (
    CARD_TRANSACTION_CATEGORIES,
    CARD_TRANSACTION_TYPES,
    CARD_TYPES,
    CURRENCY_PREFIX,
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    PAYMENT_TYPES,
    RECORD_STATUSES,
    TRANSACTION_CATEGORIES,
    TRANSACTION_TYPES,
)

LAST_FOUR_RE = re.compile(r"^\d{4}$")
EXPIRY_RE = re.compile(r"^(0[1-9]|1[0-2])/\d{2}$")


def today_iso() -> str:
    return date.today().isoformat()


def parse_iso(d: str) -> date:
    return date.fromisoformat(d)


def add_months(start: date, months: int) -> date:
    """
    Add months while keeping day in valid range (e.g., Jan 31 + 1 month => Feb 28/29).
    """
    y = start.year + (start.month - 1 + months) // 12
    m = (start.month - 1 + months) % 12 + 1
    # last day of target month
    if m == 12:
        next_month = date(y + 1, 1, 1)
    else:
        next_month = date(y, m + 1, 1)
    last_day = next_month - timedelta(days=1)
    day = min(start.day, last_day.day)
    return date(y, m, day)


def format_money(amount: float) -> str:
    return f"{CURRENCY_PREFIX}{amount:.2f}"


_TRUE_WORDS = ("true", "1", "yes", "on")
_FALSE_WORDS = ("false", "0", "no", "off")


def parse_bool(value) -> bool | None:
    """True/False, 0/1 or a "true"/"false" style string -> bool. None when unrecognised."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return None


def _is_iso_date(value) -> bool:
    try:
        parse_iso(str(value)[:10])
        return True
    except (TypeError, ValueError):
        return False


def _check_length(errors: list[str], label: str, value, limit: int) -> None:
    if value and len(str(value)) > limit:
        errors.append(f"{label} cannot exceed {limit} characters.")


def _check_choice(errors: list[str], label: str, value, choices: tuple) -> None:
    if value not in choices:
        errors.append(f"{label} must be one of: {', '.join(choices)}.")


def _check_amount(errors: list[str], label: str, value, positive: bool = True) -> None:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        errors.append(f"{label} must be numeric.")
        return
    if positive and amount <= 0:
        errors.append(f"{label} must be greater than 0.")
    elif not positive and amount < 0:
        errors.append(f"{label} cannot be negative.")


def _check_bool(errors: list[str], label: str, value) -> None:
    if value is not None and parse_bool(value) is None:
        errors.append(f"{label} must be true or false.")


def validate_member_inputs(data: dict) -> list[str]:
    errors: list[str] = []
    name = (data.get("name") or "").strip()
    if not name:
        errors.append("Name is required.")
    _check_length(errors, "Name", name, 100)
    _check_choice(errors, "Payment type", data.get("payment_type"), PAYMENT_TYPES)
    _check_choice(errors, "Payment status", data.get("payment_status"), PAYMENT_STATUSES)
    _check_length(errors, "Notes", data.get("notes"), 500)
    _check_bool(errors, "Owner flag", data.get("is_owner"))
    _check_amount(errors, "Monthly amount", data.get("monthly_amount"), positive=False)
    _check_amount(errors, "Yearly amount", data.get("yearly_amount"), positive=False)

    last, due = data.get("last_payment_date"), data.get("next_due_date")
    if not last or not due:
        errors.append("Last payment date and next due date are required.")
    elif not (_is_iso_date(last) and _is_iso_date(due)):
        errors.append("Dates must be valid ISO dates (YYYY-MM-DD).")
    elif parse_iso(str(last)[:10]) > parse_iso(str(due)[:10]):
        errors.append("Last payment date cannot be after next due date.")
    return errors


def validate_transaction_inputs(data: dict) -> list[str]:
    errors: list[str] = []
    if not data.get("date"):
        errors.append("Transaction date is required.")
    elif not _is_iso_date(data["date"]):
        errors.append("Transaction date must be a valid ISO date (YYYY-MM-DD).")
    _check_amount(errors, "Amount", data.get("amount"))
    description = (data.get("description") or "").strip()
    if not description:
        errors.append("Description is required.")
    _check_length(errors, "Description", description, 200)
    _check_choice(errors, "Transaction type", data.get("type"), TRANSACTION_TYPES)
    _check_choice(errors, "Category", data.get("category"), TRANSACTION_CATEGORIES)
    _check_choice(errors, "Payment method", data.get("payment_method"), PAYMENT_METHODS)
    _check_choice(errors, "Status", data.get("status"), RECORD_STATUSES)
    _check_length(errors, "Receipt number", data.get("receipt_number"), 50)
    _check_length(errors, "Notes", data.get("notes"), 500)
    return errors


def validate_card_inputs(data: dict) -> list[str]:
    errors: list[str] = []
    card_name = (data.get("card_name") or "").strip()
    if not card_name:
        errors.append("Card name is required.")
    _check_length(errors, "Card name", card_name, 100)
    if not LAST_FOUR_RE.match(str(data.get("last_four_digits") or "")):
        errors.append("Last four digits must be exactly 4 digits.")
    if not EXPIRY_RE.match(str(data.get("expiry_date") or "")):
        errors.append("Expiry date must be in MM/YY format.")
    _check_choice(errors, "Card type", data.get("card_type"), CARD_TYPES)
    _check_length(errors, "Bank name", data.get("bank_name"), 100)
    _check_length(errors, "Card holder name", data.get("card_holder_name"), 100)
    _check_length(errors, "Notes", data.get("notes"), 500)
    _check_bool(errors, "Active flag", data.get("is_active"))
    _check_amount(errors, "Monthly limit", data.get("monthly_limit"), positive=False)
    _check_amount(errors, "Current balance", data.get("current_balance"), positive=False)
    return errors


def validate_card_transaction_inputs(data: dict) -> list[str]:
    errors: list[str] = []
    if not data.get("date"):
        errors.append("Transaction date is required.")
    elif not _is_iso_date(data["date"]):
        errors.append("Transaction date must be a valid ISO date (YYYY-MM-DD).")
    _check_amount(errors, "Amount", data.get("amount"))
    description = (data.get("description") or "").strip()
    if not description:
        errors.append("Description is required.")
    _check_length(errors, "Description", description, 200)
    _check_choice(errors, "Transaction type", data.get("type"), CARD_TRANSACTION_TYPES)
    _check_choice(errors, "Category", data.get("category"), CARD_TRANSACTION_CATEGORIES)
    _check_choice(errors, "Status", data.get("status"), RECORD_STATUSES)
    _check_length(errors, "Reference number", data.get("reference_number"), 50)
    _check_length(errors, "Notes", data.get("notes"), 500)
    return errors


def validate_settings_inputs(data: dict) -> list[str]:
    errors: list[str] = []
    _check_amount(errors, "Subscription cost", data.get("youtube_premium_cost"), positive=False)
    return errors


# ---------- Exports / reports ----------

def records_frame(records, columns: list[str] | None = None) -> pd.DataFrame:
    df = pd.DataFrame([r.to_dict() for r in records])
    if df.empty:
        return pd.DataFrame(columns=columns or [])
    if columns:
        df = df[[c for c in columns if c in df.columns]]
    return df


def to_csv_bytes(records, columns: list[str] | None = None) -> bytes:
    return records_frame(records, columns).to_csv(index=False).encode("utf-8")


def monthly_summary(transactions) -> pd.DataFrame:
    """Income / outgoing / net per YYYY-MM, newest month first."""
    df = pd.DataFrame([{"date": t.date, "type": t.type, "amount": t.amount} for t in transactions])
    if df.empty:
        return pd.DataFrame(columns=["month", "income", "outgoing", "net"])
    df["month"] = df["date"].str[:7]
    pivot = df.pivot_table(index="month", columns="type", values="amount", aggfunc="sum", fill_value=0.0)
    out = pd.DataFrame({
        "month": pivot.index,
        "income": pivot["Incoming"].values if "Incoming" in pivot else 0.0,
        "outgoing": pivot["Outgoing"].values if "Outgoing" in pivot else 0.0,
    })
    out["net"] = out["income"] - out["outgoing"]
    return out.sort_values("month", ascending=False).reset_index(drop=True)


def insert_sample_data(store) -> None:
    """
    Insert sample members, transactions and a funded card into `store`
    (a FinanceStore). Names already present are skipped, so it is safe to
    run more than once.
    """
    today = date.today()
    next_month = add_months(today, 1)

    members = [
        ("You (Owner)", "Monthly", "Paid", today, next_month, "Your own contribution", True),
        ("Alice", "Monthly", "Unpaid", date(2025, 7, 1), date(2025, 8, 1), "Friend from college", False),
        ("Bob", "Yearly", "Paid", date(2025, 1, 15), date(2026, 1, 15), "Brother", False),
        ("Charlie", "Monthly", "Paid", today, next_month, "Cousin", False),
        ("Diana", "Monthly", "Unpaid", date(2025, 7, 5), date(2025, 8, 5), "Sister", False),
    ]
    existing = {m.name.lower(): m for m in store.list_members()}
    ids = {}
    for name, ptype, status, last, due, notes, owner in members:
        if name.lower() in existing:
            ids[name] = existing[name.lower()].id
            continue
        m = store.create_member({
            "name": name,
            "paymentType": ptype,
            "paymentStatus": status,
            "lastPaymentDate": last.isoformat(),
            "nextDueDate": due.isoformat(),
            "notes": notes,
            "isOwner": owner,
        })
        ids[name] = m.id

    if not store.list_transactions():
        store.create_transaction({
            "date": today.isoformat(), "amount": 18.99, "memberId": None,
            "description": "YouTube Premium Monthly Subscription Cost", "type": "Outgoing",
            "category": "Subscription", "paymentMethod": "Credit Card",
        })
        store.create_transaction({
            "date": today.isoformat(), "amount": 3.79, "memberId": ids["You (Owner)"],
            "description": "Your contribution", "type": "Incoming",
            "category": "Member Payment", "paymentMethod": "Bank Transfer",
        })
        store.create_transaction({
            "date": "2025-07-20", "amount": 3.79, "memberId": ids["Charlie"],
            "description": "Charlie's monthly payment", "type": "Incoming",
            "category": "Member Payment", "paymentMethod": "E-Wallet",
        })
        store.create_transaction({
            "date": "2025-01-15", "amount": 45.48, "memberId": ids["Bob"],
            "description": "Bob's yearly payment", "type": "Incoming",
            "category": "Member Payment", "paymentMethod": "Bank Transfer",
        })

    if not store.list_cards():
        card = store.create_card({
            "cardName": "YouTube Card", "lastFourDigits": "1234", "expiryDate": "12/28",
            "cardType": "Visa", "bankName": "Maybank", "cardHolderName": "John Doe",
            "notes": "Main card for YouTube Premium",
        })
        store.add_card_transaction(card.id, {
            "date": today.isoformat(), "amount": 50.0, "description": "Initial deposit",
            "type": "Deposit", "category": "Manual Deposit",
        })
        store.add_card_transaction(card.id, {
            "date": today.isoformat(), "amount": 18.99, "description": "YouTube Premium deduction",
            "type": "Withdrawal", "category": "YouTube Premium",
        })
