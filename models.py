"""
models.py
Domain records (dataclasses) + the enumerations and defaults they use.
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from datetime import date

PAYMENT_TYPES = ("Monthly", "Yearly")
PAYMENT_STATUSES = ("Paid", "Unpaid")

# Months to roll next_due_date forward when a member pays
CADENCE_MONTHS = {
    "Monthly": 1,
    "Yearly": 12,
}

DEFAULT_MONTHLY_AMOUNT = 3.79
DEFAULT_YEARLY_AMOUNT = 45.48

TRANSACTION_TYPES = ("Incoming", "Outgoing")
TRANSACTION_CATEGORIES = ("Subscription", "Member Payment", "General", "Refund", "Other")
PAYMENT_METHODS = ("Bank Transfer", "Cash", "Credit Card", "E-Wallet", "Other")
RECORD_STATUSES = ("Completed", "Pending", "Failed", "Cancelled")

CARD_TYPES = ("Visa", "Mastercard", "American Express", "Other")
CARD_TRANSACTION_TYPES = ("Deposit", "Withdrawal")
CARD_TRANSACTION_CATEGORIES = ("YouTube Premium", "Manual Deposit", "Automatic Payment", "Refund", "Other")
CARD_STATUSES = ("Active", "Expiring Soon", "Expired", "Inactive")

DEFAULT_MONTHLY_LIMIT = 1000.0
DEFAULT_SUBSCRIPTION_COST = 18.99

CURRENCY_PREFIX = "RM"

# Where "money needed" reads the subscription cost from
COST_SOURCES = ("settings", "transaction")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


class _Record:
    """Row <-> record <-> camelCase JSON plumbing shared by all records."""

    @classmethod
    def from_row(cls, row):
        data = dict(row)
        kwargs = {}
        for f in fields(cls):
            if f.name in data:
                value = data[f.name]
                if f.type == "bool" and value is not None:
                    value = bool(value)
                kwargs[f.name] = value
        return cls(**kwargs)

    def base_dict(self) -> dict:
        return {_camel(f.name): getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class Member(_Record):
    id: str | None
    name: str
    payment_type: str  # Monthly / Yearly
    payment_status: str  # Paid / Unpaid
    last_payment_date: str
    next_due_date: str
    notes: str = ""
    is_owner: bool = False
    monthly_amount: float = DEFAULT_MONTHLY_AMOUNT
    yearly_amount: float = DEFAULT_YEARLY_AMOUNT
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def current_amount(self) -> float:
        return self.yearly_amount if self.payment_type == "Yearly" else self.monthly_amount

    def is_overdue(self, today: date | None = None) -> bool:
        today = today or date.today()
        return self.payment_status == "Unpaid" and today > date.fromisoformat(self.next_due_date)

    def days_until_due(self, today: date | None = None) -> int:
        today = today or date.today()
        return (date.fromisoformat(self.next_due_date) - today).days

    def to_dict(self, today: date | None = None) -> dict:
        d = self.base_dict()
        d["currentAmount"] = self.current_amount
        d["isOverdue"] = self.is_overdue(today)
        d["daysUntilDue"] = self.days_until_due(today)
        return d


@dataclass(frozen=True)
class Transaction(_Record):
    id: str | None
    date: str
    amount: float
    member_id: str | None  # None for general costs (the subscription itself)
    description: str
    type: str  # Incoming / Outgoing
    category: str = "Other"
    payment_method: str = "Other"
    status: str = "Completed"
    receipt_number: str | None = None
    notes: str = ""
    member_name: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def formatted_amount(self) -> str:
        return f"{CURRENCY_PREFIX}{self.amount:.2f}"

    def to_dict(self) -> dict:
        d = self.base_dict()
        d["formattedAmount"] = self.formatted_amount
        return d


@dataclass(frozen=True)
class CardDetail(_Record):
    id: str | None
    card_name: str
    last_four_digits: str
    expiry_date: str  # MM/YY
    card_type: str = "Other"
    bank_name: str = ""
    card_holder_name: str = ""
    is_active: bool = True
    notes: str = ""
    monthly_limit: float = DEFAULT_MONTHLY_LIMIT
    current_balance: float = 0.0
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def masked_card_number(self) -> str:
        return f"**** **** **** {self.last_four_digits}"

    def status(self, today: date | None = None) -> str:
        # local import: ledger depends on models
        from ledger import card_status

        return card_status(self.expiry_date, self.is_active, today)

    def to_dict(self, today: date | None = None) -> dict:
        d = self.base_dict()
        d["maskedCardNumber"] = self.masked_card_number
        d["status"] = self.status(today)
        return d


@dataclass(frozen=True)
class CardTransaction(_Record):
    id: str | None
    card_id: str
    date: str
    amount: float
    description: str
    type: str  # Deposit / Withdrawal
    balance_after: float
    category: str = "Other"
    status: str = "Completed"
    reference_number: str | None = None
    notes: str = ""
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def formatted_amount(self) -> str:
        return f"{CURRENCY_PREFIX}{self.amount:.2f}"

    @property
    def formatted_balance_after(self) -> str:
        return f"{CURRENCY_PREFIX}{self.balance_after:.2f}"

    def to_dict(self) -> dict:
        d = self.base_dict()
        d["formattedAmount"] = self.formatted_amount
        d["formattedBalanceAfter"] = self.formatted_balance_after
        return d


@dataclass(frozen=True)
class AppSettings(_Record):
    youtube_premium_cost: float
    last_updated: str

    def to_dict(self) -> dict:
        return self.base_dict()
