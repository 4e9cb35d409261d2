"""
errors.py
Error taxonomy shared by the store, the REST API and the Streamlit UI.
"""

from __future__ import annotations


class TrackerError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TrackerError):
    """Missing or malformed input. `errors` keeps every field message."""

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class ConflictError(TrackerError):
    pass


class NotFoundError(TrackerError):
    status_code = 404


class BusinessRuleError(TrackerError):
    pass


class InsufficientBalanceError(BusinessRuleError):
    def __init__(self, balance: float, amount: float):
        super().__init__("Insufficient balance")
        self.balance = balance
        self.amount = amount
