import pytest

from store import FinanceStore


@pytest.fixture
def store(tmp_path):
    return FinanceStore.open(tmp_path / "ytracker-test.db")


@pytest.fixture
def member_payload():
    def make(name="Alice", **overrides):
        payload = {
            "name": name,
            "paymentType": "Monthly",
            "paymentStatus": "Unpaid",
            "lastPaymentDate": "2025-07-01",
            "nextDueDate": "2025-08-01",
        }
        payload.update(overrides)
        return payload

    return make


@pytest.fixture
def card(store):
    return store.create_card({"cardName": "YouTube Card", "lastFourDigits": "1234", "expiryDate": "12/35"})
