import pytest

from errors import BusinessRuleError, ConflictError, InsufficientBalanceError


def _blob():
    return {
        "members": [
            {"id": "member-1", "name": "You (Owner)", "paymentType": "Monthly", "paymentStatus": "Paid",
             "lastPaymentDate": "2025-08-01", "nextDueDate": "2025-09-01", "notes": "Your own contribution"},
            {"id": "member-2", "name": "Alice", "paymentType": "Monthly", "paymentStatus": "Unpaid",
             "lastPaymentDate": "2025-07-01", "nextDueDate": "2025-08-01", "notes": "Friend from college"},
            {"id": "member-3", "name": "Bob", "paymentType": "Yearly", "paymentStatus": "Paid",
             "lastPaymentDate": "2025-01-15", "nextDueDate": "2026-01-15", "notes": "Brother"},
        ],
        "transactions": [
            {"id": "txn-1", "date": "2025-08-01", "amount": 18.99, "memberId": None,
             "description": "YouTube Premium Monthly Subscription Cost", "type": "Outgoing"},
            {"id": "txn-2", "date": "2025-08-01", "amount": 3.79, "memberId": "member-1",
             "description": "Your contribution", "type": "Incoming"},
            {"id": "txn-4", "date": "2025-01-15", "amount": 45.48, "memberId": "member-3",
             "description": "Bob's yearly payment", "type": "Incoming"},
        ],
        "cardDetail": {"id": "card-1", "cardName": "YouTube Card", "lastFourDigits": "1234",
                       "expiryDate": "12/35", "notes": "Main card for YouTube Premium"},
        "cardTransactions": [
            {"id": "card-txn-1", "date": "2025-08-01", "amount": 50.0, "description": "Initial deposit",
             "type": "Deposit"},
            {"id": "card-txn-2", "date": "2025-08-01", "amount": 18.99, "description": "YouTube Premium deduction",
             "type": "Withdrawal"},
        ],
        "settings": {"id": "settings", "youtubePremiumCost": 18.99, "lastUpdated": "2025-08-01"},
    }


def test_import_client_blob(store):
    store.import_state(_blob())

    assert [m.id for m in store.list_members()] == ["member-2", "member-3", "member-1"]
    assert store.get_transaction("txn-2").member_name == "You (Owner)"
    card = store.get_card("card-1")
    assert card.current_balance == pytest.approx(31.01)
    assert [t.balance_after for t in store.list_card_transactions("card-1")] == pytest.approx([50.0, 31.01])
    assert store.money_summary()["moneyNeeded"] == 0.0
    assert store.transaction_stats()["netBalance"] == pytest.approx(3.79 + 45.48 - 18.99)


def test_export_then_import_keeps_balances(store):
    store.import_state(_blob())
    exported = store.export_state()
    assert set(exported) == {"members", "transactions", "cardDetail", "cardTransactions", "cards", "settings"}
    assert exported["cardDetail"]["currentBalance"] == pytest.approx(31.01)

    store.import_state(exported)
    assert store.get_card("card-1").current_balance == pytest.approx(31.01)
    assert len(store.list_transactions()) == 3


def test_opening_balance_survives_export(store):
    card = store.create_card({"cardName": "Funded", "lastFourDigits": "4040", "expiryDate": "12/35",
                              "currentBalance": 40})
    store.add_card_transaction(card.id, {"date": "2025-08-01", "amount": 10, "description": "Fee",
                                         "type": "Withdrawal"})
    store.import_state(store.export_state())
    assert store.get_card(card.id).current_balance == pytest.approx(30.0)
    assert [t.balance_after for t in store.list_card_transactions(card.id)] == pytest.approx([40.0, 30.0])


def test_invalid_import_leaves_data_untouched(store):
    store.import_state(_blob())
    bad = _blob()
    bad["transactions"].append({"date": "2025-08-02", "amount": 3.79, "memberId": None,
                                "description": "nobody", "type": "Incoming"})
    with pytest.raises(BusinessRuleError):
        store.import_state(bad)
    assert len(store.list_members()) == 3

    overdraw = _blob()
    overdraw["cardTransactions"].append({"date": "2025-08-03", "amount": 100, "description": "too much",
                                         "type": "Withdrawal"})
    with pytest.raises(InsufficientBalanceError):
        store.import_state(overdraw)
    assert store.get_card("card-1").current_balance == pytest.approx(31.01)


def test_overdraw_without_recorded_balance_is_rejected(store):
    blob = _blob()
    blob["cardTransactions"] = [
        {"date": "2025-08-01", "amount": 18.99, "description": "Premium", "type": "Withdrawal"},
    ]
    with pytest.raises(InsufficientBalanceError):
        store.import_state(blob)
    assert store.list_cards() == []


def test_recorded_balance_never_covers_an_overdraw(store):
    blob = _blob()
    blob["cardDetail"]["currentBalance"] = 500
    blob["cardTransactions"] = [
        {"date": "2025-08-01", "amount": 10, "description": "Top up", "type": "Deposit"},
        {"date": "2025-08-02", "amount": 60, "description": "Premium", "type": "Withdrawal"},
    ]
    with pytest.raises(InsufficientBalanceError):
        store.import_state(blob)


def test_recorded_balance_above_ledger_becomes_opening_deposit(store):
    blob = _blob()
    blob["cardDetail"]["currentBalance"] = 40
    blob["cardTransactions"] = [
        {"date": "2025-08-02", "amount": 10, "description": "Top up", "type": "Deposit"},
    ]
    store.import_state(blob)

    txns = store.list_card_transactions("card-1")
    assert [(t.description, t.amount) for t in txns] == [("Opening balance", 30.0), ("Top up", 10.0)]
    assert [t.balance_after for t in txns] == [30.0, 40.0]
    assert store.get_card("card-1").current_balance == 40.0
    assert store.money_summary()["cardBalance"] == 40.0


def test_every_card_survives_a_round_trip(store):
    first = store.create_card({"cardName": "A", "lastFourDigits": "1111", "expiryDate": "12/35"})
    second = store.create_card({"cardName": "B", "lastFourDigits": "2222", "expiryDate": "12/35"})
    store.add_card_transaction(second.id, {"date": "2025-08-01", "amount": 25, "description": "Top up",
                                           "type": "Deposit"})

    store.import_state(store.export_state())

    assert sorted(c.card_name for c in store.list_cards()) == ["A", "B"]
    assert store.get_card(second.id).current_balance == 25.0
    assert len(store.list_card_transactions(second.id)) == 1
    assert store.list_card_transactions(first.id) == []
    assert store.primary_card().id == first.id


@pytest.mark.parametrize("section,index", [("members", 1), ("transactions", 1), ("cardTransactions", 1)])
def test_duplicate_ids_are_rejected_before_writing(store, section, index):
    store.import_state(_blob())
    bad = _blob()
    bad[section][index]["id"] = bad[section][0]["id"]
    with pytest.raises(ConflictError):
        store.import_state(bad)
    assert len(store.list_members()) == 3
    assert len(store.list_card_transactions("card-1")) == 2


def test_duplicate_cards_are_rejected(store):
    bad = store.export_state()
    card = {"cardName": "A", "lastFourDigits": "1111", "expiryDate": "12/35", "transactions": []}
    bad["cards"] = [dict(card, id="c1"), dict(card, id="c1", lastFourDigits="2222")]
    with pytest.raises(ConflictError):
        store.import_state(bad)
    bad["cards"] = [dict(card, id="c1"), dict(card, id="c2")]
    with pytest.raises(ConflictError):
        store.import_state(bad)
