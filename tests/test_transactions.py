import pytest

from errors import BusinessRuleError, NotFoundError, ValidationError


@pytest.fixture
def alice(store, member_payload):
    return store.create_member(member_payload("Alice"))


def _outgoing(day, amount=1.0, **kw):
    payload = {"date": day, "amount": amount, "description": f"cost {day}", "type": "Outgoing"}
    payload.update(kw)
    return payload


def test_create_transaction_defaults_and_member_name(store, alice):
    t = store.create_transaction({"date": "2025-07-20", "amount": "3.79", "memberId": alice.id,
                                  "description": "Alice pays", "type": "Incoming"})
    assert t.amount == 3.79
    assert t.category == "Other"
    assert t.payment_method == "Other"
    assert t.status == "Completed"
    assert t.member_name == "Alice"
    assert t.formatted_amount == "RM3.79"


def test_incoming_requires_member(store):
    with pytest.raises(BusinessRuleError):
        store.create_transaction({"date": "2025-07-20", "amount": 3.79, "memberId": None,
                                  "description": "who?", "type": "Incoming"})


def test_member_must_exist(store):
    with pytest.raises(NotFoundError):
        store.create_transaction({"date": "2025-07-20", "amount": 3.79, "memberId": "ghost",
                                  "description": "ghost pays", "type": "Incoming"})


@pytest.mark.parametrize("amount", [0, -5, "abc", None])
def test_amount_must_be_positive(store, amount):
    with pytest.raises(ValidationError):
        store.create_transaction(_outgoing("2025-08-01", amount=amount))


def test_enums_are_validated(store):
    with pytest.raises(ValidationError) as exc:
        store.create_transaction(_outgoing("2025-08-01", category="Food", paymentMethod="Cheque"))
    assert len(exc.value.errors) == 2


def test_update_revalidates_business_rule(store, alice):
    t = store.create_transaction({"date": "2025-07-20", "amount": 3.79, "memberId": alice.id,
                                  "description": "Alice pays", "type": "Incoming"})
    updated = store.update_transaction(t.id, {"amount": 4.0, "notes": "rounded up"})
    assert updated.amount == 4.0
    assert updated.notes == "rounded up"

    with pytest.raises(BusinessRuleError):
        store.update_transaction(t.id, {"memberId": None})
    assert store.get_transaction(t.id).member_id == alice.id


def test_delete_transaction(store):
    t = store.create_transaction(_outgoing("2025-08-01"))
    store.delete_transaction(t.id)
    with pytest.raises(NotFoundError):
        store.get_transaction(t.id)


def test_pagination_newest_first(store):
    for day in range(1, 13):
        store.create_transaction(_outgoing(f"2025-08-{day:02d}"))

    page = store.query_transactions(page=2, limit=5)
    assert page.total == 12
    assert page.pages == 3
    assert [t.date for t in page.items] == [f"2025-08-{d:02d}" for d in (7, 6, 5, 4, 3)]
    assert page.pagination() == {"page": 2, "limit": 5, "pages": 3}

    last = store.query_transactions(page=3, limit=5)
    assert len(last.items) == 2

    with pytest.raises(ValidationError):
        store.query_transactions(page=0)


def test_filters_by_date_range_category_and_member(store, alice):
    store.create_transaction(_outgoing("2025-07-01", category="Subscription"))
    store.create_transaction(_outgoing("2025-08-01", category="General"))
    store.create_transaction({"date": "2025-08-02", "amount": 3.79, "memberId": alice.id,
                              "description": "Alice pays", "type": "Incoming", "category": "Member Payment"})

    in_august = store.list_transactions(start_date="2025-08-01", end_date="2025-08-31")
    assert [t.date for t in in_august] == ["2025-08-02", "2025-08-01"]
    assert store.transactions_by_category("Subscription").total == 1
    assert [t.member_id for t in store.transactions_by_member(alice.id)] == [alice.id]
    with pytest.raises(NotFoundError):
        store.transactions_by_member("ghost")


def test_stats_net_balance(store, alice):
    store.create_transaction(_outgoing("2025-08-01", amount=18.99))
    store.create_transaction({"date": "2025-07-20", "amount": 3.79, "memberId": alice.id,
                              "description": "Alice pays", "type": "Incoming"})
    store.create_transaction({"date": "2025-01-15", "amount": 45.48, "memberId": alice.id,
                              "description": "Alice yearly", "type": "Incoming"})

    stats = store.transaction_stats()
    assert stats["totalIncome"] == pytest.approx(49.27)
    assert stats["totalOutgoing"] == pytest.approx(18.99)
    assert stats["netBalance"] == pytest.approx(49.27 - 18.99)

    ranged = store.transaction_stats("2025-07-01", "2025-08-31")
    assert ranged["netBalance"] == pytest.approx(ranged["totalIncome"] - ranged["totalOutgoing"])
    assert ranged["incomeCount"] == 1
