import threading

import pytest

from api import FixedWindowLimiter, create_app


@pytest.fixture
def app(tmp_path):
    return create_app({"TESTING": True, "DB_FILE": str(tmp_path / "api.db")})


@pytest.fixture
def client(app):
    return app.test_client()


def _member(client, name="Alice", **kw):
    payload = {"name": name, "paymentType": "Monthly", "lastPaymentDate": "2025-07-01", "nextDueDate": "2025-08-01"}
    payload.update(kw)
    return client.post("/api/members", json=payload)


def test_health(client):
    body = client.get("/health").get_json()
    assert body["success"] is True
    assert "timestamp" in body


def test_member_crud(client):
    res = _member(client)
    assert res.status_code == 201
    member = res.get_json()["data"]
    assert member["paymentStatus"] == "Unpaid"
    assert member["currentAmount"] == 3.79

    dup = _member(client, "ALICE")
    assert dup.status_code == 400
    assert dup.get_json() == {"success": False, "error": "Member with this name already exists"}

    listed = client.get("/api/members?status=Unpaid").get_json()
    assert listed["count"] == 1

    updated = client.put(f"/api/members/{member['id']}", json={"notes": "college"}).get_json()["data"]
    assert updated["notes"] == "college"

    paid = client.patch(f"/api/members/{member['id']}/mark-paid").get_json()["data"]
    assert paid["paymentStatus"] == "Paid"

    stats = client.get("/api/members/stats").get_json()["data"]
    assert stats["total"] == 1 and stats["paid"] == 1

    deleted = client.delete(f"/api/members/{member['id']}").get_json()
    assert deleted["success"] is True
    assert client.get(f"/api/members/{member['id']}").status_code == 404


def test_validation_errors_are_listed(client):
    res = client.post("/api/members", json={"paymentType": "Monthly"})
    assert res.status_code == 400
    body = res.get_json()
    assert body["success"] is False
    assert "Name is required." in body["errors"]


def test_non_object_body_is_rejected(client):
    assert client.post("/api/members", json=[1, 2]).status_code == 400


def test_transactions_endpoints(client):
    member_id = _member(client).get_json()["data"]["id"]

    orphan = client.post("/api/transactions", json={"date": "2025-08-01", "amount": 3.79,
                                                    "description": "nobody", "type": "Incoming"})
    assert orphan.status_code == 400
    assert orphan.get_json()["error"] == "Incoming transactions must be associated with a member"

    client.post("/api/transactions", json={"date": "2025-08-01", "amount": 3.79, "memberId": member_id,
                                           "description": "Alice pays", "type": "Incoming",
                                           "category": "Member Payment"})
    client.post("/api/transactions", json={"date": "2025-08-02", "amount": 18.99,
                                           "description": "YouTube Premium", "type": "Outgoing",
                                           "category": "Subscription"})

    page = client.get("/api/transactions?page=1&limit=1").get_json()
    assert page["total"] == 2
    assert page["pagination"] == {"page": 1, "limit": 1, "pages": 2}
    assert page["data"][0]["date"] == "2025-08-02"

    stats = client.get("/api/transactions/stats?startDate=2025-08-01&endDate=2025-08-31").get_json()["data"]
    assert stats["netBalance"] == pytest.approx(3.79 - 18.99)
    assert len(stats["recentTransactions"]) == 2

    by_member = client.get(f"/api/transactions/member/{member_id}").get_json()
    assert by_member["count"] == 1
    assert by_member["data"][0]["memberName"] == "Alice"

    by_category = client.get("/api/transactions/category/Subscription").get_json()
    assert by_category["total"] == 1

    assert client.get("/api/transactions?page=abc").status_code == 400


def test_card_endpoints(client):
    res = client.post("/api/cards", json={"cardName": "YouTube Card", "lastFourDigits": "1234",
                                          "expiryDate": "12/35"})
    assert res.status_code == 201
    card_id = res.get_json()["data"]["id"]
    assert res.get_json()["data"]["maskedCardNumber"] == "**** **** **** 1234"

    assert client.post("/api/cards", json={"cardName": "Dup", "lastFourDigits": "1234",
                                           "expiryDate": "12/35"}).status_code == 400

    url = f"/api/cards/{card_id}/transactions"
    client.post(url, json={"date": "2025-08-01", "amount": 50, "description": "Initial deposit", "type": "Deposit"})
    tx = client.post(url, json={"date": "2025-08-01", "amount": 18.99, "description": "Premium",
                                "type": "Withdrawal"}).get_json()["data"]
    assert tx["balanceAfter"] == pytest.approx(31.01)
    assert tx["formattedBalanceAfter"] == "RM31.01"

    rejected = client.post(url, json={"date": "2025-08-02", "amount": 50, "description": "Too much",
                                      "type": "Withdrawal"})
    assert rejected.status_code == 400
    assert rejected.get_json()["error"] == "Insufficient balance"

    stats = client.get(f"/api/cards/{card_id}/stats").get_json()["data"]
    assert stats["currentBalance"] == pytest.approx(31.01)
    assert stats["totalDeposits"] == 50

    listed = client.get(url + "?type=Deposit").get_json()
    assert listed["total"] == 1

    assert client.delete(f"/api/cards/{card_id}").status_code == 400
    assert client.get("/api/cards/missing").status_code == 404
    assert client.get("/api/cards?isActive=true").get_json()["count"] == 1


def test_settings_and_dashboard(client):
    assert client.put("/api/settings", json={"youtubePremiumCost": 22.9}).get_json()["data"]["youtubePremiumCost"] == 22.9
    _member(client, "Soon", nextDueDate="2999-01-01")
    dash = client.get("/api/dashboard").get_json()["data"]
    assert dash["members"]["total"] == 1
    assert dash["money"]["subscriptionCost"] == 22.9
    assert dash["money"]["moneyNeeded"] == pytest.approx(22.9)
    assert set(dash) == {"members", "transactions", "cards", "money", "upcomingPayments"}


def test_unknown_route(client):
    res = client.get("/api/nothing-here")
    assert res.status_code == 404
    assert res.get_json() == {"success": False, "error": "Route not found"}


def test_rate_limit(tmp_path):
    app = create_app({"TESTING": True, "DB_FILE": str(tmp_path / "rl.db"), "RATE_LIMIT_MAX_REQUESTS": 2})
    client = app.test_client()
    assert client.get("/api/members").status_code == 200
    assert client.get("/api/members").status_code == 200
    limited = client.get("/api/members")
    assert limited.status_code == 429
    assert limited.get_json()["success"] is False
    assert client.get("/health").status_code == 200


def test_fixed_window_resets():
    now = [0.0]
    limiter = FixedWindowLimiter(1, 10, clock=lambda: now[0])
    assert limiter.allow("ip")
    assert not limiter.allow("ip")
    assert limiter.allow("other")
    now[0] = 10.0
    assert limiter.allow("ip")


def test_card_transaction_edit_and_delete_routes(client):
    card_id = client.post("/api/cards", json={"cardName": "YouTube Card", "lastFourDigits": "1234",
                                              "expiryDate": "12/35"}).get_json()["data"]["id"]
    other_id = client.post("/api/cards", json={"cardName": "Spare", "lastFourDigits": "5678",
                                               "expiryDate": "12/35"}).get_json()["data"]["id"]
    url = f"/api/cards/{card_id}/transactions"
    tx_id = client.post(url, json={"date": "2025-08-01", "amount": 50, "description": "Initial deposit",
                                   "type": "Deposit"}).get_json()["data"]["id"]

    assert client.get(f"{url}/{tx_id}").get_json()["data"]["amount"] == 50

    edited = client.put(f"{url}/{tx_id}", json={"description": "Salary top up", "category": "Manual Deposit"})
    assert edited.status_code == 200
    assert edited.get_json()["data"]["description"] == "Salary top up"
    assert edited.get_json()["data"]["balanceAfter"] == 50

    assert client.put(f"{url}/{tx_id}", json={"amount": 10}).status_code == 400
    assert client.get(f"/api/cards/{other_id}/transactions/{tx_id}").status_code == 404
    assert client.delete(f"/api/cards/{other_id}/transactions/{tx_id}").status_code == 404

    deleted = client.delete(f"{url}/{tx_id}")
    assert deleted.get_json() == {"success": True, "message": "Card transaction deleted successfully"}
    assert client.get(f"{url}/{tx_id}").status_code == 404
    assert client.get(f"/api/cards/{card_id}").get_json()["data"]["currentBalance"] == 50


def test_limiter_forgets_expired_clients():
    now = [0.0]
    limiter = FixedWindowLimiter(5, 10, clock=lambda: now[0])
    for ip in ("a", "b", "c"):
        limiter.allow(ip)
    assert len(limiter) == 3

    now[0] = 11.0
    assert limiter.allow("d")
    assert len(limiter) == 1


def test_limiter_counts_every_concurrent_request():
    limiter = FixedWindowLimiter(1000, 60)

    def hammer():
        for _ in range(100):
            limiter.allow("ip")

    threads = [threading.Thread(target=hammer) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    allowed = sum(limiter.allow("ip") for _ in range(200))
    assert allowed == 200
    assert not limiter.allow("ip")
