# tests/test_ledger_api.py
"""HTTP surface of ledger_service: payloads, status codes and the {"error": ...} shape."""

import pytest

from .conftest import USER_ID


def get_current_balance(client, user_id=USER_ID):
    r = client.get(f"/balance/{user_id}")
    assert r.status_code == 200, r.text
    return r.json()["balance"]


def add_expense(client, amount, title="Lunch", category="Food", user_id=USER_ID):
    payload = {"userId": user_id, "title": title, "category": category, "amount": amount}
    return client.post("/expenses", json=payload)


def test_unknown_balance_is_404(ledger_client):
    r = ledger_client.get("/balance/999")
    assert r.status_code == 404
    assert r.json() == {"error": "Balance not found for the given user ID"}


def test_deposit_then_read_balance(ledger_client):
    r = ledger_client.post(f"/balance/{USER_ID}", json={"added_balance": 150.75})

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["message"] == "Balance updated and history recorded successfully"
    assert body["new_balance"] == pytest.approx(150.75)
    assert get_current_balance(ledger_client) == pytest.approx(150.75)


@pytest.mark.parametrize("payload", [{"added_balance": 0}, {"added_balance": -10}, {}, {"added_balance": "ten"}, {"added_balance": 1e12}])
def test_invalid_deposit_is_400(ledger_client, payload):
    r = ledger_client.post(f"/balance/{USER_ID}", json=payload)
    assert r.status_code == 400
    assert "error" in r.json()


def test_set_balance(ledger_client, funded_user):
    r = ledger_client.put(f"/balance/{funded_user}", json={"new_balance": 40})
    assert r.status_code == 200, r.text
    assert r.json()["new_balance"] == pytest.approx(40)

    history = ledger_client.get(f"/balance/history/{funded_user}").json()["history"]
    assert history[0]["remaining_balance"] == pytest.approx(100)
    assert history[0]["added_balance"] == pytest.approx(-60)
    assert history[0]["new_balance"] == pytest.approx(40)
    assert "history_date" in history[0]


def test_set_balance_errors(ledger_client, funded_user):
    assert ledger_client.put(f"/balance/{funded_user}", json={"new_balance": -1}).status_code == 400
    assert ledger_client.put("/balance/999", json={"new_balance": 10}).status_code == 404


def test_history_pagination(ledger_client):
    for amount in range(1, 13):
        ledger_client.post(f"/balance/{USER_ID}", json={"added_balance": amount})

    r = ledger_client.get(f"/balance/history/{USER_ID}", params={"page": 2, "limit": 10})

    assert r.status_code == 200
    body = r.json()
    assert body["pagination"] == {"total": 12, "page": 2, "limit": 10, "totalPages": 2}
    assert [h["added_balance"] for h in body["history"]] == [2, 1]


def test_empty_history_is_404(ledger_client):
    r = ledger_client.get("/balance/history/999")
    assert r.status_code == 404
    assert r.json() == {"error": "No history found for the given user ID"}


def test_history_invalid_paging_is_400(ledger_client):
    assert ledger_client.get(f"/balance/history/{USER_ID}", params={"page": 0}).status_code == 400
    assert ledger_client.get(f"/balance/history/{USER_ID}", params={"limit": "x"}).status_code == 400


def test_expense_lifecycle(ledger_client, funded_user):
    """Add 25, raise it to 40, then delete it: 100 -> 75 -> 60 -> 100."""
    r = add_expense(ledger_client, 25)
    assert r.status_code == 200, r.text
    assert r.json() == {"message": "Expense added and balance updated successfully", "new_balance": 75.0}

    listing = ledger_client.get(f"/expenses/{funded_user}").json()
    assert listing["pagination"]["total"] == 1
    assert listing["totalAmount"] == pytest.approx(25)
    expense_id = listing["data"][0]["id"]

    r = ledger_client.put(
        f"/expenses/{expense_id}",
        json={"userId": funded_user, "title": "Lunch", "category": "Food", "amount": 40},
    )
    assert r.status_code == 200, r.text
    assert r.json() == {"message": "Expense updated and balance adjusted successfully"}
    assert get_current_balance(ledger_client) == pytest.approx(60)

    detail = ledger_client.get(f"/expenses/detail/{expense_id}").json()
    assert detail["amount"] == pytest.approx(40)

    r = ledger_client.delete(f"/expenses/{expense_id}")
    assert r.status_code == 200
    assert r.json()["new_balance"] == pytest.approx(100)
    assert ledger_client.get(f"/expenses/detail/{expense_id}").status_code == 404


def test_add_expense_validation(ledger_client, funded_user):
    r = ledger_client.post("/expenses", json={"userId": funded_user, "category": "Food", "amount": 5})
    assert r.status_code == 400
    assert r.json() == {"error": "Please fill out the title field"}

    r = ledger_client.post("/expenses", json={"title": "Lunch", "category": "Food", "amount": 5})
    assert r.status_code == 400
    assert r.json() == {"error": "Not Authorized"}


def test_add_expense_without_balance_is_404(ledger_client):
    r = add_expense(ledger_client, 10, user_id=42)
    assert r.status_code == 404
    assert r.json() == {"error": "Balance not found for the user"}


def test_update_missing_expense_is_404(ledger_client, funded_user):
    r = ledger_client.put(
        "/expenses/777",
        json={"userId": funded_user, "title": "Lunch", "category": "Food", "amount": 5},
    )
    assert r.status_code == 404


def test_delete_missing_expense_is_404(ledger_client):
    assert ledger_client.delete("/expenses/777").status_code == 404


def test_list_expenses_filter_and_paging_errors(ledger_client, funded_user):
    add_expense(ledger_client, 3, title="Coffee")
    add_expense(ledger_client, 7, title="Taxi", category="Transport")

    body = ledger_client.get(f"/expenses/{funded_user}", params={"filterBy": "taxi"}).json()
    assert [e["title"] for e in body["data"]] == ["Taxi"]
    assert body["totalAmount"] == pytest.approx(7)

    assert ledger_client.get(f"/expenses/{funded_user}", params={"limit": 0}).status_code == 400


def test_purge_user_endpoint(ledger_client, funded_user):
    add_expense(ledger_client, 10)

    r = ledger_client.delete(f"/users/{funded_user}")

    assert r.status_code == 204
    assert ledger_client.get(f"/balance/{funded_user}").status_code == 404


def test_unknown_route_uses_error_shape(ledger_client):
    r = ledger_client.get("/nope")
    assert r.status_code == 404
    assert "error" in r.json()


def test_health_and_metrics(ledger_client):
    r = ledger_client.get("/health")
    assert r.json() == {"status": "ok", "service": "ledger_service", "database": "ok"}

    ledger_client.get("/balance/999")
    metrics = ledger_client.get("/metrics").text
    assert "ledger_requests_total" in metrics
    assert 'endpoint="/balance/{user_id}"' in metrics
