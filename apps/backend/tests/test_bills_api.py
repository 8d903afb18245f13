from __future__ import annotations


def test_create_defaults_to_current_period(client):
    res = client.post("/api/bills", json={"name": " IPTU ", "amount": 320.5, "due_day": 10})
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["name"] == "IPTU"
    assert (body["current_month"], body["current_year"]) == (1, 2025)
    assert body["category"] == "contas"
    assert body["is_paid"] is False
    assert body["is_renewable"] is True


def test_list_is_scoped_to_period(client):
    client.post("/api/bills", json={"name": "Janeiro", "amount": 100, "due_day": 20})
    client.post(
        "/api/bills",
        json={"name": "Fevereiro", "amount": 100, "due_day": 5, "current_month": 2, "current_year": 2025},
    )
    assert [b["name"] for b in client.get("/api/bills").json()] == ["Janeiro"]
    feb = client.get("/api/bills", params={"month": 2, "year": 2025}).json()
    assert [b["name"] for b in feb] == ["Fevereiro"]


def test_invalid_bills(client):
    assert client.post("/api/bills", json={"name": "", "amount": 10, "due_day": 5}).status_code == 400
    assert client.post("/api/bills", json={"name": "X", "amount": 0, "due_day": 5}).status_code == 400
    assert client.post("/api/bills", json={"name": "X", "amount": 10, "due_day": 32}).status_code == 400
    res = client.post("/api/bills", json={"name": "X", "amount": 10, "due_day": 5, "current_month": 3})
    assert res.status_code == 422
    res = client.post(
        "/api/bills",
        json={"name": "X", "amount": 10, "due_day": 5, "current_month": 13, "current_year": 2025},
    )
    assert res.status_code == 400
    assert client.get("/api/bills").json() == []


def test_renew_moves_to_next_period_and_clears_payment(client):
    bill = client.post(
        "/api/bills",
        json={"name": "Seguro", "amount": 90, "due_day": 31, "current_month": 12, "current_year": 2024},
    ).json()
    settled = client.post(f"/api/obligations/{bill['id']}/settle", json={"is_recurring": False})
    assert settled.status_code == 200

    res = client.post(f"/api/bills/{bill['id']}/renew")
    assert res.status_code == 200
    body = res.json()
    assert (body["current_month"], body["current_year"]) == (1, 2025)
    assert body["is_paid"] is False
    assert body["paid_at"] is None

    [item] = client.get("/api/obligations", params={"month": 1, "year": 2025}).json()
    assert item["due_date"] == "2025-01-31"
    assert item["urgency"] == "normal"


def test_renew_non_renewable_is_rejected(client):
    bill = client.post(
        "/api/bills", json={"name": "Multa", "amount": 130, "due_day": 8, "is_renewable": False}
    ).json()
    assert client.post(f"/api/bills/{bill['id']}/renew").status_code == 400


def test_delete(client):
    bill = client.post("/api/bills", json={"name": "Avulsa", "amount": 40, "due_day": 9}).json()
    assert client.delete(f"/api/bills/{bill['id']}").status_code == 204
    assert client.get("/api/bills").json() == []
    assert client.delete(f"/api/bills/{bill['id']}").status_code == 404


def test_other_user_cannot_touch_bill(client, act_as, other_user):
    bill = client.post("/api/bills", json={"name": "Privada", "amount": 40, "due_day": 9}).json()
    act_as(other_user)
    assert client.get("/api/bills").json() == []
    assert client.post(f"/api/bills/{bill['id']}/renew").status_code == 404
    assert client.delete(f"/api/bills/{bill['id']}").status_code == 404


def test_update_bill(client):
    bill = client.post("/api/bills", json={"name": "Internet", "amount": 99.9, "due_day": 8}).json()
    res = client.put(f"/api/bills/{bill['id']}", json={"name": "Fibra", "amount": 120, "due_day": 31})
    assert res.status_code == 200, res.text
    body = res.json()
    assert (body["name"], body["amount"], body["due_day"]) == ("Fibra", 120, 31)
    assert body["category"] == "contas"
    assert (body["current_month"], body["current_year"]) == (1, 2025)


def test_update_bill_rejects_invalid_values(client):
    bill = client.post("/api/bills", json={"name": "Gas", "amount": 60, "due_day": 8}).json()
    assert client.put(f"/api/bills/{bill['id']}", json={"amount": 0}).status_code == 400
    assert client.put(f"/api/bills/{bill['id']}", json={"name": "  "}).status_code == 400
    assert client.get("/api/bills").json()[0]["amount"] == 60


def test_update_other_users_bill(client, act_as, other_user):
    bill = client.post("/api/bills", json={"name": "Gas", "amount": 60, "due_day": 8}).json()
    act_as(other_user)
    assert client.put(f"/api/bills/{bill['id']}", json={"amount": 10}).status_code == 404
