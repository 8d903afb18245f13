from __future__ import annotations


def _rule(client, **overrides):
    payload = {
        "name": "Conta",
        "type": "EXPENSE",
        "amount": 100,
        "frequency": "MONTHLY",
        "start_date": "2025-01-01",
    }
    payload.update(overrides)
    res = client.post("/api/recurring-rules", json=payload)
    assert res.status_code == 201, res.text
    return res.json()


def _bill(client, **overrides):
    payload = {"name": "Boleto", "amount": 250, "due_day": 15, "current_month": 1, "current_year": 2025}
    payload.update(overrides)
    res = client.post("/api/bills", json=payload)
    assert res.status_code == 201, res.text
    return res.json()


def _list(client, month, year, **params):
    res = client.get("/api/obligations", params={"month": month, "year": year, **params})
    assert res.status_code == 200, res.text
    return res.json()


def test_installment_example(client):
    rule = _rule(
        client,
        name="Notebook",
        amount=450,
        day_of_month=10,
        start_date="2025-01-10",
        is_installment=True,
        total_installments=12,
    )
    res = client.post(
        f"/api/obligations/{rule['id']}/settle",
        json={"is_recurring": True, "month": 1, "year": 2025},
    )
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["rule"]["current_installment"] == 2
    assert body["rule"]["next_due_date"] == "2025-02-10"
    assert body["transaction"]["amount"] == 450
    assert body["transaction"]["installment_number"] == 1
    assert body["payment"]["month"] == 1

    [march] = _list(client, 3, 2025)
    assert march["installment_number"] == 2
    assert march["period_installment"] == 3
    assert march["total_installments"] == 12
    assert march["is_paid"] is False

    [january] = _list(client, 1, 2025)
    assert january["is_paid"] is True
    assert january["urgency"] == "paid"
    assert january["amount_paid"] == 450

    assert _list(client, 1, 2026) == []


def test_urgency_and_ordering(client):
    for day in (20, 3, 10, 5, 7):
        _rule(client, name=f"Dia {day}", day_of_month=day)
    _bill(client, name="Boleto", due_day=6)

    items = _list(client, 1, 2025)
    assert [i["due_day"] for i in items] == [3, 5, 6, 7, 10, 20]
    assert [i["urgency"] for i in items] == ["overdue", "today", "soon", "soon", "upcoming", "normal"]
    assert [i["is_recurring"] for i in items] == [True, True, False, True, True, True]


def test_override_precedence_in_view(client):
    rule = _rule(client, amount=450, day_of_month=10)
    base = f"/api/recurring-rules/{rule['id']}/overrides"
    client.put(f"{base}/2025/2", json={"kind": "custom_amount", "amount": 300})
    client.put(f"{base}/2025/3", json={"kind": "skip"})
    client.put(f"{base}/2025/4", json={"kind": "partial_payment", "paid_amount": 150})

    [feb] = _list(client, 2, 2025)
    assert feb["amount"] == 300
    assert feb["nominal_amount"] == 450
    assert feb["override_kind"] == "custom_amount"
    assert feb["due_date"] == "2025-02-10"

    assert _list(client, 3, 2025) == []

    [apr] = _list(client, 4, 2025)
    assert apr["amount"] == 300
    assert apr["override_kind"] == "partial_payment"


def test_weekly_rule_is_one_obligation_per_month(client):
    _rule(client, name="Feira", amount=50, frequency="WEEKLY", day_of_week=1)
    [item] = _list(client, 1, 2025)
    assert item["occurrence_count"] == 4
    assert item["amount"] == 200
    assert item["due_date"] == "2025-01-06"


def test_status_filter(client):
    paid = _rule(client, name="Paga", day_of_month=2)
    _rule(client, name="Aberta", day_of_month=12)
    client.post(f"/api/obligations/{paid['id']}/settle", json={"is_recurring": True, "month": 1, "year": 2025})

    assert [i["name"] for i in _list(client, 1, 2025, status="paid")] == ["Paga"]
    assert [i["name"] for i in _list(client, 1, 2025, status="pending")] == ["Aberta"]
    assert client.get("/api/obligations", params={"status": "other"}).status_code == 422


def test_summary(client):
    paid = _rule(client, name="Luz", amount=200, day_of_month=2)
    _rule(client, name="Água", amount=80, day_of_month=3)
    _rule(client, name="Salário", type="INCOME", amount=5000, day_of_month=5)
    _bill(client, name="IPVA", amount=900, due_day=25)
    client.post(f"/api/obligations/{paid['id']}/settle", json={"is_recurring": True, "month": 1, "year": 2025})

    res = client.get("/api/obligations/summary", params={"month": 1, "year": 2025})
    assert res.status_code == 200
    body = res.json()
    assert body["total"] == 1180
    assert body["paid"] == 200
    assert body["pending"] == 980
    assert body["expected_income"] == 5000
    assert (body["paid_count"], body["pending_count"], body["overdue_count"], body["total_count"]) == (1, 2, 1, 3)


def test_upcoming_includes_overdue_and_next_days(client):
    _rule(client, name="Atrasada", day_of_month=2)
    _rule(client, name="Semana", day_of_month=9)
    _rule(client, name="Longe", day_of_month=28)
    res = client.get("/api/obligations/upcoming", params={"days": 7})
    assert res.status_code == 200
    assert [i["name"] for i in res.json()] == ["Atrasada", "Semana"]


def test_upcoming_crosses_into_next_month(client):
    _rule(client, name="Mensal", day_of_month=2, start_date="2025-01-03")
    res = client.get("/api/obligations/upcoming", params={"days": 30})
    assert [i["due_date"] for i in res.json()] == ["2025-02-02"]


def test_settle_twice_is_a_conflict(client):
    rule = _rule(client, day_of_month=10)
    url = f"/api/obligations/{rule['id']}/settle"
    assert client.post(url, json={"is_recurring": True, "month": 1, "year": 2025}).status_code == 200
    res = client.post(url, json={"is_recurring": True, "month": 1, "year": 2025})
    assert res.status_code == 409
    assert "already settled" in res.json()["detail"]


def test_settle_defaults_to_current_period(client):
    rule = _rule(client, day_of_month=10)
    res = client.post(f"/api/obligations/{rule['id']}/settle", json={"is_recurring": True})
    assert res.status_code == 200
    assert res.json()["payment"]["month"] == 1
    assert res.json()["payment"]["year"] == 2025


def test_settle_skipped_period_is_rejected(client):
    rule = _rule(client, day_of_month=10)
    client.put(f"/api/recurring-rules/{rule['id']}/overrides/2025/1", json={"kind": "skip"})
    res = client.post(f"/api/obligations/{rule['id']}/settle", json={"is_recurring": True, "month": 1, "year": 2025})
    assert res.status_code == 400


def test_settle_bill_through_obligations(client):
    bill = _bill(client)
    res = client.post(f"/api/obligations/{bill['id']}/settle", json={"is_recurring": False})
    assert res.status_code == 200
    assert res.json()["bill"]["is_paid"] is True
    assert res.json()["transaction"]["bill_id"] == bill["id"]
    assert client.post(f"/api/obligations/{bill['id']}/settle", json={"is_recurring": False}).status_code == 409

    [item] = _list(client, 1, 2025)
    assert item["urgency"] == "paid"


def test_other_user_cannot_settle_or_see(client, act_as, other_user):
    rule = _rule(client, day_of_month=10)
    bill = _bill(client)
    act_as(other_user)
    assert _list(client, 1, 2025) == []
    res = client.post(f"/api/obligations/{rule['id']}/settle", json={"is_recurring": True, "month": 1, "year": 2025})
    assert res.status_code == 404
    assert client.post(f"/api/obligations/{bill['id']}/settle", json={"is_recurring": False}).status_code == 404


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"
