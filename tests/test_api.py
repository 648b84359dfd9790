from datetime import datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from database import get_store
from main import app, get_sessions, registry
from session import SessionRegistry

HEADERS = {"X-User-Id": "u1"}


@pytest.fixture
def client(store):
    sessions = SessionRegistry()
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_sessions] = lambda: sessions
    with TestClient(app) as c:
        yield c
        c.delete("/session", headers=HEADERS)
    app.dependency_overrides.clear()


def start(client, cafe_id="jokopi"):
    res = client.post("/session", json={"cafeId": cafe_id}, headers=HEADERS)
    assert res.status_code == 200, res.text
    return res.json()


def reserve(client, **overrides):
    body = {"cafeId": "jokopi", "cafeName": "Jokopi", "userName": "Budi", "date": "20/10/2026", "time": "19:00", "totalGuests": 2}
    body.update(overrides)
    return client.post("/reservations", json=body, headers=HEADERS)


def test_root_and_store_status(client):
    assert client.get("/").json() == {"message": "Brewspot API running"}
    assert client.get("/test").json()["connection_status"] == "ok"


def test_requests_without_identity_are_rejected(client):
    assert client.post("/session", json={"cafeId": "jokopi"}).status_code == 401


def test_cafe_catalogue(client):
    cafes = client.get("/cafes").json()
    assert [c["name"] for c in cafes] == ["Jokopi", "Kopi Kita"]
    assert client.get("/cafes/jokopi").json()["openingHours"] == "08:00 - 22:00"
    assert client.get("/cafes/missing").status_code == 404
    menu = client.get("/cafes/jokopi/menu").json()
    assert [m["id"] for m in menu] == ["croissant", "latte"]


def test_table_status_is_filtered_and_sorted(client):
    tables = client.get("/cafes/jokopi/tables").json()
    assert tables == [
        {"id": "T1", "booked": False},
        {"id": "T2", "booked": True},
        {"id": "T10", "booked": False},
    ]


def test_session_shows_live_tables_and_selection(client):
    session = start(client)
    assert [t["id"] for t in session["tables"]] == ["T1", "T2", "T10"]
    assert session["canProceed"] is False

    res = client.post("/session/tables/T10/toggle", headers=HEADERS).json()
    res = client.post("/session/tables/T1/toggle", headers=HEADERS).json()
    assert res["selected"] == ["T1", "T10"]

    res = client.post("/session/tables/T2/toggle", headers=HEADERS).json()
    assert res["selected"] == ["T1", "T10"]
    assert client.post("/session/tables/KASIR/toggle", headers=HEADERS).status_code == 400

    res = client.delete("/session/tables", headers=HEADERS).json()
    assert res["selected"] == []


def test_session_endpoints_need_an_open_session(client):
    assert client.get("/session", headers=HEADERS).status_code == 404
    start(client)
    assert client.delete("/session", headers=HEADERS).json() == {"status": "closed"}
    assert client.get("/session", headers=HEADERS).status_code == 404


def test_incomplete_reservation_is_a_400(client, store):
    start(client)
    client.post("/session/tables/T1/toggle", headers=HEADERS)
    store.calls.clear()
    res = reserve(client, userName="")
    assert res.status_code == 400
    assert not [c for c in store.calls if c[0] == "create_document"]


def test_backend_failure_on_reservation_is_a_502_with_backend_message(client, store):
    start(client)
    client.post("/session/tables/T1/toggle", headers=HEADERS)
    store.fail("create_document", "reservations", message="PERMISSION_DENIED")
    res = reserve(client)
    assert res.status_code == 502
    assert res.json()["detail"] == "PERMISSION_DENIED"


def test_full_reservation_and_checkout_flow(client, store):
    start(client)
    client.post("/session/tables/T1/toggle", headers=HEADERS)
    client.post("/session/tables/T10/toggle", headers=HEADERS)

    res = reserve(client)
    assert res.status_code == 200, res.text
    reservation_id = res.json()["reservationId"]
    assert client.get("/session", headers=HEADERS).json()["selected"] == []

    record = client.get(f"/reservations/{reservation_id}", headers=HEADERS).json()
    assert record["selectedTables"] == ["T1", "T10"]

    client.post("/cart/items", json={"menuItemId": "latte"}, headers=HEADERS)
    cart = client.post("/cart/items", json={"menuItemId": "latte"}, headers=HEADERS).json()
    assert cart[0]["quantity"] == 2
    assert client.post("/cart/items", json={"menuItemId": "tea"}, headers=HEADERS).status_code == 400

    vouchers = client.get("/vouchers").json()
    assert vouchers[0]["minimumSpend"] in ("50000", 50000)
    client.post("/session/voucher", json={"voucherId": "hemat10"}, headers=HEADERS)

    quote = client.get("/checkout/quote", headers=HEADERS).json()
    assert Decimal(str(quote["grandTotal"])) == Decimal("21000")

    res = client.post("/checkout", json={"reservationId": reservation_id}, headers=HEADERS)
    assert res.status_code == 400

    assert client.get("/payment-methods").json()[0]["imageUrl"] == "https://img.example/qris.png"
    client.post("/session/payment-method", json={"paymentMethodId": "qris"}, headers=HEADERS)
    res = client.post("/checkout", json={"reservationId": reservation_id}, headers=HEADERS)
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["state"] == "done"
    assert body["failedTables"] == []

    assert store.collections["table"]["jokopi-T1"]["booked"] is True
    assert client.get("/cart", headers=HEADERS).json() == []

    history = client.get("/history", headers=HEADERS).json()
    assert len(history) == 1
    assert history[0]["reservationId"] == reservation_id
    assert history[0]["cafeName"] == "Jokopi"


def test_failed_checkout_can_be_retried(client, store):
    start(client)
    client.post("/session/tables/T1/toggle", headers=HEADERS)
    reservation_id = reserve(client).json()["reservationId"]
    client.post("/cart/items", json={"menuItemId": "croissant"}, headers=HEADERS)
    client.post("/session/payment-method", json={"paymentMethodId": "qris"}, headers=HEADERS)

    assert client.post("/checkout/retry", headers=HEADERS).status_code == 409

    store.fail("create_document", "history", message="UNAVAILABLE")
    res = client.post("/checkout", json={"reservationId": reservation_id}, headers=HEADERS)
    assert res.status_code == 502
    assert res.json()["state"] == "failed_order"
    assert res.json()["error"] == "UNAVAILABLE"

    store.clear_failures()
    res = client.post("/checkout/retry", headers=HEADERS)
    assert res.status_code == 200
    assert res.json()["state"] == "done"


def test_checkout_of_someone_elses_reservation_fails(client, store):
    start(client)
    client.post("/session/tables/T1/toggle", headers=HEADERS)
    reservation_id = reserve(client).json()["reservationId"]

    other = {"X-User-Id": "u2"}
    client.post("/session", json={"cafeId": "jokopi"}, headers=other)
    client.post("/cart/items", json={"menuItemId": "latte"}, headers=other)
    client.post("/session/payment-method", json={"paymentMethodId": "qris"}, headers=other)
    assert client.get(f"/reservations/{reservation_id}", headers=other).status_code == 404

    res = client.post("/checkout", json={"reservationId": reservation_id}, headers=other)

    assert res.status_code == 502
    assert res.json()["state"] == "failed_order"
    assert store.collections["table"]["jokopi-T1"]["booked"] is False
    assert store.docs("history") == []
    client.delete("/session", headers=other)


def test_history_can_be_searched_by_cafe_name(client, store):
    for idx, cafe_name in enumerate(("Jokopi", "Kopi Kita")):
        store.put("history", f"h{idx}", {
            "reservationId": f"r{idx}", "cafeId": "jokopi", "cafeName": cafe_name, "totalPrice": "8500",
            "appFeeAmount": "2000", "downPaymentAmount": "8500", "userId": "u1", "status": "paid",
            "timestamp": datetime(2026, 10, 1 + idx, tzinfo=timezone.utc),
        })

    assert [h["cafeName"] for h in client.get("/history", headers=HEADERS).json()] == ["Kopi Kita", "Jokopi"]
    res = client.get("/history", params={"q": "kita"}, headers=HEADERS).json()
    assert [h["cafeName"] for h in res] == ["Kopi Kita"]


def test_table_stream_pushes_sorted_seats_on_every_change(client, store):
    with client.websocket_connect("/ws/cafes/jokopi/tables") as ws:
        assert ws.receive_json() == [
            {"id": "T1", "booked": False},
            {"id": "T2", "booked": True},
            {"id": "T10", "booked": False},
        ]
        client.portal.call(store.update_document, "table", {"cafeId": "jokopi", "tableId": "T1"}, {"booked": True})
        assert ws.receive_json()[0] == {"id": "T1", "booked": True}


def test_shutdown_closes_abandoned_sessions(store):
    app.dependency_overrides[get_store] = lambda: store
    try:
        with TestClient(app) as c:
            start(c)
            session = registry.get("u1")
            assert session.feed.active
        assert registry.get("u1") is None
        assert not session.feed.active
    finally:
        app.dependency_overrides.clear()
