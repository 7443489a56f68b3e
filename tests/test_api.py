import json

import pytest

from shopfront.mockpay import SIGNATURE_HEADER

SHOE = {"id": "shoe-1", "name": "Trail Runner", "price_cents": 2000,
        "inventory": 5}


@pytest.fixture
def shop(client, admin_headers):
    r = client.post("/api/admin/products", json=SHOE, headers=admin_headers)
    assert r.status_code == 201
    return client


def checkout(client, *lines):
    return client.post("/checkout", json={
        "cart": [{"id": pid, "qty": qty} for pid, qty in lines]
    })


def deliver(client, order_id, kind="succeeded", signature=None):
    adapter = client.app.state.adapter
    psid = next(k for k, v in adapter.sessions.items()
                if v["order_id"] == order_id)
    payload = json.dumps(adapter.build_event(psid, kind)).encode()
    sig = signature if signature is not None else adapter.sign(payload)
    return client.post("/payment-callback", content=payload, headers={
        SIGNATURE_HEADER: sig, "content-type": "application/json",
    })


def test_healthz(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.text == "ok"


def test_inactive_products_are_hidden(shop, admin_headers):
    shop.post("/api/admin/products", headers=admin_headers, json={
        "id": "old-1", "name": "Old", "price_cents": 900, "inventory": 1,
        "active": False,
    })
    listed = shop.get("/api/products").json()
    assert [p["id"] for p in listed] == ["shoe-1"]
    assert shop.get("/api/products/old-1").status_code == 404
    assert shop.get("/api/products/shoe-1").json()["inventory"] == 5


def test_checkout_then_pay(shop):
    r = checkout(shop, ("shoe-1", 2))
    assert r.status_code == 200
    body = r.json()
    assert body["subtotal_cents"] == 4000
    assert body["url"].startswith("/mockpay/")

    order = shop.get(f"/api/orders/{body['order_id']}").json()
    assert order["status"] == "pending"
    assert order["paid_at"] is None

    r = deliver(shop, body["order_id"])
    assert r.status_code == 200
    assert r.json()["outcome"] == "applied"

    order = shop.get(f"/api/orders/{body['order_id']}").json()
    assert order["status"] == "paid"
    assert order["paid_at"] is not None
    assert shop.get("/api/products/shoe-1").json()["inventory"] == 3

    again = deliver(shop, body["order_id"])
    assert again.status_code == 200
    assert again.json()["outcome"] == "duplicate"
    assert shop.get("/api/products/shoe-1").json()["inventory"] == 3


def test_checkout_alias_route(shop):
    r = shop.post("/api/create-checkout-session",
                  json={"cart": [{"id": "shoe-1", "qty": 1}]})
    assert r.status_code == 200
    assert r.json()["subtotal_cents"] == 2000


def test_rejected_cart_lists_problems(shop, admin_headers):
    r = checkout(shop, ("shoe-1", 10), ("ghost", 1))
    assert r.status_code == 409
    problems = {p["product_id"]: p for p in r.json()["problems"]}
    assert problems["shoe-1"]["reason"] == "insufficient_stock"
    assert problems["shoe-1"]["available"] == 5
    assert problems["ghost"]["reason"] == "product_unavailable"

    orders = shop.get("/api/admin/orders", headers=admin_headers).json()
    assert orders["items"] == []


def test_empty_cart_is_a_bad_request(shop):
    r = shop.post("/checkout", json={"cart": []})
    assert r.status_code == 400
    assert "error" in r.json()


def test_unknown_order_is_404(client):
    assert client.get("/api/orders/nope").status_code == 404


def test_bad_signature_is_rejected(shop):
    order_id = checkout(shop, ("shoe-1", 1)).json()["order_id"]
    r = deliver(shop, order_id, signature="bogus")
    assert r.status_code == 400
    assert shop.get(f"/api/orders/{order_id}").json()["status"] == "pending"


def test_failed_payment_keeps_order_pending(shop):
    order_id = checkout(shop, ("shoe-1", 1)).json()["order_id"]
    r = deliver(shop, order_id, kind="failed")
    assert r.json()["outcome"] == "ignored"
    assert shop.get(f"/api/orders/{order_id}").json()["status"] == "pending"


def test_mockpay_screen(shop):
    url = checkout(shop, ("shoe-1", 2)).json()["url"]
    r = shop.get(url)
    assert r.status_code == 200
    assert r.json()["amount_total"] == 4000
    assert shop.get("/mockpay/mock_missing").status_code == 404


# ----------------------------
# Admin
# ----------------------------
@pytest.mark.parametrize("method,path", [
    ("get", "/orders"),
    ("get", "/api/admin/orders"),
    ("get", "/api/admin/products"),
    ("post", "/api/admin/products"),
    ("delete", "/api/admin/products/shoe-1"),
    ("patch", "/orders/o1"),
    ("get", "/api/admin/timings"),
])
def test_admin_routes_need_a_token(client, method, path):
    r = client.request(method, path, headers={"Authorization": "Bearer x"})
    assert r.status_code == 401
    assert client.request(method, path).status_code == 401


def test_wrong_password(client):
    r = client.post("/api/admin/login", json={"password": "guess"})
    assert r.status_code == 401


def test_logout_revokes_token(client, admin_headers):
    assert client.get("/orders", headers=admin_headers).status_code == 200
    assert client.post("/api/admin/logout",
                       headers=admin_headers).status_code == 200
    assert client.get("/orders", headers=admin_headers).status_code == 401


def test_product_crud(shop, admin_headers):
    r = shop.post("/api/admin/products", headers=admin_headers,
                  json={"name": "Wool Cap", "price_cents": 1500,
                        "inventory": 2})
    assert r.status_code == 201
    assert r.json()["id"] == "wool-cap"

    dup = shop.post("/api/admin/products", headers=admin_headers, json=SHOE)
    assert dup.status_code == 409

    cheap = shop.post("/api/admin/products", headers=admin_headers,
                      json={"name": "Penny", "price_cents": 1})
    assert cheap.status_code == 400

    r = shop.put("/api/admin/products/wool-cap", headers=admin_headers,
                 json={"price_cents": 1800})
    assert r.json()["price_cents"] == 1800
    assert r.json()["name"] == "Wool Cap"

    assert shop.put("/api/admin/products/nope", headers=admin_headers,
                    json={"price_cents": 1800}).status_code == 404

    assert shop.delete("/api/admin/products/wool-cap",
                       headers=admin_headers).status_code == 200
    assert shop.get("/api/products/wool-cap").status_code == 404
    assert shop.delete("/api/admin/products/wool-cap",
                       headers=admin_headers).status_code == 404


def test_manual_confirmation(shop, admin_headers):
    order_id = checkout(shop, ("shoe-1", 1)).json()["order_id"]

    r = shop.patch(f"/orders/{order_id}", headers=admin_headers,
                   json={"status": "paid"})
    assert r.status_code == 200
    assert r.json()["outcome"] == "applied"
    assert r.json()["order"]["status"] == "paid"
    assert shop.get("/api/products/shoe-1").json()["inventory"] == 4

    again = shop.patch(f"/orders/{order_id}", headers=admin_headers,
                       json={"status": "paid"})
    assert again.json()["outcome"] == "duplicate"

    missing = shop.patch("/orders/nope", headers=admin_headers,
                         json={"status": "paid"})
    assert missing.status_code == 404


def test_admin_order_list_is_newest_first(shop, admin_headers):
    first = checkout(shop, ("shoe-1", 1)).json()["order_id"]
    second = checkout(shop, ("shoe-1", 1)).json()["order_id"]
    items = shop.get("/api/admin/orders",
                     headers=admin_headers).json()["items"]
    assert [o["id"] for o in items] == [second, first]


def test_timings_are_collected(shop, admin_headers):
    shop.get("/api/products")
    rows = shop.get("/api/admin/timings", headers=admin_headers).json()
    assert "catalog.list_active" in {r["kind"] for r in rows["items"]}


def test_mockpay_emit_validates_input(shop):
    url = checkout(shop, ("shoe-1", 1)).json()["url"]
    r = shop.post(f"{url}/emit", data={"t": "succeeded", "email": "nope"},
                  follow_redirects=False)
    assert r.status_code == 400
    r = shop.post("/mockpay/mock_missing/emit", data={"t": "succeeded"},
                  follow_redirects=False)
    assert r.status_code == 404


def post_event(client, event):
    adapter = client.app.state.adapter
    payload = json.dumps(event).encode()
    return client.post("/payment-callback", content=payload, headers={
        SIGNATURE_HEADER: adapter.sign(payload),
        "content-type": "application/json",
    })


def session_of(client, order_id):
    adapter = client.app.state.adapter
    return next(k for k, v in adapter.sessions.items()
                if v["order_id"] == order_id)


def test_callback_with_null_address_fields(shop, admin_headers):
    order_id = checkout(shop, ("shoe-1", 2)).json()["order_id"]
    event = shop.app.state.adapter.build_event(session_of(shop, order_id),
                                               "succeeded")
    event["shipping_details"] = {"name": "Ada", "line1": "1 Main St",
                                 "line2": None, "state": None,
                                 "city": "Oslo", "postal_code": "0150",
                                 "country": "NO"}

    r = post_event(shop, event)
    assert r.status_code == 200
    assert r.json()["outcome"] == "applied"

    [order] = shop.get("/api/admin/orders",
                       headers=admin_headers).json()["items"]
    assert order["status"] == "paid"
    assert order["shipping"]["line2"] == ""
    assert order["shipping"]["city"] == "Oslo"


def test_callback_without_order_is_acknowledged(client):
    r = post_event(client, {"type": "payment.succeeded",
                            "payment_session_id": "x"})
    assert r.status_code == 200
    assert r.json()["outcome"] == "unknown_order"


def test_callback_from_another_session_is_not_applied(shop):
    order_id = checkout(shop, ("shoe-1", 2)).json()["order_id"]
    event = shop.app.state.adapter.build_event(session_of(shop, order_id),
                                               "succeeded")
    event["payment_session_id"] = "mock_someone_else"
    event["amount_total"] = 1

    r = post_event(shop, event)
    assert r.status_code == 200
    assert r.json()["outcome"] == "session_mismatch"
    assert shop.get(f"/api/orders/{order_id}").json()["status"] == "pending"
    assert shop.get("/api/products/shoe-1").json()["inventory"] == 5
