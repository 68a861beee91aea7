"""
Store tests: catalog, checkout through MockPay, webhook idempotency,
Stripe signatures and admin order actions.
"""

import hashlib
import hmac
import json
import time

import pytest

from performa.config import StripeConfig
from performa.deps import adapter
from performa.errors import StoreError
from performa.payments import StripeCheckout
from performa.store.catalog import stock_state
from performa.store.checkout import parse_cart
from performa.store.webhook import purchased_quantities


# ============================================
# HELPERS
# ============================================

def stripe_signature(secret, payload, timestamp):
    mac = hmac.new(secret.encode(), f"{timestamp}.".encode() + payload,
                   hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={mac}"


def _seed(client, *, product_type="physical", inventory_mode="finite",
          inventory_count=3, price_cents=2500, delivery_url=None,
          slug="tour-tee"):
    product = client.post("/api/store/admin/products", json={
        "name": "Tour Tee", "slug": slug, "product_type": product_type,
        "status": "active", "currency": "usd", "base_price_cents": price_cents,
    }).json()["product"]
    variant = client.post("/api/store/admin/variants", json={
        "product_id": product["id"], "sku": f"{slug}-m", "title": "Medium",
        "price_cents": price_cents, "inventory_mode": inventory_mode,
        "inventory_count": inventory_count,
        "digital_delivery_url": delivery_url, "is_default": True,
    }).json()["variant"]
    return product, variant


def _checkout(client, variant_id, quantity=1):
    return client.post("/api/store/checkout", json={
        "items": [{"variant_id": variant_id, "quantity": quantity}],
        "success_url": "https://performa.test/store/success",
        "cancel_url": "https://performa.test/store/cancel",
    })


def _snapshot(client):
    return client.get("/api/store/admin/snapshot").json()


def _variant(snapshot, variant_id):
    return next(v for v in snapshot["variants"] if v["id"] == variant_id)


def _order(snapshot, order_id):
    return next(o for o in snapshot["orders"] if o["id"] == order_id)


def _deliver(client, event):
    payload = json.dumps(event).encode()
    return client.post(
        "/api/store/stripe/webhook",
        content=payload,
        headers={"x-mockpay-signature": adapter.sign(payload),
                 "content-type": "application/json"},
    )


# ============================================
# PURE HELPERS
# ============================================

class TestCartParsing:

    def test_quantities_round_with_minimum(self):
        lines = parse_cart([
            {"variant_id": " a ", "quantity": 2.5},
            {"variantId": "b", "quantity": 0},
            {"variant_id": "c", "quantity": "junk"},
        ])
        assert [(ln.variant_id, ln.quantity) for ln in lines] == [
            ("a", 3), ("b", 1), ("c", 1),
        ]

    def test_non_finite_quantities(self):
        lines = parse_cart([
            {"variant_id": "a", "quantity": "1e400"},
            {"variant_id": "b", "quantity": float("-inf")},
            {"variant_id": "c", "quantity": "nan"},
        ])
        assert [ln.quantity for ln in lines] == [1, 1, 1]

    def test_stock_state(self):
        assert stock_state("unlimited", 0)["out_of_stock"] is False
        assert stock_state("finite", 0)["out_of_stock"] is True
        assert stock_state("finite", 5)["low_stock"] is True
        assert stock_state("finite", 6)["low_stock"] is False

    def test_purchased_quantities(self):
        lines = [
            {"quantity": 2, "price": {"product": {"metadata": {"variant_id": "v1"}}}},
            {"quantity": 1, "price": {"product": {"metadata": {"variant_id": "v1"}}}},
            {"quantity": 4, "price": {"product": "prod_unexpanded"}},
        ]
        assert purchased_quantities(lines) == {"v1": 3}


class TestStripeSignature:

    def setup_method(self):
        self.stripe = StripeCheckout(StripeConfig(secret_key="sk_test",
                                                  webhook_secret="whsec_test"))
        self.payload = json.dumps({"id": "evt_1", "type": "charge.refunded"}).encode()

    def test_valid_signature(self):
        ts = int(time.time())
        header = stripe_signature("whsec_test", self.payload, ts)
        event = self.stripe.verify_webhook(self.payload, {"stripe-signature": header})
        assert event["id"] == "evt_1"

    def test_tampered_payload(self):
        header = stripe_signature("whsec_test", self.payload, int(time.time()))
        with pytest.raises(StoreError) as exc:
            self.stripe.verify_webhook(self.payload + b" ", {"stripe-signature": header})
        assert exc.value.status_code == 401

    def test_stale_timestamp(self):
        ts = int(time.time()) - 3600
        header = stripe_signature("whsec_test", self.payload, ts)
        with pytest.raises(StoreError, match="Invalid Stripe signature"):
            self.stripe.verify_webhook(self.payload, {"stripe-signature": header})

    def test_missing_header(self):
        with pytest.raises(StoreError):
            self.stripe.verify_webhook(self.payload, {})


# ============================================
# CATALOG
# ============================================

class TestCatalog:

    def test_products_listing(self, client, admin):
        product, variant = _seed(client)
        items = client.get("/api/store/products").json()["items"]
        assert len(items) == 1
        assert items[0]["default_variant"]["id"] == variant["id"]
        assert items[0]["default_variant"]["stock"]["low_stock"] is True

    def test_draft_products_hidden(self, client, admin):
        client.post("/api/store/admin/products", json={
            "name": "Secret", "slug": "secret", "product_type": "physical",
        })
        assert client.get("/api/store/products").json()["items"] == []

    def test_admin_only(self, client, auth):
        auth.login("fan-1")
        resp = client.get("/api/store/admin/snapshot")
        assert resp.status_code == 403
        auth.logout()
        assert client.get("/api/store/admin/snapshot").status_code == 401

    def test_review_moderation(self, client, admin, auth):
        product, _ = _seed(client)
        auth.login("fan-1")
        resp = client.post(f"/api/store/products/{product['id']}/reviews",
                           json={"rating": 9, "title": "Loud", "body": "Great"})
        review = resp.json()["review"]
        assert review["rating"] == 5
        assert review["status"] == "pending"
        assert client.get("/api/store/products").json()["items"][0]["reviews"] == []

        auth.login(admin.id)
        client.post(f"/api/store/admin/reviews/{review['id']}/status",
                    json={"status": "approved"})
        reviews = client.get("/api/store/products").json()["items"][0]["reviews"]
        assert [r["id"] for r in reviews] == [review["id"]]

    def test_wishlist(self, client, auth):
        auth.login("fan-1")
        client.put("/api/store/wishlist/p1")
        client.put("/api/store/wishlist/p1")
        client.put("/api/store/wishlist/p2")
        assert sorted(client.get("/api/store/wishlist").json()["product_ids"]) == ["p1", "p2"]
        client.delete("/api/store/wishlist/p1")
        assert client.get("/api/store/wishlist").json()["product_ids"] == ["p2"]


# ============================================
# CHECKOUT
# ============================================

class TestCheckout:

    def test_requires_sign_in(self, client, auth):
        auth.logout()
        assert _checkout(client, "v").status_code == 401

    def test_empty_cart(self, client, auth):
        auth.login("fan-1")
        resp = client.post("/api/store/checkout", json={
            "items": [], "success_url": "https://x", "cancel_url": "https://y",
        })
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cart is empty."

    def test_unknown_variant(self, client, auth):
        auth.login("fan-1")
        resp = _checkout(client, "nope")
        assert resp.json()["detail"] == "No purchasable items found."

    def test_insufficient_stock(self, client, admin):
        _, variant = _seed(client)
        resp = _checkout(client, variant["id"], quantity=5)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Insufficient stock for Tour Tee (Medium)."

    def test_subscription_mix_rejected(self, client, admin):
        _, tee = _seed(client)
        _, sub = _seed(client, product_type="subscription",
                       inventory_mode="unlimited", slug="fan-club")
        resp = client.post("/api/store/checkout", json={
            "items": [{"variant_id": tee["id"]}, {"variant_id": sub["id"]}],
            "success_url": "https://x", "cancel_url": "https://y",
        })
        assert resp.status_code == 400
        assert "separately" in resp.json()["detail"]

    def test_completed_flow(self, client, admin):
        _, variant = _seed(client)
        resp = _checkout(client, variant["id"], quantity=2)
        assert resp.status_code == 200
        data = resp.json()
        assert "/mockpay/" in data["checkout_url"]
        assert _order(_snapshot(client), data["order_id"])["status"] == "pending"

        emit = client.post(f"/mockpay/{data['checkout_session_id']}/emit",
                           data={"t": "completed"}, follow_redirects=False)
        assert emit.status_code == 303
        assert emit.headers["location"] == "https://performa.test/store/success"

        snap = _snapshot(client)
        order = _order(snap, data["order_id"])
        assert order["status"] == "paid"
        assert order["total_cents"] == 5000
        assert _variant(snap, variant["id"])["inventory_count"] == 1
        items = [i for i in snap["order_items"] if i["order_id"] == data["order_id"]]
        assert len(items) == 1 and items[0]["quantity"] == 2

    def test_session_params(self, client, admin):
        _, sub = _seed(client, product_type="subscription",
                       inventory_mode="unlimited", slug="fan-club")
        data = _checkout(client, sub["id"]).json()
        params = adapter.sessions[data["checkout_session_id"]]["params"]
        assert params["mode"] == "subscription"
        assert params["allow_promotion_codes"] is True
        assert params["client_reference_id"] == admin.id
        assert params["metadata"] == {"source": "the-performa-store"}
        line = params["line_items"][0]
        assert line["quantity"] == 1
        assert line["price_data"]["recurring"] == {"interval": "month"}
        assert line["price_data"]["product_data"]["metadata"]["variant_id"] == sub["id"]

    def test_expired_flow(self, client, admin):
        _, variant = _seed(client)
        data = _checkout(client, variant["id"]).json()
        emit = client.post(f"/mockpay/{data['checkout_session_id']}/emit",
                           data={"t": "expired"}, follow_redirects=False)
        assert emit.headers["location"] == "https://performa.test/store/cancel"
        order = _order(_snapshot(client), data["order_id"])
        assert order["status"] == "cancelled"
        assert order["cancel_reason"] == "checkout_session_expired"


# ============================================
# WEBHOOK
# ============================================

class TestWebhook:

    def test_replay_is_idempotent(self, client, admin):
        _, variant = _seed(client)
        data = _checkout(client, variant["id"]).json()
        event = adapter.build_event(data["checkout_session_id"], "completed")

        first = _deliver(client, event)
        assert first.status_code == 200
        assert first.json()["order_status"] == "paid"

        second = _deliver(client, event)
        assert second.json() == {"ok": True, "idempotent": True}
        assert _variant(_snapshot(client), variant["id"])["inventory_count"] == 2

    def test_bad_signature(self, client):
        resp = client.post("/api/store/stripe/webhook", content=b"{}",
                           headers={"x-mockpay-signature": "nope"})
        assert resp.status_code == 400

    def test_unhandled_event_ignored(self, client):
        resp = _deliver(client, {"id": "evt_x", "type": "invoice.paid"})
        assert resp.json() == {"ok": True, "ignored": "invoice.paid"}

    def test_refund_event(self, client, admin):
        _, variant = _seed(client)
        data = _checkout(client, variant["id"]).json()
        completed = adapter.build_event(data["checkout_session_id"], "completed")
        _deliver(client, completed)
        intent = completed["data"]["object"]["payment_intent"]

        resp = _deliver(client, {
            "id": "evt_refund_1", "type": "charge.refunded",
            "data": {"object": {"payment_intent": intent, "amount": 2500,
                                "amount_refunded": 1000}},
        })
        assert resp.json()["order_status"] == "partially_refunded"
        assert _order(_snapshot(client), data["order_id"])["status"] == "partially_refunded"


# ============================================
# ADMIN ORDER ACTIONS
# ============================================

class TestOrderActions:

    def _paid_order(self, client, **seed):
        _, variant = _seed(client, **seed)
        data = _checkout(client, variant["id"]).json()
        _deliver(client, adapter.build_event(data["checkout_session_id"], "completed"))
        return data["order_id"]

    def test_mark_shipped(self, client, admin):
        order_id = self._paid_order(client)
        resp = client.post(f"/api/store/admin/orders/{order_id}/actions", json={
            "action": "mark_shipped", "tracking_number": "1Z999",
            "shipping_carrier": "UPS",
        })
        assert resp.json() == {"ok": True, "order_id": order_id,
                               "action": "mark_shipped", "status": "fulfilled"}
        order = _order(_snapshot(client), order_id)
        assert order["tracking_number"] == "1Z999"

    def test_refund(self, client, admin):
        order_id = self._paid_order(client)
        resp = client.post(f"/api/store/admin/orders/{order_id}/actions",
                           json={"action": "refund"})
        assert resp.json()["status"] == "refunded"

    def test_resend_download_link(self, client, admin, outbound):
        order_id = self._paid_order(
            client, product_type="digital_download", inventory_mode="unlimited",
            delivery_url="https://files.performa.test/secret.zip", slug="stems",
        )
        resp = client.post(f"/api/store/admin/orders/{order_id}/actions",
                           json={"action": "resend_download_link"})
        assert resp.status_code == 200
        sent = outbound.to("api.resend.com")
        assert len(sent) == 1
        body = json.loads(sent[0].content)
        assert body["to"] == ["boss@performa.test"]
        assert "secret.zip" in body["html"]

    def test_resend_without_links(self, client, admin):
        order_id = self._paid_order(client)
        resp = client.post(f"/api/store/admin/orders/{order_id}/actions",
                           json={"action": "resend_download_link"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "No digital links are stored for this order."

    def test_unknown_order(self, client, admin):
        resp = client.post("/api/store/admin/orders/999/actions",
                           json={"action": "cancel"})
        assert resp.status_code == 404
