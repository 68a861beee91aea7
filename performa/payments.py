from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, TypedDict
import base64
import hashlib
import hmac
import json
import logging
import uuid

import stripe

from .config import Settings, StripeConfig
from .errors import ProviderError, StoreError
from .helpers import now_ts

log = logging.getLogger(__name__)


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class CheckoutSession(TypedDict):
    id: str
    url: str


class PaymentAdapter(ABC):
    # params follow stripe.checkout.Session.create
    @abstractmethod
    async def create_checkout_session(
        self, params: Dict[str, Any]
    ) -> CheckoutSession: ...

    # "" when the code is unknown or inactive
    @abstractmethod
    async def find_promotion_code(self, code: str) -> str: ...

    # Stripe-shaped line items with price.product expanded
    @abstractmethod
    async def list_line_items(self, session_id: str) -> List[Dict[str, Any]]: ...

    @abstractmethod
    async def refund(self, payment_intent_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def expire_session(self, session_id: str) -> None: ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: Mapping[str, str]) -> dict:
        ...


def _parse_event(payload: bytes) -> dict:
    try:
        event = json.loads(payload.decode())
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise StoreError("Invalid JSON", 400)
    if not isinstance(event, dict):
        raise StoreError("Invalid JSON", 400)
    return event


# ----------------------------
# Stripe (SDK, async methods)
# ----------------------------
class StripeCheckout(PaymentAdapter):

    def __init__(self, cfg: StripeConfig):
        self.cfg = cfg
        stripe.api_base = cfg.api_base

    def _options(self) -> Dict[str, str]:
        if not self.cfg.secret_key:
            raise ProviderError("STRIPE_SECRET_KEY not configured.", 500)
        return {"api_key": self.cfg.secret_key}

    def _fail(self, what: str, e: stripe.StripeError, fallback: str):
        if isinstance(e, stripe.APIConnectionError):
            log.error("stripe %s unreachable: %s", what, e)
            return ProviderError("Stripe is unreachable.")
        message = e.user_message or fallback
        log.warning("stripe %s -> %s: %s", what, e.http_status, message)
        return ProviderError(message, 400)

    async def create_checkout_session(self, params):
        opts = self._options()
        fallback = "Unable to create Stripe checkout session."
        try:
            session = await stripe.checkout.Session.create_async(
                **opts, **params)
        except stripe.StripeError as e:
            raise self._fail("checkout.session.create", e, fallback)
        if not session.get("id") or not session.get("url"):
            raise ProviderError(fallback, 400)
        return {"id": str(session["id"]), "url": str(session["url"])}

    async def find_promotion_code(self, code):
        clean = (code or "").strip()
        if not clean:
            return ""
        opts = self._options()
        try:
            found = await stripe.PromotionCode.list_async(
                **opts, active=True, code=clean, limit=1)
        except stripe.StripeError as e:
            log.warning("promotion code lookup failed: %s", e)
            return ""
        rows = list(found.data or [])
        if not rows or not rows[0].get("id"):
            return ""
        return str(rows[0]["id"])

    async def list_line_items(self, session_id):
        opts = self._options()
        try:
            items = await stripe.checkout.Session.list_line_items_async(
                session_id, **opts, limit=100, expand=["data.price.product"])
        except stripe.StripeError as e:
            raise self._fail("checkout.session.line_items", e,
                             "Unable to load checkout line items.")
        return list(items.data or [])

    async def refund(self, payment_intent_id):
        opts = self._options()
        try:
            return await stripe.Refund.create_async(
                **opts, payment_intent=payment_intent_id)
        except stripe.StripeError as e:
            raise self._fail("refund.create", e, "Failed to create refund.")

    async def expire_session(self, session_id):
        opts = self._options()
        try:
            await stripe.checkout.Session.expire_async(session_id, **opts)
        except stripe.StripeError as e:
            raise self._fail("checkout.session.expire", e,
                             "Failed to expire checkout session.")

    def verify_webhook(self, payload, headers):
        if not self.cfg.webhook_secret:
            raise ProviderError("STRIPE_WEBHOOK_SECRET not configured.", 500)
        header = headers.get("stripe-signature") or ""
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8", errors="replace"),
                header,
                self.cfg.webhook_secret,
                tolerance=self.cfg.tolerance_seconds or None,
            )
        except stripe.SignatureVerificationError as e:
            log.warning("stripe signature rejected: %s", e)
            raise StoreError("Invalid Stripe signature.", 401)
        return _parse_event(payload)


# ----------------------------
# MockPay implementation
# ----------------------------
def _line_items(params: Mapping[str, Any]) -> List[Dict[str, Any]]:
    out = []
    for li in params.get("line_items") or []:
        price = li.get("price_data") or {}
        product = price.get("product_data") or {}
        out.append({
            "description": product.get("name", ""),
            "quantity": int(li.get("quantity") or 1),
            "price": {
                "unit_amount": int(price.get("unit_amount") or 0),
                "product": {"metadata": dict(product.get("metadata") or {})},
            },
        })
    return out


class MockPay(PaymentAdapter):
    """In-process stand-in for Stripe Checkout, for local development."""

    def __init__(self, secret: str, base_url: str = ""):
        self.secret = secret
        self.base_url = base_url
        self.sessions: Dict[str, Dict[str, Any]] = {}

    async def create_checkout_session(self, params):
        sid = f"cs_mock_{uuid.uuid4().hex}"
        self.sessions[sid] = {"params": dict(params), "created_at": now_ts()}
        return {"id": sid, "url": f"{self.base_url}/mockpay/{sid}"}

    async def find_promotion_code(self, code):
        return ""

    async def list_line_items(self, session_id):
        session = self.sessions.get(session_id)
        if session is None:
            return []
        return _line_items(session["params"])

    async def refund(self, payment_intent_id):
        return {"id": f"re_mock_{uuid.uuid4().hex[:12]}",
                "payment_intent": payment_intent_id}

    async def expire_session(self, session_id):
        self.sessions.pop(session_id, None)

    def sign(self, payload: bytes) -> str:
        mac = hmac.new(self.secret.encode(), payload, hashlib.sha256).digest()
        return base64.b64encode(mac).decode()

    def verify_webhook(self, payload, headers):
        sig = headers.get("x-mockpay-signature")
        if not sig or not hmac.compare_digest(self.sign(payload), sig):
            raise StoreError("Invalid signature", 400)
        return _parse_event(payload)

    def build_event(self, session_id: str, kind: str) -> Dict[str, Any]:
        """Stripe-shaped event for a mock session: completed | expired."""
        session = self.sessions.get(session_id)
        if session is None:
            raise StoreError("checkout session not found", 404)
        params = session["params"]
        lines = _line_items(params)
        first = (params.get("line_items") or [{}])[0]
        subtotal = sum(li["price"]["unit_amount"] * li["quantity"]
                       for li in lines)
        obj = {
            "id": session_id,
            "mode": params.get("mode", "payment"),
            "payment_status": "paid" if kind == "completed" else "unpaid",
            "customer_email": params.get("customer_email"),
            "client_reference_id": params.get("client_reference_id"),
            "currency": (first.get("price_data") or {}).get("currency", "usd"),
            "amount_subtotal": subtotal,
            "amount_total": subtotal,
            "total_details": {"amount_tax": 0, "amount_shipping": 0},
            "payment_intent": (f"pi_mock_{session_id[-12:]}"
                               if kind == "completed" else None),
            "metadata": dict(params.get("metadata") or {}),
        }
        return {
            "id": f"evt_mock_{uuid.uuid4().hex}",
            "type": f"checkout.session.{kind}",
            "created": int(now_ts()),
            "data": {"object": obj},
        }


def new_adapter(settings: Settings) -> PaymentAdapter:
    if settings.payments_backend == "mock":
        return MockPay(settings.mock_secret, settings.public_base_url)
    return StripeCheckout(settings.stripe)
