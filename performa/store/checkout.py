"""Cart validation, Checkout Session params and the pending order."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import StoreError
from ..helpers import now_ts, round_half_up
from ..infra.sql import Gated
from ..infra.timings import timeit
from ..model.db import StoreOrder, StoreProduct, StoreVariant
from ..payments import PaymentAdapter

log = logging.getLogger(__name__)

ORDER_SOURCE = "the-performa-store"
RECURRING_INTERVALS = ("day", "week", "month", "year")


@dataclass
class CartLine:
    variant_id: str
    quantity: int


def _quantity(raw: Any) -> int:
    try:
        return max(1, round_half_up(float(raw if raw is not None else 1)))
    except (TypeError, ValueError, OverflowError):
        return 1


def parse_cart(items: Iterable[Mapping[str, Any]]) -> List[CartLine]:
    """Cart payload to lines; ids are trimmed, quantities at least 1."""
    lines = []
    for item in items or []:
        vid = str(item.get("variant_id") or item.get("variantId") or "").strip()
        lines.append(CartLine(vid, _quantity(item.get("quantity"))))
    return lines


def validate_cart(lines: List[CartLine],
                  variants: Mapping[str, StoreVariant],
                  products: Mapping[str, StoreProduct]) -> tuple[List[CartLine], str]:
    """Drop unknown variants and enforce availability and stock.

    Returns (lines, mode) where mode is "payment" or "subscription".
    """
    known = [ln for ln in lines if ln.variant_id in variants]
    if not known:
        raise StoreError("No purchasable items found.")

    has_subscription = has_one_time = False
    for ln in known:
        v = variants[ln.variant_id]
        p = products.get(v.product_id)
        if not v.is_active or p is None or p.status != "active":
            raise StoreError("One or more items are not available.")
        if (v.inventory_mode == "finite" and v.inventory_count is not None
                and v.inventory_count < ln.quantity):
            raise StoreError(f"Insufficient stock for {p.name} ({v.title}).")
        if p.product_type == "subscription":
            has_subscription = True
        else:
            has_one_time = True

    if has_subscription and has_one_time:
        raise StoreError("Subscriptions must be checked out separately "
                         "from one-time items.")
    return known, ("subscription" if has_subscription else "payment")


def _interval(variant: StoreVariant) -> str:
    interval = str((variant.attributes or {}).get("interval") or "month")
    return interval if interval in RECURRING_INTERVALS else "month"


def build_checkout_params(
    lines: List[CartLine],
    mode: str,
    variants: Mapping[str, StoreVariant],
    products: Mapping[str, StoreProduct],
    *,
    success_url: str,
    cancel_url: str,
    customer_email: str = "",
    user_id: Optional[str] = None,
) -> tuple[Dict[str, Any], int]:
    """Checkout Session params and the cart subtotal (cents)."""
    params: Dict[str, Any] = {
        "mode": mode,
        "success_url": success_url,
        "cancel_url": cancel_url,
        "automatic_tax": {"enabled": True},
        "allow_promotion_codes": True,
        "metadata": {"source": ORDER_SOURCE},
        "line_items": [],
    }
    if customer_email:
        params["customer_email"] = customer_email
    if user_id:
        params["client_reference_id"] = user_id

    subtotal = 0
    for ln in lines:
        v = variants[ln.variant_id]
        p = products[v.product_id]
        amount = int(v.price_cents or 0)
        subtotal += amount * ln.quantity
        product_data: Dict[str, Any] = {
            "name": f"{p.name} - {v.title}",
            "metadata": {"product_id": p.id, "variant_id": v.id,
                         "sku": v.sku or ""},
        }
        if p.description:
            product_data["description"] = p.description
        price_data: Dict[str, Any] = {
            "currency": (p.currency or "usd").lower(),
            "unit_amount": amount,
            "tax_behavior": "exclusive",
            "product_data": product_data,
        }
        if mode == "subscription":
            price_data["recurring"] = {"interval": _interval(v)}
        params["line_items"].append({"quantity": ln.quantity,
                                     "price_data": price_data})
    return params, subtotal


async def create_checkout(
    db: AsyncSession,
    gated: Gated,
    adapter: PaymentAdapter,
    *,
    user_id: str,
    user_email: str,
    items: List[Mapping[str, Any]],
    success_url: str,
    cancel_url: str,
    promo_code: str = "",
    customer_email: str = "",
) -> dict:
    lines = parse_cart(items)
    if not lines:
        raise StoreError("Cart is empty.")
    success_url = (success_url or "").strip()
    cancel_url = (cancel_url or "").strip()
    if not success_url or not cancel_url:
        raise StoreError("Missing success/cancel URLs.")

    # dedupe while keeping cart order
    variant_ids = list(dict.fromkeys(ln.variant_id for ln in lines
                                     if ln.variant_id))
    if not variant_ids:
        raise StoreError("Invalid cart items.")

    async with gated():
        async with db.begin():
            variants = {v.id: v for v in (await db.execute(
                select(StoreVariant).where(StoreVariant.id.in_(variant_ids))
            )).scalars().all()}
            product_ids = {v.product_id for v in variants.values()}
            products = {p.id: p for p in (await db.execute(
                select(StoreProduct).where(StoreProduct.id.in_(product_ids))
            )).scalars().all()} if product_ids else {}

    lines, mode = validate_cart(lines, variants, products)
    email = (customer_email or user_email or "").strip().lower()
    params, subtotal = build_checkout_params(
        lines, mode, variants, products,
        success_url=success_url, cancel_url=cancel_url,
        customer_email=email, user_id=user_id,
    )

    if promo_code and promo_code.strip():
        async with timeit("stripe.promotion_code"):
            promo_id = await adapter.find_promotion_code(promo_code)
        if promo_id:
            # Stripe refuses discounts together with allow_promotion_codes
            params.pop("allow_promotion_codes", None)
            params["discounts"] = [{"promotion_code": promo_id}]

    async with timeit("stripe.create_checkout_session"):
        session = await adapter.create_checkout_session(params)

    first = variants[lines[0].variant_id]
    currency = (products[first.product_id].currency or "usd").lower()
    ts = now_ts()
    order = StoreOrder(
        user_id=user_id,
        stripe_checkout_session_id=session["id"],
        stripe_customer_email=email or None,
        status="pending",
        currency=currency,
        subtotal_cents=subtotal,
        meta={
            "mode": mode,
            "cart": [{"variant_id": ln.variant_id, "quantity": ln.quantity}
                     for ln in lines],
        },
        created_at=ts,
        updated_at=ts,
    )
    async with timeit("db.add_pending_order"):
        async with gated():
            async with db.begin():
                db.add(order)
                await db.flush()
    log.info("checkout session %s opened", session["id"],
             extra={"order_id": order.id, "user_id": user_id})

    return {
        "ok": True,
        "order_id": order.id,
        "checkout_session_id": session["id"],
        "checkout_url": session["url"],
    }
