"""
Stripe webhook handling.

Each event id is applied at most once: the seen-marker is written in the
same transaction as the order changes, and a concurrent replay that loses
the insert race is rolled back.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import StoreError
from ..helpers import now_ts
from ..infra.sql import Gated
from ..infra.timings import timeit
from ..model.db import (
    StoreOrder, StoreOrderEvent, StoreOrderItem, StoreVariant,
    WebhookEventSeen,
)
from ..payments import PaymentAdapter

log = logging.getLogger(__name__)

HANDLED = ("checkout.session.completed", "charge.refunded",
           "checkout.session.expired")


def _line_metadata(line: Dict[str, Any]) -> Dict[str, Any]:
    price = line.get("price") or {}
    product = price.get("product") or {}
    if not isinstance(product, dict):
        return {}
    return product.get("metadata") or {}


def purchased_quantities(lines: List[Dict[str, Any]]) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for line in lines:
        vid = str(_line_metadata(line).get("variant_id") or "")
        if not vid:
            continue
        qty = max(1, int(line.get("quantity") or 1))
        out[vid] = out.get(vid, 0) + qty
    return out


async def _seen(db: AsyncSession, gated: Gated, key: str) -> bool:
    async with gated():
        async with db.begin():
            return await db.get(WebhookEventSeen, key) is not None


async def handle_event(db: AsyncSession, gated: Gated,
                       adapter: PaymentAdapter,
                       event: Dict[str, Any]) -> dict:
    kind = str(event.get("type") or "")
    event_id = str(event.get("id") or "")
    obj = (event.get("data") or {}).get("object") or {}

    if kind not in HANDLED:
        return {"ok": True, "ignored": kind}
    if not event_id:
        raise StoreError("Missing event id.")
    if await _seen(db, gated, event_id):
        return {"ok": True, "idempotent": True}

    lines: List[Dict[str, Any]] = []
    if kind == "checkout.session.completed":
        if not obj.get("id"):
            raise StoreError("Missing session id.")
        # a failure here surfaces as 5xx so Stripe redelivers the event
        async with timeit("stripe.list_line_items"):
            lines = await adapter.list_line_items(str(obj["id"]))

    try:
        async with timeit(f"db.webhook.{kind}"):
            async with gated():
                async with db.begin():
                    db.add(WebhookEventSeen(idempotency_key=event_id,
                                            created_at=now_ts()))
                    await db.flush()
                    if kind == "checkout.session.completed":
                        result = await _apply_completed(db, event_id, obj,
                                                        lines)
                    elif kind == "charge.refunded":
                        result = await _apply_refunded(db, event_id, obj)
                    else:
                        result = await _apply_expired(db, event_id, obj)
    except IntegrityError:
        # replay racing the first delivery
        await db.rollback()
        return {"ok": True, "idempotent": True}

    log.info("stripe event %s applied (%s)", event_id, kind,
             extra={"event_id": event_id})
    return {"ok": True, **result}


async def _apply_completed(db: AsyncSession, event_id: str,
                           obj: Dict[str, Any],
                           lines: List[Dict[str, Any]]) -> dict:
    session_id = str(obj["id"])
    payment_status = str(obj.get("payment_status") or "unpaid")
    mode = str(obj.get("mode") or "payment")
    details = obj.get("customer_details") or {}
    email = str(details.get("email") or obj.get("customer_email") or "").lower()
    totals = obj.get("total_details") or {}
    ts = now_ts()

    order = (await db.execute(
        select(StoreOrder)
        .where(StoreOrder.stripe_checkout_session_id == session_id)
    )).scalars().first()
    if order is None:
        order = StoreOrder(stripe_checkout_session_id=session_id,
                           created_at=ts)
        db.add(order)

    order.user_id = (str(obj["client_reference_id"])
                     if obj.get("client_reference_id") else None)
    order.stripe_payment_intent_id = (str(obj["payment_intent"])
                                      if obj.get("payment_intent") else None)
    order.stripe_customer_id = (str(obj["customer"])
                                if obj.get("customer") else None)
    order.stripe_customer_email = email or None
    order.status = ("paid" if payment_status == "paid"
                    or mode == "subscription" else "pending")
    order.currency = str(obj.get("currency") or "usd")
    order.subtotal_cents = int(obj.get("amount_subtotal") or 0)
    order.tax_cents = int(totals.get("amount_tax") or 0)
    order.shipping_cents = int(totals.get("amount_shipping") or 0)
    order.total_cents = int(obj.get("amount_total") or 0)
    order.meta = {**(obj.get("metadata") or {}), "stripe_mode": mode}
    order.updated_at = ts
    await db.flush()

    purchased = purchased_quantities(lines)
    variants: Dict[str, StoreVariant] = {}
    if purchased:
        variants = {v.id: v for v in (await db.execute(
            select(StoreVariant).where(StoreVariant.id.in_(list(purchased)))
        )).scalars().all()}
        for vid, qty in purchased.items():
            v = variants.get(vid)
            if v is None or v.inventory_mode != "finite":
                continue
            current = max(0, int(v.inventory_count or 0))
            v.inventory_count = max(0, current - qty)
            v.updated_at = ts

    await db.execute(delete(StoreOrderItem)
                     .where(StoreOrderItem.order_id == order.id))
    for line in lines:
        meta = _line_metadata(line)
        vid = str(meta.get("variant_id") or "") or None
        qty = int(line.get("quantity") or 1)
        unit = int((line.get("price") or {}).get("unit_amount") or 0)
        variant = variants.get(vid) if vid else None
        db.add(StoreOrderItem(
            order_id=order.id,
            product_id=str(meta.get("product_id") or "") or None,
            variant_id=vid,
            title=str(line.get("description") or "Store item"),
            variant_title=str(line.get("description") or "") if vid else None,
            sku=str(meta["sku"]) if meta.get("sku") else None,
            quantity=qty,
            unit_price_cents=unit,
            line_total_cents=unit * qty,
            delivery_url=(variant.digital_delivery_url or None)
            if variant else None,
        ))

    db.add(StoreOrderEvent(
        order_id=order.id,
        action="webhook_checkout_completed",
        details={"event_id": event_id, "checkout_status": payment_status},
        created_at=ts,
    ))
    return {"order_id": order.id, "order_status": order.status}


async def _apply_refunded(db: AsyncSession, event_id: str,
                          obj: Dict[str, Any]) -> dict:
    intent = str(obj.get("payment_intent") or "")
    if not intent:
        return {"updated": 0}
    refunded = int(obj.get("amount_refunded") or 0)
    charged = int(obj.get("amount") or 0)
    status = "refunded" if refunded >= charged else "partially_refunded"
    ts = now_ts()

    orders = (await db.execute(
        select(StoreOrder)
        .where(StoreOrder.stripe_payment_intent_id == intent)
    )).scalars().all()
    for order in orders:
        order.status = status
        order.updated_at = ts
        db.add(StoreOrderEvent(
            order_id=order.id,
            action="webhook_refund",
            details={"event_id": event_id, "payment_intent_id": intent,
                     "amount_refunded": refunded},
            created_at=ts,
        ))
    return {"updated": len(orders), "order_status": status}


async def _apply_expired(db: AsyncSession, event_id: str,
                         obj: Dict[str, Any]) -> dict:
    session_id = str(obj.get("id") or "")
    if not session_id:
        return {"updated": 0}
    ts = now_ts()
    orders = (await db.execute(
        select(StoreOrder)
        .where(StoreOrder.stripe_checkout_session_id == session_id,
               StoreOrder.status == "pending")
    )).scalars().all()
    for order in orders:
        order.status = "cancelled"
        order.cancel_reason = "checkout_session_expired"
        order.updated_at = ts
        db.add(StoreOrderEvent(
            order_id=order.id,
            action="webhook_checkout_expired",
            details={"event_id": event_id},
            created_at=ts,
        ))
    return {"updated": len(orders)}
