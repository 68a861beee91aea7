"""Operator actions on a single order."""
from __future__ import annotations

import html
import logging
from typing import Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import ResendConfig
from ..errors import ProviderError, StoreError
from ..helpers import now_ts
from ..infra.sql import Gated
from ..infra.timings import timeit
from ..model.db import StoreOrder, StoreOrderEvent, StoreOrderItem
from ..notify import send_email
from ..payments import PaymentAdapter

log = logging.getLogger(__name__)

ACTIONS = ("refund", "cancel", "mark_shipped", "resend_download_link")


def download_links_email(order_id: int, items) -> tuple[str, str]:
    links = "".join(
        f'<li><strong>{html.escape(i.title or "Digital item")}</strong>: '
        f'<a href="{html.escape(i.delivery_url)}">Open private access link'
        f'</a></li>'
        for i in items
    )
    subject = f"Your digital access links - Order #{order_id}"
    body = (
        f"<p>Here are your private digital access links for The Performa "
        f"order #{order_id}.</p><ul>{links}</ul>"
        f"<p>If you have trouble accessing, reply to this email.</p>"
    )
    return subject, body


async def run_action(
    db: AsyncSession,
    gated: Gated,
    http: httpx.AsyncClient,
    adapter: PaymentAdapter,
    resend: ResendConfig,
    *,
    order_id: int,
    action: str,
    actor_user_id: str,
    note: str = "",
    tracking_number: Optional[str] = None,
    shipping_carrier: Optional[str] = None,
) -> dict:
    if not order_id or action not in ACTIONS:
        raise StoreError("Missing orderId/action.")

    async with gated():
        async with db.begin():
            order = await db.get(StoreOrder, order_id)
            if order is None:
                raise StoreError("Order not found.", 404)
            items = (await db.execute(
                select(StoreOrderItem)
                .where(StoreOrderItem.order_id == order_id)
            )).scalars().all()

    changes = {}
    if action == "refund":
        intent = order.stripe_payment_intent_id or ""
        if not intent:
            raise StoreError("Order has no Stripe payment intent.")
        async with timeit("stripe.refund"):
            await adapter.refund(intent)
        changes = {"status": "refunded"}

    elif action == "cancel":
        if order.status == "pending" and order.stripe_checkout_session_id:
            async with timeit("stripe.expire_session"):
                await adapter.expire_session(
                    order.stripe_checkout_session_id)
        changes = {"status": "cancelled",
                   "cancel_reason": note or "Cancelled by admin"}

    elif action == "mark_shipped":
        ts = now_ts()
        changes = {
            "status": "fulfilled",
            "shipped_at": ts,
            "fulfilled_at": ts,
            "tracking_number": tracking_number or order.tracking_number,
            "shipping_carrier": shipping_carrier or order.shipping_carrier,
        }

    else:  # resend_download_link
        email = (order.stripe_customer_email or "").strip().lower()
        if not email:
            raise StoreError("Order has no customer email.")
        if not resend.is_configured:
            raise ProviderError("Resend is not configured.", 500)
        digital = [i for i in items if i.delivery_url]
        if not digital:
            raise StoreError("No digital links are stored for this order.")
        subject, body = download_links_email(order_id, digital)
        if not await send_email(http, resend, email, subject, body):
            raise ProviderError("Failed to resend digital links.", 500)

    ts = now_ts()
    async with gated():
        async with db.begin():
            row = await db.get(StoreOrder, order_id)
            for key, value in changes.items():
                setattr(row, key, value)
            if changes:
                row.updated_at = ts
            db.add(StoreOrderEvent(
                order_id=order_id,
                actor_user_id=actor_user_id,
                action=action,
                details={"note": note or "",
                         "tracking_number": tracking_number or ""},
                created_at=ts,
            ))
    log.info("order action %s by %s", action, actor_user_id,
             extra={"order_id": order_id, "user_id": actor_user_id})
    return {"ok": True, "order_id": order_id, "action": action,
            **({"status": changes["status"]} if "status" in changes else {})}
