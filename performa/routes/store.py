import logging
from typing import List, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_303_SEE_OTHER

from ..auth import AuthUser
from ..deps import (
    adapter, admin_user, current_user, gated, get_db, get_http, settings,
)
from ..infra.timings import timeit
from ..payments import MockPay
from ..store import admin as store_admin
from ..store import catalog
from ..store.checkout import create_checkout
from ..store.webhook import handle_event
from ..templating import templates

log = logging.getLogger(__name__)

router = APIRouter(tags=["store"])


class ReviewBody(BaseModel):
    rating: float = Field(..., description="1..5, rounded")
    title: str = ""
    body: str = ""


class CheckoutBody(BaseModel):
    items: List[dict] = Field(default_factory=list)
    success_url: str = ""
    cancel_url: str = ""
    promo_code: str = ""
    customer_email: str = ""


class ReviewStatusBody(BaseModel):
    status: str


class OrderActionBody(BaseModel):
    action: str
    note: str = ""
    tracking_number: Optional[str] = None
    shipping_carrier: Optional[str] = None


# ----------------------------
# Storefront
# ----------------------------
@router.get("/api/store/products")
async def store_products(db: AsyncSession = Depends(get_db)):
    async with timeit("db.list_products"):
        items = await catalog.list_products(db, gated)
    return {"items": items}


@router.get("/api/store/wishlist")
async def wishlist_get(user: AuthUser = Depends(current_user),
                       db: AsyncSession = Depends(get_db)):
    return {"product_ids": await catalog.list_wishlist(db, gated, user.id)}


@router.put("/api/store/wishlist/{product_id}")
async def wishlist_add(product_id: str,
                       user: AuthUser = Depends(current_user),
                       db: AsyncSession = Depends(get_db)):
    await catalog.add_wishlist(db, gated, user.id, product_id)
    return {"ok": True}


@router.delete("/api/store/wishlist/{product_id}")
async def wishlist_remove(product_id: str,
                          user: AuthUser = Depends(current_user),
                          db: AsyncSession = Depends(get_db)):
    await catalog.remove_wishlist(db, gated, user.id, product_id)
    return {"ok": True}


@router.post("/api/store/products/{product_id}/reviews")
async def review_submit(product_id: str, body: ReviewBody,
                        user: AuthUser = Depends(current_user),
                        db: AsyncSession = Depends(get_db)):
    review = await catalog.submit_review(db, gated, user.id, product_id,
                                         body.rating, body.title, body.body)
    return {"ok": True, "review": review}


@router.post("/api/store/checkout")
async def store_checkout(
    body: CheckoutBody,
    user: AuthUser = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    return await create_checkout(
        db, gated, adapter,
        user_id=user.id,
        user_email=user.email,
        items=body.items,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
        promo_code=body.promo_code,
        customer_email=body.customer_email,
    )


# ----------------------------
# Webhook endpoint (Stripe, or MockPay in development)
# ----------------------------
@router.post("/api/store/stripe/webhook")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    payload = await request.body()
    event = adapter.verify_webhook(payload, request.headers)
    async with timeit("store.webhook"):
        return await handle_event(db, gated, adapter, event)


# ----------------------------
# Admin
# ----------------------------
@router.get("/api/store/admin/snapshot")
async def admin_snapshot(_: AuthUser = Depends(admin_user),
                         db: AsyncSession = Depends(get_db)):
    return await catalog.admin_snapshot(db, gated)


@router.post("/api/store/admin/products")
async def admin_upsert_product(payload: dict,
                               _: AuthUser = Depends(admin_user),
                               db: AsyncSession = Depends(get_db)):
    return {"ok": True,
            "product": await catalog.upsert_product(db, gated, payload)}


@router.post("/api/store/admin/variants")
async def admin_upsert_variant(payload: dict,
                               _: AuthUser = Depends(admin_user),
                               db: AsyncSession = Depends(get_db)):
    return {"ok": True,
            "variant": await catalog.upsert_variant(db, gated, payload)}


@router.post("/api/store/admin/reviews/{review_id}/status")
async def admin_review_status(review_id: int, body: ReviewStatusBody,
                              _: AuthUser = Depends(admin_user),
                              db: AsyncSession = Depends(get_db)):
    await catalog.set_review_status(db, gated, review_id, body.status)
    return {"ok": True, "review_id": review_id, "status": body.status}


@router.post("/api/store/admin/orders/{order_id}/actions")
async def admin_order_action(
    order_id: int,
    body: OrderActionBody,
    user: AuthUser = Depends(admin_user),
    db: AsyncSession = Depends(get_db),
    http: httpx.AsyncClient = Depends(get_http),
):
    async with timeit(f"store.admin.{body.action}"):
        return await store_admin.run_action(
            db, gated, http, adapter, settings.resend,
            order_id=order_id,
            action=body.action,
            actor_user_id=user.id,
            note=body.note.strip(),
            tracking_number=body.tracking_number,
            shipping_carrier=body.shipping_carrier,
        )


# ----------------------------
# MockPay UI (development checkout page with 2 buttons)
# ----------------------------
def _mockpay() -> MockPay:
    if not isinstance(adapter, MockPay):
        raise HTTPException(404, detail="mock payments are disabled")
    return adapter


@router.get("/mockpay/{session_id}", response_class=HTMLResponse)
async def mockpay_screen(request: Request, session_id: str):
    mock = _mockpay()
    session = mock.sessions.get(session_id)
    if session is None:
        raise HTTPException(404, detail="checkout session not found")
    event = mock.build_event(session_id, "completed")
    obj = event["data"]["object"]
    return templates.TemplateResponse(request, "mockpay.html", {
        "session_id": session_id,
        "amount": f"{obj['amount_total'] / 100:.2f}",
        "currency": (obj.get("currency") or "usd").upper(),
        "email": obj.get("customer_email") or "",
    })


@router.post("/mockpay/{session_id}/emit")
async def mockpay_emit(
    session_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    mock = _mockpay()
    form = await request.form()
    kind = form.get("t")  # completed | expired
    if kind not in {"completed", "expired"}:
        raise HTTPException(400, detail="invalid kind")

    session = mock.sessions.get(session_id)
    if session is None:
        raise HTTPException(404, detail="checkout session not found")
    event = mock.build_event(session_id, kind)

    # in-process delivery; a real Stripe webhook arrives out of band
    result = await handle_event(db, gated, mock, event)
    log.info("mockpay %s for %s: %s", kind, session_id, result)

    target = (session["params"].get("success_url") if kind == "completed"
              else session["params"].get("cancel_url"))
    return RedirectResponse(url=target or "/", status_code=HTTP_303_SEE_OTHER)
