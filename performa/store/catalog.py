"""
Storefront catalog: products, variants, reviews, wishlists, and the admin
side of the same tables.
"""
from __future__ import annotations

import uuid
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import StoreError
from ..helpers import now_ts, round_half_up, to_iso
from ..infra.sql import Gated
from ..model.db import (
    StoreOrder, StoreOrderItem, StoreProduct, StoreReview, StoreVariant,
    StoreWishlist,
)

LOW_STOCK_THRESHOLD = 5

PRODUCT_TYPES = ("physical", "digital_tool", "digital_download",
                 "subscription", "bundle")
PRODUCT_STATUSES = ("draft", "active", "archived")
INVENTORY_MODES = ("finite", "unlimited")
REVIEW_STATUSES = ("pending", "approved", "rejected")

ADMIN_LIST_LIMIT = 200


def stock_state(inventory_mode: str, inventory_count: Optional[int]) -> dict:
    if inventory_mode != "finite":
        return {"out_of_stock": False, "low_stock": False, "remaining": None}
    remaining = max(0, int(inventory_count or 0))
    return {
        "out_of_stock": remaining <= 0,
        "low_stock": 0 < remaining <= LOW_STOCK_THRESHOLD,
        "remaining": remaining,
    }


# ----------------------------
# Row -> dict
# ----------------------------
def product_dict(p: StoreProduct) -> Dict[str, Any]:
    return {
        "id": p.id,
        "slug": p.slug,
        "name": p.name,
        "description": p.description or "",
        "product_type": p.product_type,
        "status": p.status,
        "currency": p.currency,
        "base_price_cents": p.base_price_cents,
        "cover_image": p.cover_image,
        "gallery": list(p.gallery or []),
        "related_product_ids": list(p.related_product_ids or []),
        "metadata": dict(p.meta or {}),
        "created_at": to_iso(p.created_at),
        "updated_at": to_iso(p.updated_at),
    }


def variant_dict(v: StoreVariant) -> Dict[str, Any]:
    return {
        "id": v.id,
        "product_id": v.product_id,
        "sku": v.sku,
        "title": v.title,
        "price_cents": v.price_cents,
        "compare_at_cents": v.compare_at_cents,
        "inventory_mode": v.inventory_mode,
        "inventory_count": v.inventory_count,
        "weight_grams": v.weight_grams,
        "attributes": dict(v.attributes or {}),
        "digital_delivery_url": v.digital_delivery_url,
        "stripe_price_id": v.stripe_price_id,
        "is_default": bool(v.is_default),
        "is_active": bool(v.is_active),
        "stock": stock_state(v.inventory_mode, v.inventory_count),
        "created_at": to_iso(v.created_at),
        "updated_at": to_iso(v.updated_at),
    }


def review_dict(r: StoreReview) -> Dict[str, Any]:
    return {
        "id": r.id,
        "product_id": r.product_id,
        "user_id": r.user_id,
        "rating": r.rating,
        "title": r.title,
        "body": r.body,
        "status": r.status,
        "created_at": to_iso(r.created_at),
    }


def order_dict(o: StoreOrder) -> Dict[str, Any]:
    return {
        "id": o.id,
        "user_id": o.user_id,
        "stripe_checkout_session_id": o.stripe_checkout_session_id,
        "stripe_payment_intent_id": o.stripe_payment_intent_id,
        "stripe_customer_email": o.stripe_customer_email,
        "status": o.status,
        "currency": o.currency,
        "subtotal_cents": o.subtotal_cents,
        "tax_cents": o.tax_cents,
        "shipping_cents": o.shipping_cents,
        "total_cents": o.total_cents,
        "shipping_carrier": o.shipping_carrier,
        "tracking_number": o.tracking_number,
        "shipped_at": to_iso(o.shipped_at),
        "fulfilled_at": to_iso(o.fulfilled_at),
        "cancel_reason": o.cancel_reason,
        "metadata": dict(o.meta or {}),
        "created_at": to_iso(o.created_at),
        "updated_at": to_iso(o.updated_at),
    }


def order_item_dict(i: StoreOrderItem) -> Dict[str, Any]:
    return {
        "id": i.id,
        "order_id": i.order_id,
        "product_id": i.product_id,
        "variant_id": i.variant_id,
        "title": i.title,
        "variant_title": i.variant_title,
        "sku": i.sku,
        "quantity": i.quantity,
        "unit_price_cents": i.unit_price_cents,
        "line_total_cents": i.line_total_cents,
        "delivery_url": i.delivery_url,
    }


# ----------------------------
# Public storefront
# ----------------------------
async def list_products(db: AsyncSession, gated: Gated) -> List[dict]:
    """Active products, newest first, with active variants and approved
    reviews. The default variant is the flagged one, else the first."""
    async with gated():
        async with db.begin():
            products = (await db.execute(
                select(StoreProduct)
                .where(StoreProduct.status == "active")
                .order_by(StoreProduct.created_at.desc())
            )).scalars().all()
            ids = [p.id for p in products]
            variants, reviews = [], []
            if ids:
                variants = (await db.execute(
                    select(StoreVariant)
                    .where(StoreVariant.product_id.in_(ids),
                           StoreVariant.is_active.is_(True))
                    .order_by(StoreVariant.created_at.asc())
                )).scalars().all()
                reviews = (await db.execute(
                    select(StoreReview)
                    .where(StoreReview.product_id.in_(ids),
                           StoreReview.status == "approved")
                    .order_by(StoreReview.created_at.desc())
                )).scalars().all()

    by_product: Dict[str, List[dict]] = {}
    for v in variants:
        by_product.setdefault(v.product_id, []).append(variant_dict(v))
    reviews_by_product: Dict[str, List[dict]] = {}
    for r in reviews:
        reviews_by_product.setdefault(r.product_id, []).append(review_dict(r))

    out = []
    for p in products:
        pv = by_product.get(p.id, [])
        default = next((v for v in pv if v["is_default"]), None)
        if default is None and pv:
            default = pv[0]
        item = product_dict(p)
        item["variants"] = pv
        item["reviews"] = reviews_by_product.get(p.id, [])
        item["default_variant"] = default
        out.append(item)
    return out


async def add_wishlist(db: AsyncSession, gated: Gated, user_id: str,
                       product_id: str) -> None:
    async with gated():
        async with db.begin():
            existing = await db.get(StoreWishlist, (user_id, product_id))
            if existing is None:
                db.add(StoreWishlist(user_id=user_id, product_id=product_id,
                                     created_at=now_ts()))


async def remove_wishlist(db: AsyncSession, gated: Gated, user_id: str,
                          product_id: str) -> None:
    async with gated():
        async with db.begin():
            await db.execute(
                delete(StoreWishlist)
                .where(StoreWishlist.user_id == user_id,
                       StoreWishlist.product_id == product_id)
            )


async def list_wishlist(db: AsyncSession, gated: Gated,
                        user_id: str) -> List[str]:
    async with gated():
        async with db.begin():
            rows = (await db.execute(
                select(StoreWishlist.product_id)
                .where(StoreWishlist.user_id == user_id)
                .order_by(StoreWishlist.created_at.desc())
            )).scalars().all()
    return list(rows)


async def submit_review(db: AsyncSession, gated: Gated, user_id: str,
                        product_id: str, rating: float, title: str = "",
                        body: str = "") -> dict:
    """Reviews start pending; admins approve them for the storefront."""
    review = StoreReview(
        product_id=product_id,
        user_id=user_id,
        rating=min(5, max(1, round_half_up(rating))),
        title=(title or "").strip(),
        body=(body or "").strip(),
        status="pending",
        created_at=now_ts(),
    )
    async with gated():
        async with db.begin():
            if await db.get(StoreProduct, product_id) is None:
                raise StoreError("Product not found.", 404)
            db.add(review)
            await db.flush()
    return review_dict(review)


# ----------------------------
# Admin
# ----------------------------
async def admin_snapshot(db: AsyncSession, gated: Gated) -> dict:
    async with gated():
        async with db.begin():
            products = (await db.execute(
                select(StoreProduct).order_by(StoreProduct.updated_at.desc())
            )).scalars().all()
            variants = (await db.execute(
                select(StoreVariant).order_by(StoreVariant.updated_at.desc())
            )).scalars().all()
            orders = (await db.execute(
                select(StoreOrder)
                .order_by(StoreOrder.created_at.desc())
                .limit(ADMIN_LIST_LIMIT)
            )).scalars().all()
            reviews = (await db.execute(
                select(StoreReview)
                .order_by(StoreReview.created_at.desc())
                .limit(ADMIN_LIST_LIMIT)
            )).scalars().all()
            items = []
            order_ids = [o.id for o in orders]
            if order_ids:
                items = (await db.execute(
                    select(StoreOrderItem)
                    .where(StoreOrderItem.order_id.in_(order_ids))
                    .order_by(StoreOrderItem.id.desc())
                )).scalars().all()
    return {
        "products": [product_dict(p) for p in products],
        "variants": [variant_dict(v) for v in variants],
        "orders": [order_dict(o) for o in orders],
        "order_items": [order_item_dict(i) for i in items],
        "reviews": [review_dict(r) for r in reviews],
    }


def _non_negative_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return max(0, round_half_up(float(value)))


async def upsert_product(db: AsyncSession, gated: Gated,
                         data: Mapping[str, Any]) -> dict:
    name = str(data.get("name") or "").strip()
    slug = str(data.get("slug") or "").strip().lower()
    product_type = data.get("product_type")
    if not name or not slug:
        raise StoreError("Product name and slug are required.")
    if product_type not in PRODUCT_TYPES:
        raise StoreError(f"invalid product_type: {product_type}")
    status = data.get("status") or "draft"
    if status not in PRODUCT_STATUSES:
        raise StoreError(f"invalid status: {status}")

    fields = dict(
        slug=slug,
        name=name,
        description=data.get("description") or "",
        product_type=product_type,
        status=status,
        currency=str(data.get("currency") or "usd").lower(),
        base_price_cents=_non_negative_int(data.get("base_price_cents")) or 0,
        cover_image=data.get("cover_image") or None,
        gallery=list(data.get("gallery") or []),
        related_product_ids=list(data.get("related_product_ids") or []),
        meta=dict(data.get("metadata") or {}),
    )
    ts = now_ts()
    async with gated():
        async with db.begin():
            product = None
            if data.get("id"):
                product = await db.get(StoreProduct, data["id"])
                if product is None:
                    raise StoreError("Product not found.", 404)
            if product is None:
                product = StoreProduct(id=uuid.uuid4().hex, created_at=ts)
                db.add(product)
            for key, value in fields.items():
                setattr(product, key, value)
            product.updated_at = ts
            await db.flush()
    return product_dict(product)


async def upsert_variant(db: AsyncSession, gated: Gated,
                         data: Mapping[str, Any]) -> dict:
    sku = str(data.get("sku") or "").strip()
    title = str(data.get("title") or "").strip()
    if not data.get("product_id") or not sku or not title:
        raise StoreError("product_id, sku and title are required.")
    if data.get("price_cents") is None:
        raise StoreError("price_cents is required.")
    mode = data.get("inventory_mode") or "unlimited"
    if mode not in INVENTORY_MODES:
        raise StoreError(f"invalid inventory_mode: {mode}")

    fields = dict(
        product_id=data["product_id"],
        sku=sku,
        title=title,
        price_cents=_non_negative_int(data["price_cents"]),
        compare_at_cents=_non_negative_int(data.get("compare_at_cents")),
        inventory_mode=mode,
        inventory_count=_non_negative_int(data.get("inventory_count")),
        weight_grams=_non_negative_int(data.get("weight_grams")),
        attributes=dict(data.get("attributes") or {}),
        digital_delivery_url=data.get("digital_delivery_url") or None,
        stripe_price_id=data.get("stripe_price_id") or None,
        is_default=bool(data.get("is_default")),
        is_active=data.get("is_active") is not False,
    )
    ts = now_ts()
    async with gated():
        async with db.begin():
            if await db.get(StoreProduct, fields["product_id"]) is None:
                raise StoreError("Product not found.", 404)
            variant = None
            if data.get("id"):
                variant = await db.get(StoreVariant, data["id"])
                if variant is None:
                    raise StoreError("Variant not found.", 404)
            if variant is None:
                variant = StoreVariant(id=uuid.uuid4().hex, created_at=ts)
                db.add(variant)
            for key, value in fields.items():
                setattr(variant, key, value)
            variant.updated_at = ts
            await db.flush()
    return variant_dict(variant)


async def set_review_status(db: AsyncSession, gated: Gated, review_id: int,
                            status: str) -> None:
    if status not in ("approved", "rejected"):
        raise StoreError(f"invalid review status: {status}")
    async with gated():
        async with db.begin():
            result = await db.execute(
                update(StoreReview)
                .where(StoreReview.id == review_id)
                .values(status=status)
            )
            if result.rowcount == 0:
                raise StoreError("Review not found.", 404)
