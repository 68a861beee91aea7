"""Open/click tracking for blast emails, and fan live subscriptions."""
from __future__ import annotations

import base64
from typing import Any, Mapping, Optional
from urllib.parse import urlsplit

from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import LiveError
from ..helpers import now_ts, only_phone_chars, to_iso
from ..infra.sql import Gated
from ..model.db import LiveEngagementEvent, LiveSubscription
from .blast import PLATFORMS

PIXEL_GIF = base64.b64decode(
    "R0lGODlhAQABAIABAP///wAAACwAAAAAAQABAAACAkQBADs="
)
MAX_RECIPIENT_LEN = 180
EVENTS = ("open", "click")


def safe_redirect(url: Optional[str], fallback: str) -> str:
    """Only absolute http(s) targets are followed."""
    if not url:
        return fallback
    try:
        parts = urlsplit(url)
    except ValueError:
        return fallback
    if parts.scheme in ("http", "https") and parts.netloc:
        return url
    return fallback


def parse_dispatch_id(value: Optional[str]) -> Optional[int]:
    try:
        num = int(value or 0)
    except (TypeError, ValueError):
        return None
    return num if num > 0 else None


async def record_engagement(db: AsyncSession, gated: Gated, *,
                            event: Optional[str], dispatch_id: Optional[str],
                            recipient: Optional[str], user_agent: str = "",
                            referer: str = "") -> None:
    did = parse_dispatch_id(dispatch_id)
    if event not in EVENTS or did is None:
        raise LiveError("Bad request")
    async with gated():
        async with db.begin():
            db.add(LiveEngagementEvent(
                dispatch_id=did,
                event_type=event,
                recipient=(recipient or "")[:MAX_RECIPIENT_LEN] or None,
                meta={"user_agent": user_agent or "",
                      "referer": referer or ""},
                created_at=now_ts(),
            ))


# ----------------------------
# Subscriptions
# ----------------------------
def subscription_dict(sub: Optional[LiveSubscription]) -> dict:
    if sub is None:
        return {"enabled": False, "email_alerts": True, "sms_alerts": False,
                "sms_phone": None, "preferred_platform": "multi",
                "updated_at": None}
    return {
        "enabled": bool(sub.enabled),
        "email_alerts": bool(sub.email_alerts),
        "sms_alerts": bool(sub.sms_alerts),
        "sms_phone": sub.sms_phone,
        "preferred_platform": sub.preferred_platform,
        "updated_at": to_iso(sub.updated_at),
    }


async def get_subscription(db: AsyncSession, gated: Gated,
                           user_id: str) -> dict:
    async with gated():
        async with db.begin():
            sub = await db.get(LiveSubscription, user_id)
    return subscription_dict(sub)


async def save_subscription(db: AsyncSession, gated: Gated, user_id: str,
                            data: Mapping[str, Any]) -> dict:
    platform = str(data.get("preferred_platform") or "multi").lower()
    if platform not in PLATFORMS:
        raise LiveError(f"invalid preferred_platform: {platform}")
    phone = only_phone_chars(data.get("sms_phone") or "") or None
    sms_alerts = bool(data.get("sms_alerts"))
    if sms_alerts and not phone:
        raise LiveError("A phone number is required for SMS alerts.")

    async with gated():
        async with db.begin():
            sub = await db.get(LiveSubscription, user_id)
            if sub is None:
                sub = LiveSubscription(user_id=user_id)
                db.add(sub)
            sub.enabled = data.get("enabled") is not False
            sub.email_alerts = data.get("email_alerts") is not False
            sub.sms_alerts = sms_alerts
            sub.sms_phone = phone
            sub.preferred_platform = platform
            sub.updated_at = now_ts()
    return subscription_dict(sub)
