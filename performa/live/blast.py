"""
Go-live blast: one dispatch row, then an email and/or SMS to every enabled
subscriber whose platform preference matches.
"""
from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlencode

import httpx
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..helpers import now_ts, only_phone_chars, to_iso
from ..infra.sql import Gated
from ..infra.timings import timeit
from ..model.db import (
    FanProfile, LiveDispatch, LiveEngagementEvent, LiveSubscription,
)
from ..notify import send_email, send_sms

log = logging.getLogger(__name__)

STATUSES = ("live", "offline", "test")
PLATFORMS = ("youtube", "instagram", "facebook", "twitch", "multi")
DEFAULT_TITLE = "Chip Lee Pop-Up Fan Stream"
RECENT_DISPATCHES = 25


def normalize_platform(value: Any) -> str:
    p = str(value or "multi").lower()
    return p if p in PLATFORMS else "multi"


def platform_matches(preferred: Optional[str], platform: str) -> bool:
    pref = (preferred or "multi").lower()
    return pref == "multi" or platform == "multi" or pref == platform


def build_message(status: str, title: str, stream_url: str,
                  message: str = "") -> str:
    if message and message.strip():
        return message.strip()
    if status == "offline":
        return f"Stream closed: {title}. Replay and clips soon."
    if status == "test":
        return f"Test alert from Chip Lee stream system: {title}"
    return f"Chip Lee is live now: {title}. Tap in: {stream_url}"


def build_subject(status: str, title: str) -> str:
    if status == "offline":
        return f"Stream update: {title}"
    return f"Chip Lee is live: {title}"


def track_url(base_url: str, event: str, dispatch_id: int, recipient: str,
              target: Optional[str] = None) -> str:
    params = {"event": event, "dispatch_id": dispatch_id,
              "recipient": recipient}
    if target is not None:
        params["url"] = target
    return f"{base_url}/api/live/track?{urlencode(params)}"


def email_html(message: str, click_url: str, pixel_url: str) -> str:
    return (
        f"<p>{html.escape(message)}</p>"
        f'<p><a href="{html.escape(click_url)}">Open Stream</a></p>'
        f'<img src="{html.escape(pixel_url)}" alt="" width="1" height="1" '
        f'style="display:block;opacity:0" />'
    )


@dataclass
class BlastRequest:
    status: str = "live"
    title: str = DEFAULT_TITLE
    stream_url: str = ""
    platform: str = "multi"
    message: str = ""
    send_email: bool = True
    send_sms: bool = False

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any],
                     fallback_url: str) -> "BlastRequest":
        status = raw.get("status")
        return cls(
            status=status if status in ("offline", "test") else "live",
            title=str(raw.get("title") or DEFAULT_TITLE).strip(),
            stream_url=str(raw.get("stream_url") or fallback_url).strip(),
            platform=normalize_platform(raw.get("platform")),
            message=str(raw.get("message") or ""),
            send_email=raw.get("send_email") is not False,
            send_sms=raw.get("send_sms") is True,
        )


@dataclass
class ChannelResult:
    attempted: int = 0
    sent: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"attempted": self.attempted, "sent": self.sent,
                "errors": list(self.errors)}


def collect_recipients(rows, req: BlastRequest) -> tuple[List[str], List[str]]:
    """Dedupe lowercase emails and digit-only phones, keeping first-seen
    order. rows are (subscription, profile email) pairs."""
    emails: Dict[str, None] = {}
    phones: Dict[str, None] = {}
    for sub, email in rows:
        if not platform_matches(sub.preferred_platform, req.platform):
            continue
        email = (email or "").strip().lower()
        if req.send_email and sub.email_alerts and email:
            emails[email] = None
        phone = only_phone_chars(sub.sms_phone or "")
        if req.send_sms and sub.sms_alerts and phone:
            phones[phone] = None
    return list(emails), list(phones)


async def send_blast(db: AsyncSession, gated: Gated,
                     http: httpx.AsyncClient, settings: Settings,
                     req: BlastRequest, operator: str = "manual") -> dict:
    message = build_message(req.status, req.title, req.stream_url,
                            req.message)
    subject = build_subject(req.status, req.title)

    async with gated():
        async with db.begin():
            dispatch = LiveDispatch(
                created_at=now_ts(),
                created_by=operator or "manual",
                status=req.status,
                title=req.title,
                stream_url=req.stream_url,
                platform=req.platform,
                email_count=0,
                sms_count=0,
                meta={},
            )
            db.add(dispatch)
            await db.flush()
            rows = (await db.execute(
                select(LiveSubscription, FanProfile.email)
                .outerjoin(FanProfile, FanProfile.id == LiveSubscription.user_id)
                .where(LiveSubscription.enabled.is_(True))
            )).all()
    dispatch_id = dispatch.id

    emails, phones = collect_recipients(rows, req)
    email_result = ChannelResult(attempted=len(emails))
    sms_result = ChannelResult(attempted=len(phones))
    base = settings.public_base_url

    if req.send_email and emails:
        if not settings.resend.is_configured:
            email_result.errors.append("Resend not configured.")
        else:
            async with timeit("live.blast.email"):
                for email in emails:
                    body = email_html(
                        message,
                        track_url(base, "click", dispatch_id, email,
                                  req.stream_url),
                        track_url(base, "open", dispatch_id, email),
                    )
                    if await send_email(http, settings.resend, email,
                                        subject, body):
                        email_result.sent += 1
                    else:
                        email_result.errors.append(f"email:{email}")

    if req.send_sms and phones:
        if not settings.twilio.is_configured:
            sms_result.errors.append("Twilio not configured.")
        else:
            async with timeit("live.blast.sms"):
                for phone in phones:
                    if await send_sms(http, settings.twilio, phone, message):
                        sms_result.sent += 1
                    else:
                        sms_result.errors.append(f"sms:{phone}")

    async with gated():
        async with db.begin():
            row = await db.get(LiveDispatch, dispatch_id)
            row.email_count = email_result.sent
            row.sms_count = sms_result.sent
            row.meta = {
                "attempted_email": email_result.attempted,
                "attempted_sms": sms_result.attempted,
                "errors": email_result.errors + sms_result.errors,
            }

    log.info("live blast %s: %d/%d email, %d/%d sms", req.status,
             email_result.sent, email_result.attempted,
             sms_result.sent, sms_result.attempted,
             extra={"dispatch_id": dispatch_id})
    return {
        "ok": True,
        "status": req.status,
        "title": req.title,
        "stream_url": req.stream_url,
        "platform": req.platform,
        "dispatch_id": dispatch_id,
        "result": {"email": email_result.to_dict(),
                   "sms": sms_result.to_dict()},
    }


async def recent_dispatches(db: AsyncSession, gated: Gated,
                            limit: int = RECENT_DISPATCHES) -> List[dict]:
    async with gated():
        async with db.begin():
            dispatches = (await db.execute(
                select(LiveDispatch)
                .order_by(LiveDispatch.id.desc())
                .limit(limit)
            )).scalars().all()
            ids = [d.id for d in dispatches]
            counts = []
            if ids:
                counts = (await db.execute(
                    select(LiveEngagementEvent.dispatch_id,
                           LiveEngagementEvent.event_type,
                           func.count())
                    .where(LiveEngagementEvent.dispatch_id.in_(ids))
                    .group_by(LiveEngagementEvent.dispatch_id,
                              LiveEngagementEvent.event_type)
                )).all()

    tally: Dict[int, Dict[str, int]] = {}
    for dispatch_id, event_type, n in counts:
        tally.setdefault(dispatch_id, {})[event_type] = n
    return [{
        "id": d.id,
        "created_at": to_iso(d.created_at),
        "created_by": d.created_by,
        "status": d.status,
        "title": d.title,
        "stream_url": d.stream_url,
        "platform": d.platform,
        "email_count": d.email_count,
        "sms_count": d.sms_count,
        "metadata": dict(d.meta or {}),
        "opens": tally.get(d.id, {}).get("open", 0),
        "clicks": tally.get(d.id, {}).get("click", 0),
    } for d in dispatches]
