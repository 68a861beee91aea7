"""
Trivia questions, campaigns, and the scheduler that publishes them to the
fan feed.

A campaign walks its question list round-robin (skipping inactive
questions), one post per cadence slot, until its end time.
"""
from __future__ import annotations

import logging
import math
import re
import uuid
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import VaultError
from ..helpers import now_ts, parse_ts, to_iso
from ..infra.sql import Gated
from ..model.db import FanProfile, FeedPost, TriviaCampaign, TriviaQuestion
from .feed import add_poll, encode_trivia_body

log = logging.getLogger(__name__)

SYSTEM_USER_ID = "performa-system"
SYSTEM_USER_NAME = "The Performa"

DIFFICULTIES = ("easy", "medium", "hard")
CAMPAIGN_STATUSES = ("draft", "active", "paused", "completed")
CARD_TONES = ("ember", "gold", "cyan", "neutral")
DEFAULT_LOOK = {"label": "Trivia Beacon", "accentColor": "#f9b233",
                "cardTone": "gold"}
DEFAULT_SCHEDULER_LIMIT = 10

_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def sanitize_hex_color(value: Any) -> Optional[str]:
    trimmed = str(value or "").strip()
    return trimmed if _HEX_COLOR.match(trimmed) else None


def normalize_look(raw: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    raw = raw or {}
    look = {"label": str(raw.get("label") or DEFAULT_LOOK["label"]).strip()}
    accent = sanitize_hex_color(raw.get("accentColor"))
    if accent:
        look["accentColor"] = accent
    tone = raw.get("cardTone")
    look["cardTone"] = tone if tone in CARD_TONES else DEFAULT_LOOK["cardTone"]
    return look


def _positive_minutes(value: Any, name: str) -> int:
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        raise VaultError(f"{name} must be a whole number of minutes.")
    if minutes < 1:
        raise VaultError(f"{name} must be at least 1 minute.")
    return minutes


# ----------------------------
# Questions
# ----------------------------
def question_dict(q: TriviaQuestion) -> Dict[str, Any]:
    return {
        "id": q.id,
        "prompt": q.prompt,
        "options": list(q.options or []),
        "correct_option_index": q.correct_option_index,
        "category": q.category,
        "difficulty": q.difficulty,
        "image_url": q.image_url,
        "explanation": q.explanation,
        "is_active": bool(q.is_active),
        "created_at": to_iso(q.created_at),
        "updated_at": to_iso(q.updated_at),
    }


def validate_question(data: Mapping[str, Any]) -> Dict[str, Any]:
    prompt = str(data.get("prompt") or "").strip()
    if not prompt:
        raise VaultError("Question prompt is required.")
    options = [str(o).strip() for o in (data.get("options") or [])
               if str(o or "").strip()]
    if len(options) < 2:
        raise VaultError("A question needs at least two options.")
    try:
        correct = int(data.get("correct_option_index", 0))
    except (TypeError, ValueError):
        raise VaultError("correct_option_index must be a number.")
    if not 0 <= correct < len(options):
        raise VaultError("correct_option_index is out of range.")
    difficulty = data.get("difficulty") or "medium"
    if difficulty not in DIFFICULTIES:
        raise VaultError(f"invalid difficulty: {difficulty}")
    return {
        "prompt": prompt,
        "options": options,
        "correct_option_index": correct,
        "category": str(data.get("category") or "general").strip(),
        "difficulty": difficulty,
        "image_url": (data.get("image_url") or "").strip() or None,
        "explanation": (data.get("explanation") or "").strip() or None,
        "is_active": data.get("is_active") is not False,
    }


async def save_question(db: AsyncSession, gated: Gated,
                        data: Mapping[str, Any],
                        question_id: Optional[str] = None) -> dict:
    fields = validate_question(data)
    ts = now_ts()
    async with gated():
        async with db.begin():
            if question_id:
                q = await db.get(TriviaQuestion, question_id)
                if q is None:
                    raise VaultError("Question not found.", 404)
            else:
                q = TriviaQuestion(id=uuid.uuid4().hex, created_at=ts)
                db.add(q)
            for key, value in fields.items():
                setattr(q, key, value)
            q.updated_at = ts
    return question_dict(q)


async def list_questions(db: AsyncSession, gated: Gated) -> List[dict]:
    async with gated():
        async with db.begin():
            rows = (await db.execute(
                select(TriviaQuestion)
                .order_by(TriviaQuestion.created_at.desc())
            )).scalars().all()
    return [question_dict(q) for q in rows]


# ----------------------------
# Campaigns
# ----------------------------
def campaign_dict(c: TriviaCampaign) -> Dict[str, Any]:
    return {
        "id": c.id,
        "title": c.title,
        "question_ids": list(c.question_ids or []),
        "start_at": to_iso(c.start_at),
        "end_at": to_iso(c.end_at),
        "cadence_minutes": c.cadence_minutes,
        "post_duration_minutes": c.post_duration_minutes,
        "status": c.status,
        "look_and_feel": dict(c.look_and_feel or {}),
        "next_run_at": to_iso(c.next_run_at),
        "last_run_at": to_iso(c.last_run_at),
        "created_at": to_iso(c.created_at),
        "updated_at": to_iso(c.updated_at),
    }


def validate_campaign(data: Mapping[str, Any]) -> Dict[str, Any]:
    title = str(data.get("title") or "").strip()
    if not title:
        raise VaultError("Campaign title is required.")
    start_at = parse_ts(data.get("start_at"))
    if start_at is None:
        raise VaultError("Campaign start time is required.")
    end_at = parse_ts(data.get("end_at"))
    if data.get("end_at") and end_at is None:
        raise VaultError("Campaign end time is invalid.")
    if end_at is not None and end_at <= start_at:
        raise VaultError("Campaign must end after it starts.")
    status = data.get("status") or "draft"
    if status not in CAMPAIGN_STATUSES:
        raise VaultError(f"invalid campaign status: {status}")
    question_ids = [str(q) for q in (data.get("question_ids") or []) if q]
    return {
        "title": title,
        "question_ids": list(dict.fromkeys(question_ids)),
        "start_at": start_at,
        "end_at": end_at,
        "cadence_minutes": _positive_minutes(
            data.get("cadence_minutes", 60), "cadence_minutes"),
        "post_duration_minutes": _positive_minutes(
            data.get("post_duration_minutes", 10), "post_duration_minutes"),
        "status": status,
        "look_and_feel": normalize_look(data.get("look_and_feel")),
    }


async def save_campaign(db: AsyncSession, gated: Gated,
                        data: Mapping[str, Any],
                        campaign_id: Optional[str] = None) -> dict:
    fields = validate_campaign(data)
    ts = now_ts()
    async with gated():
        async with db.begin():
            if fields["question_ids"]:
                known = set((await db.execute(
                    select(TriviaQuestion.id)
                    .where(TriviaQuestion.id.in_(fields["question_ids"]))
                )).scalars().all())
                missing = [q for q in fields["question_ids"] if q not in known]
                if missing:
                    raise VaultError(f"unknown question ids: {missing}")
            if campaign_id:
                c = await db.get(TriviaCampaign, campaign_id)
                if c is None:
                    raise VaultError("Campaign not found.", 404)
                reschedule = c.start_at != fields["start_at"]
            else:
                c = TriviaCampaign(id=uuid.uuid4().hex, created_at=ts,
                                   cursor=0)
                db.add(c)
                reschedule = True
            for key, value in fields.items():
                setattr(c, key, value)
            if reschedule or c.next_run_at is None:
                c.next_run_at = c.start_at
            c.updated_at = ts
    return campaign_dict(c)


async def list_campaigns(db: AsyncSession, gated: Gated) -> List[dict]:
    async with gated():
        async with db.begin():
            rows = (await db.execute(
                select(TriviaCampaign)
                .order_by(TriviaCampaign.created_at.desc())
            )).scalars().all()
    return [campaign_dict(c) for c in rows]


# ----------------------------
# Scheduler
# ----------------------------
def next_slot(due: float, cadence_minutes: int, now: float) -> float:
    """First cadence slot after now; missed slots are skipped."""
    step = cadence_minutes * 60
    if due + step > now:
        return due + step
    return due + (math.floor((now - due) / step) + 1) * step


async def _ensure_system_profile(db: AsyncSession) -> None:
    if await db.get(FanProfile, SYSTEM_USER_ID) is None:
        db.add(FanProfile(id=SYSTEM_USER_ID, email="", name=SYSTEM_USER_NAME,
                          bio="", created_at=now_ts()))


async def run_scheduler(db: AsyncSession, gated: Gated,
                        now: Optional[float] = None,
                        limit: int = DEFAULT_SCHEDULER_LIMIT) -> dict:
    """Publish due trivia posts; at most limit posts per run."""
    now = now_ts() if now is None else float(now)
    limit = max(0, int(limit))
    published: List[dict] = []
    completed: List[str] = []

    async with gated():
        async with db.begin():
            campaigns = (await db.execute(
                select(TriviaCampaign)
                .where(TriviaCampaign.status == "active",
                       or_(TriviaCampaign.next_run_at.is_(None),
                           TriviaCampaign.next_run_at <= now,
                           TriviaCampaign.end_at <= now))
                .order_by(TriviaCampaign.next_run_at.asc())
            )).scalars().all()

            for c in campaigns:
                if c.end_at is not None and now >= c.end_at:
                    c.status = "completed"
                    c.updated_at = now
                    completed.append(c.id)
                    continue
                if len(published) >= limit:
                    continue
                due = c.next_run_at if c.next_run_at is not None else c.start_at
                if due > now:
                    continue

                ids = list(c.question_ids or [])
                active = {q.id: q for q in (await db.execute(
                    select(TriviaQuestion)
                    .where(TriviaQuestion.id.in_(ids),
                           TriviaQuestion.is_active.is_(True))
                )).scalars().all()} if ids else {}
                ordered = [active[q] for q in ids if q in active]
                if not ordered:
                    log.warning("trivia campaign %s has no active questions",
                                c.id)
                    continue

                question = ordered[(c.cursor or 0) % len(ordered)]
                look = normalize_look(c.look_and_feel)
                meta = {
                    "campaignId": c.id,
                    "questionId": question.id,
                    "label": look["label"],
                    "cardTone": look["cardTone"],
                    "createdAt": to_iso(now),
                    "options": list(question.options or []),
                    "expiresAt": to_iso(now + c.post_duration_minutes * 60),
                }
                if "accentColor" in look:
                    meta["accentColor"] = look["accentColor"]

                await _ensure_system_profile(db)
                post = FeedPost(
                    user_id=SYSTEM_USER_ID,
                    body=encode_trivia_body(meta, question.prompt),
                    media_url=question.image_url,
                    media_type="image" if question.image_url else None,
                    share_count=0,
                    moderation_status="approved",
                    created_at=now,
                    updated_at=now,
                )
                db.add(post)
                await db.flush()
                await add_poll(db, post.id, {
                    "question": question.prompt,
                    "allow_multiple": False,
                    "expires_at": now + c.post_duration_minutes * 60,
                    "options": [{"label": str(o)}
                                for o in (question.options or [])],
                })

                c.cursor = (c.cursor or 0) + 1
                c.last_run_at = now
                c.next_run_at = next_slot(due, c.cadence_minutes, now)
                c.updated_at = now
                published.append({"campaign_id": c.id,
                                  "question_id": question.id,
                                  "post_id": post.id})

    if published or completed:
        log.info("trivia scheduler: %d published, %d completed",
                 len(published), len(completed))
    return {"published": published, "completed": completed}
