"""Feed reports, moderation statuses and the global moderation switch."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import VaultError
from ..helpers import now_ts, to_iso
from ..infra.sql import Gated
from ..model.db import AppSetting, FeedComment, FeedPost, FeedReport

log = logging.getLogger(__name__)

MODERATION_SETTING = "feed_moderation_enabled"
TARGET_TYPES = ("post", "comment")
REPORT_STATUSES = ("open", "reviewed", "resolved", "dismissed")
MODERATION_STATUSES = ("approved", "flagged", "rejected")
MAX_REPORT_LIMIT = 500


async def moderation_enabled(db: AsyncSession) -> bool:
    """Read inside the caller's transaction."""
    row = await db.get(AppSetting, MODERATION_SETTING)
    return bool(row is not None and row.value)


async def get_moderation_enabled(db: AsyncSession, gated: Gated) -> bool:
    async with gated():
        async with db.begin():
            return await moderation_enabled(db)


async def set_moderation_enabled(db: AsyncSession, gated: Gated,
                                 enabled: bool) -> bool:
    async with gated():
        async with db.begin():
            row = await db.get(AppSetting, MODERATION_SETTING)
            if row is None:
                row = AppSetting(key=MODERATION_SETTING)
                db.add(row)
            row.value = bool(enabled)
            row.updated_at = now_ts()
    log.info("feed moderation %s", "enabled" if enabled else "disabled")
    return bool(enabled)


def _target_model(target_type: str):
    if target_type == "post":
        return FeedPost
    if target_type == "comment":
        return FeedComment
    raise VaultError(f"invalid target type: {target_type}")


def report_dict(r: FeedReport) -> Dict[str, Any]:
    return {
        "id": r.id,
        "reporter_id": r.reporter_id,
        "target_type": r.target_type,
        "target_id": r.target_id,
        "reason_code": r.reason_code,
        "details": r.details,
        "status": r.status,
        "created_at": to_iso(r.created_at),
        "updated_at": to_iso(r.updated_at),
    }


async def report_target(db: AsyncSession, gated: Gated, reporter_id: str,
                        target_type: str, target_id: int, reason_code: str,
                        details: str = "") -> dict:
    model = _target_model(target_type)
    reason = (reason_code or "").strip()
    if not reason:
        raise VaultError("A report reason is required.")
    ts = now_ts()
    report = FeedReport(
        reporter_id=reporter_id,
        target_type=target_type,
        target_id=int(target_id),
        reason_code=reason,
        details=(details or "").strip(),
        status="open",
        created_at=ts,
        updated_at=ts,
    )
    async with gated():
        async with db.begin():
            if await db.get(model, int(target_id)) is None:
                raise VaultError(f"{target_type.capitalize()} not found.", 404)
            db.add(report)
            await db.flush()
    return report_dict(report)


async def list_reports(db: AsyncSession, gated: Gated,
                       status: Optional[str] = None,
                       limit: int = 200) -> List[dict]:
    stmt = select(FeedReport).order_by(FeedReport.created_at.desc())
    if status:
        if status not in REPORT_STATUSES:
            raise VaultError(f"invalid report status: {status}")
        stmt = stmt.where(FeedReport.status == status)
    stmt = stmt.limit(max(1, min(MAX_REPORT_LIMIT, int(limit))))
    async with gated():
        async with db.begin():
            rows = (await db.execute(stmt)).scalars().all()
    return [report_dict(r) for r in rows]


async def set_report_status(db: AsyncSession, gated: Gated, report_id: int,
                            status: str) -> dict:
    if status not in REPORT_STATUSES:
        raise VaultError(f"invalid report status: {status}")
    async with gated():
        async with db.begin():
            report = await db.get(FeedReport, report_id)
            if report is None:
                raise VaultError("Report not found.", 404)
            report.status = status
            report.updated_at = now_ts()
    return report_dict(report)


async def set_target_status(db: AsyncSession, gated: Gated, target_type: str,
                            target_id: int, status: str,
                            reason: str = "") -> dict:
    model = _target_model(target_type)
    if status not in MODERATION_STATUSES:
        raise VaultError(f"invalid moderation status: {status}")
    async with gated():
        async with db.begin():
            row = await db.get(model, int(target_id))
            if row is None:
                raise VaultError(f"{target_type.capitalize()} not found.", 404)
            row.moderation_status = status
            row.moderation_reason = (reason or "").strip() or None
            if target_type == "post":
                row.updated_at = now_ts()
    log.info("%s %s moderated: %s", target_type, target_id, status)
    return {"target_type": target_type, "target_id": int(target_id),
            "moderation_status": status,
            "moderation_reason": (reason or "").strip() or None}
