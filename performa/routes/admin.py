from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import admin_user, gated, get_db
from ..helpers import parse_ts
from ..infra import timings
from ..vault import moderation, trivia

router = APIRouter(prefix="/api/admin", tags=["admin"],
                   dependencies=[Depends(admin_user)])


class ModerationSwitch(BaseModel):
    enabled: bool


class ReportStatusBody(BaseModel):
    status: str


class TargetStatusBody(BaseModel):
    target_type: str
    target_id: int
    status: str
    reason: str = ""


class SchedulerRun(BaseModel):
    limit: int = trivia.DEFAULT_SCHEDULER_LIMIT
    now: Optional[str] = None


# ----------------------------
# Feed moderation
# ----------------------------
@router.get("/moderation")
async def moderation_get(db: AsyncSession = Depends(get_db)):
    return {"enabled": await moderation.get_moderation_enabled(db, gated)}


@router.put("/moderation")
async def moderation_put(body: ModerationSwitch,
                         db: AsyncSession = Depends(get_db)):
    enabled = await moderation.set_moderation_enabled(db, gated, body.enabled)
    return {"ok": True, "enabled": enabled}


@router.get("/moderation/reports")
async def reports_list(status: Optional[str] = None, limit: int = 200,
                       db: AsyncSession = Depends(get_db)):
    items = await moderation.list_reports(db, gated, status, limit)
    return {"items": items}


@router.post("/moderation/reports/{report_id}/status")
async def reports_status(report_id: int, body: ReportStatusBody,
                         db: AsyncSession = Depends(get_db)):
    report = await moderation.set_report_status(db, gated, report_id,
                                                body.status)
    return {"ok": True, "report": report}


@router.post("/moderation/targets")
async def target_status(body: TargetStatusBody,
                        db: AsyncSession = Depends(get_db)):
    result = await moderation.set_target_status(
        db, gated, body.target_type, body.target_id, body.status, body.reason
    )
    return {"ok": True, **result}


# ----------------------------
# Trivia
# ----------------------------
@router.get("/trivia/questions")
async def questions_list(db: AsyncSession = Depends(get_db)):
    return {"items": await trivia.list_questions(db, gated)}


@router.post("/trivia/questions")
async def questions_create(payload: dict,
                           db: AsyncSession = Depends(get_db)):
    return {"ok": True,
            "question": await trivia.save_question(db, gated, payload)}


@router.put("/trivia/questions/{question_id}")
async def questions_update(question_id: str, payload: dict,
                           db: AsyncSession = Depends(get_db)):
    question = await trivia.save_question(db, gated, payload, question_id)
    return {"ok": True, "question": question}


@router.get("/trivia/campaigns")
async def campaigns_list(db: AsyncSession = Depends(get_db)):
    return {"items": await trivia.list_campaigns(db, gated)}


@router.post("/trivia/campaigns")
async def campaigns_create(payload: dict,
                           db: AsyncSession = Depends(get_db)):
    return {"ok": True,
            "campaign": await trivia.save_campaign(db, gated, payload)}


@router.put("/trivia/campaigns/{campaign_id}")
async def campaigns_update(campaign_id: str, payload: dict,
                           db: AsyncSession = Depends(get_db)):
    campaign = await trivia.save_campaign(db, gated, payload, campaign_id)
    return {"ok": True, "campaign": campaign}


@router.post("/trivia/scheduler/run")
async def scheduler_run(body: SchedulerRun,
                        db: AsyncSession = Depends(get_db)):
    async with timings.timeit("trivia.scheduler"):
        result = await trivia.run_scheduler(
            db, gated, parse_ts(body.now), body.limit
        )
    return {"ok": True, **result}


# ----------------------------
# Instrumentation
# ----------------------------
@router.get("/timings")
async def timings_snapshot():
    return {"items": timings.snapshot()}


@router.post("/timings/reset")
async def timings_reset():
    timings.reset()
    return {"ok": True}
