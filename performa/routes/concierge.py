import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..concierge.estimator import build_blueprint
from ..concierge.profile import DEFAULT_PROFILE, decode_profile, normalize_profile
from ..concierge.tables import catalog
from ..deps import gated, get_db
from ..helpers import is_valid_email, now_ts
from ..infra.timings import timeit
from ..model.db import BookingInquiry
from ..templating import templates

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/concierge", tags=["concierge"])


class InquiryBody(BaseModel):
    profile_token: str
    contact_email: str
    contact_name: str = ""
    note: str = ""


@router.get("/defaults")
async def concierge_defaults():
    return {"profile": DEFAULT_PROFILE.to_dict(), "options": catalog()}


@router.post("/estimate")
async def concierge_estimate(payload: dict):
    async with timeit("concierge.estimate"):
        blueprint = build_blueprint(normalize_profile(payload))
    return blueprint.to_dict()


@router.get("/blueprint", response_class=HTMLResponse)
async def concierge_blueprint(request: Request, p: Optional[str] = None):
    profile = decode_profile(p or "") or DEFAULT_PROFILE
    blueprint = build_blueprint(profile)
    return templates.TemplateResponse(
        request,
        "blueprint.html",
        {"bp": blueprint, "profile": profile},
    )


@router.post("/inquiries")
async def concierge_inquiry(body: InquiryBody,
                            db: AsyncSession = Depends(get_db)):
    email = body.contact_email.strip().lower()
    if not is_valid_email(email):
        raise HTTPException(
            400, detail="contact_email must be a valid email address"
        )
    profile = decode_profile(body.profile_token)
    if profile is None:
        raise HTTPException(400, detail="invalid profile token")

    bp = build_blueprint(profile)
    inquiry = BookingInquiry(
        profile_token=bp.token,
        contact_name=body.contact_name.strip(),
        contact_email=email,
        event_name=profile.event_name,
        venue=profile.venue,
        estimate_total=bp.costs.total,
        estimate_low=bp.costs.low,
        estimate_high=bp.costs.high,
        risk_score=bp.risk_score,
        note=body.note.strip(),
        created_at=now_ts(),
    )
    async with timeit("db.add_inquiry"):
        async with gated():
            async with db.begin():
                db.add(inquiry)
                await db.flush()
    log.info("booking inquiry %s for %s (%s)", inquiry.id, profile.venue,
             bp.costs.total)
    return {"ok": True, "inquiry_id": inquiry.id, "token": bp.token,
            "estimate_total": bp.costs.total}
