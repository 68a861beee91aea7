import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import RedirectResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import AuthUser, bearer_token
from ..deps import current_user, gated, get_db, get_http, settings
from ..helpers import ct_equal
from ..live import tracking
from ..live.blast import BlastRequest, recent_dispatches, send_blast

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/live", tags=["live"])


def require_operator(authorization: Optional[str] = Header(None)) -> None:
    token = bearer_token(authorization)
    expected = settings.live_blast_token
    if not expected or not token or not ct_equal(token, expected):
        raise HTTPException(401, detail="Unauthorized")


# ----------------------------
# Fan subscription
# ----------------------------
@router.get("/subscription")
async def subscription_get(user: AuthUser = Depends(current_user),
                           db: AsyncSession = Depends(get_db)):
    return await tracking.get_subscription(db, gated, user.id)


@router.put("/subscription")
async def subscription_put(payload: dict,
                           user: AuthUser = Depends(current_user),
                           db: AsyncSession = Depends(get_db)):
    return await tracking.save_subscription(db, gated, user.id, payload)


# ----------------------------
# Operator blast
# ----------------------------
@router.post("/blast", dependencies=[Depends(require_operator)])
async def blast_send(
    payload: dict,
    x_operator: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    http: httpx.AsyncClient = Depends(get_http),
):
    req = BlastRequest.from_payload(payload, settings.live_fallback_url)
    return await send_blast(db, gated, http, settings, req,
                            operator=(x_operator or "").strip() or "manual")


@router.get("/blast", dependencies=[Depends(require_operator)])
async def blast_recent(db: AsyncSession = Depends(get_db)):
    return {"items": await recent_dispatches(db, gated)}


# ----------------------------
# Open pixel / click redirect
# ----------------------------
@router.get("/track")
async def track(
    request: Request,
    event: Optional[str] = None,
    dispatch_id: Optional[str] = None,
    recipient: Optional[str] = None,
    url: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    await tracking.record_engagement(
        db, gated,
        event=event,
        dispatch_id=dispatch_id,
        recipient=recipient,
        user_agent=request.headers.get("user-agent", ""),
        referer=request.headers.get("referer", ""),
    )
    if event == "click":
        return RedirectResponse(
            url=tracking.safe_redirect(url, settings.live_fallback_url),
            status_code=302,
        )
    return Response(
        content=tracking.PIXEL_GIF,
        media_type="image/gif",
        headers={"Cache-Control": "no-store, max-age=0"},
    )
