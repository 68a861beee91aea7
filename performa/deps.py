"""Process-wide singletons and FastAPI dependencies."""

import logging
import sys
from typing import Optional

import httpx
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import AuthUser, bearer_token, fetch_user
from .config import Settings
from .infra.sql import make_async_engine
from .logging_config import configure_logging
from .model.db import StoreAdmin
from .model.leaderboard import BACKEND as LEADERBOARD_BACKEND, new_store
from .payments import PaymentAdapter, new_adapter

settings = Settings.from_env()
configure_logging(settings.log_level, settings.log_format)
log = logging.getLogger(__name__)

if not settings.database_url:
    log.error("DATABASE_URL is not set; refusing to start")
    sys.exit(1)

engine, SessionAsync, gated = make_async_engine(settings)
adapter: PaymentAdapter = new_adapter(settings)


async def get_db() -> AsyncSession:
    async with SessionAsync() as session:
        yield session


def get_http(request: Request) -> httpx.AsyncClient:
    http = getattr(request.app.state, "http", None)
    if http is None:
        raise RuntimeError("HTTP client not initialized")
    return http


async def leaderboard(request: Request):
    if LEADERBOARD_BACKEND == "pg":
        async with SessionAsync() as session:
            yield new_store(db=session, gated=gated)
    else:
        yield new_store(r=request.app.state.redis)


# ----------------------------
# Auth
# ----------------------------
async def optional_user(
    authorization: Optional[str] = Header(None),
    http: httpx.AsyncClient = Depends(get_http),
) -> Optional[AuthUser]:
    return await fetch_user(http, settings, bearer_token(authorization))


async def current_user(
    user: Optional[AuthUser] = Depends(optional_user),
) -> AuthUser:
    if user is None:
        raise HTTPException(401, detail="Sign in required.")
    return user


async def admin_user(
    user: AuthUser = Depends(current_user),
    db: AsyncSession = Depends(get_db),
) -> AuthUser:
    async with gated():
        async with db.begin():
            row = await db.get(StoreAdmin, user.id)
    if row is None:
        raise HTTPException(403, detail="Admin access required.")
    return user
