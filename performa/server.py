from __future__ import annotations
import logging

import httpx
import redis.asyncio as redis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from .deps import adapter, engine, settings
from .errors import PerformaError
from .model.db import Base
from .model.leaderboard import BACKEND as LEADERBOARD_BACKEND
from .payments import MockPay
from .routes import admin, concierge, live, store, vault

log = logging.getLogger(__name__)

app = FastAPI(
    title="The Performa",
    default_response_class=ORJSONResponse,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(concierge.router)
app.include_router(store.router)
app.include_router(live.router)
app.include_router(vault.router)
app.include_router(admin.router)


# ----------------------------
# Errors
# ----------------------------
@app.exception_handler(PerformaError)
async def _performa_error(request: Request, exc: PerformaError):
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path,
                  exc.detail)
    return ORJSONResponse({"detail": exc.detail},
                          status_code=exc.status_code)


@app.get("/healthz")
async def healthz():
    return {"ok": True}


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    P = "MockPay" if isinstance(adapter, MockPay) else "Stripe"
    L = "PostgreSQL" if LEADERBOARD_BACKEND == "pg" else "Redis"
    log.info("=" * 50)
    log.info("The Performa is starting up...")
    log.info("   - Payments           Backend: %s", P)
    log.info("   - Leaderboard        Backend: %s", L)
    log.info("=" * 50)


@app.on_event("startup")
async def _db_init():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=10.0,
        limits=httpx.Limits(
            max_connections=100, max_keepalive_connections=20
        ),
    )


@app.on_event("startup")
async def _redis_start():
    if LEADERBOARD_BACKEND == "redis":
        app.state.redis = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.aclose()
        app.state.redis = None


@app.on_event("shutdown")
async def _engine_stop():
    await engine.dispose()
