"""
Performa Test Fixtures
======================

The app reads its settings at import time, so the environment is prepared
here before anything under performa is imported. One SQLite file backs the
whole session; tables are emptied before every API test.
"""

import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="performa-tests-")
DB_PATH = os.path.join(_DB_DIR, "performa.db")

os.environ.update({
    "DATABASE_URL": f"sqlite:///{DB_PATH}",
    "PAYMENTS_BACKEND": "mock",
    "MOCK_SECRET": "test-mock-secret",
    "LEADERBOARD_BACKEND": "pg",
    "SUPABASE_URL": "https://auth.test",
    "SUPABASE_ANON_KEY": "anon-test",
    "LIVE_BLAST_TOKEN": "blast-token",
    "PUBLIC_BASE_URL": "https://performa.test",
    "RESEND_API_KEY": "re_test",
    "RESEND_FROM_EMAIL": "alerts@performa.test",
    "TWILIO_ACCOUNT_SID": "AC_test",
    "TWILIO_AUTH_TOKEN": "tw_test",
    "TWILIO_FROM_NUMBER": "+15550000000",
    "LOG_LEVEL": "WARNING",
})

from typing import Callable, Dict, List, Optional  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from performa.auth import AuthUser  # noqa: E402
from performa.deps import adapter, get_http, optional_user  # noqa: E402
from performa.infra import timings  # noqa: E402
from performa.model.db import Base, StoreAdmin  # noqa: E402
from performa.server import app  # noqa: E402


# ============================================
# OUTBOUND HTTP
# ============================================

class Outbound:
    """Records outbound requests; routes answer by (method, path prefix)."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.routes: Dict[tuple, Callable[[httpx.Request], httpx.Response]] = {}

    def on(self, method: str, prefix: str, status: int = 200,
           json: Optional[dict] = None) -> None:
        self.routes[(method, prefix)] = (
            lambda req: httpx.Response(status, json=json or {})
        )

    def to(self, host: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host == host]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for (method, prefix), respond in self.routes.items():
            if request.method == method and request.url.path.startswith(prefix):
                return respond(request)
        return httpx.Response(200, json={"id": "ok"})


@pytest.fixture
def outbound():
    return Outbound()


# ============================================
# DATABASE
# ============================================

@pytest.fixture(scope="session")
def sync_engine():
    engine = create_engine(f"sqlite:///{DB_PATH}")
    yield engine
    engine.dispose()


def _wipe(engine) -> None:
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def make_admin(sync_engine):
    def _make(user_id: str, role: str = "owner") -> None:
        with Session(sync_engine) as s, s.begin():
            s.merge(StoreAdmin(user_id=user_id, role=role))
    return _make


# ============================================
# APP
# ============================================

class AuthState:
    def __init__(self):
        self.user: Optional[AuthUser] = None

    def login(self, user_id: str, email: str = "", name: str = "Fan") -> AuthUser:
        self.user = AuthUser(id=user_id, email=email or f"{user_id}@fans.test",
                             name=name)
        return self.user

    def logout(self) -> None:
        self.user = None


@pytest.fixture
def auth():
    return AuthState()


@pytest.fixture
def client(outbound, auth, sync_engine):
    """TestClient with fake auth and a MockTransport HTTP client."""
    mock_http = httpx.AsyncClient(transport=httpx.MockTransport(outbound.handler))
    app.dependency_overrides[get_http] = lambda: mock_http
    app.dependency_overrides[optional_user] = lambda: auth.user
    with TestClient(app) as c:
        _wipe(sync_engine)
        adapter.sessions.clear()
        timings.reset()
        yield c
        c.portal.call(mock_http.aclose)
    app.dependency_overrides.clear()


@pytest.fixture
def admin(auth, make_admin):
    user = auth.login("admin-1", "boss@performa.test", "Boss")
    make_admin(user.id)
    return user
