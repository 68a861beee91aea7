import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from .config import Settings
from .errors import ProviderError

log = logging.getLogger(__name__)


@dataclass
class AuthUser:
    id: str
    email: str = ""
    name: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        return ""
    return authorization[len("Bearer "):].strip()


async def fetch_user(http: httpx.AsyncClient, settings: Settings,
                     token: str) -> Optional[AuthUser]:
    """Resolve an access token against the hosted auth server.

    Returns None for a missing, expired or foreign token.
    """
    if not token:
        return None
    if not settings.supabase_url:
        raise ProviderError("Auth server is not configured.", 500)
    try:
        resp = await http.get(
            f"{settings.supabase_url.rstrip('/')}/auth/v1/user",
            headers={
                "Authorization": f"Bearer {token}",
                "apikey": settings.supabase_anon_key,
            },
        )
    except httpx.HTTPError as e:
        log.error("auth server unreachable: %s", e)
        raise ProviderError("Auth server is unreachable.")
    if resp.status_code in (401, 403, 404):
        return None
    if resp.status_code >= 400:
        log.warning("auth server answered %s", resp.status_code)
        raise ProviderError("Auth server error.")

    data = resp.json()
    if not isinstance(data, dict) or not data.get("id"):
        return None
    meta = data.get("user_metadata") or {}
    return AuthUser(
        id=str(data["id"]),
        email=str(data.get("email") or "").lower(),
        name=str(meta.get("name") or ""),
        metadata=meta,
    )
