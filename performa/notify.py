"""Outbound email (Resend) and SMS (Twilio)."""

import logging

import httpx

from .config import ResendConfig, TwilioConfig

log = logging.getLogger(__name__)


async def send_email(http: httpx.AsyncClient, cfg: ResendConfig,
                     to: str, subject: str, html: str) -> bool:
    """True when Resend accepted the message."""
    try:
        resp = await http.post(
            f"{cfg.api_base}/emails",
            json={"from": cfg.from_email, "to": [to],
                  "subject": subject, "html": html},
            headers={"Authorization": f"Bearer {cfg.api_key}"},
        )
    except httpx.HTTPError as e:
        log.warning("resend delivery to %s failed: %s", to, e)
        return False
    if resp.status_code >= 400:
        log.warning("resend rejected %s: %s %s", to, resp.status_code,
                    resp.text[:200])
        return False
    return True


async def send_sms(http: httpx.AsyncClient, cfg: TwilioConfig,
                   to: str, body: str) -> bool:
    """True when Twilio queued the message."""
    url = (f"{cfg.api_base}/2010-04-01/Accounts/"
           f"{cfg.account_sid}/Messages.json")
    try:
        resp = await http.post(
            url,
            data={"To": to, "From": cfg.from_number, "Body": body},
            auth=(cfg.account_sid, cfg.auth_token),
        )
    except httpx.HTTPError as e:
        log.warning("twilio delivery to %s failed: %s", to, e)
        return False
    if resp.status_code >= 400:
        log.warning("twilio rejected %s: %s %s", to, resp.status_code,
                    resp.text[:200])
        return False
    return True
