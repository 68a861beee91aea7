"""
Go-live alert tests: subscriptions, operator blasts and open/click tracking.
"""

import json
from types import SimpleNamespace
from urllib.parse import parse_qs

from performa.deps import settings
from performa.live.blast import (
    BlastRequest, build_message, collect_recipients, platform_matches,
)
from performa.live.tracking import PIXEL_GIF, safe_redirect

OPERATOR = {"Authorization": "Bearer blast-token"}


# ============================================
# HELPERS
# ============================================

def _subscribe(client, auth, user_id, email, **prefs):
    auth.login(user_id, email)
    client.get("/api/vault/me")
    resp = client.put("/api/live/subscription", json=prefs)
    assert resp.status_code == 200, resp.text
    auth.logout()
    return resp.json()


def _sub(platform="multi", email_alerts=True, sms_alerts=False, phone=None):
    return SimpleNamespace(preferred_platform=platform,
                           email_alerts=email_alerts, sms_alerts=sms_alerts,
                           sms_phone=phone)


# ============================================
# PURE HELPERS
# ============================================

class TestBlastHelpers:

    def test_platform_matching(self):
        assert platform_matches("multi", "youtube")
        assert platform_matches("youtube", "multi")
        assert platform_matches("twitch", "twitch")
        assert not platform_matches("twitch", "youtube")
        assert platform_matches(None, "instagram")

    def test_messages(self):
        assert build_message("live", "Set", "https://s") == \
            "Chip Lee is live now: Set. Tap in: https://s"
        assert build_message("offline", "Set", "") == \
            "Stream closed: Set. Replay and clips soon."
        assert build_message("live", "Set", "", "  custom  ") == "custom"

    def test_request_defaults(self):
        req = BlastRequest.from_payload({"status": "bogus", "platform": "tiktok"},
                                        "https://fallback")
        assert req.status == "live"
        assert req.platform == "multi"
        assert req.stream_url == "https://fallback"
        assert req.send_email is True and req.send_sms is False

    def test_recipients_dedupe(self):
        req = BlastRequest(platform="youtube", send_email=True, send_sms=True)
        rows = [
            (_sub("youtube", sms_alerts=True, phone="+1 (555) 010-0000"),
             "A@Fans.test"),
            (_sub("multi", sms_alerts=True, phone="+15550100000"), "a@fans.test"),
            (_sub("twitch"), "twitch@fans.test"),
            (_sub("youtube", email_alerts=False), "quiet@fans.test"),
        ]
        emails, phones = collect_recipients(rows, req)
        assert emails == ["a@fans.test"]
        assert phones == ["+15550100000"]

    def test_safe_redirect(self):
        assert safe_redirect("https://x.test/a", "f") == "https://x.test/a"
        assert safe_redirect("javascript:alert(1)", "f") == "f"
        assert safe_redirect("/relative", "f") == "f"
        assert safe_redirect(None, "f") == "f"


# ============================================
# SUBSCRIPTION API
# ============================================

class TestSubscription:

    def test_default_when_missing(self, client, auth):
        auth.login("fan-1")
        data = client.get("/api/live/subscription").json()
        assert data["enabled"] is False
        assert data["preferred_platform"] == "multi"

    def test_save(self, client, auth):
        auth.login("fan-1")
        resp = client.put("/api/live/subscription", json={
            "preferred_platform": "YouTube", "sms_alerts": True,
            "sms_phone": "+1 555-010-0000",
        })
        data = resp.json()
        assert data["enabled"] is True
        assert data["preferred_platform"] == "youtube"
        assert data["sms_phone"] == "+15550100000"

    def test_sms_requires_phone(self, client, auth):
        auth.login("fan-1")
        resp = client.put("/api/live/subscription", json={"sms_alerts": True})
        assert resp.status_code == 400

    def test_requires_sign_in(self, client):
        assert client.get("/api/live/subscription").status_code == 401


# ============================================
# OPERATOR BLAST
# ============================================

class TestBlast:

    def test_requires_operator_token(self, client):
        assert client.post("/api/live/blast", json={}).status_code == 401
        resp = client.post("/api/live/blast", json={},
                           headers={"Authorization": "Bearer wrong"})
        assert resp.status_code == 401
        assert client.get("/api/live/blast").status_code == 401

    def test_email_and_sms(self, client, auth, outbound):
        _subscribe(client, auth, "fan-1", "one@fans.test",
                   preferred_platform="youtube", sms_alerts=True,
                   sms_phone="+15550100001")
        _subscribe(client, auth, "fan-2", "two@fans.test",
                   preferred_platform="twitch")
        _subscribe(client, auth, "fan-3", "three@fans.test")
        _subscribe(client, auth, "fan-4", "four@fans.test", enabled=False)

        resp = client.post("/api/live/blast", headers={
            **OPERATOR, "x-operator": "stage-left",
        }, json={
            "status": "live", "title": "Rooftop Set",
            "stream_url": "https://youtube.test/live", "platform": "youtube",
            "send_sms": True,
        })
        assert resp.status_code == 200
        data = resp.json()
        assert data["result"]["email"] == {"attempted": 2, "sent": 2,
                                           "errors": []}
        assert data["result"]["sms"]["sent"] == 1

        emails = outbound.to("api.resend.com")
        recipients = sorted(json.loads(r.content)["to"][0] for r in emails)
        assert recipients == ["one@fans.test", "three@fans.test"]
        html = json.loads(emails[0].content)["html"]
        assert "/api/live/track?event=click" in html
        assert "event=open" in html

        sms = outbound.to("api.twilio.com")
        assert len(sms) == 1
        form = parse_qs(sms[0].content.decode())
        assert form["To"] == ["+15550100001"]
        assert form["Body"] == ["Chip Lee is live now: Rooftop Set. "
                                "Tap in: https://youtube.test/live"]

        items = client.get("/api/live/blast", headers=OPERATOR).json()["items"]
        assert items[0]["created_by"] == "stage-left"
        assert items[0]["email_count"] == 2
        assert items[0]["sms_count"] == 1

    def test_provider_failure_is_counted(self, client, auth, outbound):
        outbound.on("POST", "/emails", status=422, json={"message": "bad"})
        _subscribe(client, auth, "fan-1", "one@fans.test")
        data = client.post("/api/live/blast", headers=OPERATOR,
                           json={"status": "test"}).json()
        assert data["result"]["email"] == {"attempted": 1, "sent": 0,
                                           "errors": ["email:one@fans.test"]}


# ============================================
# TRACKING
# ============================================

class TestTracking:

    def _dispatch(self, client):
        return client.post("/api/live/blast", headers=OPERATOR,
                           json={"send_email": False}).json()["dispatch_id"]

    def test_open_pixel(self, client):
        did = self._dispatch(client)
        resp = client.get("/api/live/track", params={
            "event": "open", "dispatch_id": did, "recipient": "a@fans.test",
        })
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/gif"
        assert resp.headers["cache-control"] == "no-store, max-age=0"
        assert resp.content == PIXEL_GIF

    def test_click_redirect(self, client):
        did = self._dispatch(client)
        resp = client.get("/api/live/track", params={
            "event": "click", "dispatch_id": did,
            "url": "https://youtube.test/live",
        }, follow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers["location"] == "https://youtube.test/live"

        resp = client.get("/api/live/track", params={
            "event": "click", "dispatch_id": did, "url": "javascript:alert(1)",
        }, follow_redirects=False)
        assert resp.headers["location"] == settings.live_fallback_url

    def test_bad_requests(self, client):
        assert client.get("/api/live/track",
                          params={"event": "open"}).status_code == 400
        assert client.get("/api/live/track", params={
            "event": "bounce", "dispatch_id": 1}).status_code == 400
        assert client.get("/api/live/track", params={
            "event": "open", "dispatch_id": "-3"}).status_code == 400

    def test_counts_in_recent_dispatches(self, client):
        did = self._dispatch(client)
        for _ in range(2):
            client.get("/api/live/track",
                       params={"event": "open", "dispatch_id": did})
        client.get("/api/live/track",
                   params={"event": "click", "dispatch_id": did},
                   follow_redirects=False)
        item = client.get("/api/live/blast", headers=OPERATOR).json()["items"][0]
        assert (item["opens"], item["clicks"]) == (2, 1)
