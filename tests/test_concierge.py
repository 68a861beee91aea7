"""
Concierge estimator tests: pure blueprint math plus the HTTP surface.
"""

import base64
from datetime import date

import pytest

from performa.concierge import estimator as E
from performa.concierge.profile import (
    DEFAULT_PROFILE, decode_profile, encode_profile, normalize_profile,
)
from performa.model.db import BookingInquiry


# ============================================
# PROFILE NORMALIZATION
# ============================================

class TestNormalizeProfile:

    def test_empty_input_is_default(self):
        assert normalize_profile({}) == DEFAULT_PROFILE
        assert normalize_profile(None) == DEFAULT_PROFILE

    def test_numeric_clamping(self):
        p = normalize_profile({
            "expected_attendance": 10,
            "ticket_price": 5000,
            "sell_through_percent": 140,
            "bar_split_percent": -5,
            "sponsorship_dollars": -100,
        })
        assert p.expected_attendance == 50
        assert p.ticket_price == 2000
        assert p.sell_through_percent == 100
        assert p.bar_split_percent == 0
        assert p.sponsorship_dollars == 0

    def test_attendance_upper_bound(self):
        assert normalize_profile({"expected_attendance": 999999}).expected_attendance == 120000

    def test_falsy_numbers_fall_back(self):
        p = normalize_profile({"expected_attendance": 0, "ticket_price": ""})
        assert p.expected_attendance == 1200
        assert p.ticket_price == 45

    def test_set_length_outside_choices(self):
        assert normalize_profile({"set_length": 80}).set_length == 75
        assert normalize_profile({"set_length": "90"}).set_length == 90

    def test_unknown_enum_falls_back(self):
        p = normalize_profile({"venue": "stadium", "permits_status": "maybe"})
        assert p.venue == "warehouse"
        assert p.permits_status == "unknown"

    def test_modules_merge_over_defaults(self):
        p = normalize_profile({"modules": {"audio": "premium", "bogus": "basic",
                                           "security": "ultra"}})
        assert p.modules["audio"] == "premium"
        assert p.modules["security"] == "basic"
        assert "bogus" not in p.modules

    def test_non_string_enums_fall_back(self):
        p = normalize_profile({"venue": ["club"], "budget_band": {"x": 1},
                               "modules": {"audio": ["premium"],
                                           "lighting": {"tier": "basic"}}})
        assert p.venue == "warehouse"
        assert p.budget_band == "premium"
        assert p.modules == DEFAULT_PROFILE.modules

    def test_non_finite_numbers_fall_back(self):
        p = normalize_profile({"sponsorship_dollars": "1e400",
                               "merch_dollars": float("inf"),
                               "ticket_price": "-inf",
                               "expected_attendance": "nan"})
        assert p.sponsorship_dollars == 0
        assert p.merch_dollars == 0
        assert p.ticket_price == 45
        assert p.expected_attendance == 1200
        assert E.build_blueprint(p).roi == -22

    def test_fractional_attendance_kept(self):
        assert normalize_profile({"expected_attendance": 1200.5}).expected_attendance == 1200.5
        assert normalize_profile({"expected_attendance": "800"}).expected_attendance == 800

    def test_camel_case_keys(self):
        p = normalize_profile({"expectedAttendance": 3000,
                               "performanceTier": "cinematic"})
        assert p.expected_attendance == 3000
        assert p.performance_tier == "cinematic"


class TestProfileToken:

    def test_token_round_trip(self):
        p = normalize_profile({"venue": "festival", "event_name": "Sunburst"})
        token = encode_profile(p)
        assert "=" not in token
        assert decode_profile(token) == p

    def test_malformed_tokens(self):
        assert decode_profile("") is None
        assert decode_profile("bm90IGpzb24") is None  # "not json"
        # valid base64url of a JSON list, not an object
        assert decode_profile("WzEsMl0") is None


# ============================================
# BLUEPRINT MATH
# ============================================

class TestDefaultBlueprint:

    def setup_method(self):
        self.bp = E.build_blueprint(DEFAULT_PROFILE, date(2026, 1, 1))

    def test_risk_register(self):
        titles = [r.title for r in self.bp.risks]
        assert titles == [
            "Crowd management pressure",
            "Regulatory uncertainty",
            "Brand/guest expectation misalignment",
        ]
        assert self.bp.risk_score == 40

    def test_costs(self):
        c = self.bp.costs
        assert c.performa_fee == 18500
        assert c.travel == 5200
        assert c.security == 2880
        assert c.production == 21804
        assert c.permits_insurance == 2052
        assert c.contingency == 3531
        assert c.total == 53967
        assert c.low == 47491
        assert c.high == 64760

    def test_output_and_roi(self):
        assert self.bp.output_percent == 95
        assert self.bp.revenue_expected == pytest.approx(42240)
        assert (self.bp.roi, self.bp.roi_low, self.bp.roi_high) == (-22, -16, -28)

    def test_staffing(self):
        staffing = {s.label: s.count for s in self.bp.staffing}
        assert staffing == {
            "Production Manager": 1,
            "Stage/Deck Technicians": 3,
            "Front-of-House Audio": 2,
            "Security Team": 3,
            "Guest Experience / VIP": 1,
            "Media / Content": 1,
        }

    def test_misc(self):
        assert self.bp.lead_time_days == 0
        assert self.bp.warnings == []
        assert self.bp.stage_mode == "Afterhours Overdrive"
        assert [m.date for m in self.bp.milestones] == ["TBD"] * 4
        assert [p.label for p in self.bp.packages] == ["Good", "Better", "Best"]
        assert self.bp.packages[1].total == self.bp.costs.total


class TestEstimatorRules:

    def test_risk_score_empty(self):
        assert E.risk_score([]) == 18

    def test_compressed_window_and_outdoor(self):
        p = normalize_profile({"environment_type": "outdoor",
                               "routing_complexity": "fly_in",
                               "permits_status": "no",
                               "target_date": "2026-01-11"})
        lead = E.lead_time_days(p.target_date, date(2026, 1, 1))
        assert lead == 10
        risks = E.risk_register(p, lead)
        assert len(risks) == 6
        assert risks[0].title == "Compressed pre-production window"
        regulatory = next(r for r in risks if r.title == "Regulatory uncertainty")
        assert regulatory.likelihood == 5

    def test_lead_time_never_negative(self):
        assert E.lead_time_days("2025-12-01", date(2026, 1, 1)) == 0

    def test_contingency_tiers(self):
        base = DEFAULT_PROFILE
        low = E.cost_breakdown(base, 40)
        high = E.cost_breakdown(base, 70)
        subtotal = low.total - low.contingency
        assert high.contingency == round(subtotal * 0.14)

    def test_warnings(self):
        p = normalize_profile({
            "production_footprint": "house",
            "venue": "luxury",
            "environment_type": "outdoor",
            "modules": {"lighting_visuals": "premium", "talent": "premium",
                        "audio": "none"},
        })
        assert len(E.compatibility_warnings(p)) == 3

    def test_stage_mode_cinematic(self):
        p = normalize_profile({"venue": "club", "performance_tier": "cinematic"})
        assert E.stage_mode_name(p) == "Club Ignition (Cinematic Tier)"

    def test_milestone_dates(self):
        labels = [(m.label, m.date) for m in E.milestones("2026-03-31")]
        assert labels == [("T-30", "Mar 1"), ("T-14", "Mar 17"),
                          ("T-7", "Mar 24"), ("Day-of", "Mar 31")]

    def test_roi_zero_total(self):
        assert E.roi(1000, 0) == (0, 0, 0)

    def test_output_percent_is_clamped(self):
        p = normalize_profile({
            "expected_attendance": 100000, "performance_tier": "cinematic",
            "production_footprint": "full",
            "modules": {k: "premium" for k in DEFAULT_PROFILE.modules},
        })
        assert E.output_percent(p) == 99


# ============================================
# API
# ============================================

class TestConciergeAPI:

    def test_defaults(self, client):
        resp = client.get("/api/concierge/defaults")
        assert resp.status_code == 200
        data = resp.json()
        assert data["profile"]["venue"] == "warehouse"
        assert [v["key"] for v in data["options"]["venues"]][:2] == ["club", "festival"]

    def test_estimate(self, client):
        resp = client.post("/api/concierge/estimate", json={"venue": "festival"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["profile"]["venue"] == "festival"
        assert decode_profile(data["token"]).venue == "festival"
        assert data["costs"]["total"] > 0

    def test_blueprint_html(self, client):
        token = encode_profile(normalize_profile({"event_name": "Neon Rite"}))
        resp = client.get("/api/concierge/blueprint", params={"p": token})
        assert resp.status_code == 200
        assert "text/html" in resp.headers["content-type"]
        assert "Neon Rite" in resp.text

    def test_blueprint_bad_token_uses_default(self, client):
        resp = client.get("/api/concierge/blueprint", params={"p": "garbage!"})
        assert resp.status_code == 200
        assert "Afterhours Overdrive" in resp.text

    def test_malformed_profile_values_do_not_crash(self, client):
        raw = b'{"venue": [], "merchDollars": Infinity, "modules": {"audio": {}}}'
        token = base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
        resp = client.get("/api/concierge/blueprint", params={"p": token})
        assert resp.status_code == 200
        assert "Afterhours Overdrive" in resp.text

        resp = client.post("/api/concierge/estimate",
                           json={"venue": {"name": "club"},
                                 "sponsorshipDollars": "1e400"})
        assert resp.status_code == 200
        assert resp.json()["profile"]["venue"] == "warehouse"
        assert resp.json()["profile"]["sponsorship_dollars"] == 0

    def test_inquiry(self, client, sync_engine):
        token = encode_profile(DEFAULT_PROFILE)
        resp = client.post("/api/concierge/inquiries", json={
            "profile_token": token,
            "contact_email": "Promoter@Example.com",
            "contact_name": "Dana",
        })
        assert resp.status_code == 200
        assert resp.json()["estimate_total"] == E.build_blueprint(DEFAULT_PROFILE).costs.total

        from sqlalchemy.orm import Session
        with Session(sync_engine) as s:
            row = s.query(BookingInquiry).one()
            assert row.contact_email == "promoter@example.com"
            assert row.venue == "warehouse"

    def test_inquiry_rejects_bad_email(self, client):
        resp = client.post("/api/concierge/inquiries", json={
            "profile_token": encode_profile(DEFAULT_PROFILE),
            "contact_email": "not-an-email",
        })
        assert resp.status_code == 400
