"""
Event budget / ROI / risk estimator.

Every function here is pure: same profile and same day in, same blueprint
out. Dollar figures are whole USD; halves round up.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field, asdict
from datetime import date, timedelta
from typing import Dict, List, Optional

from ..helpers import clamp, parse_date, round_half_up, utc_today
from . import tables as T
from .profile import EventProfile, encode_profile


@dataclass
class RiskItem:
    title: str
    likelihood: int
    impact: int
    mitigation: str
    residual: int


@dataclass
class StaffRole:
    label: str
    count: int


@dataclass
class CostBreakdown:
    performa_fee: int
    travel: int
    security: int
    production: int
    permits_insurance: int
    contingency: int
    total: int
    low: int
    high: int


@dataclass
class PackageOption:
    label: str
    total: int
    low: int
    high: int
    modules: List[str]


@dataclass
class Milestone:
    label: str
    date: str
    action: str


@dataclass
class Blueprint:
    profile: EventProfile
    token: str
    lead_time_days: int
    warnings: List[str]
    risks: List[RiskItem]
    risk_score: int
    costs: CostBreakdown
    output_percent: int
    stage_mode: str
    recommended_for: str
    modules_selected: List[Dict[str, str]]
    milestones: List[Milestone]
    staffing: List[StaffRole]
    revenue_expected: float
    roi: int
    roi_low: int
    roi_high: int
    packages: List[PackageOption] = field(default_factory=list)
    budget_band: Dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


MAX_RISKS = 6


def lead_time_days(target_date: str, today: Optional[date] = None) -> int:
    target = parse_date(target_date)
    if target is None:
        return 0
    today = today or utc_today()
    return max(0, (target - today).days)


def risk_register(profile: EventProfile, lead_days: int) -> List[RiskItem]:
    risks: List[RiskItem] = []

    if 0 < lead_days < 21:
        risks.append(RiskItem(
            "Compressed pre-production window", 4, 4,
            "Lock vendors and permits in 48h sprint with daily checkpoints.",
            3,
        ))

    if profile.environment_type == "outdoor":
        risks.append(RiskItem(
            "Weather and site volatility", 3, 5,
            "Build weather fallback and hard cover trigger at T-72.", 3,
        ))

    if profile.routing_complexity == "fly_in":
        risks.append(RiskItem(
            "Travel chain delays", 3, 4,
            "Add redundant flight windows and backup local crew.", 2,
        ))

    if profile.modules["security"] in ("none", "basic"):
        risks.append(RiskItem(
            "Crowd management pressure",
            4 if profile.expected_attendance >= 2500 else 3, 4,
            "Increase ingress staffing and add zone supervisors.", 3,
        ))

    if profile.permits_status != "yes":
        risks.append(RiskItem(
            "Regulatory uncertainty",
            3 if profile.permits_status == "unknown" else 5, 4,
            "Trigger permit desk now and appoint legal owner.", 3,
        ))

    risks.append(RiskItem(
        "Brand/guest expectation misalignment", 2, 3,
        "Confirm run-of-show expectations at T-14 review.", 2,
    ))
    return risks[:MAX_RISKS]


def risk_score(register: List[RiskItem]) -> int:
    if not register:
        return 18
    weighted = sum(r.likelihood * r.impact for r in register)
    normalized = round_half_up(weighted / (len(register) * 25) * 100)
    return int(clamp(normalized, 12, 95))


def _contingency_pct(score: int) -> float:
    if score >= 70:
        return 0.14
    if score >= 50:
        return 0.1
    return 0.07


def cost_breakdown(profile: EventProfile, score: int) -> CostBreakdown:
    attendance = profile.expected_attendance
    performa_fee = T.PERFORMA_FEE[profile.performance_tier][profile.set_length]
    travel = T.TRAVEL_BASE[profile.routing_complexity]

    if attendance >= 5000:
        per100 = 380
    elif attendance >= 2000:
        per100 = 300
    else:
        per100 = 240
    security = round_half_up(
        attendance / 100 * per100
        * T.SECURITY_TIER_MULTIPLIER[profile.modules["security"]]
    )

    from_modules = 0.0
    for key, (_, base) in T.MODULES.items():
        from_modules += base * T.MODULE_TIER_MULTIPLIER[profile.modules[key]]
    production = round_half_up(
        from_modules * T.FOOTPRINT_MULTIPLIER[profile.production_footprint]
    )

    venue_mult = 1.35 if profile.venue in ("festival", "brand") else 1
    compliance = profile.modules["compliance_insurance"]
    permits_insurance = round_half_up(
        T.PERMIT_BASE[profile.environment_type]
        * T.PERMIT_MULTIPLIER[profile.permits_status] * venue_mult
        + T.MODULE_TIER_MULTIPLIER[compliance] * 900
    )

    subtotal = performa_fee + travel + security + production + permits_insurance
    contingency = round_half_up(subtotal * _contingency_pct(score))
    total = subtotal + contingency
    return CostBreakdown(
        performa_fee=performa_fee,
        travel=travel,
        security=security,
        production=production,
        permits_insurance=permits_insurance,
        contingency=contingency,
        total=total,
        low=round_half_up(total * 0.88),
        high=round_half_up(total * 1.2),
    )


_TIER_FACTOR = {"cinematic": 22, "headline": 14, "core": 8}
_FOOTPRINT_FACTOR = {"full": 10, "hybrid": 6, "house": 2}


def output_percent(profile: EventProfile) -> int:
    tier_total = sum(T.MODULE_TIER_MULTIPLIER[t]
                     for t in profile.modules.values())
    attendance_factor = clamp(profile.expected_attendance / 5000, 0.1, 1.1) * 18
    raw = (34 + tier_total * 5 + attendance_factor
           + _TIER_FACTOR[profile.performance_tier]
           + _FOOTPRINT_FACTOR[profile.production_footprint])
    return int(clamp(round_half_up(raw), 35, 99))


def compatibility_warnings(profile: EventProfile) -> List[str]:
    m = profile.modules
    warnings: List[str] = []
    if profile.production_footprint == "house" and (
        m["lighting_visuals"] == "premium" or m["media_promo"] == "premium"
    ):
        warnings.append(
            "House footprint may bottleneck premium lighting/media modules."
        )
    if profile.venue == "luxury" and m["talent"] == "premium":
        warnings.append(
            "Premium talent intensity may conflict with luxury pacing "
            "expectations."
        )
    if profile.environment_type == "outdoor" and m["audio"] == "none":
        warnings.append(
            "Outdoor format with no dedicated audio module increases "
            "failure risk."
        )
    return warnings


_VISUAL_BOOST = {"premium": 2, "enhanced": 1}
_SECURITY_BOOST = {"premium": 3, "enhanced": 2, "basic": 1}
_MEDIA_CREW = {"none": 0, "basic": 1, "enhanced": 2, "premium": 3}


def staffing_plan(profile: EventProfile) -> List[StaffRole]:
    m = profile.modules
    guest_scale = max(1, math.ceil(profile.expected_attendance / 750))
    vip = m["vip_hospitality"]
    roles = [
        StaffRole("Production Manager", 1),
        StaffRole(
            "Stage/Deck Technicians",
            2 + _VISUAL_BOOST.get(m["lighting_visuals"], 0)
            + (2 if profile.production_footprint == "full" else 0),
        ),
        StaffRole("Front-of-House Audio", 1 + (m["audio"] != "none")),
        StaffRole("Security Team",
                  guest_scale + _SECURITY_BOOST.get(m["security"], 0)),
        StaffRole("Guest Experience / VIP",
                  1 if vip == "none" else 2 + (2 if vip == "premium" else 0)),
        StaffRole("Media / Content", _MEDIA_CREW[m["media_promo"]]),
    ]
    return [r for r in roles if r.count > 0]


def expected_revenue(profile: EventProfile) -> float:
    attendance = profile.expected_attendance
    tickets = (profile.ticket_price * attendance
               * (profile.sell_through_percent / 100))
    bar = attendance * T.BAR_SPEND_PER_HEAD * (profile.bar_split_percent / 100)
    return tickets + bar + profile.sponsorship_dollars + profile.merch_dollars


def roi(revenue: float, total: float) -> tuple[int, int, int]:
    """(expected, low, high) return on investment in percent."""
    if total <= 0:
        expected = 0
    else:
        expected = round_half_up((revenue - total) / total * 100)
    return expected, round_half_up(expected * 0.72), round_half_up(expected * 1.28)


def _step_tier(tier: str, step: int) -> str:
    idx = T.MODULE_TIERS.index(tier) + step
    idx = max(0, min(len(T.MODULE_TIERS) - 1, idx))
    return T.MODULE_TIERS[idx]


def active_modules(modules: Dict[str, str]) -> List[str]:
    return [f"{label} ({modules[key]})"
            for key, (label, _) in T.MODULES.items()
            if modules[key] != "none"]


def package_options(profile: EventProfile, score: int) -> List[PackageOption]:
    out: List[PackageOption] = []
    for label, step, risk_delta in (("Good", -1, 6),
                                    ("Better", 0, 0),
                                    ("Best", 1, -4)):
        modules = {k: _step_tier(t, step) for k, t in profile.modules.items()}
        scenario = profile.with_modules(modules)
        scenario_risk = int(clamp(score + risk_delta, 10, 99))
        costs = cost_breakdown(scenario, scenario_risk)
        out.append(PackageOption(
            label=label,
            total=costs.total,
            low=costs.low,
            high=costs.high,
            modules=active_modules(modules),
        ))
    return out


def _milestone_date(target: Optional[date], minus_days: int) -> str:
    if target is None:
        return "TBD"
    d = target - timedelta(days=minus_days)
    return f"{d:%b} {d.day}"


def milestones(target_date: str) -> List[Milestone]:
    target = parse_date(target_date)
    return [Milestone(label, _milestone_date(target, minus), action)
            for label, minus, action in T.MILESTONES]


def stage_mode_name(profile: EventProfile) -> str:
    base = T.STAGE_MODE_BY_VENUE[profile.venue]
    if profile.performance_tier == "cinematic":
        return f"{base} (Cinematic Tier)"
    return base


def build_blueprint(profile: EventProfile,
                    today: Optional[date] = None) -> Blueprint:
    lead = lead_time_days(profile.target_date, today)
    risks = risk_register(profile, lead)
    score = risk_score(risks)
    costs = cost_breakdown(profile, score)
    revenue = expected_revenue(profile)
    roi_expected, roi_low, roi_high = roi(revenue, costs.total)
    band_label, band_min, band_max = T.BUDGET_BANDS[profile.budget_band]

    return Blueprint(
        profile=profile,
        token=encode_profile(profile),
        lead_time_days=lead,
        warnings=compatibility_warnings(profile),
        risks=risks,
        risk_score=score,
        costs=costs,
        output_percent=output_percent(profile),
        stage_mode=stage_mode_name(profile),
        recommended_for=T.RECOMMENDED_FOR_BY_VENUE[profile.venue],
        modules_selected=[
            {"label": label, "tier": profile.modules[key]}
            for key, (label, _) in T.MODULES.items()
            if profile.modules[key] != "none"
        ],
        milestones=milestones(profile.target_date),
        staffing=staffing_plan(profile),
        revenue_expected=revenue,
        roi=roi_expected,
        roi_low=roi_low,
        roi_high=roi_high,
        packages=package_options(profile, score),
        budget_band={"key": profile.budget_band, "label": band_label,
                     "min": band_min, "max": band_max,
                     "within": band_min <= costs.total <= band_max},
    )
