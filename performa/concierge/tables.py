# ----------------------------
# Concierge pricing tables
# ----------------------------
# Dollar amounts are whole USD. Ordered dicts double as option catalogs.

VENUES = {
    "club": ("Club Night", "High-density nightlife events"),
    "festival": ("Festival Mainstage", "Large scale crowd impact"),
    "warehouse": ("Warehouse Afterhours", "Immersive ritual pacing"),
    "luxury": ("Private Luxury Event", "Concierge premium environments"),
    "brand": ("Brand Experience", "Campaign and activation format"),
}

TICKETING_MODELS = {
    "ticketed": "Ticketed",
    "guestlist": "Guestlist",
    "mixed": "Mixed",
}

PERFORMANCE_TIERS = {
    "core": "Core Performance Tier",
    "headline": "Headline Show Tier",
    "cinematic": "Cinematic Performa Tier",
}

SET_LENGTHS = (60, 75, 90)

FOOTPRINTS = {"house": "House", "hybrid": "Hybrid", "full": "Full"}

# key -> (label, base cost)
MODULES = {
    "lighting_visuals": ("Lighting / Visuals", 3200),
    "audio": ("Audio", 2600),
    "security": ("Security", 1800),
    "talent": ("Talent", 2800),
    "media_promo": ("Media / Promo", 2200),
    "vip_hospitality": ("VIP / Hospitality", 2500),
    "compliance_insurance": ("Compliance / Insurance", 1700),
    "venue_sourcing": ("Venue Sourcing", 2400),
}

MODULE_TIERS = ("none", "basic", "enhanced", "premium")

MODULE_TIER_MULTIPLIER = {
    "none": 0,
    "basic": 1,
    "enhanced": 1.45,
    "premium": 2.05,
}

LOAD_IN_WINDOWS = {
    "tight": "Tight (under 4h)",
    "standard": "Standard (4-8h)",
    "extended": "Extended (8h+)",
}

ROUTING = {"local": "Local", "regional": "Regional", "fly_in": "Fly-in"}

PERMIT_STATUSES = {
    "yes": "Permits confirmed",
    "no": "Permits not started",
    "unknown": "Permits unknown",
}

ENVIRONMENTS = {"indoor": "Indoor", "outdoor": "Outdoor"}

# key -> (label, min, max)
BUDGET_BANDS = {
    "starter": ("$20k-$45k", 20000, 45000),
    "growth": ("$45k-$90k", 45000, 90000),
    "premium": ("$90k-$180k", 90000, 180000),
    "flagship": ("$180k+", 180000, 320000),
}

COST_OWNERSHIP = {
    "promoter": "Promoter-led",
    "shared": "Shared with partners",
    "sponsor_led": "Sponsor-led",
}

STAGE_MODE_BY_VENUE = {
    "club": "Club Ignition",
    "festival": "Festival Surge Protocol",
    "warehouse": "Afterhours Overdrive",
    "luxury": "Luxury Ignition Suite",
    "brand": "Cinematic Impact Mode",
}

RECOMMENDED_FOR_BY_VENUE = {
    "club": "High-density nightlife, peak-hour energy",
    "festival": "Mainstage crowds, large-scale impact",
    "warehouse": "Afterhours culture, deep ritual pacing",
    "luxury": "Concierge environments, premium restraint",
    "brand": "Campaign activations, cinematic sponsor moments",
}

FOOTPRINT_MULTIPLIER = {"house": 1, "hybrid": 1.2, "full": 1.42}

PERFORMA_FEE = {
    "core": {60: 9000, 75: 11500, 90: 13500},
    "headline": {60: 14500, 75: 18500, 90: 22000},
    "cinematic": {60: 22000, 75: 27000, 90: 32000},
}

TRAVEL_BASE = {"local": 1200, "regional": 5200, "fly_in": 13200}

PERMIT_BASE = {"indoor": 900, "outdoor": 2400}
PERMIT_MULTIPLIER = {"yes": 1, "unknown": 1.28, "no": 1.55}

SECURITY_TIER_MULTIPLIER = {
    "premium": 1.45,
    "enhanced": 1.2,
    "basic": 1,
    "none": 0.7,
}

# avg bar spend per head, dollars
BAR_SPEND_PER_HEAD = 28

ATTENDANCE_MIN = 50
ATTENDANCE_MAX = 120000
TICKET_PRICE_MAX = 2000

DEFAULT_MODULES = {
    "lighting_visuals": "enhanced",
    "audio": "enhanced",
    "security": "basic",
    "talent": "enhanced",
    "media_promo": "basic",
    "vip_hospitality": "none",
    "compliance_insurance": "basic",
    "venue_sourcing": "none",
}

MILESTONES = (
    ("T-30", 30, "Creative lock + module finalization"),
    ("T-14", 14, "Run-of-show, permits, staffing confirmation"),
    ("T-7", 7, "Technical rehearsal + safety review"),
    ("Day-of", 0, "Load-in, execution, post-show wrap"),
)


def catalog() -> dict:
    """Option lists for building a configuration form."""
    return {
        "venues": [
            {"key": k, "label": label, "caption": caption,
             "stage_mode": STAGE_MODE_BY_VENUE[k],
             "recommended_for": RECOMMENDED_FOR_BY_VENUE[k]}
            for k, (label, caption) in VENUES.items()
        ],
        "ticketing_models": _pairs(TICKETING_MODELS),
        "performance_tiers": _pairs(PERFORMANCE_TIERS),
        "set_lengths": list(SET_LENGTHS),
        "production_footprints": _pairs(FOOTPRINTS),
        "modules": [
            {"key": k, "label": label, "base_cost": base}
            for k, (label, base) in MODULES.items()
        ],
        "module_tiers": list(MODULE_TIERS),
        "load_in_windows": _pairs(LOAD_IN_WINDOWS),
        "routing_complexity": _pairs(ROUTING),
        "permit_statuses": _pairs(PERMIT_STATUSES),
        "environments": _pairs(ENVIRONMENTS),
        "budget_bands": [
            {"key": k, "label": label, "min": lo, "max": hi}
            for k, (label, lo, hi) in BUDGET_BANDS.items()
        ],
        "cost_ownership": _pairs(COST_OWNERSHIP),
    }


def _pairs(d: dict) -> list[dict]:
    return [{"key": k, "label": v} for k, v in d.items()]
