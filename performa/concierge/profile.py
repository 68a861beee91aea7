from __future__ import annotations

import math
import re
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Mapping, Optional

from ..helpers import b64url_encode_json, b64url_decode_json, clamp
from . import tables as T


@dataclass
class EventProfile:
    venue: str = "warehouse"
    event_name: str = ""
    city_state: str = ""
    target_date: str = ""
    expected_attendance: float = 1200
    ticketing_model: str = "ticketed"
    doors_time: str = ""
    set_time: str = ""
    performance_tier: str = "headline"
    set_length: int = 75
    production_footprint: str = "hybrid"
    modules: Dict[str, str] = field(
        default_factory=lambda: dict(T.DEFAULT_MODULES)
    )
    load_in_window: str = "standard"
    routing_complexity: str = "regional"
    permits_status: str = "unknown"
    environment_type: str = "indoor"
    budget_band: str = "premium"
    cost_ownership: str = "promoter"
    ticket_price: float = 45
    sell_through_percent: float = 72
    sponsorship_dollars: float = 0
    bar_split_percent: float = 10
    merch_dollars: float = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def with_modules(self, modules: Mapping[str, str]) -> "EventProfile":
        data = self.to_dict()
        data["modules"] = dict(modules)
        return EventProfile(**data)


DEFAULT_PROFILE = EventProfile()

_CHOICES = {
    "venue": T.VENUES,
    "ticketing_model": T.TICKETING_MODELS,
    "performance_tier": T.PERFORMANCE_TIERS,
    "production_footprint": T.FOOTPRINTS,
    "load_in_window": T.LOAD_IN_WINDOWS,
    "routing_complexity": T.ROUTING,
    "permits_status": T.PERMIT_STATUSES,
    "environment_type": T.ENVIRONMENTS,
    "budget_band": T.BUDGET_BANDS,
    "cost_ownership": T.COST_OWNERSHIP,
}

_TEXT_FIELDS = ("event_name", "city_state", "target_date", "doors_time",
                "set_time")


def _snake(key: str) -> str:
    # share links minted by the browser wizard use camelCase keys
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _number(value: Any, default: float) -> float:
    # falsy input (0, "", None) falls back to the default
    if not value:
        return default
    try:
        num = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(num):
        return default
    return num


def _int_or_float(num: float):
    return int(num) if float(num).is_integer() else num


def normalize_profile(partial: Optional[Mapping[str, Any]]) -> EventProfile:
    """Merge a partial configuration over the defaults and clamp numerics."""
    raw = {_snake(str(k)): v for k, v in (partial or {}).items()}
    d = DEFAULT_PROFILE

    values: Dict[str, Any] = {}
    for name, choices in _CHOICES.items():
        candidate = raw.get(name)
        values[name] = (candidate
                        if isinstance(candidate, str) and candidate in choices
                        else getattr(d, name))

    for name in _TEXT_FIELDS:
        candidate = raw.get(name)
        values[name] = str(candidate).strip() if candidate else ""

    modules = dict(T.DEFAULT_MODULES)
    incoming = raw.get("modules")
    if isinstance(incoming, Mapping):
        for key, tier in incoming.items():
            key = _snake(str(key))
            if (key in modules and isinstance(tier, str)
                    and tier in T.MODULE_TIERS):
                modules[key] = tier
    values["modules"] = modules

    attendance = _number(raw.get("expected_attendance"),
                         d.expected_attendance)
    values["expected_attendance"] = _int_or_float(
        clamp(attendance, T.ATTENDANCE_MIN, T.ATTENDANCE_MAX)
    )

    set_length = _number(raw.get("set_length"), d.set_length)
    values["set_length"] = (int(set_length) if set_length in T.SET_LENGTHS
                            else d.set_length)

    values["ticket_price"] = _int_or_float(clamp(
        _number(raw.get("ticket_price"), d.ticket_price),
        0, T.TICKET_PRICE_MAX,
    ))
    values["sell_through_percent"] = _int_or_float(clamp(
        _number(raw.get("sell_through_percent"), d.sell_through_percent),
        0, 100,
    ))
    values["sponsorship_dollars"] = _int_or_float(max(
        0, _number(raw.get("sponsorship_dollars"), d.sponsorship_dollars)
    ))
    values["bar_split_percent"] = _int_or_float(clamp(
        _number(raw.get("bar_split_percent"), d.bar_split_percent),
        0, 100,
    ))
    values["merch_dollars"] = _int_or_float(max(
        0, _number(raw.get("merch_dollars"), d.merch_dollars)
    ))
    return EventProfile(**values)


def encode_profile(profile: EventProfile) -> str:
    return b64url_encode_json(profile.to_dict())


def decode_profile(token: str) -> Optional[EventProfile]:
    """Decode a share-link token; None when it is not a JSON object."""
    if not token:
        return None
    data = b64url_decode_json(token)
    if not isinstance(data, dict):
        return None
    return normalize_profile(data)
