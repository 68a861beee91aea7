"""
Fan engagement state: points, streaks, weekly signal, missions, badges.

Pure state transitions; persistence lives in vault/profiles.py.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field, asdict
from datetime import date
from typing import Any, Dict, List, Mapping, Optional

from ..errors import VaultError
from ..helpers import iso_week_key, parse_date

DEFAULT_POINTS = 120
DEFAULT_STREAK = 1
MISSION_REWARD = 80
MAX_VISITED_PATHS = 128
STREAK_WEIGHT = 17
REWARD_STEP = 200

MISSIONS = ("stage_mode", "watch_and_listen", "inner_circle")
REACTIONS = ("fire", "bolt", "hands")

# (points, weekly signal)
REACT_REWARD = (5, 10)
DAILY_REWARD = (40, 20)
SHARE_REWARD = (15, 15)

# id, label, tier, tip
BADGES = (
    ("first-signal", "First Signal", "core",
     "Earned by crossing 160 points."),
    ("return-runner", "Return Runner", "elite",
     "Earned by maintaining a 3-day streak."),
    ("mission-control", "Mission Control", "legend",
     "Earned by completing all missions."),
    ("crowd-igniter", "Crowd Igniter", "elite",
     "Earned by maxing this week's challenge."),
)


def _non_negative(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


@dataclass
class EngagementState:
    points: int = DEFAULT_POINTS
    streak: int = DEFAULT_STREAK
    last_seen_date: str = ""
    daily_claim_date: str = ""
    week_key: str = ""
    weekly_signal: int = 0
    visited_paths: List[str] = field(default_factory=list)
    reactions: Dict[str, int] = field(
        default_factory=lambda: {k: 0 for k in REACTIONS}
    )
    missions: Dict[str, bool] = field(
        default_factory=lambda: {k: False for k in MISSIONS}
    )

    @classmethod
    def fresh(cls, today: date) -> "EngagementState":
        return cls(last_seen_date=today.isoformat(),
                   week_key=iso_week_key(today))

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "EngagementState":
        raw = raw or {}
        reactions = raw.get("reactions") or {}
        missions = raw.get("missions") or {}
        paths = raw.get("visited_paths") or []
        return cls(
            points=_non_negative(raw.get("points")),
            streak=_non_negative(raw.get("streak")),
            last_seen_date=str(raw.get("last_seen_date") or "")[:10],
            daily_claim_date=str(raw.get("daily_claim_date") or "")[:10],
            week_key=str(raw.get("week_key") or ""),
            weekly_signal=_non_negative(raw.get("weekly_signal")),
            visited_paths=[p for p in paths
                           if isinstance(p, str)][:MAX_VISITED_PATHS],
            reactions={k: _non_negative(reactions.get(k)) for k in REACTIONS},
            missions={k: bool(missions.get(k)) for k in MISSIONS},
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    # ---- transitions

    def roll_week(self, today: date) -> None:
        key = iso_week_key(today)
        if self.week_key != key:
            self.week_key = key
            self.weekly_signal = 0

    def complete_mission(self, key: str) -> int:
        if key not in MISSIONS:
            raise VaultError(f"unknown mission: {key}")
        if self.missions.get(key):
            return 0
        self.missions[key] = True
        self.points += MISSION_REWARD
        return MISSION_REWARD

    def register_visit(self, path: str, today: date) -> int:
        """Advance the streak and path missions. Returns points awarded."""
        last = parse_date(self.last_seen_date)
        gap = (today - last).days if last else 2
        if gap == 1:
            self.streak += 1
        elif gap > 1:
            self.streak = 1
        self.last_seen_date = today.isoformat()

        paths = list(self.visited_paths)
        if path and path not in paths:
            paths.append(path)
        self.visited_paths = paths[:MAX_VISITED_PATHS]

        awarded = 0
        watched = any(p.startswith("/watch") for p in paths)
        listened = any(p.startswith("/listen") for p in paths)
        if watched and listened:
            awarded += self.complete_mission("watch_and_listen")
        if any(p.startswith("/fan-club") for p in paths):
            awarded += self.complete_mission("inner_circle")
        return awarded

    def react(self, kind: str) -> None:
        if kind not in REACTIONS:
            raise VaultError(f"unknown reaction: {kind}")
        self.reactions[kind] = self.reactions.get(kind, 0) + 1
        self._reward(REACT_REWARD)

    def claim_daily(self, today: date) -> None:
        stamp = today.isoformat()
        if self.daily_claim_date == stamp:
            raise VaultError("Daily already claimed", 409)
        self.daily_claim_date = stamp
        self._reward(DAILY_REWARD)

    def share(self) -> None:
        self._reward(SHARE_REWARD)

    def _reward(self, reward: tuple) -> None:
        points, signal = reward
        self.points += points
        self.weekly_signal += signal

    # ---- derived

    @property
    def missions_completed(self) -> int:
        return sum(1 for v in self.missions.values() if v)

    def badges(self) -> List[Dict[str, str]]:
        unlocked = {
            "first-signal": self.points >= 160,
            "return-runner": self.streak >= 3,
            "mission-control": self.missions_completed >= len(MISSIONS),
            "crowd-igniter": self.weekly_signal >= 220,
        }
        return [{"id": bid, "label": label, "tier": tier, "tip": tip}
                for bid, label, tier, tip in BADGES if unlocked[bid]]

    @property
    def next_reward_at(self) -> int:
        return math.ceil((self.points + 1) / REWARD_STEP) * REWARD_STEP

    @property
    def score(self) -> int:
        return leaderboard_score(self.points, self.weekly_signal, self.streak)


def leaderboard_score(points: int, weekly_signal: int, streak: int) -> int:
    return int(points) + int(weekly_signal) + int(streak) * STREAK_WEIGHT


def merge(local: EngagementState, cloud: EngagementState) -> EngagementState:
    """Combine a device-local state with the stored one; nothing is lost."""
    merged = EngagementState.from_mapping(cloud.to_dict())
    merged.points = max(local.points, cloud.points)
    merged.streak = max(local.streak, cloud.streak)
    merged.weekly_signal = max(local.weekly_signal, cloud.weekly_signal)
    paths = list(cloud.visited_paths)
    for p in local.visited_paths:
        if p not in paths:
            paths.append(p)
    merged.visited_paths = paths[:MAX_VISITED_PATHS]
    merged.reactions = {
        k: max(local.reactions.get(k, 0), cloud.reactions.get(k, 0))
        for k in REACTIONS
    }
    merged.missions = {
        k: bool(local.missions.get(k) or cloud.missions.get(k))
        for k in MISSIONS
    }
    return merged
