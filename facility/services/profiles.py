"""
Read-only access to the agent profile store (data/agents.json).

The store is written by the experience ledger tooling; this service only
reads it for display metadata (name, rank, colour, level, exp) and the
history used by the activity feed and dashboard panels.

    {"agents": {"Flint": {"name": "Flint", "rank": "Lead", "color": "#FF8C00",
                          "level": 3, "exp": 420, "nextLevel": 750}},
     "history": [{"agent": "Flint", "action": "ship", "exp": 50,
                  "note": "...", "date": "2026-01-01", "timestamp": "..."}]}
"""

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..models.schemas import ActivityItem, LeaderboardEntry, RecentEvent, parse_timestamp

logger = logging.getLogger(__name__)

FEED_LIMIT = 10
RECENT_EVENTS_LIMIT = 5


@dataclass(frozen=True)
class AgentProfile:
    key: str
    name: str
    rank: Optional[str]
    color: Optional[str]
    level: int = 1
    exp: int = 0
    next_level: int = 500

    @property
    def exp_progress(self) -> int:
        """Percent of the way to the next level, rounded half up, clamped to 0-100."""
        if self.next_level <= 0:
            return 0
        percent = math.floor(self.exp / self.next_level * 100 + 0.5)
        return max(0, min(100, percent))


# Shown when the profile store is missing or unreadable.
DEFAULT_PROFILES: Tuple[AgentProfile, ...] = (
    AgentProfile("Flint", "Flint", "Lead", "#FF8C00"),
    AgentProfile("Cipher", "Cipher", "Coder", "#00D4FF"),
    AgentProfile("Scout", "Scout", "Research", "#00CC66"),
)


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _exp_change(exp: int) -> str:
    return f"+{exp}" if exp > 0 else str(exp)


class ProfileStore:
    """Cached reader for agents.json; re-reads when the file changes."""

    def __init__(self, profiles_path: Path):
        self.profiles_path = Path(profiles_path)
        self._signature: Optional[Tuple[int, int]] = None
        self._data: Optional[Dict[str, Any]] = None

    def _load(self) -> Optional[Dict[str, Any]]:
        try:
            stat = self.profiles_path.stat()
            signature = (stat.st_mtime_ns, stat.st_size)
        except OSError:
            self._signature, self._data = None, None
            return None

        if signature == self._signature:
            return self._data

        try:
            with open(self.profiles_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error reading {self.profiles_path}: {e}")
            data = None

        if data is not None and not isinstance(data, dict):
            logger.error(f"Profile store {self.profiles_path} is not a JSON object")
            data = None

        self._signature, self._data = signature, data
        return data

    def profiles(self) -> List[AgentProfile]:
        """Profiles in store order, or the default roster if the store is unavailable."""
        data = self._load()
        agents = data.get("agents") if data else None
        if not isinstance(agents, dict):
            return list(DEFAULT_PROFILES)

        profiles = []
        for key, agent in agents.items():
            if not isinstance(agent, dict):
                continue
            profiles.append(AgentProfile(
                key=key,
                name=str(agent.get("name") or key),
                rank=_as_text(agent.get("rank")),
                color=_as_text(agent.get("color")),
                level=_as_int(agent.get("level"), 1),
                exp=_as_int(agent.get("exp"), 0),
                next_level=_as_int(agent.get("nextLevel"), 500),
            ))
        return profiles

    def history(self) -> List[Dict[str, Any]]:
        data = self._load()
        history = data.get("history") if data else None
        if not isinstance(history, list):
            return []
        return [item for item in history if isinstance(item, dict)]

    # ------------------------------------------------------------------
    # Dashboard views
    # ------------------------------------------------------------------

    def activity_feed(self, limit: int = FEED_LIMIT) -> List[ActivityItem]:
        """Newest history entries first."""
        items = []
        for item in self.history():
            exp = _as_int(item.get("exp"), 0)
            items.append(ActivityItem(
                time=_clock_time(item.get("timestamp")),
                agent=_as_text(item.get("agent")),
                action=_as_text(item.get("note") or item.get("action")),
                exp_change=_exp_change(exp),
                exp=exp,
                date=_as_text(item.get("date")),
            ))
        items.reverse()
        return items[:limit]

    def leaderboard(self) -> List[LeaderboardEntry]:
        """Agents by total exp, highest first."""
        entries = [
            LeaderboardEntry(name=p.name, exp=p.exp, level=p.level, color=p.color)
            for p in self.profiles()
        ]
        return sorted(entries, key=lambda entry: entry.exp, reverse=True)

    def recent_events(self, limit: int = RECENT_EVENTS_LIMIT) -> List[RecentEvent]:
        events = []
        for item in reversed(self.history()[-limit:]):
            exp = _as_int(item.get("exp"), 0)
            events.append(RecentEvent(
                agent=_as_text(item.get("agent")),
                action=_as_text(item.get("note") or item.get("action")),
                exp=exp,
                exp_change=_exp_change(exp),
            ))
        return events


def _clock_time(timestamp: Any) -> str:
    """HH:MM:SS in local time; entries without a usable timestamp show the current time."""
    seconds = parse_timestamp(timestamp)
    moment = None
    if seconds is not None:
        try:
            moment = datetime.fromtimestamp(seconds)
        except (OverflowError, OSError, ValueError) as e:
            logger.debug(f"Unrepresentable history timestamp {timestamp!r}: {e}")
    return (moment or datetime.now()).strftime("%H:%M:%S")
