"""
Test fixtures for liveness testing.

Builders for agent session directories, session logs, session indexes,
registries and profile stores laid out the way agents write them.
"""

import json
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

PRIMARY_KEY = "agent:main:main"


def iso_ago(seconds: float, now: Optional[float] = None) -> str:
    """ISO-8601 UTC timestamp `seconds` before now."""
    moment = (now if now is not None else time.time()) - seconds
    return datetime.fromtimestamp(moment, timezone.utc).isoformat().replace("+00:00", "Z")


def ms_ago(seconds: float, now: Optional[float] = None) -> int:
    """Epoch-millisecond timestamp `seconds` before now."""
    return int(((now if now is not None else time.time()) - seconds) * 1000)


def create_sessions_dir(agents_root: Path, alias: str = "main") -> Path:
    """
    Create <agents_root>/<alias>/sessions.

    Returns:
        Path to the sessions directory
    """
    sessions_dir = Path(agents_root) / alias / "sessions"
    sessions_dir.mkdir(parents=True, exist_ok=True)
    return sessions_dir


def write_session_log(sessions_dir: Path, session_id: str, entries: List[Dict[str, Any]],
                      trailer: str = "") -> Path:
    """
    Write a session JSONL log.

    Args:
        sessions_dir: Directory to write into
        session_id: Session id (file stem)
        entries: Objects written one per line
        trailer: Raw text appended after the last line (e.g. a partial record)

    Returns:
        Path to the log file
    """
    log_path = Path(sessions_dir) / f"{session_id}.jsonl"
    with open(log_path, "w", encoding="utf-8") as f:
        for entry in entries:
            f.write(json.dumps(entry) + "\n")
        f.write(trailer)
    return log_path


def append_session_entry(log_path: Path, entry: Dict[str, Any]) -> None:
    with open(log_path, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry) + "\n")


def write_session_index(sessions_dir: Path, sessions: Dict[str, Dict[str, Any]]) -> Path:
    """Write sessions.json mapping sessionKey -> {sessionId, ...}."""
    index_path = Path(sessions_dir) / "sessions.json"
    with open(index_path, "w", encoding="utf-8") as f:
        json.dump(sessions, f, indent=2)
    return index_path


def write_registry(registry_path: Path, registry: Dict[str, Dict[str, Any]]) -> Path:
    registry_path = Path(registry_path)
    registry_path.parent.mkdir(parents=True, exist_ok=True)
    with open(registry_path, "w", encoding="utf-8") as f:
        json.dump(registry, f, indent=2)
    return registry_path


def get_sample_profiles() -> Dict[str, Any]:
    """
    Get a sample profile store.

    Returns:
        agents.json structure with two agents and some history
    """
    return {
        "agents": {
            "Flint": {
                "name": "Flint",
                "rank": "Lead",
                "color": "#FF8C00",
                "level": 3,
                "exp": 420,
                "nextLevel": 750,
            },
            "Cipher": {
                "name": "Cipher",
                "rank": "Coder",
                "color": "#00D4FF",
                "level": 2,
                "exp": 1,
                "nextLevel": 750,
            },
        },
        "history": [
            {"agent": "Cipher", "action": "ship", "exp": 50, "note": "Shipped tail reader",
             "date": "2026-01-02", "timestamp": "2026-01-02T10:00:00Z"},
            {"agent": "Cipher", "action": "bug", "exp": -20, "note": "Broke the build",
             "date": "2026-01-03", "timestamp": "2026-01-03T11:30:00Z"},
            {"agent": "Flint", "action": "ship", "exp": 100,
             "date": "2026-01-04", "timestamp": "2026-01-04T09:15:00Z"},
        ],
    }


def write_profiles(profiles_path: Path, data: Optional[Dict[str, Any]] = None) -> Path:
    profiles_path = Path(profiles_path)
    profiles_path.parent.mkdir(parents=True, exist_ok=True)
    with open(profiles_path, "w", encoding="utf-8") as f:
        json.dump(data if data is not None else get_sample_profiles(), f, indent=2)
    return profiles_path
