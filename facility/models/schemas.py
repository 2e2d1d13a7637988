"""Pydantic models for the facility status service: on-disk records and API payloads."""

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Largest epoch-millisecond value a log writer can produce (+/- 100,000,000 days).
MAX_EPOCH_MILLIS = 8.64e15


def parse_timestamp(value: Any) -> Optional[float]:
    """
    Normalise a log timestamp to epoch seconds (UTC).

    Accepts an epoch-millisecond number or an ISO-8601 string. ISO strings
    without an offset are taken as UTC. Anything else, including numbers
    beyond MAX_EPOCH_MILLIS, yields None.
    """
    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        if abs(value) > MAX_EPOCH_MILLIS:
            return None
        seconds = float(value) / 1000.0
        return seconds if math.isfinite(seconds) else None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()

    return None


def _optional_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


# ============================================================================
# Session log records
# ============================================================================

class SnapshotData(BaseModel):
    """Payload of a "model-snapshot" custom event."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True, protected_namespaces=())

    model_id: Optional[str] = Field(None, alias="modelId")

    @field_validator("model_id", mode="before")
    @classmethod
    def _coerce_model_id(cls, value):
        return _optional_str(value)


class ActivityLogEntry(BaseModel):
    """
    One line of a session activity log.

    The timestamp is normalised to epoch seconds; it is None when the line
    carries no usable timestamp. The model an entry refers to is resolved in
    this order: ``modelId``, then ``data.modelId``, then ``model``.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True, protected_namespaces=())

    timestamp: Optional[float] = None
    type: Optional[str] = None
    model_id: Optional[str] = Field(None, alias="modelId")
    model: Optional[str] = None
    custom_type: Optional[str] = Field(None, alias="customType")
    data: Optional[SnapshotData] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _normalise_timestamp(cls, value):
        return parse_timestamp(value)

    @field_validator("type", "model_id", "model", "custom_type", mode="before")
    @classmethod
    def _coerce_text(cls, value):
        return _optional_str(value)

    @field_validator("data", mode="before")
    @classmethod
    def _ignore_foreign_data(cls, value):
        # Only object payloads can carry a model snapshot.
        return value if isinstance(value, dict) else None

    @property
    def resolved_model(self) -> Optional[str]:
        if self.model_id:
            return self.model_id
        if self.data and self.data.model_id:
            return self.data.model_id
        return self.model

    @property
    def announced_model(self) -> Optional[str]:
        """Model named by an explicit model_change or model-snapshot event."""
        if self.type == "model_change" and self.model_id:
            return self.model_id
        if self.type == "custom" and self.custom_type == "model-snapshot" and self.data:
            return self.data.model_id
        return None


# ============================================================================
# Session index (sessions.json)
# ============================================================================

class SessionOrigin(BaseModel):
    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    model: Optional[str] = None
    label: Optional[str] = None


class SessionIndexEntry(BaseModel):
    """One sessionKey -> session mapping from a directory's sessions.json."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True, protected_namespaces=())

    session_key: str
    session_id: str = Field(alias="sessionId", min_length=1)
    model: Optional[str] = None
    label: Optional[str] = None
    origin: Optional[SessionOrigin] = None

    @property
    def display_model(self) -> Optional[str]:
        return self.model or (self.origin.model if self.origin else None)


# ============================================================================
# Registration registry (agent-sessions.json)
# ============================================================================

class RegistrationRecord(BaseModel):
    """Link between a logical agent and the session it was spawned into."""
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    session_id: str = Field(alias="sessionId", min_length=1)
    session_key: Optional[str] = Field(None, alias="sessionKey")
    task: Optional[str] = None
    model: Optional[str] = None
    started_at: str = Field(alias="startedAt")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class AgentSessionRequest(BaseModel):
    """Body of POST /api/agent-sessions."""
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    agent: Optional[str] = None
    session_id: Optional[str] = Field(None, alias="sessionId")
    session_key: Optional[str] = Field(None, alias="sessionKey")
    task: Optional[str] = None
    model: Optional[str] = None
    action: Optional[str] = None


# ============================================================================
# API responses
# ============================================================================

class EmployeeStatus(BaseModel):
    """Agent entry of GET /api/employee-status."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    role: Optional[str] = None
    status: Literal["working", "idle"]
    color: Optional[str] = None
    level: int = 1
    exp: int = 0
    next_level: int = Field(500, alias="nextLevel")
    exp_progress: int = Field(0, alias="expProgress", ge=0, le=100)
    current_task: Optional[str] = Field(None, alias="currentTask")
    current_model: Optional[str] = Field(None, alias="currentModel")


class EmployeeStatusResponse(BaseModel):
    status: Literal["ok"] = "ok"
    agents: List[EmployeeStatus]


class ActivityItem(BaseModel):
    """Entry of the activity feed built from profile history."""
    model_config = ConfigDict(populate_by_name=True)

    time: str
    agent: Optional[str] = None
    action: Optional[str] = None
    exp_change: str = Field(alias="expChange")
    exp: int = 0
    date: Optional[str] = None


class LeaderboardEntry(BaseModel):
    name: str
    exp: int
    level: int
    color: Optional[str] = None


class RecentEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    agent: Optional[str] = None
    action: Optional[str] = None
    exp: int = 0
    exp_change: str = Field(alias="expChange")


class SystemHealth(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    uptime: str
    uptime_ms: int = Field(alias="uptimeMs")
    start_time: str = Field(alias="startTime")
    start_time_formatted: str = Field(alias="startTimeFormatted")
    status: str = "OPERATIONAL"


class DashboardResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    leaderboard: List[LeaderboardEntry]
    recent_events: List[RecentEvent] = Field(alias="recentEvents")
    system_health: SystemHealth = Field(alias="systemHealth")


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str
    uptime: float
    timestamp: datetime
    watcher: Dict[str, Any] = Field(default_factory=dict)
