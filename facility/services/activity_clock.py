"""
Working/idle classification of agents.

An agent is working when its most recent activity, across every session
that resolves to it, is younger than its timeout window. The primary agent
is judged on timestamps alone. A subordinate must also hold an active
registration, so an old session log touched after the agent was stopped
cannot bring it back to "working".
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..config import AgentIdentity, Settings
from ..models.schemas import RegistrationRecord
from .identity import SessionIdentityResolver, SessionMap
from .liveness_cache import LivenessCache

logger = logging.getLogger(__name__)


class AgentStatus(str, Enum):
    WORKING = "working"
    IDLE = "idle"


@dataclass(frozen=True)
class ClockReading:
    """Classification of one agent and the evidence behind it."""
    agent: str
    status: AgentStatus
    last_activity: Optional[float] = None
    age: Optional[float] = None
    session_id: Optional[str] = None
    model: Optional[str] = None
    registration: Optional[RegistrationRecord] = None

    @property
    def is_working(self) -> bool:
        return self.status == AgentStatus.WORKING


class ActivityClock:
    """Applies per-class timeout windows to last-activity timestamps."""

    def __init__(
        self,
        settings: Settings,
        resolver: SessionIdentityResolver,
        cache: LivenessCache,
        now: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.resolver = resolver
        self.cache = cache
        self.now = now

    def classify(self, agent: str, mapping: Optional[SessionMap] = None) -> AgentStatus:
        return self.read(agent, mapping).status

    def read(self, agent: str, mapping: Optional[SessionMap] = None) -> ClockReading:
        """
        Classify agent.

        Args:
            agent: Logical agent name
            mapping: Pre-computed session map, to share one resolution
                     across all agents of a status request

        Returns:
            ClockReading; unknown agents and agents without any readable
            activity are idle
        """
        identity = self.settings.identity(agent)
        if identity is None:
            return ClockReading(agent=agent, status=AgentStatus.IDLE)

        registration = self.resolver.registration_for(agent)
        if not identity.is_primary and registration is None:
            return ClockReading(agent=agent, status=AgentStatus.IDLE)

        if mapping is None:
            mapping = self.resolver.resolve()

        latest = None
        for session_id in self.resolver.sessions_for(agent, mapping):
            entry = self.cache.lookup(session_id)
            if entry is None:
                continue
            if latest is None or entry.last_activity > latest.last_activity:
                latest = entry

        if latest is None:
            return ClockReading(agent=agent, status=AgentStatus.IDLE, registration=registration)

        age = self.now() - latest.last_activity
        status = self._status_for(identity, age)
        logger.debug(f"{agent}: session={latest.session_id} age={age:.1f}s -> {status.value}")

        return ClockReading(
            agent=agent,
            status=status,
            last_activity=latest.last_activity,
            age=age,
            session_id=latest.session_id,
            model=latest.model,
            registration=registration,
        )

    @staticmethod
    def _status_for(identity: AgentIdentity, age: float) -> AgentStatus:
        return AgentStatus.WORKING if age < identity.timeout_seconds else AgentStatus.IDLE
