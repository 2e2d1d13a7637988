"""
Liveness engine: the single object that owns all liveness state.

It is constructed once at startup, stored on the FastAPI app, and handed to
route handlers through a dependency. It owns the registration store, the
session resolver, the liveness cache, the activity clock, the profile store
and the file watcher. Every method runs on the server's event loop.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import Settings
from ..models.schemas import (
    DashboardResponse,
    EmployeeStatus,
    RegistrationRecord,
    SystemHealth,
)
from .activity_clock import ActivityClock, ClockReading
from .identity import SessionIdentityResolver
from .liveness_cache import LivenessCache
from .profiles import AgentProfile, ProfileStore
from .registration import RegistrationStore
from .watcher import FileChange, FileType, SessionWatcher

logger = logging.getLogger(__name__)


class LivenessEngine:
    """Derives working/idle status for every agent and serves the registry."""

    def __init__(
        self,
        settings: Settings,
        now: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            settings: Process settings
            now: Wall clock (epoch seconds), compared against log timestamps
            monotonic: Clock used for cache and status TTLs
        """
        self.settings = settings
        self.now = now
        self.monotonic = monotonic
        self.started_at = now()

        self.registrations = RegistrationStore(
            settings.registry_path, ttl_seconds=settings.registration_ttl, now=now
        )
        self.resolver = SessionIdentityResolver(settings, self.registrations)
        self.cache = LivenessCache(
            locate=self.resolver.log_path,
            tail_bytes=settings.tail_bytes,
            max_age=settings.status_ttl,
            now=monotonic,
        )
        self.clock = ActivityClock(settings, self.resolver, self.cache, now=now)
        self.profiles = ProfileStore(settings.profiles_path)
        self.watcher = SessionWatcher(
            directories=self.resolver.session_dirs,
            cache=self.cache,
            resolver=self.resolver,
            debounce_ms=settings.debounce_ms,
            force_polling=settings.force_polling,
        )
        # A new primary session in sessions.json changes who is working.
        self.watcher.register_callback(FileType.SESSION_INDEX, self._on_index_change)

        self._status_cache: Optional[Tuple[float, List[EmployeeStatus]]] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start watching and warm the cache with every resolved session."""
        self.watcher.start()
        listed = self.resolver.listed_sessions()
        primed = 0
        for session_id in self.resolver.resolve():
            path = listed.get(session_id)
            if path is not None and self.cache.is_tracked(path):
                if self.cache.refresh(path) is not None:
                    primed += 1
        logger.info(f"Liveness engine started ({primed} sessions primed)")

    def stop(self) -> None:
        self.watcher.stop()
        logger.info("Liveness engine stopped")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def invalidate_status(self) -> None:
        self._status_cache = None

    def _on_index_change(self, change: FileChange) -> None:
        logger.debug(f"Session index changed: {change.file_path}")
        self.invalidate_status()

    def employee_status(self) -> List[EmployeeStatus]:
        """Status of every profiled agent, recomputed at most once per status TTL."""
        cached = self._status_cache
        if cached is not None and self.monotonic() - cached[0] < self.settings.status_ttl:
            logger.debug(f"Returning cached status (age: {self.monotonic() - cached[0]:.2f}s)")
            return cached[1]

        agents = self.compute_status()
        self._status_cache = (self.monotonic(), agents)
        return agents

    def compute_status(self) -> List[EmployeeStatus]:
        mapping = self.resolver.resolve()
        agents = []
        for profile in self.profiles.profiles():
            reading = self.clock.read(profile.key, mapping)
            agents.append(self._employee_entry(profile, reading))

        summary = ", ".join(f"{a.name}={a.status}" for a in agents)
        logger.debug(f"Status: {summary}")
        return agents

    def _employee_entry(self, profile: AgentProfile, reading: ClockReading) -> EmployeeStatus:
        current_task = None
        current_model = None
        if reading.is_working:
            registration = reading.registration
            if registration is not None:
                current_task = registration.task
                current_model = registration.model
            identity = self.settings.identity(profile.key)
            if current_model is None and identity is not None and identity.is_primary:
                current_model = reading.model
                if current_model is None and reading.session_id is not None:
                    current_model = self.resolver.index_model(reading.session_id)

        return EmployeeStatus(
            name=profile.name,
            role=profile.rank,
            status=reading.status.value,
            color=profile.color,
            level=profile.level,
            exp=profile.exp,
            next_level=profile.next_level,
            exp_progress=profile.exp_progress,
            current_task=current_task,
            current_model=current_model,
        )

    # ------------------------------------------------------------------
    # Registration protocol
    # ------------------------------------------------------------------

    def register(
        self,
        agent: str,
        session_id: str,
        session_key: Optional[str] = None,
        task: Optional[str] = None,
        model: Optional[str] = None,
    ) -> RegistrationRecord:
        record = self.registrations.register(agent, session_id, session_key, task, model)
        self.invalidate_status()
        return record

    def unregister(self, agent: str) -> bool:
        removed = self.registrations.unregister(agent)
        self.invalidate_status()
        return removed

    def registry_map(self) -> Dict[str, Dict[str, Any]]:
        return self.registrations.as_wire()

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    def system_health(self) -> SystemHealth:
        uptime_ms = int((self.now() - self.started_at) * 1000)
        uptime_secs = uptime_ms // 1000
        hours, remainder = divmod(uptime_secs, 3600)
        minutes, seconds = divmod(remainder, 60)
        started = datetime.fromtimestamp(self.started_at, timezone.utc)

        return SystemHealth(
            uptime=f"{hours}h {minutes}m {seconds}s",
            uptime_ms=uptime_ms,
            start_time=started.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            start_time_formatted=started.astimezone().strftime("%m/%d/%Y, %I:%M:%S %p"),
        )

    def dashboard(self) -> DashboardResponse:
        return DashboardResponse(
            leaderboard=self.profiles.leaderboard(),
            recent_events=self.profiles.recent_events(),
            system_health=self.system_health(),
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.watcher.get_stats(),
            "cache": self.cache.get_stats(),
            "registrations": len(self.registrations.records()),
        }
