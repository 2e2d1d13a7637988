"""
Services module for the facility status service.

This module provides the liveness engine and the services it is built from.
"""

from .activity_clock import ActivityClock, AgentStatus, ClockReading
from .engine import LivenessEngine
from .identity import SessionIdentityResolver
from .liveness_cache import LivenessCache, LivenessCacheEntry
from .profiles import AgentProfile, ProfileStore
from .registration import RegistrationStore
from .tail_reader import ActivityRecord, read_last_activity, read_last_entry
from .watcher import FileChange, FileType, SessionWatcher

__all__ = [
    'ActivityClock',
    'AgentStatus',
    'ClockReading',
    'LivenessEngine',
    'SessionIdentityResolver',
    'LivenessCache',
    'LivenessCacheEntry',
    'AgentProfile',
    'ProfileStore',
    'RegistrationStore',
    'ActivityRecord',
    'read_last_activity',
    'read_last_entry',
    'FileChange',
    'FileType',
    'SessionWatcher',
]
