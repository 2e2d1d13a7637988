"""
Session identity resolution.

Decides which logical agent each session belongs to by merging three
sources:

1. The registration registry. A session named there belongs to the
   registered agent. This is the only way a freshly spawned subordinate is
   linked to its session, possibly before its log has any entry.
2. The sessions.json index of every agent directory. The entry keyed by the
   reserved primary session key belongs to the primary agent.
3. The directory listings, used only to locate a session's log file.

Sessions matched by neither rule are unresolved and ignored.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from ..config import SESSION_INDEX_FILENAME, SESSION_LOG_SUFFIX, Settings
from ..models.schemas import RegistrationRecord, SessionIndexEntry
from .registration import RegistrationStore

logger = logging.getLogger(__name__)

SessionMap = Dict[str, str]


def is_safe_session_id(session_id: str) -> bool:
    """A session id must name a file inside its directory."""
    return bool(session_id) and session_id not in (".", "..") and "/" not in session_id and "\\" not in session_id


def read_session_index(index_path: Path) -> List[SessionIndexEntry]:
    """
    Parse a sessions.json file.

    Returns:
        Valid entries; [] if the file is absent, unreadable or not an object
    """
    try:
        with open(index_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        return []
    except (OSError, ValueError) as e:
        logger.warning(f"Cannot read session index {index_path}: {e}")
        return []

    if not isinstance(raw, dict):
        logger.warning(f"Session index {index_path} is not a JSON object")
        return []

    entries = []
    for session_key, value in raw.items():
        if not isinstance(value, dict):
            continue
        try:
            entries.append(SessionIndexEntry.model_validate({**value, "session_key": session_key}))
        except ValidationError:
            logger.debug(f"Skipping index entry {session_key} in {index_path}")
    return entries


class SessionIdentityResolver:
    """Maps session ids to logical agent names."""

    def __init__(self, settings: Settings, registrations: RegistrationStore):
        self.settings = settings
        self.registrations = registrations
        self.session_dirs = settings.session_dirs()

        # directory -> (index file signature, parsed entries)
        self._index_cache: Dict[Path, Tuple[Optional[Tuple[int, int]], List[SessionIndexEntry]]] = {}

    # ------------------------------------------------------------------
    # Session index
    # ------------------------------------------------------------------

    def index_entries(self, directory: Path) -> List[SessionIndexEntry]:
        """Entries of directory's sessions.json, re-read only when the file changed."""
        index_path = directory / SESSION_INDEX_FILENAME
        try:
            stat = index_path.stat()
            signature = (stat.st_mtime_ns, stat.st_size)
        except OSError:
            signature = None

        cached = self._index_cache.get(directory)
        if cached is not None and cached[0] == signature:
            return cached[1]

        entries = read_session_index(index_path) if signature is not None else []
        self._index_cache[directory] = (signature, entries)
        return entries

    def invalidate_index(self, directory: Optional[Path] = None) -> None:
        """Forget parsed index data for one directory, or for all of them."""
        if directory is None:
            self._index_cache.clear()
        else:
            self._index_cache.pop(Path(directory), None)

    def all_index_entries(self) -> List[SessionIndexEntry]:
        entries: List[SessionIndexEntry] = []
        for directory in self.session_dirs:
            entries.extend(self.index_entries(directory))
        return entries

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self) -> SessionMap:
        """
        Build the session id -> agent name mapping.

        Registration wins over the primary session key when both name the
        same session.
        """
        mapping: SessionMap = {}
        primary = self.settings.primary.name

        for entry in self.all_index_entries():
            if entry.session_key == self.settings.primary_session_key:
                mapping[entry.session_id] = primary

        for agent, record in self.registrations.active_records().items():
            mapping[record.session_id] = agent

        return mapping

    def sessions_for(self, agent: str, mapping: Optional[SessionMap] = None) -> List[str]:
        """All session ids currently resolving to agent."""
        if mapping is None:
            mapping = self.resolve()
        return [session_id for session_id, owner in mapping.items() if owner == agent]

    def registration_for(self, agent: str) -> Optional[RegistrationRecord]:
        return self.registrations.get(agent)

    def index_model(self, session_id: str) -> Optional[str]:
        """Model recorded for session_id in any sessions.json, if one is."""
        for entry in self.all_index_entries():
            if entry.session_id == session_id and entry.display_model:
                return entry.display_model
        return None

    # ------------------------------------------------------------------
    # Log location
    # ------------------------------------------------------------------

    def log_path(self, session_id: str) -> Optional[Path]:
        """Find the session's log file in any agent directory."""
        if not is_safe_session_id(session_id):
            logger.debug(f"Refusing unsafe session id {session_id!r}")
            return None

        filename = f"{session_id}{SESSION_LOG_SUFFIX}"
        for directory in self.session_dirs:
            candidate = directory / filename
            if candidate.is_file():
                return candidate
        return None

    def listed_sessions(self) -> Dict[str, Path]:
        """Session id -> log path for every log file present in the agent directories."""
        found: Dict[str, Path] = {}
        for directory in self.session_dirs:
            try:
                paths = sorted(directory.glob(f"*{SESSION_LOG_SUFFIX}"))
            except OSError as e:
                logger.debug(f"Cannot list {directory}: {e}")
                continue
            for path in paths:
                found.setdefault(path.stem, path)
        return found
