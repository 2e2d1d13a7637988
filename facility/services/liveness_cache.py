"""
In-memory last-activity table, kept fresh by filesystem notifications.

The table is advisory. A session with no entry, or with an entry older
than max_age, is read straight from its log. Entries are only stored for
logs in directories the watcher actually watches; everything else always
takes the direct read path.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Set

from ..config import TAIL_READ_BYTES
from .tail_reader import read_last_activity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LivenessCacheEntry:
    session_id: str
    last_activity: float
    model: Optional[str]
    path: Path
    checked_at: float


class LivenessCache:
    """Session id -> last activity, owned by the engine."""

    def __init__(
        self,
        locate: Callable[[str], Optional[Path]],
        tail_bytes: int = TAIL_READ_BYTES,
        max_age: float = 5.0,
        now: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            locate: Returns the log path of a session id, or None
            tail_bytes: Tail Reader window
            max_age: Seconds after which an entry is re-read on lookup (0 = always)
            now: Monotonic clock for entry ages
        """
        self.locate = locate
        self.tail_bytes = tail_bytes
        self.max_age = max_age
        self.now = now

        self._entries: Dict[str, LivenessCacheEntry] = {}
        self._tracked_dirs: Set[Path] = set()

        self.stats = {
            "hits": 0,
            "misses": 0,
            "refreshes": 0,
            "fallback_reads": 0,
            "shadowed": 0,
        }

    # ------------------------------------------------------------------
    # Tracked directories
    # ------------------------------------------------------------------

    def track(self, directories: Iterable[Path]) -> None:
        """Mark directories as watched; only their logs are cached."""
        self._tracked_dirs.update(Path(d) for d in directories)

    def untrack_all(self) -> None:
        self._tracked_dirs.clear()
        self._entries.clear()

    def is_tracked(self, path: Path) -> bool:
        return Path(path).parent in self._tracked_dirs

    # ------------------------------------------------------------------
    # Mutation (watch callbacks)
    # ------------------------------------------------------------------

    def refresh(self, path: Path) -> Optional[LivenessCacheEntry]:
        """
        Re-read a log's tail and upsert (or drop) its entry.

        A log shadowed by a same-named log in an earlier directory is not
        the session's log; refreshing it leaves the entry untouched.
        """
        path = Path(path)
        session_id = path.stem
        self.stats["refreshes"] += 1

        located = self.locate(session_id)
        if located is not None and Path(located) != path:
            logger.debug(f"Ignoring {path}: session {session_id} is read from {located}")
            self.stats["shadowed"] += 1
            return self._entries.get(session_id)

        record = read_last_activity(path, self.tail_bytes)
        if record is None:
            self._entries.pop(session_id, None)
            return None

        entry = LivenessCacheEntry(
            session_id=session_id,
            last_activity=record.timestamp,
            model=record.model,
            path=path,
            checked_at=self.now(),
        )
        if self.is_tracked(path):
            self._entries[session_id] = entry
        return entry

    def discard(self, path: Path) -> None:
        path = Path(path)
        entry = self._entries.get(path.stem)
        if entry is not None and entry.path == path:
            del self._entries[path.stem]
            logger.debug(f"Dropped cache entry for {path.stem}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> Optional[LivenessCacheEntry]:
        """Cached entry without any disk access."""
        return self._entries.get(session_id)

    def lookup(self, session_id: str) -> Optional[LivenessCacheEntry]:
        """
        Last activity for a session: from the table when fresh, from disk otherwise.

        Returns:
            The entry, or None when the session has no log or no usable entry
        """
        entry = self._entries.get(session_id)
        if entry is not None and self.now() - entry.checked_at < self.max_age:
            self.stats["hits"] += 1
            return entry

        self.stats["misses"] += 1
        path = entry.path if entry is not None else self.locate(session_id)
        if path is None:
            return None

        self.stats["fallback_reads"] += 1
        return self.refresh(path)

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict:
        return {
            **self.stats,
            "entries": len(self._entries),
            "tracked_dirs": sorted(str(d) for d in self._tracked_dirs),
        }
