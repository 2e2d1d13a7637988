"""
File system watcher for agent session directories.

Monitors every agent's sessions/ directory (one level deep) for:
- <sessionId>.jsonl files (session activity logs)
- sessions.json (session index)

Uses the watchdog library's native observer (inotify / FSEvents / kqueue),
falling back to its polling observer when the native one cannot start or
polling is forced. Observer threads never touch shared state: every event is
handed to the asyncio loop, debounced per file, and applied there.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from ..config import SESSION_INDEX_FILENAME, SESSION_LOG_SUFFIX, WATCH_DEBOUNCE_MS
from .identity import SessionIdentityResolver
from .liveness_cache import LivenessCache

logger = logging.getLogger(__name__)


class FileType(Enum):
    """Types of files we monitor."""
    SESSION_LOG = "session_log"
    SESSION_INDEX = "session_index"
    UNKNOWN = "unknown"


@dataclass
class FileChange:
    """Represents a detected file change."""
    file_path: str
    file_type: FileType
    session_id: Optional[str]
    event_type: str  # 'created', 'modified', 'deleted'
    timestamp: datetime


def classify_file(file_path: str) -> FileType:
    """Classify file type based on its name."""
    name = Path(file_path).name
    if name == SESSION_INDEX_FILENAME:
        return FileType.SESSION_INDEX
    if name.endswith(SESSION_LOG_SUFFIX) and len(name) > len(SESSION_LOG_SUFFIX):
        return FileType.SESSION_LOG
    return FileType.UNKNOWN


class DebouncedEventHandler(FileSystemEventHandler):
    """
    Watchdog event handler with debouncing to prevent event floods.

    Groups rapid changes to the same file and only triggers the callback
    after a quiet period (default 100ms); the latest event for a file wins.
    Runs on the observer thread and only ever schedules work on the loop.
    """

    def __init__(
        self,
        callback: Callable[[FileChange], None],
        loop: asyncio.AbstractEventLoop,
        debounce_ms: int = WATCH_DEBOUNCE_MS,
    ):
        """
        Args:
            callback: Function called on the loop with each settled change
            loop: Event loop that owns the cache
            debounce_ms: Milliseconds to wait before triggering callback
        """
        super().__init__()
        self.callback = callback
        self.loop = loop
        self.debounce_ms = debounce_ms

        # Loop-side state, only touched from the loop thread
        self.pending_events: Dict[str, asyncio.TimerHandle] = {}
        self.event_queue: Dict[str, FileChange] = {}

    def _schedule_callback(self, file_path: str, change: FileChange):
        """Schedule debounced callback for file change. Runs on the loop."""
        if file_path in self.pending_events:
            self.pending_events[file_path].cancel()

        self.event_queue[file_path] = change

        def trigger():
            self.pending_events.pop(file_path, None)
            latest = self.event_queue.pop(file_path, None)
            if latest is not None:
                self.callback(latest)

        self.pending_events[file_path] = self.loop.call_later(self.debounce_ms / 1000.0, trigger)

    def cancel_pending(self):
        for handle in self.pending_events.values():
            handle.cancel()
        self.pending_events.clear()
        self.event_queue.clear()

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory:
            self._handle_event(event.src_path, "created")

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory:
            self._handle_event(event.src_path, "modified")

    def on_deleted(self, event: FileSystemEvent):
        if not event.is_directory:
            self._handle_event(event.src_path, "deleted")

    def on_moved(self, event: FileSystemEvent):
        # Renames are a delete of the old name plus a create of the new one.
        if not event.is_directory:
            self._handle_event(event.src_path, "deleted")
            self._handle_event(event.dest_path, "created")

    def _handle_event(self, file_path, event_type: str):
        """Process file system event."""
        if isinstance(file_path, bytes):
            file_path = file_path.decode("utf-8", errors="replace")

        file_type = classify_file(file_path)
        if file_type == FileType.UNKNOWN:
            return

        change = FileChange(
            file_path=file_path,
            file_type=file_type,
            session_id=Path(file_path).stem if file_type == FileType.SESSION_LOG else None,
            event_type=event_type,
            timestamp=datetime.now(timezone.utc),
        )

        try:
            self.loop.call_soon_threadsafe(self._schedule_callback, file_path, change)
        except RuntimeError:
            # Loop already closed during shutdown.
            return

        logger.debug(f"File {event_type}: {file_path} (type={file_type.value})")


class SessionWatcher:
    """
    Keeps the liveness cache and the session index in step with the disk.

    Provides the high-level API for watching agent session directories and
    running callbacks after each applied change.
    """

    def __init__(
        self,
        directories: List[Path],
        cache: LivenessCache,
        resolver: SessionIdentityResolver,
        debounce_ms: int = WATCH_DEBOUNCE_MS,
        force_polling: bool = False,
    ):
        """
        Args:
            directories: Agent session directories to watch (non-recursive)
            cache: Liveness cache to update
            resolver: Resolver whose index snapshot is invalidated on index changes
            debounce_ms: Milliseconds to debounce file events
            force_polling: Use the polling observer even if a native one exists
        """
        self.directories = [Path(d) for d in directories]
        self.cache = cache
        self.resolver = resolver
        self.debounce_ms = debounce_ms
        self.force_polling = force_polling

        self.observer = None
        self.handler: Optional[DebouncedEventHandler] = None
        self.mode: Optional[str] = None
        self.watched_dirs: List[Path] = []

        # Registered callbacks by file type
        self.callbacks: Dict[FileType, List[Callable]] = defaultdict(list)
        self._tasks: Set[asyncio.Task] = set()

        self.stats = {
            "events_received": 0,
            "events_processed": 0,
            "last_event": None,
        }

    def register_callback(self, file_type: FileType, callback: Callable[[FileChange], Any]):
        """Register a callback run after changes of file_type are applied."""
        self.callbacks[file_type].append(callback)
        logger.info(f"Registered callback for {file_type.value} files")

    def handle_change(self, change: FileChange):
        """Apply one settled change. Runs on the event loop."""
        self.stats["events_received"] += 1
        path = Path(change.file_path)

        if change.file_type == FileType.SESSION_LOG:
            if change.event_type == "deleted":
                self.cache.discard(path)
            else:
                self.cache.refresh(path)
        elif change.file_type == FileType.SESSION_INDEX:
            self.resolver.invalidate_index(path.parent)

        for callback in self.callbacks.get(change.file_type, []):
            try:
                if inspect.iscoroutinefunction(callback):
                    task = asyncio.ensure_future(callback(change))
                    self._tasks.add(task)
                    task.add_done_callback(self._task_done)
                else:
                    callback(change)
            except Exception as e:
                logger.error(f"Error in callback for {change.file_type.value}: {e}", exc_info=True)

        self.stats["events_processed"] += 1
        self.stats["last_event"] = change.timestamp

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Error in async watch callback: {exc}", exc_info=exc)

    def _build_observer(self, polling: bool):
        observer = PollingObserver() if polling else Observer()
        scheduled = []
        for directory in self.directories:
            if not directory.is_dir():
                logger.warning(f"Session directory does not exist, not watching: {directory}")
                continue
            try:
                observer.schedule(self.handler, str(directory), recursive=False)
            except OSError as e:
                logger.warning(f"Cannot watch {directory}: {e}")
                continue
            scheduled.append(directory)
        return observer, scheduled

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """
        Start watching. Must be called with the event loop that serves requests.

        Failures never propagate: unwatched directories are served by direct
        log reads instead.
        """
        loop = loop or asyncio.get_running_loop()
        self.handler = DebouncedEventHandler(self.handle_change, loop, self.debounce_ms)

        attempts = [True] if self.force_polling else [False, True]
        for polling in attempts:
            observer, scheduled = self._build_observer(polling)
            if not scheduled:
                logger.warning("No session directories available to watch; using direct reads only")
                return
            try:
                observer.start()
            except (OSError, RuntimeError) as e:
                logger.warning(f"{'Polling' if polling else 'Native'} observer failed to start: {e}")
                continue

            self.observer = observer
            self.mode = "polling" if polling else "native"
            self.watched_dirs = scheduled
            self.cache.track(scheduled)
            logger.info(f"Started watching {len(scheduled)} session directories ({self.mode})")
            return

        logger.error("File watching unavailable; using direct reads only")

    def stop(self):
        """Stop watching."""
        if self.handler:
            self.handler.cancel_pending()
        for task in list(self._tasks):
            task.cancel()
        if self.observer and self.observer.is_alive():
            self.observer.stop()
            self.observer.join(timeout=5)
            logger.info("Stopped file watching")
        self.observer = None
        self.watched_dirs = []
        self.cache.untrack_all()

    @property
    def is_running(self) -> bool:
        return bool(self.observer and self.observer.is_alive())

    def get_stats(self) -> Dict[str, Any]:
        """Get watcher statistics."""
        last_event = self.stats["last_event"]
        return {
            **self.stats,
            "last_event": last_event.isoformat() if last_event else None,
            "is_running": self.is_running,
            "mode": self.mode,
            "watched_dirs": [str(d) for d in self.watched_dirs],
        }
