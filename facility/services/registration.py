"""
Registration registry for externally spawned agents.

The registry (agent-sessions.json) maps a logical agent name to the session
it was spawned into:

    {"Cipher": {"sessionId": "...", "sessionKey": "...", "task": "...",
                "model": "...", "startedAt": "2026-01-01T00:00:00.000Z"}}

At most one record exists per agent. "start" overwrites unconditionally
(last writer wins) and "stop" deletes. Every mutation rewrites the whole
file before returning, under an exclusive fcntl lock, through a temp file
that is fsynced and renamed into place.
"""

import errno
import fcntl
import json
import logging
import os
import tempfile
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional, Tuple

from pydantic import ValidationError

from ..exceptions import RegistrationError, RegistryCorruptedError
from ..models.schemas import RegistrationRecord, parse_timestamp

logger = logging.getLogger(__name__)

LOCK_TIMEOUT_SECONDS = 5.0
LOCK_RETRY_DELAY = 0.05


# ============================================================================
# FILE LOCKING
# ============================================================================

@contextmanager
def registry_lock(registry_path: Path, timeout: float = LOCK_TIMEOUT_SECONDS) -> Iterator[None]:
    """
    Hold an exclusive lock on the registry's sidecar lock file.

    A sidecar is locked rather than the registry itself because the registry
    is replaced by rename on every write.

    Raises:
        TimeoutError: If the lock cannot be acquired within timeout
    """
    lock_path = registry_path.with_name(registry_path.name + ".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    start_time = time.time()
    f = open(lock_path, "a")
    try:
        while True:
            try:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except OSError as e:
                if e.errno not in (errno.EACCES, errno.EAGAIN):
                    raise
                if time.time() - start_time >= timeout:
                    raise TimeoutError(
                        f"Could not acquire lock on {registry_path} after {timeout}s. "
                        f"Another process may be holding it."
                    )
                time.sleep(LOCK_RETRY_DELAY)
        yield
    finally:
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except OSError as e:
            logger.error(f"Error unlocking registry {registry_path}: {e}")
        f.close()


def read_registry_file(registry_path: Path) -> Dict[str, RegistrationRecord]:
    """
    Read and validate the registry file.

    Entries that do not validate are dropped with a warning.

    Returns:
        Agent name -> record; {} if the file does not exist

    Raises:
        RegistryCorruptedError: If the file is not a JSON object
    """
    try:
        with open(registry_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        return {}
    except ValueError as e:
        raise RegistryCorruptedError(str(registry_path), str(e)) from e

    if not isinstance(raw, dict):
        raise RegistryCorruptedError(str(registry_path), "top level is not an object")

    records: Dict[str, RegistrationRecord] = {}
    for agent, value in raw.items():
        try:
            records[agent] = RegistrationRecord.model_validate(value)
        except ValidationError as e:
            logger.warning(f"Dropping invalid registration for {agent} in {registry_path}: {e}")
    return records


def write_registry_file(registry_path: Path, records: Dict[str, RegistrationRecord]) -> None:
    """
    Atomically replace the registry file with records.

    A crash mid-write leaves the previous file intact.
    """
    registry_path.parent.mkdir(parents=True, exist_ok=True)
    payload = {agent: record.to_wire() for agent, record in records.items()}

    fd, tmp_path = tempfile.mkstemp(
        prefix=f".{registry_path.name}.", suffix=".tmp", dir=str(registry_path.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, registry_path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _iso_now(now: float) -> str:
    stamp = datetime.fromtimestamp(now, timezone.utc).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


# ============================================================================
# REGISTRATION STORE
# ============================================================================

class RegistrationStore:
    """
    In-memory view of the registration registry, backed by its file.

    The table is reloaded whenever the file changes on disk, so edits made
    by other processes are picked up on the next read.
    """

    def __init__(
        self,
        registry_path: Path,
        ttl_seconds: Optional[float] = None,
        now: Callable[[], float] = time.time,
    ):
        """
        Args:
            registry_path: Path to agent-sessions.json
            ttl_seconds: Age after which a record counts as stale (None = never)
            now: Clock returning epoch seconds
        """
        self.registry_path = Path(registry_path)
        self.ttl_seconds = ttl_seconds
        self.now = now

        self._records: Dict[str, RegistrationRecord] = {}
        self._signature: Optional[Tuple[int, int]] = None
        self.version = 0

    def _file_signature(self) -> Optional[Tuple[int, int]]:
        try:
            stat = self.registry_path.stat()
        except OSError:
            return None
        return (stat.st_mtime_ns, stat.st_size)

    def _reload_if_changed(self) -> None:
        signature = self._file_signature()
        if signature == self._signature:
            return

        try:
            records = read_registry_file(self.registry_path)
        except RegistryCorruptedError as e:
            logger.warning(f"{e}; treating registry as empty")
            records = {}
        except OSError as e:
            logger.warning(f"Cannot read registry {self.registry_path}: {e}")
            return

        self._records = records
        self._signature = signature
        self.version += 1
        logger.debug(f"Loaded {len(records)} registrations from {self.registry_path}")

    def records(self) -> Dict[str, RegistrationRecord]:
        """All records, including stale ones."""
        self._reload_if_changed()
        return dict(self._records)

    def is_stale(self, record: RegistrationRecord) -> bool:
        if self.ttl_seconds is None:
            return False
        started = parse_timestamp(record.started_at)
        if started is None:
            return False
        return self.now() - started > self.ttl_seconds

    def active_records(self) -> Dict[str, RegistrationRecord]:
        """Records that still count for identity resolution and liveness."""
        return {agent: record for agent, record in self.records().items() if not self.is_stale(record)}

    def get(self, agent: str) -> Optional[RegistrationRecord]:
        """Active record for agent, or None."""
        return self.active_records().get(agent)

    def as_wire(self) -> Dict[str, Dict]:
        """Full registry map as served by GET /api/agent-sessions."""
        return {agent: record.to_wire() for agent, record in self.records().items()}

    def register(
        self,
        agent: str,
        session_id: str,
        session_key: Optional[str] = None,
        task: Optional[str] = None,
        model: Optional[str] = None,
    ) -> RegistrationRecord:
        """
        Record that agent now runs in session_id, replacing any prior record.

        Raises:
            RegistrationError: If agent or session_id is empty
        """
        if not agent or not isinstance(agent, str):
            raise RegistrationError("agent is required")
        if not session_id or not isinstance(session_id, str):
            raise RegistrationError("sessionId is required")

        record = RegistrationRecord(
            session_id=session_id,
            session_key=session_key,
            task=task,
            model=model,
            started_at=_iso_now(self.now()),
        )

        with registry_lock(self.registry_path):
            records = self._read_for_update()
            previous = records.get(agent)
            if previous is not None and previous.session_id != session_id:
                logger.warning(
                    f"Registration for {agent} replaced: session {previous.session_id} -> {session_id}"
                )
            records[agent] = record
            self._commit(records)

        logger.info(f"Registered {agent} -> session {session_id}")
        return record

    def unregister(self, agent: str) -> bool:
        """
        Remove agent's record.

        Returns:
            True if a record was removed; False if there was none
        """
        if not agent:
            raise RegistrationError("agent is required")

        with registry_lock(self.registry_path):
            records = self._read_for_update()
            if agent not in records:
                logger.debug(f"No registration to remove for {agent}")
                return False
            del records[agent]
            self._commit(records)

        logger.info(f"Unregistered {agent}")
        return True

    def _read_for_update(self) -> Dict[str, RegistrationRecord]:
        try:
            return read_registry_file(self.registry_path)
        except RegistryCorruptedError as e:
            logger.warning(f"{e}; it will be overwritten")
            return {}

    def _commit(self, records: Dict[str, RegistrationRecord]) -> None:
        write_registry_file(self.registry_path, records)
        self._records = dict(records)
        self._signature = self._file_signature()
        self.version += 1
