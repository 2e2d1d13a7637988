"""
Tail reading for append-only JSONL session logs.

Only a bounded window at the end of the file is ever read, so the cost of a
read does not grow with the log. Lines that do not parse as a JSON object are
skipped: the first line of the window is usually cut mid-record, and the last
line may be half-written by an agent that is appending right now.

Any I/O problem is reported as "no data" (None), never raised.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Union

from pydantic import ValidationError

from ..config import TAIL_READ_BYTES
from ..models.schemas import ActivityLogEntry

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class ActivityRecord:
    """Liveness-relevant view of a session log's last entry."""
    timestamp: float
    model: Optional[str] = None
    entry_type: Optional[str] = None


def read_tail_lines(filepath: PathLike, max_bytes: int = TAIL_READ_BYTES) -> List[str]:
    """
    Read the raw lines contained in the last max_bytes of a file.

    Files smaller than max_bytes are read whole. The first returned line may
    be a fragment of a longer record.

    Returns:
        Lines in file order, or [] if the file is absent, empty or unreadable
    """
    try:
        with open(filepath, "rb") as f:
            f.seek(0, os.SEEK_END)
            size = f.tell()
            if size == 0:
                return []
            read_size = min(max_bytes, size)
            f.seek(size - read_size)
            chunk = f.read(read_size)
    except OSError as e:
        logger.debug(f"Cannot read tail of {filepath}: {e}")
        return []

    return chunk.decode("utf-8", errors="ignore").split("\n")


def _parse_object(line: str) -> Optional[dict]:
    line = line.strip()
    if not line:
        return None
    try:
        obj = json.loads(line)
    except (ValueError, RecursionError):
        return None
    return obj if isinstance(obj, dict) else None


def iter_objects_reversed(lines: List[str]) -> Iterator[dict]:
    """Yield the JSON objects among lines, newest first, skipping anything else."""
    for line in reversed(lines):
        obj = _parse_object(line)
        if obj is not None:
            yield obj


def read_last_entry(filepath: PathLike, max_bytes: int = TAIL_READ_BYTES) -> Optional[dict]:
    """
    Return the most recently written well-formed JSON object in a JSONL file.

    Args:
        filepath: Path to the JSONL file
        max_bytes: Size of the window read from the end of the file

    Returns:
        The parsed object, or None when the file is absent, empty, unreadable
        or has no parsable object within the window
    """
    return next(iter_objects_reversed(read_tail_lines(filepath, max_bytes)), None)


def read_last_activity(filepath: PathLike, max_bytes: int = TAIL_READ_BYTES) -> Optional[ActivityRecord]:
    """
    Read the last entry of a session log as an ActivityRecord.

    Only the last parsable entry decides the timestamp; if it has no usable
    timestamp the result is None. The model comes from that entry, or failing
    that from the newest model_change / model-snapshot event in the window.
    """
    objects = iter_objects_reversed(read_tail_lines(filepath, max_bytes))

    last = next(objects, None)
    if last is None:
        return None

    try:
        entry = ActivityLogEntry.model_validate(last)
    except ValidationError as e:
        logger.debug(f"Unusable last entry in {filepath}: {e}")
        return None

    if entry.timestamp is None:
        return None

    model = entry.announced_model or entry.resolved_model
    if model is None:
        model = _latest_announced_model(objects)

    return ActivityRecord(timestamp=entry.timestamp, model=model, entry_type=entry.type)


def _latest_announced_model(objects: Iterator[dict]) -> Optional[str]:
    for obj in objects:
        try:
            model = ActivityLogEntry.model_validate(obj).announced_model
        except ValidationError:
            continue
        if model:
            return model
    return None
