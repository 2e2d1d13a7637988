"""
Tests for the bounded tail reader.

Tests cover:
- Last well-formed object wins over corrupt / partial trailing lines
- Files smaller than the window behave like a whole-file scan
- Large files only have their tail read
- Missing, empty and unreadable files yield None
- ActivityRecord timestamp normalisation and model resolution
"""

import json
import os
from datetime import datetime, timezone

import pytest

from facility.models.schemas import parse_timestamp
from facility.services.tail_reader import (
    read_last_activity,
    read_last_entry,
    read_tail_lines,
)

from fixtures import write_session_log


def _whole_file_last_object(path):
    last = None
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            try:
                obj = json.loads(line)
            except ValueError:
                continue
            if isinstance(obj, dict):
                last = obj
    return last


# ============================================================================
# read_last_entry
# ============================================================================

def test_returns_last_object(main_sessions):
    path = write_session_log(main_sessions, "s1", [{"n": 1}, {"n": 2}, {"n": 3}])
    assert read_last_entry(path) == {"n": 3}


def test_skips_partial_trailing_line(main_sessions):
    path = write_session_log(main_sessions, "s1", [{"n": 1}, {"n": 2}], trailer='{"n": 3, "text": "half-wri')
    assert read_last_entry(path) == {"n": 2}


def test_skips_corrupt_and_non_object_lines(main_sessions):
    path = main_sessions / "s1.jsonl"
    path.write_text('{"n": 1}\nnot json at all\n[1, 2, 3]\n"string"\n\n   \n')
    assert read_last_entry(path) == {"n": 1}


def test_preceding_corruption_is_irrelevant(main_sessions):
    path = main_sessions / "s1.jsonl"
    path.write_text("garbage\n{broken\n" + json.dumps({"timestamp": 1}) + "\n")
    assert read_last_entry(path) == {"timestamp": 1}


def test_missing_file_returns_none(tmp_path):
    assert read_last_entry(tmp_path / "absent.jsonl") is None


def test_empty_file_returns_none(main_sessions):
    path = main_sessions / "empty.jsonl"
    path.write_text("")
    assert read_last_entry(path) is None


def test_no_parsable_line_returns_none(main_sessions):
    path = main_sessions / "junk.jsonl"
    path.write_text("junk\nmore junk\n{\n")
    assert read_last_entry(path) is None


def test_directory_is_treated_as_missing(tmp_path):
    assert read_last_entry(tmp_path) is None


@pytest.mark.parametrize("entries", [
    [{"a": 1}],
    [{"a": 1}, {"b": 2}],
    [{"i": i, "pad": "x" * 40} for i in range(100)],
])
def test_small_files_match_whole_file_scan(main_sessions, entries):
    path = write_session_log(main_sessions, "small", entries, trailer="{bad")
    assert os.path.getsize(path) <= 8192
    assert read_last_entry(path) == _whole_file_last_object(path)


def test_large_file_reads_only_the_tail(main_sessions):
    entries = [{"i": i, "pad": "x" * 200} for i in range(2000)]
    path = write_session_log(main_sessions, "big", entries)
    assert os.path.getsize(path) > 8192 * 10

    lines = read_tail_lines(path, 8192)
    assert sum(len(line) + 1 for line in lines) <= 8192 + 1
    assert read_last_entry(path) == entries[-1]


def test_window_starting_mid_record_is_tolerated(main_sessions):
    path = main_sessions / "mid.jsonl"
    long_record = json.dumps({"blob": "y" * 9000})
    path.write_text(long_record + "\n" + json.dumps({"n": "tail"}) + "\n")
    assert read_last_entry(path) == {"n": "tail"}


def test_all_recent_lines_corrupt_does_not_look_further_back(main_sessions):
    path = main_sessions / "corrupt-tail.jsonl"
    path.write_text(json.dumps({"n": "old"}) + "\n" + ("#" * 9000) + "\n")
    assert read_last_entry(path) is None


def test_unreadable_file_returns_none(main_sessions):
    path = write_session_log(main_sessions, "locked", [{"n": 1}])
    os.chmod(path, 0)
    try:
        if os.access(path, os.R_OK):
            pytest.skip("running with permissions that ignore file modes")
        assert read_last_entry(path) is None
    finally:
        os.chmod(path, 0o644)


# ============================================================================
# read_last_activity
# ============================================================================

def test_activity_from_iso_timestamp(main_sessions):
    path = write_session_log(main_sessions, "s1", [{"timestamp": "2026-01-01T00:00:10Z", "type": "message"}])
    record = read_last_activity(path)
    expected = datetime(2026, 1, 1, 0, 0, 10, tzinfo=timezone.utc).timestamp()
    assert record.timestamp == pytest.approx(expected)
    assert record.entry_type == "message"


def test_activity_from_epoch_millis(main_sessions):
    path = write_session_log(main_sessions, "s1", [{"timestamp": 1767225610000}])
    assert read_last_activity(path).timestamp == pytest.approx(1767225610.0)


def test_activity_with_offset_timestamp(main_sessions):
    path = write_session_log(main_sessions, "s1", [{"timestamp": "2026-01-01T02:00:10+02:00"}])
    expected = datetime(2026, 1, 1, 0, 0, 10, tzinfo=timezone.utc).timestamp()
    assert read_last_activity(path).timestamp == pytest.approx(expected)


@pytest.mark.parametrize("timestamp", [None, "yesterday", True, {"when": 1}, ""])
def test_last_entry_without_usable_timestamp_is_no_activity(main_sessions, timestamp):
    path = write_session_log(main_sessions, "s1", [
        {"timestamp": "2026-01-01T00:00:10Z"},
        {"timestamp": timestamp},
    ])
    assert read_last_activity(path) is None


def test_activity_model_from_last_entry(main_sessions):
    path = write_session_log(main_sessions, "s1", [
        {"timestamp": 1000, "type": "message", "modelId": "claude-opus"},
    ])
    assert read_last_activity(path).model == "claude-opus"


def test_activity_model_falls_back_to_earlier_model_change(main_sessions):
    path = write_session_log(main_sessions, "s1", [
        {"timestamp": 1000, "type": "model_change", "modelId": "kimi-k2"},
        {"timestamp": 2000, "type": "message"},
    ])
    record = read_last_activity(path)
    assert record.timestamp == pytest.approx(2.0)
    assert record.model == "kimi-k2"


def test_foreign_data_payload_does_not_hide_timestamp(main_sessions):
    path = write_session_log(main_sessions, "s1", [
        {"timestamp": 5000, "type": "tool_result", "data": ["not", "an", "object"]},
    ])
    assert read_last_activity(path).timestamp == pytest.approx(5.0)


def test_activity_model_prefers_newest_snapshot(main_sessions):
    path = write_session_log(main_sessions, "s1", [
        {"timestamp": 1, "type": "model_change", "modelId": "old-model"},
        {"timestamp": 2, "type": "custom", "customType": "model-snapshot", "data": {"modelId": "new-model"}},
        {"timestamp": 3, "type": "message"},
    ])
    assert read_last_activity(path).model == "new-model"


def test_activity_model_none_without_events(main_sessions):
    path = write_session_log(main_sessions, "s1", [{"timestamp": 1, "type": "message"}])
    assert read_last_activity(path).model is None


@pytest.mark.parametrize("timestamp", [1e300, -1e300, 8.64e15 + 1, 10 ** 400])
def test_out_of_range_timestamp_is_no_activity(main_sessions, timestamp):
    path = main_sessions / "s1.jsonl"
    path.write_text('{"timestamp": %s}\n' % (timestamp,))
    assert read_last_activity(path) is None


@pytest.mark.parametrize("value, expected", [
    (8.64e15, 8.64e12),
    (-8.64e15, -8.64e12),
    (8.64e15 + 1, None),
    (float("inf"), None),
    (float("nan"), None),
])
def test_parse_timestamp_bounds(value, expected):
    assert parse_timestamp(value) == expected
