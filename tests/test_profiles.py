"""Tests for the profile store and the dashboard views built on it."""

import pytest

from facility.services.profiles import DEFAULT_PROFILES, AgentProfile, ProfileStore

from fixtures import get_sample_profiles, write_profiles


@pytest.fixture
def store(tmp_path):
    return ProfileStore(write_profiles(tmp_path / "data" / "agents.json"))


@pytest.mark.parametrize("exp, next_level, expected", [
    (0, 500, 0),
    (420, 750, 56),
    (1, 750, 0),
    (4, 750, 1),
    (375, 750, 50),
    (900, 750, 100),
    (-50, 750, 0),
    (10, 0, 0),
])
def test_exp_progress(exp, next_level, expected):
    profile = AgentProfile("A", "A", None, None, exp=exp, next_level=next_level)
    assert profile.exp_progress == expected


def test_profiles_in_store_order(store):
    profiles = store.profiles()
    assert [p.key for p in profiles] == ["Flint", "Cipher"]
    assert profiles[0].rank == "Lead"
    assert profiles[0].next_level == 750


def test_defaults_when_store_missing(tmp_path):
    store = ProfileStore(tmp_path / "absent.json")
    assert store.profiles() == list(DEFAULT_PROFILES)
    assert store.history() == []


def test_defaults_when_store_corrupt(tmp_path):
    path = tmp_path / "agents.json"
    path.write_text("{broken")
    assert ProfileStore(path).profiles() == list(DEFAULT_PROFILES)


def test_store_reloads_on_change(tmp_path):
    path = write_profiles(tmp_path / "agents.json")
    store = ProfileStore(path)
    assert len(store.profiles()) == 2

    data = get_sample_profiles()
    data["agents"]["Scout"] = {"name": "Scout", "rank": "Research", "exp": 5000}
    write_profiles(path, data)
    assert [p.key for p in store.profiles()] == ["Flint", "Cipher", "Scout"]


def test_loose_field_types(tmp_path):
    path = write_profiles(tmp_path / "agents.json", {
        "agents": {"Atlas": {"rank": 7, "level": "high", "exp": "12"}},
    })
    atlas = ProfileStore(path).profiles()[0]
    assert atlas.name == "Atlas"
    assert atlas.rank == "7"
    assert atlas.level == 1
    assert atlas.exp == 12


def test_activity_feed_newest_first(store):
    feed = store.activity_feed()
    assert [item.agent for item in feed] == ["Flint", "Cipher", "Cipher"]
    assert feed[0].exp_change == "+100"
    assert feed[0].action == "ship"
    assert feed[1].exp_change == "-20"
    assert feed[1].action == "Broke the build"
    assert len(feed[0].time.split(":")) == 3


def test_activity_feed_limit(tmp_path):
    data = get_sample_profiles()
    data["history"] = [{"agent": "Cipher", "action": "a", "exp": i} for i in range(25)]
    store = ProfileStore(write_profiles(tmp_path / "agents.json", data))

    feed = store.activity_feed()
    assert len(feed) == 10
    assert feed[0].exp == 24


def test_leaderboard_by_exp(store):
    board = store.leaderboard()
    assert [entry.name for entry in board] == ["Flint", "Cipher"]
    assert board[0].exp == 420


def test_recent_events(store):
    events = store.recent_events(limit=2)
    assert [e.agent for e in events] == ["Flint", "Cipher"]
    assert events[0].exp_change == "+100"


@pytest.mark.parametrize("timestamp", [1e20, 8e15, -8e15, "not a time"])
def test_unrepresentable_history_timestamp_keeps_feed(tmp_path, timestamp):
    data = get_sample_profiles()
    data["history"].append({"agent": "Scout", "action": "scan", "exp": 5, "timestamp": timestamp})
    store = ProfileStore(write_profiles(tmp_path / "agents.json", data))

    feed = store.activity_feed()
    assert feed[0].agent == "Scout"
    assert len(feed[0].time.split(":")) == 3
    assert len(feed) == 4
