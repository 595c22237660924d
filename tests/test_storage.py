import sqlite3

import pytest
from fakes import WORKSPACE_ID, seed_workspace

from slack_archive.models import (
    Channel,
    FileMeta,
    Message,
    SyncStatus,
    User,
    iso_from_slack_ts,
    message_id,
    utc_now,
)
from slack_archive.storage import SQLiteStore


@pytest.fixture
def store(tmp_path):
    s = SQLiteStore(str(tmp_path / "archive.db"))
    seed_workspace(s)
    s.upsert_users(
        [
            User("U1", WORKSPACE_ID, "alice", "Alice", "", 1),
            User("U2", WORKSPACE_ID, "bob", "Bob", "", 0),
        ]
    )
    s.upsert_channel(Channel("C1", WORKSPACE_ID, "general", 0, 0, None, 2))
    s.upsert_channel(Channel("G1", WORKSPACE_ID, "secret", 1, 0, "pw", 2))
    yield s
    s.close()


def _message(channel_id: str, ts: str, text: str, user_id: str = "U1", **kwargs) -> Message:
    return Message(
        id=message_id(channel_id, ts),
        channel_id=channel_id,
        ts=ts,
        user_id=user_id,
        username="alice" if user_id == "U1" else "bob",
        text=text,
        timestamp=iso_from_slack_ts(ts),
        thread_ts=kwargs.get("thread_ts"),
        files=kwargs.get("files", ()),
    )


def _insert(store: SQLiteStore, *messages: Message) -> None:
    for m in messages:
        store.insert_message_if_absent(m)
    store.commit()


def test_insert_is_idempotent_per_channel_and_ts(store) -> None:
    first = _message("C1", "1700000001.000000", "hello")
    assert store.insert_message_if_absent(first) is True
    assert store.insert_message_if_absent(first) is False
    store.commit()
    assert store.count_messages(channel_id="C1") == 1


def test_foreign_keys_are_enforced(store) -> None:
    with pytest.raises(sqlite3.IntegrityError):
        store.insert_message_if_absent(_message("C404", "1700000001.000000", "orphan"))
    with pytest.raises(sqlite3.IntegrityError):
        store.insert_message_if_absent(_message("C1", "1700000001.000000", "x", user_id="U404"))


def test_public_channel_cannot_hold_password(store) -> None:
    with pytest.raises(sqlite3.IntegrityError):
        store.upsert_channel(Channel("C9", WORKSPACE_ID, "open", 0, 0, "pw", 1))


def test_chronological_and_recent_orders(store) -> None:
    _insert(
        store,
        _message("C1", "1700000003.000000", "third"),
        _message("C1", "1700000001.000000", "first"),
        _message("C1", "1700000002.000000", "second", user_id="U2"),
    )

    assert [m["text"] for m in store.list_channel_messages("C1")] == ["first", "second", "third"]
    recent = store.list_recent_messages("C1", limit=2)
    assert [m["text"] for m in recent] == ["third", "second"]
    assert recent[1]["display_name"] == "Bob"
    assert [m["text"] for m in store.list_recent_messages("C1", limit=2, offset=2)] == ["first"]


def test_files_round_trip_as_list(store) -> None:
    attachment = FileMeta("F1", "plan.pdf", "application/pdf", "https://files/plan.pdf", 42)
    _insert(store, _message("C1", "1700000001.000000", "see file", files=(attachment,)))

    row = store.list_channel_messages("C1")[0]
    assert row["files"] == [attachment.to_dict()]


def test_thread_replies_exclude_parent(store) -> None:
    parent = "1700000001.000000"
    _insert(
        store,
        _message("C1", parent, "parent", thread_ts=parent),
        _message("C1", "1700000003.000000", "reply 2", thread_ts=parent),
        _message("C1", "1700000002.000000", "reply 1", user_id="U2", thread_ts=parent),
        _message("C1", "1700000004.000000", "unrelated"),
    )
    replies = store.list_thread_replies("C1", parent)
    assert [m["text"] for m in replies] == ["reply 1", "reply 2"]


def test_search_respects_visibility_and_filters(store) -> None:
    _insert(
        store,
        _message("C1", "1700000001.000000", "Deploy started"),
        _message("C1", "1700000002.000000", "deploy done", user_id="U2"),
        _message("G1", "1700000003.000000", "secret deploy"),
        _message("C1", "1700000004.000000", "100% off_topic"),
    )

    rows, total = store.search_messages(WORKSPACE_ID, "deploy", limit=10)
    assert total == 2
    assert [r["text"] for r in rows] == ["deploy done", "Deploy started"]
    assert rows[0]["channel_name"] == "general"

    _, total = store.search_messages(WORKSPACE_ID, "deploy", limit=10, include_private=True)
    assert total == 3
    _, total = store.search_messages(
        WORKSPACE_ID, "deploy", limit=10, private_channel_ids=["G1"]
    )
    assert total == 3

    rows, total = store.search_messages(WORKSPACE_ID, "deploy", limit=10, user_id="U2")
    assert [r["text"] for r in rows] == ["deploy done"]

    rows, _ = store.search_messages(
        WORKSPACE_ID,
        "deploy",
        limit=10,
        from_ts=iso_from_slack_ts("1700000001.500000"),
        to_ts=iso_from_slack_ts("1700000002.500000"),
    )
    assert [r["text"] for r in rows] == ["deploy done"]

    _, total = store.search_messages(WORKSPACE_ID, "0%", limit=10)
    assert total == 1
    _, total = store.search_messages(WORKSPACE_ID, "y_d", limit=10)
    assert total == 0


def test_sync_log_finishes_exactly_once(store) -> None:
    store.create_sync_log("s1", WORKSPACE_ID, utc_now())
    assert store.get_sync_log("s1").status is SyncStatus.RUNNING

    assert store.complete_sync_log("s1", new_channels=2, new_messages=5) is True
    assert store.fail_sync_log("s1", ["late error"]) is False

    log = store.get_sync_log("s1")
    assert log.status is SyncStatus.COMPLETED
    assert (log.new_channels, log.new_messages) == (2, 5)
    assert log.errors == ()


def test_latest_sync_log_is_most_recently_started(store) -> None:
    assert store.latest_sync_log(WORKSPACE_ID) is None
    store.create_sync_log("new", WORKSPACE_ID, "2024-03-01T00:00:00.000000+00:00")
    store.create_sync_log("old", WORKSPACE_ID, "2024-01-01T00:00:00.000000+00:00")
    store.fail_sync_log("new", ["boom"])

    latest = store.latest_sync_log(WORKSPACE_ID)
    assert latest.id == "new"
    assert latest.status is SyncStatus.FAILED
    assert store.latest_sync_log("T404") is None


def test_read_only_store_refuses_missing_file_and_writes(tmp_path, store) -> None:
    missing = tmp_path / "nested" / "absent.db"
    with pytest.raises(sqlite3.OperationalError):
        SQLiteStore(str(missing), read_only=True)
    assert not missing.parent.exists()

    reader = SQLiteStore(store.path, read_only=True)
    try:
        assert reader.get_workspace(WORKSPACE_ID) is not None
        with pytest.raises(sqlite3.OperationalError):
            reader.create_sync_log("s1", WORKSPACE_ID, utc_now())
    finally:
        reader.close()


def test_sync_lease_blocks_second_holder(store) -> None:
    assert store.acquire_sync_lease(WORKSPACE_ID, "a", ttl_seconds=600) is True
    assert store.acquire_sync_lease(WORKSPACE_ID, "b", ttl_seconds=600) is False
    assert store.sync_lease_holder(WORKSPACE_ID) == "a"

    store.release_sync_lease(WORKSPACE_ID, "b")
    assert store.sync_lease_holder(WORKSPACE_ID) == "a"
    store.release_sync_lease(WORKSPACE_ID, "a")
    assert store.acquire_sync_lease(WORKSPACE_ID, "b", ttl_seconds=600) is True


def test_last_message_at_and_summary(store) -> None:
    _insert(
        store,
        _message("C1", "1700000001.000000", "a"),
        _message("C1", "1700000005.000000", "b"),
    )
    assert store.refresh_channel_last_message("C1") == iso_from_slack_ts("1700000005.000000")
    assert store.refresh_channel_last_message("G1") is None

    summary = store.archive_summary(WORKSPACE_ID)
    assert summary["counts"] == {"channels": 2, "users": 2, "messages": 2}
    assert summary["stats"]["channels_with_messages"] == 1
    assert "access_token" not in summary["workspace"]
    assert all("password" not in c for c in summary["channels"])
