import pytest

from slack_archive.errors import SlackPayloadError
from slack_archive.payloads import SlackMessage, SlackPage, SlackUser


def test_bots_deleted_and_slackbot_are_not_importable() -> None:
    assert SlackUser.from_payload({"id": "U1", "name": "alice"}).is_importable
    assert not SlackUser.from_payload({"id": "B1", "name": "ci", "is_bot": True}).is_importable
    assert not SlackUser.from_payload({"id": "U2", "name": "old", "deleted": True}).is_importable
    assert not SlackUser.from_payload({"id": "USLACKBOT", "name": "slackbot"}).is_importable


def test_user_avatar_comes_from_profile() -> None:
    parsed = SlackUser.from_payload(
        {"id": "U1", "name": "alice", "profile": {"image_72": "https://img/a.png"}}
    )
    assert parsed.avatar == "https://img/a.png"


def test_message_files_are_parsed() -> None:
    parsed = SlackMessage.from_payload(
        {
            "ts": "1700000000.000100",
            "user": "U1",
            "files": [{"id": "F1", "name": "a.txt", "mimetype": "text/plain", "size": 3}],
        }
    )
    assert parsed.is_importable
    assert parsed.files[0].name == "a.txt"
    assert parsed.files[0].size == 3


def test_message_without_user_or_content_is_skipped() -> None:
    assert not SlackMessage.from_payload({"ts": "1.0", "text": "joined"}).is_importable
    assert not SlackMessage.from_payload({"ts": "1.0", "user": "U1"}).is_importable


@pytest.mark.parametrize(
    "payload",
    [
        "not an object",
        {"user": "U1", "text": "missing ts"},
        {"ts": "abc", "user": "U1"},
        {"ts": "inf", "user": "U1", "text": "overflow"},
        {"ts": "nan", "user": "U1", "text": "not a number"},
        {"ts": "1.0", "user": "U1", "files": "nope"},
    ],
)
def test_malformed_messages_raise(payload) -> None:
    with pytest.raises(SlackPayloadError):
        SlackMessage.from_payload(payload)


def test_page_reads_cursor() -> None:
    page = SlackPage.from_response(
        {"ok": True, "members": [{"id": "U1"}], "response_metadata": {"next_cursor": "abc"}},
        "members",
    )
    assert page.next_cursor == "abc"
    assert SlackPage.from_response({"ok": True}, "members").next_cursor is None
