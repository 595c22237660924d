"""Typed views over Slack Web API payloads.

Every record is built through ``from_payload`` so malformed responses surface
as :class:`SlackPayloadError` at the client boundary instead of as ``KeyError``
deep inside the sync.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from .errors import SlackPayloadError
from .models import FileMeta


def _require_str(payload: dict[str, Any], key: str, kind: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise SlackPayloadError(f"{kind} payload missing string field {key!r}")
    return value


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise SlackPayloadError(f"field {key!r} should be a string, got {type(value).__name__}")
    return value


def _as_dict(payload: object, kind: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise SlackPayloadError(f"{kind} payload should be an object, got {type(payload).__name__}")
    return payload


@dataclass(frozen=True)
class SlackChannel:
    id: str
    name: str
    is_private: bool
    is_member: bool
    num_members: int
    is_archived: bool = False

    @classmethod
    def from_payload(cls, payload: object) -> SlackChannel:
        data = _as_dict(payload, "channel")
        num_members = data.get("num_members") or 0
        if not isinstance(num_members, int):
            raise SlackPayloadError("channel num_members should be an integer")
        return cls(
            id=_require_str(data, "id", "channel"),
            name=_require_str(data, "name", "channel"),
            is_private=bool(data.get("is_private", False)),
            is_member=bool(data.get("is_member", False)),
            num_members=num_members,
            is_archived=bool(data.get("is_archived", False)),
        )


@dataclass(frozen=True)
class SlackUser:
    id: str
    name: str
    real_name: str | None
    avatar: str
    is_admin: bool
    is_bot: bool
    deleted: bool

    @property
    def is_importable(self) -> bool:
        # Slackbot reports is_bot=false but is still an automated account.
        return not self.deleted and not self.is_bot and self.id != "USLACKBOT"

    @classmethod
    def from_payload(cls, payload: object) -> SlackUser:
        data = _as_dict(payload, "user")
        profile = data.get("profile") or {}
        if not isinstance(profile, dict):
            raise SlackPayloadError("user profile should be an object")
        avatar = profile.get("image_72") or ""
        return cls(
            id=_require_str(data, "id", "user"),
            name=_require_str(data, "name", "user"),
            real_name=_optional_str(data, "real_name"),
            avatar=str(avatar),
            is_admin=bool(data.get("is_admin", False)),
            is_bot=bool(data.get("is_bot", False)),
            deleted=bool(data.get("deleted", False)),
        )


@dataclass(frozen=True)
class SlackMessage:
    ts: str
    user: str | None
    username: str | None
    text: str
    thread_ts: str | None
    subtype: str | None
    files: tuple[FileMeta, ...] = ()

    @property
    def sort_key(self) -> float:
        return float(self.ts)

    @property
    def is_importable(self) -> bool:
        return bool(self.user) and (bool(self.text) or bool(self.files))

    @classmethod
    def from_payload(cls, payload: object) -> SlackMessage:
        data = _as_dict(payload, "message")
        ts = _require_str(data, "ts", "message")
        try:
            seconds = float(ts)
        except ValueError:
            raise SlackPayloadError(f"message ts is not numeric: {ts!r}") from None
        if not math.isfinite(seconds):
            raise SlackPayloadError(f"message ts is not finite: {ts!r}")
        text = data.get("text") or ""
        if not isinstance(text, str):
            raise SlackPayloadError("message text should be a string")
        raw_files = data.get("files") or []
        if not isinstance(raw_files, list):
            raise SlackPayloadError("message files should be a list")
        files = tuple(_file_meta(item) for item in raw_files)
        return cls(
            ts=ts,
            user=_optional_str(data, "user"),
            username=_optional_str(data, "username"),
            text=text,
            thread_ts=_optional_str(data, "thread_ts"),
            subtype=_optional_str(data, "subtype"),
            files=files,
        )


def _file_meta(payload: object) -> FileMeta:
    data = _as_dict(payload, "file")
    size = data.get("size") or 0
    return FileMeta(
        id=_require_str(data, "id", "file"),
        name=str(data.get("name") or data.get("title") or ""),
        mimetype=str(data.get("mimetype") or ""),
        url=str(data.get("url_private") or data.get("permalink") or ""),
        size=int(size) if isinstance(size, int) else 0,
    )


@dataclass(frozen=True)
class SlackPage:
    """One page of a cursor-paginated list call."""

    items: list[object] = field(default_factory=list)
    next_cursor: str | None = None

    @classmethod
    def from_response(cls, response: dict[str, Any], key: str) -> SlackPage:
        batch = response.get(key)
        if batch is None:
            batch = []
        if not isinstance(batch, list):
            raise SlackPayloadError(f"response field {key!r} should be a list")
        cursor = None
        metadata = response.get("response_metadata")
        if isinstance(metadata, dict):
            cursor = str(metadata.get("next_cursor") or "") or None
        return cls(items=list(batch), next_cursor=cursor)


@dataclass(frozen=True)
class OAuthGrant:
    """The bot token and team returned by ``oauth.v2.access``."""

    access_token: str
    team_id: str
    team_name: str | None = None
    bot_user_id: str | None = None

    @classmethod
    def from_payload(cls, payload: object) -> OAuthGrant:
        data = _as_dict(payload, "oauth")
        team = _as_dict(data.get("team"), "oauth team")
        return cls(
            access_token=_require_str(data, "access_token", "oauth"),
            team_id=_require_str(team, "id", "oauth team"),
            team_name=_optional_str(team, "name"),
            bot_user_id=_optional_str(data, "bot_user_id"),
        )
