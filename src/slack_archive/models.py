from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class SyncStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncFrequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MANUAL = "manual"


def utc_now() -> str:
    return to_iso(datetime.now(tz=UTC))


def to_iso(value: datetime) -> str:
    # Fixed width so lexical order in SQLite matches time order.
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def iso_from_slack_ts(ts: str) -> str:
    """Convert a Slack ``"1700000000.123456"`` timestamp into ISO-8601 UTC."""
    seconds = float(ts)
    return to_iso(datetime.fromtimestamp(seconds, tz=UTC))


def message_id(channel_id: str, ts: str) -> str:
    return f"{channel_id}-{ts}"


@dataclass(frozen=True)
class Workspace:
    id: str
    name: str
    domain: str
    access_token: str
    last_sync_at: str | None = None
    auto_sync_enabled: int = 1
    sync_frequency: SyncFrequency = SyncFrequency.DAILY
    created_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        # access_token is deliberately left out of the public projection.
        return {
            "id": self.id,
            "name": self.name,
            "domain": self.domain,
            "last_sync_at": self.last_sync_at,
            "auto_sync_enabled": self.auto_sync_enabled,
            "sync_frequency": str(self.sync_frequency),
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class User:
    id: str
    workspace_id: str
    username: str
    display_name: str
    avatar: str
    is_admin: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "username": self.username,
            "display_name": self.display_name,
            "avatar": self.avatar,
            "is_admin": self.is_admin,
        }


@dataclass(frozen=True)
class Channel:
    id: str
    workspace_id: str
    name: str
    is_private: int
    is_admin_only: int
    password: str | None
    member_count: int
    last_message_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "name": self.name,
            "is_private": self.is_private,
            "is_admin_only": self.is_admin_only,
            "member_count": self.member_count,
            "last_message_at": self.last_message_at,
        }


@dataclass(frozen=True)
class FileMeta:
    id: str
    name: str
    mimetype: str
    url: str
    size: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "mimetype": self.mimetype,
            "url": self.url,
            "size": self.size,
        }


@dataclass(frozen=True)
class Message:
    id: str
    channel_id: str
    ts: str
    user_id: str
    username: str
    text: str
    timestamp: str
    thread_ts: str | None
    files: tuple[FileMeta, ...] = ()
    is_new: int = 0

    def files_json(self) -> str | None:
        if not self.files:
            return None
        return json.dumps([f.to_dict() for f in self.files], ensure_ascii=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "channel_id": self.channel_id,
            "ts": self.ts,
            "user_id": self.user_id,
            "username": self.username,
            "text": self.text,
            "timestamp": self.timestamp,
            "thread_ts": self.thread_ts,
            "files": [f.to_dict() for f in self.files],
            "is_new": self.is_new,
        }


@dataclass(frozen=True)
class SyncLog:
    id: str
    workspace_id: str
    started_at: str
    status: SyncStatus
    completed_at: str | None = None
    new_messages: int = 0
    new_channels: int = 0
    errors: tuple[str, ...] = ()

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> SyncLog:
        raw_errors = row.get("errors")
        errors: tuple[str, ...] = ()
        if raw_errors:
            errors = tuple(str(e) for e in json.loads(str(raw_errors)))
        return cls(
            id=str(row["id"]),
            workspace_id=str(row["workspace_id"]),
            started_at=str(row["started_at"]),
            status=SyncStatus(str(row["status"])),
            completed_at=row.get("completed_at"),
            new_messages=int(row.get("new_messages") or 0),
            new_channels=int(row.get("new_channels") or 0),
            errors=errors,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "status": str(self.status),
            "new_messages": self.new_messages,
            "new_channels": self.new_channels,
            "errors": list(self.errors),
        }
