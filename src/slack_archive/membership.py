from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from .errors import SlackError
from .payloads import SlackChannel
from .slack_client import JoinOutcome
from .storage import SQLiteStore

logger = logging.getLogger(__name__)


class MembershipClient(Protocol):
    def join_channel(self, channel_id: str) -> JoinOutcome: ...

    def channel_info(self, channel_id: str) -> SlackChannel: ...


@dataclass
class JoinStats:
    joined: int = 0
    already_member: int = 0
    failed: int = 0
    failures: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "joined": self.joined,
            "already_member": self.already_member,
            "failed": self.failed,
            "failures": list(self.failures),
        }


@dataclass
class MembershipStats:
    member: int = 0
    not_member: int = 0
    error: int = 0
    public_not_member: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "member": self.member,
            "not_member": self.not_member,
            "error": self.error,
            "public_not_member": list(self.public_not_member),
        }


class MembershipReconciler:
    """Report on (and fix) which stored channels the token can read.

    Only the remote side is touched; stored rows are never written.
    """

    def __init__(
        self,
        store: SQLiteStore,
        client: MembershipClient,
        workspace_id: str,
        *,
        join_delay_seconds: float = 0.5,
    ) -> None:
        self.store = store
        self.client = client
        self.workspace_id = workspace_id
        self.join_delay_seconds = join_delay_seconds

    def join_all_public_channels(self) -> JoinStats:
        stats = JoinStats()
        channels = self.store.list_channels(self.workspace_id, public_only=True)
        logger.info("Joining %d public channels", len(channels))
        for index, channel in enumerate(channels):
            channel_id = str(channel["id"])
            name = str(channel["name"])
            if index and self.join_delay_seconds > 0:
                time.sleep(self.join_delay_seconds)
            try:
                outcome = self.client.join_channel(channel_id)
            except SlackError as exc:
                stats.failed += 1
                stats.failures.append({"channel_id": channel_id, "name": name, "error": str(exc)})
                logger.warning("Failed to join #%s (%s): %s", name, channel_id, exc)
                continue
            if outcome is JoinOutcome.ALREADY_MEMBER:
                stats.already_member += 1
                logger.debug("Already in #%s", name)
            else:
                stats.joined += 1
                logger.info("Joined #%s", name)
        logger.info(
            "Join finished: joined=%d already=%d failed=%d",
            stats.joined,
            stats.already_member,
            stats.failed,
        )
        return stats

    def check_membership(self) -> MembershipStats:
        stats = MembershipStats()
        for channel in self.store.list_channels(self.workspace_id):
            channel_id = str(channel["id"])
            name = str(channel["name"])
            try:
                info = self.client.channel_info(channel_id)
            except SlackError as exc:
                stats.error += 1
                logger.warning("Error checking #%s (%s): %s", name, channel_id, exc)
                continue
            if info.is_member:
                stats.member += 1
                continue
            stats.not_member += 1
            if not channel["is_private"]:
                stats.public_not_member.append({"channel_id": channel_id, "name": name})
        return stats
