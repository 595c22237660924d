from __future__ import annotations

import logging
import secrets
import sqlite3
import uuid
from collections.abc import Callable, Iterable
from typing import Protocol

from .errors import SlackError, SyncInProgressError, WorkspaceNotFoundError
from .models import Channel, Message, User, Workspace, iso_from_slack_ts, message_id, utc_now
from .payloads import OAuthGrant, SlackChannel, SlackMessage, SlackUser
from .slack_client import JoinOutcome
from .storage import SQLiteStore

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_CHANNEL_NAMES = frozenset({"admin-only"})
DEFAULT_LEASE_TTL_SECONDS = 6 * 60 * 60


class WorkspaceClient(Protocol):
    def list_users(self) -> list[SlackUser]: ...

    def list_channels(self) -> list[SlackChannel]: ...

    def list_all_messages(self, channel_id: str) -> list[SlackMessage]: ...

    def join_channel(self, channel_id: str) -> JoinOutcome: ...


def generate_channel_password() -> str:
    return secrets.token_hex(8)


class SyncOrchestrator:
    """Run full import passes of one Slack workspace into a store.

    Each pass is recorded in ``sync_logs``. Users and channels are upserted,
    messages are insert-if-absent, so re-running a pass never duplicates or
    rewrites archived messages. Only one pass per workspace runs at a time;
    a second caller gets :class:`SyncInProgressError`.
    """

    def __init__(
        self,
        store: SQLiteStore,
        client: WorkspaceClient,
        *,
        admin_channel_names: Iterable[str] = DEFAULT_ADMIN_CHANNEL_NAMES,
        rotate_passwords: bool = False,
        lease_ttl_seconds: int = DEFAULT_LEASE_TTL_SECONDS,
        password_factory: Callable[[], str] = generate_channel_password,
    ) -> None:
        self.store = store
        self.client = client
        self.admin_channel_names = frozenset(admin_channel_names)
        self.rotate_passwords = rotate_passwords
        self.lease_ttl_seconds = lease_ttl_seconds
        self.password_factory = password_factory

    def import_workspace_data(self, workspace_id: str) -> str:
        workspace = self.store.get_workspace(workspace_id)
        if not workspace:
            raise WorkspaceNotFoundError(workspace_id)

        sync_id = uuid.uuid4().hex
        if not self.store.acquire_sync_lease(
            workspace_id, sync_id, ttl_seconds=self.lease_ttl_seconds
        ):
            holder = self.store.sync_lease_holder(workspace_id) or "unknown"
            raise SyncInProgressError(workspace_id, holder)

        try:
            self.store.create_sync_log(sync_id, workspace_id, utc_now())
            logger.info("Sync %s started for workspace %s", sync_id, workspace_id)
            try:
                usernames = self._import_users(workspace_id)
                new_channels, new_messages = self._import_channels(
                    workspace_id, usernames, mark_new=bool(workspace.get("last_sync_at"))
                )
            except Exception as exc:
                logger.exception("Sync %s failed", sync_id)
                self.store.fail_sync_log(sync_id, [str(exc) or type(exc).__name__])
                raise

            self.store.complete_sync_log(
                sync_id, new_channels=new_channels, new_messages=new_messages
            )
            self.store.mark_workspace_synced(workspace_id)
            logger.info(
                "Sync %s completed: %d new channels, %d new messages",
                sync_id,
                new_channels,
                new_messages,
            )
        finally:
            self.store.release_sync_lease(workspace_id, sync_id)
        return sync_id

    def _import_users(self, workspace_id: str) -> dict[str, str]:
        users = [u for u in self.client.list_users() if u.is_importable]
        self.store.upsert_users(
            User(
                id=u.id,
                workspace_id=workspace_id,
                username=u.name,
                display_name=u.real_name or u.name,
                avatar=u.avatar,
                is_admin=int(u.is_admin),
            )
            for u in users
        )
        logger.info("Imported %d users", len(users))
        return {u.id: u.name for u in users}

    def _import_channels(
        self, workspace_id: str, usernames: dict[str, str], *, mark_new: bool
    ) -> tuple[int, int]:
        new_channels = 0
        new_messages = 0
        for remote in self.client.list_channels():
            readable = remote.is_member
            if not remote.is_private and not remote.is_member and not remote.is_archived:
                outcome = self.client.join_channel(remote.id)
                logger.info("Join #%s before import: %s", remote.name, outcome)
                readable = True

            if self._upsert_channel(workspace_id, remote):
                new_channels += 1

            if not readable:
                logger.warning(
                    "Skipping history of #%s (%s): not a member and cannot join",
                    remote.name,
                    remote.id,
                )
                continue
            new_messages += self._import_messages(remote, usernames, mark_new=mark_new)
        return new_channels, new_messages

    def _upsert_channel(self, workspace_id: str, remote: SlackChannel) -> bool:
        existing = self.store.get_channel(remote.id)
        password: str | None = None
        if remote.is_private:
            current = existing.get("password") if existing else None
            if current and existing and existing.get("is_private") and not self.rotate_passwords:
                password = str(current)
            else:
                password = self.password_factory()
        self.store.upsert_channel(
            Channel(
                id=remote.id,
                workspace_id=workspace_id,
                name=remote.name,
                is_private=int(remote.is_private),
                is_admin_only=int(remote.name in self.admin_channel_names),
                password=password,
                member_count=remote.num_members,
            )
        )
        return existing is None

    def _import_messages(
        self, remote: SlackChannel, usernames: dict[str, str], *, mark_new: bool
    ) -> int:
        history = self.client.list_all_messages(remote.id)
        logger.info("Found %d messages in #%s", len(history), remote.name)
        inserted = 0
        for item in history:
            if not item.is_importable:
                continue
            try:
                if self.store.insert_message_if_absent(
                    _to_message(remote.id, item, usernames, mark_new=mark_new)
                ):
                    inserted += 1
            except (sqlite3.Error, ValueError, OverflowError) as exc:
                logger.warning(
                    "Skipping message %s in #%s: %s", item.ts, remote.name, exc
                )
        self.store.commit()
        self.store.refresh_channel_last_message(remote.id)
        return inserted


def _to_message(
    channel_id: str, item: SlackMessage, usernames: dict[str, str], *, mark_new: bool
) -> Message:
    user_id = str(item.user)
    return Message(
        id=message_id(channel_id, item.ts),
        channel_id=channel_id,
        ts=item.ts,
        user_id=user_id,
        username=usernames.get(user_id) or item.username or "unknown",
        text=item.text,
        timestamp=iso_from_slack_ts(item.ts),
        thread_ts=item.thread_ts,
        files=item.files,
        is_new=int(mark_new),
    )


class TeamClient(Protocol):
    def team_info(self) -> dict[str, str]: ...


class BootstrapClient(WorkspaceClient, TeamClient, Protocol):
    pass


def _describe_workspace(
    client: TeamClient, workspace_id: str, access_token: str, *, name: str | None = None
) -> Workspace:
    try:
        info = client.team_info()
    except SlackError as exc:
        # team.info needs the team:read scope, which archive bots often lack.
        logger.info("team.info unavailable (%s); using placeholder workspace name", exc)
        info = {}
    return Workspace(
        id=workspace_id,
        name=name or info.get("name") or f"Workspace {workspace_id}",
        domain=info.get("domain") or "workspace.slack.com",
        access_token=access_token,
    )


def initialize_workspace(
    store: SQLiteStore,
    client: BootstrapClient,
    workspace_id: str,
    access_token: str,
    **orchestrator_options: object,
) -> str | None:
    """Create the configured workspace and run its first sync.

    Returns the sync id, or ``None`` when the workspace was already synced
    (only the stored token is refreshed in that case).
    """
    existing = store.get_workspace(workspace_id)
    if existing and existing.get("last_sync_at"):
        logger.info("Workspace %s already archived; refreshing token only", workspace_id)
        store.update_workspace_token(workspace_id, access_token)
        return None

    store.upsert_workspace(_describe_workspace(client, workspace_id, access_token))
    orchestrator = SyncOrchestrator(store, client, **orchestrator_options)  # type: ignore[arg-type]
    return orchestrator.import_workspace_data(workspace_id)


def install_workspace(store: SQLiteStore, grant: OAuthGrant, client: TeamClient) -> Workspace:
    """Store the workspace behind an OAuth grant, keeping its sync history.

    ``client`` should already carry ``grant.access_token``. No sync is run.
    """
    workspace = _describe_workspace(
        client, grant.team_id, grant.access_token, name=grant.team_name
    )
    store.upsert_workspace(workspace)
    logger.info("Installed workspace %s (%s)", workspace.name, workspace.id)
    return workspace
