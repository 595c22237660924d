from __future__ import annotations


class ArchiveError(Exception):
    """Base class for every error raised by slack-archive."""


class ConfigError(ArchiveError):
    pass


class WorkspaceNotFoundError(ArchiveError):
    def __init__(self, workspace_id: str) -> None:
        super().__init__(f"workspace not found: {workspace_id}")
        self.workspace_id = workspace_id


class SyncInProgressError(ArchiveError):
    def __init__(self, workspace_id: str, holder: str) -> None:
        super().__init__(f"sync already running for workspace {workspace_id} (held by {holder})")
        self.workspace_id = workspace_id
        self.holder = holder


class SlackError(ArchiveError):
    pass


class SlackApiError(SlackError):
    """Slack answered with ``ok: false``."""

    def __init__(self, method: str, error: str, response: dict[str, object] | None = None) -> None:
        super().__init__(f"{method} failed: {error}")
        self.method = method
        self.error = error
        self.response = response or {}


class SlackTransportError(SlackError):
    """Network or HTTP failure that survived the retry budget."""


class SlackPayloadError(SlackError):
    """A Slack response did not have the shape we expect."""


class AuthError(ArchiveError):
    def __init__(self, message: str, *, status_code: int = 401) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
