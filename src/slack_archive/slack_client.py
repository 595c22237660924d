from __future__ import annotations

import json
import logging
import random
import time
from collections.abc import Callable, Iterable, Mapping
from enum import StrEnum
from typing import Any, TypeVar
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from .config import DEFAULT_SLACK_BASE_URL
from .errors import SlackApiError, SlackPayloadError, SlackTransportError
from .payloads import OAuthGrant, SlackChannel, SlackMessage, SlackPage, SlackUser

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SLACK_TRANSIENT_ERRORS = {"ratelimited", "timeout", "internal_error", "service_unavailable"}
NOT_IN_CHANNEL = "not_in_channel"
ALREADY_IN_CHANNEL = "already_in_channel"

OAUTH_AUTHORIZE_URL = "https://slack.com/oauth/v2/authorize"
DEFAULT_BOT_SCOPES = (
    "channels:read",
    "channels:history",
    "channels:join",
    "groups:read",
    "groups:history",
    "users:read",
    "files:read",
    "team:read",
)


class JoinOutcome(StrEnum):
    JOINED = "joined"
    ALREADY_MEMBER = "already_member"


def authorize_url(
    client_id: str,
    redirect_uri: str,
    *,
    scopes: Iterable[str] = DEFAULT_BOT_SCOPES,
    state: str | None = None,
) -> str:
    """Slack's install page for a bot with ``scopes``."""
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": ",".join(s.strip() for s in scopes if s.strip()),
    }
    if state:
        params["state"] = state
    return f"{OAUTH_AUTHORIZE_URL}?{urlencode(params)}"


def _error_body(exc: HTTPError) -> str:
    try:
        return exc.read().decode("utf-8", errors="replace")[:200]
    except (OSError, AttributeError):
        return ""


def _retry_after(exc: HTTPError) -> int:
    raw = exc.headers.get("Retry-After", "1") if exc.headers else "1"
    try:
        return max(0, int(raw))
    except ValueError:
        return 1


class SlackClient:
    """Minimal Slack Web API client for archiving a workspace.

    List calls follow ``response_metadata.next_cursor`` and accumulate every
    page in memory, stopping at ``max_pages`` so a looping cursor cannot spin
    forever. Items that fail validation are logged and dropped; the rest of the
    page is kept. Transient failures (HTTP 429/408/5xx, network errors and the
    ``ratelimited`` family of API errors) are retried with jittered
    exponential backoff up to ``max_retries`` times, or the per-method count in
    ``retry_overrides``; everything else is raised.
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = DEFAULT_SLACK_BASE_URL,
        page_limit: int = 200,
        max_pages: int = 1000,
        page_delay_seconds: float = 1.0,
        max_retries: int = 3,
        retry_overrides: Mapping[str, int] | None = None,
        timeout_seconds: int = 30,
        max_backoff_seconds: int = 30,
    ) -> None:
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.page_limit = page_limit
        self.max_pages = max_pages
        self.page_delay_seconds = page_delay_seconds
        self.max_retries = max_retries
        self.retry_overrides = dict(retry_overrides or {})
        self.timeout_seconds = timeout_seconds
        self.max_backoff_seconds = max_backoff_seconds

    # -- transport --------------------------------------------------------

    def _backoff(self, attempt: int) -> float:
        if self.max_backoff_seconds <= 0:
            return 0.0
        base = 0.5 * (2**attempt)
        # Jitter in [0.5, 1.0] keeps parallel archivers from syncing retries.
        return min(float(self.max_backoff_seconds), base) * (0.5 + 0.5 * random.random())

    def _retry_delay(self, exc: HTTPError, attempt: int) -> float | None:
        if exc.code == 429:
            return float(_retry_after(exc))
        if exc.code == 408 or 500 <= exc.code <= 599:
            return self._backoff(attempt)
        return None

    def _pause(self, method: str, reason: str, attempt: int, retries: int, delay: float) -> None:
        logger.warning("%s %s, retry %d/%d in %.2fs", method, reason, attempt + 1, retries, delay)
        time.sleep(delay)

    def _request_json(self, request: Request, method: str) -> dict[str, Any]:
        retries = max(0, self.retry_overrides.get(method, self.max_retries))
        for attempt in range(retries + 1):
            final = attempt == retries
            try:
                with urlopen(request, timeout=self.timeout_seconds) as response:
                    body = response.read().decode("utf-8")
            except HTTPError as exc:
                delay = self._retry_delay(exc, attempt)
                if delay is None or final:
                    raise SlackTransportError(
                        f"Slack HTTP {exc.code} for {method}: {_error_body(exc) or exc.reason}"
                    ) from exc
                self._pause(method, f"answered HTTP {exc.code}", attempt, retries, delay)
                continue
            except URLError as exc:
                if final:
                    raise SlackTransportError(
                        f"Slack request {method} failed after {retries + 1} attempts: {exc.reason}"
                    ) from exc
                delay = self._backoff(attempt)
                self._pause(method, f"unreachable ({exc.reason})", attempt, retries, delay)
                continue

            try:
                parsed = json.loads(body)
            except json.JSONDecodeError:
                raise SlackPayloadError(f"{method} returned non-JSON body: {body[:200]}") from None
            if not isinstance(parsed, dict):
                raise SlackPayloadError(f"Unexpected {method} response: {body[:200]}")

            error = str(parsed.get("error") or "")
            if parsed.get("ok") is False and error in _SLACK_TRANSIENT_ERRORS and not final:
                self._pause(method, f"returned {error}", attempt, retries, self._backoff(attempt))
                continue
            return parsed
        raise SlackTransportError(f"{method}: retry loop ended without a response")

    def _checked(self, method: str, request: Request) -> dict[str, Any]:
        response = self._request_json(request, method)
        if not response.get("ok"):
            raise SlackApiError(method, str(response.get("error") or "unknown_error"), response)
        return response

    def call(self, method: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        """GET ``method`` and return the response, raising on ``ok: false``."""
        query = urlencode(params or {})
        url = f"{self.base_url}/{method}"
        request = Request(f"{url}?{query}" if query else url, method="GET")
        request.add_header("Authorization", f"Bearer {self.token}")
        return self._checked(method, request)

    def post(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        body = json.dumps(payload).encode("utf-8")
        request = Request(f"{self.base_url}/{method}", data=body, method="POST")
        request.add_header("Authorization", f"Bearer {self.token}")
        request.add_header("Content-Type", "application/json; charset=utf-8")
        return self._checked(method, request)

    def oauth_access(
        self, code: str, *, client_id: str, client_secret: str, redirect_uri: str
    ) -> OAuthGrant:
        """Exchange an install ``code`` for a bot token. Does not use ``self.token``."""
        form = urlencode(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            }
        ).encode("utf-8")
        request = Request(f"{self.base_url}/oauth.v2.access", data=form, method="POST")
        request.add_header("Content-Type", "application/x-www-form-urlencoded")
        return OAuthGrant.from_payload(self._checked("oauth.v2.access", request))

    # -- pagination -------------------------------------------------------

    def _paginate(
        self,
        method: str,
        key: str,
        params: dict[str, str],
        parse: Callable[[object], T],
        *,
        page_delay_seconds: float = 0.0,
        on_not_in_channel: Callable[[], None] | None = None,
    ) -> list[T]:
        cursor: str | None = None
        items: list[T] = []
        pages = 0
        skipped = 0
        retried_after_join = False
        while True:
            page_params = {**params, "limit": str(self.page_limit)}
            if cursor:
                page_params["cursor"] = cursor
            try:
                response = self.call(method, page_params)
            except SlackApiError as exc:
                if (
                    exc.error != NOT_IN_CHANNEL
                    or on_not_in_channel is None
                    or retried_after_join
                ):
                    raise
                retried_after_join = True
                on_not_in_channel()
                response = self.call(method, page_params)

            page = SlackPage.from_response(response, key)
            for raw in page.items:
                try:
                    items.append(parse(raw))
                except SlackPayloadError as exc:
                    skipped += 1
                    logger.warning("%s: skipping malformed %s item: %s", method, key, exc)
            pages += 1
            cursor = page.next_cursor
            if not cursor:
                break
            if pages >= self.max_pages:
                logger.warning(
                    "%s stopped after %d pages (cursor still set); results may be truncated",
                    method,
                    pages,
                )
                break
            if page_delay_seconds > 0:
                time.sleep(page_delay_seconds)
        if skipped:
            logger.warning("%s: %d malformed %s item(s) skipped", method, skipped, key)
        return items

    # -- operations -------------------------------------------------------

    def list_channels(self) -> list[SlackChannel]:
        return self._paginate(
            "conversations.list",
            "channels",
            {"types": "public_channel,private_channel", "exclude_archived": "false"},
            SlackChannel.from_payload,
        )

    def list_users(self) -> list[SlackUser]:
        return self._paginate("users.list", "members", {}, SlackUser.from_payload)

    def list_all_messages(self, channel_id: str) -> list[SlackMessage]:
        """Full history of ``channel_id``, oldest first.

        A ``not_in_channel`` answer joins the channel and retries that page once.
        """

        def _join() -> None:
            logger.info("Not in channel %s, joining before retrying history", channel_id)
            self.join_channel(channel_id)

        messages = self._paginate(
            "conversations.history",
            "messages",
            {"channel": channel_id, "oldest": "0"},
            SlackMessage.from_payload,
            page_delay_seconds=self.page_delay_seconds,
            on_not_in_channel=_join,
        )
        messages.sort(key=lambda m: m.sort_key)
        return messages

    def join_channel(self, channel_id: str) -> JoinOutcome:
        try:
            response = self.post("conversations.join", {"channel": channel_id})
        except SlackApiError as exc:
            if exc.error == ALREADY_IN_CHANNEL:
                return JoinOutcome.ALREADY_MEMBER
            raise
        warning = str(response.get("warning") or "")
        if ALREADY_IN_CHANNEL in warning.split(","):
            return JoinOutcome.ALREADY_MEMBER
        return JoinOutcome.JOINED

    def channel_info(self, channel_id: str) -> SlackChannel:
        response = self.call("conversations.info", {"channel": channel_id})
        return SlackChannel.from_payload(response.get("channel"))

    def team_info(self) -> dict[str, str]:
        response = self.call("team.info")
        team = response.get("team")
        if not isinstance(team, dict):
            raise SlackPayloadError("team.info response missing team object")
        domain = str(team.get("domain") or "")
        return {
            "id": str(team.get("id") or ""),
            "name": str(team.get("name") or ""),
            "domain": f"{domain}.slack.com" if domain else "",
        }
