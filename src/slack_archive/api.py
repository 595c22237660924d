from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import auth
from .config import Settings
from .errors import AuthError, ConfigError, SlackError, SyncInProgressError
from .membership import MembershipReconciler
from .models import to_iso
from .slack_client import SlackClient, authorize_url
from .storage import SQLiteStore
from .sync import SyncOrchestrator, install_workspace

logger = logging.getLogger(__name__)

app = FastAPI(title="Slack Archive")


class ChannelAuthRequest(BaseModel):
    channel_id: str
    password: str | None = None


class AdminAuthRequest(BaseModel):
    password: str | None = None


class OAuthCallbackRequest(BaseModel):
    code: str | None = None


@app.exception_handler(ValueError)
async def _bad_request(request: Request, exc: ValueError) -> JSONResponse:
    logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok", "timestamp": datetime.now(tz=UTC).isoformat()}


def _settings() -> Settings:
    try:
        return Settings.from_env()
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        raise HTTPException(status_code=503, detail="server misconfigured") from None


def _store(settings: Settings, *, writable: bool = False) -> SQLiteStore:
    if writable:
        return SQLiteStore(settings.db_path)
    try:
        return SQLiteStore(settings.db_path, read_only=True)
    except sqlite3.OperationalError as exc:
        logger.error("Cannot open archive %s: %s", settings.db_path, exc)
        raise HTTPException(status_code=503, detail="archive unavailable") from None


def _secret(settings: Settings) -> str:
    try:
        return settings.require_jwt_secret()
    except ConfigError as exc:
        logger.error("Token signing unavailable: %s", exc)
        raise HTTPException(status_code=503, detail="authentication unavailable") from None


def _slack_client(token: str, settings: Settings) -> SlackClient:
    return SlackClient(token, base_url=settings.slack_base_url)


def _claims(authorization: str | None, settings: Settings) -> dict[str, Any] | None:
    if not authorization or not settings.jwt_secret:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return auth.decode_token(token.strip(), settings.jwt_secret)


def _require_admin(claims: dict[str, Any] | None) -> None:
    if not auth.is_admin(claims):
        raise HTTPException(status_code=401, detail="Admin authentication required")


def _require_channel(store: SQLiteStore, channel_id: str) -> dict[str, object]:
    channel = store.get_channel(channel_id)
    if not channel:
        raise HTTPException(status_code=404, detail="Channel not found")
    return channel


def _require_channel_access(channel: dict[str, object], claims: dict[str, Any] | None) -> None:
    if auth.can_read_channel(channel, claims):
        return
    if channel["is_admin_only"]:
        raise HTTPException(status_code=403, detail="Admin authentication required")
    raise HTTPException(status_code=401, detail="Channel password required")


def _require_workspace(store: SQLiteStore, workspace_id: str) -> dict[str, object]:
    workspace = store.get_workspace(workspace_id)
    if not workspace:
        raise HTTPException(status_code=404, detail="Workspace not found")
    return workspace


def _workspace_token(store: SQLiteStore, workspace_id: str, settings: Settings) -> str:
    if settings.slack_configured and settings.slack_workspace_id == workspace_id:
        return str(settings.slack_token)
    token = store.get_workspace_token(workspace_id)
    if not token:
        raise HTTPException(status_code=503, detail="No Slack token configured")
    return token


def _date_bound(value: str | None, *, end: bool) -> str | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Invalid date: {value}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    if end:
        # Store filters with "<"; make the upper bound inclusive.
        parsed += timedelta(days=1) if len(value) == 10 else timedelta(microseconds=1)
    return to_iso(parsed)


def _pagination(page: int, limit: int, total: int, returned: int) -> dict[str, object]:
    offset = (page - 1) * limit
    return {"page": page, "limit": limit, "total": total, "has_more": offset + returned < total}


@app.get("/workspaces")
def list_workspaces() -> list[dict[str, object]]:
    store = _store(_settings())
    try:
        return store.list_workspaces()
    finally:
        store.close()


@app.get("/workspaces/{workspace_id}/channels")
def list_channels(workspace_id: str) -> list[dict[str, object]]:
    store = _store(_settings())
    try:
        return store.list_channels(workspace_id)
    finally:
        store.close()


@app.get("/workspaces/{workspace_id}/users")
def list_users(workspace_id: str) -> list[dict[str, object]]:
    store = _store(_settings())
    try:
        return store.list_users(workspace_id)
    finally:
        store.close()


@app.get("/workspaces/{workspace_id}/archive")
def archive_summary(workspace_id: str) -> dict[str, object]:
    store = _store(_settings())
    try:
        _require_workspace(store, workspace_id)
        return store.archive_summary(workspace_id)
    finally:
        store.close()


@app.get("/channels/{channel_id}/messages")
def list_messages(
    channel_id: str,
    page: int = Query(1, ge=1, description="1 is the newest page"),
    limit: int = Query(50, ge=1, le=500),
    authorization: str | None = Header(None),
) -> dict[str, object]:
    settings = _settings()
    store = _store(settings)
    try:
        channel = _require_channel(store, channel_id)
        _require_channel_access(channel, _claims(authorization, settings))
        total = store.count_messages(channel_id=channel_id)
        rows = store.list_recent_messages(channel_id, limit=limit, offset=(page - 1) * limit)
        rows.reverse()
        return {"messages": rows, "pagination": _pagination(page, limit, total, len(rows))}
    finally:
        store.close()


@app.get("/channels/{channel_id}/threads/{thread_ts}")
def list_thread(
    channel_id: str,
    thread_ts: str,
    authorization: str | None = Header(None),
) -> list[dict[str, object]]:
    settings = _settings()
    store = _store(settings)
    try:
        channel = _require_channel(store, channel_id)
        _require_channel_access(channel, _claims(authorization, settings))
        return store.list_thread_replies(channel_id, thread_ts)
    finally:
        store.close()


@app.get("/workspaces/{workspace_id}/search")
def search(
    workspace_id: str,
    q: str = Query("", description="Text to search for (min 2 characters)"),
    channel_id: str | None = Query(None),
    user_id: str | None = Query(None),
    from_date: str | None = Query(None, description="ISO date or datetime, inclusive"),
    to_date: str | None = Query(None, description="ISO date or datetime, inclusive"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    authorization: str | None = Header(None),
) -> dict[str, object]:
    query = q.strip()
    if len(query) < 2:
        raise HTTPException(status_code=400, detail="Search query must be at least 2 characters")
    settings = _settings()
    claims = _claims(authorization, settings)
    store = _store(settings)
    try:
        if channel_id:
            _require_channel_access(_require_channel(store, channel_id), claims)
        private_ids: list[str] = []
        if claims and claims.get("type") == auth.TOKEN_TYPE_CHANNEL:
            private_ids.append(str(claims.get("channel_id")))
        rows, total = store.search_messages(
            workspace_id,
            query,
            limit=limit,
            offset=(page - 1) * limit,
            channel_id=channel_id,
            user_id=user_id,
            from_ts=_date_bound(from_date, end=False),
            to_ts=_date_bound(to_date, end=True),
            include_private=auth.is_admin(claims),
            private_channel_ids=private_ids,
        )
        return {"messages": rows, "pagination": _pagination(page, limit, total, len(rows))}
    finally:
        store.close()


@app.post("/auth/channel")
def authenticate_channel(body: ChannelAuthRequest) -> dict[str, object]:
    settings = _settings()
    store = _store(settings)
    try:
        token = auth.authenticate_channel(
            store,
            body.channel_id,
            body.password,
            secret=_secret(settings),
            ttl_hours=settings.token_ttl_hours,
        )
    except AuthError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from None
    finally:
        store.close()
    if token is None:
        return {"success": True, "message": "Public channel access granted"}
    return {"success": True, "token": token, "message": "Channel access granted"}


@app.post("/auth/admin")
def authenticate_admin(body: AdminAuthRequest) -> dict[str, object]:
    settings = _settings()
    try:
        token = auth.authenticate_admin(
            body.password,
            settings.admin_password,
            secret=_secret(settings),
            ttl_hours=settings.token_ttl_hours,
        )
    except AuthError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from None
    return {"success": True, "token": token, "message": "Admin access granted"}


@app.post("/workspaces/{workspace_id}/join-channels")
def join_channels(
    workspace_id: str,
    authorization: str | None = Header(None),
) -> dict[str, object]:
    settings = _settings()
    _require_admin(_claims(authorization, settings))
    store = _store(settings)
    try:
        _require_workspace(store, workspace_id)
        client = _slack_client(_workspace_token(store, workspace_id, settings), settings)
        stats = MembershipReconciler(store, client, workspace_id).join_all_public_channels()
    finally:
        store.close()
    return {
        "success": True,
        "message": (
            f"Joined {stats.joined} channels, already in {stats.already_member}, "
            f"failed {stats.failed}"
        ),
        "stats": stats.to_dict(),
    }


@app.get("/workspaces/{workspace_id}/channel-membership")
def channel_membership(
    workspace_id: str,
    authorization: str | None = Header(None),
) -> dict[str, object]:
    settings = _settings()
    _require_admin(_claims(authorization, settings))
    store = _store(settings)
    try:
        _require_workspace(store, workspace_id)
        client = _slack_client(_workspace_token(store, workspace_id, settings), settings)
        stats = MembershipReconciler(store, client, workspace_id).check_membership()
    finally:
        store.close()
    return {
        "success": True,
        "message": (
            f"Member of {stats.member} channels, not member of {stats.not_member}, "
            f"{stats.error} errors"
        ),
        "stats": stats.to_dict(),
    }


@app.post("/workspaces/{workspace_id}/sync")
def sync_workspace(
    workspace_id: str,
    authorization: str | None = Header(None),
) -> dict[str, object]:
    settings = _settings()
    _require_admin(_claims(authorization, settings))
    store = _store(settings, writable=True)
    try:
        _require_workspace(store, workspace_id)
        client = _slack_client(_workspace_token(store, workspace_id, settings), settings)
        try:
            sync_id = SyncOrchestrator(store, client).import_workspace_data(workspace_id)
        except SyncInProgressError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from None
        except SlackError as exc:
            logger.error("Sync of %s failed: %s", workspace_id, exc)
            raise HTTPException(status_code=502, detail="Failed to sync Slack data") from None
        log = store.get_sync_log(sync_id)
    finally:
        store.close()
    return {"success": True, "sync_id": sync_id, "sync": log.to_dict() if log else None}


@app.get("/workspaces/{workspace_id}/sync/status")
def sync_status(workspace_id: str) -> dict[str, object]:
    store = _store(_settings())
    try:
        latest = store.latest_sync_log(workspace_id)
    finally:
        store.close()
    return latest.to_dict() if latest else {"status": "none"}


@app.get("/workspaces/{workspace_id}/sync/logs")
def sync_logs(
    workspace_id: str,
    limit: int = Query(20, ge=1, le=200),
) -> list[dict[str, object]]:
    store = _store(_settings())
    try:
        return [log.to_dict() for log in store.list_sync_logs(workspace_id, limit=limit)]
    finally:
        store.close()


@app.get("/slack/auth")
def slack_auth_url(state: str | None = Query(None)) -> dict[str, str]:
    settings = _settings()
    try:
        client_id, _, redirect_uri = settings.require_oauth()
    except ConfigError as exc:
        logger.error("Slack install unavailable: %s", exc)
        raise HTTPException(status_code=503, detail="Slack app not configured") from None
    return {"auth_url": authorize_url(client_id, redirect_uri, state=state)}


@app.post("/slack/callback")
def slack_callback(body: OAuthCallbackRequest) -> dict[str, object]:
    if not body.code:
        raise HTTPException(status_code=400, detail="Authorization code required")
    settings = _settings()
    try:
        client_id, client_secret, redirect_uri = settings.require_oauth()
    except ConfigError as exc:
        logger.error("Slack install unavailable: %s", exc)
        raise HTTPException(status_code=503, detail="Slack app not configured") from None
    try:
        grant = _slack_client("", settings).oauth_access(
            body.code,
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
        )
    except SlackError as exc:
        logger.error("Slack OAuth exchange failed: %s", exc)
        raise HTTPException(status_code=502, detail="Failed to authenticate with Slack") from None
    store = _store(settings, writable=True)
    try:
        workspace = install_workspace(store, grant, _slack_client(grant.access_token, settings))
    finally:
        store.close()
    return {
        "success": True,
        "workspace_id": workspace.id,
        "workspace_name": workspace.name,
        "message": "Successfully connected to Slack workspace",
    }
