from __future__ import annotations

import json
import logging

import typer

from .config import DEFAULT_DB_PATH, DEFAULT_SLACK_BASE_URL, Settings
from .errors import ArchiveError, ConfigError
from .membership import MembershipReconciler
from .sample import SampleConfig, create_sample_data
from .slack_client import DEFAULT_BOT_SCOPES, SlackClient, authorize_url
from .storage import SQLiteStore, dump_json, validate_db
from .sync import SyncOrchestrator, initialize_workspace, install_workspace

app = typer.Typer(add_completion=False)

_PKG_VERSION = __import__("slack_archive").__version__


@app.callback()
def main(
    log_level: str = typer.Option("INFO", envvar="LOG_LEVEL", help="Logging level"),
) -> None:
    """Archive a Slack workspace into SQLite."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _slack_credentials(token: str | None, workspace_id: str | None) -> tuple[str, str]:
    settings = Settings(slack_token=token, slack_workspace_id=workspace_id)
    try:
        return settings.require_slack()
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from None


def _make_client(token: str, base_url: str, page_delay: float) -> SlackClient:
    return SlackClient(token, base_url=base_url, page_delay_seconds=page_delay)


@app.command()
def sync(
    db: str = typer.Option(DEFAULT_DB_PATH, envvar="ARCHIVE_DB", help="SQLite DB path"),
    token: str | None = typer.Option(None, envvar="SLACK_ACCESS_TOKEN", help="Slack bot token"),
    workspace_id: str | None = typer.Option(
        None, envvar="SLACK_WORKSPACE_ID", help="Slack team id"
    ),
    base_url: str = typer.Option(DEFAULT_SLACK_BASE_URL, envvar="SLACK_API_BASE_URL"),
    page_delay: float = typer.Option(1.0, help="Seconds between history pages"),
    rotate_passwords: bool = typer.Option(
        False, help="Issue new passwords for every private channel"
    ),
) -> None:
    """Run one full import of the workspace (idempotent)."""
    resolved_token, resolved_workspace = _slack_credentials(token, workspace_id)
    store = SQLiteStore(db)
    try:
        if not store.get_workspace(resolved_workspace):
            raise typer.BadParameter(
                f"Workspace {resolved_workspace} not in DB; run `bootstrap` first."
            )
        orchestrator = SyncOrchestrator(
            store,
            _make_client(resolved_token, base_url, page_delay),
            rotate_passwords=rotate_passwords,
        )
        try:
            sync_id = orchestrator.import_workspace_data(resolved_workspace)
        except ArchiveError as exc:
            typer.echo(f"Sync failed: {exc}", err=True)
            raise typer.Exit(code=1) from None
        log = store.get_sync_log(sync_id)
        typer.echo(json.dumps(log.to_dict() if log else {"id": sync_id}, indent=2))
    finally:
        store.close()


@app.command()
def bootstrap(
    db: str = typer.Option(DEFAULT_DB_PATH, envvar="ARCHIVE_DB", help="SQLite DB path"),
    token: str | None = typer.Option(None, envvar="SLACK_ACCESS_TOKEN", help="Slack bot token"),
    workspace_id: str | None = typer.Option(
        None, envvar="SLACK_WORKSPACE_ID", help="Slack team id"
    ),
    base_url: str = typer.Option(DEFAULT_SLACK_BASE_URL, envvar="SLACK_API_BASE_URL"),
    page_delay: float = typer.Option(1.0, help="Seconds between history pages"),
) -> None:
    """Create the configured workspace and archive it if it was never synced."""
    settings = Settings(slack_token=token, slack_workspace_id=workspace_id)
    if not settings.slack_configured:
        typer.echo("Slack not configured; set SLACK_ACCESS_TOKEN and SLACK_WORKSPACE_ID.")
        raise typer.Exit(code=0)
    resolved_token, resolved_workspace = settings.require_slack()
    store = SQLiteStore(db)
    try:
        try:
            sync_id = initialize_workspace(
                store,
                _make_client(resolved_token, base_url, page_delay),
                resolved_workspace,
                resolved_token,
            )
        except ArchiveError as exc:
            typer.echo(f"Bootstrap failed: {exc}", err=True)
            raise typer.Exit(code=1) from None
        if sync_id:
            typer.echo(f"Archived workspace {resolved_workspace} (sync {sync_id})")
        else:
            typer.echo(f"Workspace {resolved_workspace} already archived; token refreshed")
    finally:
        store.close()


@app.command("oauth-url")
def oauth_url(
    client_id: str | None = typer.Option(
        None, envvar="SLACK_CLIENT_ID", help="Slack app client id"
    ),
    redirect_uri: str | None = typer.Option(
        None, envvar="SLACK_REDIRECT_URI", help="Redirect URL registered on the Slack app"
    ),
    scope: str = typer.Option(",".join(DEFAULT_BOT_SCOPES), help="Comma-separated bot scopes"),
    state: str | None = typer.Option(None, help="Opaque value echoed back to the redirect"),
) -> None:
    """Print the Slack install URL for the archive bot."""
    if not client_id or not redirect_uri:
        raise typer.BadParameter("Set SLACK_CLIENT_ID and SLACK_REDIRECT_URI.")
    typer.echo(authorize_url(client_id, redirect_uri, scopes=scope.split(","), state=state))


@app.command("oauth-callback")
def oauth_callback(
    code: str = typer.Option(..., help="`code` query value from the OAuth redirect"),
    db: str = typer.Option(DEFAULT_DB_PATH, envvar="ARCHIVE_DB", help="SQLite DB path"),
    client_id: str | None = typer.Option(None, envvar="SLACK_CLIENT_ID"),
    client_secret: str | None = typer.Option(None, envvar="SLACK_CLIENT_SECRET"),
    redirect_uri: str | None = typer.Option(None, envvar="SLACK_REDIRECT_URI"),
    base_url: str = typer.Option(DEFAULT_SLACK_BASE_URL, envvar="SLACK_API_BASE_URL"),
) -> None:
    """Exchange an install code for a bot token and store the workspace."""
    settings = Settings(
        slack_client_id=client_id,
        slack_client_secret=client_secret,
        slack_redirect_uri=redirect_uri,
    )
    try:
        resolved_id, resolved_secret, resolved_redirect = settings.require_oauth()
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from None
    try:
        grant = _make_client("", base_url, 0.0).oauth_access(
            code,
            client_id=resolved_id,
            client_secret=resolved_secret,
            redirect_uri=resolved_redirect,
        )
    except ArchiveError as exc:
        typer.echo(f"OAuth exchange failed: {exc}", err=True)
        raise typer.Exit(code=1) from None
    store = SQLiteStore(db)
    try:
        workspace = install_workspace(store, grant, _make_client(grant.access_token, base_url, 0.0))
    finally:
        store.close()
    typer.echo(f"Installed workspace {workspace.name} ({workspace.id}); run `sync` to archive it")


def _reconciler(
    db: str, token: str | None, workspace_id: str | None, base_url: str, join_delay: float
) -> tuple[SQLiteStore, MembershipReconciler]:
    resolved_token, resolved_workspace = _slack_credentials(token, workspace_id)
    store = SQLiteStore(db)
    reconciler = MembershipReconciler(
        store,
        SlackClient(resolved_token, base_url=base_url),
        resolved_workspace,
        join_delay_seconds=join_delay,
    )
    return store, reconciler


@app.command("join-channels")
def join_channels(
    db: str = typer.Option(DEFAULT_DB_PATH, envvar="ARCHIVE_DB", help="SQLite DB path"),
    token: str | None = typer.Option(None, envvar="SLACK_ACCESS_TOKEN", help="Slack bot token"),
    workspace_id: str | None = typer.Option(
        None, envvar="SLACK_WORKSPACE_ID", help="Slack team id"
    ),
    base_url: str = typer.Option(DEFAULT_SLACK_BASE_URL, envvar="SLACK_API_BASE_URL"),
    join_delay: float = typer.Option(0.5, help="Seconds between join requests"),
) -> None:
    """Join every stored public channel."""
    store, reconciler = _reconciler(db, token, workspace_id, base_url, join_delay)
    try:
        stats = reconciler.join_all_public_channels()
    finally:
        store.close()
    typer.echo(json.dumps(stats.to_dict(), indent=2))


@app.command("check-membership")
def check_membership(
    db: str = typer.Option(DEFAULT_DB_PATH, envvar="ARCHIVE_DB", help="SQLite DB path"),
    token: str | None = typer.Option(None, envvar="SLACK_ACCESS_TOKEN", help="Slack bot token"),
    workspace_id: str | None = typer.Option(
        None, envvar="SLACK_WORKSPACE_ID", help="Slack team id"
    ),
    base_url: str = typer.Option(DEFAULT_SLACK_BASE_URL, envvar="SLACK_API_BASE_URL"),
) -> None:
    """Report which stored channels the token is a member of."""
    store, reconciler = _reconciler(db, token, workspace_id, base_url, 0.0)
    try:
        stats = reconciler.check_membership()
    finally:
        store.close()
    typer.echo(json.dumps(stats.to_dict(), indent=2))


@app.command("seed-sample")
def seed_sample(
    db: str = typer.Option(DEFAULT_DB_PATH, envvar="ARCHIVE_DB", help="SQLite DB path"),
    users: int = typer.Option(3, min=1, help="Number of sample users"),
    messages: int = typer.Option(5, min=0, help="Messages per channel"),
    seed: int = typer.Option(42, help="Faker/random seed"),
) -> None:
    """Write an offline demo archive."""
    store = SQLiteStore(db)
    try:
        workspace_id = create_sample_data(
            store, SampleConfig(users=users, messages_per_channel=messages, seed=seed)
        )
    finally:
        store.close()
    typer.echo(f"Sample workspace {workspace_id} written to {db}")


@app.command()
def serve(
    db: str = typer.Option(DEFAULT_DB_PATH, envvar="ARCHIVE_DB", help="SQLite DB path"),
    host: str = typer.Option("127.0.0.1", help="Host"),
    port: int = typer.Option(8080, help="Port"),
    validate_db_before_start: bool = typer.Option(
        False, "--validate-db", help="Validate DB compatibility before starting server"
    ),
) -> None:
    """Run the read API."""
    import os

    import uvicorn

    if validate_db_before_start:
        report = validate_db(db, require_workspace=True)
        if not report.get("ok"):
            typer.echo(json.dumps(report, indent=2, ensure_ascii=False))
            raise typer.Exit(code=1)

    os.environ["ARCHIVE_DB"] = db
    uvicorn.run("slack_archive.api:app", host=host, port=port, reload=False, factory=False)


@app.command("validate-db")
def validate_db_cmd(
    db: str = typer.Option(DEFAULT_DB_PATH, envvar="ARCHIVE_DB", help="SQLite DB path"),
    workspace_id: str | None = typer.Option(
        None, help="Workspace id (defaults to most recently created workspace)"
    ),
    require_workspace: bool = typer.Option(
        False, help="Fail validation when DB contains no workspaces"
    ),
    out: str | None = typer.Option(None, help="Write validation report JSON path"),
    quiet: bool = typer.Option(False, help="Do not print report JSON to stdout"),
) -> None:
    """Validate that a SQLite DB appears compatible with slack-archive."""
    report = validate_db(db, workspace_id=workspace_id, require_workspace=require_workspace)
    report["tool_version"] = _PKG_VERSION
    if out:
        dump_json(out, report)
    if not quiet:
        typer.echo(json.dumps(report, indent=2, ensure_ascii=False))
    if not report.get("ok"):
        raise typer.Exit(code=1)


@app.command()
def stats(
    db: str = typer.Option(DEFAULT_DB_PATH, envvar="ARCHIVE_DB", help="SQLite DB path"),
    workspace_id: str | None = typer.Option(
        None, help="Workspace id (defaults to most recently created workspace)"
    ),
    json_out: str | None = typer.Option(None, help="Write archive summary JSON path"),
) -> None:
    """Print archive counts (and optionally write the full summary JSON)."""
    store = SQLiteStore(db)
    try:
        resolved_workspace_id = workspace_id or store.latest_workspace_id()
        if not resolved_workspace_id:
            raise typer.BadParameter("No workspaces found in DB; run bootstrap first.")

        summary = store.archive_summary(resolved_workspace_id)
        if json_out:
            dump_json(json_out, summary)

        workspace = summary["workspace"]
        counts = summary["counts"]
        message_stats = summary["stats"]
        if not isinstance(workspace, dict) or not isinstance(counts, dict):
            raise RuntimeError("unexpected summary shape")

        typer.echo(f"Workspace: {workspace.get('name')} ({workspace.get('id')})")
        typer.echo(f"Last sync: {workspace.get('last_sync_at') or 'never'}")
        typer.echo("Counts:")
        for key in ("channels", "users", "messages"):
            typer.echo(f"- {key}: {counts.get(key)}")
        if isinstance(message_stats, dict) and message_stats.get("total_messages"):
            typer.echo(
                f"Messages span: {message_stats.get('earliest_message')} .. "
                f"{message_stats.get('latest_message')}"
            )
        latest = store.latest_sync_log(resolved_workspace_id)
        if latest:
            typer.echo(f"Latest sync: {latest.status} ({latest.id})")
        if json_out:
            typer.echo(f"Wrote summary JSON to: {json_out}")
    finally:
        store.close()
