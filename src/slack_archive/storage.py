from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import cast

from .models import Channel, Message, SyncLog, SyncStatus, User, Workspace, to_iso, utc_now

SCHEMA_VERSION = 1


class SQLiteStore:
    def __init__(self, path: str, *, read_only: bool = False) -> None:
        self.path = path
        self.read_only = read_only
        if read_only:
            # Read endpoints and validate-db never create or migrate the file.
            self.conn = _sqlite_connect_readonly(path)
            self.conn.row_factory = sqlite3.Row
            return

        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(path)
        self.conn.row_factory = sqlite3.Row
        self._configure()
        self._init_schema()

    def _configure(self) -> None:
        cursor = self.conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA temp_store=MEMORY")
        self.conn.commit()

    def _init_schema(self) -> None:
        cursor = self.conn.cursor()
        cursor.executescript(
            """
            CREATE TABLE IF NOT EXISTS workspaces (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                domain TEXT NOT NULL,
                access_token TEXT NOT NULL,
                last_sync_at TEXT,
                auto_sync_enabled INTEGER NOT NULL DEFAULT 1,
                sync_frequency TEXT NOT NULL DEFAULT 'daily'
                    CHECK(sync_frequency IN ('daily', 'weekly', 'manual')),
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sync_logs (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                status TEXT NOT NULL CHECK(status IN ('running', 'completed', 'failed')),
                new_messages INTEGER NOT NULL DEFAULT 0,
                new_channels INTEGER NOT NULL DEFAULT 0,
                errors TEXT,
                FOREIGN KEY(workspace_id) REFERENCES workspaces(id)
            );

            CREATE TABLE IF NOT EXISTS sync_leases (
                workspace_id TEXT PRIMARY KEY,
                holder TEXT NOT NULL,
                acquired_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                FOREIGN KEY(workspace_id) REFERENCES workspaces(id)
            );

            CREATE TABLE IF NOT EXISTS channels (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                name TEXT NOT NULL,
                is_private INTEGER NOT NULL DEFAULT 0,
                is_admin_only INTEGER NOT NULL DEFAULT 0,
                password TEXT,
                member_count INTEGER NOT NULL DEFAULT 0,
                last_message_at TEXT,
                created_at TEXT NOT NULL,
                CHECK(password IS NULL OR is_private = 1),
                FOREIGN KEY(workspace_id) REFERENCES workspaces(id)
            );

            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                username TEXT NOT NULL,
                display_name TEXT NOT NULL,
                avatar TEXT NOT NULL DEFAULT '',
                is_admin INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                FOREIGN KEY(workspace_id) REFERENCES workspaces(id)
            );

            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                channel_id TEXT NOT NULL,
                ts TEXT NOT NULL,
                user_id TEXT NOT NULL,
                username TEXT NOT NULL,
                text TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                thread_ts TEXT,
                files TEXT,
                is_new INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                UNIQUE(channel_id, ts),
                FOREIGN KEY(channel_id) REFERENCES channels(id),
                FOREIGN KEY(user_id) REFERENCES users(id)
            );

            CREATE INDEX IF NOT EXISTS idx_channels_workspace ON channels(workspace_id);
            CREATE INDEX IF NOT EXISTS idx_users_workspace ON users(workspace_id);
            CREATE INDEX IF NOT EXISTS idx_messages_channel_timestamp ON messages(
                channel_id, timestamp DESC
            );
            CREATE INDEX IF NOT EXISTS idx_messages_thread ON messages(thread_ts)
                WHERE thread_ts IS NOT NULL;
            CREATE INDEX IF NOT EXISTS idx_sync_logs_workspace ON sync_logs(
                workspace_id, started_at DESC
            );
            """
        )
        cursor.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def commit(self) -> None:
        self.conn.commit()

    # -- workspaces -------------------------------------------------------

    def upsert_workspace(self, workspace: Workspace) -> None:
        self.conn.execute(
            (
                "INSERT INTO workspaces (id, name, domain, access_token, last_sync_at, "
                "auto_sync_enabled, sync_frequency, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET name = excluded.name, domain = excluded.domain, "
                "access_token = excluded.access_token, "
                "auto_sync_enabled = excluded.auto_sync_enabled, "
                "sync_frequency = excluded.sync_frequency"
            ),
            (
                workspace.id,
                workspace.name,
                workspace.domain,
                workspace.access_token,
                workspace.last_sync_at,
                workspace.auto_sync_enabled,
                str(workspace.sync_frequency),
                workspace.created_at or utc_now(),
            ),
        )
        self.conn.commit()

    def update_workspace_token(self, workspace_id: str, access_token: str) -> None:
        self.conn.execute(
            "UPDATE workspaces SET access_token = ? WHERE id = ?", (access_token, workspace_id)
        )
        self.conn.commit()

    def mark_workspace_synced(self, workspace_id: str, synced_at: str | None = None) -> None:
        self.conn.execute(
            "UPDATE workspaces SET last_sync_at = ? WHERE id = ?",
            (synced_at or utc_now(), workspace_id),
        )
        self.conn.commit()

    def get_workspace(self, workspace_id: str) -> dict[str, object] | None:
        row = self.conn.execute(
            (
                "SELECT id, name, domain, last_sync_at, auto_sync_enabled, sync_frequency, "
                "created_at FROM workspaces WHERE id = ?"
            ),
            (workspace_id,),
        ).fetchone()
        return dict(row) if row else None

    def get_workspace_token(self, workspace_id: str) -> str | None:
        row = self.conn.execute(
            "SELECT access_token FROM workspaces WHERE id = ?", (workspace_id,)
        ).fetchone()
        return str(row["access_token"]) if row else None

    def list_workspaces(self) -> list[dict[str, object]]:
        cursor = self.conn.execute(
            "SELECT id, name, domain, last_sync_at, auto_sync_enabled, sync_frequency, "
            "created_at FROM workspaces ORDER BY created_at DESC"
        )
        return [dict(row) for row in cursor.fetchall()]

    def latest_workspace_id(self) -> str | None:
        row = self.conn.execute(
            "SELECT id FROM workspaces ORDER BY created_at DESC LIMIT 1"
        ).fetchone()
        if not row:
            return None
        return str(row["id"])

    # -- users ------------------------------------------------------------

    def upsert_users(self, users: Iterable[User]) -> int:
        now = utc_now()
        rows = [
            (u.id, u.workspace_id, u.username, u.display_name, u.avatar, u.is_admin, now)
            for u in users
        ]
        self.conn.executemany(
            (
                "INSERT INTO users (id, workspace_id, username, display_name, avatar, is_admin, "
                "created_at) VALUES (?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET workspace_id = excluded.workspace_id, "
                "username = excluded.username, display_name = excluded.display_name, "
                "avatar = excluded.avatar, is_admin = excluded.is_admin"
            ),
            rows,
        )
        self.conn.commit()
        return len(rows)

    def list_users(self, workspace_id: str) -> list[dict[str, object]]:
        cursor = self.conn.execute(
            (
                "SELECT id, username, display_name, avatar, is_admin FROM users "
                "WHERE workspace_id = ? ORDER BY display_name"
            ),
            (workspace_id,),
        )
        return [dict(row) for row in cursor.fetchall()]

    # -- channels ---------------------------------------------------------

    def upsert_channel(self, channel: Channel) -> None:
        self.conn.execute(
            (
                "INSERT INTO channels (id, workspace_id, name, is_private, is_admin_only, "
                "password, member_count, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET workspace_id = excluded.workspace_id, "
                "name = excluded.name, is_private = excluded.is_private, "
                "is_admin_only = excluded.is_admin_only, password = excluded.password, "
                "member_count = excluded.member_count"
            ),
            (
                channel.id,
                channel.workspace_id,
                channel.name,
                channel.is_private,
                channel.is_admin_only,
                channel.password,
                channel.member_count,
                utc_now(),
            ),
        )
        self.conn.commit()

    def get_channel(self, channel_id: str) -> dict[str, object] | None:
        row = self.conn.execute("SELECT * FROM channels WHERE id = ?", (channel_id,)).fetchone()
        return dict(row) if row else None

    def list_channels(
        self, workspace_id: str, *, public_only: bool = False
    ) -> list[dict[str, object]]:
        where = "workspace_id = ?"
        if public_only:
            where += " AND is_private = 0"
        cursor = self.conn.execute(
            (
                "SELECT id, name, is_private, is_admin_only, member_count, last_message_at, "
                f"created_at FROM channels WHERE {where} ORDER BY name"
            ),
            (workspace_id,),
        )
        return [dict(row) for row in cursor.fetchall()]

    def refresh_channel_last_message(self, channel_id: str) -> str | None:
        row = self.conn.execute(
            "SELECT MAX(timestamp) AS latest FROM messages WHERE channel_id = ?", (channel_id,)
        ).fetchone()
        latest = row["latest"] if row else None
        if latest is not None:
            self.conn.execute(
                "UPDATE channels SET last_message_at = ? WHERE id = ?", (latest, channel_id)
            )
            self.conn.commit()
        return cast(str | None, latest)

    # -- messages ---------------------------------------------------------

    def insert_message_if_absent(self, message: Message) -> bool:
        """Insert ``message`` unless its id is already stored.

        Returns ``True`` when a row was written. Foreign-key violations are not
        covered by ``OR IGNORE`` and raise ``sqlite3.IntegrityError``. The caller
        commits.
        """
        cursor = self.conn.execute(
            (
                "INSERT OR IGNORE INTO messages (id, channel_id, ts, user_id, username, text, "
                "timestamp, thread_ts, files, is_new, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
            ),
            (
                message.id,
                message.channel_id,
                message.ts,
                message.user_id,
                message.username,
                message.text,
                message.timestamp,
                message.thread_ts,
                message.files_json(),
                message.is_new,
                utc_now(),
            ),
        )
        return cursor.rowcount == 1

    def count_messages(self, *, channel_id: str | None = None) -> int:
        if channel_id:
            row = self.conn.execute(
                "SELECT COUNT(*) AS count FROM messages WHERE channel_id = ?", (channel_id,)
            ).fetchone()
        else:
            row = self.conn.execute("SELECT COUNT(*) AS count FROM messages").fetchone()
        return int(row["count"]) if row else 0

    def list_channel_messages(self, channel_id: str) -> list[dict[str, object]]:
        cursor = self.conn.execute(
            (
                "SELECT m.*, u.display_name, u.avatar FROM messages m "
                "LEFT JOIN users u ON m.user_id = u.id "
                "WHERE m.channel_id = ? ORDER BY m.timestamp ASC, m.id ASC"
            ),
            (channel_id,),
        )
        return [_message_row(row) for row in cursor.fetchall()]

    def list_recent_messages(
        self, channel_id: str, *, limit: int, offset: int = 0
    ) -> list[dict[str, object]]:
        cursor = self.conn.execute(
            (
                "SELECT m.*, u.display_name, u.avatar FROM messages m "
                "LEFT JOIN users u ON m.user_id = u.id "
                "WHERE m.channel_id = ? ORDER BY m.timestamp DESC, m.id DESC LIMIT ? OFFSET ?"
            ),
            (channel_id, limit, offset),
        )
        return [_message_row(row) for row in cursor.fetchall()]

    def list_thread_replies(self, channel_id: str, thread_ts: str) -> list[dict[str, object]]:
        cursor = self.conn.execute(
            (
                "SELECT m.*, u.display_name, u.avatar FROM messages m "
                "LEFT JOIN users u ON m.user_id = u.id "
                "WHERE m.thread_ts = ? AND m.channel_id = ? AND m.ts != m.thread_ts "
                "ORDER BY m.timestamp ASC, m.id ASC"
            ),
            (thread_ts, channel_id),
        )
        return [_message_row(row) for row in cursor.fetchall()]

    def search_messages(
        self,
        workspace_id: str,
        query: str,
        *,
        limit: int,
        offset: int = 0,
        channel_id: str | None = None,
        user_id: str | None = None,
        from_ts: str | None = None,
        to_ts: str | None = None,
        include_private: bool = False,
        private_channel_ids: Iterable[str] = (),
    ) -> tuple[list[dict[str, object]], int]:
        where = ["c.workspace_id = ?", "m.text LIKE ? ESCAPE '\\'"]
        params: list[object] = [workspace_id, f"%{_escape_like(query)}%"]

        if channel_id:
            where.append("m.channel_id = ?")
            params.append(channel_id)
        if user_id:
            where.append("m.user_id = ?")
            params.append(user_id)
        if from_ts:
            where.append("m.timestamp >= ?")
            params.append(from_ts)
        if to_ts:
            where.append("m.timestamp < ?")
            params.append(to_ts)
        if not include_private:
            allowed = sorted(set(private_channel_ids))
            if allowed:
                marks = ", ".join("?" for _ in allowed)
                where.append(f"(c.is_private = 0 OR c.id IN ({marks}))")
                params.extend(allowed)
            else:
                where.append("c.is_private = 0")

        clause = " AND ".join(where)
        total_row = self.conn.execute(
            f"SELECT COUNT(*) AS count FROM messages m JOIN channels c ON m.channel_id = c.id "
            f"WHERE {clause}",
            params,
        ).fetchone()
        total = int(total_row["count"]) if total_row else 0

        sql = (
            "SELECT m.*, u.display_name, u.avatar, c.name AS channel_name FROM messages m "
            "JOIN channels c ON m.channel_id = c.id "
            "LEFT JOIN users u ON m.user_id = u.id "
            f"WHERE {clause} ORDER BY m.timestamp DESC, m.id DESC LIMIT ? OFFSET ?"
        )
        rows = self.conn.execute(sql, [*params, limit, offset]).fetchall()
        return [_message_row(row) for row in rows], total

    # -- sync bookkeeping -------------------------------------------------

    def create_sync_log(self, sync_id: str, workspace_id: str, started_at: str) -> None:
        self.conn.execute(
            "INSERT INTO sync_logs (id, workspace_id, started_at, status) VALUES (?, ?, ?, ?)",
            (sync_id, workspace_id, started_at, str(SyncStatus.RUNNING)),
        )
        self.conn.commit()

    def complete_sync_log(self, sync_id: str, *, new_channels: int, new_messages: int) -> bool:
        cursor = self.conn.execute(
            (
                "UPDATE sync_logs SET completed_at = ?, status = ?, new_channels = ?, "
                "new_messages = ? WHERE id = ? AND status = ?"
            ),
            (
                utc_now(),
                str(SyncStatus.COMPLETED),
                new_channels,
                new_messages,
                sync_id,
                str(SyncStatus.RUNNING),
            ),
        )
        self.conn.commit()
        return cursor.rowcount == 1

    def fail_sync_log(self, sync_id: str, errors: list[str]) -> bool:
        cursor = self.conn.execute(
            (
                "UPDATE sync_logs SET completed_at = ?, status = ?, errors = ? "
                "WHERE id = ? AND status = ?"
            ),
            (
                utc_now(),
                str(SyncStatus.FAILED),
                json.dumps(errors, ensure_ascii=False),
                sync_id,
                str(SyncStatus.RUNNING),
            ),
        )
        self.conn.commit()
        return cursor.rowcount == 1

    def get_sync_log(self, sync_id: str) -> SyncLog | None:
        row = self.conn.execute("SELECT * FROM sync_logs WHERE id = ?", (sync_id,)).fetchone()
        return SyncLog.from_row(dict(row)) if row else None

    def list_sync_logs(self, workspace_id: str, *, limit: int = 20) -> list[SyncLog]:
        cursor = self.conn.execute(
            "SELECT * FROM sync_logs WHERE workspace_id = ? ORDER BY started_at DESC LIMIT ?",
            (workspace_id, limit),
        )
        return [SyncLog.from_row(dict(row)) for row in cursor.fetchall()]

    def latest_sync_log(self, workspace_id: str) -> SyncLog | None:
        row = self.conn.execute(
            "SELECT * FROM sync_logs WHERE workspace_id = ? ORDER BY started_at DESC, rowid DESC "
            "LIMIT 1",
            (workspace_id,),
        ).fetchone()
        return SyncLog.from_row(dict(row)) if row else None

    def acquire_sync_lease(self, workspace_id: str, holder: str, *, ttl_seconds: int) -> bool:
        now = datetime.now(tz=UTC)
        acquired_at = to_iso(now)
        expires_at = to_iso(now + timedelta(seconds=ttl_seconds))
        cursor = self.conn.execute(
            (
                "INSERT INTO sync_leases (workspace_id, holder, acquired_at, expires_at) "
                "VALUES (?, ?, ?, ?) "
                "ON CONFLICT(workspace_id) DO UPDATE SET holder = excluded.holder, "
                "acquired_at = excluded.acquired_at, expires_at = excluded.expires_at "
                "WHERE sync_leases.expires_at <= excluded.acquired_at"
            ),
            (workspace_id, holder, acquired_at, expires_at),
        )
        self.conn.commit()
        return cursor.rowcount == 1

    def release_sync_lease(self, workspace_id: str, holder: str) -> None:
        self.conn.execute(
            "DELETE FROM sync_leases WHERE workspace_id = ? AND holder = ?",
            (workspace_id, holder),
        )
        self.conn.commit()

    def sync_lease_holder(self, workspace_id: str) -> str | None:
        row = self.conn.execute(
            "SELECT holder FROM sync_leases WHERE workspace_id = ?", (workspace_id,)
        ).fetchone()
        return str(row["holder"]) if row else None

    # -- aggregates -------------------------------------------------------

    def stats(self, workspace_id: str) -> dict[str, int]:
        counts: dict[str, int] = {}
        for table in ("channels", "users"):
            res = self.conn.execute(
                f"SELECT COUNT(*) AS count FROM {table} WHERE workspace_id = ?",
                (workspace_id,),
            ).fetchone()
            counts[table] = res["count"] if res else 0
        res = self.conn.execute(
            (
                "SELECT COUNT(*) AS count FROM messages m JOIN channels c "
                "ON m.channel_id = c.id WHERE c.workspace_id = ?"
            ),
            (workspace_id,),
        ).fetchone()
        counts["messages"] = res["count"] if res else 0
        return counts

    def message_stats(self, workspace_id: str) -> dict[str, object]:
        row = self.conn.execute(
            (
                "SELECT COUNT(*) AS total_messages, "
                "COUNT(DISTINCT m.channel_id) AS channels_with_messages, "
                "MIN(m.timestamp) AS earliest_message, MAX(m.timestamp) AS latest_message "
                "FROM messages m JOIN channels c ON m.channel_id = c.id "
                "WHERE c.workspace_id = ?"
            ),
            (workspace_id,),
        ).fetchone()
        return dict(row)

    def archive_summary(self, workspace_id: str) -> dict[str, object]:
        workspace = self.get_workspace(workspace_id)
        if not workspace:
            raise ValueError("workspace not found")
        return {
            "workspace": workspace,
            "counts": self.stats(workspace_id),
            "stats": self.message_stats(workspace_id),
            "channels": self.list_channels(workspace_id),
            "users": self.list_users(workspace_id),
            "generated_at": utc_now(),
        }


def _message_row(row: sqlite3.Row) -> dict[str, object]:
    data = dict(row)
    raw_files = data.get("files")
    data["files"] = json.loads(str(raw_files)) if raw_files else []
    return data


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


_REQUIRED_TABLES: dict[str, set[str]] = {
    "workspaces": {
        "id",
        "name",
        "domain",
        "access_token",
        "last_sync_at",
        "auto_sync_enabled",
        "sync_frequency",
        "created_at",
    },
    "channels": {
        "id",
        "workspace_id",
        "name",
        "is_private",
        "is_admin_only",
        "password",
        "member_count",
        "last_message_at",
        "created_at",
    },
    "users": {"id", "workspace_id", "username", "display_name", "avatar", "is_admin"},
    "messages": {
        "id",
        "channel_id",
        "ts",
        "user_id",
        "username",
        "text",
        "timestamp",
        "thread_ts",
        "files",
        "is_new",
        "created_at",
    },
    "sync_logs": {
        "id",
        "workspace_id",
        "started_at",
        "completed_at",
        "status",
        "new_messages",
        "new_channels",
        "errors",
    },
}


def _sqlite_connect_readonly(path: str) -> sqlite3.Connection:
    uri = f"{Path(path).resolve().as_uri()}?mode=ro"
    return sqlite3.connect(uri, uri=True)


def validate_db(
    path: str,
    *,
    workspace_id: str | None = None,
    require_workspace: bool = False,
) -> dict[str, object]:
    """Validate that a SQLite DB appears compatible with slack-archive.

    This is a read-only check meant for fail-fast CLI diagnostics.
    """
    db_path = Path(path)
    report: dict[str, object] = {
        "db": str(db_path),
        "ok": False,
        "workspace_id": workspace_id,
        "errors": [],
        "warnings": [],
        "schema_version": None,
        "required_schema_version": SCHEMA_VERSION,
    }
    errors: list[str] = cast(list[str], report["errors"])
    warnings: list[str] = cast(list[str], report["warnings"])

    if not db_path.exists():
        errors.append(f"DB file not found: {db_path}")
        return report

    try:
        conn = _sqlite_connect_readonly(str(db_path))
    except sqlite3.OperationalError as exc:
        errors.append(f"Unable to open DB read-only: {exc}")
        return report

    try:
        conn.row_factory = sqlite3.Row
        try:
            table_rows = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
            ).fetchall()
        except sqlite3.DatabaseError as exc:
            errors.append(f"Not a usable SQLite database: {exc}")
            return report
        tables = {str(r["name"]) for r in table_rows}
        if not tables:
            errors.append("DB has no tables (did you point at the right SQLite file?).")
            return report

        usable: set[str] = set()
        for table, required_cols in _REQUIRED_TABLES.items():
            if table not in tables:
                errors.append(f"Missing table: {table}")
                continue
            col_rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
            cols = {str(r["name"]) for r in col_rows}
            missing = sorted(required_cols - cols)
            if not missing:
                usable.add(table)
            else:
                errors.append(f"Table {table} missing columns: {', '.join(missing)}")

        version = int(conn.execute("PRAGMA user_version").fetchone()[0])
        report["schema_version"] = version
        if version == 0:
            warnings.append("DB has no schema version (created outside slack-archive?).")
        elif version > SCHEMA_VERSION:
            errors.append(
                f"DB schema_version {version} is newer than supported {SCHEMA_VERSION}."
            )

        if "workspaces" in usable:
            resolved_workspace = workspace_id
            if not resolved_workspace:
                row = conn.execute(
                    "SELECT id FROM workspaces ORDER BY created_at DESC LIMIT 1"
                ).fetchone()
                resolved_workspace = str(row["id"]) if row else None
            report["workspace_id"] = resolved_workspace

            if workspace_id:
                exists = conn.execute(
                    "SELECT 1 FROM workspaces WHERE id = ? LIMIT 1", (workspace_id,)
                ).fetchone()
                if not exists:
                    errors.append(f"Workspace not found: {workspace_id}")

            if require_workspace and not resolved_workspace:
                errors.append("No workspaces found in DB.")

        if "sync_logs" in usable:
            stuck = conn.execute(
                "SELECT COUNT(*) FROM sync_logs WHERE status = 'running'"
            ).fetchone()[0]
            if stuck:
                warnings.append(f"{stuck} sync run(s) still marked running.")
    finally:
        conn.close()

    report["ok"] = len(errors) == 0
    return report


def dump_json(path: str, payload: object) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
