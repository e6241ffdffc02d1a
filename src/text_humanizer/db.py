import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

from text_humanizer.config import settings

PROJECT_FIELDS = (
    "title",
    "content",
    "humanized_content",
    "credits_used",
    "mode",
    "humanization_strength",
    "personality",
    "length_adjustment",
    "humanization_document_id",
)

USER_FIELDS = ("username", "full_name", "avatar_url", "subscription_tier", "max_credits")


class PersistError(RuntimeError):
    code = "PERSIST_ERROR"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _conn() -> sqlite3.Connection:
    Path(settings.database_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(settings.database_path)
    conn.row_factory = sqlite3.Row
    return conn


def _has_col(conn: sqlite3.Connection, table: str, col: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return any(r["name"] == col for r in rows)


def init_db() -> None:
    with _conn() as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
              id TEXT PRIMARY KEY,
              username TEXT UNIQUE,
              full_name TEXT,
              avatar_url TEXT,
              credits_used INTEGER NOT NULL DEFAULT 0,
              subscription_tier TEXT NOT NULL DEFAULT 'free',
              max_credits INTEGER NOT NULL DEFAULT 100,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            )
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS credit_ledger (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id TEXT NOT NULL,
              type TEXT NOT NULL,
              credits INTEGER NOT NULL,
              job_id TEXT,
              note TEXT,
              created_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS ux_credit_ledger_charge_job
            ON credit_ledger(job_id) WHERE type = 'charge' AND job_id IS NOT NULL
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS projects (
              id TEXT PRIMARY KEY,
              created_at TEXT NOT NULL,
              user_id TEXT NOT NULL,
              title TEXT NOT NULL,
              content TEXT NOT NULL,
              humanized_content TEXT,
              credits_used INTEGER NOT NULL DEFAULT 0,
              mode TEXT,
              humanization_strength INTEGER,
              personality TEXT,
              length_adjustment TEXT,
              humanization_document_id TEXT
            )
            """
        )

        if not _has_col(conn, "projects", "mode"):
            conn.execute("ALTER TABLE projects ADD COLUMN mode TEXT")
        if not _has_col(conn, "projects", "humanization_strength"):
            conn.execute("ALTER TABLE projects ADD COLUMN humanization_strength INTEGER")
        if not _has_col(conn, "projects", "personality"):
            conn.execute("ALTER TABLE projects ADD COLUMN personality TEXT")
        if not _has_col(conn, "projects", "length_adjustment"):
            conn.execute("ALTER TABLE projects ADD COLUMN length_adjustment TEXT")
        if not _has_col(conn, "projects", "humanization_document_id"):
            conn.execute("ALTER TABLE projects ADD COLUMN humanization_document_id TEXT")

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS humanize_jobs (
              job_id TEXT PRIMARY KEY,
              user_id TEXT NOT NULL,
              project_id TEXT,
              status TEXT NOT NULL,
              credits_required INTEGER NOT NULL DEFAULT 0,
              error TEXT,
              failure_reason_code TEXT,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            )
            """
        )

        conn.commit()


# users


def create_user(
    username: str,
    full_name: str | None = None,
    avatar_url: str | None = None,
    user_id: str | None = None,
) -> dict:
    user_id = user_id or str(uuid4())
    ts = _now()
    try:
        with _conn() as conn:
            conn.execute(
                """
                INSERT INTO users (id, username, full_name, avatar_url, credits_used,
                                   subscription_tier, max_credits, created_at, updated_at)
                VALUES (?, ?, ?, ?, 0, 'free', ?, ?, ?)
                """,
                (user_id, username, full_name, avatar_url, settings.signup_max_credits, ts, ts),
            )
            conn.commit()
    except sqlite3.IntegrityError as exc:
        raise ValueError("Username is already taken") from exc
    user = get_user(user_id)
    assert user is not None
    return user


def get_user(user_id: str) -> dict | None:
    with _conn() as conn:
        row = conn.execute("SELECT * FROM users WHERE id=?", (user_id,)).fetchone()
    return dict(row) if row else None


def update_user(user_id: str, fields: dict[str, Any]) -> None:
    unknown = set(fields) - set(USER_FIELDS)
    if unknown:
        raise ValueError(f"unknown user fields: {', '.join(sorted(unknown))}")
    if not fields:
        return
    sets = [f"{name} = ?" for name in fields] + ["updated_at = ?"]
    values: list[Any] = list(fields.values()) + [_now(), user_id]
    with _conn() as conn:
        conn.execute(f"UPDATE users SET {', '.join(sets)} WHERE id = ?", tuple(values))
        conn.commit()


# credits


def add_ledger(
    user_id: str,
    entry_type: str,
    credits: int,
    job_id: str | None = None,
    note: str | None = None,
) -> None:
    with _conn() as conn:
        conn.execute(
            """
            INSERT INTO credit_ledger (user_id, type, credits, job_id, note, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (user_id, entry_type, credits, job_id, note, _now()),
        )
        conn.commit()


def list_ledger(user_id: str, limit: int = 20) -> list[dict]:
    with _conn() as conn:
        rows = conn.execute(
            "SELECT * FROM credit_ledger WHERE user_id=? ORDER BY id DESC LIMIT ?",
            (user_id, limit),
        ).fetchall()
    return [dict(r) for r in rows]


def charge_credits(user_id: str, credits: int, job_id: str | None = None, note: str = "humanize") -> bool:
    """Add ``credits`` to the user's usage in one transaction.

    A charge row keyed by ``job_id`` is written first; if one already exists
    nothing is changed and False is returned.
    """
    with _conn() as conn:
        try:
            conn.execute(
                """
                INSERT INTO credit_ledger (user_id, type, credits, job_id, note, created_at)
                VALUES (?, 'charge', ?, ?, ?, ?)
                """,
                (user_id, credits, job_id, note, _now()),
            )
        except sqlite3.IntegrityError:
            conn.rollback()
            return False

        cur = conn.execute(
            "UPDATE users SET credits_used = credits_used + ?, updated_at=? WHERE id=?",
            (credits, _now(), user_id),
        )
        if cur.rowcount == 0:
            conn.rollback()
            raise PersistError(f"user_not_found: {user_id}")
        conn.commit()
    return True


def has_charge(job_id: str) -> bool:
    with _conn() as conn:
        row = conn.execute(
            "SELECT 1 FROM credit_ledger WHERE type='charge' AND job_id=?",
            (job_id,),
        ).fetchone()
    return row is not None


def reset_credits_used(user_id: str | None = None, note: str = "monthly reset") -> int:
    ts = _now()
    with _conn() as conn:
        if user_id is None:
            rows = conn.execute("SELECT id, credits_used FROM users WHERE credits_used > 0").fetchall()
        else:
            rows = conn.execute(
                "SELECT id, credits_used FROM users WHERE id=? AND credits_used > 0",
                (user_id,),
            ).fetchall()
        for r in rows:
            conn.execute("UPDATE users SET credits_used = 0, updated_at=? WHERE id=?", (ts, r["id"]))
            conn.execute(
                """
                INSERT INTO credit_ledger (user_id, type, credits, note, created_at)
                VALUES (?, 'reset', ?, ?, ?)
                """,
                (r["id"], r["credits_used"], note, ts),
            )
        conn.commit()
    return len(rows)


# projects


def create_project(user_id: str, title: str, content: str) -> dict:
    project_id = str(uuid4())
    with _conn() as conn:
        conn.execute(
            """
            INSERT INTO projects (id, created_at, user_id, title, content, credits_used)
            VALUES (?, ?, ?, ?, ?, 0)
            """,
            (project_id, _now(), user_id, title, content),
        )
        conn.commit()
    project = get_project(project_id)
    assert project is not None
    return project


def get_project(project_id: str) -> dict | None:
    with _conn() as conn:
        row = conn.execute("SELECT * FROM projects WHERE id=?", (project_id,)).fetchone()
    return dict(row) if row else None


def list_projects(user_id: str) -> list[dict]:
    with _conn() as conn:
        rows = conn.execute(
            "SELECT * FROM projects WHERE user_id=? ORDER BY created_at DESC, rowid DESC",
            (user_id,),
        ).fetchall()
    return [dict(r) for r in rows]


def update_project(project_id: str, fields: dict[str, Any]) -> int:
    unknown = set(fields) - set(PROJECT_FIELDS)
    if unknown:
        raise ValueError(f"unknown project fields: {', '.join(sorted(unknown))}")
    if not fields:
        return 0
    sets = [f"{name} = ?" for name in fields]
    values: list[Any] = list(fields.values()) + [project_id]
    with _conn() as conn:
        cur = conn.execute(f"UPDATE projects SET {', '.join(sets)} WHERE id = ?", tuple(values))
        conn.commit()
    return cur.rowcount


def delete_project(project_id: str) -> int:
    with _conn() as conn:
        cur = conn.execute("DELETE FROM projects WHERE id=?", (project_id,))
        conn.commit()
    return cur.rowcount


# humanize job outbox


def record_job(job_id: str, user_id: str, credits_required: int, project_id: str | None = None) -> None:
    ts = _now()
    with _conn() as conn:
        conn.execute(
            """
            INSERT INTO humanize_jobs (job_id, user_id, project_id, status, credits_required, created_at, updated_at)
            VALUES (?, ?, ?, 'submitted', ?, ?, ?)
            ON CONFLICT(job_id) DO NOTHING
            """,
            (job_id, user_id, project_id, credits_required, ts, ts),
        )
        conn.commit()


def update_job_status(
    job_id: str,
    status: str,
    error: str | None = None,
    failure_reason_code: str | None = None,
    project_id: str | None = None,
) -> None:
    fields = ["status = ?", "updated_at = ?"]
    values: list[Any] = [status, _now()]

    if error is not None:
        fields.append("error = ?")
        values.append(error)
    if failure_reason_code is not None:
        fields.append("failure_reason_code = ?")
        values.append(failure_reason_code)
    if project_id is not None:
        fields.append("project_id = ?")
        values.append(project_id)

    values.append(job_id)
    sql = f"UPDATE humanize_jobs SET {', '.join(fields)} WHERE job_id = ?"
    with _conn() as conn:
        conn.execute(sql, tuple(values))
        conn.commit()


def get_job(job_id: str) -> dict | None:
    with _conn() as conn:
        row = conn.execute("SELECT * FROM humanize_jobs WHERE job_id = ?", (job_id,)).fetchone()
    return dict(row) if row else None


def list_jobs_by_status(status: str, limit: int = 100) -> list[dict]:
    with _conn() as conn:
        rows = conn.execute(
            "SELECT * FROM humanize_jobs WHERE status = ? ORDER BY created_at ASC LIMIT ?",
            (status, limit),
        ).fetchall()
    return [dict(r) for r in rows]
