from __future__ import annotations

import contextlib
import json
import os
import sqlite3
import uuid
from collections.abc import Iterator, Mapping
from typing import Any

from bs4 import BeautifulSoup

from .logging_bridge import error as log_error
from .models import JOB_STATUSES
from .utils import collapse_ws, now_iso, posted_utc

_JOB_COLUMNS = (
    "niche",
    "source",
    "source_id",
    "scraped_at",
    "status",
    "fingerprint",
    "tags",
    "title",
    "description",
    "date_posted",
    "valid_through",
    "employment_type",
    "org_name",
    "org_url",
    "org_logo",
    "location_address",
    "location_postal_code",
    "location_region",
    "location_country",
    "job_location_type",
    "salary_currency",
    "salary_min",
    "salary_max",
    "salary_unit",
    "apply_url",
    "skills",
    "industry",
)


class DuplicateJobError(Exception):
    """A row with the same (niche, source, source_id) already exists."""

    def __init__(self, niche: str, source: str, source_id: str):
        super().__init__(f"duplicate job {niche}/{source}/{source_id}")
        self.niche = niche
        self.source = source
        self.source_id = source_id


# ---- Public API -------------------------------------------------------------


def init_db(sqlite_path: str) -> None:
    """
    Ensure the SQLite database and schema exist.
    Safe to call multiple times.
    """
    _ensure_dir(sqlite_path)
    with _connect(sqlite_path) as conn:
        _apply_pragmas(conn)
        _ensure_schema(conn)


@contextlib.contextmanager
def connect(sqlite_path: str) -> Iterator[sqlite3.Connection]:
    """Open a ready-to-use connection (schema ensured, Row factory) and close it afterwards."""
    _ensure_dir(sqlite_path)
    conn = _connect(sqlite_path)
    try:
        conn.row_factory = sqlite3.Row
        _apply_pragmas(conn)
        _ensure_schema(conn)
        yield conn
    finally:
        conn.close()


def upsert_job(conn: sqlite3.Connection, row: Mapping[str, Any]) -> str:
    """
    Insert one flattened job row and return its new id.

    Conflict key is (niche, source, source_id). On conflict the existing row
    is left as is apart from `last_seen_at`, and DuplicateJobError is raised so
    the caller can count it. Any other sqlite3.Error propagates.
    """
    job_id = uuid.uuid4().hex
    ts = now_iso()
    values = {c: row.get(c) for c in _JOB_COLUMNS}
    values["status"] = values["status"] or "active"
    cols = ("id", *_JOB_COLUMNS, "posted_utc", "search_text", "first_seen_at", "last_seen_at")
    params = (
        job_id,
        *(values[c] for c in _JOB_COLUMNS),
        posted_utc(values["date_posted"]),
        build_search_text(values),
        ts,
        ts,
    )

    try:
        conn.execute(
            f"INSERT INTO jobs ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
            params,
        )
    except sqlite3.IntegrityError as e:
        if not _is_unique_violation(e):
            raise
        conn.execute(
            "UPDATE jobs SET last_seen_at = ? WHERE niche = ? AND source = ? AND source_id = ?",
            (ts, values["niche"], values["source"], values["source_id"]),
        )
        raise DuplicateJobError(values["niche"], values["source"], values["source_id"]) from e
    return job_id


def set_status(sqlite_path: str, job_id: str, status: str) -> bool:
    """
    Change a job's lifecycle status (the only field mutated outside ingestion).
    Returns False when no such job exists.
    """
    if status not in JOB_STATUSES:
        raise ValueError(f"status must be one of {JOB_STATUSES}")
    try:
        with connect(sqlite_path) as conn:
            cur = conn.execute("UPDATE jobs SET status = ? WHERE id = ?", (status, job_id))
            return cur.rowcount == 1
    except sqlite3.Error as e:
        log_error({
            "component": "job_aggregator.db",
            "op": "set_status",
            "sqlite_path": sqlite_path,
            "job_id": job_id,
            "error": repr(e),
        })
        raise


# ---- Nice-to-have helpers for tests & diagnostics --------------------------


def count_rows(sqlite_path: str, niche: str | None = None) -> int:
    """Return total rows in jobs table (optionally one niche); 0 if DB missing."""
    if not os.path.exists(sqlite_path):
        return 0
    with connect(sqlite_path) as conn:
        if niche is None:
            (n,) = conn.execute("SELECT COUNT(*) FROM jobs").fetchone()
        else:
            (n,) = conn.execute("SELECT COUNT(*) FROM jobs WHERE niche = ?", (niche,)).fetchone()
    return int(n or 0)


def reset_db(sqlite_path: str) -> None:
    """
    Remove the DB file (and WAL side files) entirely.
    Safe if it doesn't exist.
    """
    for suffix in ("", "-wal", "-shm"):
        with contextlib.suppress(FileNotFoundError):
            os.remove(sqlite_path + suffix)


def build_search_text(values: Mapping[str, Any]) -> str:
    """Lower-cased haystack for free-text search: title, org, location, tags, plain description."""
    tags = values.get("tags") or "[]"
    if isinstance(tags, str):
        tags = json.loads(tags)
    description = values.get("description") or ""
    if "<" in description:
        description = BeautifulSoup(description, "html5lib").get_text(" ")
    parts = [
        values.get("title"),
        values.get("org_name"),
        values.get("location_address"),
        values.get("location_region"),
        values.get("location_country"),
        " ".join(tags),
        description,
    ]
    return collapse_ws(" ".join(str(p) for p in parts if p)).lower()


# ---- Internal utilities -----------------------------------------------------


def _is_unique_violation(e: sqlite3.IntegrityError) -> bool:
    name = getattr(e, "sqlite_errorname", "")
    if name:
        return name == "SQLITE_CONSTRAINT_UNIQUE"
    return "UNIQUE constraint failed" in str(e)


def _ensure_dir(sqlite_path: str) -> None:
    d = os.path.dirname(os.path.abspath(sqlite_path)) or "."
    os.makedirs(d, exist_ok=True)


def _connect(sqlite_path: str) -> sqlite3.Connection:
    # Autocommit: each row write is its own transaction.
    return sqlite3.connect(sqlite_path, timeout=30.0, isolation_level=None)


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA temp_store=MEMORY;")
    conn.execute("PRAGMA cache_size=-8000;")  # approx 8MB cache


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS jobs (
          id TEXT PRIMARY KEY,
          niche TEXT NOT NULL,
          source TEXT NOT NULL,
          source_id TEXT NOT NULL,
          scraped_at TEXT NOT NULL,
          status TEXT NOT NULL DEFAULT 'active',
          fingerprint TEXT NOT NULL,
          tags TEXT NOT NULL DEFAULT '[]',
          title TEXT NOT NULL,
          description TEXT,
          date_posted TEXT,
          posted_utc TEXT,
          valid_through TEXT,
          employment_type TEXT,
          org_name TEXT NOT NULL,
          org_url TEXT,
          org_logo TEXT,
          location_address TEXT,
          location_postal_code TEXT,
          location_region TEXT,
          location_country TEXT,
          job_location_type TEXT,
          salary_currency TEXT,
          salary_min REAL,
          salary_max REAL,
          salary_unit TEXT,
          apply_url TEXT NOT NULL,
          skills TEXT NOT NULL DEFAULT '[]',
          industry TEXT,
          search_text TEXT NOT NULL DEFAULT '',
          first_seen_at TEXT NOT NULL,
          last_seen_at TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_jobs_source_key
          ON jobs (niche, source, source_id);
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS ix_jobs_fingerprint ON jobs (fingerprint);")
    # stores created before posted_utc existed
    columns = {r[1] for r in conn.execute("PRAGMA table_info(jobs)")}
    if "posted_utc" not in columns:
        conn.execute("ALTER TABLE jobs ADD COLUMN posted_utc TEXT")
        dated = conn.execute("SELECT id, date_posted FROM jobs WHERE date_posted IS NOT NULL").fetchall()
        conn.executemany(
            "UPDATE jobs SET posted_utc = ? WHERE id = ?",
            [(posted_utc(date_posted), job_id) for job_id, date_posted in dated],
        )
    conn.execute("CREATE INDEX IF NOT EXISTS ix_jobs_posted ON jobs (niche, status, posted_utc);")
