"""
Read side of the job store: filter, search and paginate persisted jobs.

Only `status = 'active'` rows of one niche are ever listed. Free text is
matched term by term against the precomputed `search_text` column; every
term must appear. Tag filters are containment: a job must carry all of them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from . import db
from .models import TELECOMMUTE, Job

MAX_LIMIT = 100


@dataclass(frozen=True)
class JobFilters:
    niche: str
    query: str | None = None
    tags: tuple[str, ...] = ()
    remote: bool = False
    page: int = 1
    limit: int = 20

    def __post_init__(self) -> None:
        if not isinstance(self.tags, tuple):
            object.__setattr__(self, "tags", tuple(self.tags or ()))
        if self.page < 1:
            object.__setattr__(self, "page", 1)
        object.__setattr__(self, "limit", max(1, min(int(self.limit or 20), MAX_LIMIT)))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class JobPage:
    jobs: list[Job] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.total else 0


def _like_escape(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _where(filters: JobFilters) -> tuple[str, list]:
    clauses = ["niche = ?", "status = 'active'"]
    params: list = [filters.niche]

    for term in (filters.query or "").lower().split():
        clauses.append("search_text LIKE ? ESCAPE '\\'")
        params.append(f"%{_like_escape(term)}%")

    for tag in filters.tags:
        clauses.append("EXISTS (SELECT 1 FROM json_each(jobs.tags) WHERE json_each.value = ?)")
        params.append(tag)

    if filters.remote:
        clauses.append("job_location_type = ?")
        params.append(TELECOMMUTE)

    return " AND ".join(clauses), params


def get_jobs(sqlite_path: str, filters: JobFilters) -> JobPage:
    """
    One page of active jobs, newest posting first (undated last), with the
    exact total across all pages.
    """
    if not os.path.exists(sqlite_path):
        return JobPage(jobs=[], total=0, page=filters.page, limit=filters.limit)

    where, params = _where(filters)
    with db.connect(sqlite_path) as conn:
        (total,) = conn.execute(f"SELECT COUNT(*) FROM jobs WHERE {where}", params).fetchone()
        rows = conn.execute(
            f"""
            SELECT * FROM jobs
            WHERE {where}
            ORDER BY posted_utc IS NULL, posted_utc DESC, scraped_at DESC, id
            LIMIT ? OFFSET ?
            """,
            [*params, filters.limit, filters.offset],
        ).fetchall()

    return JobPage(
        jobs=[Job.from_row(dict(r)) for r in rows],
        total=int(total or 0),
        page=filters.page,
        limit=filters.limit,
    )


def get_job_by_id(sqlite_path: str, job_id: str) -> Job | None:
    if not os.path.exists(sqlite_path):
        return None
    with db.connect(sqlite_path) as conn:
        row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
    return Job.from_row(dict(row)) if row else None
