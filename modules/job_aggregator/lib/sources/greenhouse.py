from __future__ import annotations

import html
import logging

from ..models import HiringOrganization, JobLocation, RawJob
from .base import BoardSource, SourceError, build_each, has_text, remote_from, usable_response
from .registry import register

LOG = logging.getLogger(__name__)

API_BASE = "https://boards-api.greenhouse.io/v1/boards"


@register
class GreenhouseSource(BoardSource):
    """
    Greenhouse public job-board API (no auth).

    Listings come with entity-encoded HTML in `content`; the company name
    needs a separate board lookup, hence `backfill_name`.
    """

    kind = "greenhouse"
    label = "Greenhouse"
    backfill_name = True

    def fetch(self, board: str) -> list[RawJob]:
        resp = self.client.get(f"{API_BASE}/{board}/jobs", params={"content": "true"})
        if not usable_response(resp, f"Greenhouse board {board!r}"):
            return []
        data = self._json(resp)
        jobs = data.get("jobs") if isinstance(data, dict) else None
        if not isinstance(jobs, list):
            raise SourceError(f"Greenhouse [{board}]", "unexpected response format (no 'jobs' list)")
        listings = [j for j in jobs if isinstance(j, dict) and has_text(j.get("title"))]
        return build_each(f"Greenhouse [{board}]", listings, lambda j: self._to_raw(board, j))

    def display_name(self, board: str) -> str:
        """Board's configured company name; the slug itself on any failure."""
        try:
            resp = self.client.get(f"{API_BASE}/{board}")
            if resp.status_code != 200:
                return board
            name = (self._json(resp) or {}).get("name")
            return str(name).strip() if name and str(name).strip() else board
        except Exception:
            LOG.warning("Greenhouse board name lookup failed for %r; using slug", board, exc_info=True)
            return board

    def _to_raw(self, board: str, job: dict) -> RawJob:
        location_name = ((job.get("location") or {}).get("name") or "").strip() or None
        content = job.get("content") or ""
        return RawJob(
            title=str(job["title"]).strip(),
            description=html.unescape(content) if content else None,
            date_posted=job.get("updated_at") or None,
            hiring_organization=HiringOrganization(name=board),
            job_location=JobLocation.from_parts(address=location_name),
            job_location_type=remote_from(location_name),
            apply_url=job.get("absolute_url") or f"https://boards.greenhouse.io/{board}/jobs/{job.get('id')}",
            source="greenhouse",
            source_id=f"gh-{board}-{job.get('id')}",
        )
