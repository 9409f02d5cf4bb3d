from __future__ import annotations

import logging

from ..models import HiringOrganization, JobLocation, RawJob, TELECOMMUTE
from .base import BoardSource, build_each, has_text, remote_from, usable_response
from .registry import register

LOG = logging.getLogger(__name__)

API_BASE = "https://api.ashbyhq.com/posting-api/job-board"

EMPLOYMENT_MAP = {
    "fulltime": "FULL_TIME",
    "full-time": "FULL_TIME",
    "full_time": "FULL_TIME",
    "parttime": "PART_TIME",
    "part-time": "PART_TIME",
    "part_time": "PART_TIME",
    "contract": "CONTRACT",
    "contractor": "CONTRACT",
    "temporary": "TEMPORARY",
    "temp": "TEMPORARY",
    "intern": "INTERN",
    "internship": "INTERN",
    "volunteer": "VOLUNTEER",
}


def parse_employment_type(raw: str | None) -> str | None:
    if not raw:
        return None
    return EMPLOYMENT_MAP.get(raw.strip().lower())


@register
class AshbySource(BoardSource):
    """Ashby public posting API. Unlisted postings (isListed == false) are dropped."""

    kind = "ashby"
    label = "Ashby"

    def fetch(self, board: str) -> list[RawJob]:
        resp = self.client.get(f"{API_BASE}/{board}")
        if not usable_response(resp, f"Ashby board {board!r}"):
            return []
        data = self._json(resp)
        jobs = data.get("jobs") if isinstance(data, dict) else None
        if not isinstance(jobs, list):
            LOG.warning("Ashby [%s]: unexpected response format", board)
            return []

        listings = [
            j for j in jobs if isinstance(j, dict) and j.get("isListed") is not False and has_text(j.get("title"))
        ]
        return build_each(f"Ashby [{board}]", listings, lambda j: self._to_raw(board, j))

    def _to_raw(self, board: str, job: dict) -> RawJob:
        location = (job.get("location") or "").strip() or None
        return RawJob(
            title=str(job["title"]).strip(),
            description=job.get("descriptionHtml") or job.get("descriptionPlain") or None,
            date_posted=job.get("publishedDate") or None,
            employment_type=parse_employment_type(job.get("employmentType")),
            hiring_organization=HiringOrganization(name=board),
            job_location=JobLocation.from_parts(address=location),
            job_location_type=TELECOMMUTE if job.get("isRemote") else remote_from(location),
            apply_url=job.get("jobUrl") or f"https://jobs.ashbyhq.com/{board}/{job.get('id')}",
            source="ashby",
            source_id=f"ab-{board}-{job.get('id')}",
        )
