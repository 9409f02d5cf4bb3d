from __future__ import annotations

import logging
from typing import Any

from ..models import HiringOrganization, JobLocation, RawJob, TELECOMMUTE
from .base import BoardSource, SourceError, build_each, has_text, remote_from, usable_response
from .registry import register

LOG = logging.getLogger(__name__)

API_BASE = "https://api.smartrecruiters.com/v1/companies"
PAGE_SIZE = 100

EMPLOYMENT_MAP = {
    "full-time": "FULL_TIME",
    "fulltime": "FULL_TIME",
    "part-time": "PART_TIME",
    "parttime": "PART_TIME",
    "contract": "CONTRACT",
    "contractor": "CONTRACT",
    "temporary": "TEMPORARY",
    "intern": "INTERN",
    "internship": "INTERN",
    "volunteer": "VOLUNTEER",
}

# Order in which jobAd sections are joined into the description.
_SECTIONS = ("companyDescription", "jobDescription", "qualifications", "additionalInformation")


def parse_employment_type(raw: Any) -> str | None:
    label = (raw or {}).get("label") if isinstance(raw, dict) else None
    if not label:
        return None
    key = label.strip().lower()
    return EMPLOYMENT_MAP.get("-".join(key.split())) or EMPLOYMENT_MAP.get(key)


def location_string(loc: dict) -> str | None:
    parts = [loc.get(k) for k in ("city", "region", "country") if loc.get(k)]
    return ", ".join(parts) if parts else None


@register
class SmartRecruitersSource(BoardSource):
    """
    SmartRecruiters public posting API.

    The list endpoint is paginated (limit 100) and has no description; each
    posting is re-fetched from the detail endpoint. A failed detail fetch
    falls back to the list data for that posting only.
    """

    kind = "smartrecruiters"
    label = "SmartRecruiters"

    def fetch(self, board: str) -> list[RawJob]:
        postings = self._list_all(board)
        if postings is None:
            return []

        return build_each(
            f"SmartRecruiters [{board}]",
            postings,
            lambda p: self._to_raw(board, self._with_detail(board, p)),
        )

    # ---- internals ----

    def _with_detail(self, board: str, posting: dict) -> dict:
        """List data overlaid with the detail payload; blank detail fields never replace list values."""
        try:
            detail = self._detail(board, posting.get("uuid") or posting.get("id"))
        except Exception:
            LOG.warning("SmartRecruiters [%s]: detail fetch failed for %s; using list data",
                        board, posting.get("id"), exc_info=True)
            return posting
        if not detail:
            return posting
        filled = {k: v for k, v in detail.items() if v is not None and (not isinstance(v, str) or v.strip())}
        return {**posting, **filled}

    def _list_all(self, board: str) -> list[dict] | None:
        """Accumulate pages until totalFound is reached or a short page arrives; None on 404/429."""
        collected: list[dict] = []
        seen = 0
        offset = 0
        while True:
            resp = self.client.get(f"{API_BASE}/{board}/postings", params={"offset": offset, "limit": PAGE_SIZE})
            if not usable_response(resp, f"SmartRecruiters board {board!r}"):
                return None if not collected else collected
            data = self._json(resp)
            if not isinstance(data, dict):
                raise SourceError(f"SmartRecruiters [{board}]", "unexpected response format")
            content = data.get("content")
            if not isinstance(content, list):
                break
            seen += len(content)
            collected.extend(c for c in content if isinstance(c, dict) and has_text(c.get("name")))
            total = int(data.get("totalFound") or 0)
            if seen >= total or len(content) < PAGE_SIZE:
                break
            offset += PAGE_SIZE
        return collected

    def _detail(self, board: str, posting_id: Any) -> dict | None:
        if not posting_id:
            return None
        resp = self.client.get(f"{API_BASE}/{board}/postings/{posting_id}")
        if resp.status_code != 200:
            return None
        data = self._json(resp)
        return data if isinstance(data, dict) else None

    def _to_raw(self, board: str, job: dict) -> RawJob:
        loc = job.get("location") or {}
        loc_str = location_string(loc)
        sections = ((job.get("jobAd") or {}).get("sections")) or {}
        parts = [(sections.get(s) or {}).get("text") for s in _SECTIONS]
        description = "\n".join(p for p in parts if p) or None
        uuid = job.get("uuid") or job.get("id")
        return RawJob(
            title=str(job.get("name") or "").strip(),
            description=description,
            date_posted=job.get("releasedDate") or None,
            employment_type=parse_employment_type(job.get("typeOfEmployment")),
            hiring_organization=HiringOrganization(name=((job.get("company") or {}).get("name")) or board),
            job_location=JobLocation.from_parts(
                address=loc_str,
                address_region=loc.get("region"),
                address_country=loc.get("country"),
            ),
            job_location_type=TELECOMMUTE if loc.get("remote") is True else remote_from(loc_str),
            industry=((job.get("industry") or {}).get("label")) or None,
            apply_url=f"https://jobs.smartrecruiters.com/{board}/{uuid}",
            source="smartrecruiters",
            source_id=f"sr-{board}-{uuid}",
        )
