# modules/job_aggregator/lib/sources/lever.py
from __future__ import annotations

from ..models import HiringOrganization, JobLocation, RawJob
from ..utils import epoch_ms_to_iso
from .base import BoardSource, SourceError, build_each, has_text, remote_from, usable_response
from .registry import register

API_BASE = "https://api.lever.co/v0/postings"

_COMMITMENT_MAP = {
    "full-time": "FULL_TIME",
    "full time": "FULL_TIME",
    "fulltime": "FULL_TIME",
    "permanent": "FULL_TIME",
    "part-time": "PART_TIME",
    "part time": "PART_TIME",
    "contract": "CONTRACT",
    "contractor": "CONTRACT",
    "fixed term": "TEMPORARY",
    "fixed-term": "TEMPORARY",
    "temporary": "TEMPORARY",
    "intern": "INTERN",
    "internship": "INTERN",
    "volunteer": "VOLUNTEER",
}


def employment_from_commitment(commitment: str | None) -> str | None:
    """Map Lever's free-text `categories.commitment` onto the employment enum (None if unknown)."""
    if not commitment:
        return None
    c = commitment.strip().lower()
    if c in _COMMITMENT_MAP:
        return _COMMITMENT_MAP[c]
    for key, value in _COMMITMENT_MAP.items():
        if key in c:
            return value
    return None


@register
class LeverSource(BoardSource):
    """
    Lever postings API (JSON mode).

    Lever exposes no company display name, so `display_name` is the
    title-cased slug ("sierra-club" -> "Sierra Club").
    """

    kind = "lever"
    label = "Lever"
    backfill_name = True

    def fetch(self, board: str) -> list[RawJob]:
        resp = self.client.get(f"{API_BASE}/{board}", params={"mode": "json"})
        if not usable_response(resp, f"Lever company {board!r}"):
            return []
        data = self._json(resp)
        if not isinstance(data, list):
            raise SourceError(f"Lever [{board}]", "unexpected response format (expected a list)")
        listings = [p for p in data if isinstance(p, dict) and has_text(p.get("text"))]
        return build_each(f"Lever [{board}]", listings, lambda p: self._to_raw(board, p))

    def _to_raw(self, board: str, posting: dict) -> RawJob:
        cats = posting.get("categories") or {}
        location = (cats.get("location") or "").strip() or None
        commitment = (cats.get("commitment") or "").strip() or None
        return RawJob(
            title=str(posting["text"]).strip(),
            description=posting.get("description") or posting.get("descriptionPlain") or None,
            date_posted=epoch_ms_to_iso(posting.get("createdAt")),
            employment_type=employment_from_commitment(commitment),
            hiring_organization=HiringOrganization(name=board),
            job_location=JobLocation.from_parts(address=location),
            job_location_type=remote_from(location, commitment),
            apply_url=posting.get("hostedUrl") or posting.get("applyUrl") or f"https://jobs.lever.co/{board}/{posting.get('id')}",
            source="lever",
            source_id=f"lv-{board}-{posting.get('id')}",
        )
