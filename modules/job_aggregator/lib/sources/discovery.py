"""
Search-result heuristics shared by the web-search discovery sources.

All of this is best effort. Company names guessed from result titles are
lower-confidence than the names ATS adapters report; the stored row does not
record that distinction.
"""

from __future__ import annotations

import logging
import re

from ..job_boards import JOB_BOARDS, hostname, is_job_board_url
from ..models import HiringOrganization, RawJob, TELECOMMUTE
from ..utils import stable_hash
from .base import BaseSource, has_text

LOG = logging.getLogger(__name__)

JOB_URL_PATTERNS = (
    "/jobs/",
    "/job/",
    "/careers/",
    "/career/",
    "/positions/",
    "/position/",
    "/openings/",
    "/opening/",
    "/vacancies/",
    "/vacancy/",
    "/apply",
    "/postings/",
)
JOB_TITLE_KEYWORDS = (
    "job",
    "hiring",
    "position",
    "opening",
    "career",
    "vacancy",
    "apply",
    "we're hiring",
    "join our team",
)
COMPANY_SEPARATORS = (" - ", " | ", " at ", " @ ")

# Host labels that name a careers subdomain rather than the employer.
_GENERIC_HOST_LABELS = {"careers", "career", "jobs", "job", "apply", "boards", "recruiting", "hire", "work"}

_TRAILING_BOARD_RE = re.compile(
    r"\s+[-|–]\s+(" + "|".join(re.escape(b.name) for b in JOB_BOARDS) + r")\s*$",
    re.IGNORECASE,
)


def is_job_listing(url: str, title: str) -> bool:
    """Known board domain, OR a job-ish URL path, OR a job-ish title keyword."""
    if is_job_board_url(url):
        return True
    u, t = (url or "").lower(), (title or "").lower()
    return any(p in u for p in JOB_URL_PATTERNS) or any(k in t for k in JOB_TITLE_KEYWORDS)


def is_known_board_name(candidate: str) -> bool:
    c = candidate.strip().lower()
    if not c:
        return False
    for b in JOB_BOARDS:
        if b.name.lower() in c or c == b.domain or c == b.domain.split(".")[0]:
            return True
    return False


def company_from_host(url: str) -> str | None:
    host = hostname(url)
    if not host:
        return None
    labels = [lbl for lbl in host.split(".") if lbl]
    for label in labels[:-1] or labels:
        if label not in _GENERIC_HOST_LABELS:
            return label
    return labels[0] if labels else None


def extract_company(title: str, url: str) -> str:
    """
    Guess the employer from a search-result title.

    Fallback order:
      1. for each separator (" - ", " | ", " at ", " @ "), the last segment
         unless it is a job-board name; then the second-to-last segment when
         there are at least three
      2. the result URL's host label (careers./jobs./www. skipped)
      3. "Unknown"
    """
    for sep in COMPANY_SEPARATORS:
        parts = (title or "").split(sep)
        if len(parts) < 2:
            continue
        candidate = parts[-1].strip()
        if candidate and not is_known_board_name(candidate):
            return candidate
        if len(parts) >= 3 and parts[-2].strip():
            return parts[-2].strip()
    return company_from_host(url) or "Unknown"


def clean_title(title: str) -> str:
    """Drop a trailing ' - <Board>' / ' | <Board>' suffix."""
    return _TRAILING_BOARD_RE.sub("", title or "").strip()


def detect_remote(title: str, snippet: str | None) -> bool:
    text = f"{title or ''} {snippet or ''}".lower()
    return "remote" in text or "work from home" in text


class SearchSource(BaseSource):
    """Common mapping from (title, link, snippet) search hits to RawJob."""

    source_name: str = ""  # RawJob.source
    id_prefix: str = ""

    def result_to_raw(self, title: str, link: str, snippet: str | None) -> RawJob | None:
        if not has_text(title) or not has_text(link) or not is_job_listing(link, title):
            return None
        cleaned = clean_title(title) or title.strip()
        try:
            return RawJob(
                title=cleaned,
                description=snippet or None,
                hiring_organization=HiringOrganization(name=extract_company(title, link)),
                job_location_type=TELECOMMUTE if detect_remote(title, snippet) else None,
                apply_url=link,
                source=self.source_name,
                source_id=f"{self.id_prefix}-{stable_hash(link)}",
            )
        except ValueError as e:
            LOG.warning("skipping search result %s: %s", link, e)
            return None
