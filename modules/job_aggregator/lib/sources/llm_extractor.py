"""
LLM-based job extraction.

One prompt per page: the page text, its URL and the niche's tag taxonomy
go in; a single JSON object comes back. Everything the model returns is
treated as untrusted and re-validated here before a RawJob is built.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol

from ..config import NicheConfig
from ..models import (
    EMPLOYMENT_TYPES,
    MAX_SKILLS,
    SALARY_UNITS,
    TELECOMMUTE,
    BaseSalary,
    Extraction,
    HiringOrganization,
    JobLocation,
    RawJob,
)
from ..utils import stable_hash

LOG = logging.getLogger(__name__)

_FENCE_OPEN_RE = re.compile(r"^\s*```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")


class ChatClient(Protocol):
    def complete(self, prompt: str) -> str: ...


def build_prompt(page_text: str, url: str, niche: NicheConfig) -> str:
    tag_lines = "\n".join(
        f'  "{tag}": [{", ".join(json.dumps(k) for k in keywords)}]' for tag, keywords in niche.tags.items()
    )
    return f"""Extract structured job posting data from this page text. Return ONLY valid JSON, no markdown fences.

PAGE URL: {url}

PAGE TEXT:
{page_text}

TAG CATEGORIES (match the job against these; return tag names where the job is relevant, using semantic understanding not just keyword matching):
{tag_lines}

Return this exact JSON shape:
{{
  "title": "Job title",
  "description": "The FULL job description body in clean HTML. Include all duties, requirements, qualifications, benefits etc. Use <p>, <ul>, <li>, <strong>, <h3> tags for formatting. Do NOT truncate.",
  "datePosted": "ISO 8601 date or null",
  "validThrough": "ISO 8601 date or null (closing/deadline date)",
  "employmentType": one of {json.dumps(list(EMPLOYMENT_TYPES))} or null,
  "organizationName": "Hiring company/org name",
  "organizationUrl": "Company website URL or null",
  "locationAddress": "City, region or full address or null",
  "locationRegion": "State/region/country subdivision or null",
  "locationCountry": "2-letter ISO country code or null",
  "isRemote": true/false,
  "salaryCurrency": "3-letter currency code or null (e.g. GBP, USD, EUR)",
  "salaryMin": number or null (no commas),
  "salaryMax": number or null (no commas),
  "salaryUnit": one of {json.dumps(list(SALARY_UNITS))} or null,
  "skills": ["skill1", "skill2", ...],
  "industry": "Primary industry/sector or null",
  "matchedTags": ["tag-name", ...]
}}

Rules:
- Extract ONLY what's on the page. Don't invent data.
- For description, keep every section of the posting (role, responsibilities, requirements, benefits, how to apply). Strip navigation, ads, cookie banners and related jobs.
- For dates, look for "Posted" / "Closing date" labels in headers and sidebars. Convert relative dates like "2 days ago" to ISO 8601 if possible.
- For salary, normalise to numbers (e.g. "£35k" = 35000, "$50-70k" = 50000/70000).
- For location, give the most specific location (city > region > country). If the job says "Remote" or "Work from home", set isRemote to true. A job can be BOTH remote and have a location.
- For skills, list 5-15 concrete skills from the requirements (e.g. "Python", "grant writing", "PRINCE2"), most important first.
- For matchedTags, only return tag names from the categories above.
- If the page doesn't contain a job posting, return {{"title": "", "description": null}} and nulls for everything.
- Return ONLY the JSON object. No markdown fences, no explanation, no text before or after."""


def strip_fences(text: str) -> str:
    return _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", text or "", count=1)).strip()


def _opt_str(v: Any) -> str | None:
    if v is None or isinstance(v, (dict, list, bool)):
        return None
    s = str(v).strip()
    return s or None


def _flag(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return isinstance(v, str) and v.strip().lower() == "true"


def parse_extraction(raw_text: str, url: str, niche: NicheConfig, source: str = "scraper") -> Extraction | None:
    """
    Turn the model's raw reply into an Extraction, or None when the reply is
    not usable (bad JSON, not an object, empty title, or fields that cannot
    form a valid RawJob).
    """
    try:
        parsed = json.loads(strip_fences(raw_text))
    except json.JSONDecodeError:
        LOG.error("LLM extraction failed to parse JSON for %s; raw response: %.300s", url, raw_text)
        return None
    if not isinstance(parsed, dict):
        LOG.error("LLM extraction for %s returned %s, not an object", url, type(parsed).__name__)
        return None

    title = _opt_str(parsed.get("title"))
    if not title:
        return None  # not a job posting

    employment = _opt_str(parsed.get("employmentType"))
    skills_raw = parsed.get("skills") if isinstance(parsed.get("skills"), list) else []
    skills = [s.strip() for s in skills_raw if isinstance(s, str) and s.strip()][:MAX_SKILLS]

    try:
        job = RawJob(
            title=title,
            description=_opt_str(parsed.get("description")),
            date_posted=_opt_str(parsed.get("datePosted")),
            valid_through=_opt_str(parsed.get("validThrough")),
            employment_type=employment if employment in EMPLOYMENT_TYPES else None,
            hiring_organization=HiringOrganization(
                name=_opt_str(parsed.get("organizationName")) or "Unknown",
                same_as=_opt_str(parsed.get("organizationUrl")),
            ),
            job_location=JobLocation.from_parts(
                address=_opt_str(parsed.get("locationAddress")),
                address_region=_opt_str(parsed.get("locationRegion")),
                address_country=_opt_str(parsed.get("locationCountry")),
            ),
            job_location_type=TELECOMMUTE if _flag(parsed.get("isRemote")) else None,
            base_salary=BaseSalary.from_parts(
                parsed.get("salaryCurrency"),
                parsed.get("salaryMin"),
                parsed.get("salaryMax"),
                parsed.get("salaryUnit"),
            ),
            apply_url=url,
            source=source,
            source_id=f"llm-{stable_hash(url)}",
            skills=tuple(skills),
            industry=_opt_str(parsed.get("industry")),
        )
    except ValueError as e:
        LOG.error("LLM extraction for %s produced an invalid job: %s", url, e)
        return None

    matched = parsed.get("matchedTags") if isinstance(parsed.get("matchedTags"), list) else []
    known = set(niche.tags)
    tags = tuple(dict.fromkeys(t for t in matched if isinstance(t, str) and t in known))
    return Extraction(job=job, tags=tags)


class LlmExtractor:
    """Page text -> (RawJob, matched tags) through one chat round trip."""

    def __init__(self, chat: ChatClient) -> None:
        self.chat = chat

    def extract(self, page_text: str, url: str, niche: NicheConfig, source: str = "scraper") -> Extraction | None:
        reply = self.chat.complete(build_prompt(page_text, url, niche))
        return parse_extraction(reply, url, niche, source)
