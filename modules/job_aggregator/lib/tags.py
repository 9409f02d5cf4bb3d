from __future__ import annotations

from collections.abc import Iterable, Mapping

from .models import RawJob


def tag_text(text: str, taxonomy: Mapping[str, Iterable[str]]) -> list[str]:
    hay = text.lower()
    return [tag for tag, keywords in taxonomy.items() if any(kw.lower() in hay for kw in keywords if kw)]


def tag_job(job: RawJob, taxonomy: Mapping[str, Iterable[str]]) -> list[str]:
    """
    Keyword fallback classifier: every tag with at least one keyword found
    (case-insensitive substring) in title + description. Taxonomy order; [] when none.
    """
    return tag_text(f"{job.title} {job.description or ''}", taxonomy)
