from __future__ import annotations

import logging

from ..config import NicheConfig
from ..models import RawJob, SourceResult
from .base import error_message, usable_response
from .discovery import SearchSource
from .registry import register

LOG = logging.getLogger(__name__)

SERPER_API = "https://google.serper.dev/search"


@register
class SerperSource(SearchSource):
    """Serper.dev Google SERP API; used only when Google CSE is not configured."""

    kind = "serper"
    label = "Serper"
    source_name = "serper"
    id_prefix = "serp"

    def search(self, query: str, *, num: int = 30) -> list[RawJob]:
        api_key = self.settings.serper_api_key
        if not api_key:
            LOG.warning("Skipping Serper: SERPER_API_KEY not set")
            return []

        resp = self.client.post(
            SERPER_API,
            json_body={"q": query, "num": num},
            headers={"X-API-KEY": api_key, "Content-Type": "application/json"},
        )
        if not usable_response(resp, "Serper"):
            return []
        data = self._json(resp)
        organic = data.get("organic") if isinstance(data, dict) else None

        out: list[RawJob] = []
        for r in organic or []:
            if not isinstance(r, dict):
                continue
            job = self.result_to_raw(r.get("title") or "", r.get("link") or "", r.get("snippet"))
            if job is not None:
                out.append(job)
        return out

    def collect(self, niche: NicheConfig) -> list[SourceResult]:
        results: list[SourceResult] = []
        for query in niche.serp_queries:
            tag = f'Serper ["{query}"]'
            try:
                jobs = self.search(query)
                LOG.info("%s: fetched %d jobs", tag, len(jobs))
                results.append(SourceResult(source=tag, items=jobs))
            except Exception as e:
                msg = f"{tag} error: {error_message(e)}"
                LOG.error(msg)
                results.append(SourceResult(source=tag, errors=[msg], failed=True))
        return results
