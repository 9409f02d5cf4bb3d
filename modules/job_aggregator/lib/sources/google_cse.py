from __future__ import annotations

import logging
from collections.abc import Sequence

from ..config import NicheConfig
from ..models import RawJob, SourceResult
from .base import error_message, usable_response
from .discovery import SearchSource
from .registry import register

LOG = logging.getLogger(__name__)

CSE_API = "https://www.googleapis.com/customsearch/v1"


@register
class GoogleCseSource(SearchSource):
    """
    Google Programmable Search (Custom Search JSON API).
    Free tier is 100 queries/day, so batches are capped by `max_search_queries`.
    """

    kind = "google_cse"
    label = "Google CSE"
    source_name = "google_cse"
    id_prefix = "gcse"

    def search(
        self,
        query: str,
        *,
        date_restrict: str | None = None,
        site_search: str | None = None,
        num: int = 10,
    ) -> list[RawJob]:
        key, cx = self.settings.google_cse_api_key, self.settings.google_cse_cx
        if not key or not cx:
            LOG.warning("Skipping Google CSE: GOOGLE_CSE_API_KEY or GOOGLE_CSE_CX not set")
            return []

        params = {"key": key, "cx": cx, "q": query, "num": str(max(1, min(int(num), 10)))}
        if date_restrict:
            params["dateRestrict"] = date_restrict
        if site_search:
            params["siteSearch"] = site_search
            params["siteSearchFilter"] = "i"

        resp = self.client.get(CSE_API, params=params)
        if not usable_response(resp, "Google CSE"):
            return []
        data = self._json(resp)
        items = data.get("items") if isinstance(data, dict) else None

        out: list[RawJob] = []
        for item in items or []:
            if not isinstance(item, dict):
                continue
            job = self.result_to_raw(item.get("title") or "", item.get("link") or "", item.get("snippet"))
            if job is not None:
                out.append(job)
        return out

    def search_batch(
        self,
        queries: Sequence[str],
        *,
        date_restrict: str = "m1",
        max_queries: int = 20,
        errors: list[str] | None = None,
    ) -> list[RawJob]:
        """
        Run at most `max_queries` queries, deduplicating by apply URL.
        A failing query is logged (and appended to `errors` when given) without
        stopping the batch.
        """
        seen: set[str] = set()
        out: list[RawJob] = []
        for query in list(queries)[: max(0, max_queries)]:
            try:
                jobs = self.search(query, date_restrict=date_restrict)
            except Exception as e:
                msg = f'Google CSE ["{query}"] error: {error_message(e)}'
                LOG.warning(msg)
                if errors is not None:
                    errors.append(msg)
                continue
            for job in jobs:
                if job.apply_url not in seen:
                    seen.add(job.apply_url)
                    out.append(job)
            LOG.info('Google CSE ["%s"]: %d results', query, len(jobs))
        return out

    def collect(self, niche: NicheConfig) -> list[SourceResult]:
        if not niche.serp_queries:
            return []
        result = SourceResult(source=self.label)
        try:
            result.items = self.search_batch(
                niche.serp_queries,
                date_restrict=self.settings.search_date_restrict,
                max_queries=self.settings.max_search_queries,
                errors=result.errors,
            )
        except Exception as e:
            result.errors.append(f"Google CSE error: {error_message(e)}")
            result.failed = True
        return [result]
