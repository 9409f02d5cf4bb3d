"""
"scraper" source: fetch individual job pages and extract them with the LLM.

URLs are consumed from a queue by a single worker with a fixed pause
between items. The pause is the politeness contract with third-party
sites; keep it sequential.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import replace

from ..config import NicheConfig
from ..models import ScrapeOutcome, SourceResult
from .base import BaseSource, error_message
from .llm_extractor import LlmExtractor
from .page_fetcher import PageFetcher
from .registry import register

LOG = logging.getLogger(__name__)


class Scraper:
    def __init__(
        self,
        fetcher: PageFetcher,
        extractor: LlmExtractor,
        *,
        delay_ms: int = 1000,
        min_chars: int = 100,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.fetcher = fetcher
        self.extractor = extractor
        self.delay_ms = max(0, int(delay_ms))
        self.min_chars = max(0, int(min_chars))
        self._sleep = sleep

    def scrape(self, urls: Iterable[str], niche: NicheConfig) -> ScrapeOutcome:
        """
        Fetch + extract every URL in order. Each URL's failure (fetch error,
        short page, no extraction) becomes one error string; the rest continue.
        """
        outcome = ScrapeOutcome()
        queue = deque(u for u in urls if u)

        while queue:
            url = queue.popleft()
            try:
                page = self.fetcher.fetch(url)
                if len(page.text) < self.min_chars:
                    outcome.errors.append(f"{url}: page too short ({len(page.text)} chars), skipping")
                else:
                    extraction = self.extractor.extract(page.text, url, niche, "scraper")
                    if extraction is None:
                        outcome.errors.append(f"{url}: LLM could not extract a job posting")
                    else:
                        if not extraction.job.description and page.content_html:
                            extraction = replace(
                                extraction, job=replace(extraction.job, description=page.content_html)
                            )
                        outcome.results.append(extraction)
            except Exception as e:
                outcome.errors.append(f"{url}: {error_message(e)}")

            if queue and self.delay_ms:
                self._sleep(self.delay_ms / 1000.0)

        return outcome


@register
class ScraperSource(BaseSource):
    """Wraps Scraper for the orchestrator; needs an LLM chat client (`llm`)."""

    kind = "scraper"
    label = "Scraper"

    def collect(self, niche: NicheConfig) -> list[SourceResult]:
        urls = list(niche.scraper_urls)
        if not urls:
            return []
        if self.llm is None:
            LOG.warning("Skipping %d scraper URLs: no LLM configured (OPENAI_API_KEY not set)", len(urls))
            return []

        scraper = Scraper(
            PageFetcher(self.client),
            LlmExtractor(self.llm),
            delay_ms=self.settings.scrape_delay_ms,
            min_chars=self.settings.min_page_chars,
        )
        try:
            outcome = scraper.scrape(urls, niche)
        except Exception as e:
            msg = f"Scraper error: {error_message(e)}"
            LOG.error(msg)
            return [SourceResult(source=self.label, errors=[msg], failed=True)]

        LOG.info("Scraper: extracted %d jobs, %d errors", len(outcome.results), len(outcome.errors))
        return [
            SourceResult(
                source=self.label,
                items=[x.job for x in outcome.results],
                tags={x.job.source_id: list(x.tags) for x in outcome.results},
                errors=list(outcome.errors),
            )
        ]
