"""
Aggregation orchestrator: run every configured source for a niche, then
fingerprint, tag and store what they returned.

Features:
  - Sources run one at a time in a fixed order (sector API, ATS boards,
    search discovery, scraper URLs)
  - Each source call yields a SourceResult; failures are folded into the
    run summary, never raised
  - Dependency injection for testability (`get_source`, `client`, `llm`)
  - Structured activity records via `logging_bridge`
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable
from typing import Any

from modules._shared.utils import OpenAIChat

from . import db, logging_bridge
from .config import ATS_PLATFORMS, NicheConfig, Settings
from .fingerprint import fingerprint
from .http_client import HttpClient
from .models import RawJob, RunSummary, SourceResult
from .sources.base import BaseSource, error_message
from .tags import tag_job
from .utils import now_iso

LOG = logging.getLogger(__name__)


# =============================================================================
# DEFAULT SOURCE LOOKUP (PRODUCTION)
# =============================================================================
def _default_get_source(kind: str) -> type[BaseSource]:
    from .sources.registry import get as get_source_class

    return get_source_class(kind)


def plan_kinds(settings: Settings, niche: NicheConfig) -> list[str]:
    """
    Source kinds to run for this niche, in execution order. Google CSE wins
    over Serper whenever its credentials are present.
    """
    kinds: list[str] = []
    if any(a.type == "reliefweb" for a in niche.api_sources):
        kinds.append("reliefweb")
    kinds.extend(p for p in ATS_PLATFORMS if niche.boards(p))
    if niche.serp_queries:
        kinds.append("google_cse" if settings.has_google_cse else "serper")
    if niche.scraper_urls:
        kinds.append("scraper")
    return kinds


def build_llm(settings: Settings) -> OpenAIChat | None:
    if not settings.has_llm:
        return None
    return OpenAIChat(
        model=settings.llm_model,
        api_key=settings.openai_api_key,
        max_tokens=settings.llm_max_tokens,
    )


# =============================================================================
# MAIN ORCHESTRATOR
# =============================================================================
def run_once(
    settings: Settings,
    niche: NicheConfig | None = None,
    *,
    get_source: Callable[[str], type[BaseSource]] | None = None,
    client: HttpClient | None = None,
    llm: Any = None,
) -> RunSummary:
    """
    Run one aggregation cycle.

    Args:
        settings: DB path, politeness/quota knobs, credentials, flags.
        niche: topic configuration; defaults to `settings.niche()`.
        get_source: optional override to inject source classes (tests).
        client: shared HttpClient (one is created and closed when omitted).
        llm: chat client for the scraper source (built from settings when omitted).

    Only setup failures (unknown niche, unusable store) raise.
    """
    start_ns = time.perf_counter_ns()
    niche = niche or settings.niche()
    get_source_func = get_source or _default_get_source
    summary = RunSummary(niche=niche.id)

    kinds = plan_kinds(settings, niche)
    logging_bridge.activity({
        "component": "job_aggregator.engine",
        "op": "start",
        "niche": niche.id,
        "planned_kinds": kinds,
        "skip_network": settings.skip_network,
        "dry_run": settings.dry_run,
    })

    if not settings.dry_run:
        db.init_db(settings.sqlite_path)

    own_client = client is None
    client = client or HttpClient(timeout=settings.http_timeout)
    if llm is None:
        llm = build_llm(settings)
    try:
        results = _collect_all(settings, niche, kinds, get_source_func, client, llm, summary)
    finally:
        if own_client:
            client.close()

    # -------------------------------------------------------------------------
    # FOLD: one flat job list, LLM tags keyed by source_id, all errors
    # -------------------------------------------------------------------------
    jobs: list[RawJob] = []
    llm_tags: dict[str, list[str]] = {}
    for res in results:
        jobs.extend(res.items)
        llm_tags.update(res.tags)
        summary.errors.extend(res.errors)
    summary.fetched = len(jobs)
    LOG.info("Total fetched: %d raw jobs", summary.fetched)

    # -------------------------------------------------------------------------
    # PERSIST: fingerprint, tag, insert (duplicate-aware)
    # -------------------------------------------------------------------------
    if settings.dry_run:
        logging_bridge.activity({
            "component": "job_aggregator.engine",
            "op": "dry_run",
            "niche": niche.id,
            "fetched": summary.fetched,
        })
    else:
        t0 = time.perf_counter_ns()
        _persist(settings.sqlite_path, niche, jobs, llm_tags, summary)
        summary.durations_us["_persist"] = int((time.perf_counter_ns() - t0) // 1000)

    total_us = int((time.perf_counter_ns() - start_ns) // 1000)
    summary.durations_us["_total"] = total_us
    logging_bridge.activity({
        "component": "job_aggregator.engine",
        "op": "summary",
        "niche": niche.id,
        "fetched": summary.fetched,
        "inserted": summary.inserted,
        "duplicates": summary.duplicates,
        "error_count": len(summary.errors),
        "by_source": summary.by_source,
        "durations_us": summary.durations_us,
        "total_us": total_us,
    })
    return summary


# =============================================================================
# INTERNALS
# =============================================================================
def _collect_all(
    settings: Settings,
    niche: NicheConfig,
    kinds: list[str],
    get_source_func: Callable[[str], type[BaseSource]],
    client: HttpClient,
    llm: Any,
    summary: RunSummary,
) -> list[SourceResult]:
    results: list[SourceResult] = []
    for kind in kinds:
        t0 = time.perf_counter_ns()

        # Skip network I/O if requested
        if settings.skip_network:
            logging_bridge.activity({
                "component": "job_aggregator.engine",
                "op": "skipped_kind",
                "niche": niche.id,
                "kind": kind,
                "reason": "skip_network",
            })
            continue

        label = kind
        try:
            source_cls = get_source_func(kind)
            label = getattr(source_cls, "label", "") or kind
            source = source_cls(client, settings, llm=llm)
            kind_results = source.collect(niche)
        except Exception as e:
            msg = f"{label} error: {error_message(e)}"
            LOG.error(msg)
            kind_results = [SourceResult(source=label, errors=[msg], failed=True)]

        dt_us = int((time.perf_counter_ns() - t0) // 1000)
        summary.durations_us[kind] = dt_us
        found = sum(len(r.items) for r in kind_results)
        summary.by_source[kind] = summary.by_source.get(kind, 0) + found
        failed = [r.source for r in kind_results if r.failed]
        logging_bridge.activity({
            "component": "job_aggregator.engine",
            "op": "source_failed" if failed and not found else "source_done",
            "niche": niche.id,
            "kind": kind,
            "calls": len(kind_results),
            "found": found,
            "failed_calls": failed,
            "errors": sum(len(r.errors) for r in kind_results),
            "duration_us": dt_us,
        })
        results.extend(kind_results)
    return results


def _persist(
    sqlite_path: str,
    niche: NicheConfig,
    jobs: list[RawJob],
    llm_tags: dict[str, list[str]],
    summary: RunSummary,
) -> None:
    with db.connect(sqlite_path) as conn:
        for raw in jobs:
            tags = llm_tags[raw.source_id] if raw.source_id in llm_tags else tag_job(raw, niche.tags)
            row = raw.to_row(
                niche=niche.id,
                fingerprint=fingerprint(raw),
                tags=tags,
                scraped_at=now_iso(),
            )
            try:
                db.upsert_job(conn, row)
                summary.inserted += 1
            except db.DuplicateJobError:
                summary.duplicates += 1
            except sqlite3.Error as e:
                summary.errors.append(f"DB insert error: {error_message(e)}")
                logging_bridge.error({
                    "component": "job_aggregator.engine",
                    "op": "insert",
                    "niche": niche.id,
                    "source": raw.source,
                    "source_id": raw.source_id,
                    "error": repr(e),
                })
