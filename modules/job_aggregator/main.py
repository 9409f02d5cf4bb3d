from __future__ import annotations

from typing import Any

from .lib.config import Settings
from .lib.engine import run_once as _run_engine
from .lib.logging_bridge import activity as log_activity


def run(**kwargs: Any) -> dict[str, Any]:
    """
    Entry point for the 'job_aggregator' module.

    Accepts kwargs (from scheduler/runner), including:
      niche_id: str = "ngo"                 # falls back to NICHE_ID
      sqlite_path: str = "./local/state/jobs.db"
      scrape_delay_ms: int = 1000
      max_search_queries: int = 20
      skip_network: bool = False
      dry_run: bool = False                 # collect only, never write

    Returns the run summary as a dict (runner treats it as meta-only output).
    """
    settings = Settings.from_env_and_kwargs(kwargs)

    log_activity({
        "component": "job_aggregator.main",
        "op": "start",
        "niche": settings.niche_id,
        "flags": {
            "skip_network": settings.skip_network,
            "dry_run": settings.dry_run,
        },
    })

    summary = _run_engine(settings)
    out = summary.to_dict()
    out["message"] = (
        f"{summary.niche}: fetched {summary.fetched}, inserted {summary.inserted}, "
        f"duplicates {summary.duplicates}, errors {len(summary.errors)}"
    )
    return out
