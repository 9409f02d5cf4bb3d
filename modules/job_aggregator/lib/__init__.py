# modules/job_aggregator/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .config import ConfigError, NicheConfig, Settings, available_niches, load_niche
from .engine import run_once
from .models import Job, RawJob, RunSummary, SourceResult
from .query import JobFilters, JobPage, get_job_by_id, get_jobs

# Importing the sources package registers every built-in adapter.
from . import sources as _sources  # noqa: E402,F401

__all__ = [
    "ConfigError",
    "Job",
    "JobFilters",
    "JobPage",
    "NicheConfig",
    "RawJob",
    "RunSummary",
    "Settings",
    "SourceResult",
    "available_niches",
    "get_job_by_id",
    "get_jobs",
    "load_niche",
    "run_once",
]
