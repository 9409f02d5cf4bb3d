# modules/job_aggregator/lib/sources/__init__.py
from __future__ import annotations

# Importing the adapter modules registers them with the registry.
from . import ashby, google_cse, greenhouse, lever, reliefweb, scraper, serper, smartrecruiters
from .base import BaseSource, BoardSource, SourceError
from .registry import all_kinds, get, register

__all__ = [
    "BaseSource",
    "BoardSource",
    "SourceError",
    "all_kinds",
    "ashby",
    "get",
    "google_cse",
    "greenhouse",
    "lever",
    "register",
    "reliefweb",
    "scraper",
    "serper",
    "smartrecruiters",
]
