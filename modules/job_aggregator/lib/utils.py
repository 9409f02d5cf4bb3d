from __future__ import annotations

import hashlib
import os
import re
from datetime import datetime, timezone
from typing import Any


def truthy(v: Any) -> bool:
    """
    Normalize common truthy inputs from env/kwargs.
    Accepts bools or strings like: '1', 'true', 'yes', 'on'.
    """
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if isinstance(v, (int, float)):
        return v != 0
    s = str(v).strip().lower()
    return s in {"1", "true", "yes", "on", "y", "t"}


def now_iso() -> str:
    """
    UTC ISO-8601 timestamp with 'Z' suffix.
    """
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def epoch_ms_to_iso(ms: Any) -> str | None:
    """Lever-style epoch milliseconds -> ISO-8601 UTC, or None if unusable."""
    if ms in (None, "", 0):
        return None
    try:
        dt = datetime.fromtimestamp(float(ms) / 1000.0, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def getenv_str(name: str, default: str | None = None) -> str | None:
    """
    Typed wrapper for environment access. Blank values count as unset.
    """
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    return val.strip()


def stable_hash(value: str, length: int = 12) -> str:
    """Short hex digest used to build deterministic source ids from URLs."""
    return hashlib.sha1(value.encode("utf-8")).hexdigest()[:length]


def title_case_slug(slug: str) -> str:
    """
    Best-effort display name for a board slug:
      "sierraclub"      -> "Sierraclub"
      "sierra-club"     -> "Sierra Club"
      "climateWorks"    -> "Climate Works"
    """
    s = re.sub(r"([a-z])([A-Z])", r"\1 \2", slug or "")
    s = re.sub(r"[-_]+", " ", s)
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), s).strip()


def collapse_ws(s: str | None) -> str:
    return re.sub(r"\s+", " ", s or "").strip()


def posted_utc(value: str | None) -> str | None:
    """
    Sort key for a source-supplied posting date: the instant in UTC as
    "YYYY-MM-DDTHH:MM:SSZ". Offsets ("-05:00", "Z") are applied; naive
    timestamps and bare dates are taken as UTC. Unparseable -> None.
    """
    if not value or not str(value).strip():
        return None
    try:
        dt = datetime.fromisoformat(str(value).strip())
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
