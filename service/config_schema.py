# service/config_schema.py
"""Scheduler config: which modules run, with what kwargs, on which trigger.

Accepted files are YAML (``.yml``/``.yaml``) or JSON. Job entries are
normalized on load (derived ``id``, coerced ints and bools) so that
``validate`` and the scheduler see a single shape.
"""
from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

import yaml

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the config is invalid."""


_TRIGGER_FIELDS = ("cron", "interval", "date", "daily_time")
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")

# field -> allow_zero
_INT_FIELDS = {"timeout_sec": True, "max_instances": False, "misfire_grace_time": True}
_BOOL_FIELDS = ("coalesce",)
_STR_FIELDS = ("summary", "description")
_INTERVAL_PASSTHROUGH = frozenset({"timezone", "start_date", "end_date"})


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Read the config from ``path``, else ``$CONFIG_PATH``, else fall back to
    an empty job list. The result always carries ``jobs`` and ``timezone``.
    """
    source = path or os.environ.get("CONFIG_PATH")
    if source:
        cfg = _read_any(source)
        if not isinstance(cfg, dict):
            raise ConfigError(f"Top-level config in {source} must be an object.")
    else:
        logger.info("no config path given; scheduler starts with no jobs")
        cfg = {"jobs": []}

    _apply_top_level_defaults(cfg)
    return cfg


def validate(cfg: dict[str, Any]) -> None:
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a dict.")

    jobs = cfg.get("jobs")
    if jobs is None:
        raise ConfigError("Missing required top-level 'jobs' list.")
    if not isinstance(jobs, list):
        raise ConfigError("'jobs' must be a list.")
    if cfg.get("timezone") is not None and not isinstance(cfg["timezone"], str):
        raise ConfigError("'timezone' must be a string if provided.")

    seen: set[str] = set()
    for idx, job in enumerate(jobs):
        job_id = _validate_job(job, idx)
        if job_id in seen:
            raise ConfigError(f"Duplicate job id '{job_id}'.")
        seen.add(job_id)


def _validate_job(job: Any, idx: int) -> str:
    if not isinstance(job, dict):
        raise ConfigError(f"Job at index {idx} must be an object/dict.")
    module = job.get("module")
    if not isinstance(module, str) or not module.strip():
        raise ConfigError(f"Job {idx}: 'module' is required and must be a non-empty string.")
    job_id = _derive_job_id(job, idx)

    trigger = job.get("trigger")
    if not isinstance(trigger, dict):
        raise ConfigError(f"Job '{job_id}': 'trigger' is required and must be an object.")
    kinds = [k for k in _TRIGGER_FIELDS if trigger.get(k) is not None]
    if len(kinds) != 1:
        raise ConfigError(f"Job '{job_id}': exactly one trigger required among {', '.join(_TRIGGER_FIELDS)}.")
    _validate_trigger(kinds[0], trigger[kinds[0]], job_id)

    for name in _BOOL_FIELDS:
        if name in job:
            _to_bool(job[name], field=name, job_id=job_id)
    for name, allow_zero in _INT_FIELDS.items():
        if name in job:
            _to_int(job[name], field=name, job_id=job_id, allow_zero=allow_zero)
    if "kwargs" in job and not isinstance(job["kwargs"], dict):
        raise ConfigError(f"Job '{job_id}': 'kwargs' must be a dict if provided.")
    for name in _STR_FIELDS:
        if name in job and not isinstance(job[name], str):
            raise ConfigError(f"Job '{job_id}': '{name}' must be a string if provided.")
    return job_id


def _validate_trigger(kind: str, value: Any, job_id: str) -> None:
    if kind == "interval":
        if not isinstance(value, dict):
            raise ConfigError(f"Job '{job_id}': interval must be an object of time kwargs.")
        for unit, amount in value.items():
            if unit not in _INTERVAL_PASSTHROUGH:
                _to_int(amount, field=f"interval.{unit}", job_id=job_id, allow_zero=True)
    elif kind == "cron":
        if not isinstance(value, (str, dict)):
            raise ConfigError(f"Job '{job_id}': cron must be a crontab string or an object.")
    elif kind == "date":
        run_at = value.get("run_at") if isinstance(value, dict) else value
        if not isinstance(run_at, (str, int, float)) or (isinstance(run_at, str) and not run_at.strip()):
            raise ConfigError(f"Job '{job_id}': date must be an ISO-8601 string or epoch seconds.")
    elif kind == "daily_time":
        times = value.get("time") if isinstance(value, dict) else value
        if isinstance(times, str):
            times = [times]
        if not isinstance(times, list) or not times:
            raise ConfigError(f"Job '{job_id}': daily_time needs 'HH:MM' or a list of them.")
        for t in times:
            _validate_time_of_day(t, job_id)


def _validate_time_of_day(value: Any, job_id: str) -> None:
    m = _TIME_RE.match(str(value).strip())
    if not m:
        raise ConfigError(f"Job '{job_id}': daily_time must match HH:MM[:SS] (24h), got {value!r}.")
    hour, minute, second = int(m.group(1)), int(m.group(2)), int(m.group(3) or 0)
    if hour > 23 or minute > 59 or second > 59:
        raise ConfigError(f"Job '{job_id}': daily_time out of range (00:00..23:59:59).")


def _apply_top_level_defaults(cfg: dict[str, Any]) -> None:
    if not isinstance(cfg.get("jobs"), list):
        cfg["jobs"] = []
    tz = cfg.get("timezone")
    if not isinstance(tz, str) or not tz.strip():
        cfg["timezone"] = os.environ.get("TZ", "UTC")
    cfg["jobs"] = [_normalize_job(job, idx) for idx, job in enumerate(cfg["jobs"])]


def _normalize_job(job: Any, idx: int) -> dict[str, Any]:
    if not isinstance(job, dict):
        raise ConfigError(f"Job at index {idx} must be an object/dict.")
    out = dict(job)
    out["id"] = job_id = _derive_job_id(job, idx)
    for name in _BOOL_FIELDS:
        if name in out:
            out[name] = _to_bool(out[name], field=name, job_id=job_id)
    for name, allow_zero in _INT_FIELDS.items():
        if name in out:
            out[name] = _to_int(out[name], field=name, job_id=job_id, allow_zero=allow_zero)
    return out


def _derive_job_id(job: dict[str, Any], idx: int) -> str:
    for key in ("id", "name", "module"):
        v = job.get(key)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return f"job_{idx}"


def _to_bool(value: Any, *, field: str, job_id: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Job '{job_id}': '{field}' must be a boolean (or boolean-like string).")


def _to_int(value: Any, *, field: str, job_id: str, allow_zero: bool) -> int:
    try:
        iv = int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"Job '{job_id}': '{field}' must be an integer.") from err
    if iv < 0 or (iv == 0 and not allow_zero):
        raise ConfigError(f"Job '{job_id}': '{field}' must be >= {'0' if allow_zero else '1'} (got {iv}).")
    return iv


def _read_any(path: str) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}: {e}") from e

    if path.lower().endswith((".yml", ".yaml")):
        try:
            return yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e
