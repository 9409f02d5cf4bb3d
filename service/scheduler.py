# service/scheduler.py
"""APScheduler wiring: config jobs -> triggers -> ``runner.run_module_once``."""
from __future__ import annotations

import logging
import os
import threading
import time as _time
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Any

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from . import config_schema, runner
from .logging_utils import write_activity_log

LOG = logging.getLogger(__name__)

# every job runs at most once at a time and collapses missed fires
JOB_DEFAULTS = {"coalesce": True, "max_instances": 1}

_INTERVAL_UNITS = ("weeks", "days", "hours", "minutes", "seconds")
_INTERVAL_KEYS = frozenset(_INTERVAL_UNITS) | {"jitter", "timezone", "start_date", "end_date"}
_CRON_KEYS = frozenset({"second", "minute", "hour", "day", "day_of_week", "month", "timezone", "start_date", "end_date", "jitter"})
_DAILY_KEYS = frozenset({"time", "day_of_week", "timezone"})


@dataclass(frozen=True, slots=True)
class JobSpec:
    id: str
    trigger: Any
    module: str
    kwargs: dict[str, Any] = field(default_factory=dict)
    timeout_sec: int | None = None
    max_instances: int = 1
    coalesce: bool = True
    misfire_grace_time: int | None = None
    summary: str | None = None


class SchedulerController:
    """Handle returned by :func:`start`; the CLI blocks on ``join`` and calls ``stop`` on signals."""

    def __init__(self, scheduler: BackgroundScheduler) -> None:
        self._scheduler = scheduler
        self._done = threading.Event()

    def stop(self) -> None:
        if self._scheduler.running:
            # in-flight ingestion runs are left to finish on their own
            self._scheduler.shutdown(wait=False)
            LOG.info("scheduler stopped")
        self._done.set()

    def join(self, timeout: float | None = None) -> bool:
        return self._done.wait(timeout=timeout)

    def get_job_ids(self) -> Iterator[str]:
        return iter([job.id for job in self._scheduler.get_jobs()])


def start(config_path: str | None = None) -> SchedulerController:
    """Load and validate the config, register every job, and start a background scheduler."""
    cfg = config_schema.load_config(config_path)
    config_schema.validate(cfg)
    tz = _resolve_timezone(cfg)

    scheduler = BackgroundScheduler(
        timezone=tz,
        job_defaults=dict(JOB_DEFAULTS),
        executors={"default": ThreadPoolExecutor(_int_or(cfg.get("executor_workers"), 4))},
        jobstores={"default": MemoryJobStore()},
    )
    for raw in cfg.get("jobs", []):
        try:
            spec = _make_job_spec(raw, default_job_defaults=JOB_DEFAULTS, tz=tz)
        except (ValueError, KeyError):
            LOG.exception("job %r skipped: bad trigger or module", raw.get("id") or raw.get("module"))
            continue
        _add_job(scheduler, spec)

    scheduler.start()
    LOG.info("scheduler running (%d job(s), tz=%s)", len(scheduler.get_jobs()), tz)
    return SchedulerController(scheduler)


def preview_trigger(trigger: Any, tz: Any, count: int = 6, start: datetime | None = None) -> list[datetime]:
    """
    Next `count` fire times of `trigger` at or after `start` (default: now
    in `tz`). Each hit advances the clock by 1µs so lookups move forward.
    """
    now = start or datetime.now(tz=tz)
    prev: datetime | None = None
    fires: list[datetime] = []
    while len(fires) < count:
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        fires.append(nxt)
        prev, now = nxt, nxt + timedelta(microseconds=1)
    return fires


def _resolve_timezone(cfg: dict[str, Any]) -> Any:
    """APScheduler 3.x wants pytz zones. Unknown names degrade to UTC."""
    name = cfg.get("timezone") or os.getenv("TZ") or "UTC"
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        LOG.warning("unknown timezone %r, scheduling in UTC", name)
        return pytz.UTC


def _tz(value: Any, default: Any) -> Any:
    if not value:
        return default
    if isinstance(value, str):
        return pytz.timezone(value)
    return value


def _make_job_spec(raw: dict[str, Any], default_job_defaults: dict[str, Any], tz: Any) -> JobSpec:
    module = raw.get("module")
    if not module:
        raise ValueError("job needs a 'module'")
    if not raw.get("trigger"):
        raise ValueError(f"job {module!r} needs a 'trigger'")

    return JobSpec(
        id=str(raw.get("id") or raw.get("name") or module),
        trigger=build_trigger(raw["trigger"], tz),
        module=module,
        kwargs=dict(raw.get("kwargs") or {}),
        timeout_sec=_int_or(raw.get("timeout_sec"), None),
        max_instances=_int_or(raw.get("max_instances"), default_job_defaults.get("max_instances", 1)),
        coalesce=bool(raw.get("coalesce", default_job_defaults.get("coalesce", True))),
        misfire_grace_time=_int_or(raw.get("misfire_grace_time"), None),
        summary=raw.get("summary") or raw.get("description"),
    )


def build_trigger(trig_def: dict[str, Any], tz: Any) -> Any:
    """
    Turn a config ``trigger`` block into an APScheduler trigger.

    Exactly one key is allowed::

        interval:   {weeks|days|hours|minutes|seconds, jitter?, start_date?, end_date?, timezone?}
        cron:       "m h dom mon dow"  or  {second?, minute?, hour?, day?, day_of_week?, month?, ...}
        date:       ISO-8601 | epoch   or  {run_at, timezone?}
        daily_time: "HH:MM[:SS]" | [...]  or  {time, day_of_week?, timezone?}

    A ``timezone`` inside the block overrides the scheduler's.
    """
    if not isinstance(trig_def, dict):
        raise ValueError(f"trigger must be a mapping, got {type(trig_def).__name__}")
    kinds = [k for k in _TRIGGER_BUILDERS if trig_def.get(k) is not None]
    if len(kinds) != 1:
        raise ValueError(f"trigger needs exactly one of {', '.join(_TRIGGER_BUILDERS)} (got {kinds or 'none'})")
    kind = kinds[0]
    return _TRIGGER_BUILDERS[kind](trig_def[kind], tz)


def _check_keys(kind: str, spec: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(spec) - allowed
    if unknown:
        raise ValueError(f"{kind} has unknown field(s): {sorted(unknown)}")


def _non_negative(spec: dict[str, Any], name: str) -> int:
    try:
        v = int(spec.get(name, 0))
    except (TypeError, ValueError) as err:
        raise ValueError(f"interval.{name} must be an integer") from err
    if v < 0:
        raise ValueError(f"interval.{name} must be >= 0")
    return v


def _interval_trigger(spec: Any, tz: Any) -> IntervalTrigger:
    if not isinstance(spec, dict):
        raise ValueError("interval must be an object with time fields")
    _check_keys("interval", spec, _INTERVAL_KEYS)

    kwargs: dict[str, Any] = {}
    for unit in _INTERVAL_UNITS:
        amount = _non_negative(spec, unit)
        if amount:
            kwargs[unit] = amount
    if not kwargs:
        raise ValueError("interval needs at least one non-zero unit")
    jitter = _non_negative(spec, "jitter")
    if jitter:
        kwargs["jitter"] = jitter
    kwargs.update({k: spec[k] for k in ("start_date", "end_date") if k in spec})
    return IntervalTrigger(timezone=_tz(spec.get("timezone"), tz), **kwargs)


def _cron_trigger(spec: Any, tz: Any) -> CronTrigger:
    if isinstance(spec, str):
        n_fields = len(spec.split())
        if n_fields != 5:
            raise ValueError(f"cron string must have 5 fields (got {n_fields}): {spec!r}")
        return CronTrigger.from_crontab(spec, timezone=tz)
    if not isinstance(spec, dict):
        raise ValueError("cron must be a crontab string or an object")
    _check_keys("cron", spec, _CRON_KEYS)

    opts = {k: spec.get(k) for k in ("day", "day_of_week", "month", "start_date", "end_date", "jitter")}
    return CronTrigger(
        second=spec.get("second", 0),
        minute=spec.get("minute", 0),
        hour=spec.get("hour", 0),
        timezone=_tz(spec.get("timezone"), tz),
        **opts,
    )


def _date_trigger(spec: Any, tz: Any) -> DateTrigger:
    run_at = spec.get("run_at") if isinstance(spec, dict) else spec
    zone = _tz(spec.get("timezone"), tz) if isinstance(spec, dict) else tz
    if run_at is None:
        raise ValueError("date trigger needs 'run_at'")

    if isinstance(run_at, (int, float)):
        when = datetime.fromtimestamp(run_at, tz=timezone.utc).astimezone(zone)
    else:
        try:
            when = datetime.fromisoformat(str(run_at))
        except ValueError as e:
            raise ValueError(f"date.run_at is not ISO-8601: {run_at!r}") from e
        if when.tzinfo is None:
            # pytz zones must localize, a plain replace() picks the LMT offset
            when = zone.localize(when) if hasattr(zone, "localize") else when.replace(tzinfo=zone)
    return DateTrigger(run_date=when, timezone=zone)


def _daily_time_trigger(spec: Any, tz: Any) -> Any:
    """One CronTrigger per distinct time of day, OR-ed together when there are several."""
    if isinstance(spec, str):
        spec = {"time": spec}
    if not isinstance(spec, dict):
        raise ValueError("daily_time must be an object or 'HH:MM' string")
    _check_keys("daily_time", spec, _DAILY_KEYS)

    times = spec.get("time")
    if not times:
        raise ValueError("daily_time needs 'time'")
    if isinstance(times, str):
        times = [times]

    zone = _tz(spec.get("timezone"), tz)
    dow = spec.get("day_of_week")
    triggers = [
        CronTrigger(hour=h, minute=m, second=s, day_of_week=dow, timezone=zone)
        for h, m, s in sorted({_parse_time(str(t)) for t in times})
    ]
    if len(triggers) == 1:
        return triggers[0]
    return OrTrigger(triggers)


def _parse_time(s: str) -> tuple[int, int, int]:
    parts = s.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"daily_time.time must be 'HH:MM' or 'HH:MM:SS', got {s!r}")
    try:
        hms = [int(p) for p in parts] + [0] * (3 - len(parts))
    except ValueError as err:
        raise ValueError(f"daily_time.time has a non-numeric part: {s!r}") from err
    t = time(*hms)
    return t.hour, t.minute, t.second


_TRIGGER_BUILDERS = {
    "interval": _interval_trigger,
    "cron": _cron_trigger,
    "date": _date_trigger,
    "daily_time": _daily_time_trigger,
}


def _add_job(scheduler: BackgroundScheduler, spec: JobSpec) -> None:
    def _fire() -> None:
        t0 = _time.perf_counter_ns()
        LOG.info("job %s: running %s", spec.id, spec.module)
        try:
            meta, _run_id = runner.run_module_once(
                spec.module,
                kwargs=dict(spec.kwargs),
                timeout_sec=spec.timeout_sec,
                trigger_type="scheduled",
                job_context={
                    "job_id": spec.id,
                    "module": spec.module,
                    "now_iso": datetime.now(timezone.utc).isoformat(),
                },
            )
        except Exception:
            LOG.exception("job %s failed", spec.id)
            _record_fire(spec, "error", _elapsed_ms(t0))
            return
        elapsed = _elapsed_ms(t0)
        LOG.info("job %s: done in %d ms", spec.id, elapsed)
        _record_fire(spec, "ok", elapsed, meta)

    scheduler.add_job(
        func=_fire,
        trigger=spec.trigger,
        id=spec.id,
        max_instances=spec.max_instances,
        coalesce=spec.coalesce,
        misfire_grace_time=spec.misfire_grace_time,
        replace_existing=True,
    )
    LOG.debug("registered job %s (%s) trigger=%s summary=%r", spec.id, spec.module, spec.trigger, spec.summary)

    if os.getenv("SCHEDULER_PREVIEW") == "1":
        upcoming = preview_trigger(spec.trigger, scheduler.timezone, count=int(os.getenv("SCHEDULER_PREVIEW_COUNT", "6")))
        LOG.info("job %s next fires: %s", spec.id, ", ".join(t.isoformat() for t in upcoming) or "(none)")


def _elapsed_ms(t0_ns: int) -> int:
    return (_time.perf_counter_ns() - t0_ns) // 1_000_000


def _record_fire(spec: JobSpec, status: str, duration_ms: int, result: Any = None) -> None:
    try:
        write_activity_log({
            "ts": datetime.now(timezone.utc).isoformat(),
            "component": "scheduler",
            "op": "job_run",
            "job_id": spec.id,
            "module": spec.module,
            "status": status,
            "duration_ms": duration_ms,
            "summary": spec.summary,
            "result": result if isinstance(result, dict) else None,
        })
    except OSError:
        LOG.debug("activity log write failed for job %s", spec.id, exc_info=True)


def _int_or(v: Any, default: int | None) -> int | None:
    try:
        return default if v is None else int(v)
    except (TypeError, ValueError):
        return default
