# service/runner.py
"""Run one module's ``run(**kwargs)`` and record the outcome in the activity log.

Both the scheduler and ``cli run`` go through :func:`run_module_once`. Job
kwargs arrive as YAML scalars or CLI ``k=v`` strings and are coerced here so
that modules receive real bools, numbers and JSON containers.
"""
from __future__ import annotations

import importlib
import json
import logging
import os
import time
import uuid
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from service.logging_utils import write_activity_log

log = logging.getLogger(__name__)

_TRUE_WORDS = frozenset({"true", "t", "yes", "y", "1"})
_FALSE_WORDS = frozenset({"false", "f", "no", "n", "0"})
_JSON_BRACKETS = (("{", "}"), ("[", "]"))


def now_iso() -> str:
    return datetime.now(timezone.utc).astimezone().isoformat(timespec="seconds")


def _coerce_scalar(text: str) -> Any:
    """Best-effort conversion of a kwarg string: JSON container, bool, int, float, else str."""
    s = text.strip()
    if any(s.startswith(a) and s.endswith(b) for a, b in _JSON_BRACKETS):
        try:
            return json.loads(s)
        except json.JSONDecodeError:
            pass
    low = s.lower()
    if low in _TRUE_WORDS:
        return True
    if low in _FALSE_WORDS:
        return False
    try:
        return int(s)
    except ValueError:
        pass
    try:
        return float(s)
    except ValueError:
        return s


def _normalize_kwargs_types(kwargs: Mapping[str, object] | None) -> dict[str, object]:
    """
    Keys ending in ``_env`` name an environment variable; the value becomes
    ``os.getenv(name, "")``. Every other string is passed through
    :func:`_coerce_scalar`. Non-strings are left alone.
    """
    out: dict[str, object] = {}
    for key, value in (kwargs or {}).items():
        if not isinstance(value, str):
            out[key] = value
        elif str(key).endswith("_env"):
            out[key] = os.getenv(value.strip(), "")
        else:
            out[key] = _coerce_scalar(value)
    return out


def _resolve_callable(module_path: str) -> Callable[..., Any]:
    mod = importlib.import_module(module_path)
    fn = getattr(mod, "run", None)
    if not callable(fn):
        raise AttributeError(f"Module {module_path!r} does not define a callable `run(**kwargs)`.")
    return fn


@dataclass
class RunResult:
    ok: bool
    message: str
    meta: dict[str, Any] = field(default_factory=dict)


def _coerce_result(value: Any) -> RunResult:
    # modules may return None, a summary dict (optional "message"), or a plain message
    if value is None:
        return RunResult(ok=True, message="OK")
    if isinstance(value, dict):
        return RunResult(ok=True, message=str(value.get("message", "OK")), meta=value)
    if isinstance(value, str):
        return RunResult(ok=True, message=value)
    raise TypeError(f"Module run() returned {type(value).__name__}; expected None, dict or str")


def _call_with_timeout(fn: Callable[..., Any], kwargs: dict[str, object], timeout_sec: int | None) -> Any:
    """
    Call `fn` on a worker thread and wait at most `timeout_sec`. On timeout the
    worker is abandoned (Python threads cannot be killed) and the caller gets
    TimeoutError right away.
    """
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="runner")
    try:
        fut = pool.submit(fn, **kwargs)
        try:
            return fut.result(timeout=timeout_sec or None)
        except FutureTimeout:
            raise TimeoutError(f"Module run timed out after {timeout_sec}s") from None
    finally:
        pool.shutdown(wait=False, cancel_futures=True)


def run_module_once(
    module: str,
    kwargs: dict[str, object] | None = None,
    trigger_type: str = "manual",
    job_context: dict[str, object] | None = None,
    timeout_sec: int | None = None,
) -> tuple[dict[str, Any] | None, str]:
    """
    Import ``module`` and call its ``run`` with normalized kwargs.

    Returns ``(meta, run_id)`` where meta is the module's summary dict or
    None. Whatever the module raises is logged to the activity JSONL and
    then re-raised for the caller to report.
    """
    run_id = uuid.uuid4().hex
    context: dict[str, Any] = dict(job_context or {})
    context.update(run_id=run_id, module=module, trigger_type=trigger_type, started_at=now_iso())

    kw = _normalize_kwargs_types(kwargs)
    fn = _resolve_callable(module)

    failure: BaseException | None = None
    t0 = time.perf_counter_ns()
    try:
        result = _coerce_result(_call_with_timeout(fn, kw, timeout_sec))
    except TimeoutError as e:
        failure = e
        result = RunResult(ok=False, message=str(e), meta={"timeout_sec": timeout_sec})
    except Exception as e:
        failure = e
        result = RunResult(ok=False, message=str(e), meta={"exception_type": type(e).__name__})
    duration_ms = (time.perf_counter_ns() - t0) // 1_000_000

    try:
        write_activity_log({
            "ts": now_iso(),
            "run_id": run_id,
            "module": module,
            "trigger_type": trigger_type,
            "ok": result.ok,
            "message": result.message,
            "duration_ms": duration_ms,
            "context": context,
            "kwargs": kw,
            "meta": result.meta,
        })
    except OSError as e:
        log.error("activity log write failed for run %s: %s", run_id, e)

    if failure is not None:
        raise failure
    return (result.meta or None), run_id
