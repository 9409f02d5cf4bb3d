# service/logging_utils.py
from __future__ import annotations

import contextlib
import datetime as _dt
import json
import os
import socket
from collections.abc import Iterable
from typing import Any

# ---- Configuration (env-driven, read per write so tests can repoint LOG_DIR) --

_DEFAULT_LOG_DIR = "./local/logs"

# Substrings of KEYS whose values are scrubbed (case-insensitive)
_DEFAULT_REDACT_KEYS = {
    "password",
    "token",
    "apikey",
    "api_key",
    "api-key",
    "secret",
    "authorization",
    "cookie",
    "set-cookie",
}

_REDACTED = "***REDACTED***"

# Host + process metadata (fixed per-process)
_HOSTNAME = socket.gethostname()
_PID = os.getpid()


def _log_dir() -> str:
    return os.getenv("LOG_DIR") or _DEFAULT_LOG_DIR


def _max_bytes() -> int:
    # <=0 disables size rotation; date rotation is inherent in the filename
    try:
        return int(os.getenv("ACTIVITY_LOG_MAX_BYTES", "0"))
    except ValueError:
        return 0


# ---- Public API --------------------------------------------------------------


def write_activity_log(record: dict[str, Any]) -> None:
    """
    Persist a single structured activity record as one JSON line.
    Never mutates the passed-in dict. May raise on I/O or serialization errors.
    """
    _write_jsonl(_log_path_for_today(os.getenv("ACTIVITY_LOG_PREFIX", "activity")), record)


def write_error_log(record: dict[str, Any]) -> None:
    """Persist a single structured error record, parallel to the activity log."""
    _write_jsonl(_log_path_for_today(os.getenv("ERROR_LOG_PREFIX", "error")), record)


def get_activity_log_path() -> str:
    return _log_path_for_today(os.getenv("ACTIVITY_LOG_PREFIX", "activity"))


def redact(record: dict[str, Any], keys: set[str] | None = None) -> dict[str, Any]:
    """Redacted deep copy of `record` (keys matched by case-insensitive substring)."""
    return _redact_deep(record, keys or _DEFAULT_REDACT_KEYS)


# ---- Internal helpers --------------------------------------------------------


def _log_path_for_today(prefix: str) -> str:
    return os.path.join(_log_dir(), f"{prefix}-{_dt.date.today().isoformat()}.jsonl")


def _rotate_file_if_needed(path: str) -> None:
    limit = _max_bytes()
    if limit <= 0:
        return
    try:
        if os.path.getsize(path) < limit:
            return
    except FileNotFoundError:
        return
    rotated = f"{path}.{_dt.datetime.now().strftime('%Y%m%d-%H%M%S')}"
    with contextlib.suppress(FileNotFoundError):
        os.replace(path, rotated)


def _scrub_bearer(value: str) -> str:
    if "bearer " not in value.lower():
        return value
    scheme, _, _rest = value.partition(" ")
    return f"{scheme} {_REDACTED}"


def _key_matches(name: str, patterns: Iterable[str]) -> bool:
    n = name.lower()
    return any(pat in n for pat in patterns)


def _redact_deep(value: Any, patterns: Iterable[str]) -> Any:
    if isinstance(value, dict):
        return {
            k: (_REDACTED if isinstance(k, str) and _key_matches(k, patterns) else _redact_deep(v, patterns))
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact_deep(v, patterns) for v in value]
    if isinstance(value, str):
        return _scrub_bearer(value)
    return value


def _write_jsonl(path: str, record: dict[str, Any]) -> None:
    """
    Redact, stamp host/pid, rotate by size when configured, then append one
    line with O_APPEND (atomic on POSIX). One retry on OSError.
    """
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    _rotate_file_if_needed(path)

    payload = _redact_deep(record, _DEFAULT_REDACT_KEYS)
    meta = payload.get("_meta") if isinstance(payload.get("_meta"), dict) else {}
    payload["_meta"] = {**meta, "host": _HOSTNAME, "pid": _PID}

    # Serialize before touching the file; default=str covers datetimes/paths
    data = (json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n").encode("utf-8")

    def _append_once() -> None:
        fd = os.open(path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o644)
        try:
            os.write(fd, data)
        finally:
            os.close(fd)

    try:
        _append_once()
    except OSError:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        _append_once()
