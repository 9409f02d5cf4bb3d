from __future__ import annotations

import copy
import logging
from typing import Any

from service import logging_utils as _svc_logging

# Keys redacted at the top level before a record leaves the pipeline.
_REDACT_KEYS = {
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "authorization",
    "auth",
    "bearer",
    "x-api-key",
    "openai_api_key",
    "serper_api_key",
    "google_cse_api_key",
}


def _redact_record(record: dict[str, Any]) -> dict[str, Any]:
    redacted = copy.copy(record)
    for k in list(redacted.keys()):
        lk = str(k).lower()
        if lk in _REDACT_KEYS or lk.endswith("_secret") or lk.endswith("_api_key"):
            redacted[k] = "***REDACTED***"
    return redacted


def activity(record: dict[str, Any]) -> None:
    """
    Write an activity record through service.logging_utils.
    A failing log sink never breaks a run; it degrades to stdlib logging.
    """
    payload = _redact_record(record)
    try:
        _svc_logging.write_activity_log(payload)
        return
    except Exception:
        logging.getLogger("job_aggregator.activity").debug("activity sink failed", exc_info=True)
    logging.getLogger("job_aggregator.activity").info(payload)


def error(record: dict[str, Any]) -> None:
    """Write an error record through service.logging_utils (stdlib fallback)."""
    payload = _redact_record(record)
    try:
        _svc_logging.write_error_log(payload)
        return
    except Exception:
        logging.getLogger("job_aggregator.error").debug("error sink failed", exc_info=True)
    logging.getLogger("job_aggregator.error").error(payload)
