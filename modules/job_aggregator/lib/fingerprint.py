from __future__ import annotations

import hashlib

from .models import RawJob

FINGERPRINT_LEN = 16
_SEP = "|"


def _norm(s: str) -> str:
    return " ".join(s.lower().split())


def fingerprint(job: RawJob) -> str:
    """
    Cross-source dedup key: sha256 over normalized (title, org, location-or-"remote"),
    truncated to 16 hex chars. Pure; case/whitespace differences in title and
    org do not change the result.
    """
    loc = job.job_location.address if job.job_location and job.job_location.address else "remote"
    normalized = _SEP.join(
        (
            _norm(job.title),
            _norm(job.hiring_organization.name),
            loc.lower().strip(),
        )
    )
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:FINGERPRINT_LEN]
