from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass, field, replace
from typing import Any

EMPLOYMENT_TYPES = ("FULL_TIME", "PART_TIME", "CONTRACT", "TEMPORARY", "INTERN", "VOLUNTEER")
SALARY_UNITS = ("YEAR", "MONTH", "DAY", "HOUR")
JOB_SOURCES = (
    "greenhouse",
    "lever",
    "ashby",
    "smartrecruiters",
    "reliefweb",
    "serper",
    "google_cse",
    "scraper",
)
JOB_STATUSES = ("active", "expired", "duplicate")
TELECOMMUTE = "TELECOMMUTE"
MAX_SKILLS = 15

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def _blank_to_none(v: Any) -> str | None:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _amount(v: Any) -> float | None:
    """Coerce '35,000' / 35000 / '35000.0' to float; non-positive or junk -> None."""
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, str):
        v = v.replace(",", "").strip()
        if not v:
            return None
    try:
        n = float(v)
    except (TypeError, ValueError):
        return None
    return n if n > 0 else None


# -----------------------------
# Nested value types
# -----------------------------
@dataclass(frozen=True)
class HiringOrganization:
    name: str
    same_as: str | None = None
    logo: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("hiring_organization.name must be a non-empty string")


@dataclass(frozen=True)
class JobLocation:
    """
    Either meaningfully populated or absent: constructing one with no
    address/region/country is an error. Use `from_parts` in adapters.
    """

    address: str | None = None
    postal_code: str | None = None
    address_region: str | None = None
    address_country: str | None = None

    def __post_init__(self) -> None:
        if not (self.address or self.address_region or self.address_country):
            raise ValueError("job_location needs at least one of address/region/country")

    @classmethod
    def from_parts(
        cls,
        address: Any = None,
        postal_code: Any = None,
        address_region: Any = None,
        address_country: Any = None,
    ) -> JobLocation | None:
        address = _blank_to_none(address)
        address_region = _blank_to_none(address_region)
        address_country = _blank_to_none(address_country)
        if not (address or address_region or address_country):
            return None
        return cls(
            address=address,
            postal_code=_blank_to_none(postal_code),
            address_region=address_region,
            address_country=address_country,
        )


@dataclass(frozen=True)
class BaseSalary:
    currency: str
    min_value: float | None = None
    max_value: float | None = None
    unit_text: str = "YEAR"

    def __post_init__(self) -> None:
        if not isinstance(self.currency, str) or not _CURRENCY_RE.match(self.currency):
            raise ValueError(f"base_salary.currency must be a 3-letter code, got {self.currency!r}")
        if self.min_value is None and self.max_value is None:
            raise ValueError("base_salary needs min_value or max_value")
        if self.unit_text not in SALARY_UNITS:
            raise ValueError(f"base_salary.unit_text must be one of {SALARY_UNITS}")

    @classmethod
    def from_parts(
        cls,
        currency: Any,
        min_value: Any = None,
        max_value: Any = None,
        unit_text: Any = None,
    ) -> BaseSalary | None:
        """
        Build only when a currency and at least one amount are present.
        An unrecognised unit label falls back to YEAR.
        """
        cur = (_blank_to_none(currency) or "").upper()
        lo, hi = _amount(min_value), _amount(max_value)
        if not _CURRENCY_RE.match(cur) or (lo is None and hi is None):
            return None
        unit = (_blank_to_none(unit_text) or "").upper()
        return cls(currency=cur, min_value=lo, max_value=hi, unit_text=unit if unit in SALARY_UNITS else "YEAR")


# -----------------------------
# Canonical job shapes
# -----------------------------
@dataclass(frozen=True)
class RawJob:
    """
    Canonical intermediate job produced by every source adapter.

    `source_id` is deterministic per (source, upstream listing) so that the
    store's (niche, source, source_id) conflict key turns repeat fetches into
    duplicates instead of new rows.
    """

    title: str
    apply_url: str
    source: str
    source_id: str
    hiring_organization: HiringOrganization
    description: str | None = None
    date_posted: str | None = None
    valid_through: str | None = None
    employment_type: str | None = None
    job_location: JobLocation | None = None
    job_location_type: str | None = None
    base_salary: BaseSalary | None = None
    skills: tuple[str, ...] = ()
    industry: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.title, str) or not self.title.strip():
            raise ValueError("title must be a non-empty string")
        if not self.apply_url:
            raise ValueError("apply_url is required")
        if self.source not in JOB_SOURCES:
            raise ValueError(f"unknown source {self.source!r}")
        if not self.source_id:
            raise ValueError("source_id is required")
        if self.employment_type is not None and self.employment_type not in EMPLOYMENT_TYPES:
            raise ValueError(f"employment_type must be one of {EMPLOYMENT_TYPES} or None")
        if self.job_location_type not in (None, TELECOMMUTE):
            raise ValueError("job_location_type must be TELECOMMUTE or None")
        if not isinstance(self.skills, tuple):
            object.__setattr__(self, "skills", tuple(self.skills))
        if len(self.skills) > MAX_SKILLS:
            raise ValueError(f"at most {MAX_SKILLS} skills allowed (got {len(self.skills)})")

    @property
    def is_remote(self) -> bool:
        return self.job_location_type == TELECOMMUTE

    def with_organization_name(self, name: str) -> RawJob:
        return replace(self, hiring_organization=replace(self.hiring_organization, name=name))

    def to_row(
        self,
        *,
        niche: str,
        fingerprint: str,
        tags: list[str],
        scraped_at: str,
        status: str = "active",
    ) -> dict[str, Any]:
        """Flatten into the persisted `jobs` row shape."""
        loc = self.job_location
        sal = self.base_salary
        org = self.hiring_organization
        return {
            "niche": niche,
            "source": self.source,
            "source_id": self.source_id,
            "scraped_at": scraped_at,
            "status": status,
            "fingerprint": fingerprint,
            "tags": json.dumps(list(tags)),
            "title": self.title,
            "description": self.description or None,
            "date_posted": self.date_posted,
            "valid_through": self.valid_through,
            "employment_type": self.employment_type,
            "org_name": org.name,
            "org_url": org.same_as,
            "org_logo": org.logo,
            "location_address": loc.address if loc else None,
            "location_postal_code": loc.postal_code if loc else None,
            "location_region": loc.address_region if loc else None,
            "location_country": loc.address_country if loc else None,
            "job_location_type": self.job_location_type,
            "salary_currency": sal.currency if sal else None,
            "salary_min": sal.min_value if sal else None,
            "salary_max": sal.max_value if sal else None,
            "salary_unit": sal.unit_text if sal else None,
            "apply_url": self.apply_url,
            "skills": json.dumps(list(self.skills)),
            "industry": self.industry,
        }


@dataclass(frozen=True)
class Job(RawJob):
    """A persisted job: RawJob plus storage/ingestion fields."""

    id: str = ""
    niche: str = ""
    scraped_at: str = ""
    status: str = "active"
    fingerprint: str = ""
    tags: tuple[str, ...] = ()

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Job:
        def _json_list(v: Any) -> tuple[str, ...]:
            if isinstance(v, str):
                v = json.loads(v or "[]")
            return tuple(v or ())

        currency = row.get("salary_currency")
        salary = None
        if currency and (row.get("salary_min") is not None or row.get("salary_max") is not None):
            salary = BaseSalary(
                currency=currency,
                min_value=row.get("salary_min"),
                max_value=row.get("salary_max"),
                unit_text=row.get("salary_unit") or "YEAR",
            )

        status = row.get("status") or "active"
        return cls(
            id=str(row["id"]),
            niche=row["niche"],
            scraped_at=row.get("scraped_at") or "",
            status=status if status in JOB_STATUSES else "active",
            fingerprint=row.get("fingerprint") or "",
            tags=_json_list(row.get("tags")),
            title=row["title"],
            apply_url=row["apply_url"],
            source=row["source"],
            source_id=row["source_id"],
            hiring_organization=HiringOrganization(
                name=row.get("org_name") or "Unknown",
                same_as=row.get("org_url"),
                logo=row.get("org_logo"),
            ),
            description=row.get("description") or None,
            date_posted=row.get("date_posted") or None,
            valid_through=row.get("valid_through") or None,
            employment_type=row.get("employment_type") or None,
            job_location=JobLocation.from_parts(
                row.get("location_address"),
                row.get("location_postal_code"),
                row.get("location_region"),
                row.get("location_country"),
            ),
            job_location_type=TELECOMMUTE if row.get("job_location_type") == TELECOMMUTE else None,
            base_salary=salary,
            skills=_json_list(row.get("skills"))[:MAX_SKILLS],
            industry=row.get("industry") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# -----------------------------
# Pipeline result bundles
# -----------------------------
@dataclass(frozen=True)
class Extraction:
    """One LLM-extracted job plus the taxonomy tags the model matched."""

    job: RawJob
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class FetchedPage:
    text: str  # plain text for prompting
    content_html: str  # script-free HTML kept as a description fallback


@dataclass
class ScrapeOutcome:
    results: list[Extraction] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class SourceResult:
    """
    Result of one fallible source call (one board, one query batch, one URL list).
    - items: jobs produced (possibly partial when errors is non-empty)
    - tags: LLM-derived tags keyed by source_id
    - errors: descriptive, adapter-tagged messages
    - failed: True when the call itself raised and produced nothing
    """

    source: str
    items: list[RawJob] = field(default_factory=list)
    tags: dict[str, list[str]] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    failed: bool = False


@dataclass
class RunSummary:
    """
    Totals for one aggregation run. `fetched` need not equal
    `inserted + duplicates`: rows that fail to write only show up in `errors`.
    """

    niche: str
    fetched: int = 0
    inserted: int = 0
    duplicates: int = 0
    errors: list[str] = field(default_factory=list)
    by_source: dict[str, int] = field(default_factory=dict)
    durations_us: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
