from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from ..config import NicheConfig
from ..models import HiringOrganization, JobLocation, RawJob, SourceResult
from .base import BaseSource, SourceError, build_each, error_message, has_text, usable_response
from .registry import register

LOG = logging.getLogger(__name__)

API_URL = "https://api.reliefweb.int/v2/jobs"
FETCH_LIMIT = 1000
FIELDS = ("title", "body", "url", "date", "source", "country", "type", "theme")


def build_query(filters: Mapping[str, Sequence[str]] | None) -> dict:
    """
    POST body for the jobs endpoint. Each filter key becomes an OR condition
    on `<key>.name`; conditions across keys are ANDed by the API.
    """
    body: dict = {
        "limit": FETCH_LIMIT,
        "fields": {"include": list(FIELDS)},
        "sort": ["date.created:desc"],
    }
    conditions = [
        {"field": f"{field}.name", "value": list(values), "operator": "OR"}
        for field, values in (filters or {}).items()
        if values
    ]
    if conditions:
        body["filter"] = {"conditions": conditions}
    return body


@register
class ReliefWebSource(BaseSource):
    """
    ReliefWeb humanitarian jobs API (v2). Needs a registered `appname`
    (RELIEFWEB_APPNAME); without one the source is skipped with a warning.
    """

    kind = "reliefweb"
    label = "ReliefWeb"

    def fetch(self, filters: Mapping[str, Sequence[str]] | None = None) -> list[RawJob]:
        appname = self.settings.reliefweb_appname
        if not appname:
            LOG.warning("Skipping ReliefWeb: RELIEFWEB_APPNAME not set")
            return []

        resp = self.client.post(
            API_URL,
            params={"appname": appname},
            json_body=build_query(filters),
            headers={"Accept": "application/json"},
        )
        if not usable_response(resp, "ReliefWeb jobs API"):
            return []
        data = self._json(resp)
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise SourceError("ReliefWeb", "unexpected response format (no 'data' list)")
        listings = [i for i in items if isinstance(i, dict) and has_text((i.get("fields") or {}).get("title"))]
        return build_each("ReliefWeb", listings, self._to_raw)

    def collect(self, niche: NicheConfig) -> list[SourceResult]:
        results: list[SourceResult] = []
        for api_source in niche.api_sources:
            if api_source.type != self.kind:
                continue
            try:
                jobs = self.fetch(api_source.filters)
                LOG.info("ReliefWeb: fetched %d jobs", len(jobs))
                results.append(SourceResult(source=self.label, items=jobs))
            except Exception as e:
                msg = f"ReliefWeb error: {error_message(e)}"
                LOG.error(msg)
                results.append(SourceResult(source=self.label, errors=[msg], failed=True))
        return results

    def _to_raw(self, item: dict) -> RawJob:
        f = item["fields"]
        sources = f.get("source") or []
        countries = f.get("country") or []
        org = sources[0] if sources else {}
        first = countries[0] if countries else {}
        date = f.get("date") or {}
        themes = ", ".join(t.get("name", "") for t in f.get("theme") or [] if t.get("name"))
        return RawJob(
            title=str(f["title"]).strip(),
            description=f.get("body") or None,
            date_posted=date.get("created") or None,
            valid_through=date.get("closing") or None,
            hiring_organization=HiringOrganization(
                name=org.get("name") or "Unknown Organization",
                same_as=org.get("homepage") or None,
            ),
            job_location=JobLocation.from_parts(
                address=", ".join(c.get("name", "") for c in countries if c.get("name")),
                address_country=first.get("iso3"),
            ),
            industry=themes or None,
            apply_url=f.get("url") or f"https://reliefweb.int/job/{item.get('id')}",
            source="reliefweb",
            source_id=f"rw-{item.get('id')}",
        )
