# tests/test_engine.py
import dataclasses
import json
import sqlite3

import pytest

from modules.job_aggregator.lib import db, engine, query
from modules.job_aggregator.lib.models import HiringOrganization, RawJob, SourceResult
from modules.job_aggregator.lib.sources.base import BaseSource


def _raw(n, source="greenhouse", **extra):
    return RawJob(
        title=extra.pop("title", f"Refugee Program Officer {n}"),
        apply_url=f"https://example.org/jobs/{n}",
        source=source,
        source_id=f"{source[:2]}-{n}",
        hiring_organization=HiringOrganization(name="Rescue Org"),
        date_posted=f"2025-01-0{n}",
        **extra,
    )


def _source(kind, *results):
    """Build a fake source class returning `results` from collect()."""

    class _Fake(BaseSource):
        label = kind.title()
        instances: list = []

        def __init__(self, client, settings, *, llm=None):
            super().__init__(client, settings, llm=llm)
            _Fake.instances.append(self)

        def collect(self, niche):
            return [dataclasses.replace(r) for r in results]

    _Fake.kind = kind
    return _Fake


def _boom(kind):
    class _Broken(BaseSource):
        label = "Broken"

        def collect(self, niche):
            raise RuntimeError("exploded")

    _Broken.kind = kind
    return _Broken


def _run(settings, niche, fake_http, sources, **kwargs):
    return engine.run_once(settings, niche, get_source=sources.__getitem__, client=fake_http({}), **kwargs)


def test_plan_kinds_orders_sources(make_niche, settings):
    niche = make_niche(
        api_sources=[{"type": "reliefweb"}],
        ats_boards={"lever": ["a"], "smartrecruiters": ["b"]},
        scraper_urls=["https://example.org/jobs/1"],
    )
    assert engine.plan_kinds(settings, niche) == ["reliefweb", "lever", "smartrecruiters", "serper", "scraper"]

    with_cse = dataclasses.replace(settings, google_cse_api_key="k", google_cse_cx="cx")
    assert engine.plan_kinds(with_cse, niche)[3] == "google_cse"
    assert engine.plan_kinds(settings, make_niche(serp_queries=[], ats_boards={})) == []


def test_end_to_end_insert_then_duplicates(fake_http, niche, settings):
    sources = {
        "greenhouse": _source("greenhouse", SourceResult(source="Greenhouse [rescue]", items=[_raw(1), _raw(2)])),
        "lever": _source("lever", SourceResult(source="Lever [sierra-club]")),
        "serper": _source("serper"),
    }

    first = _run(settings, niche, fake_http, sources)
    assert (first.fetched, first.inserted, first.duplicates, first.errors) == (2, 2, 0, [])
    assert first.by_source == {"greenhouse": 2, "lever": 0, "serper": 0}
    assert {"greenhouse", "lever", "serper", "_persist", "_total"} <= set(first.durations_us)

    second = _run(settings, niche, fake_http, sources)
    assert (second.fetched, second.inserted, second.duplicates) == (2, 0, 2)
    assert db.count_rows(settings.sqlite_path, "testniche") == 2


def test_one_failing_source_does_not_stop_the_run(fake_http, niche, settings):
    sources = {
        "greenhouse": _boom("greenhouse"),
        "lever": _source("lever", SourceResult(source="Lever [sierra-club]", items=[_raw(3, source="lever")])),
        "serper": _source(
            "serper",
            SourceResult(source='Serper ["q"]', errors=['Serper ["q"] error: 500'], failed=True),
        ),
    }

    summary = _run(settings, niche, fake_http, sources)

    assert summary.inserted == 1
    assert summary.errors == ["Broken error: exploded", 'Serper ["q"] error: 500']
    assert summary.by_source["greenhouse"] == 0


def test_unknown_kind_is_folded_as_error(fake_http, niche, settings):
    def get_source(kind):
        raise KeyError(kind)

    summary = engine.run_once(settings, niche, get_source=get_source, client=fake_http({}))
    assert summary.fetched == 0
    assert summary.errors == ["greenhouse error: 'greenhouse'", "lever error: 'lever'", "serper error: 'serper'"]


def test_dry_run_writes_nothing(fake_http, niche, settings):
    sources = {
        "greenhouse": _source("greenhouse", SourceResult(source="Greenhouse [rescue]", items=[_raw(1)])),
        "lever": _source("lever"),
        "serper": _source("serper"),
    }
    summary = _run(dataclasses.replace(settings, dry_run=True), niche, fake_http, sources)

    assert summary.fetched == 1
    assert summary.inserted == 0
    assert db.count_rows(settings.sqlite_path) == 0


def test_skip_network_runs_no_sources(fake_http, niche, settings):
    gh = _source("greenhouse", SourceResult(source="Greenhouse [rescue]", items=[_raw(1)]))
    summary = _run(dataclasses.replace(settings, skip_network=True), niche, fake_http, {"greenhouse": gh})

    assert summary.fetched == 0
    assert gh.instances == []
    assert summary.by_source == {}


def test_llm_tags_override_keyword_tagger(fake_http, niche, settings):
    tagged = _raw(1, source="scraper", title="Refugee finance lead")
    plain = _raw(2, title="Refugee finance lead")
    sources = {
        "greenhouse": _source("greenhouse", SourceResult(source="Greenhouse [rescue]", items=[plain])),
        "lever": _source("lever", SourceResult(source="Scraper", items=[tagged], tags={tagged.source_id: ["policy"]})),
        "serper": _source("serper"),
    }
    _run(settings, niche, fake_http, sources)

    page = query.get_jobs(settings.sqlite_path, query.JobFilters(niche="testniche"))
    by_source = {j.source: j for j in page.jobs}
    assert by_source["scraper"].tags == ("policy",)
    assert set(by_source["greenhouse"].tags) == {"humanitarian", "finance"}


def test_db_errors_are_counted_per_row(fake_http, niche, settings, monkeypatch):
    sources = {
        "greenhouse": _source("greenhouse", SourceResult(source="Greenhouse [rescue]", items=[_raw(1), _raw(2)])),
        "lever": _source("lever"),
        "serper": _source("serper"),
    }
    real_upsert = db.upsert_job

    def flaky_upsert(conn, row):
        if row["source_id"] == "gr-1":
            raise sqlite3.OperationalError("disk I/O error")
        return real_upsert(conn, row)

    monkeypatch.setattr(db, "upsert_job", flaky_upsert)
    summary = _run(settings, niche, fake_http, sources)

    assert summary.fetched == 2
    assert summary.inserted == 1
    assert summary.errors == ["DB insert error: disk I/O error"]


def test_activity_log_records_summary(fake_http, niche, settings, tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    sources = {"greenhouse": _source("greenhouse"), "lever": _source("lever"), "serper": _source("serper")}

    _run(settings, niche, fake_http, sources)

    lines = []
    for path in (tmp_path / "logs").glob("activity-test*.jsonl"):
        lines.extend(json.loads(line) for line in path.read_text(encoding="utf-8").splitlines())
    ops = [rec.get("op") for rec in lines if rec.get("component") == "job_aggregator.engine"]
    assert ops[0] == "start"
    assert ops[-1] == "summary"
    assert ops.count("source_done") == 3


def test_registry_knows_every_planned_kind():
    from modules.job_aggregator.lib.sources import registry

    kinds = set(registry.all_kinds())
    assert {"reliefweb", "greenhouse", "lever", "ashby", "smartrecruiters", "google_cse", "serper", "scraper"} <= kinds
    with pytest.raises(KeyError):
        registry.get("workday")


def test_registry_rejects_conflicts_and_names_known_kinds(monkeypatch):
    from modules.job_aggregator.lib.sources import greenhouse, registry

    monkeypatch.setattr(registry, "_SOURCES", dict(registry._SOURCES))
    assert registry.register(greenhouse.GreenhouseSource) is greenhouse.GreenhouseSource
    assert registry.get(" Greenhouse ") is greenhouse.GreenhouseSource

    with pytest.raises(ValueError, match="already served by GreenhouseSource"):
        registry.register(_source("greenhouse"))
    with pytest.raises(ValueError, match="has no `kind`"):
        registry.register(_source(""))
    with pytest.raises(KeyError, match="known: .*reliefweb"):
        registry.get("workday")
