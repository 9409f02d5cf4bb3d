# tests/test_db_and_query.py
import os
import sqlite3

import pytest

from modules.job_aggregator.lib import db
from modules.job_aggregator.lib.fingerprint import fingerprint
from modules.job_aggregator.lib.models import TELECOMMUTE, HiringOrganization, JobLocation, RawJob
from modules.job_aggregator.lib.query import JobFilters, get_job_by_id, get_jobs
from modules.job_aggregator.lib.utils import posted_utc


def _row(n, *, niche="testniche", source="greenhouse", tags=(), date_posted="2025-01-01", **extra):
    raw = RawJob(
        title=extra.pop("title", f"Job {n}"),
        apply_url=f"https://example.org/jobs/{n}",
        source=source,
        source_id=f"id-{n}",
        hiring_organization=HiringOrganization(name=extra.pop("org", "Example Org")),
        date_posted=date_posted,
        **extra,
    )
    return raw.to_row(niche=niche, fingerprint=fingerprint(raw), tags=list(tags), scraped_at="2025-01-10T00:00:00Z")


def _seed(path, *rows):
    ids = []
    with db.connect(path) as conn:
        for r in rows:
            ids.append(db.upsert_job(conn, r))
    return ids


# ----------------------------------------------------------------------
# Store
# ----------------------------------------------------------------------
def test_init_db_is_idempotent(db_path):
    db.init_db(db_path)
    db.init_db(db_path)
    assert os.path.exists(db_path)
    assert db.count_rows(db_path) == 0


def test_duplicate_key_raises_and_bumps_last_seen(db_path, frozen_utc):
    [job_id] = _seed(db_path, _row(1))

    with db.connect(db_path) as conn:
        conn.execute("UPDATE jobs SET last_seen_at = '2000-01-01T00:00:00Z'")
        with pytest.raises(db.DuplicateJobError) as ei:
            db.upsert_job(conn, _row(1, title="Renamed"))
        row = conn.execute("SELECT title, last_seen_at, first_seen_at FROM jobs WHERE id = ?", (job_id,)).fetchone()

    assert ei.value.source_id == "id-1"
    assert row["title"] == "Job 1"
    assert row["last_seen_at"] == "2025-01-01T00:00:00Z"
    assert row["first_seen_at"] == "2025-01-01T00:00:00Z"
    assert db.count_rows(db_path) == 1


def test_same_source_id_in_another_niche_is_a_new_row(db_path):
    _seed(db_path, _row(1), _row(1, niche="climate"))
    assert db.count_rows(db_path) == 2
    assert db.count_rows(db_path, "climate") == 1


def test_not_null_violation_is_not_a_duplicate(db_path):
    bad = _row(1)
    bad["title"] = None
    with db.connect(db_path) as conn:
        with pytest.raises(sqlite3.IntegrityError):
            db.upsert_job(conn, bad)


def test_set_status_and_reset(db_path):
    [job_id] = _seed(db_path, _row(1))

    assert db.set_status(db_path, job_id, "expired") is True
    assert db.set_status(db_path, "missing", "expired") is False
    with pytest.raises(ValueError):
        db.set_status(db_path, job_id, "archived")

    db.reset_db(db_path)
    assert not os.path.exists(db_path)
    db.reset_db(db_path)  # no-op when already gone


def test_search_text_flattens_html_and_tags():
    text = db.build_search_text({
        "title": "Grants Officer",
        "org_name": "Aid Org",
        "location_address": "Nairobi",
        "tags": '["finance"]',
        "description": "<p>Manage <strong>donor</strong> reporting</p>",
    })
    assert text == "grants officer aid org nairobi finance manage donor reporting"


# ----------------------------------------------------------------------
# Query
# ----------------------------------------------------------------------
def test_missing_db_gives_empty_page(tmp_path):
    page = get_jobs(str(tmp_path / "nope.db"), JobFilters(niche="testniche"))
    assert (page.jobs, page.total, page.pages) == ([], 0, 0)
    assert get_job_by_id(str(tmp_path / "nope.db"), "x") is None


def test_lists_only_active_rows_of_the_niche(db_path):
    ids = _seed(db_path, _row(1), _row(2), _row(3, niche="climate"))
    db.set_status(db_path, ids[1], "expired")

    page = get_jobs(db_path, JobFilters(niche="testniche"))
    assert [j.source_id for j in page.jobs] == ["id-1"]
    assert page.total == 1


def test_free_text_terms_must_all_match(db_path):
    _seed(
        db_path,
        _row(1, title="Finance Manager", org="Oxfam"),
        _row(2, title="Finance Officer", org="Save the Children"),
        _row(3, title="Program Manager", org="Oxfam", description="<p>Budget 100% funded</p>"),
    )

    def titles(q):
        return sorted(j.title for j in get_jobs(db_path, JobFilters(niche="testniche", query=q)).jobs)

    assert titles("finance") == ["Finance Manager", "Finance Officer"]
    assert titles("OXFAM manager") == ["Finance Manager", "Program Manager"]
    assert titles("100%") == ["Program Manager"]
    assert titles("10_%") == []


def test_tag_and_remote_filters(db_path):
    _seed(
        db_path,
        _row(1, tags=["finance", "policy"]),
        _row(2, tags=["finance"], job_location_type=TELECOMMUTE),
        _row(3, tags=["policy"], job_location=JobLocation(address="Remote")),
    )

    def ids(**kw):
        return sorted(j.source_id for j in get_jobs(db_path, JobFilters(niche="testniche", **kw)).jobs)

    assert ids(tags=("finance",)) == ["id-1", "id-2"]
    assert ids(tags=("finance", "policy")) == ["id-1"]
    assert ids(remote=True) == ["id-2"]
    assert ids(tags=("fin",)) == []


def test_orders_newest_first_with_undated_last_and_paginates(db_path):
    _seed(
        db_path,
        _row(1, date_posted="2025-01-01"),
        _row(2, date_posted=None),
        _row(3, date_posted="2025-03-01"),
        _row(4, date_posted="2025-02-01"),
        _row(5, date_posted="2024-12-01"),
    )

    first = get_jobs(db_path, JobFilters(niche="testniche", page=1, limit=2))
    second = get_jobs(db_path, JobFilters(niche="testniche", page=2, limit=2))
    last = get_jobs(db_path, JobFilters(niche="testniche", page=3, limit=2))

    assert [j.source_id for j in first.jobs] == ["id-3", "id-4"]
    assert [j.source_id for j in second.jobs] == ["id-1", "id-5"]
    assert [j.source_id for j in last.jobs] == ["id-2"]
    assert (first.total, first.pages) == (5, 3)


def test_ordering_compares_instants_not_strings(db_path):
    _seed(
        db_path,
        _row(1, date_posted="2025-01-02"),
        _row(2, date_posted="2025-01-02T03:00:00Z"),
        _row(3, date_posted="2025-01-01T23:00:00-05:00"),
        _row(4, date_posted="sometime last week"),
    )

    page = get_jobs(db_path, JobFilters(niche="testniche"))

    assert [j.source_id for j in page.jobs] == ["id-3", "id-2", "id-1", "id-4"]
    assert page.jobs[0].date_posted == "2025-01-01T23:00:00-05:00"


def test_posted_utc_normalizes_offsets_and_bare_dates():
    assert posted_utc("2025-01-01T23:00:00-05:00") == "2025-01-02T04:00:00Z"
    assert posted_utc("2025-01-02T03:00:00.000Z") == "2025-01-02T03:00:00Z"
    assert posted_utc("2025-01-02") == "2025-01-02T00:00:00Z"
    assert posted_utc("soon") is None
    assert posted_utc(None) is None


def test_filters_clamp_page_and_limit():
    f = JobFilters(niche="n", page=0, limit=1000, tags=["a"])
    assert (f.page, f.limit, f.tags, f.offset) == (1, 100, ("a",), 0)


def test_get_job_by_id_round_trips_fields(db_path):
    [job_id] = _seed(
        db_path,
        _row(1, tags=["finance"], skills=("Excel",), job_location=JobLocation(address="Leeds", address_country="GB")),
    )
    job = get_job_by_id(db_path, job_id)

    assert job.id == job_id
    assert job.niche == "testniche"
    assert job.tags == ("finance",)
    assert job.skills == ("Excel",)
    assert job.job_location.address_country == "GB"
    assert get_job_by_id(db_path, "missing") is None


def test_store_without_posted_utc_is_migrated_and_backfilled(db_path):
    _seed(
        db_path,
        _row(1, date_posted="2025-01-02T03:00:00Z"),
        _row(2, date_posted="2025-01-01T23:00:00-05:00"),
    )
    conn = sqlite3.connect(db_path, isolation_level=None)
    try:
        conn.execute("DROP INDEX ix_jobs_posted")
        conn.execute("ALTER TABLE jobs DROP COLUMN posted_utc")
    finally:
        conn.close()

    page = get_jobs(db_path, JobFilters(niche="testniche"))

    assert [j.source_id for j in page.jobs] == ["id-2", "id-1"]
    with db.connect(db_path) as conn:
        stored = sorted(r["posted_utc"] for r in conn.execute("SELECT posted_utc FROM jobs"))
    assert stored == ["2025-01-02T03:00:00Z", "2025-01-02T04:00:00Z"]
