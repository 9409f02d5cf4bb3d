# service/cli.py
"""
User-facing command-line entrypoints.

Subcommands
-----------
ingest [--niche ID] [--db PATH] [--dry-run] [--skip-network]
    - Runs one aggregation cycle and prints Fetched / Inserted / Duplicates / Errors

sources [--niche ID]
    - Fetches every configured ATS/API source WITHOUT touching the store and
      prints per-call counts plus a sample posting (board token sanity check)

search [--niche ID] [-q TEXT] [--tag T ...] [--remote] [--page N] [--limit N]
    - Lists active jobs from the store

show JOB_ID
    - Prints one stored job as JSON

niches
    - Lists configured niches

serve
    - Starts the APScheduler service loop via service.scheduler.start()

run MODULE [--kwargs k=v ...]
    - Executes a module ad-hoc via runner.run_module_once(...)

list-jobs
    - Loads config via config_schema.load_config() and prints configured jobs

validate-config
    - Loads/validates config and returns nonzero on error
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
import time
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from modules.job_aggregator.lib import config as jobs_config
from modules.job_aggregator.lib import engine as jobs_engine
from modules.job_aggregator.lib import query as jobs_query
from modules.job_aggregator.lib import sources as jobs_sources
from modules.job_aggregator.lib.http_client import HttpClient
from service import config_schema as _config_schema
from service import logging_utils as L
from service import runner as _runner
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")

# Sources that hit structured APIs (no search quota, no LLM)
_API_KINDS = ("reliefweb", *jobs_config.ATS_PLATFORMS)


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging() -> None:
    """Initialize a reasonable logging setup if none exists yet."""
    root = logging.getLogger()
    if not root.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )


# -------------------------- Utility / glue code ------------------------------
def _parse_kv_pairs(pairs: Iterable[str]) -> dict[str, Any]:
    """
    Parse key=value strings into a dict. JSON-looking values (true/false/
    null/number/object/array) are decoded; everything else stays a string.
    """
    out: dict[str, Any] = {}
    for raw in pairs:
        if "=" not in raw:
            raise argparse.ArgumentTypeError(f"--kwargs item must be key=value (got {raw!r})")
        k, v = raw.split("=", 1)
        k, v = k.strip(), v.strip()
        if not k:
            raise argparse.ArgumentTypeError(f"Invalid key in --kwargs item {raw!r}")
        try:
            out[k] = json.loads(v)
        except json.JSONDecodeError:
            out[k] = v
    return out


def _print_table(rows: Iterable[tuple[str, ...]], headers: tuple[str, ...]) -> None:
    """Very simple fixed-width table printer."""
    rows = [tuple(str(c) for c in r) for r in rows]
    widths = [max([len(h)] + [len(r[i]) for r in rows]) for i, h in enumerate(headers)]
    sep = "+-" + "-+-".join("-" * w for w in widths) + "-+"
    print(sep)
    print("| " + " | ".join(h.ljust(w) for h, w in zip(headers, widths)) + " |")
    print(sep)
    for r in rows:
        print("| " + " | ".join(c.ljust(w) for c, w in zip(r, widths)) + " |")
    print(sep)


def _extract_jobs_from_config(cfg: dict[str, Any]) -> list[tuple[str, str]]:
    out = []
    for idx, j in enumerate(cfg.get("jobs") or []):
        jid = str(j.get("id") or j.get("name") or idx)
        desc = j.get("summary") or j.get("description") or json.dumps(j.get("trigger"), default=str)
        out.append((jid, str(desc)))
    return out


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat()


def _settings(args: argparse.Namespace, **extra: Any) -> jobs_config.Settings:
    kwargs: dict[str, Any] = {"niche_id": getattr(args, "niche", None), "sqlite_path": getattr(args, "db", None)}
    kwargs.update(extra)
    return jobs_config.Settings.from_env_and_kwargs(kwargs)


def _truncate(s: str | None, n: int) -> str:
    s = s or ""
    return s if len(s) <= n else s[: n - 1] + "…"


# ------------------------------ Job subcommands ------------------------------
def cmd_ingest(args: argparse.Namespace) -> int:
    try:
        settings = _settings(args, dry_run=args.dry_run, skip_network=args.skip_network)
    except jobs_config.ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    niche = settings.niche()
    print(f"Running ingestion for niche: {niche.name} ({niche.id})")
    summary = jobs_engine.run_once(settings, niche)

    print("\n--- Ingestion Summary ---")
    print(f"Fetched:    {summary.fetched}")
    print(f"Inserted:   {summary.inserted}")
    print(f"Duplicates: {summary.duplicates}")
    print(f"Errors:     {len(summary.errors)}")
    for kind, n in summary.by_source.items():
        print(f"  {kind}: {n}")
    if summary.errors:
        print("\nErrors:")
        for err in summary.errors:
            print(f"  - {err}")
    return 0


def cmd_sources(args: argparse.Namespace) -> int:
    try:
        settings = _settings(args)
    except jobs_config.ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    niche = settings.niche()
    kinds = [k for k in jobs_engine.plan_kinds(settings, niche) if k in _API_KINDS]
    print(f"=== Testing data sources for {niche.id} ===")
    for key, present in jobs_config.env_snapshot().items():
        print(f"  {key}: {'set' if present else 'missing'}")

    client = HttpClient(timeout=settings.http_timeout)
    try:
        for kind in kinds:
            source = jobs_sources.get(kind)(client, settings)
            for res in source.collect(niche):
                print(f"\n--- {res.source} ---")
                print(f"Jobs: {len(res.items)}")
                if res.items:
                    sample = res.items[0]
                    where = sample.job_location.address if sample.job_location else None
                    print(f'Sample: "{sample.title}" at {sample.hiring_organization.name} ({where or "No location"})')
                    print(f"URL: {sample.apply_url}")
                for err in res.errors:
                    print(f"Error: {err}")
    finally:
        client.close()
    print("\n=== Done ===")
    return 0


def cmd_search(args: argparse.Namespace) -> int:
    try:
        settings = _settings(args)
    except jobs_config.ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    filters = jobs_query.JobFilters(
        niche=settings.niche_id,
        query=args.query,
        tags=tuple(args.tag or ()),
        remote=args.remote,
        page=args.page,
        limit=args.limit,
    )
    page = jobs_query.get_jobs(settings.sqlite_path, filters)
    if not page.jobs:
        print("No jobs found.")
        return 0

    rows = []
    for job in page.jobs:
        where = "Remote" if job.is_remote else ""
        if job.job_location and job.job_location.address:
            where = f"{job.job_location.address}{' (remote)' if job.is_remote else ''}"
        rows.append((
            job.id,
            _truncate(job.title, 50),
            _truncate(job.hiring_organization.name, 30),
            _truncate(where, 30),
            (job.date_posted or "")[:10],
        ))
    _print_table(rows, headers=("ID", "TITLE", "ORGANIZATION", "LOCATION", "POSTED"))
    print(f"Page {page.page}/{page.pages} ({page.total} jobs)")
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    try:
        settings = _settings(args)
    except jobs_config.ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    job = jobs_query.get_job_by_id(settings.sqlite_path, args.job_id)
    if job is None:
        print(f"Job not found: {args.job_id}", file=sys.stderr)
        return 1
    print(json.dumps(job.to_dict(), indent=2, ensure_ascii=False))
    return 0


def cmd_niches(args: argparse.Namespace) -> int:
    try:
        rows = []
        for nid in jobs_config.available_niches():
            n = jobs_config.load_niche(nid)
            boards = sum(len(n.boards(p)) for p in jobs_config.ATS_PLATFORMS)
            rows.append((n.id, n.name, str(boards), str(len(n.serp_queries)), str(len(n.tags))))
    except jobs_config.ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    if not rows:
        print("No niches configured.")
        return 0
    _print_table(rows, headers=("NICHE", "NAME", "BOARDS", "QUERIES", "TAGS"))
    return 0


# ---------------------------- Service subcommands ----------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
        _config_schema.validate(cfg)
        print("OK: configuration is valid.")
        return 0
    except KeyboardInterrupt:
        return 130
    except _config_schema.ConfigError as e:
        LOG.error("Configuration validation failed: %s", e)
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1


def cmd_list_jobs(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
    except _config_schema.ConfigError as e:
        LOG.error("Failed to list jobs: %s", e)
        print(f"ERROR: failed to list jobs: {e}", file=sys.stderr)
        return 1
    rows = _extract_jobs_from_config(cfg)
    if not rows:
        print("No jobs found in config.")
        return 0
    _print_table(rows, headers=("JOB", "DETAILS"))
    return 0


def _module_path(name: str) -> str:
    # "job_aggregator" -> "modules.job_aggregator.main"
    return name if "." in name else f"modules.{name}.main"


def cmd_run(args: argparse.Namespace) -> int:
    start_time = time.monotonic()
    kwargs = _parse_kv_pairs(args.kwargs or [])
    module = _module_path(args.module)
    LOG.debug("Run module %s with kwargs=%s", module, kwargs)

    try:
        meta, run_id = _runner.run_module_once(module=module, kwargs=kwargs, trigger_type="adhoc")
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        duration_s = time.monotonic() - start_time
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({
            "ts": _now_iso(),
            "component": "cli",
            "op": "run",
            "module": module,
            "kwargs": kwargs,
            "error": repr(e),
            "duration_ms": int(duration_s * 1000),
        })
        return 1

    L.write_activity_log({
        "ts": _now_iso(),
        "component": "cli",
        "op": "run",
        "run_id": run_id,
        "module": module,
        "kwargs": kwargs,
        "duration_ms": int((time.monotonic() - start_time) * 1000),
    })
    print(f"DONE: {(meta or {}).get('message', 'Module run completed.')}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the scheduler loop until a termination signal is received."""
    L.write_activity_log({"ts": _now_iso(), "component": "cli", "op": "serve_start"})

    stop_event = threading.Event()
    controller: list[_scheduler.SchedulerController] = []

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)

    try:
        controller.append(_scheduler.start(config_path=args.config))
        while not stop_event.is_set():
            time.sleep(0.3)
        return 0
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        LOG.exception("Fatal error in serve: %s", e)
        return 1
    finally:
        for c in controller:
            c.stop()
            c.join(timeout=10.0)
        L.write_activity_log({"ts": _now_iso(), "component": "cli", "op": "serve_stop"})


# ------------------------------- Argparse ------------------------------------
def _add_niche_args(sp: argparse.ArgumentParser) -> None:
    sp.add_argument("--niche", help="Niche id (fallbacks to NICHE_ID env, then 'ngo').")
    sp.add_argument("--db", help="SQLite path (fallbacks to JOBS_SQLITE_PATH env).")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="python -m service.cli",
        description="Job aggregator command-line tools",
    )
    p.add_argument(
        "--config",
        help="Path to service config file (fallbacks to CONFIG_PATH env or empty default).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("ingest", help="Run one ingestion cycle for a niche.")
    _add_niche_args(sp)
    sp.add_argument("--dry-run", action="store_true", help="Fetch and extract, but do not write to the store.")
    sp.add_argument("--skip-network", action="store_true", help="Plan sources without calling any of them.")
    sp.set_defaults(func=cmd_ingest)

    sp = sub.add_parser("sources", help="Fetch configured ATS/API sources without writing.")
    _add_niche_args(sp)
    sp.set_defaults(func=cmd_sources)

    sp = sub.add_parser("search", help="List stored active jobs.")
    _add_niche_args(sp)
    sp.add_argument("-q", "--query", help="Free text; every term must match.")
    sp.add_argument("--tag", action="append", help="Require a tag (repeatable).")
    sp.add_argument("--remote", action="store_true", help="Only remote (TELECOMMUTE) jobs.")
    sp.add_argument("--page", type=int, default=1)
    sp.add_argument("--limit", type=int, default=20)
    sp.set_defaults(func=cmd_search)

    sp = sub.add_parser("show", help="Print one stored job as JSON.")
    _add_niche_args(sp)
    sp.add_argument("job_id")
    sp.set_defaults(func=cmd_show)

    sp = sub.add_parser("niches", help="List configured niches.")
    sp.set_defaults(func=cmd_niches)

    sp = sub.add_parser("serve", help="Run the scheduler loop.")
    sp.set_defaults(func=cmd_serve)

    sp = sub.add_parser("run", help="Execute a module ad-hoc via runner.run_module_once().")
    sp.add_argument("module", help="Module to run (e.g., job_aggregator or modules.job_aggregator.main).")
    sp.add_argument(
        "--kwargs",
        metavar="k=v",
        nargs="*",
        help="Extra keyword arguments for the module (JSON values supported).",
    )
    sp.set_defaults(func=cmd_run)

    sp = sub.add_parser("list-jobs", help="Print all scheduled jobs from config.")
    sp.set_defaults(func=cmd_list_jobs)

    sp = sub.add_parser("validate-config", help="Verify configuration correctness.")
    sp.set_defaults(func=cmd_validate_config)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
