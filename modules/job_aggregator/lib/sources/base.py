from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

import requests

from ..config import NicheConfig, Settings
from ..http_client import HttpClient, decode_json
from ..models import RawJob, SourceResult, TELECOMMUTE
from ..utils import title_case_slug

LOG = logging.getLogger(__name__)

T = TypeVar("T")


class SourceError(Exception):
    """Transport/protocol failure of one adapter call (bad body shape, unusable payload)."""

    def __init__(self, label: str, message: str):
        super().__init__(f"{label}: {message}")
        self.label = label


def usable_response(resp: requests.Response, what: str) -> bool:
    """
    Status gate shared by all adapters.
    404 (board renamed/retired) and 429 (quota) yield False with a warning;
    any other non-2xx raises requests.HTTPError.
    """
    if resp.status_code == 404:
        LOG.warning("%s not found (404); returning no jobs", what)
        return False
    if resp.status_code == 429:
        LOG.warning("%s rate limited (429); returning no jobs", what)
        return False
    resp.raise_for_status()
    return True


def remote_from(*names: Any) -> str | None:
    """
    Crude remote heuristic: any location-ish string containing "remote".
    Deliberately naive ("Remote-friendly office" counts too).
    """
    for n in names:
        if isinstance(n, str) and "remote" in n.lower():
            return TELECOMMUTE
    return None


def error_message(e: BaseException) -> str:
    return str(e) or e.__class__.__name__


def has_text(value: Any) -> bool:
    return value is not None and bool(str(value).strip())


def build_each(what: str, listings: Iterable[T], build: Callable[[T], RawJob | None]) -> list[RawJob]:
    """
    Map listings to RawJob one at a time. A listing that fails validation
    (ValueError from the model) is logged and skipped; the rest of the
    payload is kept.
    """
    out: list[RawJob] = []
    for listing in listings:
        try:
            job = build(listing)
        except ValueError as e:
            LOG.warning("%s: skipping invalid listing: %s", what, e)
            continue
        if job is not None:
            out.append(job)
    return out


class BaseSource(ABC):
    """
    Abstract source adapter.

    One instance serves one run. `collect(niche)` walks every input the niche
    configures for this kind SEQUENTIALLY and returns one SourceResult per
    call (board, filter set, query batch, URL list). Per-call failures are
    folded into that result's `errors`; collect itself should not raise.

    Contract:
      - Do NOT write to the store or mutate global state.
      - Return *all* jobs found (dedupe happens in the store).
    """

    # Concrete subclasses MUST set these, e.g. kind="greenhouse", label="Greenhouse"
    kind: str = ""
    label: str = ""

    def __init__(self, client: HttpClient, settings: Settings, *, llm: Any = None) -> None:
        self.client = client
        self.settings = settings
        self.llm = llm  # chat client; only the scraper source uses it

    @abstractmethod
    def collect(self, niche: NicheConfig) -> list[SourceResult]:
        raise NotImplementedError

    def _json(self, resp: requests.Response) -> Any:
        return decode_json(resp, resp.url or self.label)


class BoardSource(BaseSource):
    """
    ATS adapter keyed by a board/company slug.

    Subclasses implement `fetch(board)`; set `backfill_name = True` when the
    listings payload carries no company name and `display_name(board)` should
    be applied after a successful, non-empty fetch.
    """

    backfill_name: bool = False

    @abstractmethod
    def fetch(self, board: str) -> list[RawJob]:
        raise NotImplementedError

    def display_name(self, board: str) -> str:
        return title_case_slug(board)

    def collect(self, niche: NicheConfig) -> list[SourceResult]:
        results: list[SourceResult] = []
        for board in niche.boards(self.kind):
            tag = f"{self.label} [{board}]"
            try:
                jobs = self.fetch(board)
                if jobs and self.backfill_name:
                    name = self.display_name(board)
                    jobs = [j.with_organization_name(name) for j in jobs]
                LOG.info("%s: fetched %d jobs", tag, len(jobs))
                results.append(SourceResult(source=tag, items=jobs))
            except Exception as e:
                msg = f"{tag} error: {error_message(e)}"
                LOG.error(msg)
                results.append(SourceResult(source=tag, errors=[msg], failed=True))
        return results
