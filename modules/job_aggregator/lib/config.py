from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from .utils import getenv_str, truthy

PACKAGED_NICHE_DIR = Path(__file__).resolve().parent.parent / "niches"
DEFAULT_NICHE_ID = "ngo"
DEFAULT_SQLITE_PATH = "./local/state/jobs.db"
DEFAULT_LLM_MODEL = "gpt-4.1-mini"
ATS_PLATFORMS = ("greenhouse", "lever", "ashby", "smartrecruiters")


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when niche files or provided kwargs/env cannot form a valid Settings."""


# -----------------------------
# Niche configuration
# -----------------------------
@dataclass(frozen=True)
class ApiSource:
    type: str
    filters: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "filters", _frozen(self.filters, tuple))


@dataclass(frozen=True)
class NicheConfig:
    """
    A named topic configuration. Static: loaded once per process from
    `niches/<id>.json` (or an override directory) and never mutated.
    """

    id: str
    name: str
    domain: str = ""
    tagline: str = ""
    keywords: tuple[str, ...] = ()
    serp_queries: tuple[str, ...] = ()
    ats_boards: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    scraper_urls: tuple[str, ...] = ()
    api_sources: tuple[ApiSource, ...] = ()
    tags: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    theme: Mapping[str, str] = field(default_factory=dict)
    seo: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("keywords", "serp_queries", "scraper_urls", "api_sources"):
            object.__setattr__(self, name, tuple(getattr(self, name)))
        for name in ("ats_boards", "tags"):
            object.__setattr__(self, name, _frozen(getattr(self, name), tuple))
        for name in ("theme", "seo"):
            object.__setattr__(self, name, _frozen(getattr(self, name), str))

    def boards(self, platform: str) -> tuple[str, ...]:
        return self.ats_boards.get(platform, ())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, origin: str = "<dict>") -> NicheConfig:
        if not isinstance(data, Mapping):
            raise ConfigError(f"{origin}: niche config must be an object")
        niche_id = str(data.get("id") or "").strip()
        name = str(data.get("name") or "").strip()
        if not niche_id or not name:
            raise ConfigError(f"{origin}: niche config requires 'id' and 'name'")

        boards_raw = data.get("ats_boards") or {}
        if not isinstance(boards_raw, Mapping):
            raise ConfigError(f"{origin}: 'ats_boards' must be an object")
        unknown = set(boards_raw) - set(ATS_PLATFORMS)
        if unknown:
            raise ConfigError(f"{origin}: unknown ats_boards platform(s): {sorted(unknown)}")
        ats_boards = {p: _str_tuple(boards_raw.get(p), f"{origin}: ats_boards.{p}") for p in ATS_PLATFORMS}

        api_sources: list[ApiSource] = []
        for i, src in enumerate(data.get("api_sources") or []):
            if not isinstance(src, Mapping) or src.get("type") != "reliefweb":
                raise ConfigError(f"{origin}: api_sources[{i}] must be an object with type 'reliefweb'")
            filters = src.get("filters") or {}
            if not isinstance(filters, Mapping):
                raise ConfigError(f"{origin}: api_sources[{i}].filters must be an object")
            api_sources.append(
                ApiSource(
                    type="reliefweb",
                    filters={str(k): _str_tuple(v, f"{origin}: filters.{k}") for k, v in filters.items()},
                )
            )

        tags_raw = data.get("tags") or {}
        if not isinstance(tags_raw, Mapping):
            raise ConfigError(f"{origin}: 'tags' must be an object of tag -> keywords")
        tags = {str(t): _str_tuple(kws, f"{origin}: tags.{t}") for t, kws in tags_raw.items()}

        return cls(
            id=niche_id,
            name=name,
            domain=str(data.get("domain") or ""),
            tagline=str(data.get("tagline") or ""),
            keywords=_str_tuple(data.get("keywords"), f"{origin}: keywords"),
            serp_queries=_str_tuple(data.get("serp_queries"), f"{origin}: serp_queries"),
            ats_boards=ats_boards,
            scraper_urls=_str_tuple(data.get("scraper_urls"), f"{origin}: scraper_urls"),
            api_sources=tuple(api_sources),
            tags=tags,
            theme={str(k): str(v) for k, v in (data.get("theme") or {}).items()},
            seo={str(k): str(v) for k, v in (data.get("seo") or {}).items()},
        )


def _frozen(mapping: Mapping[str, Any], convert) -> Mapping[str, Any]:
    """Read-only copy of `mapping` with each value passed through `convert`."""
    return MappingProxyType({str(k): convert(v) for k, v in mapping.items()})


def _str_tuple(value: Any, where: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"{where} must be a list of strings")
    return tuple(str(v) for v in value if str(v).strip())


def _read_niche_file(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read niche config {path}: {e}") from e
    if path.suffix.lower() in (".yml", ".yaml"):
        data = yaml.safe_load(text) or {}
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"niche config is invalid JSON: {path}") from e
    return data


@lru_cache(maxsize=8)
def _load_all(override_dir: str | None) -> dict[str, NicheConfig]:
    dirs = [PACKAGED_NICHE_DIR]
    if override_dir:
        dirs.append(Path(override_dir))  # later directories win

    niches: dict[str, NicheConfig] = {}
    for d in dirs:
        if not d.is_dir():
            continue
        for path in sorted(d.iterdir()):
            if path.suffix.lower() not in (".json", ".yml", ".yaml"):
                continue
            niche = NicheConfig.from_dict(_read_niche_file(path), origin=str(path))
            niches[niche.id] = niche
    return niches


def available_niches() -> list[str]:
    return sorted(_load_all(getenv_str("NICHE_CONFIG_DIR")))


def load_niche(niche_id: str | None = None) -> NicheConfig:
    """
    Resolve a niche by id (falls back to NICHE_ID, then 'ngo').
    Unknown ids fail loudly with the list of available niches.
    """
    nid = (niche_id or getenv_str("NICHE_ID", DEFAULT_NICHE_ID) or DEFAULT_NICHE_ID).strip()
    niches = _load_all(getenv_str("NICHE_CONFIG_DIR"))
    if nid not in niches:
        raise ConfigError(f"Unknown niche: {nid}. Available: {', '.join(sorted(niches)) or '(none)'}")
    return niches[nid]


def clear_niche_cache() -> None:
    _load_all.cache_clear()


# -----------------------------
# Run settings
# -----------------------------
@dataclass
class Settings:
    """
    Canonical configuration for a 'job_aggregator' run.

    Credentials are read from the environment at construction time and may be
    overridden by kwargs (tests do this). A missing credential disables the
    matching source; it is never an error here.
    """

    niche_id: str = DEFAULT_NICHE_ID
    sqlite_path: str = DEFAULT_SQLITE_PATH

    # Politeness / quotas
    scrape_delay_ms: int = 1000
    min_page_chars: int = 100
    max_search_queries: int = 20
    search_date_restrict: str = "m1"
    http_timeout: float = 30.0

    # Special-run flags
    skip_network: bool = False
    dry_run: bool = False

    # Credentials
    reliefweb_appname: str | None = None
    google_cse_api_key: str | None = field(default=None, repr=False)
    google_cse_cx: str | None = None
    serper_api_key: str | None = field(default=None, repr=False)
    openai_api_key: str | None = field(default=None, repr=False)
    llm_model: str = DEFAULT_LLM_MODEL
    llm_max_tokens: int = 4096

    # ------------- convenience -------------
    @property
    def has_google_cse(self) -> bool:
        return bool(self.google_cse_api_key and self.google_cse_cx)

    @property
    def has_serper(self) -> bool:
        return bool(self.serper_api_key)

    @property
    def has_llm(self) -> bool:
        return bool(self.openai_api_key)

    def niche(self) -> NicheConfig:
        return load_niche(self.niche_id)

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with env fallbacks and validation.

        Expected kwargs (all optional):

            niche_id: str = $NICHE_ID or "ngo"
            sqlite_path: str = $JOBS_SQLITE_PATH or "./local/state/jobs.db"
            scrape_delay_ms: int = 1000
            min_page_chars: int = 100
            max_search_queries: int = 20
            search_date_restrict: str = "m1"
            http_timeout: float = 30
            skip_network: bool = false
            dry_run: bool = false

            # credentials (default from env of the same upper-case name)
            reliefweb_appname, google_cse_api_key, google_cse_cx,
            serper_api_key, openai_api_key
            llm_model: str = $OPENAI_MODEL_JOBS or "gpt-4.1-mini"
        """
        kw = dict(kwargs or {})

        def pick(key: str, env: str, default: Any = None) -> Any:
            v = kw.get(key)
            if v is None or (isinstance(v, str) and not v.strip()):
                return getenv_str(env, default)
            return v.strip() if isinstance(v, str) else v

        try:
            settings = cls(
                niche_id=str(pick("niche_id", "NICHE_ID", DEFAULT_NICHE_ID)),
                sqlite_path=str(pick("sqlite_path", "JOBS_SQLITE_PATH", DEFAULT_SQLITE_PATH)),
                scrape_delay_ms=int(kw.get("scrape_delay_ms", 1000)),
                min_page_chars=int(kw.get("min_page_chars", 100)),
                max_search_queries=int(kw.get("max_search_queries", 20)),
                search_date_restrict=str(kw.get("search_date_restrict") or "m1"),
                http_timeout=float(kw.get("http_timeout") or 30.0),
                skip_network=truthy(kw.get("skip_network")),
                dry_run=truthy(kw.get("dry_run")),
                reliefweb_appname=pick("reliefweb_appname", "RELIEFWEB_APPNAME"),
                google_cse_api_key=pick("google_cse_api_key", "GOOGLE_CSE_API_KEY"),
                google_cse_cx=pick("google_cse_cx", "GOOGLE_CSE_CX"),
                serper_api_key=pick("serper_api_key", "SERPER_API_KEY"),
                openai_api_key=pick("openai_api_key", "OPENAI_API_KEY"),
                llm_model=str(pick("llm_model", "OPENAI_MODEL_JOBS", DEFAULT_LLM_MODEL)),
                llm_max_tokens=int(kw.get("llm_max_tokens", 4096)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid job_aggregator settings: {e}") from e

        _validate_settings(settings)
        return settings


def _validate_settings(s: Settings) -> None:
    if not s.sqlite_path.strip():
        raise ConfigError("'sqlite_path' cannot be empty.")
    if s.scrape_delay_ms < 0:
        raise ConfigError("'scrape_delay_ms' must be >= 0.")
    if s.min_page_chars < 0:
        raise ConfigError("'min_page_chars' must be >= 0.")
    if s.max_search_queries < 0:
        raise ConfigError("'max_search_queries' must be >= 0.")
    if s.http_timeout <= 0:
        raise ConfigError("'http_timeout' must be > 0.")
    if s.llm_max_tokens <= 0:
        raise ConfigError("'llm_max_tokens' must be > 0.")
    # Fail loudly on an unknown niche before any network work starts.
    load_niche(s.niche_id)


def env_snapshot() -> dict[str, bool]:
    """Which credentials are present (never the values); used by `sources` and logs."""
    keys = ("RELIEFWEB_APPNAME", "GOOGLE_CSE_API_KEY", "GOOGLE_CSE_CX", "SERPER_API_KEY", "OPENAI_API_KEY")
    return {k: bool(os.getenv(k, "").strip()) for k in keys}
