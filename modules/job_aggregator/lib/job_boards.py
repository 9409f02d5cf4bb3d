"""
Registry of known job-board domains.

Used by search discovery to classify results as listings, to reject board
names when guessing a company from a result title, and to build targeted
`site:` queries.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlparse


@dataclass(frozen=True)
class JobBoard:
    domain: str
    name: str
    region: str  # uk | us | global | scotland | europe
    sector: str  # ngo | climate | general | international-dev | charity
    has_api: bool = False
    notes: str = ""


JOB_BOARDS: tuple[JobBoard, ...] = (
    # UK charity
    JobBoard("charityjob.co.uk", "CharityJob", "uk", "charity"),
    JobBoard("goodmoves.org", "Goodmoves", "scotland", "charity", notes="Run by SCVO"),
    JobBoard("charitycareersscotland.co.uk", "Charity Careers Scotland", "scotland", "charity"),
    JobBoard("thirdsector.co.uk", "Third Sector", "uk", "charity"),
    JobBoard("civilsociety.co.uk", "Civil Society", "uk", "charity"),
    JobBoard("harrishill.co.uk", "Harris Hill", "uk", "charity", notes="Charity recruitment agency"),
    JobBoard("tpp.co.uk", "TPP Recruitment", "uk", "charity", notes="Not-for-profit recruitment"),
    # Climate / environment
    JobBoard("climatebase.org", "Climatebase", "global", "climate"),
    JobBoard("climatecareers.com", "Climate Careers", "global", "climate"),
    JobBoard("climatechangecareers.com", "Climate Change Careers", "global", "climate"),
    JobBoard("environmentjob.co.uk", "Environmentjob", "uk", "climate"),
    JobBoard("greenjobs.co.uk", "Green Jobs", "uk", "climate"),
    JobBoard("conservationjobboard.com", "Conservation Job Board", "global", "climate"),
    JobBoard("environmentalcareer.com", "Environmental Career", "us", "climate"),
    # International development / humanitarian
    JobBoard("reliefweb.int", "ReliefWeb", "global", "international-dev", has_api=True),
    JobBoard("devex.com", "Devex", "global", "international-dev"),
    JobBoard("impactpool.org", "Impactpool", "global", "international-dev"),
    JobBoard("idealist.org", "Idealist", "global", "ngo"),
    JobBoard("workforgood.co.uk", "Work for Good", "uk", "ngo"),
    JobBoard("bond.org.uk", "Bond", "uk", "international-dev"),
    JobBoard("fontes.nl", "Fontes", "europe", "international-dev"),
    JobBoard("unjobs.org", "UN Jobs", "global", "international-dev"),
    JobBoard("uncareer.net", "UN Career", "global", "international-dev"),
    JobBoard("humentum.org", "Humentum", "global", "international-dev"),
    JobBoard("coordinationsud.org", "Coordination SUD", "europe", "international-dev"),
    # General boards that carry NGO listings
    JobBoard("indeed.com", "Indeed", "global", "general"),
    JobBoard("uk.indeed.com", "Indeed UK", "uk", "general"),
    JobBoard("linkedin.com", "LinkedIn", "global", "general"),
    JobBoard("glassdoor.com", "Glassdoor", "global", "general"),
    JobBoard("glassdoor.co.uk", "Glassdoor UK", "uk", "general"),
    JobBoard("reed.co.uk", "Reed", "uk", "general"),
    JobBoard("s1jobs.com", "s1jobs", "scotland", "general"),
    JobBoard("myjobscotland.gov.uk", "myjobscotland", "scotland", "general", notes="Scottish public sector"),
    JobBoard("cv-library.co.uk", "CV-Library", "uk", "general"),
    JobBoard("totaljobs.com", "Totaljobs", "uk", "general"),
    JobBoard("jobs.theguardian.com", "Guardian Jobs", "uk", "general"),
    # ATS platforms (fetched directly via their APIs)
    JobBoard("boards.greenhouse.io", "Greenhouse", "global", "general", has_api=True),
    JobBoard("jobs.lever.co", "Lever", "global", "general", has_api=True),
    JobBoard("jobs.ashbyhq.com", "Ashby", "global", "general", has_api=True),
    JobBoard("jobs.smartrecruiters.com", "SmartRecruiters", "global", "general", has_api=True),
)

JOB_BOARD_DOMAINS = frozenset(b.domain for b in JOB_BOARDS)
JOB_BOARD_NAMES = frozenset(b.name.lower() for b in JOB_BOARDS)


def hostname(url: str) -> str:
    """Lower-cased host without a leading 'www.'; '' when the URL has none."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


def get_job_board(url: str) -> JobBoard | None:
    host = hostname(url)
    if not host:
        return None
    for b in JOB_BOARDS:
        if host == b.domain or host.endswith("." + b.domain):
            return b
    return None


def is_job_board_url(url: str) -> bool:
    return get_job_board(url) is not None


def is_job_board_name(name: str) -> bool:
    return name.strip().lower() in JOB_BOARD_NAMES


def boards_by(region: str | None = None, sector: str | None = None) -> list[JobBoard]:
    return [
        b
        for b in JOB_BOARDS
        if (region is None or b.region == region) and (sector is None or b.sector == sector)
    ]
