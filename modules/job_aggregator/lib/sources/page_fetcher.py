from __future__ import annotations

import logging

from bs4 import BeautifulSoup  # pip install beautifulsoup4 html5lib

from ..http_client import HttpClient
from ..models import FetchedPage
from ..utils import collapse_ws

LOG = logging.getLogger(__name__)

FETCH_TIMEOUT = 15.0
TEXT_LIMIT = 20_000
HTML_LIMIT = 50_000
TRUNCATION_MARKER = "\n[TRUNCATED]"

# Removed from both views.
STRIP_TAGS = ("script", "style", "noscript", "iframe", "svg")
# Removed from the prompt text only.
STRIP_CONTENT_TAGS = (*STRIP_TAGS, "nav", "footer", "header", "aside", "form")


def html_to_text(html: str) -> str:
    """Plain text for prompting: page chrome dropped, entities decoded, whitespace collapsed, capped."""
    soup = BeautifulSoup(html, "html5lib")
    for el in soup(list(STRIP_CONTENT_TAGS)):
        el.decompose()
    text = collapse_ws(soup.get_text(" "))
    if len(text) > TEXT_LIMIT:
        text = text[:TEXT_LIMIT] + TRUNCATION_MARKER
    return text


def clean_html(html: str) -> str:
    """Display-safe HTML: only executable/embedded content removed, structure kept, capped."""
    soup = BeautifulSoup(html, "html5lib")
    for el in soup(list(STRIP_TAGS)):
        el.decompose()
    body = soup.body
    content = body.decode_contents() if body is not None else str(soup)
    return content.strip()[:HTML_LIMIT]


class PageFetcher:
    """GET an arbitrary job page and derive the prompt text and fallback HTML views."""

    def __init__(self, client: HttpClient, timeout: float = FETCH_TIMEOUT) -> None:
        self.client = client
        self.timeout = timeout

    def fetch(self, url: str) -> FetchedPage:
        # Non-2xx raises requests.HTTPError from get_text.
        html = self.client.get_text(
            url,
            headers={"Accept": "text/html,application/xhtml+xml"},
            timeout=self.timeout,
        )
        LOG.debug("fetched %s (%d bytes)", url, len(html))
        return FetchedPage(text=html_to_text(html), content_html=clean_html(html))
