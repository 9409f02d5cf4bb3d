# job_aggregator/http_client.py
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

LOG = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; JobAggregator/0.1; +https://example.invalid)"


def decode_json(resp: requests.Response, url: str) -> Any:
    """Parse a response body as JSON; failures carry the URL and a short body preview."""
    try:
        return resp.json()
    except ValueError as e:
        # Server may send text/plain with a JSON body.
        try:
            return json.loads(resp.text)
        except ValueError:
            preview = resp.text[:200].replace("\n", " ")
            raise ValueError(f"JSON decode failed for {url!r}; body starts: {preview!r}") from e


class HttpClient:
    """
    Shared HTTP client for all adapters.

    Every call carries a finite timeout. Nothing is retried here: a failed
    call surfaces to the caller and the next run picks the source up again.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self.timeout = float(timeout)
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": user_agent})

        adapter = HTTPAdapter(max_retries=Retry(total=0, read=False), pool_connections=10, pool_maxsize=20)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    # ---- raw responses (caller inspects status) ----
    def get(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        return self.session.get(url, params=params, headers=headers, timeout=timeout or self.timeout, **kwargs)

    def post(
        self,
        url: str,
        *,
        json_body: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        return self.session.post(
            url, json=json_body, params=params, headers=headers, timeout=timeout or self.timeout, **kwargs
        )

    # ---- convenience ----
    def get_text(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        encoding: str | None = None,
        **kwargs: Any,
    ) -> str:
        """GET and return decoded text; non-2xx raises requests.HTTPError."""
        resp = self.get(url, params=params, headers=headers, timeout=timeout, **kwargs)
        resp.raise_for_status()
        if encoding:
            resp.encoding = encoding
        elif not resp.encoding and resp.apparent_encoding:
            resp.encoding = resp.apparent_encoding
        return resp.text

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            LOG.debug("HttpClient.close() swallow", exc_info=True)
