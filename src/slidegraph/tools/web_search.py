"""Web search used by the ``web_search`` tool.

Brave Search API when a key is configured, otherwise DuckDuckGo's HTML
endpoint. Failures never raise: the model is told to fall back to its
training data instead.
"""

from __future__ import annotations

import html
import logging
import re
import time

import httpx

from slidegraph import config

logger = logging.getLogger(__name__)

BRAVE_URL = "https://api.search.brave.com/res/v1/web/search"
DUCKDUCKGO_URL = "https://html.duckduckgo.com/html/"
MAX_RESULTS = 5

UNAVAILABLE = "Search unavailable. Proceeding with training data."
NO_RESULTS = "No results found. Proceeding with training data."

_DDG_RESULT_RE = re.compile(
    r'<a[^>]*class="result__a"[^>]*>([\s\S]*?)</a>[\s\S]*?'
    r'<a[^>]*class="result__snippet"[^>]*>([\s\S]*?)</a>',
    re.IGNORECASE,
)
_TAG_RE = re.compile(r"<[^>]*>")


def _strip_tags(fragment: str) -> str:
    return html.unescape(_TAG_RE.sub("", fragment)).strip()


class WebSearcher:
    """Text search results formatted for a model."""

    def __init__(
        self,
        brave_api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._brave_key = config.BRAVE_SEARCH_API_KEY if brave_api_key is None else brave_api_key
        self._timeout = timeout or config.SEARCH_TIMEOUT_SECS
        self._transport = transport

    def search(self, query: str) -> str:
        t0 = time.perf_counter()
        backend = "brave" if self._brave_key else "duckduckgo"
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                if self._brave_key:
                    result = self._brave(client, query)
                else:
                    result = self._duckduckgo(client, query)
        except Exception as e:
            # Transport errors and malformed responses alike
            logger.warning("Search via %s failed for %r: %s", backend, query, e)
            return UNAVAILABLE
        logger.debug(
            "Search %r via %s: %d chars (%.0fms)",
            query, backend, len(result), (time.perf_counter() - t0) * 1000,
        )
        return result

    def _brave(self, client: httpx.Client, query: str) -> str:
        resp = client.get(
            BRAVE_URL,
            params={"q": query, "count": MAX_RESULTS},
            headers={"X-Subscription-Token": self._brave_key, "Accept": "application/json"},
        )
        if resp.status_code != 200:
            logger.warning("Brave search returned HTTP %d", resp.status_code)
            return UNAVAILABLE
        results = (resp.json().get("web") or {}).get("results") or []
        lines = [
            f"{i + 1}. {r.get('title', '')}\n   {r.get('url', '')}\n   {r.get('description', '')}"
            for i, r in enumerate(results[:MAX_RESULTS])
        ]
        return "\n\n".join(lines) if lines else NO_RESULTS

    def _duckduckgo(self, client: httpx.Client, query: str) -> str:
        resp = client.get(
            DUCKDUCKGO_URL,
            params={"q": query},
            headers={"User-Agent": "Mozilla/5.0 (compatible; slidegraph/0.1)"},
        )
        if resp.status_code != 200:
            logger.warning("DuckDuckGo search returned HTTP %d", resp.status_code)
            return UNAVAILABLE
        results: list[str] = []
        for match in _DDG_RESULT_RE.finditer(resp.text):
            title, snippet = _strip_tags(match.group(1)), _strip_tags(match.group(2))
            if title and snippet:
                results.append(f"{len(results) + 1}. {title}\n   {snippet}")
            if len(results) >= MAX_RESULTS:
                break
        return "\n\n".join(results) if results else NO_RESULTS
