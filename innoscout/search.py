"""Web search backends and the fallback chain that tries them in priority order.

Every backend turns its provider payload into :class:`SearchResult` items.  The
chain wraps each attempt in a :class:`BackendOutcome` so that "no results" and
"backend failed" are distinct: an empty result set moves on to the next backend
quietly, a failure is logged and then moves on.  The chain itself never raises.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable

import httpx
from duckduckgo_search import DDGS
from duckduckgo_search.exceptions import RatelimitException
from lxml import etree, html as lxml_html

from innoscout.config import Settings
from innoscout.errors import SearchBackendError
from innoscout.schemas import SearchResult

log = logging.getLogger(__name__)

DDG_API_URL = "https://api.duckduckgo.com/"
BRAVE_API_URL = "https://api.search.brave.com/res/v1/web/search"
BRAVE_HTML_URL = "https://search.brave.com/search"

_TITLE_MAX = 100


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class SearchBackend:
    """One external search provider."""

    name = "base"

    async def search(self, query: str, limit: int) -> list[SearchResult]:
        raise NotImplementedError


class _HttpBackend(SearchBackend):
    """Backend that talks to its provider through a shared ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient, user_agent: str, timeout: float = 15.0):
        self._client = client
        self._user_agent = user_agent
        self._timeout = timeout

    async def _get(self, url: str, params: dict[str, Any], headers: dict[str, str] | None = None) -> httpx.Response:
        resp = await self._client.get(
            url,
            params=params,
            headers={"User-Agent": self._user_agent, **(headers or {})},
            timeout=self._timeout,
            follow_redirects=True,
        )
        if resp.status_code >= 400:
            raise SearchBackendError(self.name, f"HTTP {resp.status_code}")
        return resp

    def _json(self, resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise SearchBackendError(self.name, f"unparsable payload: {exc}") from exc


class DuckDuckGoInstantAnswerBackend(_HttpBackend):
    """DuckDuckGo instant-answer JSON API (related topics only)."""

    name = "duckduckgo_api"

    async def search(self, query: str, limit: int) -> list[SearchResult]:
        resp = await self._get(DDG_API_URL, {
            "q": query, "format": "json", "no_html": "1", "skip_disambig": "1",
        })
        return parse_ddg_instant_answer(self._json(resp), limit)


def parse_ddg_instant_answer(data: Any, limit: int) -> list[SearchResult]:
    """Flatten ``RelatedTopics`` (including nested topic groups) into results."""
    if not isinstance(data, dict):
        return []
    topics = data.get("RelatedTopics")
    if not isinstance(topics, list):
        return []

    flat: list[dict] = []
    for topic in topics:
        if not isinstance(topic, dict):
            continue
        if isinstance(topic.get("Topics"), list):
            flat.extend(t for t in topic["Topics"] if isinstance(t, dict))
        else:
            flat.append(topic)

    results: list[SearchResult] = []
    for topic in flat:
        url, text = topic.get("FirstURL"), topic.get("Text")
        if url and text:
            results.append(SearchResult(title=text[:_TITLE_MAX], description=text, url=url))
        if len(results) >= limit:
            break
    return results


class BraveApiBackend(_HttpBackend):
    """Brave Search REST API. Requires a subscription token."""

    name = "brave_api"

    def __init__(self, client: httpx.AsyncClient, user_agent: str, api_key: str, timeout: float = 15.0):
        super().__init__(client, user_agent, timeout)
        self._api_key = api_key

    async def search(self, query: str, limit: int) -> list[SearchResult]:
        resp = await self._get(
            BRAVE_API_URL,
            {"q": query, "count": min(limit, 20)},
            headers={"Accept": "application/json", "X-Subscription-Token": self._api_key},
        )
        data = self._json(resp)
        items = (data.get("web") or {}).get("results") if isinstance(data, dict) else None
        if not isinstance(items, list):
            return []
        results: list[SearchResult] = []
        for item in items[:limit]:
            if not isinstance(item, dict) or not item.get("url"):
                continue
            title = str(item.get("title") or item["url"])
            results.append(SearchResult(
                title=title[:_TITLE_MAX],
                description=str(item.get("description") or title),
                url=item["url"],
            ))
        return results


class BraveHtmlBackend(_HttpBackend):
    """Scrapes Brave's public result page. Unknown markup yields no results."""

    name = "brave_html"

    async def search(self, query: str, limit: int) -> list[SearchResult]:
        resp = await self._get(BRAVE_HTML_URL, {"q": query, "source": "web"})
        return parse_brave_html(resp.text, limit)


def _node_text(node: Any, xpath: str) -> str:
    found = node.xpath(xpath)
    if not found:
        return ""
    return " ".join(" ".join(found[0].itertext()).split())


def parse_brave_html(raw_html: str, limit: int) -> list[SearchResult]:
    """Extract results from a Brave result page using lxml."""
    try:
        tree = lxml_html.fromstring(raw_html)
    except (etree.ParserError, etree.XMLSyntaxError, ValueError):
        return []

    results: list[SearchResult] = []
    seen: set[str] = set()
    for node in tree.xpath("//div[contains(concat(' ', normalize-space(@class), ' '), ' snippet ')]"):
        hrefs = node.xpath(".//a[starts-with(@href, 'http')]/@href")
        if not hrefs or hrefs[0] in seen:
            continue
        url = hrefs[0]
        title = _node_text(node, ".//*[contains(@class, 'title')]") or url
        desc = _node_text(node, ".//*[contains(@class, 'description')]") or title
        seen.add(url)
        results.append(SearchResult(title=title[:_TITLE_MAX], description=desc, url=url))
        if len(results) >= limit:
            break
    return results


# ---------------------------------------------------------------------------
# DuckDuckGo web results (duckduckgo_search library)
# ---------------------------------------------------------------------------


class DDGRateLimiter:
    """Rate limiter for DuckDuckGo searches.

    Enforces a minimum delay between calls and exponential backoff
    on rate limit errors.
    """

    def __init__(self, min_delay: float = 2.0, max_delay: float = 60.0):
        self._lock = asyncio.Lock()
        self._min_delay = min_delay
        self._current_delay = min_delay
        self._max_delay = max_delay
        self._last_call: float = 0.0

    async def acquire(self) -> None:
        """Wait until the current delay has elapsed since the last call."""
        async with self._lock:
            now = time.monotonic()
            wait = self._current_delay - (now - self._last_call)
            if wait > 0:
                log.debug("DDG rate limiter: waiting %.1fs", wait)
                await asyncio.sleep(wait)
            self._last_call = time.monotonic()

    def backoff(self) -> None:
        """Double the current delay (up to max) after a rate limit error."""
        self._current_delay = min(self._current_delay * 2, self._max_delay)
        log.warning("DDG rate limited, backing off to %.0fs between requests", self._current_delay)

    def reset(self) -> None:
        self._current_delay = self._min_delay


class DuckDuckGoTextBackend(SearchBackend):
    """DuckDuckGo web results via ``duckduckgo_search``, with one retry on rate limiting."""

    name = "duckduckgo"

    def __init__(self, limiter: DDGRateLimiter | None = None, timeout: float = 15.0):
        self._limiter = limiter or DDGRateLimiter()
        self._timeout = timeout

    def _text(self, query: str, limit: int) -> list[dict]:
        return DDGS(timeout=int(self._timeout)).text(query, max_results=limit) or []

    async def _run(self, query: str, limit: int) -> list[dict]:
        await self._limiter.acquire()
        return await asyncio.to_thread(self._text, query, limit)

    async def search(self, query: str, limit: int) -> list[SearchResult]:
        try:
            raw = await self._run(query, limit)
        except RatelimitException:
            self._limiter.backoff()
            try:
                raw = await self._run(query, limit)
            except RatelimitException as exc:
                self._limiter.backoff()
                raise SearchBackendError(self.name, "rate limited after retry") from exc
        self._limiter.reset()

        results: list[SearchResult] = []
        for r in raw:
            href = r.get("href")
            if not href:
                continue
            title = str(r.get("title") or href)
            results.append(SearchResult(
                title=title[:_TITLE_MAX], description=str(r.get("body") or title), url=href,
            ))
        return results[:limit]


# ---------------------------------------------------------------------------
# Fallback chain
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BackendOutcome:
    """Result of one backend attempt: either results (possibly empty) or an error."""
    backend: str
    results: list[SearchResult] = field(default_factory=list)
    error: SearchBackendError | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


async def attempt(backend: SearchBackend, query: str, limit: int) -> BackendOutcome:
    """Run one backend, converting any exception into a failed outcome."""
    try:
        results = await backend.search(query, limit)
    except SearchBackendError as exc:
        return BackendOutcome(backend.name, error=exc)
    except Exception as exc:
        return BackendOutcome(
            backend.name, error=SearchBackendError(backend.name, str(exc) or type(exc).__name__),
        )
    return BackendOutcome(backend.name, results=list(results)[:limit])


class SearchFallbackChain:
    """Try backends in order; the first non-empty result set wins."""

    def __init__(self, backends: Iterable[SearchBackend]):
        self.backends = list(backends)

    async def search(self, query: str, limit: int = 10) -> list[SearchResult]:
        for backend in self.backends:
            outcome = await attempt(backend, query, limit)
            if outcome.failed:
                log.warning("Search backend %s failed for %r: %s", outcome.backend, query, outcome.error)
                continue
            if not outcome.results:
                log.debug("Search backend %s returned no results for %r", outcome.backend, query)
                continue
            log.info("Found %d results via %s for %r", len(outcome.results), outcome.backend, query)
            return outcome.results
        log.warning("All search backends exhausted for %r", query)
        return []


def build_search_chain(settings: Settings, client: httpx.AsyncClient) -> SearchFallbackChain:
    """Build the chain in ``settings.search_backends`` order.

    ``brave_api`` is skipped unless a Brave API key is configured.
    """
    timeout = settings.search_timeout_seconds
    backends: list[SearchBackend] = []
    for name in settings.search_backends:
        if name == "duckduckgo_api":
            backends.append(DuckDuckGoInstantAnswerBackend(client, settings.user_agent, timeout))
        elif name == "duckduckgo":
            limiter = DDGRateLimiter(settings.ddg_min_delay_seconds, settings.ddg_max_delay_seconds)
            backends.append(DuckDuckGoTextBackend(limiter, timeout))
        elif name == "brave_api":
            if settings.brave_api_key:
                backends.append(BraveApiBackend(client, settings.user_agent, settings.brave_api_key, timeout))
        elif name == "brave_html":
            backends.append(BraveHtmlBackend(client, settings.browser_user_agent, timeout))
        else:
            log.warning("Unknown search backend %r in settings, skipping", name)
    return SearchFallbackChain(backends)
