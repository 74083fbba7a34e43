"""Page extraction: turns a product URL into page text.

Firecrawl is the primary provider; a Jina Reader endpoint is tried next when
one is configured. Upstream refusals and provider exceptions (timeouts,
refused connections, malformed bodies) both move on to the next provider;
when none succeeds the caller gets a failed :class:`ScrapeOutcome` listing
every provider's error.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from vooli.config import settings


@dataclass
class ScrapeOutcome:
    url: str
    success: bool
    content: str = ""
    error: str | None = None
    provider: str | None = None


Fetcher = Callable[[str, "httpx.AsyncBaseTransport | None"], Awaitable[ScrapeOutcome]]


def _failure(url: str, provider: str, message: str) -> ScrapeOutcome:
    return ScrapeOutcome(url=url, success=False, error=message, provider=provider)


async def _fetch_with_firecrawl(
    url: str, transport: httpx.AsyncBaseTransport | None = None
) -> ScrapeOutcome:
    if not settings.firecrawl_base_url:
        return _failure(url, "firecrawl", "Firecrawl base URL not configured")

    endpoint = settings.firecrawl_base_url.rstrip("/") + "/v1/scrape"
    headers = {"Content-Type": "application/json"}
    if settings.firecrawl_api_key:
        headers["Authorization"] = f"Bearer {settings.firecrawl_api_key}"
    payload = {"url": url, "formats": ["markdown"], "onlyMainContent": True}

    async with httpx.AsyncClient(
        timeout=settings.scrape_timeout_seconds,
        follow_redirects=True,
        transport=transport,
    ) as client:
        response = await client.post(endpoint, json=payload, headers=headers)
    if response.status_code >= 400:
        return _failure(url, "firecrawl", f"HTTP {response.status_code}: {response.text[:200]}")

    data = response.json()
    if not isinstance(data, dict):
        return _failure(url, "firecrawl", "Unexpected Firecrawl response")
    if data.get("success") is False:
        return _failure(url, "firecrawl", str(data.get("error") or "scrape failed"))
    body = data.get("data", data)
    content = ""
    if isinstance(body, dict):
        content = str(body.get("markdown") or body.get("content") or "")
    if not content.strip():
        return _failure(url, "firecrawl", "Firecrawl response missing content")
    return ScrapeOutcome(url=url, success=True, content=content, provider="firecrawl")


async def _fetch_with_jina_reader(
    url: str, transport: httpx.AsyncBaseTransport | None = None
) -> ScrapeOutcome:
    base = settings.jina_reader_base_url
    if "{url}" in base:
        target = base.format(url=url)
    else:
        target = base.rstrip("/") + "/" + url

    async with httpx.AsyncClient(
        timeout=settings.scrape_timeout_seconds,
        follow_redirects=True,
        transport=transport,
    ) as client:
        response = await client.get(target, headers={"X-Return-Format": "markdown"})
    if response.status_code >= 400:
        return _failure(url, "jina_reader", f"HTTP {response.status_code}")
    if not response.text.strip():
        return _failure(url, "jina_reader", "Jina reader returned empty body")
    return ScrapeOutcome(url=url, success=True, content=response.text, provider="jina_reader")


def _providers() -> list[tuple[str, Fetcher]]:
    providers: list[tuple[str, Fetcher]] = [("firecrawl", _fetch_with_firecrawl)]
    if settings.jina_reader_base_url:
        providers.append(("jina_reader", _fetch_with_jina_reader))
    return providers


async def scrape(url: str, *, transport: httpx.AsyncBaseTransport | None = None) -> ScrapeOutcome:
    """Fetch page content for `url`, trying each configured provider in turn."""
    errors: list[str] = []
    for name, fetch in _providers():
        try:
            outcome = await fetch(url, transport)
        except Exception as exc:
            errors.append(f"{name}: {type(exc).__name__}: {exc}")
            continue
        if outcome.success:
            return outcome
        errors.append(f"{name}: {outcome.error}")
    return ScrapeOutcome(url=url, success=False, error="; ".join(errors))
