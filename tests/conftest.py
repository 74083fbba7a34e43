from __future__ import annotations

import asyncio
import uuid
from typing import Any

import pytest

from vooli.models.completions import MessageIntent, ProductDetails, ProductQueries
from vooli.tools.page_scraper import ScrapeOutcome
from vooli.tools.tavily_search import SearchResponse, SearchResult


class FakeStore:
    """In-memory stand-in for the database module."""

    def __init__(self, fail: set[str] | None = None):
        self.fail = fail or set()
        self.messages: dict[str, dict[str, Any]] = {}
        self.sources: list[tuple[str, str, str | None]] = []
        self.products: list[Any] = []
        self.runs: dict[str, dict[str, Any]] = {}
        self.run_updates: list[dict[str, Any]] = []

    def _check(self, name: str) -> None:
        if name in self.fail:
            raise RuntimeError(f"{name} unavailable")

    async def create_message(self, chat_id, role, content):
        self._check("create_message")
        row = {"id": str(uuid.uuid4()), "chat_id": chat_id, "role": role, "content": content}
        self.messages[row["id"]] = row
        return row

    async def update_message_content(self, message_id, content):
        self._check("update_message_content")
        self.messages[message_id]["content"] = content

    async def create_source(self, message_id, url, description=None):
        self._check("create_source")
        self.sources.append((message_id, url, description))
        return {"id": str(uuid.uuid4()), "message_id": message_id, "url": url}

    async def create_product(self, record):
        self._check("create_product")
        self.products.append(record)
        return {"id": str(uuid.uuid4())}

    async def create_run(self, run_id, chat_id, access_token, stage, message_id=None):
        self._check("create_run")
        self.runs[run_id] = {"chat_id": chat_id, "stage": stage, "outcome": None}
        return self.runs[run_id]

    async def update_run(self, run_id, *, stage, outcome=None, message_id=None):
        self._check("update_run")
        self.run_updates.append({"run_id": run_id, "stage": stage, "outcome": outcome})


class FakeCompletion:
    """Scripted completion client keyed by target schema."""

    def __init__(
        self,
        *,
        intent: MessageIntent | Exception | None = None,
        queries: ProductQueries | Exception | None = None,
        details: dict[str, ProductDetails] | None = None,
        tokens: list[str] | Exception | None = None,
    ):
        self.intent = intent
        self.queries = queries
        self.details = details or {}
        self.tokens = tokens if tokens is not None else []
        self.calls: list[str] = []
        self.prompts: dict[str, str] = {}

    async def generate_object(self, *, schema, prompt, system=None, model=None, caller="generate_object"):
        self.calls.append(caller)
        self.prompts[caller] = prompt
        if schema is MessageIntent:
            value = self.intent
        elif schema is ProductQueries:
            value = self.queries
        else:
            value = next(
                (d for url, d in self.details.items() if url in prompt),
                ProductDetails(),
            )
        if isinstance(value, Exception):
            raise value
        return value

    async def stream_text(self, *, prompt, system=None, model=None, caller="stream_text"):
        self.calls.append(caller)
        self.prompts[caller] = prompt
        if isinstance(self.tokens, Exception):
            raise self.tokens
        for token in self.tokens:
            await asyncio.sleep(0)
            yield token


class FakeSearch:
    """Answers review queries with a summary and product queries with store links."""

    def __init__(self, product_urls: dict[str, list[str]] | None = None, fail: bool = False):
        self.product_urls = product_urls or {}
        self.fail = fail
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def __call__(self, query: str, **kwargs) -> SearchResponse:
        self.calls.append((query, kwargs))
        if self.fail:
            raise RuntimeError("search provider down")
        if kwargs.get("include_answer"):
            return SearchResponse(
                query=query,
                answer=f"Reviewers recommend the Sony WH-1000XM5 for {query}",
                results=[SearchResult(title=f"Review of {query}", url=f"https://reviews.example.com/{len(self.calls)}")],
            )
        urls = self.product_urls.get(query, [])
        return SearchResponse(
            query=query,
            results=[SearchResult(title=f"{query} at store", url=url) for url in urls],
        )


def complete_details(name: str, price: str = "349.99 USD") -> ProductDetails:
    return ProductDetails(
        product_name=name,
        product_description=f"{name} wireless noise cancelling headphones",
        product_price=price,
        product_image_url=f"https://img.example.com/{name.replace(' ', '-').lower()}.jpg",
    )


def scraper_for(pages: dict[str, str]):
    async def scrape(url: str) -> ScrapeOutcome:
        if url not in pages:
            return ScrapeOutcome(url=url, success=False, error="HTTP 404")
        return ScrapeOutcome(url=url, success=True, content=pages[url], provider="firecrawl")

    return scrape


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def fake_store_cls():
    return FakeStore


@pytest.fixture
def fake_completion_cls():
    return FakeCompletion


@pytest.fixture
def fake_search_cls():
    return FakeSearch


@pytest.fixture
def details_factory():
    return complete_details


@pytest.fixture
def scraper_factory():
    return scraper_for
