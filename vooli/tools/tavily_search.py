from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from tavily import AsyncTavilyClient

from vooli.config import settings
from vooli.tools import web_utils


@dataclass
class SearchResult:
    title: str
    url: str
    content: str = ""
    score: float = 0.0


@dataclass
class SearchResponse:
    query: str
    results: list[SearchResult] = field(default_factory=list)
    answer: str | None = None

    @property
    def urls(self) -> list[str]:
        return [r.url for r in self.results if r.url]

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "answer": self.answer,
            "results": [
                {
                    "title": r.title,
                    "url": r.url,
                    "store_name": web_utils.store_name(r.url),
                }
                for r in self.results
            ],
        }


_client: AsyncTavilyClient | None = None


def client() -> AsyncTavilyClient:
    global _client
    if _client is None:
        _client = AsyncTavilyClient(api_key=settings.tavily_api_key)
    return _client


def parse_response(query: str, payload: dict[str, Any]) -> SearchResponse:
    answer = payload.get("answer")
    return SearchResponse(
        query=query,
        answer=answer if isinstance(answer, str) and answer.strip() else None,
        results=[
            SearchResult(
                title=r.get("title", "") or "",
                url=r.get("url", "") or "",
                content=r.get("content", "") or "",
                score=float(r.get("score", 0.0) or 0.0),
            )
            for r in payload.get("results", []) or []
            if isinstance(r, dict)
        ],
    )


async def search(
    query: str,
    *,
    max_results: int = 1,
    include_answer: bool = False,
    search_depth: str = "basic",
) -> SearchResponse:
    """Execute a Tavily web search and return ranked results."""
    response = await client().search(
        query=query,
        search_depth=search_depth,
        max_results=max_results,
        include_answer=include_answer,
        timeout=settings.search_timeout_seconds,
    )
    return parse_response(query, response)
