from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from vooli.tools import page_scraper, tavily_search


def test_parse_response_keeps_answer_and_results():
    payload = {
        "answer": "The Sony WH-1000XM5 leads most reviews.",
        "results": [
            {"title": "Best headphones", "url": "https://www.rtings.com/headphones", "content": "...", "score": 0.92},
            {"title": None, "url": "https://example.com/x"},
            "garbage",
        ],
    }
    response = tavily_search.parse_response("best headphones", payload)

    assert response.answer == "The Sony WH-1000XM5 leads most reviews."
    assert response.urls == ["https://www.rtings.com/headphones", "https://example.com/x"]
    assert response.results[1].title == ""
    assert response.to_dict()["results"][0]["store_name"] == "rtings.com"


def test_parse_response_treats_blank_answer_as_missing():
    response = tavily_search.parse_response("q", {"answer": "  ", "results": []})
    assert response.answer is None
    assert response.results == []


@pytest.mark.asyncio
async def test_search_passes_options_to_tavily():
    fake_client = MagicMock()
    fake_client.search = AsyncMock(return_value={"answer": "ok", "results": []})

    with patch("vooli.tools.tavily_search.client", return_value=fake_client):
        response = await tavily_search.search("headphones review", max_results=1, include_answer=True)

    assert response.answer == "ok"
    kwargs = fake_client.search.await_args.kwargs
    assert kwargs["query"] == "headphones review"
    assert kwargs["max_results"] == 1
    assert kwargs["include_answer"] is True


@pytest.mark.asyncio
async def test_firecrawl_scrape_returns_markdown():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "data": {"markdown": "# Sony WH-1000XM5\n$349.99"}})

    with patch("vooli.tools.page_scraper.settings") as mock_settings:
        mock_settings.firecrawl_base_url = "https://firecrawl.test"
        mock_settings.firecrawl_api_key = "fc-key"
        mock_settings.jina_reader_base_url = ""
        mock_settings.scrape_timeout_seconds = 5
        outcome = await page_scraper.scrape(
            "https://www.bestbuy.com/sony", transport=httpx.MockTransport(handler)
        )

    assert outcome.success
    assert outcome.provider == "firecrawl"
    assert "$349.99" in outcome.content
    assert seen["url"] == "https://firecrawl.test/v1/scrape"
    assert seen["body"]["url"] == "https://www.bestbuy.com/sony"
    assert seen["body"]["formats"] == ["markdown"]


@pytest.mark.asyncio
async def test_scrape_falls_back_to_jina_reader():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "firecrawl.test":
            return httpx.Response(402, text="payment required")
        return httpx.Response(200, text="Sony WH-1000XM5 349.99 USD")

    with patch("vooli.tools.page_scraper.settings") as mock_settings:
        mock_settings.firecrawl_base_url = "https://firecrawl.test"
        mock_settings.firecrawl_api_key = ""
        mock_settings.jina_reader_base_url = "https://reader.test"
        mock_settings.scrape_timeout_seconds = 5
        outcome = await page_scraper.scrape(
            "https://shop.example.com/p", transport=httpx.MockTransport(handler)
        )

    assert outcome.success
    assert outcome.provider == "jina_reader"


@pytest.mark.asyncio
async def test_scrape_reports_every_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "error": "blocked by robots"})

    with patch("vooli.tools.page_scraper.settings") as mock_settings:
        mock_settings.firecrawl_base_url = "https://firecrawl.test"
        mock_settings.firecrawl_api_key = ""
        mock_settings.jina_reader_base_url = ""
        mock_settings.scrape_timeout_seconds = 5
        outcome = await page_scraper.scrape(
            "https://shop.example.com/p", transport=httpx.MockTransport(handler)
        )

    assert not outcome.success
    assert outcome.error == "firecrawl: blocked by robots"


@pytest.mark.asyncio
async def test_firecrawl_connection_error_falls_back_to_jina_reader():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "firecrawl.test":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, text="Bose QuietComfort Ultra 429.00 USD")

    with patch("vooli.tools.page_scraper.settings") as mock_settings:
        mock_settings.firecrawl_base_url = "https://firecrawl.test"
        mock_settings.firecrawl_api_key = ""
        mock_settings.jina_reader_base_url = "https://reader.test"
        mock_settings.scrape_timeout_seconds = 5
        outcome = await page_scraper.scrape(
            "https://shop.example.com/bose", transport=httpx.MockTransport(handler)
        )

    assert outcome.success
    assert outcome.provider == "jina_reader"
    assert "429.00 USD" in outcome.content


@pytest.mark.asyncio
async def test_scrape_turns_provider_exceptions_into_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "firecrawl.test":
            return httpx.Response(200, text="<html>not json</html>")
        raise httpx.ReadTimeout("timed out", request=request)

    with patch("vooli.tools.page_scraper.settings") as mock_settings:
        mock_settings.firecrawl_base_url = "https://firecrawl.test"
        mock_settings.firecrawl_api_key = ""
        mock_settings.jina_reader_base_url = "https://reader.test"
        mock_settings.scrape_timeout_seconds = 5
        outcome = await page_scraper.scrape(
            "https://shop.example.com/p", transport=httpx.MockTransport(handler)
        )

    assert not outcome.success
    assert outcome.error.startswith("firecrawl: ")
    assert "jina_reader: ReadTimeout: timed out" in outcome.error
