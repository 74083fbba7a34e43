"""Bounded-concurrency enrichment of candidate product URLs.

Each URL runs scrape -> structured extraction -> persist on its own. At most
``max_parallel`` sub-tasks are in flight; the batch returns only after every
sub-task has resolved, and one URL's failure never touches its siblings.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from vooli.agents.product_extractor import ProductExtractor
from vooli.config import settings
from vooli.models.completions import ProductDetails
from vooli.models.records import ProductRecord
from vooli.services import database as db
from vooli.services import logger as log_service
from vooli.tools import page_scraper, web_utils
from vooli.tools.page_scraper import ScrapeOutcome

Scraper = Callable[[str], Awaitable[ScrapeOutcome]]


@dataclass(slots=True)
class EnrichmentOutcome:
    url: str
    product: ProductRecord | None = None
    error: str | None = None
    persisted: bool = False
    persist_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.product is not None


@dataclass
class EnrichmentReport:
    outcomes: list[EnrichmentOutcome] = field(default_factory=list)
    peak_in_flight: int = 0

    @property
    def products(self) -> list[ProductRecord]:
        return [o.product for o in self.outcomes if o.product is not None]

    @property
    def failures(self) -> list[EnrichmentOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def persistence_failures(self) -> list[EnrichmentOutcome]:
        return [o for o in self.outcomes if o.ok and not o.persisted]

    def summary(self) -> dict[str, Any]:
        return {
            "submitted": len(self.outcomes),
            "enriched": len(self.products),
            "failed": len(self.failures),
            "persist_failed": len(self.persistence_failures),
            "peak_in_flight": self.peak_in_flight,
        }


class EnrichmentExecutor:
    def __init__(
        self,
        *,
        max_parallel: int | None = None,
        scraper: Scraper | None = None,
        extractor: ProductExtractor | None = None,
        store: Any = None,
    ):
        limit = settings.enrichment_max_parallel if max_parallel is None else max_parallel
        self.max_parallel = max(int(limit), 1)
        self.scraper = scraper or page_scraper.scrape
        self.extractor = extractor or ProductExtractor()
        self.store = store or db

    async def enrich_all(self, urls: list[str], owner_id: str | None) -> EnrichmentReport:
        report = EnrichmentReport()
        if not urls:
            return report

        semaphore = asyncio.Semaphore(self.max_parallel)
        in_flight = 0

        async def run_one(url: str) -> EnrichmentOutcome:
            nonlocal in_flight
            async with semaphore:
                in_flight += 1
                report.peak_in_flight = max(report.peak_in_flight, in_flight)
                try:
                    return await self._enrich_one(url, owner_id)
                finally:
                    in_flight -= 1

        raw = await asyncio.gather(*(run_one(url) for url in urls), return_exceptions=True)
        for url, item in zip(urls, raw):
            if isinstance(item, BaseException):
                log_service.log_event(
                    event_type="enrichment_failed",
                    message=f"Enrichment raised for {url}",
                    url=url,
                    error=str(item),
                )
                report.outcomes.append(EnrichmentOutcome(url=url, error=str(item) or type(item).__name__))
            else:
                report.outcomes.append(item)

        log_service.log_event(
            event_type="enrichment_complete",
            message="Enrichment batch resolved",
            owner_id=owner_id,
            **report.summary(),
        )
        return report

    async def _enrich_one(self, url: str, owner_id: str | None) -> EnrichmentOutcome:
        scraped = await self.scraper(url)
        if not scraped.success:
            log_service.log_event(
                event_type="scrape_failed",
                message=f"Extraction failed for {url}",
                url=url,
                error=scraped.error,
            )
            return EnrichmentOutcome(url=url, error=scraped.error or "scrape failed")

        details = await self.extractor.extract(url, scraped.content)
        if not details.is_complete:
            missing = ", ".join(details.missing_fields())
            log_service.log_event(
                event_type="product_incomplete",
                message=f"Dropped product without {missing}",
                url=url,
            )
            return EnrichmentOutcome(url=url, error=f"missing fields: {missing}")

        record = self._to_record(url, details, owner_id)
        outcome = EnrichmentOutcome(url=url, product=record)
        try:
            await self.store.create_product(record)
            outcome.persisted = True
            log_service.log_db_operation("insert", "products", "success", details=url)
        except Exception as exc:
            outcome.persist_error = str(exc) or type(exc).__name__
            log_service.log_db_operation("insert", "products", "failed", details=url, error=outcome.persist_error)
        return outcome

    @staticmethod
    def _to_record(url: str, details: ProductDetails, owner_id: str | None) -> ProductRecord:
        return ProductRecord(
            name=details.product_name.strip(),
            description=details.product_description.strip(),
            price=details.product_price.strip(),
            url=url,
            image_url=details.product_image_url.strip(),
            store_name=web_utils.store_name(url),
            message_id=owner_id,
        )
