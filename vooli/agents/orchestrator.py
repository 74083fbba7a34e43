from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from vooli.agents.product_extractor import ProductExtractor
from vooli.config import settings
from vooli.llm_client import CompletionClient, client as llm_client, get_model, get_reasoning_model
from vooli.models.completions import MessageIntent, ProductQueries
from vooli.models.records import SourceRecord
from vooli.models.run import (
    FinalAnswer,
    Run,
    RunDiagnostics,
    RunOutcome,
    RunStage,
    StageResult,
)
from vooli.services import database as db
from vooli.services import logger as log_service
from vooli.services.enrichment import EnrichmentExecutor, EnrichmentReport
from vooli.services.prompt_store import render_prompt
from vooli.services.run_channel import RunMetadataChannel
from vooli.tools import tavily_search, web_utils
from vooli.tools.tavily_search import SearchResponse

SearchFn = Callable[..., Awaitable[SearchResponse]]

STATUS_BY_STAGE = {
    RunStage.INTENT: "understanding-message",
    RunStage.REVIEW_SEARCH: "searching-product-reviews",
    RunStage.QUERY_DERIVATION: "getting-product-queries",
    RunStage.PRODUCT_SEARCH: "searching-product",
    RunStage.ENRICHMENT: "enriching-products",
    RunStage.ANSWERING: "generating-response",
}

TERMINAL_STATUS = {
    RunOutcome.ANSWERED: "complete",
    RunOutcome.DECLINED: "declined",
    RunOutcome.FAILED: "failed",
}

APOLOGY_BY_STAGE = {
    RunStage.INTENT: "I'm sorry, I don't understand your message.",
    RunStage.REVIEW_SEARCH: "I'm sorry, I couldn't find any product reviews.",
    RunStage.QUERY_DERIVATION: "I'm sorry, I couldn't find any product queries.",
    RunStage.PRODUCT_SEARCH: "I'm sorry, I couldn't find any product search results.",
    RunStage.ANSWERING: "I'm sorry, I couldn't generate a response.",
}

NEXT_STAGE = {
    RunStage.INTENT: RunStage.REVIEW_SEARCH,
    RunStage.REVIEW_SEARCH: RunStage.QUERY_DERIVATION,
    RunStage.QUERY_DERIVATION: RunStage.PRODUCT_SEARCH,
    RunStage.PRODUCT_SEARCH: RunStage.ENRICHMENT,
    RunStage.ENRICHMENT: RunStage.ANSWERING,
    RunStage.ANSWERING: RunStage.DONE,
}

# A failed intent stage declines the request; every other failure fails the run.
FAILURE_OUTCOME = {
    stage: RunOutcome.DECLINED if stage is RunStage.INTENT else RunOutcome.FAILED
    for stage in NEXT_STAGE
}

# Stages whose failure is recorded and skipped instead of ending the run.
BEST_EFFORT_STAGES = frozenset({RunStage.ENRICHMENT})


@dataclass
class RunContext:
    """Per-run state threaded through every stage handler."""

    run: Run
    channel: RunMetadataChannel
    diagnostics: RunDiagnostics = field(default_factory=RunDiagnostics)
    review_queries: list[str] = field(default_factory=list)
    review_responses: list[SearchResponse] = field(default_factory=list)
    product_queries: list[str] = field(default_factory=list)
    product_responses: list[SearchResponse] = field(default_factory=list)
    candidate_urls: list[str] = field(default_factory=list)
    enrichment: EnrichmentReport | None = None
    answer: str = ""
    last_error: str | None = None

    @property
    def review_answers(self) -> list[str]:
        # One line per review query, so line N always answers query N.
        return [r.answer or "" for r in self.review_responses]


class StageOrchestrator:
    """Runs the shopping pipeline for one message at a time.

    Flow:
      1. Classify intent and produce review search queries
      2. Search reviews (sequential, order preserved)
      3. Derive storefront queries from the review answers
      4. Search products, cap the candidate list
      5. Fan out enrichment over candidate URLs (best effort)
      6. Stream the answer token by token into the run channel

    The orchestrator holds no per-run state; everything a run needs lives in
    its RunContext, so one instance can serve concurrent runs.
    """

    def __init__(
        self,
        *,
        completion: CompletionClient | None = None,
        search: SearchFn | None = None,
        executor: EnrichmentExecutor | None = None,
        store: Any = None,
        model: str | None = None,
        reasoning_model: str | None = None,
        max_product_queries: int | None = None,
        max_candidate_results: int | None = None,
        stage_timeout: float | None = None,
    ):
        self.completion = completion
        self.search = search or tavily_search.search
        self.store = store or db
        self.executor = executor or EnrichmentExecutor(
            store=self.store,
            extractor=ProductExtractor(completion=completion),
        )
        self.model = model or get_model()
        self.reasoning_model = reasoning_model or get_reasoning_model()
        self.max_product_queries = max(
            int(max_product_queries if max_product_queries is not None else settings.max_product_queries), 1
        )
        self.max_candidate_results = max(
            int(max_candidate_results if max_candidate_results is not None else settings.max_candidate_results), 1
        )
        self.stage_timeout = stage_timeout if stage_timeout is not None else settings.stage_timeout_seconds
        self._handlers: dict[RunStage, Callable[[RunContext], Awaitable[StageResult]]] = {
            RunStage.INTENT: self._understand_message,
            RunStage.REVIEW_SEARCH: self._search_reviews,
            RunStage.QUERY_DERIVATION: self._derive_product_queries,
            RunStage.PRODUCT_SEARCH: self._search_products,
            RunStage.ENRICHMENT: self._enrich_candidates,
            RunStage.ANSWERING: self._stream_answer,
        }

    @property
    def llm(self) -> CompletionClient:
        return self.completion or llm_client()

    async def execute(
        self,
        chat_id: str,
        message_text: str,
        *,
        run: Run | None = None,
        channel: RunMetadataChannel | None = None,
    ) -> FinalAnswer:
        if not message_text or not message_text.strip():
            raise ValueError("message_text must be non-empty")

        run = run or Run(chat_id=chat_id, message_text=message_text)
        ctx = RunContext(run=run, channel=channel or RunMetadataChannel(run.id))
        log_service.log_event(
            event_type="run_started",
            message="Run started",
            run_id=run.id,
            chat_id=chat_id,
            query=message_text[:100],
        )

        placeholder = await self._persist(
            ctx,
            RunStage.INTENT,
            "insert",
            "messages",
            lambda: self.store.create_message(
                chat_id, "assistant", render_prompt("placeholder.generating")
            ),
        )
        if placeholder:
            run.message_id = str(placeholder["id"])

        stage = run.current_stage
        while not stage.is_terminal:
            run.advance(stage)
            ctx.channel.set_status(STATUS_BY_STAGE[stage])
            await self._persist(
                ctx,
                stage,
                "update",
                "runs",
                lambda: self.store.update_run(run.id, stage=stage.value, message_id=run.message_id),
            )

            result = await self._run_stage(ctx, stage)
            if not result.ok:
                if stage in BEST_EFFORT_STAGES:
                    ctx.diagnostics.record(stage, "executor", ctx.last_error or "stage failed")
                else:
                    return await self._terminate(ctx, FAILURE_OUTCOME[stage], APOLOGY_BY_STAGE[stage])
            stage = NEXT_STAGE[stage]

        return await self._terminate(ctx, RunOutcome.ANSWERED, ctx.answer)

    async def _run_stage(self, ctx: RunContext, stage: RunStage) -> StageResult:
        handler = self._handlers[stage]
        log_service.log_run_stage(ctx.run.id, stage.value, "started")
        try:
            result = await asyncio.wait_for(handler(ctx), timeout=self.stage_timeout)
        except Exception as exc:
            ctx.last_error = f"{type(exc).__name__}: {exc}"
            log_service.log_run_stage(ctx.run.id, stage.value, "failed", {"error": ctx.last_error})
            return StageResult.failure()
        if result.ok:
            log_service.log_run_stage(ctx.run.id, stage.value, "completed")
        else:
            ctx.last_error = "stage returned no usable output"
            log_service.log_run_stage(ctx.run.id, stage.value, "failed")
        return result

    # --- stages ---

    async def _understand_message(self, ctx: RunContext) -> StageResult:
        intent = await self.llm.generate_object(
            schema=MessageIntent,
            system=render_prompt("intent.system"),
            prompt=ctx.run.message_text,
            model=self.reasoning_model,
            caller="orchestrator.intent",
        )
        queries = [q.strip() for q in intent.queries if q and q.strip()]
        if not intent.intentIsProductReview or not queries:
            return StageResult.failure()
        ctx.review_queries = queries
        return StageResult.success(intent)

    async def _search_reviews(self, ctx: RunContext) -> StageResult:
        responses: list[SearchResponse] = []
        for query in ctx.review_queries:
            responses.append(
                await self.search(
                    query,
                    max_results=settings.review_search_max_results,
                    include_answer=True,
                )
            )
        ctx.review_responses = responses

        sources = [
            SourceRecord(url=result.url, title=result.title, answer=response.answer)
            for response in responses
            for result in response.results
            if result.url
        ]
        ctx.channel.set_entry("sources", [s.to_dict() for s in sources])
        for source in sources:
            await self._persist_owned(
                ctx,
                RunStage.REVIEW_SEARCH,
                "sources",
                lambda message_id, source=source: self.store.create_source(
                    message_id, source.url, source.answer or source.title or None
                ),
            )
        return StageResult.success(responses)

    async def _derive_product_queries(self, ctx: RunContext) -> StageResult:
        derived = await self.llm.generate_object(
            schema=ProductQueries,
            prompt=render_prompt(
                "product_queries.prompt",
                reviews="\n".join(ctx.review_answers),
                max_queries=self.max_product_queries,
            ),
            model=self.reasoning_model,
            caller="orchestrator.product_queries",
        )
        queries = [q.strip() for q in derived.queries if q and q.strip()]
        if not queries:
            return StageResult.failure()
        ctx.product_queries = queries[: self.max_product_queries]
        return StageResult.success(ctx.product_queries)

    async def _search_products(self, ctx: RunContext) -> StageResult:
        responses: list[SearchResponse] = []
        for query in ctx.product_queries:
            responses.append(
                await self.search(
                    query,
                    max_results=settings.product_search_max_results,
                )
            )
        ctx.product_responses = responses[: self.max_candidate_results]
        ctx.candidate_urls = web_utils.unique_urls(
            [url for response in ctx.product_responses for url in response.urls],
            limit=self.max_candidate_results,
        )
        ctx.channel.set_entry("products", [r.to_dict() for r in ctx.product_responses])
        return StageResult.success(ctx.candidate_urls)

    async def _enrich_candidates(self, ctx: RunContext) -> StageResult:
        report = await self.executor.enrich_all(ctx.candidate_urls, ctx.run.message_id)
        ctx.enrichment = report
        for outcome in report.failures:
            ctx.diagnostics.record(RunStage.ENRICHMENT, "enrichment", f"{outcome.url}: {outcome.error}")
        for outcome in report.persistence_failures:
            ctx.diagnostics.record(RunStage.ENRICHMENT, "persistence", f"{outcome.url}: {outcome.persist_error}")
        ctx.channel.set_entry("enriched_products", [p.to_dict() for p in report.products])
        return StageResult.success(report)

    async def _stream_answer(self, ctx: RunContext) -> StageResult:
        product_lines = [
            f"Title: {result.title}\nURL: {result.url}\nStore: {web_utils.store_name(result.url) or 'unknown'}"
            for response in ctx.product_responses
            for result in response.results
        ]
        prompt = render_prompt(
            "answer.prompt",
            message=ctx.run.message_text,
            reviews="\n".join(ctx.review_answers),
            products="\n".join(product_lines),
        )

        parts: list[str] = []
        async for token in self.llm.stream_text(
            prompt=prompt,
            model=self.model,
            caller="orchestrator.answer",
        ):
            ctx.channel.append_stream_token(token)
            parts.append(token)

        ctx.answer = "".join(parts)
        if not ctx.answer.strip():
            return StageResult.failure()
        return StageResult.success(ctx.answer)

    # --- termination & persistence ---

    async def _terminate(self, ctx: RunContext, outcome: RunOutcome, text: str) -> FinalAnswer:
        run = ctx.run
        run.finish(outcome)
        await self._persist_owned(
            ctx,
            run.current_stage,
            "messages",
            lambda message_id: self.store.update_message_content(message_id, text),
        )
        await self._persist(
            ctx,
            run.current_stage,
            "update",
            "runs",
            lambda: self.store.update_run(run.id, stage=run.current_stage.value, outcome=outcome.value),
        )

        ctx.channel.set_entry("outcome", outcome.value)
        ctx.channel.set_entry("diagnostics", ctx.diagnostics.to_dict())
        ctx.channel.set_status(TERMINAL_STATUS[outcome])
        ctx.channel.close()

        log_service.log_event(
            event_type="run_finished",
            message=f"Run finished: {outcome.value}",
            run_id=run.id,
            outcome=outcome.value,
            swallowed=ctx.diagnostics.to_dict(),
        )
        return FinalAnswer(
            run_id=run.id,
            outcome=outcome,
            text=text,
            message_id=run.message_id,
            diagnostics=ctx.diagnostics,
        )

    async def _persist(
        self,
        ctx: RunContext,
        stage: RunStage,
        operation: str,
        table: str,
        write: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Run one best-effort write; failures are logged and recorded, never raised."""
        try:
            result = await write()
        except Exception as exc:
            detail = f"{operation} {table}: {exc}"
            ctx.diagnostics.record(stage, "persistence", detail)
            log_service.log_db_operation(operation, table, "failed", details=ctx.run.id, error=str(exc))
            return None
        log_service.log_db_operation(operation, table, "success", details=ctx.run.id)
        return result

    async def _persist_owned(
        self,
        ctx: RunContext,
        stage: RunStage,
        table: str,
        write: Callable[[str], Awaitable[Any]],
    ) -> Any:
        """Best-effort write of a row owned by the run's placeholder message."""
        message_id = ctx.run.message_id
        if message_id is None:
            ctx.diagnostics.record(stage, "persistence", f"{table}: no placeholder message")
            return None
        return await self._persist(ctx, stage, "write", table, lambda: write(message_id))
