from __future__ import annotations

import asyncio
import secrets
from dataclasses import dataclass
from typing import Any

from vooli.agents.orchestrator import StageOrchestrator
from vooli.config import settings
from vooli.models.run import FinalAnswer, Run
from vooli.services import database as db
from vooli.services import logger as log_service
from vooli.services.run_channel import ChannelRegistry, RunMetadataChannel


class RunNotFoundError(LookupError):
    pass


class RunAccessError(PermissionError):
    pass


@dataclass(frozen=True)
class RunHandle:
    run_id: str
    access_token: str


class RunManager:
    """Starts runs in the background and hands out read access to their channels."""

    def __init__(
        self,
        *,
        orchestrator: StageOrchestrator | None = None,
        registry: ChannelRegistry | None = None,
        store: Any = None,
    ):
        self.store = store or db
        self.orchestrator = orchestrator or StageOrchestrator(store=self.store)
        self.registry = registry or ChannelRegistry(archive_size=settings.run_archive_size)
        self._tasks: set[asyncio.Task[FinalAnswer | None]] = set()

    @property
    def active_runs(self) -> int:
        return len(self._tasks)

    async def submit_message(self, chat_id: str, text: str) -> RunHandle:
        if not text or not text.strip():
            raise ValueError("Message cannot be empty")

        run = Run(chat_id=chat_id, message_text=text)
        access_token = secrets.token_urlsafe(32)
        channel = self.registry.create(run.id, access_token=access_token)

        try:
            await self.store.create_run(run.id, chat_id, access_token, run.current_stage.value)
        except Exception as exc:
            log_service.log_db_operation("insert", "runs", "failed", details=run.id, error=str(exc))

        task = asyncio.create_task(self._execute(run, channel), name=f"run-{run.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return RunHandle(run_id=run.id, access_token=access_token)

    async def _execute(self, run: Run, channel: RunMetadataChannel) -> FinalAnswer | None:
        try:
            return await self.orchestrator.execute(
                run.chat_id, run.message_text, run=run, channel=channel
            )
        except Exception as exc:
            log_service.logger.exception(f"Run {run.id} crashed: {exc}")
            if not channel.closed:
                channel.set_entry("outcome", "failed")
                channel.set_status("failed")
                channel.close()
            return None

    def channel(self, run_id: str, access_token: str | None) -> RunMetadataChannel:
        channel = self.registry.get(run_id)
        expected = self.registry.access_token(run_id)
        if channel is None or expected is None:
            raise RunNotFoundError(run_id)
        if not secrets.compare_digest(expected, access_token or ""):
            raise RunAccessError(run_id)
        return channel

    async def wait_idle(self) -> None:
        """Wait until every submitted run has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)


_manager: RunManager | None = None


def get_run_manager() -> RunManager:
    global _manager
    if _manager is None:
        _manager = RunManager()
    return _manager
