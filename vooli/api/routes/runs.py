from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query
from sse_starlette.sse import EventSourceResponse

from vooli.api.deps import get_manager, resolve_run_channel
from vooli.models.schemas import RunSnapshotResponse
from vooli.services import logger as log_service
from vooli.services import streaming
from vooli.services.run_manager import RunManager

router = APIRouter(prefix="/api/runs", tags=["runs"])


@router.get("/{run_id}", response_model=RunSnapshotResponse)
async def get_run_snapshot(
    run_id: str,
    token: str | None = Query(default=None),
    x_run_token: str | None = Header(default=None),
    manager: RunManager = Depends(get_manager),
):
    """Current progress snapshot; stable once the run has finished."""
    channel = resolve_run_channel(manager, run_id, token or x_run_token)
    return channel.snapshot().to_dict()


@router.get("/{run_id}/stream")
async def stream_run(
    run_id: str,
    token: str | None = Query(default=None),
    x_run_token: str | None = Header(default=None),
    manager: RunManager = Depends(get_manager),
):
    """SSE endpoint: snapshot, then every status/entry/token write, then completion."""
    channel = resolve_run_channel(manager, run_id, token or x_run_token)

    async def event_generator():
        try:
            async for event in channel.subscribe():
                yield event.to_sse()
        except Exception as e:
            log_service.log_event(
                event_type="stream_error",
                message="Unhandled error in run stream",
                error=str(e),
                run_id=run_id,
            )
            yield streaming.error("Run stream failed unexpectedly.").to_sse()

    return EventSourceResponse(event_generator())
