from __future__ import annotations

from fastapi import Header, HTTPException

from vooli.services.run_channel import RunMetadataChannel
from vooli.services.run_manager import (
    RunAccessError,
    RunManager,
    RunNotFoundError,
    get_run_manager,
)


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity, set by the fronting identity provider."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing user identity")
    return x_user_id.strip()


def get_manager() -> RunManager:
    return get_run_manager()


def resolve_run_channel(manager: RunManager, run_id: str, token: str | None) -> RunMetadataChannel:
    try:
        return manager.channel(run_id, token)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")
    except RunAccessError:
        raise HTTPException(status_code=403, detail="Invalid run token")
