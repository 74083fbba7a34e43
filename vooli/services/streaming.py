from __future__ import annotations

from typing import Any

from vooli.models.events import ChannelEvent, EventType


def snapshot(data: dict[str, Any], seq: int) -> ChannelEvent:
    return ChannelEvent(event=EventType.SNAPSHOT, data=data, seq=seq)


def status_changed(status: str, seq: int) -> ChannelEvent:
    return ChannelEvent(event=EventType.STATUS, data={"status": status}, seq=seq)


def entry_updated(key: str, value: Any, seq: int) -> ChannelEvent:
    return ChannelEvent(event=EventType.ENTRY, data={"key": key, "value": value}, seq=seq)


def stream_token(token: str, index: int, seq: int) -> ChannelEvent:
    """One streamed answer delta; `index` is its position in the token stream."""
    return ChannelEvent(event=EventType.TOKEN, data={"token": token, "index": index}, seq=seq)


def run_complete(data: dict[str, Any], seq: int) -> ChannelEvent:
    return ChannelEvent(event=EventType.COMPLETE, data=data, seq=seq)


def error(message: str, seq: int = 0) -> ChannelEvent:
    return ChannelEvent(event=EventType.ERROR, data={"message": message}, seq=seq)
