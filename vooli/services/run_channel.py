"""Per-run progress channel.

A channel is a last-write-wins map of entries (``status``, ``sources``,
``products`` ...) plus an append-only token stream. The orchestrator is its
only writer. Readers either take a :class:`ProgressSnapshot` or subscribe and
receive the current snapshot followed by every later write, in write order.

Each subscriber owns an unbounded queue, so a slow reader never blocks the
writer. Once closed the channel is frozen: its final snapshot is returned on
every read and any further write raises :class:`ChannelClosedError`.
"""
from __future__ import annotations

import asyncio
import copy
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

from vooli.models.events import ChannelEvent, EventType
from vooli.services import streaming

STATUS_KEY = "status"
RESPONSE_STREAM = "response"


class ChannelClosedError(RuntimeError):
    """Raised when writing to a channel whose run already finished."""


@dataclass(frozen=True)
class ProgressSnapshot:
    run_id: str
    status: str | None
    entries: dict[str, Any] = field(default_factory=dict)
    tokens: tuple[str, ...] = ()
    closed: bool = False
    seq: int = 0

    @property
    def products(self) -> list[dict[str, Any]] | None:
        return self.entries.get("products")

    @property
    def sources(self) -> list[dict[str, Any]] | None:
        return self.entries.get("sources")

    @property
    def text(self) -> str:
        return "".join(self.tokens)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "entries": copy.deepcopy(self.entries),
            "stream": {RESPONSE_STREAM: list(self.tokens)},
            "closed": self.closed,
            "seq": self.seq,
        }


class RunMetadataChannel:
    def __init__(self, run_id: str):
        self.run_id = run_id
        self._entries: dict[str, Any] = {}
        self._tokens: list[str] = []
        self._subscribers: set[asyncio.Queue[ChannelEvent]] = set()
        self._close_callbacks: list[Callable[["RunMetadataChannel"], None]] = []
        self._seq = 0
        self._final: ProgressSnapshot | None = None

    @property
    def closed(self) -> bool:
        return self._final is not None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def on_close(self, callback: Callable[["RunMetadataChannel"], None]) -> None:
        self._close_callbacks.append(callback)

    # --- write side ---

    def set_status(self, name: str) -> None:
        self._ensure_open()
        self._entries[STATUS_KEY] = name
        self._seq += 1
        self._publish(streaming.status_changed(name, self._seq))

    def set_entry(self, key: str, value: Any) -> None:
        self._ensure_open()
        if key == STATUS_KEY:
            self.set_status(str(value))
            return
        stored = copy.deepcopy(value)
        self._entries[key] = stored
        self._seq += 1
        self._publish(streaming.entry_updated(key, copy.deepcopy(stored), self._seq))

    def append_stream_token(self, token: str) -> None:
        self._ensure_open()
        self._tokens.append(token)
        self._seq += 1
        self._publish(streaming.stream_token(token, len(self._tokens) - 1, self._seq))

    def close(self) -> ProgressSnapshot:
        """Freeze the channel and notify subscribers. Closing twice is a no-op."""
        if self._final is not None:
            return self._final
        self._seq += 1
        self._final = self._build_snapshot(closed=True)
        self._publish(streaming.run_complete(self._final.to_dict(), self._seq))
        for callback in self._close_callbacks:
            callback(self)
        return self._final

    # --- read side ---

    def snapshot(self) -> ProgressSnapshot:
        if self._final is not None:
            return self._final
        return self._build_snapshot(closed=False)

    async def subscribe(self) -> AsyncIterator[ChannelEvent]:
        """Yield the current snapshot, then live events until the run closes."""
        current = self.snapshot()
        if current.closed:
            yield streaming.snapshot(current.to_dict(), current.seq)
            yield streaming.run_complete(current.to_dict(), current.seq)
            return

        # Register before yielding: writes made while the caller handles the
        # snapshot must land in the queue.
        queue: asyncio.Queue[ChannelEvent] = asyncio.Queue()
        self._subscribers.add(queue)
        try:
            yield streaming.snapshot(current.to_dict(), current.seq)
            while True:
                event = await queue.get()
                yield event
                if event.event == EventType.COMPLETE:
                    return
        finally:
            self._subscribers.discard(queue)

    # --- internals ---

    def _ensure_open(self) -> None:
        if self._final is not None:
            raise ChannelClosedError(f"Channel for run {self.run_id} is closed")

    def _publish(self, event: ChannelEvent) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    def _build_snapshot(self, *, closed: bool) -> ProgressSnapshot:
        entries = copy.deepcopy(self._entries)
        return ProgressSnapshot(
            run_id=self.run_id,
            status=entries.get(STATUS_KEY),
            entries=entries,
            tokens=tuple(self._tokens),
            closed=closed,
            seq=self._seq,
        )


class ChannelRegistry:
    """Live channels by run id, plus a bounded archive of closed ones."""

    def __init__(self, archive_size: int = 256):
        self.archive_size = max(int(archive_size), 0)
        self._live: dict[str, RunMetadataChannel] = {}
        self._archive: OrderedDict[str, RunMetadataChannel] = OrderedDict()
        self._tokens: dict[str, str] = {}

    def create(self, run_id: str, *, access_token: str | None = None) -> RunMetadataChannel:
        if run_id in self._live or run_id in self._archive:
            raise ValueError(f"Channel already exists for run {run_id}")
        channel = RunMetadataChannel(run_id)
        channel.on_close(self._archive_channel)
        self._live[run_id] = channel
        if access_token is not None:
            self._tokens[run_id] = access_token
        return channel

    def get(self, run_id: str) -> RunMetadataChannel | None:
        return self._live.get(run_id) or self._archive.get(run_id)

    def access_token(self, run_id: str) -> str | None:
        return self._tokens.get(run_id)

    @property
    def live_count(self) -> int:
        return len(self._live)

    @property
    def archived_count(self) -> int:
        return len(self._archive)

    def _archive_channel(self, channel: RunMetadataChannel) -> None:
        self._live.pop(channel.run_id, None)
        self._archive[channel.run_id] = channel
        while len(self._archive) > self.archive_size:
            evicted, _ = self._archive.popitem(last=False)
            self._tokens.pop(evicted, None)
