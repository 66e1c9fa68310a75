"""Server-sent event formatting, the per-connection event channel, and heartbeats."""

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Callable

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_CLOSE = object()


def format_sse_event(event_type: str, data: dict, event_id: str | None = None) -> str:
    """Format one SSE event frame."""
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append(f"event: {event_type}")
    lines.append(f"data: {json.dumps(data)}")
    return "\n".join(lines) + "\n\n"


def format_sse_comment(text: str) -> str:
    """Comment frame; conforming clients ignore it."""
    return f":{text}\n\n"


def format_heartbeat(timestamp_ms: int | None = None) -> str:
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return format_sse_comment(f"heartbeat {timestamp_ms}")


class EventChannel:
    """Single-consumer queue of formatted SSE frames for one connection.

    ``close`` is idempotent; frames sent after close are dropped.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._sequence = 0
        self.close_count = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event_type: str, data: dict) -> bool:
        if self._closed:
            logger.debug(f"Dropping {event_type} event on closed channel")
            return False
        self._sequence += 1
        self._queue.put_nowait(format_sse_event(event_type, data, str(self._sequence)))
        return True

    def send_comment(self, frame: str) -> bool:
        if self._closed:
            return False
        self._queue.put_nowait(frame)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.close_count += 1
        self._queue.put_nowait(_CLOSE)

    async def __aiter__(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                return
            yield item


class HeartbeatTicker:
    """Emits a heartbeat comment every ``interval`` seconds until stopped.

    Runs as its own task and only touches the channel. ``start`` and
    ``stop`` are idempotent; errors end the ticker without reaching the
    generation flow.
    """

    def __init__(
        self,
        channel: EventChannel,
        interval: float,
        clock: Callable[[], float] = time.time,
    ):
        self.channel = channel
        self.interval = interval
        self.clock = clock
        self.beats = 0
        self._stopped = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._stopped or self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name="sse-heartbeat")

    def stop(self) -> None:
        self._stopped = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self) -> None:
        try:
            while not self._stopped:
                await asyncio.sleep(self.interval)
                if self._stopped:
                    break
                self.channel.send_comment(format_heartbeat(int(self.clock() * 1000)))
                self.beats += 1
        except asyncio.CancelledError:
            logger.debug(f"Heartbeat stopped after {self.beats} beats")
        except Exception:
            self._stopped = True
            logger.exception("Heartbeat ticker failed; continuing without heartbeats")
