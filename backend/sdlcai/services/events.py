"""Progress events emitted by the PipelineController.

Events are notifications only: observers cannot drive the controller by
sending them back. Delivery is fire-and-forget to

- in-process listeners (plain callables),
- async subscriptions (one ``asyncio.Queue`` per subscriber, used by SSE),
- optionally a Redis channel, for observers in other processes.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Callable

import redis.asyncio as aioredis
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "sdlcai:events:"

# Event types
RUN_STARTED = "run_started"
AGENT_STARTED = "agent_started"
AWAITING_REVIEW = "awaiting_review"
TASK_VALIDATED = "task_validated"
TASK_FAILED = "task_failed"
REVIEW_MALFORMED = "review_malformed"
AGENT_VALIDATED = "agent_validated"
RUN_COMPLETED = "run_completed"
RUN_FAILED = "run_failed"
RUN_ABANDONED = "run_abandoned"

FAILURE_EVENTS = frozenset({TASK_FAILED, REVIEW_MALFORMED, RUN_FAILED})


class PipelineEvent(BaseModel):
    """An event emitted during pipeline execution."""
    event_type: str
    run_id: str | None = None
    agent: str | None = None
    index: int | None = None  # position in the run's sequence
    total: int | None = None
    sequence: list[str] | None = None  # run_started only
    tasks: list[str] | None = None
    task: str | None = None
    output: dict[str, Any] | None = None  # awaiting_review only
    error: str | None = None
    timestamp: float = Field(default_factory=time.time)

    def to_sse(self) -> str:
        data = self.model_dump(exclude_none=True)
        return f"event: {self.event_type}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


Listener = Callable[[PipelineEvent], Any]


class EventBus:
    """Fans events out to listeners and subscriptions."""

    def __init__(self, *, queue_size: int = 256) -> None:
        self._listeners: list[Listener] = []
        self._queues: set[asyncio.Queue[PipelineEvent]] = set()
        self._queue_size = queue_size
        self._tasks: set[asyncio.Future] = set()

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, event: PipelineEvent) -> None:
        if event.event_type in FAILURE_EVENTS:
            logger.warning("Event %s agent=%s task=%s: %s", event.event_type, event.agent, event.task, event.error)
        else:
            logger.info("Event %s agent=%s index=%s", event.event_type, event.agent, event.index)

        for listener in list(self._listeners):
            try:
                result = listener(event)
                if asyncio.iscoroutine(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
            except Exception:
                # Observers are non-authoritative; never let one break the run
                logger.warning("Event listener %r failed", listener, exc_info=True)

        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Dropping %s for a slow subscriber", event.event_type)

    async def subscribe(self) -> AsyncIterator[PipelineEvent]:
        """Async generator yielding every event published after subscription."""
        queue: asyncio.Queue[PipelineEvent] = asyncio.Queue(maxsize=self._queue_size)
        self._queues.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    @property
    def pending_deliveries(self) -> int:
        return len(self._tasks)

    async def close(self) -> None:
        """Wait for in-flight async deliveries, then close listeners that hold resources."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        for listener in list(self._listeners):
            close = getattr(listener, "close", None)
            if close is None:
                continue
            try:
                result = close()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.warning("Failed to close event listener %r", listener, exc_info=True)


# ──────── Redis relay (optional, cross-process) ────────

class RedisEventRelay:
    """Listener that republishes events on a per-run Redis channel."""

    def __init__(self, redis_url: str):
        self._client: aioredis.Redis = aioredis.from_url(redis_url)

    def __call__(self, event: PipelineEvent) -> Any:
        return self._publish(event)

    async def _publish(self, event: PipelineEvent) -> None:
        channel = f"{CHANNEL_PREFIX}{event.run_id or 'none'}"
        try:
            await self._client.publish(channel, event.model_dump_json(exclude_none=True))
        except Exception:
            # Best-effort: relay outages must not affect the run
            logger.warning("Failed to relay %s to Redis", event.event_type, exc_info=True)

    async def close(self) -> None:
        await self._client.aclose()
