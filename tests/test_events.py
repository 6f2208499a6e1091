import asyncio

import pytest

from sdlcai.services.events import EventBus, PipelineEvent


def test_listeners_receive_events_in_order():
    received = []
    bus = EventBus()
    bus.add_listener(received.append)

    bus.publish(PipelineEvent(event_type="run_started", run_id="r1"))
    bus.publish(PipelineEvent(event_type="agent_started", run_id="r1", agent="Requirements", index=0))

    assert [e.event_type for e in received] == ["run_started", "agent_started"]


def test_failing_listener_does_not_stop_delivery():
    received = []
    bus = EventBus()

    def broken(event):
        raise RuntimeError("observer down")

    bus.add_listener(broken)
    bus.add_listener(received.append)
    bus.publish(PipelineEvent(event_type="run_failed", agent="Requirements", error="boom"))

    assert len(received) == 1


@pytest.mark.asyncio
async def test_subscription_yields_published_events():
    bus = EventBus()
    stream = bus.subscribe()
    first = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0)
    assert bus.subscriber_count == 1

    bus.publish(PipelineEvent(event_type="run_completed", run_id="r1"))

    event = await first
    assert event.event_type == "run_completed"
    await stream.aclose()
    assert bus.subscriber_count == 0


def test_sse_frame_format():
    frame = PipelineEvent(event_type="task_failed", agent="Architecture", task="deployment", error="bad").to_sse()

    assert frame.startswith("event: task_failed\ndata: ")
    assert frame.endswith("\n\n")
    assert '"task": "deployment"' in frame
    assert "output" not in frame


class RecordingRelay:
    """Async listener with a resource to release, like the Redis relay."""

    def __init__(self):
        self.delivered = []
        self.closed = False
        self.gate = asyncio.Event()

    def __call__(self, event):
        return self._deliver(event)

    async def _deliver(self, event):
        await self.gate.wait()
        self.delivered.append(event.event_type)

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_async_deliveries_are_tracked_until_done():
    relay = RecordingRelay()
    bus = EventBus()
    bus.add_listener(relay)

    bus.publish(PipelineEvent(event_type="run_started", run_id="r1"))
    assert bus.pending_deliveries == 1

    relay.gate.set()
    await asyncio.sleep(0.01)

    assert relay.delivered == ["run_started"]
    assert bus.pending_deliveries == 0


@pytest.mark.asyncio
async def test_close_drains_deliveries_and_closes_listeners():
    relay = RecordingRelay()
    bus = EventBus()
    bus.add_listener(relay)
    bus.add_listener(lambda event: None)

    bus.publish(PipelineEvent(event_type="run_completed", run_id="r1"))
    relay.gate.set()
    await bus.close()

    assert relay.delivered == ["run_completed"]
    assert relay.closed
    assert bus.pending_deliveries == 0
