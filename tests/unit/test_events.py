"""Event sink tests."""

import pytest

from stepgraph.contracts import WorkflowEvent, WorkflowEventType
from stepgraph.events.inmemory import InMemoryEventSink


def _event(event_type=WorkflowEventType.STEP_STARTED, execution_id="e1"):
    return WorkflowEvent(
        type=event_type,
        workflow_id="wf",
        execution_id=execution_id,
        payload={"step_id": "a"},
    )


@pytest.mark.asyncio
async def test_inmemory_sink_records_and_notifies():
    sink = InMemoryEventSink()
    seen_sync = []
    seen_async = []

    async def async_callback(event):
        seen_async.append(event.id)

    sink.subscribe(lambda event: seen_sync.append(event.id))
    sink.subscribe(async_callback)

    first = _event()
    second = _event(WorkflowEventType.STEP_COMPLETED, execution_id="e2")
    await sink.publish(first)
    await sink.publish(second)

    assert [e.id for e in sink.events] == [first.id, second.id]
    assert seen_sync == seen_async == [first.id, second.id]
    assert sink.of_type(WorkflowEventType.STEP_COMPLETED) == [second]
    assert sink.of_type(WorkflowEventType.STEP_STARTED, execution_id="e2") == []

    sink.clear()
    assert sink.events == []


def test_event_json_round_trip():
    event = _event(WorkflowEventType.EXECUTION_FAILED)
    restored = WorkflowEvent.from_json(event.to_json())
    assert restored == event
    assert '"execution.failed"' in event.to_json()


class FakeRedis:
    def __init__(self):
        self.lists = {}

    async def lpush(self, key, value):
        self.lists.setdefault(key, []).insert(0, value)
        return len(self.lists[key])


@pytest.mark.asyncio
async def test_redis_sink_pushes_json_events():
    pytest.importorskip("redis")
    from stepgraph.events.redis import RedisEventSink

    sink = RedisEventSink(key="wf:events")
    assert sink.host == "localhost"
    assert sink.port == 6379
    fake = FakeRedis()
    sink._redis = fake

    first = _event()
    second = _event(WorkflowEventType.STEP_COMPLETED)
    await sink.publish(first)
    await sink.publish(second)

    pushed = [WorkflowEvent.from_json(raw) for raw in fake.lists["wf:events"]]
    assert pushed == [second, first]
