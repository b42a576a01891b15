import json

import pytest

from agent_crew.models.events import Event, EventSource, EventType
from agent_crew.streaming.sse import event_generator


@pytest.mark.asyncio
async def test_stream_replays_log_and_closes_on_done(store):
    task = await store.create_task("goal", "alice")
    await store.publish_event(task.id, Event(type=EventType.STATUS, source=EventSource.PLANNER, message="planning"))
    await store.publish_event(task.id, Event(type=EventType.ERROR, source=EventSource.RESEARCHER, message="step 1 failed"))
    await store.publish_event(task.id, Event(type=EventType.DONE, source=EventSource.SYSTEM, message="Task error."))
    await store.publish_event(task.id, Event(type=EventType.STATUS, source=EventSource.SYSTEM, message="after done"))

    sent = [message async for message in event_generator(store, task.id, block=10)]

    payloads = [json.loads(message.data) for message in sent]
    assert [p["message"] for p in payloads] == ["planning", "step 1 failed", "Task error."]
    assert all(message.event == "message" for message in sent)


@pytest.mark.asyncio
async def test_stream_skips_entries_without_payload(store):
    task = await store.create_task("goal", "alice")
    await store.redis.xadd(f"task_events:{task.id}", {"other": "x"})
    await store.publish_event(task.id, Event(type=EventType.DONE, source=EventSource.SYSTEM, message="bye"))

    sent = [message async for message in event_generator(store, task.id, block=10)]

    assert len(sent) == 1
    assert json.loads(sent[0].data)["type"] == "done"
