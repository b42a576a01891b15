import asyncio
import json
import logging
from pydantic import ValidationError
from sse_starlette.sse import ServerSentEvent
from ..store.redis_store import RedisTaskStore
from ..models.events import Event, EventType

logger = logging.getLogger(__name__)

async def event_generator(store: RedisTaskStore, task_id: str, block: int = 2000):
    """
    Async generator for SSE.
    Follows the task's execution log and yields one SSE message per event,
    closing after the DONE event written when the task reaches a terminal status.
    """
    last_id = "0-0"

    while True:
        messages = await store.read_events(task_id, last_id=last_id, block=block)

        if not messages:
            await asyncio.sleep(0.1)
            continue

        for msg_id, data in messages:
            last_id = msg_id
            payload_json = data.get("payload")
            if not payload_json:
                continue

            try:
                event = Event.model_validate_json(payload_json)
            except ValidationError as e:
                logger.error(f"Error parsing event {msg_id}: {e}")
                yield ServerSentEvent(
                    data=json.dumps({"error": "Failed to parse event"}),
                    event="error"
                )
                continue

            yield ServerSentEvent(
                data=event.model_dump_json(),
                event="message"
            )

            if event.type == EventType.DONE:
                logger.info(f"Task {task_id} done. Closing stream.")
                return
