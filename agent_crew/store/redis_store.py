import uuid
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError, RedisError, WatchError
from pydantic import BaseModel

from ..core.config import Settings
from ..core.errors import InvalidTransition, TaskNotFound, UnknownSubtask
from ..models.events import Event
from ..models.task import (
    Role, Subtask, SubtaskStatus, Task, TaskStatus, WORK_ROLES,
    SUBTASK_TRANSITIONS, TASK_TRANSITIONS, TERMINAL_TASK_STATES, utcnow,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

ACTIVE_TASKS_KEY = "crew:tasks:active"


def _task_key(task_id: str) -> str:
    return f"crew:task:{task_id}"


def _task_subtasks_key(task_id: str) -> str:
    return f"crew:task:{task_id}:subtasks"


def _subtask_key(subtask_id: str) -> str:
    return f"crew:subtask:{subtask_id}"


def _user_tasks_key(user_id: str) -> str:
    return f"crew:user:{user_id}:tasks"


def _user_roles_key(user_id: str) -> str:
    return f"crew:user:{user_id}:roles"


def _events_key(task_id: str) -> str:
    return f"task_events:{task_id}"


class RedisTaskStore:
    """
    Durable task/subtask store.

    Every task and subtask is one JSON record under its own key, so a
    status and its output/error always land in a single write. Status
    updates are WATCH/MULTI compare-and-set transactions that refuse
    backwards or post-terminal transitions.
    """

    def __init__(self, connection: "redis.Redis", use_fake: bool = False):
        self.redis = connection
        self.use_fake = use_fake

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisTaskStore":
        if settings.use_fake_redis:
            import fakeredis.aioredis
            logger.warning("⚠️ USING FAKE REDIS (IN-MEMORY) - FOR TESTING ONLY ⚠️")
            return cls(fakeredis.aioredis.FakeRedis(decode_responses=True), use_fake=True)

        logger.info(f"🔌 Initializing Real Redis Client at {settings.redis_url}")
        try:
            connection = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                health_check_interval=30,
            )
        except ValueError as e:
            logger.critical(f"❌ Invalid REDIS_URL or configuration: {e}")
            raise
        return cls(connection)

    async def check_connection(self) -> bool:
        """
        Verifies connection to Redis. Called on startup; the app still
        starts when Redis is down, but every request will fail.
        """
        if self.use_fake:
            return True

        try:
            await self.redis.ping()
            logger.info("✅ Redis Connection Verified.")
            return True
        except RedisConnectionError as e:
            logger.critical(f"❌ FAILED to connect to Redis: {e}")
            logger.critical("👉 Please start Redis (e.g., `docker run -p 6379:6379 redis`) or set USE_FAKE_REDIS=true")
            return False

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def create_task(self, goal_text: str, user_id: str) -> Task:
        task = Task(id=str(uuid.uuid4()), user_id=user_id, goal_text=goal_text)

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(_task_key(task.id), task.model_dump_json(exclude={"subtasks"}))
            pipe.zadd(_user_tasks_key(user_id), {task.id: task.created_at.timestamp()})
            pipe.sadd(ACTIVE_TASKS_KEY, task.id)
            await pipe.execute()

        logger.info(f"📝 Created task {task.id} for user {user_id}")
        return task

    async def get_task(self, task_id: str) -> Optional[Task]:
        raw = await self.redis.get(_task_key(task_id))
        if raw is None:
            return None
        task = Task.model_validate_json(raw)
        task.subtasks = await self._load_subtasks(task_id)
        return task

    async def list_tasks(self, user_id: str) -> List[Task]:
        """Newest first, without subtasks."""
        task_ids = await self.redis.zrevrange(_user_tasks_key(user_id), 0, -1)
        if not task_ids:
            return []
        raws = await self.redis.mget([_task_key(task_id) for task_id in task_ids])
        return [Task.model_validate_json(raw) for raw in raws if raw is not None]

    async def list_active_task_ids(self) -> List[str]:
        return sorted(await self.redis.smembers(ACTIVE_TASKS_KEY))

    async def update_task(
        self,
        task_id: str,
        status: TaskStatus,
        final_output: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Task:
        def mutate(task: Task) -> Task:
            if status not in TASK_TRANSITIONS.get(task.status, set()):
                raise InvalidTransition(task_id, task.status.value, status.value)
            task.status = status
            if final_output is not None:
                task.final_output = final_output
            if error_message is not None:
                task.error_message = error_message
            task.updated_at = utcnow()
            return task

        def after(pipe, task: Task) -> None:
            if task.status in TERMINAL_TASK_STATES:
                pipe.srem(ACTIVE_TASKS_KEY, task_id)

        task = await self._compare_and_set(
            _task_key(task_id), Task, mutate, after,
            missing=lambda: TaskNotFound(task_id),
            dump=lambda t: t.model_dump_json(exclude={"subtasks"}),
        )
        logger.info(f"📤 Task {task_id} -> {status.value}")
        return task

    # ------------------------------------------------------------------
    # Subtasks
    # ------------------------------------------------------------------

    async def create_subtasks(self, task_id: str, subtasks: Iterable[Dict[str, Any]]) -> List[Subtask]:
        """
        Persists a batch of subtasks in one transaction.

        Each item carries step_number, role, input and thought; id and
        depends_on are optional so planned graphs keep their own ids.
        """
        records = []
        for item in subtasks:
            tool_input = item.get("input") or {}
            if isinstance(tool_input, str):
                tool_input = {"query": tool_input}
            records.append(Subtask(
                id=item.get("id") or str(uuid.uuid4()),
                task_id=task_id,
                step_number=item["step_number"],
                role=Role(item["role"]),
                tool_input=tool_input,
                agent_thought=item.get("thought"),
                depends_on=list(item.get("depends_on") or []),
            ))
        records.sort(key=lambda s: s.step_number)

        if not await self.redis.exists(_task_key(task_id)):
            raise TaskNotFound(task_id)

        async with self.redis.pipeline(transaction=True) as pipe:
            for record in records:
                pipe.set(_subtask_key(record.id), record.model_dump_json())
            if records:
                pipe.rpush(_task_subtasks_key(task_id), *[record.id for record in records])
            await pipe.execute()

        logger.info(f"📝 Created {len(records)} subtasks for task {task_id}")
        return records

    async def update_subtask(self, subtask_id: str, status: SubtaskStatus, result: Optional[str] = None) -> Subtask:
        def mutate(subtask: Subtask) -> Subtask:
            if status not in SUBTASK_TRANSITIONS.get(subtask.status, set()):
                raise InvalidTransition(subtask_id, subtask.status.value, status.value)
            subtask.status = status
            if result is not None:
                subtask.tool_output = result
            subtask.updated_at = utcnow()
            return subtask

        return await self._compare_and_set(
            _subtask_key(subtask_id), Subtask, mutate,
            missing=lambda: UnknownSubtask(subtask_id),
        )

    async def _load_subtasks(self, task_id: str) -> List[Subtask]:
        subtask_ids = await self.redis.lrange(_task_subtasks_key(task_id), 0, -1)
        if not subtask_ids:
            return []
        raws = await self.redis.mget([_subtask_key(subtask_id) for subtask_id in subtask_ids])
        subtasks = [Subtask.model_validate_json(raw) for raw in raws if raw is not None]
        return sorted(subtasks, key=lambda s: s.step_number)

    async def _compare_and_set(
        self,
        key: str,
        model: "type[ModelT]",
        mutate: Callable[[ModelT], ModelT],
        after: Optional[Callable[[Any, ModelT], None]] = None,
        missing: Optional[Callable[[], Exception]] = None,
        dump: Optional[Callable[[ModelT], str]] = None,
    ) -> ModelT:
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        raise missing() if missing else KeyError(key)
                    record = mutate(model.model_validate_json(raw))
                    pipe.multi()
                    pipe.set(key, dump(record) if dump else record.model_dump_json())
                    if after:
                        after(pipe, record)
                    await pipe.execute()
                    return record
                except WatchError:
                    logger.debug(f"Concurrent write on {key}, retrying")
                    continue

    # ------------------------------------------------------------------
    # Role preferences
    # ------------------------------------------------------------------

    async def get_enabled_roles(self, user_id: str) -> Dict[Role, bool]:
        stored = await self.redis.hgetall(_user_roles_key(user_id))
        return {role: stored.get(role.value, "1") == "1" for role in WORK_ROLES}

    async def set_role_enabled(self, user_id: str, role: Role, enabled: bool) -> Dict[Role, bool]:
        await self.redis.hset(_user_roles_key(user_id), role.value, "1" if enabled else "0")
        return await self.get_enabled_roles(user_id)

    # ------------------------------------------------------------------
    # Execution log
    # ------------------------------------------------------------------

    async def publish_event(self, task_id: str, event: Event):
        """
        Appends an event to the task's Redis Stream.
        The event is wrapped in a single 'payload' field to keep the
        stream schema stable.
        """
        stream_key = _events_key(task_id)

        try:
            await self.redis.xadd(stream_key, {"payload": event.model_dump_json()})
            logger.info(f"📤 Published to {stream_key}: [{event.type.value}] {event.message[:50]}...")
        except RedisError as e:
            logger.error(f"❌ Failed to publish event to {stream_key}: {e}")
            raise

    async def read_events(self, task_id: str, last_id: str = "0-0", block: int = 5000, count: int = 10) -> List[tuple]:
        """
        Reads new events from the stream after last_id.
        Returns a list of (stream_id, payload_dict); empty on connection loss
        so SSE consumers just see a pause.
        """
        stream_key = _events_key(task_id)

        try:
            streams = await self.redis.xread({stream_key: last_id}, count=count, block=block)

            if not streams:
                return []

            _, messages = streams[0]
            return messages

        except RedisConnectionError as e:
            logger.error(f"❌ Redis Connection Lost during read: {e}")
            return []

    async def list_events(self, task_id: str) -> List[Event]:
        entries = await self.redis.xrange(_events_key(task_id))
        return [Event.model_validate_json(data["payload"]) for _, data in entries if data.get("payload")]

    async def close(self):
        await self.redis.aclose()
        logger.info("🔌 Redis Client Closed.")
