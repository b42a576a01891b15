import asyncio
import logging
from typing import Dict, List, Optional

from ..models.events import Event, EventSource, EventType
from ..models.task import RUNNING_TASK_STATES, Role, Task, TaskStatus
from ..store.redis_store import RedisTaskStore
from .completion_client import CompletionClient
from .config import Settings
from .crew import Crew, ensure_owner, stop_open_subtasks, stop_task_record
from .errors import InvalidTransition

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Task interrupted by a server restart"
SHUTDOWN_MESSAGE = "Task interrupted by a server shutdown"


class Orchestrator:
    """
    Process-level owner of running crews and the client-facing operations.

    Architecture Note:
    - create_task() returns as soon as the task record exists; the crew
      runs as a detached asyncio task whose handle is kept here.
    - Clients observe progress only through the store (get_task polling
      or the event log).
    - Every operation checks that the caller owns the task.
    """

    def __init__(self, store: RedisTaskStore, client: CompletionClient, settings: Settings):
        self.store = store
        self.client = client
        self.settings = settings
        self._crews: Dict[str, Crew] = {}

    @property
    def running_task_ids(self) -> List[str]:
        return list(self._crews)

    def handle(self, task_id: str) -> Optional[asyncio.Task]:
        """The detached run for task_id, if it is still going in this process."""
        crew = self._crews.get(task_id)
        return crew.handle if crew else None

    async def create_task(self, user_id: str, goal_text: str) -> Task:
        enabled = await self.store.get_enabled_roles(user_id)
        crew = Crew(
            self.store,
            self.client,
            self.settings,
            enabled_roles=[role for role, on in enabled.items() if on],
        )
        task = await crew.create(goal_text, user_id)
        logger.info(f"Orchestrator processing task {task.id}")

        self._crews[task.id] = crew
        handle = crew.start()
        handle.add_done_callback(lambda _: self._crews.pop(task.id, None))
        return task

    async def get_task(self, user_id: str, task_id: str) -> Task:
        return ensure_owner(await self.store.get_task(task_id), task_id, user_id)

    async def list_tasks(self, user_id: str) -> List[Task]:
        return await self.store.list_tasks(user_id)

    async def stop_task(self, user_id: str, task_id: str) -> bool:
        task = await self.get_task(user_id, task_id)
        logger.info(f"User {user_id} is stopping task {task_id}")

        crew = self._crews.get(task_id)
        if crew is not None:
            return await crew.request_stop()
        # No live crew (e.g. after a restart): only the records need updating.
        return await stop_task_record(self.store, task)

    async def list_events(self, user_id: str, task_id: str) -> List[Event]:
        await self.get_task(user_id, task_id)
        return await self.store.list_events(task_id)

    async def get_roles(self, user_id: str) -> Dict[Role, bool]:
        return await self.store.get_enabled_roles(user_id)

    async def set_role_enabled(self, user_id: str, role: Role, enabled: bool) -> Dict[Role, bool]:
        return await self.store.set_role_enabled(user_id, role, enabled)

    async def recover_interrupted(self) -> List[str]:
        """
        Marks tasks left running by a previous process as failed.
        Their open subtasks are stopped; finished ones keep their results.
        """
        recovered = []
        for task_id in await self.store.list_active_task_ids():
            if task_id in self._crews:
                continue
            task = await self.store.get_task(task_id)
            if task is None or task.status not in RUNNING_TASK_STATES:
                continue
            if await self._mark_interrupted(task_id, INTERRUPTED_MESSAGE):
                recovered.append(task_id)

        if recovered:
            logger.warning(f"Marked {len(recovered)} interrupted task(s) as error: {recovered}")
        return recovered

    async def shutdown(self):
        crews = list(self._crews.values())
        for crew in crews:
            crew.scheduler.request_stop()
            crew.handle.cancel()

        handles = [crew.handle for crew in crews]
        if handles:
            await asyncio.gather(*handles, return_exceptions=True)
        for crew in crews:
            await self._mark_interrupted(crew.task_id, SHUTDOWN_MESSAGE)
        logger.info(f"Orchestrator shut down ({len(handles)} run(s) cancelled)")

    async def _mark_interrupted(self, task_id: str, message: str) -> bool:
        """
        Fails a task whose run will never finish, stops its open subtasks
        and closes its execution log with a DONE event.
        """
        try:
            await self.store.update_task(task_id, TaskStatus.ERROR, error_message=message)
        except InvalidTransition:
            return False

        task = await self.store.get_task(task_id)
        await stop_open_subtasks(self.store, task.subtasks)
        await self.store.publish_event(task_id, Event(
            type=EventType.DONE,
            source=EventSource.SYSTEM,
            message=message,
        ))
        return True
