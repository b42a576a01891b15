import asyncio
import logging
from typing import Iterable, List, Optional

from ..agents.registry import RoleRegistry
from ..agents.roles import RoleDescriptor
from ..models.events import Event, EventSource, EventType
from ..models.task import (
    OPEN_SUBTASK_STATES, RUNNING_TASK_STATES, Role, Subtask, SubtaskStatus, Task, TaskStatus,
)
from ..store.redis_store import RedisTaskStore
from .completion_client import CompletionClient
from .config import Settings
from .errors import ConfigError, Forbidden, InvalidTransition, PlanningFailed, TaskNotFound
from .scheduler import Scheduler
from .synthesizer import Synthesizer
from .task_graph import TaskGraph

logger = logging.getLogger(__name__)

STOPPED_MESSAGE = "Task was manually stopped by the user"


def ensure_owner(task: Optional[Task], task_id: str, user_id: str) -> Task:
    if task is None:
        raise TaskNotFound(task_id)
    if task.user_id != user_id:
        raise Forbidden()
    return task


async def stop_open_subtasks(store: RedisTaskStore, subtasks: Iterable[Subtask]) -> int:
    stopped = 0
    for subtask in subtasks:
        if subtask.status not in OPEN_SUBTASK_STATES:
            continue
        try:
            await store.update_subtask(subtask.id, SubtaskStatus.STOPPED)
            stopped += 1
        except InvalidTransition as e:
            # Finished between our read and this write; its result stands.
            logger.debug(f"Leaving step {subtask.step_number} as is: {e}")
    return stopped


async def stop_task_record(store: RedisTaskStore, task: Task) -> bool:
    """
    Applies a manual stop to the stored records.

    The task moves to 'stopped' first, so a task that became terminal in
    the meantime is left completely untouched. Open subtasks are then
    swept to 'stopped'; completed and failed ones keep their results.
    """
    if task.status not in RUNNING_TASK_STATES:
        return False

    try:
        await store.update_task(task.id, TaskStatus.STOPPED, final_output=STOPPED_MESSAGE)
    except InvalidTransition as e:
        logger.info(f"Task {task.id} is not running: {e}")
        return False

    stopped = await stop_open_subtasks(store, task.subtasks)
    logger.info(f"Task {task.id} stopped; {stopped} open step(s) marked stopped")
    await store.publish_event(task.id, Event(
        type=EventType.DONE,
        source=EventSource.SYSTEM,
        message=STOPPED_MESSAGE,
    ))
    return True


class Crew:
    """
    One user goal's execution: roles, graph, scheduler and synthesizer
    behind a create / start / inspect / request_stop contract.

    The detached run owns the task record after start(); request_stop()
    is the only other writer.
    """

    def __init__(
        self,
        store: RedisTaskStore,
        client: CompletionClient,
        settings: Settings,
        enabled_roles: Optional[Iterable[Role]] = None,
        roles: Optional[Iterable[RoleDescriptor]] = None,
    ):
        self.store = store
        self.settings = settings
        self.enabled_roles = list(enabled_roles) if enabled_roles is not None else None
        self.registry = RoleRegistry(client, settings, roles)
        self.synthesizer = Synthesizer(self.registry)
        self.task: Optional[Task] = None
        self.graph: Optional[TaskGraph] = None
        self.scheduler: Optional[Scheduler] = None
        self._handle: Optional[asyncio.Task] = None

    @property
    def task_id(self) -> str:
        if self.task is None:
            raise RuntimeError("Crew has no task yet; call create() first")
        return self.task.id

    async def create(self, goal_text: str, user_id: str) -> Task:
        if self.task is not None:
            raise RuntimeError(f"Crew already owns task {self.task.id}")

        self.task = await self.store.create_task(goal_text, user_id)
        self.graph = TaskGraph(self.task.id)
        self.scheduler = Scheduler(
            self.task.id, goal_text, self.graph, self.registry, self.store, self.settings, self.enabled_roles,
        )
        await self.store.publish_event(self.task.id, Event(
            type=EventType.STATUS,
            source=EventSource.SYSTEM,
            message="Task received. Initializing planner...",
        ))
        return self.task

    def start(self) -> asyncio.Task:
        """Submits the run and returns its handle without waiting for it."""
        if self._handle is None:
            self._handle = asyncio.create_task(self._run(), name=f"crew-{self.task_id}")
        return self._handle

    @property
    def handle(self) -> Optional[asyncio.Task]:
        return self._handle

    async def inspect(self, user_id: str) -> Task:
        return ensure_owner(await self.store.get_task(self.task_id), self.task_id, user_id)

    async def request_stop(self) -> bool:
        task = await self.store.get_task(self.task_id)
        if task is None or task.status not in RUNNING_TASK_STATES:
            logger.info(f"Stop requested for task {self.task_id}, but it is not running")
            return False

        self.scheduler.request_stop()
        return await stop_task_record(self.store, task)

    async def _run(self):
        logger.info(f"===== STARTING crew execution for task {self.task_id}: {self.task.goal_text} =====")
        try:
            subtasks = await self.scheduler.run(on_planned=self._on_planned)
        except (PlanningFailed, ConfigError) as e:
            logger.error(f"Task {self.task_id} failed: {e}")
            await self._finish(TaskStatus.ERROR, error_message=str(e))
            return
        except Exception as e:
            logger.exception(f"Orchestration failed for task {self.task_id}")
            await self._finish(TaskStatus.ERROR, error_message=f"System error: {e}")
            return

        if self.scheduler.stop_requested:
            logger.info(f"Task {self.task_id}: run ended after stop request")
            return

        try:
            await self._conclude(subtasks)
        except Exception as e:
            logger.exception(f"Finishing task {self.task_id} failed")
            await self._finish(TaskStatus.ERROR, error_message=f"System error: {e}")

    async def _on_planned(self, subtasks: List[Subtask]):
        if self.scheduler.stop_requested:
            return

        await self.store.create_subtasks(self.task_id, [
            {
                "id": subtask.id,
                "step_number": subtask.step_number,
                "role": subtask.role,
                "input": subtask.tool_input,
                "thought": subtask.agent_thought,
                "depends_on": subtask.depends_on,
            }
            for subtask in subtasks
        ])

        try:
            self.task = await self.store.update_task(self.task_id, TaskStatus.EXECUTING)
        except InvalidTransition:
            # Stopped while the planner was still thinking.
            self.scheduler.request_stop()
            await stop_open_subtasks(self.store, subtasks)

    async def _conclude(self, subtasks: List[Subtask]):
        if not self.graph.is_complete():
            failed = self.graph.failed_subtasks()
            blocked = self.graph.blocked_subtasks()
            details = "; ".join(
                f"step {s.step_number} ({s.role.value}) failed: {s.tool_output}" for s in failed
            ) or "unmet dependencies"
            await self._finish(
                TaskStatus.ERROR,
                error_message=f"Task could not finish ({details}). {len(blocked)} step(s) left pending.",
            )
            return

        if not any(s.status == SubtaskStatus.COMPLETED for s in subtasks):
            details = "; ".join(f"step {s.step_number}: {s.tool_output}" for s in subtasks)
            await self._finish(TaskStatus.ERROR, error_message=f"All steps failed ({details})")
            return

        final_output = await self.synthesizer.synthesize(self.task.goal_text, subtasks)
        await self._finish(TaskStatus.COMPLETED, final_output=final_output)

    async def _finish(self, status: TaskStatus, final_output: Optional[str] = None, error_message: Optional[str] = None):
        try:
            self.task = await self.store.update_task(
                self.task_id, status, final_output=final_output, error_message=error_message,
            )
        except InvalidTransition as e:
            logger.info(f"Task {self.task_id} already finished, not recording '{status.value}': {e}")
            return

        logger.info(f"Task {self.task_id} finished with status '{status.value}'")
        await self.store.publish_event(self.task_id, Event(
            type=EventType.DONE,
            source=EventSource.SYSTEM,
            message=error_message or f"Task {status.value}.",
        ))
