import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional

from ..agents.planner import add_steps_to_graph, build_fallback_plan
from ..agents.registry import RoleRegistry
from ..models.events import Event, EventSource, EventType
from ..models.task import Role, Subtask, SubtaskStatus
from ..store.redis_store import RedisTaskStore
from .config import Settings
from .errors import ConfigError, CrewError, InvalidTransition, PlanningFailed
from .task_graph import TaskGraph

logger = logging.getLogger(__name__)

PlannedCallback = Callable[[List[Subtask]], Awaitable[None]]


class Scheduler:
    """
    Drives one task graph to completion with a single logical worker.

    Subtasks run strictly one at a time, lowest ready step first. Every
    status change is written to the store before the in-memory graph is
    updated, so pollers never see a subtask ahead of its record.
    """

    def __init__(
        self,
        task_id: str,
        goal_text: str,
        graph: TaskGraph,
        registry: RoleRegistry,
        store: RedisTaskStore,
        settings: Settings,
        enabled_roles: Optional[Iterable[Role]] = None,
    ):
        self.task_id = task_id
        self.goal_text = goal_text
        self.graph = graph
        self.registry = registry
        self.store = store
        self.settings = settings
        self.enabled_roles = list(enabled_roles) if enabled_roles is not None else None
        self._stop = asyncio.Event()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def request_stop(self):
        """Cooperative: the loop exits before starting its next subtask."""
        self._stop.set()

    async def run(self, on_planned: Optional[PlannedCallback] = None) -> List[Subtask]:
        if len(self.graph) == 0:
            subtasks = await self._plan()
            if on_planned:
                await on_planned(subtasks)

        while not self._stop.is_set():
            subtask = self.graph.next_ready()
            if subtask is None:
                if not self.graph.is_complete():
                    await self._report_deadlock()
                break
            await self._execute(subtask)

        return sorted(self.graph.terminal_subtasks(), key=lambda s: s.step_number)

    async def _plan(self) -> List[Subtask]:
        await self._emit(EventType.STATUS, EventSource.PLANNER, "Analyzing task requirements...")
        try:
            if self.registry.has(Role.PLANNER):
                subtasks = await self.registry.planner().plan(self.goal_text, self.graph, self.enabled_roles)
            else:
                logger.warning("No planner role registered. Using default plan.")
                steps = build_fallback_plan(self.goal_text, self.settings.fallback_plan_with_writer)
                subtasks = add_steps_to_graph(self.graph, steps)
        except ConfigError:
            raise
        except (CrewError, ValueError) as e:
            raise PlanningFailed(f"Planning failed: {e}") from e

        if not subtasks:
            raise PlanningFailed("Planner produced no subtasks")

        await self._emit(EventType.STATUS, EventSource.PLANNER, f"Task decomposed into {len(subtasks)} steps.")
        return subtasks

    def _dependency_context(self, subtask: Subtask) -> str:
        results = [
            f'Task "{dep.description}" result: {dep.tool_output}'
            for dep in self.graph.dependencies_of(subtask)
            if dep.status == SubtaskStatus.COMPLETED and dep.tool_output
        ]
        if not results:
            return ""
        return "Here are the results from prerequisite tasks:\n\n" + "\n\n".join(results) + "\n\n"

    async def _execute(self, subtask: Subtask):
        if not await self._transition(subtask, SubtaskStatus.PROCESSING):
            return

        source = EventSource(subtask.role.value)
        await self._emit(EventType.STATUS, source, f"Step {subtask.step_number}: {subtask.description}", subtask)

        try:
            worker = self.registry.worker(subtask.role)
            output = await worker.execute(self.goal_text, subtask, self._dependency_context(subtask))
        except ConfigError as e:
            await self._transition(subtask, SubtaskStatus.ERROR, f"Error: {e}")
            raise
        except CrewError as e:
            await self._transition(subtask, SubtaskStatus.ERROR, f"Error: {e}")
            await self._emit(EventType.ERROR, source, f"Step {subtask.step_number} failed: {e}", subtask)
            return

        if await self._transition(subtask, SubtaskStatus.COMPLETED, output):
            await self._emit(EventType.STATUS, source, f"Step {subtask.step_number} complete.", subtask)

    async def _transition(self, subtask: Subtask, status: SubtaskStatus, result: Optional[str] = None) -> bool:
        """
        Persists then mirrors a subtask status change.

        A rejected write means someone else (the stop path) already moved
        the subtask; the graph adopts the stored status and the loop stops.
        """
        try:
            await self.store.update_subtask(subtask.id, status, result)
        except InvalidTransition as e:
            logger.warning(f"Task {self.task_id}: step {subtask.step_number} not moved to {status.value}: {e}")
            self.graph.mark_status(subtask.id, SubtaskStatus(e.current))
            self._stop.set()
            return False

        self.graph.mark_status(subtask.id, status, result)
        return True

    async def _report_deadlock(self):
        blocked = self.graph.blocked_subtasks()
        message = (
            f"No further progress possible: {len(blocked)} step(s) are waiting on "
            f"dependencies that did not complete."
        )
        logger.warning(f"Task {self.task_id}: {message}")
        await self._emit(EventType.ERROR, EventSource.SYSTEM, message)

    async def _emit(self, event_type: EventType, source: EventSource, message: str, subtask: Optional[Subtask] = None):
        await self.store.publish_event(self.task_id, Event(
            type=event_type,
            source=source,
            message=message,
            step_number=subtask.step_number if subtask else None,
        ))
