import uuid
import logging
from typing import Dict, List, Optional

from ..models.task import Role, Subtask, SubtaskStatus, utcnow
from .errors import UnknownSubtask

logger = logging.getLogger(__name__)


class TaskGraph:
    """
    In-memory subtask set for one task, with dependency edges.

    Subtasks are kept in insertion order, which is also step order.
    Dependencies may only point backwards, so the graph is acyclic by
    construction.
    """

    def __init__(self, task_id: str):
        self.task_id = task_id
        self._subtasks: Dict[str, Subtask] = {}

    def __len__(self) -> int:
        return len(self._subtasks)

    @property
    def subtasks(self) -> List[Subtask]:
        return list(self._subtasks.values())

    def get(self, subtask_id: str) -> Subtask:
        try:
            return self._subtasks[subtask_id]
        except KeyError:
            raise UnknownSubtask(subtask_id) from None

    def add_subtask(
        self,
        description: str,
        expected_output: Optional[str],
        role: Role,
        dependencies: Optional[List[str]] = None,
        *,
        title: Optional[str] = None,
        query: Optional[str] = None,
        thought: Optional[str] = None,
    ) -> Subtask:
        dependencies = list(dependencies or [])
        for dep_id in dependencies:
            if dep_id not in self._subtasks:
                raise ValueError(f"Dependency {dep_id} must be added before the subtask that needs it")

        subtask = Subtask(
            id=str(uuid.uuid4()),
            task_id=self.task_id,
            step_number=len(self._subtasks) + 1,
            role=role,
            tool_input={
                "query": query or description,
                "title": title or description,
                "description": description,
                "expected_output": expected_output or "A comprehensive result",
            },
            agent_thought=thought,
            depends_on=dependencies,
        )
        self._subtasks[subtask.id] = subtask
        return subtask

    def dependencies_of(self, subtask: Subtask) -> List[Subtask]:
        return [self._subtasks[dep_id] for dep_id in subtask.depends_on]

    def _dependencies_met(self, subtask: Subtask) -> bool:
        return all(dep.status == SubtaskStatus.COMPLETED for dep in self.dependencies_of(subtask))

    def next_ready(self) -> Optional[Subtask]:
        for subtask in self._subtasks.values():
            if subtask.status == SubtaskStatus.PENDING and self._dependencies_met(subtask):
                return subtask
        return None

    def mark_status(self, subtask_id: str, status: SubtaskStatus, result: Optional[str] = None) -> Subtask:
        subtask = self.get(subtask_id)
        subtask.status = status
        if result is not None:
            subtask.tool_output = result
        subtask.updated_at = utcnow()
        return subtask

    def is_complete(self) -> bool:
        if not self._subtasks:
            return False
        return all(subtask.is_terminal for subtask in self._subtasks.values())

    def terminal_subtasks(self) -> List[Subtask]:
        return [s for s in self._subtasks.values() if s.is_terminal]

    def failed_subtasks(self) -> List[Subtask]:
        return [s for s in self._subtasks.values() if s.status == SubtaskStatus.ERROR]

    def blocked_subtasks(self) -> List[Subtask]:
        """Pending subtasks that can never start because a dependency did not complete."""
        blocked: Dict[str, Subtask] = {}
        for subtask in self._subtasks.values():
            if subtask.status != SubtaskStatus.PENDING:
                continue
            for dep in self.dependencies_of(subtask):
                if dep.id in blocked or (dep.is_terminal and dep.status != SubtaskStatus.COMPLETED):
                    blocked[subtask.id] = subtask
                    break
        return list(blocked.values())
