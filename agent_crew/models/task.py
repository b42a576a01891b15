from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERROR = "error"
    STOPPED = "stopped"


class SubtaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    STOPPED = "stopped"


class Role(str, Enum):
    PLANNER = "planner"
    RESEARCHER = "researcher"
    ANALYST = "analyst"
    WRITER = "writer"
    EXECUTOR = "executor"


RUNNING_TASK_STATES = {TaskStatus.PLANNING, TaskStatus.EXECUTING}
TERMINAL_TASK_STATES = {TaskStatus.COMPLETED, TaskStatus.ERROR, TaskStatus.STOPPED}
TERMINAL_SUBTASK_STATES = {SubtaskStatus.COMPLETED, SubtaskStatus.ERROR, SubtaskStatus.STOPPED}
OPEN_SUBTASK_STATES = {SubtaskStatus.PENDING, SubtaskStatus.PROCESSING}

# Roles a user can switch off; the planner is always available.
WORK_ROLES = [Role.RESEARCHER, Role.ANALYST, Role.WRITER, Role.EXECUTOR]

SUBTASK_TRANSITIONS = {
    SubtaskStatus.PENDING: {SubtaskStatus.PROCESSING, SubtaskStatus.STOPPED},
    SubtaskStatus.PROCESSING: {SubtaskStatus.COMPLETED, SubtaskStatus.ERROR, SubtaskStatus.STOPPED},
}

TASK_TRANSITIONS = {
    TaskStatus.PLANNING: {TaskStatus.EXECUTING} | TERMINAL_TASK_STATES,
    TaskStatus.EXECUTING: set(TERMINAL_TASK_STATES),
}


class Subtask(BaseModel):
    id: str
    task_id: str
    step_number: int
    role: Role
    tool_input: Dict[str, Any] = Field(default_factory=dict)
    status: SubtaskStatus = SubtaskStatus.PENDING
    tool_output: Optional[str] = None
    agent_thought: Optional[str] = None
    depends_on: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def description(self) -> str:
        return self.tool_input.get("description") or self.tool_input.get("query", "")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SUBTASK_STATES


class Task(BaseModel):
    id: str
    user_id: str
    goal_text: str
    status: TaskStatus = TaskStatus.PLANNING
    final_output: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    subtasks: List[Subtask] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATES


class PlannedStep(BaseModel):
    """One step as parsed from planner output, before it gets an id."""
    role: Role
    title: str
    query: str
    thought: Optional[str] = None
    expected_output: Optional[str] = None
    # 1-based step numbers; None means the planner did not say.
    depends_on: Optional[List[int]] = None
