from typing import Optional


class CrewError(Exception):
    """Base class for everything the orchestrator raises on purpose."""


class ConfigError(CrewError):
    """The completion service is misconfigured (e.g. missing API key). Fatal to a run."""


class TransientError(CrewError):
    """A single completion call failed. Local to the subtask that made it."""


class PlanningFailed(CrewError):
    pass


class SubtaskExecutionError(CrewError):
    def __init__(self, step_number: int, message: str):
        super().__init__(message)
        self.step_number = step_number


class RoleNotFound(CrewError):
    def __init__(self, role: str):
        super().__init__(f"Role not registered: {role}")
        self.role = role


class UnknownSubtask(CrewError):
    def __init__(self, subtask_id: str):
        super().__init__(f"Subtask {subtask_id} is not part of this graph")
        self.subtask_id = subtask_id


class InvalidTransition(CrewError):
    """
    Raised by the store when a status write would move a record backwards
    or out of a terminal status. `current` is the status found in the store.
    """

    def __init__(self, record_id: str, current: str, requested: str):
        super().__init__(f"{record_id}: cannot move from '{current}' to '{requested}'")
        self.record_id = record_id
        self.current = current
        self.requested = requested


class TaskNotFound(CrewError):
    def __init__(self, task_id: str):
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class Forbidden(CrewError):
    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "Not authorized to access this task")


class Unauthorized(CrewError):
    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "Authentication required")
