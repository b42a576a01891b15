from .task import Task, Subtask, TaskStatus, SubtaskStatus, Role, PlannedStep
from .events import Event, EventType, EventSource

__all__ = [
    "Task", "Subtask", "TaskStatus", "SubtaskStatus", "Role", "PlannedStep",
    "Event", "EventType", "EventSource",
]
