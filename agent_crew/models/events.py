from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

class EventType(str, Enum):
    STATUS = "status"
    ERROR = "error"
    DONE = "done"

class EventSource(str, Enum):
    SYSTEM = "system"
    PLANNER = "planner"
    RESEARCHER = "researcher"
    ANALYST = "analyst"
    WRITER = "writer"
    EXECUTOR = "executor"

class Event(BaseModel):
    type: EventType
    source: EventSource
    message: str
    step_number: Optional[int] = None
    timestamp: str = Field(default_factory=lambda: datetime.isoformat(datetime.now()))
