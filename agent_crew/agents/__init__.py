from .researcher_worker import ResearcherWorker
from .analyst_worker import AnalystWorker
from .writer_worker import WriterWorker
from .executor_worker import ExecutorWorker
from .planner import PlannerAgent
from .registry import RoleRegistry
from .roles import RoleDescriptor, DEFAULT_ROLES

__all__ = [
    "ResearcherWorker", "AnalystWorker", "WriterWorker", "ExecutorWorker", "PlannerAgent",
    "RoleRegistry", "RoleDescriptor", "DEFAULT_ROLES",
]
