import logging
from typing import Dict, Iterable, Optional, Type, Union

from ..core.completion_client import CompletionClient
from ..core.config import Settings
from ..core.errors import RoleNotFound
from ..models.task import Role
from .analyst_worker import AnalystWorker
from .base_worker import BaseWorker
from .executor_worker import ExecutorWorker
from .planner import PlannerAgent
from .researcher_worker import ResearcherWorker
from .roles import DEFAULT_ROLES, RoleDescriptor
from .writer_worker import WriterWorker

logger = logging.getLogger(__name__)

WORKER_CLASSES: Dict[Role, Type[BaseWorker]] = {
    Role.PLANNER: PlannerAgent,
    Role.RESEARCHER: ResearcherWorker,
    Role.ANALYST: AnalystWorker,
    Role.WRITER: WriterWorker,
    Role.EXECUTOR: ExecutorWorker,
}


class RoleRegistry:
    """
    Fixed role -> worker dispatch table.

    Built once per crew from the injected completion client; nothing is
    registered after construction.
    """

    def __init__(
        self,
        client: CompletionClient,
        settings: Settings,
        roles: Optional[Iterable[RoleDescriptor]] = None,
    ):
        self._descriptors: Dict[Role, RoleDescriptor] = {}
        self._workers: Dict[Role, BaseWorker] = {}
        for descriptor in (DEFAULT_ROLES if roles is None else roles):
            self._descriptors[descriptor.role] = descriptor
            self._workers[descriptor.role] = WORKER_CLASSES[descriptor.role](descriptor, client, settings)
        logger.debug(f"Registered roles: {[role.value for role in self._workers]}")

    def _coerce(self, role: Union[Role, str]) -> Role:
        try:
            return Role(role)
        except ValueError:
            raise RoleNotFound(str(role)) from None

    def has(self, role: Union[Role, str]) -> bool:
        try:
            return self._coerce(role) in self._workers
        except RoleNotFound:
            return False

    def resolve(self, role: Union[Role, str]) -> RoleDescriptor:
        key = self._coerce(role)
        if key not in self._descriptors:
            raise RoleNotFound(key.value)
        return self._descriptors[key]

    def worker(self, role: Union[Role, str]) -> BaseWorker:
        key = self._coerce(role)
        if key not in self._workers:
            raise RoleNotFound(key.value)
        return self._workers[key]

    def planner(self) -> PlannerAgent:
        worker = self.worker(Role.PLANNER)
        if not isinstance(worker, PlannerAgent):
            raise TypeError(f"Planner role is served by {type(worker).__name__}, not PlannerAgent")
        return worker
