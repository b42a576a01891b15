import logging
from typing import List, Optional

from ..agents.base_worker import BaseWorker
from ..agents.registry import RoleRegistry
from ..models.task import Role, Subtask, SubtaskStatus

logger = logging.getLogger(__name__)

NO_RESULTS_MESSAGE = "No tasks were completed."
RESULT_SEPARATOR = "\n\n---\n\n"


class Synthesizer:
    """Combines completed subtask outputs into one final answer. Never raises."""

    def __init__(self, registry: RoleRegistry):
        self.registry = registry

    def _synthesis_worker(self) -> Optional[BaseWorker]:
        for role in (Role.WRITER, Role.PLANNER):
            if self.registry.has(role):
                return self.registry.worker(role)
        return None

    @staticmethod
    def combine(subtasks: List[Subtask]) -> str:
        return RESULT_SEPARATOR.join(
            f"TASK: {subtask.description}\n\nRESULT: {subtask.tool_output}" for subtask in subtasks
        )

    async def synthesize(self, goal_text: str, subtasks: List[Subtask]) -> str:
        completed = [s for s in subtasks if s.status == SubtaskStatus.COMPLETED]
        if not completed:
            logger.warning("No tasks were completed, returning fixed synthesis message.")
            return NO_RESULTS_MESSAGE

        combined = self.combine(completed)
        fallback = f"Goal: {goal_text}\n\n{combined}"

        worker = self._synthesis_worker()
        if worker is None:
            logger.warning("No synthesis agent found. Combining results manually.")
            return fallback

        descriptor = worker.descriptor
        system_prompt = (
            f"You are {descriptor.name}, a {descriptor.role.value}. {descriptor.description}\n"
            "Your job is to synthesize the results of multiple tasks into a coherent final output."
        )
        user_prompt = (
            f'Synthesize the following results into a comprehensive response for the goal: "{goal_text}"\n\n'
            f"{combined}\n\n"
            "Create a well-structured, comprehensive response that integrates all the information. "
            "Format it properly with clear sections and provide a summary at the beginning."
        )

        logger.info(f"Using {descriptor.name} for synthesis of {len(completed)} results")
        try:
            content = await worker.complete(system_prompt, user_prompt)
        except Exception as e:
            logger.error(f"Error in synthesis: {e}. Combining results manually.")
            return fallback

        return content.strip() or fallback
