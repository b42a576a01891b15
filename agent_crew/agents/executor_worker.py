from typing import Tuple

from ..models.task import Subtask
from .base_worker import BaseWorker


class ExecutorWorker(BaseWorker):
    def build_prompt(self, goal_text: str, subtask: Subtask, context: str) -> Tuple[str, str]:
        system_prompt, user_prompt = super().build_prompt(goal_text, subtask, context)
        user_prompt += (
            "\n\nTurn this into concrete, ordered actions the user can carry out, "
            "noting anything they need before starting."
        )
        return system_prompt, user_prompt
