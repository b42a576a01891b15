from typing import Tuple

from ..models.task import Subtask
from .base_worker import BaseWorker


class WriterWorker(BaseWorker):
    def build_prompt(self, goal_text: str, subtask: Subtask, context: str) -> Tuple[str, str]:
        system_prompt, user_prompt = super().build_prompt(goal_text, subtask, context)
        if context:
            user_prompt += "\n\nWrite a comprehensive response based ONLY on the results provided above."
        return system_prompt, user_prompt
