import asyncio
import logging
from abc import ABC
from typing import Tuple

from ..core.completion_client import CompletionClient
from ..core.config import Settings
from ..core.errors import ConfigError, SubtaskExecutionError, TransientError
from ..models.task import Role, Subtask
from .roles import RoleDescriptor

logger = logging.getLogger(__name__)


class BaseWorker(ABC):
    def __init__(self, descriptor: RoleDescriptor, client: CompletionClient, settings: Settings):
        self.descriptor = descriptor
        self.client = client
        self.settings = settings
        self.agent_name = descriptor.name

    @property
    def role(self) -> Role:
        return self.descriptor.role

    @property
    def model(self) -> str:
        return self.descriptor.model or self.settings.worker_model

    def build_prompt(self, goal_text: str, subtask: Subtask, context: str) -> Tuple[str, str]:
        """
        Returns (system_prompt, user_prompt).

        The system prompt carries the role template and the overall goal;
        the user prompt carries the results of completed dependencies
        followed by this subtask's own input.
        """
        tool_input = subtask.tool_input
        user_prompt = (
            f"{context}Your task is: {subtask.description}\n\n"
            f"Input: {tool_input.get('query', subtask.description)}\n\n"
            f"Expected output: {tool_input.get('expected_output') or 'A comprehensive result'}\n\n"
            "Please complete this task and provide your output in a clear, structured format."
        )
        return self.descriptor.system_prompt(goal_text), user_prompt

    async def complete(self, system_prompt: str, user_prompt: str, json_mode: bool = False) -> str:
        """
        One completion call with timeout and retry.

        Timeouts and TransientErrors are retried with exponential backoff
        (RETRY_BACKOFF_SECONDS * 2**attempt). ConfigError is never retried.
        """
        attempts = self.settings.completion_max_retries + 1
        error: TransientError = TransientError("No completion attempt was made")

        for attempt in range(attempts):
            try:
                return await asyncio.wait_for(
                    self.client.complete(
                        system_prompt,
                        user_prompt,
                        model=self.model,
                        temperature=self.descriptor.temperature,
                        json_mode=json_mode,
                    ),
                    timeout=self.settings.completion_timeout_seconds,
                )
            except asyncio.TimeoutError:
                error = TransientError(f"Completion timed out after {self.settings.completion_timeout_seconds}s")
            except TransientError as e:
                error = e

            if attempt + 1 < attempts:
                backoff_time = self.settings.retry_backoff_seconds * 2 ** attempt
                logger.warning(f"[{self.agent_name}] ERROR: {error} (retry {attempt + 1}/{attempts - 1})")
                await asyncio.sleep(backoff_time)

        raise error

    def postprocess(self, content: str) -> str:
        return content.strip()

    async def execute(self, goal_text: str, subtask: Subtask, context: str = "") -> str:
        system_prompt, user_prompt = self.build_prompt(goal_text, subtask, context)
        logger.info(f"[{self.agent_name}] Processing step {subtask.step_number} for task {subtask.task_id}")

        try:
            content = await self.complete(system_prompt, user_prompt)
            return self.postprocess(content)
        except ConfigError:
            raise
        except Exception as e:
            logger.error(f"[{self.agent_name}] Failed to process step {subtask.step_number} for task {subtask.task_id}: {e}")
            raise SubtaskExecutionError(subtask.step_number, str(e)) from e
