import json
import logging
from abc import ABC, abstractmethod
from typing import Optional

import groq
from groq import AsyncGroq

from .config import Settings
from .errors import ConfigError, TransientError

logger = logging.getLogger(__name__)


class CompletionClient(ABC):
    """
    Opaque text-completion service.

    Implementations raise ConfigError when they can never succeed
    (bad or missing credentials) and TransientError for anything that
    might work on a later call.
    """

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str:
        pass


class GroqCompletionClient(CompletionClient):
    def __init__(self, api_key: str, default_model: str = "llama-3.1-8b-instant"):
        self.default_model = default_model
        self._client: Optional[AsyncGroq] = None
        self._config_error: Optional[str] = None

        if not api_key:
            self._config_error = "USE_GROQ is true, but GROQ_API_KEY is missing."
            logger.warning(self._config_error)
            return

        try:
            self._client = AsyncGroq(api_key=api_key)
        except groq.GroqError as e:
            self._config_error = f"Failed to initialize Groq client: {e}"
            logger.error(self._config_error)

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str:
        if self._client is None:
            raise ConfigError(self._config_error or "Groq client is not configured")

        kwargs = {
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "model": model or self.default_model,
            "temperature": 0.5 if temperature is None else temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            chat_completion = await self._client.chat.completions.create(**kwargs)
        except (groq.AuthenticationError, groq.PermissionDeniedError) as e:
            raise ConfigError(f"Groq rejected the credentials: {e}") from e
        except groq.APIError as e:
            raise TransientError(f"Groq request failed: {e}") from e

        content = chat_completion.choices[0].message.content
        if not content:
            raise TransientError("Groq returned an empty completion")
        return content


class DeterministicCompletionClient(CompletionClient):
    """
    Offline stand-in used when USE_GROQ is off, so the whole pipeline
    still runs end to end without credentials.
    """

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str:
        if json_mode:
            # An empty plan sends the planner down its deterministic path.
            return json.dumps({"steps": []})

        persona = system_prompt.strip().splitlines()[0] if system_prompt.strip() else "Agent"
        excerpt = " ".join(user_prompt.split())[:300]
        return f"[Offline] {persona}\n\nResponse prepared for: {excerpt}"


def build_completion_client(settings: Settings) -> CompletionClient:
    """
    Chooses the completion backend once, at process start.

    With USE_GROQ=true and no key the Groq client is still returned; its
    calls raise ConfigError so every run fails loudly instead of silently
    producing offline output.
    """
    if not settings.use_groq:
        logger.info("USE_GROQ is off. Using deterministic offline completions.")
        return DeterministicCompletionClient()

    return GroqCompletionClient(settings.groq_api_key, default_model=settings.worker_model)
