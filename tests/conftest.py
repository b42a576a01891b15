import asyncio
import json
from typing import Dict, List, Optional, Union

import fakeredis
import fakeredis.aioredis
import pytest
import pytest_asyncio

from agent_crew.core.completion_client import CompletionClient
from agent_crew.core.config import Settings
from agent_crew.store.redis_store import RedisTaskStore

THREE_STEP_PLAN = json.dumps({"steps": [
    {"role": "researcher", "title": "Gather facts", "input": "facts about tidal power"},
    {"role": "analyst", "title": "Weigh the facts", "input": "costs and benefits"},
    {"role": "executor", "title": "Draft next actions", "input": "a rollout plan"},
]})

SYNTHESIS_MARKER = "Synthesize the following results"


class ScriptedClient(CompletionClient):
    """
    Completion client whose answers are keyed by subtask title.

    `replies` maps a title to the text (or exception) returned when a
    worker prompt says "Your task is: <title>". `gate` names a title, or
    "plan" for the planning call, that waits for `release` before
    answering; `entered` is set as soon as that call arrives.
    """

    def __init__(
        self,
        plan: Union[str, Exception, None] = THREE_STEP_PLAN,
        replies: Optional[Dict[str, Union[str, Exception]]] = None,
        synthesis: Union[str, Exception] = "Final answer",
        gate: Optional[str] = None,
    ):
        self.plan = plan
        self.replies = replies or {}
        self.synthesis = synthesis
        self.gate = gate
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.calls: List[dict] = []

    async def _maybe_wait(self, key: str):
        if self.gate == key:
            self.entered.set()
            await self.release.wait()

    @staticmethod
    def _answer(reply: Union[str, Exception]) -> str:
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def complete(self, system_prompt, user_prompt, *, model=None, temperature=None, json_mode=False):
        self.calls.append({
            "system": system_prompt,
            "user": user_prompt,
            "model": model,
            "json_mode": json_mode,
        })

        if json_mode:
            await self._maybe_wait("plan")
            return self._answer(self.plan if self.plan is not None else json.dumps({"steps": []}))

        if SYNTHESIS_MARKER in user_prompt:
            return self._answer(self.synthesis)

        for title, reply in self.replies.items():
            if f"Your task is: {title}" in user_prompt:
                await self._maybe_wait(title)
                return self._answer(reply)

        for line in user_prompt.splitlines():
            if line.startswith("Your task is: "):
                title = line[len("Your task is: "):]
                await self._maybe_wait(title)
                return f"Result of {title}"
        return "Result"

    def worker_calls(self) -> List[dict]:
        return [c for c in self.calls if not c["json_mode"] and SYNTHESIS_MARKER not in c["user"]]


@pytest.fixture
def settings():
    return Settings(
        use_fake_redis=True,
        completion_timeout_seconds=5,
        completion_max_retries=0,
        retry_backoff_seconds=0,
    )


@pytest_asyncio.fixture
async def store():
    connection = fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    task_store = RedisTaskStore(connection, use_fake=True)
    yield task_store
    await task_store.close()


@pytest.fixture
def client():
    return ScriptedClient()
