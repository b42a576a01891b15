import re
import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from ..core.errors import ConfigError, TransientError
from ..core.task_graph import TaskGraph
from ..models.task import PlannedStep, Role, Subtask, WORK_ROLES
from .base_worker import BaseWorker
from .roles import match_role

logger = logging.getLogger(__name__)

_TASK_BLOCK = re.compile(
    r"Task\s*(\d+)\s*[:.\-]\s*([^\n]*)(.*?)(?=\n\s*Task\s*\d+\s*[:.\-]|\Z)",
    re.IGNORECASE | re.DOTALL,
)


def _field(block: str, *names: str) -> Optional[str]:
    for name in names:
        match = re.search(rf"^\s*{name}\s*:\s*(.+)$", block, re.IGNORECASE | re.MULTILINE)
        if match:
            return match.group(1).strip()
    return None


def _json_items(content: str) -> Optional[List[Any]]:
    text = content.strip()
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fenced:
        text = fenced.group(1).strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None

    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("steps", "tasks", "plan"):
            if isinstance(data.get(key), list):
                return data[key]
        return []
    return None


def _text_items(content: str) -> List[Dict[str, Any]]:
    """Parses the 'Task N: title / Description: ... / Agent: ...' block format."""
    items = []
    for match in _TASK_BLOCK.finditer(content):
        number, title, block = int(match.group(1)), match.group(2).strip(), match.group(3)
        item: Dict[str, Any] = {
            "_number": number,
            "title": title,
            "input": _field(block, "Description") or title,
            "expected_output": _field(block, "Expected Output", "Output"),
            "role": _field(block, "Agent", "Role"),
            "thought": _field(block, "Thought", "Rationale"),
        }
        dependencies = _field(block, "Dependencies", "Depends on")
        if dependencies is not None:
            item["depends_on"] = dependencies
        items.append(item)
    return items


def _parse_dependencies(value: Any) -> Optional[List[int]]:
    if value is None:
        return None
    if isinstance(value, bool):
        return []
    if isinstance(value, int):
        return [value]
    if isinstance(value, str):
        return [int(n) for n in re.findall(r"\d+", value)]
    if isinstance(value, list):
        numbers = []
        for entry in value:
            numbers.extend(_parse_dependencies(entry) or [])
        return numbers
    return []


def _first(item: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = item.get(key)
        if value:
            return str(value).strip()
    return None


def _positional_role(position: int, total: int) -> Role:
    if position == 1:
        return Role.RESEARCHER
    if position == total:
        return Role.EXECUTOR
    return Role.ANALYST


def parse_plan(
    content: str,
    max_steps: int = 6,
    allowed_roles: Optional[Iterable[Role]] = None,
) -> List[PlannedStep]:
    """
    Turns planner output into PlannedSteps.

    Accepts a JSON list, a JSON object wrapping the list under
    'steps'/'tasks'/'plan', or the 'Task N:' text format. Steps without a
    recognisable role get one by position (first researcher, last
    executor, analyst in between). Steps assigned to a role outside
    allowed_roles are dropped and dependency numbers are remapped onto
    the surviving steps.
    """
    items = _json_items(content)
    if items is None:
        items = _text_items(content)

    items = [item for item in items if isinstance(item, dict)]
    allowed = set(allowed_roles) if allowed_roles is not None else set(WORK_ROLES)

    kept = []
    renumber: Dict[int, int] = {}
    for position, item in enumerate(items, start=1):
        role_text = _first(item, "role", "agent", "assigned_agent", "tool")
        role = match_role(role_text) or match_role(_first(item, "title"))
        if role is None or role == Role.PLANNER:
            role = _positional_role(position, len(items))
        if role not in allowed:
            logger.info(f"Dropping planned step {position}: role '{role.value}' is disabled")
            continue
        if len(kept) >= max_steps:
            logger.info(f"Plan truncated to {max_steps} steps")
            break
        renumber[item.get("_number", position)] = len(kept) + 1
        kept.append((item, role))

    steps = []
    for number, (item, role) in enumerate(kept, start=1):
        raw_deps = item.get("depends_on", item.get("dependencies"))
        dependencies = _parse_dependencies(raw_deps)
        if dependencies is not None:
            dependencies = sorted({renumber[d] for d in dependencies if d in renumber and renumber[d] < number})

        query = _first(item, "input", "query", "description") or ""
        title = _first(item, "title") or query[:80] or f"Step {number}"
        steps.append(PlannedStep(
            role=role,
            title=title,
            query=query or title,
            thought=_first(item, "thought", "rationale", "reason"),
            expected_output=_first(item, "expected_output", "expectedOutput", "output"),
            depends_on=dependencies,
        ))
    return steps


def build_fallback_plan(goal_text: str, with_writer: bool = False) -> List[PlannedStep]:
    steps = [
        PlannedStep(
            role=Role.RESEARCHER,
            title="Research: Collect information about the goal",
            query=goal_text,
            thought="Collecting information about the topic",
            expected_output="Comprehensive research data",
        ),
        PlannedStep(
            role=Role.ANALYST,
            title="Analysis: Analyze the collected information",
            query="Analysis based on research",
            thought="Analyzing collected information",
            expected_output="Analysis report with insights",
        ),
    ]
    if with_writer:
        steps.append(PlannedStep(
            role=Role.WRITER,
            title="Writing: Draft a clear write-up of the findings",
            query="Write-up based on analysis",
            thought="Articulating the findings",
            expected_output="A well-structured draft",
        ))
    steps.append(PlannedStep(
        role=Role.EXECUTOR,
        title="Execution: Implement the solution",
        query="Implementation based on analysis",
        thought="Creating implementation plan",
        expected_output="Implemented solution",
    ))
    return steps


def add_steps_to_graph(graph: TaskGraph, steps: List[PlannedStep]) -> List[Subtask]:
    """
    Adds planned steps to the graph in order.

    When no step names a dependency, the steps run strictly in sequence
    (step i depends on step i-1).
    """
    sequential = not any(step.depends_on for step in steps)
    subtasks: List[Subtask] = []
    for index, step in enumerate(steps):
        if sequential:
            dependencies = [subtasks[index - 1].id] if index > 0 else []
        else:
            dependencies = [subtasks[n - 1].id for n in (step.depends_on or [])]
        subtasks.append(graph.add_subtask(
            step.title,
            step.expected_output,
            step.role,
            dependencies,
            title=step.title,
            query=step.query,
            thought=step.thought,
        ))
    return subtasks


class PlannerAgent(BaseWorker):
    @property
    def model(self) -> str:
        return self.descriptor.model or self.settings.planner_model

    def planning_prompt(self, goal_text: str, roles: List[Role]) -> str:
        role_list = ", ".join(role.value for role in roles)
        return f"""Create a detailed plan for the following goal: {goal_text}

Break it down into 2-4 tasks for these agents: {role_list}.
For each task give the agent role, a short title, the specific input the agent should work on,
the expected output, your reasoning, and the numbers of earlier tasks it depends on.

Return ONLY valid JSON in this format:
{{"steps": [{{"role": "researcher", "title": "...", "input": "...", "expected_output": "...", "thought": "...", "depends_on": []}}]}}"""

    async def plan(
        self,
        goal_text: str,
        graph: TaskGraph,
        enabled_roles: Optional[Iterable[Role]] = None,
    ) -> List[Subtask]:
        """
        Decomposes a goal into subtasks and adds them to the graph.

        Strategy:
        1. Ask the planner model for a JSON plan.
        2. If the call fails transiently or nothing parses, use the fixed
           research -> analysis -> execution plan.
        ConfigError is not caught: a misconfigured client fails the run.
        """
        roles = [role for role in WORK_ROLES if enabled_roles is None or role in set(enabled_roles)]
        steps: List[PlannedStep] = []

        if roles:
            try:
                logger.info("Attempting planning via completion client...")
                content = await self.complete(
                    self.descriptor.system_prompt(goal_text),
                    self.planning_prompt(goal_text, roles),
                    json_mode=True,
                )
                steps = parse_plan(content, self.settings.max_plan_steps, roles)
                logger.info(f"Planner produced {len(steps)} steps.")
            except ConfigError:
                raise
            except TransientError as e:
                logger.warning(f"Planning call failed: {e}. Falling back to deterministic logic.")

        if not steps:
            logger.info("Using deterministic planner fallback.")
            steps = build_fallback_plan(goal_text, self.settings.fallback_plan_with_writer)

        return add_steps_to_graph(graph, steps)
