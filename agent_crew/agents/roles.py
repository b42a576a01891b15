from dataclasses import dataclass
from typing import List, Optional

from ..models.task import Role

BASE_TEMPLATE = (
    "You are {name}, a {role}. {description}\n"
    "You are working on a task as part of a larger goal: {goal}"
)


@dataclass(frozen=True)
class RoleDescriptor:
    role: Role
    name: str
    goal: str
    description: str
    system_template: str = BASE_TEMPLATE
    allow_delegation: bool = False
    verbose: bool = True
    model: Optional[str] = None
    temperature: float = 0.7

    def system_prompt(self, goal_text: str) -> str:
        return self.system_template.format(
            name=self.name,
            role=self.role.value,
            description=self.description,
            goal=goal_text,
        )


DEFAULT_ROLES: List[RoleDescriptor] = [
    RoleDescriptor(
        role=Role.PLANNER,
        name="Planning Agent",
        goal="Create detailed task plans",
        description="I break down complex goals into manageable tasks and create execution plans.",
        system_template=(
            "You are {name}, a {role}. {description}\n"
            "Your job is to break down the goal into specific tasks with clear dependencies. "
            "Each task should have a clear description and expected output."
        ),
        allow_delegation=True,
        temperature=0.0,
    ),
    RoleDescriptor(
        role=Role.RESEARCHER,
        name="Research Agent",
        goal="Gather comprehensive information",
        description="I collect and organize relevant information from various sources.",
        system_template=BASE_TEMPLATE + (
            "\nWhere possible, return your findings as a JSON array of objects "
            "with 'title', 'content' and 'source' fields."
        ),
        temperature=0.5,
    ),
    RoleDescriptor(
        role=Role.ANALYST,
        name="Analysis Agent",
        goal="Perform deep analysis of information",
        description="I analyze data and information to extract insights, patterns, and implications.",
        temperature=0.5,
    ),
    RoleDescriptor(
        role=Role.WRITER,
        name="Writer Agent",
        goal="Articulate findings and recommendations clearly",
        description="I synthesize information and craft well-structured, coherent content.",
    ),
    RoleDescriptor(
        role=Role.EXECUTOR,
        name="Execution Agent",
        goal="Execute tasks efficiently",
        description="I implement solutions based on plans and research.",
    ),
]


_ROLE_KEYWORDS = [
    ("research", Role.RESEARCHER),
    ("search", Role.RESEARCHER),
    ("analy", Role.ANALYST),
    ("writ", Role.WRITER),
    ("draft", Role.WRITER),
    ("execut", Role.EXECUTOR),
    ("implement", Role.EXECUTOR),
]


def match_role(text: Optional[str]) -> Optional[Role]:
    """Maps a free-form agent/tool name from planner output onto a role."""
    if not text:
        return None
    lowered = text.strip().lower()
    try:
        return Role(lowered)
    except ValueError:
        pass
    for keyword, role in _ROLE_KEYWORDS:
        if keyword in lowered:
            return role
    return None
