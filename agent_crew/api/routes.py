import logging
from typing import Dict, List
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse
from ..core.errors import RoleNotFound
from ..core.orchestrator import Orchestrator
from ..models.events import Event
from ..models.task import Role, Task
from ..streaming.sse import event_generator
from .deps import get_current_user, get_orchestrator

router = APIRouter()
logger = logging.getLogger(__name__)

class TaskRequest(BaseModel):
    goal_text: str = Field(min_length=1, max_length=10000)

class StopResponse(BaseModel):
    success: bool

class RoleToggle(BaseModel):
    enabled: bool

def _parse_role(role: str) -> Role:
    try:
        return Role(role)
    except ValueError:
        raise RoleNotFound(role) from None

def _roles_payload(roles: Dict[Role, bool]) -> Dict[str, bool]:
    return {role.value: enabled for role, enabled in roles.items()}

@router.get("/")
async def root():
    return {"message": "Agent Crew API is running"}

@router.post("/tasks", response_model=Task, status_code=201)
async def create_task(
    request: TaskRequest,
    user_id: str = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """
    Submits a new goal.
    The crew runs in the background; poll GET /tasks/{id} for progress.
    """
    goal_text = request.goal_text.strip()
    if not goal_text:
        raise HTTPException(status_code=422, detail="goal_text must not be blank")
    logger.info(f"Received new task request from user {user_id}")
    return await orchestrator.create_task(user_id, goal_text)

@router.get("/tasks", response_model=List[Task])
async def list_tasks(
    user_id: str = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    return await orchestrator.list_tasks(user_id)

@router.get("/tasks/{task_id}", response_model=Task)
async def get_task(
    task_id: str,
    user_id: str = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    return await orchestrator.get_task(user_id, task_id)

@router.post("/tasks/{task_id}/stop", response_model=StopResponse)
async def stop_task(
    task_id: str,
    user_id: str = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    success = await orchestrator.stop_task(user_id, task_id)
    return StopResponse(success=success)

@router.get("/tasks/{task_id}/events", response_model=List[Event])
async def list_events(
    task_id: str,
    user_id: str = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    return await orchestrator.list_events(user_id, task_id)

@router.get("/tasks/{task_id}/stream")
async def stream_task(
    task_id: str,
    user_id: str = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """
    Streams the task's execution log using SSE until the task finishes.
    """
    await orchestrator.get_task(user_id, task_id)
    logger.info(f"Client connected to stream for task: {task_id}")
    return EventSourceResponse(event_generator(orchestrator.store, task_id))

@router.get("/roles")
async def get_roles(
    user_id: str = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    return _roles_payload(await orchestrator.get_roles(user_id))

@router.put("/roles/{role}")
async def set_role(
    role: str,
    toggle: RoleToggle,
    user_id: str = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    parsed = _parse_role(role)
    if parsed == Role.PLANNER:
        raise RoleNotFound(role)
    return _roles_payload(await orchestrator.set_role_enabled(user_id, parsed, toggle.enabled))
