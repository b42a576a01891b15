from typing import Optional
from fastapi import Header, Request
from ..core.errors import Unauthorized
from ..core.orchestrator import Orchestrator


async def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """
    Caller identity as forwarded by the auth proxy in front of this service.
    """
    if not x_user_id or not x_user_id.strip():
        raise Unauthorized()
    return x_user_id.strip()


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator
