"""Request entry point."""

import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from agent_engine.api.dependencies import EngineServices, get_services, get_user_id
from agent_engine.models.user import AgentUser


class AgentRequest(BaseModel):
    request: str = Field(..., min_length=1, description="What the user wants done")
    user_email: Optional[str] = Field(default=None, description="User's own mailbox")
    display_name: Optional[str] = Field(default=None, description="User's name")


router = APIRouter(tags=["requests"])


@router.post("/requests")
async def handle_request(
    body: AgentRequest,
    user_id: uuid.UUID = Depends(get_user_id),
    services: EngineServices = Depends(get_services),
) -> Dict[str, Any]:
    """
    Handle a natural-language request.

    Simple requests run one tool call and return its result. Complex requests
    become a persisted task and return its state, which may be waiting for an
    external event. Ambiguous requests return clarification questions.
    """
    user = AgentUser(id=user_id, email=body.user_email, display_name=body.display_name)
    result = await services.workflow_engine.handle(user, body.request)
    return result.model_dump(mode="json")


__all__ = ["router", "AgentRequest"]
