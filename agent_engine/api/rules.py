"""Proactive rule management endpoints."""

import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from agent_engine.api.dependencies import (
    EngineServices,
    get_services,
    get_user_id,
    parse_rule_id,
)


class RuleCreate(BaseModel):
    name: str
    description: Optional[str] = None
    trigger_type: str
    trigger_conditions: Dict[str, Any] = Field(default_factory=dict)
    actions: Dict[str, Any]
    is_active: bool = False


class RulesListResponse(BaseModel):
    rules: List[Dict[str, Any]]
    total: int


router = APIRouter(tags=["rules"])


@router.get("/rules", response_model=RulesListResponse)
async def list_rules(
    user_id: uuid.UUID = Depends(get_user_id),
    services: EngineServices = Depends(get_services),
    active_only: bool = Query(False, description="Only return active rules"),
) -> RulesListResponse:
    """List the user's rules, newest first."""
    rules = await services.rule_engine.list_rules(user_id, active_only=active_only)
    return RulesListResponse(rules=[r.to_dict() for r in rules], total=len(rules))


@router.post("/rules", status_code=201)
async def create_rule(
    body: RuleCreate,
    user_id: uuid.UUID = Depends(get_user_id),
    services: EngineServices = Depends(get_services),
) -> Dict[str, Any]:
    """
    Create a rule. Rules start inactive unless ``is_active`` is set.
    """
    rule = await services.rule_engine.create_rule(
        user_id,
        name=body.name,
        trigger_type=body.trigger_type,
        actions=body.actions,
        trigger_conditions=body.trigger_conditions,
        description=body.description,
        is_active=body.is_active,
    )
    return rule.to_dict()


@router.get("/rules/{rule_id}")
async def get_rule(
    rule_id: str,
    user_id: uuid.UUID = Depends(get_user_id),
    services: EngineServices = Depends(get_services),
) -> Dict[str, Any]:
    rule = await services.rule_engine.get_rule(user_id, parse_rule_id(rule_id))
    return rule.to_dict()


@router.post("/rules/{rule_id}/toggle")
async def toggle_rule(
    rule_id: str,
    user_id: uuid.UUID = Depends(get_user_id),
    services: EngineServices = Depends(get_services),
) -> Dict[str, Any]:
    """Flip a rule between active and inactive."""
    rule = await services.rule_engine.set_active(user_id, parse_rule_id(rule_id))
    return rule.to_dict()


@router.delete("/rules/{rule_id}", status_code=204)
async def delete_rule(
    rule_id: str,
    user_id: uuid.UUID = Depends(get_user_id),
    services: EngineServices = Depends(get_services),
) -> Response:
    await services.rule_engine.delete_rule(user_id, parse_rule_id(rule_id))
    return Response(status_code=204)


__all__ = ["router", "RuleCreate", "RulesListResponse"]
