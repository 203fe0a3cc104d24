"""Webhook endpoints for Gmail, Google Calendar and HubSpot."""

import logging
import uuid
from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends

from agent_engine.api.dependencies import EngineServices, get_services, get_user_id
from agent_engine.core.exceptions import ValidationError
from agent_engine.models.events import ResumeOutcome
from agent_engine.models.results import RuleRunResult
from agent_engine.services.event_normalizer import normalize

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/webhooks/{source}")
async def receive_webhook(
    source: str,
    payload: Any = Body(...),
    user_id: uuid.UUID = Depends(get_user_id),
    services: EngineServices = Depends(get_services),
) -> Dict[str, Any]:
    """
    Normalize a webhook payload, run the proactive rules it triggers and
    resume the waiting tasks it matches.

    Always acknowledged: malformed payloads return zero outcomes so the
    provider does not keep redelivering them.
    """
    try:
        events = normalize(source, payload)
    except ValidationError as e:
        logger.warning("Ignoring %s webhook: %s", source, e)
        return {"status": "ignored", "reason": str(e), "rules": [], "outcomes": []}

    rule_runs: List[RuleRunResult] = []
    outcomes: List[ResumeOutcome] = []
    for category, event in events:
        # Rules see the event before any waiting task is resumed by it
        try:
            rule_runs.extend(
                await services.rule_engine.handle_event(user_id, category, event)
            )
        except Exception:
            logger.exception("Running rules for %s event failed", category.value)
        outcomes.extend(
            await services.event_matcher.handle_event(user_id, category, event)
        )

    return {
        "status": "processed",
        "events": len(events),
        "rules": [run.model_dump(mode="json") for run in rule_runs],
        "outcomes": [outcome.model_dump(mode="json") for outcome in outcomes],
    }


__all__ = ["router"]
