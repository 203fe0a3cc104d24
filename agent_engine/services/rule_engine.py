"""Proactive rules: standing "when X happens, do Y" instructions.

A rule listens to one trigger type, filters events with a map of dotted event
paths to expected values, and runs its actions through the same tool boundary
the workflow engine uses. Rules run before waiting tasks are resumed and never
create tasks themselves.
"""

import logging
import re
import uuid
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy.ext.asyncio import async_sessionmaker

from agent_engine.core.agents.tool_integration import ToolIntegration
from agent_engine.core.exceptions import NotFoundError, TaskEngineError, ValidationError
from agent_engine.models.events import EventCategory, NormalizedEvent
from agent_engine.models.results import RuleActionResult, RuleRunResult
from agent_engine.models.rule import ProactiveRule, RuleAction, RuleTrigger
from agent_engine.models.task import utcnow
from agent_engine.models.user import AgentUser
from agent_engine.repositories.rule_repository import RuleRepository
from agent_engine.services.task_lifecycle import UserRef, _enum_value, _user_id

logger = logging.getLogger(__name__)

REGEX_PREFIX = "regex:"
CONTAINS_PREFIX = "contains:"

PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")

# HubSpot subscriptionType -> trigger
HUBSPOT_TRIGGERS: Dict[str, RuleTrigger] = {
    "contact.creation": RuleTrigger.HUBSPOT_CONTACT_CREATED,
    "contact.propertyChange": RuleTrigger.HUBSPOT_CONTACT_UPDATED,
    "engagement.creation": RuleTrigger.HUBSPOT_NOTE_CREATED,
}


def lookup(data: Any, path: str) -> Any:
    """Follow a dotted path through nested dicts; None when any key is missing."""
    current = data
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def condition_matches(actual: Any, expected: Any) -> bool:
    """Compare one event value against a rule condition."""
    if actual is None:
        return False
    if not isinstance(expected, str):
        return actual == expected
    if expected.startswith(REGEX_PREFIX):
        try:
            return re.search(expected[len(REGEX_PREFIX):], str(actual)) is not None
        except re.error:
            logger.warning("Invalid condition pattern %r", expected)
            return False
    if expected.startswith(CONTAINS_PREFIX):
        return expected[len(CONTAINS_PREFIX):].lower() in str(actual).lower()
    return str(actual) == expected


def rule_matches(conditions: Optional[Dict[str, Any]], event_data: Dict[str, Any]) -> bool:
    """All conditions must hold; a rule without conditions matches every event."""
    return all(
        condition_matches(lookup(event_data, path), expected)
        for path, expected in (conditions or {}).items()
    )


def interpolate(value: Any, event_data: Dict[str, Any]) -> Any:
    """Replace ``{{path}}`` placeholders in every string of an action config.

    Placeholders whose path is missing from the event are left untouched.
    """
    if isinstance(value, dict):
        return {key: interpolate(item, event_data) for key, item in value.items()}
    if isinstance(value, list):
        return [interpolate(item, event_data) for item in value]
    if not isinstance(value, str):
        return value

    def replace(match: "re.Match[str]") -> str:
        found = lookup(event_data, match.group(1).strip())
        return match.group(0) if found is None else str(found)

    return PLACEHOLDER.sub(replace, value)


def trigger_for(
    category: Union[EventCategory, str], event: NormalizedEvent
) -> Optional[RuleTrigger]:
    """Trigger type of a normalized event, or None when no rule can listen to it."""
    category = EventCategory(category)
    if category == EventCategory.EMAIL_REPLY:
        return RuleTrigger.EMAIL_RECEIVED
    if category == EventCategory.CALENDAR_RESPONSE:
        return RuleTrigger.CALENDAR_EVENT
    return HUBSPOT_TRIGGERS.get(event.event_type or "")


def event_data_for(event: NormalizedEvent) -> Dict[str, Any]:
    """Dict that conditions and placeholders are resolved against."""
    return {**event.as_event_data(), "raw": dict(event.raw)}


def _as_list(value: Any) -> List[Any]:
    if value is None or value == "":
        return []
    return list(value) if isinstance(value, (list, tuple)) else [value]


def tool_call_for(action: RuleAction, config: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """Registered tool and arguments that carry out a (non-notification) action."""
    if action == RuleAction.SEND_EMAIL:
        return "email_send", {
            "to": _as_list(config.get("to")),
            "subject": config.get("subject", ""),
            "body": config.get("body", ""),
        }
    if action == RuleAction.CREATE_CALENDAR_EVENT:
        args = {
            "title": config.get("title", ""),
            "start_time": config.get("start_time"),
            "end_time": config.get("end_time"),
            "attendees": _as_list(config.get("attendees")),
            "description": config.get("description", ""),
        }
        return "calendar_create_event", {k: v for k, v in args.items() if v is not None}
    if action == RuleAction.CREATE_HUBSPOT_CONTACT:
        properties = dict(config.get("properties") or {})
        return "hubspot_upsert_contact", {
            "email": config.get("email") or properties.get("email"),
            "properties": properties,
        }
    if action == RuleAction.CREATE_HUBSPOT_NOTE:
        return "hubspot_create_note", {
            "contact_email": config.get("contact_email"),
            "content": config.get("content", ""),
        }
    raise ValueError(f"Action '{action.value}' does not call a tool")


class RuleEngine:
    """Stores proactive rules and runs the ones an inbound event matches."""

    def __init__(self, session_maker: async_sessionmaker, tools: ToolIntegration):
        """Initialize the rule engine.

        Args:
            session_maker: Session factory for the rule store
            tools: Tool boundary used to run actions
        """
        self.session_maker = session_maker
        self.tools = tools

    # Rule management

    async def create_rule(
        self,
        user: UserRef,
        name: str,
        trigger_type: Union[RuleTrigger, str],
        actions: Dict[str, Any],
        trigger_conditions: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
        is_active: bool = False,
    ) -> ProactiveRule:
        """Validate and store a rule.

        Raises:
            ValidationError: If the name is empty, the trigger is unknown, or
                the conditions or actions are malformed
        """
        user_id = _user_id(user)
        if not name or not name.strip():
            raise ValidationError("Rule name is required")
        trigger = _enum_value(RuleTrigger, trigger_type, "trigger_type")

        conditions = {} if trigger_conditions is None else trigger_conditions
        if not isinstance(conditions, dict):
            raise ValidationError("trigger_conditions must be an object")
        if not isinstance(actions, dict) or not actions:
            raise ValidationError("A rule needs at least one action")
        for action, config in actions.items():
            _enum_value(RuleAction, action, "action")
            if not isinstance(config, dict):
                raise ValidationError(f"Config for action '{action}' must be an object")

        now = utcnow()
        rule = ProactiveRule(
            user_id=user_id,
            name=name.strip(),
            description=description,
            trigger_type=trigger,
            trigger_conditions=dict(conditions),
            actions=dict(actions),
            is_active=bool(is_active),
            created_at=now,
            updated_at=now,
        )
        async with self.session_maker() as session:
            async with session.begin():
                rule = await RuleRepository(session).add(rule)

        logger.info("Created rule %s (%s) for user %s", rule.id, trigger, user_id)
        return rule

    async def list_rules(self, user: UserRef, active_only: bool = False) -> List[ProactiveRule]:
        async with self.session_maker() as session:
            return await RuleRepository(session).list_for_user(
                _user_id(user), active_only=active_only
            )

    async def get_rule(self, user: UserRef, rule_id: uuid.UUID) -> ProactiveRule:
        """Get one of the user's rules.

        Raises:
            NotFoundError: If the rule does not exist or belongs to someone else
        """
        async with self.session_maker() as session:
            rule = await RuleRepository(session).get(rule_id)
        if rule is None or rule.user_id != _user_id(user):
            raise NotFoundError(rule_id, kind="Rule")
        return rule

    async def set_active(
        self, user: UserRef, rule_id: uuid.UUID, is_active: Optional[bool] = None
    ) -> ProactiveRule:
        """Enable or disable a rule; ``None`` flips the current state."""
        user_id = _user_id(user)
        async with self.session_maker() as session:
            async with session.begin():
                rule = await RuleRepository(session).get(rule_id)
                if rule is None or rule.user_id != user_id:
                    raise NotFoundError(rule_id, kind="Rule")
                rule.is_active = (not rule.is_active) if is_active is None else bool(is_active)
                rule.updated_at = utcnow()

        logger.info("Rule %s is now %s", rule_id, "active" if rule.is_active else "inactive")
        return rule

    async def delete_rule(self, user: UserRef, rule_id: uuid.UUID) -> None:
        user_id = _user_id(user)
        async with self.session_maker() as session:
            async with session.begin():
                repo = RuleRepository(session)
                rule = await repo.get(rule_id)
                if rule is None or rule.user_id != user_id:
                    raise NotFoundError(rule_id, kind="Rule")
                await repo.delete(rule)
        logger.info("Deleted rule %s", rule_id)

    # Evaluation

    async def handle_event(
        self,
        user_id: Union[uuid.UUID, str],
        category: Union[EventCategory, str],
        event: NormalizedEvent,
    ) -> List[RuleRunResult]:
        """Run the user's rules for a normalized webhook event."""
        trigger = trigger_for(category, event)
        if trigger is None:
            logger.debug("No rule trigger for %s event %s", category, event.event_type)
            return []
        return await self.process_event(user_id, trigger, event_data_for(event))

    async def process_event(
        self,
        user_id: Union[uuid.UUID, str],
        trigger_type: Union[RuleTrigger, str],
        event_data: Dict[str, Any],
    ) -> List[RuleRunResult]:
        """Run every active rule of the user whose conditions match the event.

        Failures are isolated per action and per rule.

        Args:
            user_id: Owner of the rules
            trigger_type: Trigger the event maps to
            event_data: Event fields the conditions are checked against

        Returns:
            One result per matched rule, in rule creation order
        """
        user = AgentUser(id=_user_id(user_id))
        trigger = _enum_value(RuleTrigger, trigger_type, "trigger_type")
        async with self.session_maker() as session:
            rules = await RuleRepository(session).list_active_for_trigger(user.id, trigger)

        matched = [r for r in rules if rule_matches(r.trigger_conditions, event_data)]
        logger.info(
            "Event %s for user %s matched %s of %s rules",
            trigger,
            user.id,
            len(matched),
            len(rules),
        )

        results: List[RuleRunResult] = []
        for rule in matched:
            results.append(await self._run_rule(user, rule, event_data))
        return results

    async def _run_rule(
        self, user: AgentUser, rule: ProactiveRule, event_data: Dict[str, Any]
    ) -> RuleRunResult:
        logger.info("Running rule %s (%s)", rule.id, rule.name)
        action_results: List[RuleActionResult] = []
        try:
            for action, config in (rule.actions or {}).items():
                outcome = await self._run_action(user, action, config, event_data)
                if outcome is not None:
                    action_results.append(outcome)
        except Exception as e:
            logger.exception("Rule %s failed", rule.id)
            return RuleRunResult(
                rule_id=str(rule.id),
                rule_name=rule.name,
                trigger_type=rule.trigger_type,
                success=False,
                action_results=action_results,
                error=str(e),
            )

        return RuleRunResult(
            rule_id=str(rule.id),
            rule_name=rule.name,
            trigger_type=rule.trigger_type,
            success=all(r.success for r in action_results),
            action_results=action_results,
        )

    async def _run_action(
        self,
        user: AgentUser,
        action_name: str,
        config: Any,
        event_data: Dict[str, Any],
    ) -> Optional[RuleActionResult]:
        """Run one action; unknown action names are skipped."""
        try:
            action = RuleAction(action_name)
        except ValueError:
            logger.warning("Skipping unknown rule action '%s'", action_name)
            return None

        config = interpolate(dict(config or {}), event_data)
        if action == RuleAction.SEND_NOTIFICATION:
            message = str(config.get("message", ""))
            logger.info("Notification for user %s: %s", user.id, message)
            return RuleActionResult(
                action=action.value, success=True, message=message, data={"message": message}
            )

        tool_name, args = tool_call_for(action, config)
        try:
            result = await self.tools.execute_tool(user, tool_name, args)
        except TaskEngineError as e:
            logger.error("Rule action %s failed: %s", action.value, e)
            return RuleActionResult(
                action=action.value, success=False, tool_name=tool_name, error=str(e)
            )

        if not result.success:
            logger.error("Rule action %s failed: %s", action.value, result.error)
        return RuleActionResult(
            action=action.value,
            success=result.success,
            tool_name=tool_name,
            message=result.message,
            data=result.data,
            error=result.error,
        )


__all__ = [
    "HUBSPOT_TRIGGERS",
    "RuleEngine",
    "condition_matches",
    "event_data_for",
    "interpolate",
    "lookup",
    "rule_matches",
    "tool_call_for",
    "trigger_for",
]
