"""Tool registry for discovering tools and how their effects resolve."""

from typing import Any, Dict, List, Optional

from agent_engine.core.task_types import WaitingFor
from agent_engine.models.classification import ActionKind


class ToolMetadata:
    """Metadata for a tool."""

    def __init__(
        self,
        name: str,
        description: str,
        parameters: Dict[str, Any],
        family: ActionKind,
        resolves_later: Optional[WaitingFor] = None,
        requires_reply_hint: bool = False,
    ):
        """Initialize tool metadata.

        Args:
            name: Tool name/identifier
            description: Tool description
            parameters: Argument names mapped to their type and whether required
            family: Action family the tool belongs to
            resolves_later: Wait kind when the tool fires now and resolves
                through a later external event
            requires_reply_hint: Only suspend when the request expects an answer
        """
        self.name = name
        self.description = description
        self.parameters = parameters
        self.family = family
        self.resolves_later = resolves_later
        self.requires_reply_hint = requires_reply_hint

    def wait_kind(self, reply_expected: bool) -> Optional[WaitingFor]:
        """Wait kind a successful call of this tool suspends the task on."""
        if self.resolves_later is None:
            return None
        if self.requires_reply_hint and not reply_expected:
            return None
        return self.resolves_later

    def signature(self) -> str:
        """``name(arg, optional_arg?)`` form used in planner prompts."""
        args = ", ".join(
            arg if details.get("required") else f"{arg}?"
            for arg, details in self.parameters.items()
        )
        return f"{self.name}({args})"


class ToolRegistry:
    """Central registry for all available tools."""

    # Tool used for a simple request of each action family
    SIMPLE_ROUTES = {
        ActionKind.EMAIL: "email",
        ActionKind.CALENDAR: "calendar",
        ActionKind.CRM: "hubspot",
        ActionKind.SEARCH: "search_context",
        ActionKind.UNKNOWN: "agent",
    }

    # Generic tool that carries out a free-text step instruction
    AGENT_TOOL = "agent"

    def __init__(self):
        """Initialize the tool registry."""
        self._tools: Dict[str, ToolMetadata] = {}
        self._initialize_default_tools()

    def _initialize_default_tools(self):
        """Initialize default email, calendar and CRM tools."""
        self.register_tool(
            ToolMetadata(
                name="email",
                description="Handle a one-off email request (read, search, draft or send)",
                parameters={"request": {"type": "string", "required": True}},
                family=ActionKind.EMAIL,
            )
        )
        self.register_tool(
            ToolMetadata(
                name="email_find_contact",
                description="Look up a person's email address by name",
                parameters={"name": {"type": "string", "required": True}},
                family=ActionKind.EMAIL,
            )
        )
        self.register_tool(
            ToolMetadata(
                name="email_send",
                description="Send an email message",
                parameters={
                    "to": {"type": "array", "required": True},
                    "subject": {"type": "string", "required": True},
                    "body": {"type": "string", "required": True},
                },
                family=ActionKind.EMAIL,
                resolves_later=WaitingFor.EMAIL_REPLY,
                requires_reply_hint=True,
            )
        )

        self.register_tool(
            ToolMetadata(
                name="calendar",
                description="Handle a one-off calendar request (list, create or update events)",
                parameters={"request": {"type": "string", "required": True}},
                family=ActionKind.CALENDAR,
            )
        )
        self.register_tool(
            ToolMetadata(
                name="calendar_create_event",
                description="Create a calendar event",
                parameters={
                    "title": {"type": "string", "required": True},
                    "start_time": {"type": "string", "required": True},
                    "end_time": {"type": "string", "required": True},
                    "attendees": {"type": "array", "required": False},
                    "description": {"type": "string", "required": False},
                },
                family=ActionKind.CALENDAR,
            )
        )
        self.register_tool(
            ToolMetadata(
                name="calendar_send_invitations",
                description="Invite attendees to an event and wait for their responses",
                parameters={
                    "event_id": {"type": "string", "required": True},
                    "attendees": {"type": "array", "required": True},
                },
                family=ActionKind.CALENDAR,
                resolves_later=WaitingFor.CALENDAR_RESPONSE,
            )
        )

        self.register_tool(
            ToolMetadata(
                name="hubspot",
                description="Handle a one-off CRM request (look up or update contacts and deals)",
                parameters={"request": {"type": "string", "required": True}},
                family=ActionKind.CRM,
            )
        )
        self.register_tool(
            ToolMetadata(
                name="hubspot_upsert_contact",
                description="Create or update a CRM contact",
                parameters={
                    "email": {"type": "string", "required": True},
                    "properties": {"type": "object", "required": False},
                },
                family=ActionKind.CRM,
            )
        )
        self.register_tool(
            ToolMetadata(
                name="hubspot_create_note",
                description="Attach a note to a CRM contact",
                parameters={
                    "contact_email": {"type": "string", "required": True},
                    "content": {"type": "string", "required": True},
                },
                family=ActionKind.CRM,
            )
        )
        self.register_tool(
            ToolMetadata(
                name="hubspot_watch_object",
                description="Watch a CRM record and continue when it changes",
                parameters={"object_id": {"type": "string", "required": True}},
                family=ActionKind.CRM,
                resolves_later=WaitingFor.WEBHOOK_EVENT,
            )
        )

        self.register_tool(
            ToolMetadata(
                name="request_approval",
                description="Ask someone outside the conversation to approve an action",
                parameters={"approver": {"type": "string", "required": True}},
                family=ActionKind.UNKNOWN,
                resolves_later=WaitingFor.EXTERNAL_APPROVAL,
            )
        )
        self.register_tool(
            ToolMetadata(
                name="search_context",
                description="Search the user's mail, calendar and CRM data",
                parameters={"query": {"type": "string", "required": True}},
                family=ActionKind.SEARCH,
            )
        )
        self.register_tool(
            ToolMetadata(
                name=self.AGENT_TOOL,
                description="Carry out a free-text instruction using any of the tools above",
                parameters={"instruction": {"type": "string", "required": True}},
                family=ActionKind.UNKNOWN,
            )
        )

    def register_tool(self, tool: ToolMetadata):
        """Register a tool in the registry.

        Args:
            tool: Tool metadata to register
        """
        self._tools[tool.name] = tool

    def get_tool(self, name: str) -> Optional[ToolMetadata]:
        """Get a tool by name.

        Args:
            name: Tool name

        Returns:
            ToolMetadata or None if not found
        """
        return self._tools.get(name)

    def get_all_tools(self) -> List[ToolMetadata]:
        """Get all registered tools."""
        return list(self._tools.values())

    def get_tools_by_family(self, family: ActionKind) -> List[ToolMetadata]:
        """Get tools belonging to an action family."""
        return [tool for tool in self._tools.values() if tool.family == family]

    def tool_for_action(self, action_kind: ActionKind) -> str:
        """Tool that handles a simple request of the given family."""
        return self.SIMPLE_ROUTES.get(action_kind, self.AGENT_TOOL)


__all__ = ["ToolMetadata", "ToolRegistry"]
