"""Workflow engine: turns requests into tasks and drives their steps."""

import logging
import uuid
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, Field

from agent_engine.core.agents.tool_integration import (
    ToolExecutor,
    ToolIntegration,
    ToolInvocation,
    ToolResult,
)
from agent_engine.core.exceptions import ReasoningError, ToolExecutionError, ValidationError
from agent_engine.core.task_types import TaskStatus, TaskType, WaitingFor
from agent_engine.core.tool_registry import ToolRegistry
from agent_engine.models.classification import ActionKind, RequestKind
from agent_engine.models.events import EventCategory, NormalizedEvent
from agent_engine.models.results import ClarificationNeeded, SimpleResult, WorkflowResult
from agent_engine.models.task import Task, utcnow
from agent_engine.models.user import AgentUser
from agent_engine.models.workflow_state import (
    AnyWorkflowState,
    EmailWorkflowState,
    ReplyVerdict,
    StepStatus,
    WorkflowStep,
    dump_workflow_state,
    load_workflow_state,
    state_class_for,
)
from agent_engine.services.meeting_details import (
    calendar_event_args,
    extract_email_address,
    extract_recipient_name,
    extract_time_mentioned,
    is_meeting_request,
    needs_reply,
)
from agent_engine.services.reply_analysis import ReplyAnalyzer
from agent_engine.services.request_classifier import (
    RequestClassifier,
    action_kind_for,
    infer_task_type,
)
from agent_engine.services.step_planner import StepPlanner
from agent_engine.services.task_lifecycle import TaskLifecycleManager

logger = logging.getLogger(__name__)

# A step's own tool call is never decomposed again.
MAX_DECOMPOSITION_DEPTH = 1

INITIAL_STEP = "analyze_and_execute"
FINAL_STEP = "finalize"

# Keys copied from a tool result into a wait descriptor
_DESCRIPTOR_KEYS = (
    "thread_id",
    "message_id",
    "recipient_email",
    "recipient_name",
    "event_id",
    "object_id",
    "object_type",
    "approver",
)

EngineResult = Union[SimpleResult, WorkflowResult, ClarificationNeeded]


class ExecutionContext(BaseModel):
    """Who a request runs for and how deep in decomposition it is."""

    user: AgentUser
    depth: int = Field(default=0, ge=0)

    @property
    def can_decompose(self) -> bool:
        return self.depth < MAX_DECOMPOSITION_DEPTH

    def nested(self) -> "ExecutionContext":
        """Context for a tool call made while executing a step."""
        return ExecutionContext(user=self.user, depth=self.depth + 1)


class WorkflowEngine:
    """Classify requests, execute steps, suspend on external waits and resume."""

    def __init__(
        self,
        lifecycle: TaskLifecycleManager,
        executor: ToolExecutor,
        oracle,
        tool_registry: Optional[ToolRegistry] = None,
    ):
        """Initialize the workflow engine.

        Args:
            lifecycle: Lifecycle manager; the only writer of task rows
            executor: Tool executor performing concrete actions
            oracle: Reasoning oracle with ``complete(user, prompt, tools_enabled)``
            tool_registry: Tool metadata (defaults to the built-in registry)
        """
        self.lifecycle = lifecycle
        self.tool_registry = tool_registry or ToolRegistry()
        self.tools = ToolIntegration(executor, self.tool_registry)
        self.classifier = RequestClassifier(oracle)
        self.planner = StepPlanner(oracle, self.tool_registry)
        self.reply_analyzer = ReplyAnalyzer(oracle)

    # Entry points

    async def handle(
        self,
        user: AgentUser,
        request: str,
        context: Optional[ExecutionContext] = None,
    ) -> EngineResult:
        """Handle a user request.

        Args:
            user: Acting user
            request: Request text
            context: Execution context (defaults to a top-level one)

        Returns:
            SimpleResult, WorkflowResult or ClarificationNeeded

        Raises:
            ValidationError: If the request is empty
            ToolExecutionError: If a simple request's tool call failed
        """
        if not request or not request.strip():
            raise ValidationError("Request text is required")
        context = context or ExecutionContext(user=user)

        if not context.can_decompose:
            logger.info("Depth %s: executing request without decomposition", context.depth)
            return await self._run_simple(context, request, action_kind_for(request))

        classification = await self.classifier.classify(user, request)
        if classification.kind == RequestKind.CLARIFY:
            return ClarificationNeeded(questions=classification.questions)
        if classification.kind == RequestKind.SIMPLE:
            return await self._run_simple(context, request, classification.action_kind)
        return await self._start_workflow(context, request, classification.description)

    async def resume(
        self,
        task: Union[Task, uuid.UUID],
        category: EventCategory,
        event: NormalizedEvent,
        user: AgentUser,
    ) -> WorkflowResult:
        """Continue a waiting task after its external event arrived.

        Args:
            task: Waiting task (or its id)
            category: Category of the inbound event
            event: Normalized event
            user: Acting user

        Returns:
            WorkflowResult after running as far as possible

        Raises:
            NotWaitingError: If the task is no longer waiting
        """
        task_id = task.id if isinstance(task, Task) else task
        task = await self.lifecycle.resume(task_id, event.as_event_data())
        logger.info("Resuming task %s after %s", task.id, category.value)

        state = load_workflow_state(task.task_type, task.workflow_state)
        state.resumed_by = category.value
        if category == EventCategory.CALENDAR_RESPONSE and event.attendee_responses:
            state.extra["attendee_responses"] = event.attendee_responses

        return await self._drive(task, state, ExecutionContext(user=user))

    async def retry_task(self, task_id: uuid.UUID, user: AgentUser) -> WorkflowResult:
        """Retry a failed task from its first unfinished step.

        Raises:
            NotFailedError: If the task is not failed
            RetryExhaustedError: If no retries are left
        """
        task = await self.lifecycle.retry(task_id)
        state = load_workflow_state(task.task_type, task.workflow_state)
        for step in state.steps:
            if step.status in (StepStatus.FAILED, StepStatus.IN_PROGRESS):
                step.status = StepStatus.PENDING
                step.error = None

        task = await self.lifecycle.transition(
            task.id,
            TaskStatus.IN_PROGRESS,
            {"workflow_state": dump_workflow_state(state)},
        )
        return await self._run(task, ExecutionContext(user=user))

    async def cancel_task(self, task_id: uuid.UUID, reason: str = "Cancelled by user") -> Task:
        """Cancel a task and its subtasks."""
        return await self.lifecycle.cancel(task_id, reason)

    # Simple path

    async def _run_simple(
        self, context: ExecutionContext, request: str, action_kind: ActionKind
    ) -> SimpleResult:
        tool_name = self.tool_registry.tool_for_action(action_kind)
        logger.info("Simple %s request routed to %s", action_kind.value, tool_name)
        result = await self.tools.execute_tool(
            context.user,
            tool_name,
            {
                "request": request,
                "depth": context.depth,
                "allow_decomposition": False,
            },
        )
        if not result.success:
            raise ToolExecutionError(
                tool_name, result.error or result.message or "Tool reported failure"
            )
        return SimpleResult(
            action_kind=action_kind,
            tool_name=tool_name,
            message=result.message,
            data=result.data,
        )

    # Complex path

    async def _start_workflow(
        self, context: ExecutionContext, request: str, description: Optional[str]
    ) -> WorkflowResult:
        task_type = infer_task_type(request)
        state = state_class_for(task_type.value)()
        if isinstance(state, EmailWorkflowState):
            state.recipient_name = extract_recipient_name(request)
            state.recipient_email = extract_email_address(request)
            state.time_mentioned = extract_time_mentioned(request)
        if description:
            state.extra["classification"] = description

        task = await self.lifecycle.create(
            context.user,
            request,
            task_type,
            {
                "description": description,
                "next_step": INITIAL_STEP,
                "workflow_state": dump_workflow_state(state),
            },
        )
        return await self._run(task, context)

    async def _run(self, task: Task, context: ExecutionContext) -> WorkflowResult:
        """Plan the task if needed, then execute its steps."""
        state = load_workflow_state(task.task_type, task.workflow_state)
        try:
            if task.status == TaskStatus.PENDING.value:
                task = await self.lifecycle.transition(task.id, TaskStatus.IN_PROGRESS)

            if task.next_step == INITIAL_STEP or not state.steps:
                state.steps = await self.planner.plan(context.user, task.original_request)
                if not state.steps:
                    state.outcome = "Nothing to execute for this request"
                    task = await self.lifecycle.transition(
                        task.id,
                        TaskStatus.COMPLETED,
                        {"workflow_state": dump_workflow_state(state), "next_step": None},
                    )
                    return self._result(task, state.outcome)

                task = await self.lifecycle.transition(
                    task.id,
                    TaskStatus.IN_PROGRESS,
                    {
                        "workflow_state": dump_workflow_state(state),
                        "next_step": state.steps[0].step_id,
                    },
                )
        except (ToolExecutionError, ReasoningError) as e:
            return await self._fail(task, state, e)

        return await self._drive(task, state, context)

    async def _drive(
        self, task: Task, state: AnyWorkflowState, context: ExecutionContext
    ) -> WorkflowResult:
        try:
            if (
                isinstance(state, EmailWorkflowState)
                and state.resumed_by == EventCategory.EMAIL_REPLY.value
                and state.reply_verdict is None
            ):
                event = NormalizedEvent.model_validate(state.last_event or {})
                return await self._continue_after_reply(task, state, event, context)
            return await self._execute_steps(task, state, context)
        except (ToolExecutionError, ReasoningError) as e:
            return await self._fail(task, state, e)

    async def _execute_steps(
        self, task: Task, state: AnyWorkflowState, context: ExecutionContext
    ) -> WorkflowResult:
        """Run pending steps in order until done, suspended or failed."""
        while True:
            step = state.first_pending()
            if step is None:
                state.outcome = state.outcome or "All steps completed"
                task = await self.lifecycle.transition(
                    task.id,
                    TaskStatus.COMPLETED,
                    {"workflow_state": dump_workflow_state(state), "next_step": None},
                )
                logger.info("Task %s completed", task.id)
                return self._result(task, state.outcome)

            step.status = StepStatus.IN_PROGRESS
            try:
                result = await self._execute_step(task, step, state, context)
            except (ToolExecutionError, ReasoningError) as e:
                step.status = StepStatus.FAILED
                step.error = str(e)
                raise

            step.status = StepStatus.COMPLETED
            state.step_results[step.step_id] = result.model_dump(
                mode="json", exclude={"success", "error"}
            )
            self._absorb(state, result)

            following = state.step_after(step.step_id)
            suspension = self._suspension(task, state, result)
            if suspension:
                waiting_for, descriptor = suspension
                state.suspended_step = step.step_id
                task = await self.lifecycle.mark_waiting(
                    task.id,
                    waiting_for,
                    descriptor,
                    patch={
                        "workflow_state": dump_workflow_state(state),
                        "next_step": following.step_id if following else FINAL_STEP,
                        "steps_completed": [step.step_id],
                    },
                )
                return self._result(task, f"Waiting for {waiting_for.value.replace('_', ' ')}")

            task = await self.lifecycle.transition(
                task.id,
                TaskStatus.IN_PROGRESS,
                {
                    "workflow_state": dump_workflow_state(state),
                    "steps_completed": [step.step_id],
                    "next_step": following.step_id if following else FINAL_STEP,
                },
            )

    async def _execute_step(
        self,
        task: Task,
        step: WorkflowStep,
        state: AnyWorkflowState,
        context: ExecutionContext,
    ) -> ToolResult:
        """Execute one step and classify its result strictly.

        Raises:
            ToolExecutionError: If the tool failed
            ReasoningError: If the result is neither a completion nor a suspension,
                or a free-text step reports no tool invocation
        """
        nested = context.nested()
        if step.tool_name:
            tool_name, args = step.tool_name, dict(step.tool_args)
        else:
            tool_name = ToolRegistry.AGENT_TOOL
            args = {
                "instruction": step.description,
                "request": task.original_request,
                "previous_results": state.step_results,
                "depth": nested.depth,
                "allow_decomposition": nested.can_decompose,
            }

        logger.info("Task %s: executing %s (%s)", task.id, step.step_id, tool_name)
        result = await self.tools.execute_tool(context.user, tool_name, args)

        if not result.success:
            raise ToolExecutionError(
                result.tool_name or tool_name,
                result.error or result.message or "Tool reported failure",
            )
        if not result.invocations and not result.data and not result.message.strip():
            raise ReasoningError(
                f"Step {step.step_id} produced no recognizable result", repr(result)
            )
        if tool_name == ToolRegistry.AGENT_TOOL and not result.invocations:
            raise ReasoningError(
                f"Step {step.step_id} reported completion without invoking a tool",
                result.message,
            )
        return result

    @staticmethod
    def _invocations(result: ToolResult):
        if result.invocations:
            return result.invocations
        return [ToolInvocation(tool_name=result.tool_name, data=result.data)]

    def _absorb(self, state: AnyWorkflowState, result: ToolResult) -> None:
        """Copy well-known tool outputs into the typed state."""
        for invocation in self._invocations(result):
            data = invocation.data
            if invocation.tool_name == "calendar_create_event":
                if isinstance(state, EmailWorkflowState):
                    state.calendar_event = data or {"message": result.message}
                else:
                    state.extra["calendar_event"] = data
            if not isinstance(state, EmailWorkflowState):
                continue
            if invocation.tool_name == "email_find_contact" and data.get("email"):
                state.recipient_email = data["email"]
            if invocation.tool_name == "email_send":
                recipients = invocation.args.get("to") or []
                state.sent_message_id = data.get("message_id") or state.sent_message_id
                state.thread_id = data.get("thread_id") or state.thread_id
                state.recipient_email = (
                    data.get("recipient_email")
                    or (recipients[0] if recipients else None)
                    or state.recipient_email
                )

    def _suspension(
        self, task: Task, state: AnyWorkflowState, result: ToolResult
    ) -> Optional[Tuple[WaitingFor, Dict[str, Any]]]:
        """Wait kind and descriptor when the result resolves later, else None."""
        reply_expected = needs_reply(task.original_request)
        for invocation in self._invocations(result):
            tool = self.tool_registry.get_tool(invocation.tool_name)
            waiting_for = tool.wait_kind(reply_expected) if tool else None
            if waiting_for is None:
                continue
            return waiting_for, self._wait_descriptor(state, invocation, result)
        return None

    @staticmethod
    def _wait_descriptor(
        state: AnyWorkflowState, invocation: ToolInvocation, result: ToolResult
    ) -> Dict[str, Any]:
        source = {**result.data, **invocation.data}
        descriptor: Dict[str, Any] = {
            key: source[key] for key in _DESCRIPTOR_KEYS if source.get(key)
        }
        if isinstance(state, EmailWorkflowState):
            if state.recipient_email and "recipient_email" not in descriptor:
                descriptor["recipient_email"] = state.recipient_email
            if state.recipient_name and "recipient_name" not in descriptor:
                descriptor["recipient_name"] = state.recipient_name
        descriptor["tool_name"] = invocation.tool_name
        descriptor["started_at"] = utcnow().isoformat()
        return descriptor

    async def _continue_after_reply(
        self,
        task: Task,
        state: EmailWorkflowState,
        event: NormalizedEvent,
        context: ExecutionContext,
    ) -> WorkflowResult:
        verdict = await self.reply_analyzer.analyze(context.user, task.original_request, event)
        state.reply_verdict = verdict
        state.reply_analysis = f"Reply from {event.sender or 'unknown sender'}: {verdict.value}"

        meeting = task.task_type == TaskType.EMAIL_CALENDAR_WORKFLOW.value or is_meeting_request(
            task.original_request
        )

        if verdict == ReplyVerdict.ACCEPTED:
            if meeting and state.first_pending() is None:
                attendee = state.recipient_email or extract_email_address(event.sender or "")
                state.steps.append(
                    WorkflowStep(
                        step_number=len(state.steps) + 1,
                        description="Create the calendar event for the accepted meeting",
                        tool_name="calendar_create_event",
                        tool_args=calendar_event_args(
                            state.recipient_name, attendee, state.time_mentioned
                        ),
                    )
                )
            state.outcome = "Meeting accepted" if meeting else "Reply accepted"
            return await self._execute_steps(task, state, context)

        for step in state.steps:
            if step.status == StepStatus.PENDING:
                step.status = StepStatus.SKIPPED
        if verdict == ReplyVerdict.DECLINED:
            state.outcome = "Meeting was declined; no calendar event created"
        else:
            state.outcome = "Reply was unclear; no calendar event created"

        task = await self.lifecycle.transition(
            task.id,
            TaskStatus.COMPLETED,
            {"workflow_state": dump_workflow_state(state), "next_step": None},
        )
        logger.info("Task %s completed after %s reply", task.id, verdict.value)
        return self._result(task, state.outcome)

    async def _fail(
        self, task: Task, state: AnyWorkflowState, error: Exception
    ) -> WorkflowResult:
        """Fail the task with the error text; never reports success."""
        reason = str(error)
        logger.error("Task %s failed: %s", task.id, reason)
        task = await self.lifecycle.transition(
            task.id,
            TaskStatus.FAILED,
            {"failure_reason": reason, "workflow_state": dump_workflow_state(state)},
        )
        return self._result(task, f"Task failed: {reason}")

    @staticmethod
    def _result(task: Task, message: str) -> WorkflowResult:
        return WorkflowResult(
            task_id=str(task.id),
            status=task.status,
            message=message,
            steps_completed=list(task.steps_completed or []),
            waiting_for=task.waiting_for,
            failure_reason=task.failure_reason,
            workflow_state=dict(task.workflow_state or {}),
        )


__all__ = [
    "ExecutionContext",
    "FINAL_STEP",
    "INITIAL_STEP",
    "MAX_DECOMPOSITION_DEPTH",
    "WorkflowEngine",
]
