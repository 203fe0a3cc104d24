"""Integration tests for WorkflowEngine with a stubbed executor and oracle."""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from agent_engine.core.agents.tool_integration import (
    AgentToolExecutor,
    ToolInvocation,
    ToolResult,
)
from agent_engine.core.exceptions import (
    NotFailedError,
    RetryExhaustedError,
    ToolExecutionError,
    ValidationError,
)
from agent_engine.core.task_types import TaskStatus, TaskType, WaitingFor
from agent_engine.models.results import ClarificationNeeded, SimpleResult, WorkflowResult
from agent_engine.services.workflow_engine import FINAL_STEP, ExecutionContext

JANE_REQUEST = "Email Jane asking if she is free tomorrow 4-5pm"


async def _task(lifecycle, result):
    return await lifecycle.get(uuid.UUID(result.task_id))


def _tool_calls(executor):
    return [call.args[1] for call in executor.execute.await_args_list]


@pytest.mark.asyncio
async def test_simple_request_runs_one_tool(
    build_workflow_engine, lifecycle, user, oracle_factory, executor_factory
):
    executor = executor_factory()
    engine = build_workflow_engine(executor, oracle_factory(classification="SIMPLE: calendar"))

    result = await engine.handle(user, "Schedule a meeting for tomorrow at 3pm")

    assert isinstance(result, SimpleResult)
    assert result.tool_name == "calendar"
    assert result.message == "calendar done"
    executor.execute.assert_awaited_once()
    assert _tool_calls(executor) == ["calendar"]
    assert await lifecycle.list_tasks(user) == []


@pytest.mark.asyncio
async def test_simple_request_tool_failure_raises(
    build_workflow_engine, user, oracle_factory, executor_factory
):
    executor = executor_factory(
        lambda tool_name, args: ToolResult(success=False, tool_name=tool_name, error="quota")
    )
    engine = build_workflow_engine(executor, oracle_factory(classification="SIMPLE: email"))

    with pytest.raises(ToolExecutionError, match="quota"):
        await engine.handle(user, "Send Bob a quick note")


@pytest.mark.asyncio
async def test_empty_request_rejected(workflow_engine, user):
    with pytest.raises(ValidationError):
        await workflow_engine.handle(user, "   ")


@pytest.mark.asyncio
async def test_clarification_executes_nothing(
    build_workflow_engine, lifecycle, user, oracle_factory, executor_factory
):
    executor = executor_factory()
    engine = build_workflow_engine(
        executor, oracle_factory(classification="CLARIFY: Who is Jane?; Which day?")
    )

    result = await engine.handle(user, "Set it up with Jane")

    assert isinstance(result, ClarificationNeeded)
    assert result.questions == ["Who is Jane?", "Which day?"]
    executor.execute.assert_not_awaited()
    assert await lifecycle.list_tasks(user) == []


@pytest.mark.asyncio
async def test_meeting_request_suspends_on_email_reply(workflow_engine, lifecycle, executor, user):
    result = await workflow_engine.handle(user, JANE_REQUEST)

    assert isinstance(result, WorkflowResult)
    assert result.status == TaskStatus.WAITING_FOR_RESPONSE.value
    assert result.waiting_for == WaitingFor.EMAIL_REPLY.value
    assert result.steps_completed == ["step_1", "step_2"]

    task = await _task(lifecycle, result)
    assert task.task_type == TaskType.EMAIL_CALENDAR_WORKFLOW.value
    assert task.next_step == FINAL_STEP
    assert task.waiting_for_data["thread_id"] == "T-1"
    assert task.waiting_for_data["message_id"] == "M-1"
    assert task.waiting_for_data["recipient_email"] == "jane@x.com"
    assert task.waiting_for_data["recipient_name"] == "Jane"
    assert task.waiting_for_data["tool_name"] == "email_send"
    assert task.workflow_state["recipient_email"] == "jane@x.com"
    assert task.workflow_state["time_mentioned"] == "tomorrow 4-5pm"
    assert task.workflow_state["suspended_step"] == "step_2"

    calls = executor.execute.await_args_list
    assert [call.args[1] for call in calls] == ["agent", "agent"]
    first_args = calls[0].args[2]
    assert first_args["instruction"] == "Find Jane's email address"
    assert first_args["request"] == JANE_REQUEST
    assert first_args["depth"] == 1
    assert first_args["allow_decomposition"] is False
    assert "step_1" in calls[1].args[2]["previous_results"]


@pytest.mark.asyncio
async def test_email_without_expected_reply_does_not_suspend(
    build_workflow_engine, lifecycle, user, oracle_factory
):
    oracle = oracle_factory(
        breakdown="Step 1: Send Bob the quarterly report\nStep 2: Archive the thread"
    )
    engine = build_workflow_engine(oracle=oracle)

    result = await engine.handle(user, "Email Bob the quarterly report and then archive the thread")

    assert result.status == TaskStatus.COMPLETED.value
    assert result.steps_completed == ["step_1", "step_2"]
    task = await _task(lifecycle, result)
    assert task.waiting_for is None
    assert task.next_step is None
    assert task.completed_at is not None


@pytest.mark.asyncio
async def test_steps_execute_in_number_order(
    build_workflow_engine, user, oracle_factory, executor_factory
):
    executor = executor_factory()
    oracle = oracle_factory(
        breakdown="Step 3: Notify the team\nStep 1: Draft the agenda\nStep 2: Book the room"
    )
    engine = build_workflow_engine(executor, oracle)

    result = await engine.handle(user, "Plan the offsite and then notify the team")

    assert result.status == TaskStatus.COMPLETED.value
    assert result.steps_completed == ["step_1", "step_2", "step_3"]
    instructions = [call.args[2]["instruction"] for call in executor.execute.await_args_list]
    assert instructions == ["Draft the agenda", "Book the room", "Notify the team"]


@pytest.mark.asyncio
async def test_empty_breakdown_completes_task(
    build_workflow_engine, lifecycle, user, oracle_factory, executor_factory
):
    executor = executor_factory()
    engine = build_workflow_engine(executor, oracle_factory(breakdown="Nothing to do here."))

    result = await engine.handle(user, JANE_REQUEST)

    assert result.status == TaskStatus.COMPLETED.value
    assert result.message == "Nothing to execute for this request"
    executor.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_step_failure_fails_task(
    build_workflow_engine, lifecycle, user, executor_factory
):
    def handler(tool_name, args):
        return ToolResult(success=False, tool_name=tool_name, error="Directory unavailable")

    engine = build_workflow_engine(executor_factory(handler))

    result = await engine.handle(user, JANE_REQUEST)

    assert result.status == TaskStatus.FAILED.value
    assert result.failure_reason == "Tool 'agent' failed: Directory unavailable"
    task = await _task(lifecycle, result)
    assert task.failed_at is not None
    steps = task.workflow_state["steps"]
    assert steps[0]["status"] == "failed"
    assert steps[0]["error"] == "Tool 'agent' failed: Directory unavailable"
    assert steps[1]["status"] == "pending"


@pytest.mark.asyncio
async def test_executor_exception_fails_task(build_workflow_engine, user, executor_factory):
    def handler(tool_name, args):
        raise ConnectionError("gmail unreachable")

    engine = build_workflow_engine(executor_factory(handler))

    result = await engine.handle(user, JANE_REQUEST)

    assert result.status == TaskStatus.FAILED.value
    assert "gmail unreachable" in result.failure_reason


@pytest.mark.asyncio
async def test_unrecognized_step_result_fails_task(build_workflow_engine, user, executor_factory):
    engine = build_workflow_engine(
        executor_factory(lambda tool_name, args: ToolResult(success=True, tool_name=tool_name))
    )

    result = await engine.handle(user, JANE_REQUEST)

    assert result.status == TaskStatus.FAILED.value
    assert "no recognizable result" in result.failure_reason


@pytest.mark.asyncio
async def test_retry_until_exhausted(build_workflow_engine, lifecycle, user, executor_factory):
    engine = build_workflow_engine(
        executor_factory(
            lambda tool_name, args: ToolResult(success=False, tool_name=tool_name, error="down")
        )
    )
    result = await engine.handle(user, JANE_REQUEST)
    task_id = uuid.UUID(result.task_id)

    for attempt in range(1, 4):
        result = await engine.retry_task(task_id, user)
        assert result.status == TaskStatus.FAILED.value
        assert (await lifecycle.get(task_id)).retry_count == attempt

    with pytest.raises(RetryExhaustedError):
        await engine.retry_task(task_id, user)

    task = await lifecycle.get(task_id)
    assert task.status == TaskStatus.FAILED.value
    assert len(task.task_metadata["previous_failures"]) == 3


@pytest.mark.asyncio
async def test_retry_resumes_from_failed_step(
    build_workflow_engine, lifecycle, user, executor_factory, default_results
):
    outage = {"active": True}

    def handler(tool_name, args):
        if outage["active"] and args.get("instruction", "").startswith("Send"):
            return ToolResult(success=False, tool_name=tool_name, error="smtp down")
        return default_results(tool_name, args)

    executor = executor_factory(handler)
    engine = build_workflow_engine(executor)
    result = await engine.handle(user, JANE_REQUEST)
    assert result.status == TaskStatus.FAILED.value
    assert result.steps_completed == ["step_1"]

    outage["active"] = False
    result = await engine.retry_task(uuid.UUID(result.task_id), user)

    assert result.status == TaskStatus.WAITING_FOR_RESPONSE.value
    assert result.steps_completed == ["step_1", "step_2"]
    instructions = [call.args[2]["instruction"] for call in executor.execute.await_args_list]
    assert instructions.count("Find Jane's email address") == 1


@pytest.mark.asyncio
async def test_retry_requires_failed_task(workflow_engine, user):
    result = await workflow_engine.handle(user, JANE_REQUEST)

    with pytest.raises(NotFailedError):
        await workflow_engine.retry_task(uuid.UUID(result.task_id), user)


@pytest.mark.asyncio
async def test_nested_context_skips_classification(workflow_engine, oracle, executor, user):
    context = ExecutionContext(user=user, depth=1)

    result = await workflow_engine.handle(user, "Send a quick email to Bob", context)

    assert isinstance(result, SimpleResult)
    assert result.tool_name == "email"
    oracle.complete.assert_not_awaited()
    assert executor.execute.await_args.args[2]["allow_decomposition"] is False


@pytest.mark.asyncio
async def test_oracle_outage_uses_keyword_routing(
    build_workflow_engine, oracle_down, user, executor_factory
):
    executor = executor_factory()
    engine = build_workflow_engine(executor, oracle_down)

    result = await engine.handle(user, "Schedule a meeting for tomorrow at 3pm")

    assert isinstance(result, SimpleResult)
    assert result.tool_name == "calendar"


@pytest.mark.asyncio
async def test_oracle_outage_fails_complex_request(build_workflow_engine, oracle_down, user):
    engine = build_workflow_engine(oracle=oracle_down)

    result = await engine.handle(user, JANE_REQUEST)

    assert result.status == TaskStatus.FAILED.value
    assert result.failure_reason == "oracle unavailable"


@pytest.mark.asyncio
async def test_calendar_invitations_suspend_on_calendar_response(
    build_workflow_engine, lifecycle, user, oracle_factory, executor_factory
):
    def handler(tool_name, args):
        return ToolResult(
            success=True,
            tool_name=tool_name,
            message="Invitations sent",
            invocations=[
                ToolInvocation(tool_name="calendar_send_invitations", data={"event_id": "evt-9"})
            ],
        )

    engine = build_workflow_engine(
        executor_factory(handler),
        oracle_factory(breakdown="Step 1: Send invitations for the Friday review"),
    )

    result = await engine.handle(user, "Invite the team to the Friday review and wait for responses")

    assert result.waiting_for == WaitingFor.CALENDAR_RESPONSE.value
    task = await _task(lifecycle, result)
    assert task.task_type == TaskType.CALENDAR_WORKFLOW.value
    assert task.waiting_for_data["event_id"] == "evt-9"
    assert task.waiting_for_data["tool_name"] == "calendar_send_invitations"


@pytest.mark.asyncio
async def test_cancel_waiting_task(workflow_engine, lifecycle, user):
    result = await workflow_engine.handle(user, JANE_REQUEST)

    task = await workflow_engine.cancel_task(uuid.UUID(result.task_id), "Changed my mind")

    assert task.status == TaskStatus.CANCELLED.value
    assert task.failure_reason == "Changed my mind"
    assert task.waiting_for is None


def _agent_reasoning(*runs):
    """Reasoning engine double whose tool-enabled runs return ``runs`` in order."""
    reasoning = MagicMock()
    reasoning.run_tools = AsyncMock(side_effect=list(runs))
    return reasoning


@pytest.mark.asyncio
async def test_agent_without_tool_call_fails_step(
    build_workflow_engine, lifecycle, user
):
    reasoning = _agent_reasoning(
        {
            "text": "Sorry, I do not have access to any email tool, so I could not do that.",
            "is_error": False,
            "tool_calls": [],
        }
    )
    engine = build_workflow_engine(executor=AgentToolExecutor(reasoning))

    result = await engine.handle(user, "Email Jane asking if she's free tomorrow 4-5pm")

    assert result.status == TaskStatus.FAILED.value
    assert result.waiting_for is None
    assert result.steps_completed == []
    assert "No tool was invoked" in result.failure_reason
    task = await _task(lifecycle, result)
    assert task.workflow_state["steps"][0]["status"] == "failed"


@pytest.mark.asyncio
async def test_agent_tool_calls_drive_suspension(build_workflow_engine, lifecycle, user):
    reasoning = _agent_reasoning(
        {
            "text": "Jane is jane@x.com",
            "is_error": False,
            "tool_calls": [
                {
                    "id": "tu-1",
                    "name": "mcp__contacts__email_find_contact",
                    "input": {"name": "Jane"},
                    "output": '{"email": "jane@x.com"}',
                    "is_error": False,
                }
            ],
        },
        {
            "text": "Email sent",
            "is_error": False,
            "tool_calls": [
                {
                    "id": "tu-2",
                    "name": "mcp__gmail__email_send",
                    "input": {"to": ["jane@x.com"], "subject": "Meeting Request"},
                    "output": '{"thread_id": "T-7", "message_id": "M-7"}',
                    "is_error": False,
                }
            ],
        },
    )
    engine = build_workflow_engine(executor=AgentToolExecutor(reasoning))

    result = await engine.handle(user, JANE_REQUEST)

    assert result.status == TaskStatus.WAITING_FOR_RESPONSE.value
    assert result.waiting_for == WaitingFor.EMAIL_REPLY.value
    task = await _task(lifecycle, result)
    assert task.waiting_for_data["thread_id"] == "T-7"
    assert task.waiting_for_data["recipient_email"] == "jane@x.com"
    assert task.waiting_for_data["tool_name"] == "email_send"


@pytest.mark.asyncio
async def test_free_text_step_without_invocation_fails(
    build_workflow_engine, user, executor_factory
):
    engine = build_workflow_engine(
        executor_factory(
            lambda tool_name, args: ToolResult(
                success=True, tool_name=tool_name, message="I could not do that."
            )
        )
    )

    result = await engine.handle(user, JANE_REQUEST)

    assert result.status == TaskStatus.FAILED.value
    assert "without invoking a tool" in result.failure_reason


@pytest.mark.asyncio
async def test_unexpected_breakdown_error_fails_task(
    build_workflow_engine, lifecycle, user, oracle_factory
):
    engine = build_workflow_engine(oracle=oracle_factory(breakdown=RuntimeError("oracle timeout")))

    result = await engine.handle(user, JANE_REQUEST)

    assert result.status == TaskStatus.FAILED.value
    assert result.failure_reason == "oracle timeout"

    engine.planner.oracle = oracle_factory()
    retried = await engine.retry_task(uuid.UUID(result.task_id), user)
    assert retried.status == TaskStatus.WAITING_FOR_RESPONSE.value


@pytest.mark.asyncio
async def test_unexpected_classification_error_uses_keyword_routing(
    build_workflow_engine, user, oracle_factory, executor_factory
):
    executor = executor_factory()
    engine = build_workflow_engine(
        executor, oracle_factory(classification=TimeoutError("oracle timeout"))
    )

    result = await engine.handle(user, "Schedule a meeting with John tomorrow at 2pm")

    assert isinstance(result, SimpleResult)
    assert result.tool_name == "calendar"
