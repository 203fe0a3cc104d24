"""Inbound events resuming waiting tasks end to end (matcher + engine + store)."""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from agent_engine.core.exceptions import NotWaitingError, ReasoningError
from agent_engine.core.task_types import TaskStatus, TaskType, WaitingFor
from agent_engine.models.events import EventCategory, NormalizedEvent, OutcomeStatus
from agent_engine.models.results import WorkflowResult
from agent_engine.services.event_matching import EventMatcher

JANE_REQUEST = "Email Jane asking if she is free tomorrow 4-5pm"

JANE_REPLY = NormalizedEvent(
    thread_id="T-1",
    message_id="M-2",
    sender="Jane <jane@x.com>",
    subject="Re: Meeting Request",
    body="Yes, 4pm works for me.",
)


async def _suspended(engine, lifecycle, user):
    result = await engine.handle(user, JANE_REQUEST)
    assert result.status == TaskStatus.WAITING_FOR_RESPONSE.value
    return await lifecycle.get(uuid.UUID(result.task_id))


async def _waiting_task(lifecycle, user, descriptor, kind=WaitingFor.EMAIL_REPLY):
    task = await lifecycle.create(user, JANE_REQUEST, TaskType.EMAIL_CALENDAR_WORKFLOW)
    return await lifecycle.mark_waiting(task.id, kind, descriptor)


def _stub_engine(resume):
    engine = MagicMock()
    engine.resume = AsyncMock(side_effect=resume)
    return engine


def _completed(task, category, event, user):
    return WorkflowResult(task_id=str(task.id), status="completed", message="done")


@pytest.mark.asyncio
async def test_accepted_reply_creates_calendar_event(
    workflow_engine, event_matcher, lifecycle, executor, user
):
    task = await _suspended(workflow_engine, lifecycle, user)

    outcomes = await event_matcher.handle_event(user.id, EventCategory.EMAIL_REPLY, JANE_REPLY)

    assert len(outcomes) == 1
    assert outcomes[0].task_id == str(task.id)
    assert outcomes[0].status == OutcomeStatus.OK
    assert outcomes[0].matched_by == "identity"

    task = await lifecycle.get(task.id)
    assert task.status == TaskStatus.COMPLETED.value
    assert task.steps_completed == ["step_1", "step_2", "step_3"]
    assert task.waiting_for is None
    assert task.workflow_state["reply_verdict"] == "ACCEPTED"
    assert task.workflow_state["calendar_event"]["event_id"] == "evt-1"
    assert task.workflow_state["last_event"]["thread_id"] == "T-1"
    assert task.workflow_state["resumed_by"] == "email_reply"

    tool_name, args = executor.execute.await_args.args[1:]
    assert tool_name == "calendar_create_event"
    assert args["title"] == "Meeting with Jane"
    assert args["attendees"] == ["jane@x.com"]


@pytest.mark.asyncio
async def test_reply_from_stranger_resumes_nothing(
    workflow_engine, event_matcher, lifecycle, user
):
    task = await _suspended(workflow_engine, lifecycle, user)
    stranger = NormalizedEvent(
        sender="stranger@other.com",
        subject="Re: Meeting Request",
        body="Who is this?",
    )

    outcomes = await event_matcher.handle_event(user.id, EventCategory.EMAIL_REPLY, stranger)

    assert outcomes == []
    unchanged = await lifecycle.get(task.id)
    assert unchanged.status == TaskStatus.WAITING_FOR_RESPONSE.value
    assert unchanged.version == task.version


@pytest.mark.asyncio
async def test_duplicate_delivery_is_ignored(workflow_engine, event_matcher, lifecycle, user):
    await _suspended(workflow_engine, lifecycle, user)

    first = await event_matcher.handle_event(user.id, "email_reply", JANE_REPLY)
    second = await event_matcher.handle_event(user.id, "email_reply", JANE_REPLY)

    assert len(first) == 1
    assert second == []


@pytest.mark.asyncio
async def test_other_users_tasks_are_not_matched(workflow_engine, event_matcher, lifecycle, user):
    task = await _suspended(workflow_engine, lifecycle, user)

    outcomes = await event_matcher.handle_event(uuid.uuid4(), "email_reply", JANE_REPLY)

    assert outcomes == []
    assert (await lifecycle.get(task.id)).is_waiting


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "verdict,outcome",
    [
        ("DECLINED", "Meeting was declined; no calendar event created"),
        ("Not sure what they mean", "Reply was unclear; no calendar event created"),
    ],
)
async def test_unaccepted_reply_completes_without_event(
    build_workflow_engine, lifecycle, user, oracle_factory, executor_factory, verdict, outcome
):
    executor = executor_factory()
    engine = build_workflow_engine(executor, oracle_factory(reply=verdict))
    task = await _suspended(engine, lifecycle, user)

    outcomes = await EventMatcher(lifecycle, engine).handle_event(
        user.id, EventCategory.EMAIL_REPLY, JANE_REPLY
    )

    assert outcomes[0].status == OutcomeStatus.OK
    task = await lifecycle.get(task.id)
    assert task.status == TaskStatus.COMPLETED.value
    assert task.workflow_state["outcome"] == outcome
    assert task.workflow_state["calendar_event"] is None
    assert "calendar_create_event" not in [c.args[1] for c in executor.execute.await_args_list]


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [ReasoningError("overloaded"), RuntimeError("overloaded")])
async def test_reply_analysis_failure_is_retryable(
    build_workflow_engine, lifecycle, user, oracle_factory, error
):
    engine = build_workflow_engine(oracle=oracle_factory(reply=error))
    task = await _suspended(engine, lifecycle, user)

    outcomes = await EventMatcher(lifecycle, engine).handle_event(
        user.id, EventCategory.EMAIL_REPLY, JANE_REPLY
    )

    assert outcomes[0].status == OutcomeStatus.ERROR
    assert outcomes[0].message == "overloaded"
    assert (await lifecycle.get(task.id)).status == TaskStatus.FAILED.value

    engine.reply_analyzer.oracle = oracle_factory(reply="ACCEPTED")
    result = await engine.retry_task(task.id, user)

    assert result.status == TaskStatus.COMPLETED.value
    assert result.workflow_state["calendar_event"]["event_id"] == "evt-1"


@pytest.mark.asyncio
async def test_calendar_response_resumes_by_event_id(build_workflow_engine, lifecycle, user):
    engine = build_workflow_engine()
    task = await lifecycle.create(user, "Invite the team to the review", TaskType.CALENDAR_WORKFLOW)
    await lifecycle.transition(
        task.id,
        TaskStatus.IN_PROGRESS,
        {
            "next_step": "finalize",
            "workflow_state": {
                "steps": [{"step_number": 1, "description": "Invite", "status": "completed"}]
            },
        },
    )
    await lifecycle.mark_waiting(task.id, WaitingFor.CALENDAR_RESPONSE, {"event_id": "evt-9"})
    event = NormalizedEvent(
        event_id="evt-9",
        object_id="res-1",
        event_type="attendee_response",
        attendee_responses=[{"email": "a@x.com", "response_status": "accepted"}],
    )

    outcomes = await EventMatcher(lifecycle, engine).handle_event(
        user.id, EventCategory.CALENDAR_RESPONSE, event
    )

    assert [o.matched_by for o in outcomes] == ["identity"]
    task = await lifecycle.get(task.id)
    assert task.status == TaskStatus.COMPLETED.value
    assert task.workflow_state["extra"]["attendee_responses"][0]["email"] == "a@x.com"


@pytest.mark.asyncio
async def test_failures_are_isolated_per_task(lifecycle, user):
    first = await _waiting_task(lifecycle, user, {"thread_id": "T-1"})
    second = await _waiting_task(lifecycle, user, {"thread_id": "T-1"})

    async def resume(task, category, event, acting_user):
        if task.id == first.id:
            raise RuntimeError("calendar API down")
        return _completed(task, category, event, acting_user)

    outcomes = await EventMatcher(lifecycle, _stub_engine(resume)).handle_event(
        user.id, EventCategory.EMAIL_REPLY, NormalizedEvent(thread_id="T-1")
    )

    by_task = {o.task_id: o for o in outcomes}
    assert by_task[str(first.id)].status == OutcomeStatus.ERROR
    assert by_task[str(first.id)].message == "calendar API down"
    assert by_task[str(second.id)].status == OutcomeStatus.OK


@pytest.mark.asyncio
async def test_task_resumed_elsewhere_is_skipped(lifecycle, user):
    task = await _waiting_task(lifecycle, user, {"thread_id": "T-1"})

    async def resume(task, category, event, acting_user):
        raise NotWaitingError(task.id, "in_progress")

    outcomes = await EventMatcher(lifecycle, _stub_engine(resume)).handle_event(
        user.id, EventCategory.EMAIL_REPLY, NormalizedEvent(thread_id="T-1")
    )

    assert outcomes == []


@pytest.mark.asyncio
async def test_recency_fallback_resumes_only_newest(lifecycle, user):
    await _waiting_task(lifecycle, user, {"recipient_email": "jane@x.com"})
    newest = await _waiting_task(lifecycle, user, {"recipient_email": "jane@x.com"})
    engine = _stub_engine(_completed)

    outcomes = await EventMatcher(lifecycle, engine).handle_event(
        user.id, EventCategory.EMAIL_REPLY, NormalizedEvent(subject="Checking in", body="Sure")
    )

    assert [(o.task_id, o.matched_by) for o in outcomes] == [(str(newest.id), "recency")]
    engine.resume.assert_awaited_once()


@pytest.mark.asyncio
async def test_strong_match_suppresses_recency(lifecycle, user):
    target = await _waiting_task(lifecycle, user, {"thread_id": "T-1"})
    await _waiting_task(lifecycle, user, {"thread_id": "T-2"})
    engine = _stub_engine(_completed)

    outcomes = await EventMatcher(lifecycle, engine).handle_event(
        user.id, EventCategory.EMAIL_REPLY, NormalizedEvent(thread_id="T-1")
    )

    assert [o.task_id for o in outcomes] == [str(target.id)]


@pytest.mark.asyncio
async def test_event_category_selects_wait_kind(lifecycle, user):
    await _waiting_task(lifecycle, user, {"event_id": "evt-1"}, kind=WaitingFor.CALENDAR_RESPONSE)
    engine = _stub_engine(_completed)

    outcomes = await EventMatcher(lifecycle, engine).handle_event(
        user.id, EventCategory.EMAIL_REPLY, NormalizedEvent(event_id="evt-1")
    )

    assert outcomes == []
    engine.resume.assert_not_awaited()
