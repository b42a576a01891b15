import asyncio

import pytest

from agent_crew.core.errors import InvalidTransition, TaskNotFound, UnknownSubtask
from agent_crew.models.events import Event, EventSource, EventType
from agent_crew.models.task import Role, SubtaskStatus, TaskStatus


async def _task_with_subtasks(store, user_id="alice", count=2):
    task = await store.create_task("Assess tidal power", user_id)
    subtasks = await store.create_subtasks(task.id, [
        {"step_number": n, "role": "researcher", "input": f"query {n}", "thought": "because"}
        for n in range(count, 0, -1)
    ])
    return task, subtasks


@pytest.mark.asyncio
async def test_create_and_get_task(store):
    task = await store.create_task("Assess tidal power", "alice")

    loaded = await store.get_task(task.id)
    assert loaded.goal_text == "Assess tidal power"
    assert loaded.user_id == "alice"
    assert loaded.status == TaskStatus.PLANNING
    assert loaded.subtasks == []
    assert await store.list_active_task_ids() == [task.id]
    assert await store.get_task("missing") is None


@pytest.mark.asyncio
async def test_list_tasks_is_per_user_and_newest_first(store):
    older = await store.create_task("first", "alice")
    await asyncio.sleep(0.01)
    newer = await store.create_task("second", "alice")
    await store.create_task("other", "bob")

    tasks = await store.list_tasks("alice")
    assert [t.id for t in tasks] == [newer.id, older.id]
    assert await store.list_tasks("nobody") == []


@pytest.mark.asyncio
async def test_subtasks_come_back_in_step_order(store):
    task, _ = await _task_with_subtasks(store, count=3)

    loaded = await store.get_task(task.id)
    assert [s.step_number for s in loaded.subtasks] == [1, 2, 3]
    assert loaded.subtasks[0].tool_input == {"query": "query 1"}
    assert loaded.subtasks[0].agent_thought == "because"
    assert loaded.subtasks[0].role == Role.RESEARCHER
    assert all(s.status == SubtaskStatus.PENDING for s in loaded.subtasks)


@pytest.mark.asyncio
async def test_create_subtasks_for_missing_task(store):
    with pytest.raises(TaskNotFound):
        await store.create_subtasks("missing", [{"step_number": 1, "role": "analyst", "input": "x"}])


@pytest.mark.asyncio
async def test_task_status_moves_forward_only(store):
    task = await store.create_task("goal", "alice")

    await store.update_task(task.id, TaskStatus.EXECUTING)
    done = await store.update_task(task.id, TaskStatus.COMPLETED, final_output="answer")
    assert done.final_output == "answer"
    assert await store.list_active_task_ids() == []

    with pytest.raises(InvalidTransition) as excinfo:
        await store.update_task(task.id, TaskStatus.STOPPED)
    assert excinfo.value.current == "completed"

    with pytest.raises(InvalidTransition):
        await store.update_task(task.id, TaskStatus.EXECUTING)
    assert (await store.get_task(task.id)).status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_error_status_keeps_message(store):
    task = await store.create_task("goal", "alice")
    failed = await store.update_task(task.id, TaskStatus.ERROR, error_message="boom")

    assert failed.error_message == "boom"
    assert (await store.get_task(task.id)).error_message == "boom"


@pytest.mark.asyncio
async def test_update_missing_task(store):
    with pytest.raises(TaskNotFound):
        await store.update_task("missing", TaskStatus.STOPPED)


@pytest.mark.asyncio
async def test_subtask_status_is_monotonic(store):
    _, subtasks = await _task_with_subtasks(store)
    subtask = next(s for s in subtasks if s.step_number == 1)

    with pytest.raises(InvalidTransition):
        await store.update_subtask(subtask.id, SubtaskStatus.COMPLETED, "skipped ahead")

    await store.update_subtask(subtask.id, SubtaskStatus.PROCESSING)
    done = await store.update_subtask(subtask.id, SubtaskStatus.COMPLETED, "result")
    assert done.tool_output == "result"

    with pytest.raises(InvalidTransition) as excinfo:
        await store.update_subtask(subtask.id, SubtaskStatus.STOPPED)
    assert excinfo.value.current == "completed"


@pytest.mark.asyncio
async def test_pending_subtask_can_be_stopped(store):
    _, subtasks = await _task_with_subtasks(store)
    stopped = await store.update_subtask(subtasks[0].id, SubtaskStatus.STOPPED)

    assert stopped.status == SubtaskStatus.STOPPED
    assert stopped.tool_output is None


@pytest.mark.asyncio
async def test_update_missing_subtask(store):
    with pytest.raises(UnknownSubtask):
        await store.update_subtask("missing", SubtaskStatus.PROCESSING)


@pytest.mark.asyncio
async def test_role_preferences_default_to_enabled(store):
    roles = await store.get_enabled_roles("alice")
    assert roles == {
        Role.RESEARCHER: True, Role.ANALYST: True, Role.WRITER: True, Role.EXECUTOR: True,
    }

    updated = await store.set_role_enabled("alice", Role.WRITER, False)
    assert updated[Role.WRITER] is False
    assert (await store.get_enabled_roles("bob"))[Role.WRITER] is True


@pytest.mark.asyncio
async def test_events_are_appended_in_order(store):
    task = await store.create_task("goal", "alice")
    await store.publish_event(task.id, Event(type=EventType.STATUS, source=EventSource.PLANNER, message="planning"))
    await store.publish_event(task.id, Event(type=EventType.DONE, source=EventSource.SYSTEM, message="done"))

    events = await store.list_events(task.id)
    assert [e.message for e in events] == ["planning", "done"]
    assert events[-1].type == EventType.DONE

    messages = await store.read_events(task.id)
    assert len(messages) == 2
