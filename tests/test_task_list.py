from __future__ import annotations

from conftest import drain
from seamless_agent.console import ConsoleChannel
from seamless_agent.messages import dict_to_message
from seamless_agent.models import TaskStatus
from seamless_agent.storage.task_lists import TaskListStore
from seamless_agent.task_list import TaskListManager


def _manager(stores, channel: ConsoleChannel | None = None) -> TaskListManager:
    return TaskListManager(stores.task_lists, channel)


def _create(manager: TaskListManager, *titles: str) -> tuple[str, list[str]]:
    created = manager.create_task_list("Refactor", tasks=[{"title": t} for t in titles])
    session = manager.get(created["listId"])
    return created["listId"], [t.id for t in session.tasks]


def test_create_and_walk_the_list_until_it_auto_closes(stores) -> None:
    manager = _manager(stores)
    created = manager.create_task_list("Refactor", "cleanup", [{"title": "Extract"}, {"title": "Test"}])
    assert created["created"] is True
    assert created["totalTasks"] == 2
    list_id = created["listId"]

    first = manager.get_next_task(list_id)
    assert first["task"]["title"] == "Extract"
    assert first["done"] is False

    update = manager.update_task_status(list_id, first["task"]["id"], "in-progress")
    assert update["status"] == "in-progress"
    assert manager.get_next_task(list_id)["task"]["id"] == first["task"]["id"]

    assert manager.update_task_status(list_id, first["task"]["id"], "completed")["autoClosed"] is False
    second = manager.get_next_task(list_id)["task"]
    assert second["title"] == "Test"

    result = manager.update_task_status(list_id, second["id"], "completed")
    assert result["autoClosed"] is True
    assert manager.get(list_id).closed is True

    after = manager.get_next_task(list_id)
    assert after["closed"] is True
    assert after["done"] is True
    assert after["task"] is None


def test_blocked_tasks_do_not_keep_a_list_open(stores) -> None:
    manager = _manager(stores)
    list_id, (a, b) = _create(manager, "Migrate", "Backfill")

    manager.update_task_status(list_id, b, "blocked")
    assert manager.update_task_status(list_id, a, "completed")["autoClosed"] is True


def test_closed_list_rejects_updates(stores) -> None:
    manager = _manager(stores)
    list_id, (task_id,) = _create(manager, "Only")
    manager.close_task_list(list_id)

    assert manager.update_task_status(list_id, task_id, "completed") == {"error": f"List is closed: {list_id}"}
    assert manager.handle("add", {"listId": list_id, "task": {"title": "Late"}})["error"] == (
        f"List is closed: {list_id}"
    )


def test_closing_a_closed_list_is_an_error(stores) -> None:
    channel = ConsoleChannel()
    queue = channel.subscribe()
    manager = _manager(stores, channel)
    list_id = manager.handle("create", {"title": "Twice", "tasks": [{"title": "Only"}]})["listId"]

    assert manager.handle("close", {"listId": list_id})["closed"] is True
    assert "listClosed" in [m["type"] for m in drain(queue)]

    assert manager.handle("close", {"listId": list_id}) == {
        "error": f"List is closed: {list_id}",
        "operation": "close",
    }
    assert manager.close_task_list(list_id) == {"error": f"List is closed: {list_id}"}
    assert drain(queue) == []


def test_unknown_list_and_task_are_reported_not_raised(stores) -> None:
    manager = _manager(stores)
    list_id, _ = _create(manager, "One")

    assert manager.get_next_task("list_missing") == {"error": "List not found: list_missing"}
    assert manager.update_task_status(list_id, "task_missing", "completed") == {
        "error": "Task not found: task_missing",
    }
    assert manager.handle("explode", {}) == {"error": "Unknown operation: explode", "operation": "explode"}
    assert manager.handle("create", {}) == {
        "error": "Title is required for create operation",
        "operation": "create",
    }
    assert manager.handle("add", {"listId": list_id, "task": {"description": "no title"}}) == {
        "error": "Task title is required",
        "operation": "add",
    }


def test_reviewer_comments_are_delivered_once(stores) -> None:
    manager = _manager(stores)
    list_id, (task_id, _) = _create(manager, "Write docs", "Ship")

    comment = manager.add_comment(list_id, task_id, "Mention the config file")
    assert comment.revised_part == "Write docs"

    delivered = manager.get_next_task(list_id)["comments"]
    assert [c["revisorInstructions"] for c in delivered] == ["Mention the config file"]
    assert "status" not in delivered[0]
    assert manager.get_next_task(list_id)["comments"] == []

    # A delivered comment can no longer be withdrawn.
    assert manager.remove_comment(list_id, task_id, comment.id) is False


def test_pending_comment_can_be_removed(stores) -> None:
    manager = _manager(stores)
    list_id, (task_id,) = _create(manager, "Draft")

    comment = manager.add_comment(list_id, task_id, "Never mind")
    assert manager.remove_comment(list_id, task_id, comment.id) is True
    assert manager.get_next_task(list_id)["comments"] == []


def test_reopening_comment_sends_a_completed_task_back(stores) -> None:
    manager = _manager(stores)
    list_id, (done_id, open_id) = _create(manager, "Implement", "Review")
    manager.update_task_status(list_id, done_id, "completed")

    manager.add_comment(list_id, done_id, "Handle the empty case", reopened=True)

    session = manager.get(list_id)
    assert session.find_task(done_id).status is TaskStatus.PENDING
    assert session.find_task(open_id).status is TaskStatus.PENDING
    assert manager.get_next_task(list_id)["task"]["id"] == done_id


def test_comments_on_closed_lists_are_refused(stores) -> None:
    manager = _manager(stores)
    list_id, (task_id,) = _create(manager, "Only")
    manager.close_task_list(list_id)

    assert manager.add_comment(list_id, task_id, "too late") is None


def test_close_drains_comments_and_summarises(stores) -> None:
    manager = _manager(stores)
    list_id, (a, b, c) = _create(manager, "A", "B", "C")
    manager.update_task_status(list_id, a, "completed")
    manager.update_task_status(list_id, b, "blocked")
    manager.add_comment(list_id, c, "Skip this one")

    result = manager.close_task_list(list_id)

    assert result["closed"] is True
    assert result["summary"] == {"total": 3, "completed": 1, "blocked": 1, "inProgress": 0, "pending": 1}
    assert [x["revisorInstructions"] for x in result["remainingPendingComments"]] == ["Skip this one"]


def test_operation_interface_round_trip(stores) -> None:
    manager = _manager(stores)
    created = manager.handle("create", {"title": "Ops", "tasks": [{"title": "First"}]})
    list_id = created["listId"]

    added = manager.handle("add", {"listId": list_id, "task": {"title": "Second", "status": "in-progress"}})
    assert added["operation"] == "add"

    updated = manager.handle("update", {"listId": list_id, "taskId": added["taskId"], "title": "Second!"})
    assert updated["updated"] is True
    assert updated["autoCompleted"] is False

    read = manager.handle("read", {"listId": list_id})
    assert [t["title"] for t in read["tasks"]] == ["First", "Second!"]
    assert read["tasks"][1]["status"] == "in-progress"

    closed = manager.handle("close", {"listId": list_id})
    assert closed["summary"]["total"] == 2
    assert manager.handle("read", {"listId": list_id})["closed"] is True


def test_sessions_persist_to_disk(stores) -> None:
    manager = _manager(stores)
    list_id, (task_id,) = _create(manager, "Persist me")
    manager.add_comment(list_id, task_id, "note")
    stores.task_lists.flush()

    reloaded = TaskListStore.open(stores.storage_dir)
    session = reloaded.get(list_id)
    assert session.tasks[0].title == "Persist me"
    assert session.comments[0].revisor_instructions == "note"
    reloaded.close()


def test_console_panel_follows_the_list(stores) -> None:
    channel = ConsoleChannel()
    queue = channel.subscribe()
    manager = _manager(stores, channel)

    list_id, (task_id,) = _create(manager, "Watch")
    assert [m["type"] for m in drain(queue)] == ["showTaskList"]

    assert manager.handle_message(dict_to_message({
        "type": "addTaskComment",
        "listId": list_id,
        "taskId": task_id,
        "revisorInstructions": "Look here",
    }))
    update = drain(queue)[-1]
    assert update["type"] == "updateTasks"
    assert update["tasks"][0]["comments"][0]["revisorInstructions"] == "Look here"

    manager.update_task_status(list_id, task_id, "completed")
    assert [m["type"] for m in drain(queue)] == ["listClosed"]

    assert manager.handle_message(dict_to_message({"type": "openTaskList", "listId": list_id}))
    assert drain(queue)[0]["closed"] is True
