from __future__ import annotations

import asyncio
import base64

import pytest

from conftest import drain, wait_until
from seamless_agent import strings
from seamless_agent.attachments import AttachmentStore, uri_to_path
from seamless_agent.broker import PendingRequestBroker
from seamless_agent.console import ConsoleChannel
from seamless_agent.messages import dict_to_message
from seamless_agent.models import AskUserInteraction, AskUserStatus, AttachmentInfo, DisplayMode

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def _make_broker(stores, *, view_init_timeout: float = 0.5, cleanup_delay: float = 60.0):
    channel = ConsoleChannel()
    attachments = AttachmentStore(stores.storage_dir / "temp-images", cleanup_delay)
    broker = PendingRequestBroker(
        channel,
        stores.history,
        attachments,
        view_init_timeout=view_init_timeout,
        task_lists=stores.task_lists,
    )
    return broker, channel, attachments


@pytest.mark.asyncio
async def test_resolve_settles_the_waiting_agent_and_records_history(stores) -> None:
    broker, channel, _ = _make_broker(stores)
    channel.subscribe()

    task = asyncio.create_task(broker.create_request("Deploy?", "Agent: Deploy"))
    await wait_until(lambda: broker.pending_count == 1)
    assert broker.display_mode is DisplayMode.QUESTION

    request = broker.list()[0]
    broker.resolve(request.id, "yes")
    result = await task

    assert result.responded is True
    assert result.response == "yes"
    assert broker.pending_count == 0
    assert broker.display_mode is DisplayMode.HOME
    records = stores.history.all()
    assert len(records) == 1
    assert isinstance(records[0], AskUserInteraction)
    assert records[0].status is AskUserStatus.COMPLETED
    assert records[0].response == "yes"


@pytest.mark.asyncio
async def test_second_settlement_of_the_same_request_is_ignored(stores) -> None:
    broker, channel, _ = _make_broker(stores)
    channel.subscribe()

    task = asyncio.create_task(broker.create_request("Continue?"))
    await wait_until(lambda: broker.pending_count == 1)
    request_id = broker.list()[0].id

    broker.resolve(request_id, "first")
    broker.resolve(request_id, "second")
    assert broker.cancel(request_id) is False

    result = await task
    assert result.response == "first"
    assert len(stores.history) == 1


@pytest.mark.asyncio
async def test_display_mode_follows_pending_count(stores) -> None:
    broker, channel, _ = _make_broker(stores)
    channel.subscribe()

    first = asyncio.create_task(broker.create_request("One?"))
    await wait_until(lambda: broker.pending_count == 1)
    assert broker.display_mode is DisplayMode.QUESTION

    second = asyncio.create_task(broker.create_request("Two?"))
    await wait_until(lambda: broker.pending_count == 2)
    assert broker.display_mode is DisplayMode.LIST
    assert broker.selected_request_id is None

    one, two = broker.list()
    broker.resolve(one.id, "a")
    assert broker.display_mode is DisplayMode.LIST

    assert broker.select(two.id) is True
    assert broker.display_mode is DisplayMode.QUESTION
    assert broker.selected_request_id == two.id

    broker.resolve(two.id, "b")
    assert broker.display_mode is DisplayMode.HOME
    assert (await first).response == "a"
    assert (await second).response == "b"


@pytest.mark.asyncio
async def test_concurrent_agents_each_get_their_own_answer(stores) -> None:
    broker, channel, _ = _make_broker(stores)
    channel.subscribe()

    deploy = asyncio.create_task(broker.create_request("Deploy?", "Builder: Deploy"))
    await wait_until(lambda: broker.pending_count == 1)
    delete = asyncio.create_task(broker.create_request("Delete?", "Cleaner: Delete"))
    await wait_until(lambda: broker.pending_count == 2)

    by_question = {r.question: r.id for r in broker.list()}
    broker.cancel(by_question["Delete?"])
    broker.resolve(by_question["Deploy?"], "ship it")

    deploy_result = await deploy
    delete_result = await delete
    assert deploy_result.responded is True
    assert deploy_result.response == "ship it"
    assert delete_result.responded is False
    assert delete_result.response == strings.CANCELLED

    statuses = {r.question: r.status for r in stores.history.all()}
    assert statuses == {"Deploy?": AskUserStatus.COMPLETED, "Delete?": AskUserStatus.CANCELLED}


@pytest.mark.asyncio
async def test_no_console_returns_view_unavailable_without_registering(stores) -> None:
    broker, _, _ = _make_broker(stores, view_init_timeout=0.05)

    result = await broker.create_request("Anyone there?")

    assert result.responded is False
    assert result.response == strings.VIEW_UNAVAILABLE
    assert broker.pending_count == 0
    assert len(stores.history) == 0


@pytest.mark.asyncio
async def test_cancel_event_cancels_with_agent_stopped_reason(stores) -> None:
    broker, channel, _ = _make_broker(stores)
    channel.subscribe()
    stop = asyncio.Event()

    task = asyncio.create_task(broker.create_request("Wait for me?", cancel_event=stop))
    await wait_until(lambda: broker.pending_count == 1)
    stop.set()
    result = await task

    assert result.responded is False
    assert result.response == strings.AGENT_STOPPED
    assert broker.pending_count == 0
    record = stores.history.all()[0]
    assert record.status is AskUserStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancelling_the_awaiting_task_cancels_the_request(stores) -> None:
    broker, channel, _ = _make_broker(stores)
    channel.subscribe()

    task = asyncio.create_task(broker.create_request("Still there?"))
    await wait_until(lambda: broker.pending_count == 1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert broker.pending_count == 0
    record = stores.history.all()[0]
    assert record.status is AskUserStatus.CANCELLED
    assert record.response == strings.AGENT_STOPPED


@pytest.mark.asyncio
async def test_shutdown_cancels_pending_and_refuses_new_requests(stores) -> None:
    broker, channel, _ = _make_broker(stores)
    channel.subscribe()
    broker.start()

    task = asyncio.create_task(broker.create_request("Before shutdown?"))
    await wait_until(lambda: broker.pending_count == 1)
    broker.shutdown()

    result = await task
    assert result.responded is False
    assert result.response == strings.SHUTTING_DOWN

    late = await broker.create_request("After shutdown?")
    assert late.response == strings.SHUTTING_DOWN
    assert broker.pending_count == 0


@pytest.mark.asyncio
async def test_console_receives_full_view_and_badge(stores) -> None:
    broker, channel, _ = _make_broker(stores)
    queue = channel.subscribe()

    task = asyncio.create_task(broker.create_request("Ready?", "Agent: Ready"))
    await wait_until(lambda: broker.pending_count == 1)

    messages = drain(queue)
    assert [m["type"] for m in messages] == ["showQuestion", "badge"]
    assert messages[0]["question"] == "Ready?"
    assert messages[0]["title"] == "Agent: Ready"
    assert messages[1]["count"] == 1

    broker.resolve(broker.list()[0].id, "go")
    await task
    messages = drain(queue)
    assert [m["type"] for m in messages] == ["showHome", "badge"]
    assert messages[0]["historyInteractions"][0]["response"] == "go"
    assert messages[1]["count"] == 0


@pytest.mark.asyncio
async def test_hidden_console_gets_a_notification(stores) -> None:
    broker, channel, _ = _make_broker(stores)
    queue = channel.subscribe()
    broker.handle_message(dict_to_message({"type": "viewVisibility", "visible": False}))

    task = asyncio.create_task(broker.create_request("Psst?", "Agent: Psst"))
    await wait_until(lambda: broker.pending_count == 1)

    types = [m["type"] for m in drain(queue)]
    assert "notify" in types
    broker.cancel_all()
    await task


@pytest.mark.asyncio
async def test_submit_message_resolves_with_attachments(stores) -> None:
    broker, channel, _ = _make_broker(stores)
    channel.subscribe()

    task = asyncio.create_task(broker.create_request("Which file?"))
    await wait_until(lambda: broker.pending_count == 1)
    request_id = broker.list()[0].id

    handled = broker.handle_message(dict_to_message({
        "type": "submit",
        "requestId": request_id,
        "response": "this one",
        "attachments": [{"id": "file_1", "name": "main.py", "uri": "file:///work/main.py"}],
    }))
    result = await task

    assert handled is True
    assert result.response == "this one"
    assert result.attachments == [{"name": "main.py", "uri": "file:///work/main.py"}]
    assert stores.history.all()[0].attachments == ["file:///work/main.py"]


@pytest.mark.asyncio
async def test_pasted_image_is_removed_only_after_the_request_settles(stores) -> None:
    broker, channel, attachments = _make_broker(stores, cleanup_delay=0.05)
    queue = channel.subscribe()

    task = asyncio.create_task(broker.create_request("Screenshot?"))
    await wait_until(lambda: broker.pending_count == 1)
    request_id = broker.list()[0].id

    data_url = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")
    broker.handle_message(dict_to_message({
        "type": "saveImage", "requestId": request_id, "data": data_url, "mimeType": "image/png",
    }))
    pending = broker.get(request_id)
    assert len(pending.attachments) == 1
    image_path = uri_to_path(pending.attachments[0].uri)
    assert image_path.exists()
    assert "imageSaved" in [m["type"] for m in drain(queue)]

    # Nothing is scheduled while the request is still open.
    await asyncio.sleep(0.1)
    assert image_path.exists()
    assert attachments.scheduled == []

    broker.resolve(request_id, "see image")
    result = await task
    assert result.attachments[0]["uri"] == pending.attachments[0].uri
    assert image_path.exists()
    await wait_until(lambda: not image_path.exists())


@pytest.mark.asyncio
async def test_removed_attachment_is_scheduled_for_cleanup(stores) -> None:
    broker, channel, attachments = _make_broker(stores)
    channel.subscribe()

    task = asyncio.create_task(broker.create_request("Attach?"))
    await wait_until(lambda: broker.pending_count == 1)
    request_id = broker.list()[0].id
    temp = AttachmentInfo(
        id="img_1",
        name="image-pasted.png",
        uri=(attachments.temp_dir / "image-pasted.png").as_uri(),
        is_temporary=True,
    )
    assert broker.add_attachment(request_id, temp) is True
    assert broker.remove_attachment(request_id, "img_1") is True
    assert broker.remove_attachment(request_id, "img_1") is False

    assert broker.get(request_id).attachments == []
    assert attachments.scheduled == [attachments.temp_dir / "image-pasted.png"]
    broker.cancel(request_id)
    await task
    attachments.cleanup_all_temp_files()


@pytest.mark.asyncio
async def test_file_reference_message_adds_a_recursive_folder(stores) -> None:
    broker, channel, _ = _make_broker(stores)
    channel.subscribe()

    task = asyncio.create_task(broker.create_request("Where?"))
    await wait_until(lambda: broker.pending_count == 1)
    request_id = broker.list()[0].id
    broker.handle_message(dict_to_message({
        "type": "addFileReference",
        "requestId": request_id,
        "file": {"name": "src", "uri": "file:///work/src", "path": "src", "isFolder": True},
    }))

    attachment = broker.get(request_id).attachments[0]
    assert attachment.is_folder is True
    assert attachment.folder_path == "src"
    assert attachment.depth == -1
    broker.cancel(request_id)
    await task


@pytest.mark.asyncio
async def test_back_to_list_falls_back_to_home_when_nothing_is_pending(stores) -> None:
    broker, _, _ = _make_broker(stores)

    broker.back_to_list()
    assert broker.display_mode is DisplayMode.HOME
    assert broker.select("req_missing") is False


def test_messages_for_other_components_are_not_claimed(stores) -> None:
    broker, _, _ = _make_broker(stores)

    assert broker.handle_message(dict_to_message({"type": "openTaskList", "listId": "x"})) is False


@pytest.mark.asyncio
async def test_submitted_temporary_uri_outside_temp_dir_is_never_deleted(stores, tmp_path) -> None:
    broker, channel, attachments = _make_broker(stores, cleanup_delay=0.05)
    channel.subscribe()
    victim = tmp_path / "important.txt"
    victim.write_text("do not delete", encoding="utf-8")

    task = asyncio.create_task(broker.create_request("Anything to add?"))
    await wait_until(lambda: broker.pending_count == 1)
    request_id = broker.list()[0].id
    data_url = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")
    broker.handle_message(dict_to_message({
        "type": "saveImage", "requestId": request_id, "data": data_url, "mimeType": "image/png",
    }))
    saved_path = uri_to_path(broker.get(request_id).attachments[0].uri)

    # The console drops the saved image and submits a foreign "temporary" file instead.
    broker.handle_message(dict_to_message({
        "type": "submit",
        "requestId": request_id,
        "response": "done",
        "attachments": [{"id": "img_x", "name": "important.txt", "uri": victim.as_uri(), "isTemporary": True}],
    }))
    await task

    await wait_until(lambda: not saved_path.exists())
    await asyncio.sleep(0.1)
    assert victim.exists()
    assert attachments.scheduled == []


@pytest.mark.asyncio
async def test_three_pending_requests_keep_the_list_view_until_all_settle(stores) -> None:
    broker, channel, _ = _make_broker(stores)
    channel.subscribe()

    tasks = []
    for count, question in enumerate(["A?", "B?", "C?"], start=1):
        tasks.append(asyncio.create_task(broker.create_request(question)))
        await wait_until(lambda: broker.pending_count == count)
        assert broker.display_mode is (DisplayMode.QUESTION if count == 1 else DisplayMode.LIST)

    first, second, third = broker.list()
    broker.resolve(second.id, "b")
    assert broker.display_mode is DisplayMode.LIST
    broker.cancel(first.id)
    assert broker.display_mode is DisplayMode.LIST
    assert [r.question for r in broker.list()] == ["C?"]
    broker.resolve(third.id, "c")
    assert broker.display_mode is DisplayMode.HOME

    results = [await t for t in tasks]
    assert [r.responded for r in results] == [False, True, True]


@pytest.mark.asyncio
async def test_deploy_and_delete_settled_out_of_order(stores) -> None:
    broker, channel, _ = _make_broker(stores)
    channel.subscribe()

    deploy = asyncio.create_task(broker.create_request("Deploy to prod?"))
    await wait_until(lambda: broker.pending_count == 1)
    delete = asyncio.create_task(broker.create_request("Delete cache?"))
    await wait_until(lambda: broker.pending_count == 2)
    by_question = {r.question: r.id for r in broker.list()}

    broker.resolve(by_question["Delete cache?"], "yes")
    assert broker.display_mode is DisplayMode.LIST
    assert [r.question for r in broker.list()] == ["Deploy to prod?"]

    assert broker.cancel(by_question["Deploy to prod?"], "Agent stopped") is True
    assert broker.display_mode is DisplayMode.HOME
    assert broker.pending_count == 0

    delete_result = await delete
    deploy_result = await deploy
    assert (delete_result.responded, delete_result.response) == (True, "yes")
    assert (deploy_result.responded, deploy_result.response) == (False, "Agent stopped")
    statuses = {r.question: r.status for r in stores.history.all()}
    assert statuses == {
        "Delete cache?": AskUserStatus.COMPLETED,
        "Deploy to prod?": AskUserStatus.CANCELLED,
    }
