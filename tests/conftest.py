from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from seamless_agent.storage import open_stores


@pytest.fixture
def stores(tmp_path):
    """Fresh history and task list stores under a temporary storage dir."""
    handle = open_stores(tmp_path / "storage")
    try:
        yield handle
    finally:
        handle.close()


async def wait_until(predicate: Callable[[], object], timeout: float = 2.0) -> None:
    """Poll *predicate* on the running loop until it is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


def drain(queue: asyncio.Queue) -> list[dict]:
    """Pop every queued console message and return the payloads."""
    items = []
    while not queue.empty():
        items.append(queue.get_nowait()["data"])
    return items
