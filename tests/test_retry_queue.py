"""Tests for OfflineRetryQueue."""
import asyncio

from app.models.message import ChatMessageCreate, MessageRole
from app.schemas.results import DatabaseResult, QueueEventKind, QueuedWrite
from app.services.retry_queue import OfflineRetryQueue

from conftest import USER_ID, wait_until


def queued(item_id: str, content: str = "Hi") -> QueuedWrite:
    return QueuedWrite(
        id=item_id,
        message=ChatMessageCreate(user_id=USER_ID, role=MessageRole.USER, content=content),
    )


class BlockingGateway:
    """Gateway stand-in whose inserts wait until released."""

    def __init__(self):
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.inserted = []

    async def insert_one(self, message):
        self.inserted.append(message.content)
        self.started.set()
        await self.release.wait()
        return DatabaseResult(data=None, success=True)


async def test_enqueue_delivers_when_store_is_up(queue, gateway):
    events = []
    queue.add_listener(events.append)

    queue.enqueue(queued("temp_1"))
    await queue.join()

    assert queue.status().queue_length == 0
    assert [e.kind for e in events] == [QueueEventKind.DELIVERED]
    assert events[0].message.content == "Hi"
    assert (await gateway.count(USER_ID)).data == 1


async def test_item_dropped_after_max_replays(queue, store):
    store.offline = True
    events = []
    queue.add_listener(events.append)

    queue.enqueue(queued("temp_1"))
    await queue.join()
    assert queue.status().queue_length == 1
    assert queue.items()[0].retry_count == 1

    await queue.drain()
    await queue.drain()

    assert queue.status().queue_length == 0
    assert [e.kind for e in events] == [
        QueueEventKind.RETRYING,
        QueueEventKind.RETRYING,
        QueueEventKind.DROPPED,
    ]
    # three replays, each one a full gateway call with three attempts
    assert store.calls == 9

    await queue.drain()
    assert store.calls == 9


async def test_drain_while_processing_is_noop():
    gateway = BlockingGateway()
    retry_queue = OfflineRetryQueue(gateway, retry_delay=60)
    retry_queue._items["temp_1"] = queued("temp_1")

    first = asyncio.create_task(retry_queue.drain())
    await gateway.started.wait()
    assert retry_queue.status().is_processing is True

    await retry_queue.drain()
    assert gateway.inserted == ["Hi"]

    gateway.release.set()
    await first
    assert retry_queue.status().queue_length == 0
    assert retry_queue.status().is_processing is False
    await retry_queue.close()


async def test_items_enqueued_mid_drain_wait_for_next_pass():
    gateway = BlockingGateway()
    retry_queue = OfflineRetryQueue(gateway, retry_delay=60)
    retry_queue._items["temp_1"] = queued("temp_1", "first")

    first = asyncio.create_task(retry_queue.drain())
    await gateway.started.wait()
    retry_queue.enqueue(queued("temp_2", "second"))

    gateway.release.set()
    await first
    await retry_queue.join()

    assert gateway.inserted == ["first"]
    assert [item.id for item in retry_queue.items()] == ["temp_2"]

    await retry_queue.drain()
    assert gateway.inserted == ["first", "second"]
    assert retry_queue.status().queue_length == 0
    await retry_queue.close()


async def test_disabled_queue_discards(gateway):
    retry_queue = OfflineRetryQueue(gateway, enabled=False)

    retry_queue.enqueue(queued("temp_1"))

    assert retry_queue.status().queue_length == 0
    await retry_queue.close()


async def test_clear_empties_queue(queue, store):
    store.offline = True
    queue.enqueue(queued("temp_1"))
    queue.enqueue(queued("temp_2"))
    await queue.join()

    queue.clear()

    assert queue.status().queue_length == 0


async def test_scheduled_pass_delivers_after_recovery(gateway, store):
    retry_queue = OfflineRetryQueue(gateway, max_retries=5, retry_delay=0.05)
    events = []
    retry_queue.add_listener(events.append)
    store.offline = True

    retry_queue.enqueue(queued("temp_1"))
    await retry_queue.join()
    assert retry_queue.status().queue_length == 1

    store.offline = False
    await wait_until(lambda: retry_queue.status().queue_length == 0)

    kinds = [e.kind for e in events]
    assert kinds[-1] == QueueEventKind.DELIVERED
    assert set(kinds[:-1]) == {QueueEventKind.RETRYING}
    assert (await gateway.count(USER_ID)).data == 1
    await retry_queue.close()


async def test_close_cancels_scheduled_pass(gateway, store):
    retry_queue = OfflineRetryQueue(gateway, retry_delay=0.05)
    store.offline = True
    retry_queue.enqueue(queued("temp_1"))
    await retry_queue.join()
    calls = store.calls

    await retry_queue.close()
    store.offline = False
    await asyncio.sleep(0.15)

    assert store.calls == calls
    assert retry_queue.status().queue_length == 1


async def test_update_config_at_runtime(queue, store):
    store.offline = True
    events = []
    queue.add_listener(events.append)

    queue.update_config(max_retries=1)
    queue.enqueue(queued("temp_1"))
    await queue.join()

    assert [e.kind for e in events] == [QueueEventKind.DROPPED]

    queue.update_config(enabled=False)
    queue.enqueue(queued("temp_2"))

    assert queue.status().queue_length == 0
    assert queue.max_retries == 1
