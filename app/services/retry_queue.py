"""Offline retry queue for writes the gateway could not confirm.

Memory only: queued writes live as long as the process does. Each item is
replayed through ``MessageGateway.insert_one`` until it succeeds or has
failed ``max_retries`` replays, after which it is dropped and logged.
"""
import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set

from app.config import Settings
from app.schemas.results import QueueEvent, QueueEventKind, QueuedWrite, QueueStatus
from app.services.message_gateway import MessageGateway

logger = logging.getLogger(__name__)

QueueListener = Callable[[QueueEvent], None]


class OfflineRetryQueue:
    """
    Process-wide queue of pending inserts.

    State per item:
        Pending -> Removed   (replay succeeded)
        Pending -> Pending   (replay failed, retry_count + 1)
        Pending -> Dropped   (retry_count reached max_retries)

    Only one drain runs at a time; the ``is_processing`` flag is the guard,
    which is enough on a single event loop.
    """

    def __init__(
        self,
        gateway: MessageGateway,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        enabled: bool = True,
    ):
        """
        Initialize queue.

        Args:
            gateway: Gateway used to replay inserts
            max_retries: Failed replays before an item is dropped
            retry_delay: Seconds between drain passes while items remain
            enabled: When False, enqueue() discards items
        """
        self.gateway = gateway
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.enabled = enabled

        self._items: Dict[str, QueuedWrite] = {}
        self._is_processing = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[QueueListener] = []

    @classmethod
    def from_settings(cls, gateway: MessageGateway, settings: Settings) -> "OfflineRetryQueue":
        return cls(
            gateway,
            max_retries=settings.QUEUE_MAX_RETRIES,
            retry_delay=settings.QUEUE_RETRY_DELAY,
            enabled=settings.QUEUE_ENABLED,
        )

    def update_config(
        self,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        enabled: Optional[bool] = None,
    ) -> None:
        """
        Change queue settings at runtime; arguments left as None keep their value.

        Pending items stay queued when the queue is disabled; only new
        writes are discarded. A new delay applies from the next scheduled pass.
        """
        if max_retries is not None:
            self.max_retries = max_retries
        if retry_delay is not None:
            self.retry_delay = retry_delay
        if enabled is not None:
            self.enabled = enabled
        logger.info(
            f"Offline queue config: enabled={self.enabled}, "
            f"max_retries={self.max_retries}, retry_delay={self.retry_delay}s"
        )

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    def status(self) -> QueueStatus:
        return QueueStatus(queue_length=len(self._items), is_processing=self._is_processing)

    def items(self) -> List[QueuedWrite]:
        """Copies of the pending items, oldest first."""
        return [item.model_copy() for item in self._items.values()]

    def add_listener(self, listener: QueueListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: QueueListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: QueueEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Queue listener failed on {event.kind.value} for {event.item.id}")

    def enqueue(self, item: QueuedWrite) -> None:
        """
        Add a write and start a drain without waiting for it.

        Must be called from a running event loop.
        """
        if not self.enabled:
            logger.warning(f"Offline queue disabled, discarding write {item.id}")
            return
        self._items[item.id] = item
        logger.info(f"Queued write {item.id} for retry (queue length {len(self._items)})")
        self._spawn_drain()

    def _spawn_drain(self) -> None:
        task = asyncio.get_running_loop().create_task(self.drain())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_timer(self) -> None:
        self._timer = None
        self._spawn_drain()

    def _schedule_next(self) -> None:
        if self._timer is not None or not self._items:
            return
        self._timer = asyncio.get_running_loop().call_later(self.retry_delay, self._on_timer)

    async def drain(self) -> None:
        """
        Replay every item present when the pass starts.

        A call made while another drain is running returns immediately.
        Items enqueued during the pass wait for the next one. If anything is
        left afterwards, another pass is scheduled after ``retry_delay``.
        """
        if self._is_processing or not self._items:
            return

        self._is_processing = True
        try:
            for item in list(self._items.values()):
                if item.id not in self._items:
                    continue
                result = await self.gateway.insert_one(item.message)

                if result.success:
                    self._items.pop(item.id, None)
                    logger.info(f"Delivered queued write {item.id} after {item.retry_count} failed replays")
                    self._emit(QueueEvent(kind=QueueEventKind.DELIVERED, item=item, message=result.data))
                    continue

                item.retry_count += 1
                if item.retry_count >= self.max_retries:
                    self._items.pop(item.id, None)
                    logger.warning(
                        f"Message {item.id} removed from queue after {self.max_retries} failed attempts: {result.error}"
                    )
                    self._emit(QueueEvent(kind=QueueEventKind.DROPPED, item=item))
                else:
                    logger.warning(
                        f"Replay of {item.id} failed ({item.retry_count}/{self.max_retries}): {result.error}"
                    )
                    self._emit(QueueEvent(kind=QueueEventKind.RETRYING, item=item))
        finally:
            self._is_processing = False

        self._schedule_next()

    async def join(self) -> None:
        """Wait for drain passes already started (not for scheduled ones)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def clear(self) -> None:
        """Drop every pending item without replaying it."""
        self._items.clear()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def close(self) -> None:
        """Cancel the pending re-drain timer and any running drain task."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
