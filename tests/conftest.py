"""Shared fixtures: throwaway SQLite store, switchable outage, services under test."""
import asyncio
from datetime import datetime, timedelta
from typing import List

import pytest
from sqlalchemy.exc import OperationalError

from app.core.auth import AuthSession
from app.core.retry import RetryConfig
from app.database import create_engine, create_session_factory, init_db
from app.models.message import ChatMessageCreate, ChatMessageRead, MessageRole
from app.services.chat_persistence import ConversationPersistenceEngine
from app.services.message_gateway import MessageGateway
from app.services.retry_queue import OfflineRetryQueue

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


class SwitchableSessionFactory:
    """Session factory that can pretend the store is unreachable."""

    def __init__(self, factory):
        self._factory = factory
        self.offline = False
        self.fail_next = 0
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.fail_next > 0:
            self.fail_next -= 1
            raise self._outage()
        if self.offline:
            raise self._outage()
        return self._factory()

    @staticmethod
    def _outage() -> OperationalError:
        return OperationalError(
            "INSERT INTO chat_messages",
            {},
            ConnectionRefusedError("could not connect to server: Connection refused"),
        )


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(db_engine):
    return SwitchableSessionFactory(create_session_factory(db_engine))


@pytest.fixture
def retry_config():
    return RetryConfig(max_attempts=3, base_delay=0, max_delay=0)


@pytest.fixture
def gateway(store, retry_config):
    return MessageGateway(store, retry_config)


@pytest.fixture
async def queue(gateway):
    retry_queue = OfflineRetryQueue(gateway, max_retries=3, retry_delay=60)
    yield retry_queue
    await retry_queue.close()


@pytest.fixture
def auth():
    return AuthSession(USER_ID)


@pytest.fixture
async def chat_engine(auth, gateway, queue):
    engine = ConversationPersistenceEngine(auth, gateway, queue, page_size=50)
    yield engine
    await engine.close()


async def seed_messages(
    gateway: MessageGateway,
    user_id: str,
    count: int,
    start: datetime = datetime(2024, 1, 1, 12, 0, 0),
    step: timedelta = timedelta(seconds=1),
) -> List[ChatMessageRead]:
    """Insert ``count`` alternating user/ai messages ``step`` apart."""
    payloads = [
        ChatMessageCreate(
            user_id=user_id,
            role=MessageRole.USER if index % 2 == 0 else MessageRole.AI,
            content=f"message {index}",
            created_at=start + step * index,
        )
        for index in range(count)
    ]
    result = await gateway.insert_many(payloads)
    assert result.success, result.error
    return result.data


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` while background tasks make progress."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.01)
