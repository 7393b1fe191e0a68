import io
import os
import tempfile
from collections import deque
from typing import Optional

# Keep test runs away from ./data and emit readable logs
os.environ.setdefault("LOCAL_STORAGE_PATH", tempfile.mkdtemp(prefix="imagery-storage-"))
os.environ.setdefault("LOG_FORMAT_JSON", "false")

import pytest
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from src.core.messaging import ChannelMessage
from src.core.retry import RetryPolicy
from src.core.storage import LocalStorage
from src.modules.imagery.repository import TaskRepository
from src.modules.imagery.service import ImageService
from src.pipeline.transforms import Transformer


class InMemoryChannel:
    """Message channel double: FIFO queue with publish/commit bookkeeping."""

    consumer_name = "test-consumer"

    def __init__(self):
        self.entries = deque()
        self.published = []
        self.committed = []
        self._seq = 0

    async def setup(self):
        pass

    async def publish(self, key: str, payload: bytes) -> str:
        self._seq += 1
        entry_id = f"{self._seq}-0"
        self.published.append((key, payload))
        self.entries.append(ChannelMessage(entry_id=entry_id, key=key, value=payload))
        return entry_id

    async def fetch(self) -> Optional[ChannelMessage]:
        return self.entries.popleft() if self.entries else None

    async def commit(self, message: ChannelMessage) -> None:
        self.committed.append(message.entry_id)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(attempts=5, delay=0, backoff=1)


@pytest.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tasks.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def repository(session_maker, fast_retry) -> TaskRepository:
    return TaskRepository(session_maker, fast_retry)


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(base_path=str(tmp_path / "blobs"))


@pytest.fixture
def channel() -> InMemoryChannel:
    return InMemoryChannel()


@pytest.fixture
def image_service(storage, repository, channel) -> ImageService:
    return ImageService(storage, repository, channel)


@pytest.fixture
def watermark_image() -> Image.Image:
    return Image.new("RGBA", (20, 10), (255, 255, 255, 255))


@pytest.fixture
def transformer(watermark_image) -> Transformer:
    return Transformer(watermark_image, resize_to=(64, 48), thumbnail_to=(32, 32))


@pytest.fixture
def image_bytes():
    def _make(fmt: str = "JPEG", size=(300, 200), color=(200, 30, 30)) -> bytes:
        buffer = io.BytesIO()
        Image.new("RGB", size, color).save(buffer, format=fmt)
        return buffer.getvalue()
    return _make
