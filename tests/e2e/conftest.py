import shutil

import pytest
from httpx import AsyncClient, ASGITransport
from typing import AsyncGenerator

from src.core.config import settings
from src.core.storage import LocalStorage
from src.main import app


@pytest.fixture
def storage() -> LocalStorage:
    # Blobs live where /static/storage serves them from
    shutil.rmtree(settings.LOCAL_STORAGE_PATH, ignore_errors=True)
    return LocalStorage(base_path=settings.LOCAL_STORAGE_PATH)


@pytest.fixture
async def client(image_service) -> AsyncGenerator[AsyncClient, None]:
    # The lifespan would connect to Redis; hand the app an in-memory wired service instead
    app.state.image_service = image_service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    del app.state.image_service
