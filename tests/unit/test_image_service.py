import json

import pytest
from unittest.mock import AsyncMock
from sqlmodel import select

from src.core.exceptions import (
    NotFoundError,
    PersistenceError,
    StorageError,
    TransportError,
    ValidationError,
)
from src.modules.imagery.models import Task, TaskStatus
from src.modules.imagery.service import ImageService


async def count_tasks(repository) -> int:
    async with repository._session_maker() as session:
        result = await session.execute(select(Task))
        return len(result.scalars().all())


def stored_files(storage):
    return sorted(p.relative_to(storage.base_path).as_posix() for p in storage.base_path.rglob("*") if p.is_file())


@pytest.mark.asyncio
async def test_submit_stores_records_and_publishes(image_service, storage, repository, channel, image_bytes):
    raw = image_bytes()

    task_id = await image_service.submit(raw, ".JPG")

    assert await storage.load(f"original/{task_id}.jpg") == raw
    task = await repository.get(task_id)
    assert task.status == TaskStatus.PROCESSING.value
    assert task.original_path == f"original/{task_id}.jpg"

    assert len(channel.published) == 1
    key, payload = channel.published[0]
    assert key == task_id
    body = json.loads(payload)
    assert body["id"] == task_id
    assert body["original_path"] == f"original/{task_id}.jpg"
    assert body["requested_operations"] == ["resize", "thumbnail", "watermark"]


@pytest.mark.asyncio
async def test_submit_assigns_unique_ids(image_service, image_bytes):
    first = await image_service.submit(image_bytes(), ".jpg")
    second = await image_service.submit(image_bytes(), ".jpg")

    assert first != second


@pytest.mark.parametrize("extension", ["", ".bmp", ".exe", "jpeg"])
@pytest.mark.asyncio
async def test_disallowed_extension_is_rejected_without_side_effects(
    image_service, storage, repository, channel, image_bytes, extension
):
    with pytest.raises(ValidationError):
        await image_service.submit(image_bytes(), extension)

    assert stored_files(storage) == []
    assert await count_tasks(repository) == 0
    assert channel.published == []


@pytest.mark.asyncio
async def test_extension_without_dot_is_accepted(image_service, storage):
    task_id = await image_service.submit(b"png-bytes", "png")

    assert await storage.exists(f"original/{task_id}.png")


@pytest.mark.asyncio
async def test_empty_upload_is_rejected(image_service, channel):
    with pytest.raises(ValidationError):
        await image_service.submit(b"", ".jpg")

    assert channel.published == []


@pytest.mark.asyncio
async def test_oversized_upload_is_rejected(storage, repository, channel):
    service = ImageService(storage, repository, channel, max_size_bytes=10)

    with pytest.raises(ValidationError) as exc_info:
        await service.submit(b"x" * 11, ".jpg")

    assert exc_info.value.details["max_size_bytes"] == 10
    assert stored_files(storage) == []


@pytest.mark.asyncio
async def test_storage_failure_leaves_nothing_behind(image_service, storage, repository, channel):
    storage.save = AsyncMock(side_effect=OSError("disk full"))

    with pytest.raises(StorageError):
        await image_service.submit(b"data", ".jpg")

    assert await count_tasks(repository) == 0
    assert channel.published == []


@pytest.mark.asyncio
async def test_persistence_failure_deletes_original(image_service, storage, repository, channel):
    repository.create = AsyncMock(side_effect=PersistenceError("database is down"))

    with pytest.raises(PersistenceError) as exc_info:
        await image_service.submit(b"data", ".jpg")

    assert exc_info.value.task_id is not None
    assert stored_files(storage) == []
    assert channel.published == []


@pytest.mark.asyncio
async def test_publish_failure_unwinds_record_and_blob(image_service, storage, repository, channel):
    channel.publish = AsyncMock(side_effect=TransportError("broker unreachable"))

    with pytest.raises(TransportError) as exc_info:
        await image_service.submit(b"data", ".jpg")

    assert stored_files(storage) == []
    assert await count_tasks(repository) == 0
    with pytest.raises(NotFoundError):
        await repository.get(exc_info.value.task_id)


@pytest.mark.asyncio
async def test_untyped_publish_failure_surfaces_as_transport_error(image_service, storage, channel):
    channel.publish = AsyncMock(side_effect=RuntimeError("socket closed"))

    with pytest.raises(TransportError) as exc_info:
        await image_service.submit(b"data", ".jpg")

    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert stored_files(storage) == []


@pytest.mark.asyncio
async def test_failed_compensation_keeps_root_cause(image_service, storage, repository, channel):
    channel.publish = AsyncMock(side_effect=TransportError("broker unreachable"))
    repository.delete = AsyncMock(side_effect=PersistenceError("database is down"))

    with pytest.raises(TransportError):
        await image_service.submit(b"data", ".jpg")

    repository.delete.assert_awaited_once()
    # The blob compensation still runs after the record compensation failed
    assert stored_files(storage) == []


@pytest.mark.asyncio
async def test_get_task(image_service, image_bytes):
    task_id = await image_service.submit(image_bytes(), ".jpg")

    task = await image_service.get_task(task_id)

    assert task.id == task_id


@pytest.mark.asyncio
async def test_get_unknown_task(image_service):
    with pytest.raises(NotFoundError):
        await image_service.get_task("nope")


@pytest.mark.asyncio
async def test_delete_removes_record_original_and_derived_blobs(image_service, storage, repository, image_bytes):
    task_id = await image_service.submit(image_bytes(), ".jpg")
    await storage.save(f"processed/resize/{task_id}.jpg", b"r")
    await storage.save(f"processed/thumbnail/{task_id}.jpg", b"t")

    await image_service.delete_task(task_id)

    assert stored_files(storage) == []
    with pytest.raises(NotFoundError):
        await repository.get(task_id)


@pytest.mark.asyncio
async def test_delete_unknown_task_succeeds(image_service):
    await image_service.delete_task("nope")


@pytest.mark.asyncio
async def test_delete_continues_when_a_blob_cannot_be_removed(image_service, storage, repository, image_bytes):
    task_id = await image_service.submit(image_bytes(), ".jpg")
    storage.delete = AsyncMock(side_effect=StorageError("permission denied"))

    await image_service.delete_task(task_id)

    assert storage.delete.await_count == 4
    with pytest.raises(NotFoundError):
        await repository.get(task_id)


@pytest.mark.asyncio
async def test_published_timestamp_carries_utc_offset(image_service, channel, image_bytes):
    await image_service.submit(image_bytes(), ".jpg")

    created_at = json.loads(channel.published[0][1])["created_at"]

    assert created_at.endswith(("Z", "+00:00"))
