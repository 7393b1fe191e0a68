import io

import pytest
from PIL import Image

from src.modules.imagery.models import TaskStatusPolicy
from src.pipeline.worker import ProcessingWorker


@pytest.fixture
def worker(channel, storage, repository, transformer):
    return ProcessingWorker(
        channel,
        storage,
        repository,
        transformer,
        status_policy=TaskStatusPolicy.WORST_STATUS_WINS,
        error_backoff=0
    )


@pytest.mark.asyncio
async def test_upload_process_and_delete(client, worker, storage, image_bytes, monkeypatch):
    monkeypatch.setattr("src.modules.imagery.service.new_task_id", lambda: "T1")

    upload = await client.post(
        "/api/v1/images",
        files={"image": ("cat.jpg", image_bytes(size=(640, 480)), "image/jpeg")}
    )
    assert upload.status_code == 202
    assert upload.json()["task_id"] == "T1"
    assert await storage.exists("original/T1.jpg")

    assert await worker.run_once() is True

    for operation in ("resize", "thumbnail", "watermark"):
        data = await storage.load(f"processed/{operation}/T1.jpg")
        assert Image.open(io.BytesIO(data)).format == "JPEG"

    status = await client.get("/api/v1/images/T1")
    assert status.json()["status"] == "COMPLETE"

    download = await client.get("/static/storage/processed/resize/T1.jpg")
    assert download.status_code == 200
    assert download.headers["content-type"] == "image/jpeg"
    assert download.content == await storage.load("processed/resize/T1.jpg")
    assert Image.open(io.BytesIO(download.content)).size == (64, 48)

    assert (await client.delete("/api/v1/images/T1")).status_code == 204
    assert not any(p.is_file() for p in storage.base_path.rglob("*"))
    assert (await client.get("/api/v1/images/T1")).status_code == 404


@pytest.mark.asyncio
async def test_undecodable_upload_ends_failed(client, worker, image_bytes):
    upload = await client.post(
        "/api/v1/images",
        files={"image": ("broken.png", b"not really a png", "image/png")}
    )
    task_id = upload.json()["task_id"]

    await worker.run_once()

    status = await client.get(f"/api/v1/images/{task_id}")
    assert status.json()["status"] == "FAILED"
