import json

import pytest
from unittest.mock import AsyncMock

from src.core.exceptions import TransportError


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_upload_returns_task_id(client, channel, image_bytes):
    response = await client.post(
        "/api/v1/images",
        files={"image": ("cat.jpg", image_bytes(), "image/jpeg")}
    )

    assert response.status_code == 202
    data = response.json()
    assert data["status"] == "PROCESSING"
    assert json.loads(channel.published[0][1])["id"] == data["task_id"]


@pytest.mark.asyncio
async def test_upload_rejects_disallowed_extension(client, channel):
    response = await client.post(
        "/api/v1/images",
        files={"image": ("notes.txt", b"hello", "text/plain")}
    )

    assert response.status_code == 400
    assert "not allowed" in response.json()["error"]
    assert channel.published == []


@pytest.mark.asyncio
async def test_upload_rejects_missing_extension(client):
    response = await client.post(
        "/api/v1/images",
        files={"image": ("cat", b"hello", "image/jpeg")}
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_upload_requires_image_field(client):
    response = await client.post("/api/v1/images", files={"file": ("cat.jpg", b"x", "image/jpeg")})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_upload_reports_unavailable_channel(client, channel, storage, image_bytes):
    channel.publish = AsyncMock(side_effect=TransportError("broker unreachable"))

    response = await client.post(
        "/api/v1/images",
        files={"image": ("cat.jpg", image_bytes(), "image/jpeg")}
    )

    assert response.status_code == 503
    assert response.json()["task_id"]
    assert not any(p.is_file() for p in storage.base_path.rglob("*"))


@pytest.mark.asyncio
async def test_get_task(client, image_bytes):
    upload = await client.post(
        "/api/v1/images",
        files={"image": ("cat.png", image_bytes("PNG"), "image/png")}
    )
    task_id = upload.json()["task_id"]

    response = await client.get(f"/api/v1/images/{task_id}")

    assert response.status_code == 200
    data = response.json()
    assert data["id"] == task_id
    assert data["status"] == "PROCESSING"
    assert data["original_path"] == f"original/{task_id}.png"
    assert data["processed_paths"]["thumbnail"] == f"processed/thumbnail/{task_id}.png"


@pytest.mark.asyncio
async def test_get_unknown_task(client):
    response = await client.get("/api/v1/images/does-not-exist")

    assert response.status_code == 404
    assert response.json()["code"] == 404


@pytest.mark.asyncio
async def test_delete_task(client, image_bytes):
    upload = await client.post(
        "/api/v1/images",
        files={"image": ("cat.gif", image_bytes("GIF"), "image/gif")}
    )
    task_id = upload.json()["task_id"]

    response = await client.delete(f"/api/v1/images/{task_id}")
    assert response.status_code == 204

    response = await client.get(f"/api/v1/images/{task_id}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_delete_unknown_task(client):
    response = await client.delete("/api/v1/images/does-not-exist")

    assert response.status_code == 204


@pytest.mark.asyncio
async def test_metrics_endpoint(client, image_bytes):
    await client.post(
        "/api/v1/images",
        files={"image": ("cat.jpg", image_bytes(), "image/jpeg")}
    )

    response = await client.get("/api/v1/metrics")

    assert response.status_code == 200
    assert "imagery_tasks_submitted_total" in response.text


@pytest.mark.asyncio
async def test_original_is_served_from_storage(client, image_bytes):
    raw = image_bytes("PNG")
    upload = await client.post(
        "/api/v1/images",
        files={"image": ("cat.png", raw, "image/png")}
    )
    original_path = (await client.get(f"/api/v1/images/{upload.json()['task_id']}")).json()["original_path"]

    response = await client.get(f"/static/storage/{original_path}")

    assert response.status_code == 200
    assert response.content == raw


@pytest.mark.asyncio
async def test_missing_blob_is_not_found(client):
    response = await client.get("/static/storage/processed/resize/unknown.jpg")

    assert response.status_code == 404
