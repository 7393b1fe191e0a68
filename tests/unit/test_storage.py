import io
from pathlib import Path

import pytest
from PIL import Image

from src.core.config import settings
from src.core.exceptions import DecodeError, StorageError
from src.core.storage import LocalStorage, get_storage


@pytest.mark.asyncio
async def test_save_and_load_roundtrip(storage):
    await storage.save("original/T1.jpg", b"raw-bytes")

    assert await storage.exists("original/T1.jpg")
    assert await storage.load("original/T1.jpg") == b"raw-bytes"


@pytest.mark.asyncio
async def test_save_overwrites(storage):
    await storage.save("processed/resize/T1.jpg", b"first")
    await storage.save("processed/resize/T1.jpg", b"second")

    assert await storage.load("processed/resize/T1.jpg") == b"second"


@pytest.mark.asyncio
async def test_delete_missing_blob_is_not_an_error(storage):
    await storage.delete("original/missing.jpg")


@pytest.mark.asyncio
async def test_delete_removes_blob(storage):
    await storage.save("original/T1.png", b"x")

    await storage.delete("original/T1.png")

    assert not await storage.exists("original/T1.png")


@pytest.mark.asyncio
async def test_load_missing_blob_raises_storage_error(storage):
    with pytest.raises(StorageError):
        await storage.load_image("original/missing.jpg")


@pytest.mark.asyncio
async def test_load_image_rejects_garbage(storage):
    await storage.save("original/T1.jpg", b"definitely not an image")

    with pytest.raises(DecodeError):
        await storage.load_image("original/T1.jpg")


@pytest.mark.asyncio
async def test_load_image_reports_format(storage, image_bytes):
    await storage.save("original/T1.png", image_bytes("PNG", size=(40, 30)))

    image, format_tag = await storage.load_image("original/T1.png")

    assert format_tag == "PNG"
    assert image.size == (40, 30)


@pytest.mark.asyncio
async def test_save_image_jpeg_flattens_alpha(storage):
    image = Image.new("RGBA", (16, 16), (10, 20, 30, 128))

    await storage.save_image("processed/watermark/T1.jpg", image, "JPEG")

    decoded = Image.open(io.BytesIO(await storage.load("processed/watermark/T1.jpg")))
    assert decoded.format == "JPEG"
    assert decoded.mode == "RGB"


@pytest.mark.asyncio
async def test_save_image_unsupported_format(storage):
    with pytest.raises(StorageError):
        await storage.save_image("processed/resize/T1.bmp", Image.new("RGB", (4, 4)), "BMP")


@pytest.mark.asyncio
async def test_storage_key_cannot_escape_root(storage):
    with pytest.raises(StorageError):
        await storage.save("../outside.jpg", b"x")


def test_get_storage_returns_shared_local_storage():
    first = get_storage()

    assert isinstance(first, LocalStorage)
    assert get_storage() is first
    assert str(first.base_path) == str(Path(settings.LOCAL_STORAGE_PATH).resolve())
