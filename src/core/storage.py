"""
Storage Abstraction Layer - The Bridge Pattern

Provides a clean interface for blob operations keyed by logical storage path
(e.g. "original/<id>.jpg", "processed/resize/<id>.jpg") with LocalStorage as
the active implementation.
"""

import io
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from src.core.config import settings
from src.core.exceptions import StorageError, DecodeError
from src.core.logging import get_logger

logger = get_logger(__name__)

# Encoder options per Pillow format tag
SAVE_OPTIONS = {
    "JPEG": {"quality": 90},
    "PNG": {},
    "GIF": {},
}


class IStorage(ABC):
    """Interface for blob storage operations - The Bridge"""

    @abstractmethod
    async def save(self, storage_key: str, data: bytes) -> None:
        """
        Write raw bytes at `storage_key`, replacing any existing blob.

        Raises:
            StorageError: If the blob cannot be written
        """
        pass

    @abstractmethod
    async def delete(self, storage_key: str) -> None:
        """
        Delete the blob at `storage_key`.

        A missing blob is not an error.

        Raises:
            StorageError: If an existing blob cannot be removed
        """
        pass

    @abstractmethod
    async def exists(self, storage_key: str) -> bool:
        """Check if a blob exists in storage."""
        pass

    @abstractmethod
    async def load(self, storage_key: str) -> bytes:
        """Read the raw bytes at `storage_key`."""
        pass

    @abstractmethod
    async def load_image(self, storage_key: str) -> Tuple[Image.Image, str]:
        """
        Decode the blob at `storage_key`.

        Returns:
            Tuple of (image, format_tag) where format_tag is Pillow's format
            name ("JPEG", "PNG", "GIF")

        Raises:
            StorageError: If the blob cannot be read
            DecodeError: If the bytes are not a readable image
        """
        pass

    @abstractmethod
    async def save_image(self, storage_key: str, image: Image.Image, format_tag: str) -> None:
        """Encode `image` as `format_tag` and write it at `storage_key`."""
        pass


class LocalStorage(IStorage):
    """Local filesystem storage implementation."""

    def __init__(self, base_path: str = "./data/storage"):
        self.base_path = Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, storage_key: str) -> Path:
        file_path = (self.base_path / storage_key).resolve()
        if self.base_path not in file_path.parents:
            raise StorageError(
                f"Storage key escapes storage root: {storage_key}",
                details={"storage_key": storage_key}
            )
        return file_path

    async def save(self, storage_key: str, data: bytes) -> None:
        file_path = self._resolve(storage_key)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, "wb") as f:
                f.write(data)
        except OSError as e:
            logger.error("blob_save_failed", storage_key=storage_key, error=str(e))
            raise StorageError(
                f"Failed to save blob {storage_key}: {e}",
                details={"storage_key": storage_key}
            ) from e

        logger.debug("blob_saved", storage_key=storage_key, size=len(data))

    async def delete(self, storage_key: str) -> None:
        file_path = self._resolve(storage_key)
        try:
            file_path.unlink()
        except FileNotFoundError:
            logger.debug("blob_delete_missing", storage_key=storage_key)
            return
        except OSError as e:
            logger.error("blob_delete_failed", storage_key=storage_key, error=str(e))
            raise StorageError(
                f"Failed to delete blob {storage_key}: {e}",
                details={"storage_key": storage_key}
            ) from e

        logger.info("blob_deleted", storage_key=storage_key)

    async def exists(self, storage_key: str) -> bool:
        return self._resolve(storage_key).is_file()

    async def load(self, storage_key: str) -> bytes:
        file_path = self._resolve(storage_key)
        try:
            with open(file_path, "rb") as f:
                return f.read()
        except OSError as e:
            logger.error("blob_load_failed", storage_key=storage_key, error=str(e))
            raise StorageError(
                f"Failed to read blob {storage_key}: {e}",
                details={"storage_key": storage_key}
            ) from e

    async def load_image(self, storage_key: str) -> Tuple[Image.Image, str]:
        data = await self.load(storage_key)
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.error("image_decode_failed", storage_key=storage_key, error=str(e))
            raise DecodeError(
                f"Failed to decode image {storage_key}: {e}",
                details={"storage_key": storage_key}
            ) from e

        return image, image.format

    async def save_image(self, storage_key: str, image: Image.Image, format_tag: str) -> None:
        options = SAVE_OPTIONS.get((format_tag or "").upper())
        if options is None:
            raise StorageError(
                f"Unsupported format for saving: {format_tag}",
                details={"storage_key": storage_key, "format": format_tag}
            )

        if format_tag.upper() == "JPEG" and image.mode not in ("RGB", "L"):
            image = image.convert("RGB")

        buffer = io.BytesIO()
        try:
            image.save(buffer, format=format_tag.upper(), **options)
        except (OSError, ValueError) as e:
            raise StorageError(
                f"Failed to encode image {storage_key}: {e}",
                details={"storage_key": storage_key, "format": format_tag}
            ) from e

        await self.save(storage_key, buffer.getvalue())


class StorageFactory:
    """Factory for creating storage instances."""

    _instance: Optional[IStorage] = None

    @classmethod
    def get_storage(cls) -> IStorage:
        """Get the storage implementation configured for this process."""
        if cls._instance is None:
            cls._instance = LocalStorage(base_path=settings.LOCAL_STORAGE_PATH)
        return cls._instance


def get_storage() -> IStorage:
    """Get the storage instance - ready for FastAPI Depends()."""
    return StorageFactory.get_storage()
