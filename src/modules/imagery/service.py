"""
Image Service

submit() runs the upload saga across three systems that cannot share a
transaction:

1. store_original  - write the raw bytes to blob storage   (StorageError)
2. create_task     - insert the PROCESSING task record     (PersistenceError)
3. publish_command - publish the ProcessingCommand         (TransportError)

A failing step unwinds every step before it (delete record, delete blob) so
no task outlives its original blob, and the caller sees the root-cause error.
"""

from typing import Awaitable, Callable, Optional, Type

from src.core.config import settings
from src.core.exceptions import (
    ImageryBaseException,
    NotFoundError,
    PersistenceError,
    StorageError,
    TransportError,
    ValidationError,
)
from src.core.logging import get_logger, LogContext
from src.core.messaging import RedisStreamChannel
from src.core.metrics import record_submission
from src.core.storage import IStorage
from src.modules.imagery.models import (
    DEFAULT_OPERATIONS,
    Operation,
    ProcessingCommand,
    Task,
    TaskStatus,
    new_task_id,
    original_path,
    processed_path,
    utcnow,
)
from src.modules.imagery.repository import TaskRepository
from src.pipeline.saga import Saga, SagaStep

logger = get_logger(__name__)


async def _typed(
    error_cls: Type[ImageryBaseException],
    message: str,
    func: Callable[[], Awaitable],
):
    """Await func(), re-raising untyped failures as error_cls."""
    try:
        return await func()
    except ImageryBaseException:
        raise
    except Exception as e:
        raise error_cls(f"{message}: {e}") from e


class ImageService:
    """Upload saga plus task lookup and deletion."""

    def __init__(
        self,
        storage: IStorage,
        repository: TaskRepository,
        channel: RedisStreamChannel,
        allowed_extensions: Optional[frozenset] = None,
        max_size_bytes: Optional[int] = None
    ):
        self.storage = storage
        self.repository = repository
        self.channel = channel
        self.allowed_extensions = allowed_extensions or settings.allowed_extensions
        self.max_size_bytes = max_size_bytes or settings.MAX_IMAGE_SIZE_BYTES

    def validate(self, raw_bytes: bytes, extension: str) -> str:
        """Return the normalized extension or raise ValidationError."""
        if not extension:
            raise ValidationError("File must have an extension")

        normalized = extension.lower()
        if not normalized.startswith("."):
            normalized = f".{normalized}"

        if normalized not in self.allowed_extensions:
            raise ValidationError(
                f"File extension is not allowed: {extension}",
                details={"allowed": sorted(self.allowed_extensions)}
            )

        if not raw_bytes:
            raise ValidationError("Uploaded file is empty")

        if len(raw_bytes) > self.max_size_bytes:
            raise ValidationError(
                f"Image size ({len(raw_bytes) / (1024 * 1024):.2f}MB) exceeds maximum "
                f"allowed size ({self.max_size_bytes / (1024 * 1024):.0f}MB)",
                details={"size_bytes": len(raw_bytes), "max_size_bytes": self.max_size_bytes}
            )

        return normalized

    async def submit(self, raw_bytes: bytes, extension: str) -> str:
        """
        Store an upload, record the task and queue it for processing.

        Returns:
            The new task id

        Raises:
            ValidationError: Disallowed input, nothing was written
            StorageError: The original blob could not be written
            PersistenceError: The task record could not be created
            TransportError: The processing command could not be published
        """
        try:
            extension = self.validate(raw_bytes, extension)
        except ValidationError as e:
            record_submission("rejected", type(e).__name__)
            raise

        task_id = new_task_id()
        task = Task(
            id=task_id,
            status=TaskStatus.PROCESSING.value,
            original_path=original_path(task_id, extension),
            requested_operations=list(DEFAULT_OPERATIONS),
            created_at=utcnow()
        )
        command = ProcessingCommand.from_task(task)
        blob_path = task.original_path

        async def store_original():
            await _typed(
                StorageError,
                f"Failed to save image {blob_path}",
                lambda: self.storage.save(blob_path, raw_bytes)
            )

        async def delete_original():
            await self.storage.delete(blob_path)

        async def create_task():
            await _typed(
                PersistenceError,
                "Failed to create task",
                lambda: self.repository.create(task)
            )

        async def delete_task_record():
            await self.repository.delete(task_id)

        async def publish_command():
            await _typed(
                TransportError,
                "Failed to publish task",
                lambda: self.channel.publish(task_id, command.to_payload())
            )

        saga = Saga("upload", [
            SagaStep("store_original", store_original, [delete_original]),
            SagaStep("create_task", create_task, [delete_task_record]),
            SagaStep("publish_command", publish_command),
        ])

        with LogContext(task_id=task_id):
            try:
                await saga.execute()
            except ImageryBaseException as e:
                e.task_id = e.task_id or task_id
                record_submission("failed", type(e).__name__)
                raise

            record_submission("accepted")
            logger.info(
                "task_submitted",
                original_path=blob_path,
                size=len(raw_bytes),
                operations=task.requested_operations
            )

        return task_id

    async def get_task(self, task_id: str) -> Task:
        """Fetch a task; raises NotFoundError."""
        return await self.repository.get(task_id)

    async def delete_task(self, task_id: str) -> None:
        """
        Delete a task with its original and derived blobs.

        Deleting an unknown task id succeeds. Blob deletion failures are
        logged and cleanup continues; only a failure to delete the record
        itself is raised.
        """
        with LogContext(task_id=task_id):
            try:
                task = await self.repository.get(task_id)
            except NotFoundError:
                logger.warning("task_not_found_on_delete", task_id=task_id)
                return

            paths = [task.original_path] + [
                processed_path(op.value, task.original_path) for op in Operation
            ]
            for path in paths:
                try:
                    await self.storage.delete(path)
                except StorageError as e:
                    logger.error("blob_cleanup_failed", storage_key=path, error=str(e))

            await self.repository.delete(task_id)
            logger.info("task_and_blobs_deleted", task_id=task_id)
