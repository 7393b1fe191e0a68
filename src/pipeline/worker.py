"""
Processing Worker

Long-running loop that consumes ProcessingCommands from the task stream and
applies each requested operation to the original image:

- one message per iteration, operations strictly in order
- every operation reads the original blob and writes processed/<op>/<file>
- a failed operation marks the task FAILED and the next operation still runs
- unknown operation names are skipped
- the message is committed after all operations were attempted, then the
  terminal status is written according to the TaskStatusPolicy
- malformed messages are committed without processing (they can never
  become valid on redelivery)

Nothing but cancellation stops the loop: channel and store failures are
logged and the next iteration starts.
"""

import asyncio
from typing import List, Optional

from src.core.exceptions import ImageryBaseException, TransportError
from src.core.logging import get_logger, LogContext
from src.core.messaging import ChannelMessage, RedisStreamChannel
from src.core.metrics import (
    active_tasks_gauge,
    record_worker_message,
    track_operation_latency,
)
from src.core.storage import IStorage
from src.modules.imagery.models import (
    Operation,
    ProcessingCommand,
    TaskStatus,
    TaskStatusPolicy,
    processed_path,
)
from src.modules.imagery.repository import TaskRepository
from src.pipeline.transforms import Transformer

logger = get_logger(__name__)


class ProcessingWorker:
    """Sequential consumer of the task stream."""

    def __init__(
        self,
        channel: RedisStreamChannel,
        storage: IStorage,
        repository: TaskRepository,
        transformer: Transformer,
        status_policy: TaskStatusPolicy = TaskStatusPolicy.LAST_WRITE_WINS,
        error_backoff: float = 1.0
    ):
        self.channel = channel
        self.storage = storage
        self.repository = repository
        self.transformer = transformer
        self.status_policy = status_policy
        self.error_backoff = error_backoff

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Consume until `stop_event` is set.

        The event is checked before every fetch; an operation already in
        progress always finishes. Task cancellation propagates.
        """
        logger.info("worker_started", status_policy=self.status_policy.value)

        while not stop_event.is_set():
            try:
                await self.run_once(stop_event)
            except Exception as e:
                logger.error(
                    "worker_iteration_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True
                )
                await self._pause(stop_event)

        logger.info("worker_stopped")

    async def run_once(self, stop_event: Optional[asyncio.Event] = None) -> bool:
        """
        Fetch and handle at most one message.

        Returns:
            True if a message was handled
        """
        try:
            message = await self.channel.fetch()
        except TransportError as e:
            record_worker_message("fetch_error")
            logger.error("message_fetch_failed", error=str(e))
            await self._pause(stop_event)
            return False

        if message is None:
            return False

        await self.handle_message(message)
        return True

    async def handle_message(self, message: ChannelMessage) -> None:
        try:
            command = ProcessingCommand.from_payload(message.value)
        except ValueError as e:
            record_worker_message("poison")
            logger.warning(
                "poison_message_skipped",
                entry_id=message.entry_id,
                key=message.key,
                error=str(e)
            )
            await self._commit(message)
            return

        with LogContext(task_id=command.id):
            logger.info(
                "task_processing_started",
                entry_id=message.entry_id,
                operations=command.requested_operations
            )
            active_tasks_gauge.inc()
            try:
                failed = await self.process_command(command)
                await self._commit(message)
                status = self.status_policy.terminal_status(any_failed=bool(failed))
                await self._set_status(command.id, status)
            finally:
                active_tasks_gauge.dec()

            record_worker_message("partial_failure" if failed else "processed")
            logger.info(
                "task_processing_finished",
                status=status.value,
                failed_operations=failed
            )

    async def process_command(self, command: ProcessingCommand) -> List[str]:
        """
        Apply every requested operation in order.

        Returns:
            Names of the operations that failed
        """
        failed: List[str] = []

        for name in command.requested_operations:
            operation = Operation.parse(name)
            if operation is None:
                logger.warning("unknown_operation_skipped", operation=name)
                continue

            target = processed_path(operation.value, command.original_path)
            with LogContext(operation=operation.value):
                try:
                    await self.apply_operation(operation, command.original_path, target)
                except Exception as e:
                    failed.append(operation.value)
                    logger.error(
                        "operation_failed",
                        source_path=command.original_path,
                        target_path=target,
                        error=str(e),
                        error_type=type(e).__name__
                    )
                    await self._set_status(command.id, TaskStatus.FAILED)

        return failed

    async def apply_operation(self, operation: Operation, source_path: str, target_path: str) -> None:
        with track_operation_latency(operation.value):
            image, format_tag = await self.storage.load_image(source_path)
            result = await asyncio.to_thread(self.transformer.apply, operation, image)
            await self.storage.save_image(target_path, result, format_tag)

        logger.info("operation_completed", target_path=target_path)

    async def _commit(self, message: ChannelMessage) -> None:
        try:
            await self.channel.commit(message)
        except TransportError as e:
            logger.error("message_commit_failed", entry_id=message.entry_id, error=str(e))

    async def _set_status(self, task_id: str, status: TaskStatus) -> None:
        try:
            await self.repository.update_status(task_id, status)
        except ImageryBaseException as e:
            logger.error("task_status_update_failed", status=status.value, error=str(e))

    async def _pause(self, stop_event: Optional[asyncio.Event]) -> None:
        if stop_event is None:
            await asyncio.sleep(self.error_backoff)
            return
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=self.error_backoff)
        except asyncio.TimeoutError:
            pass
