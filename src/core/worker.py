"""
Worker Process Entrypoint

Runs the ProcessingWorker standalone:

    python -m src.core.worker

Scale out by starting more processes; they share one consumer group, so each
stream entry goes to exactly one of them at a time. SIGINT/SIGTERM stop the
loop after the message in progress.
"""

import asyncio
import signal

import redis.asyncio as redis

from src.core.config import settings
from src.core.database import async_session_maker, create_db_and_tables
from src.core.logging import setup_logging, get_logger
from src.core.messaging import RedisStreamChannel
from src.core.metrics import set_app_info
from src.core.retry import RetryPolicy
from src.core.storage import get_storage
from src.modules.imagery.models import TaskStatusPolicy
from src.modules.imagery.repository import TaskRepository
from src.pipeline.transforms import Transformer
from src.pipeline.worker import ProcessingWorker

logger = get_logger(__name__)


async def build_worker(redis_client: redis.Redis) -> ProcessingWorker:
    """Wire a ProcessingWorker from settings."""
    retry_policy = RetryPolicy.from_settings()

    channel = RedisStreamChannel.from_settings(redis_client, retry_policy)
    await channel.setup()

    return ProcessingWorker(
        channel=channel,
        storage=get_storage(),
        repository=TaskRepository(async_session_maker, retry_policy),
        transformer=Transformer.from_settings(),
        status_policy=TaskStatusPolicy(settings.TASK_STATUS_POLICY),
        error_backoff=settings.WORKER_ERROR_BACKOFF_SECONDS
    )


async def run_worker() -> None:
    await create_db_and_tables()

    redis_client = redis.from_url(settings.REDIS_URL)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        worker = await build_worker(redis_client)
        logger.info(
            "worker_process_starting",
            consumer=worker.channel.consumer_name,
            stream=settings.TASK_STREAM,
            group=settings.CONSUMER_GROUP
        )
        await worker.run(stop_event)
    finally:
        await redis_client.aclose()
        logger.info("worker_process_shutdown_complete")


def main():
    setup_logging(log_level=settings.LOG_LEVEL, json_format=settings.LOG_FORMAT_JSON)
    set_app_info(version=settings.APP_VERSION, environment=settings.ENVIRONMENT)
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
