"""
FastAPI Dependencies

The ImageService is built once in the application lifespan (it holds the
shared Redis client, session factory and storage) and handed to routes from
app.state.
"""

import redis.asyncio as redis
from fastapi import Request

from src.core.database import async_session_maker
from src.core.messaging import RedisStreamChannel
from src.core.retry import RetryPolicy
from src.core.storage import get_storage
from src.modules.imagery.repository import TaskRepository
from src.modules.imagery.service import ImageService


def build_image_service(redis_client: redis.Redis) -> ImageService:
    """Wire the ImageService from settings."""
    retry_policy = RetryPolicy.from_settings()
    return ImageService(
        storage=get_storage(),
        repository=TaskRepository(async_session_maker, retry_policy),
        channel=RedisStreamChannel.from_settings(redis_client, retry_policy)
    )


def get_image_service(request: Request) -> ImageService:
    """Returns the process-wide ImageService."""
    return request.app.state.image_service
