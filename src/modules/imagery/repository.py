"""
Task Repository

Durable task records over an async SQLAlchemy session factory. Every call is
wrapped in the shared retry policy; exhaustion raises PersistenceError.
"""

from typing import Optional

from sqlalchemy import delete, update
from sqlalchemy.exc import DBAPIError, IntegrityError, StatementError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from src.core.exceptions import NotFoundError, PersistenceError
from src.core.logging import get_logger
from src.core.retry import RetryPolicy, retry_async
from src.modules.imagery.models import Task, TaskStatus

logger = get_logger(__name__)


def _is_permanent(error: Exception) -> bool:
    """Statement errors raised before reaching the driver (bind or compile failures)."""
    return isinstance(error, StatementError) and not isinstance(error, DBAPIError)


class TaskRepository:
    """Repository for Task records."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        retry_policy: Optional[RetryPolicy] = None
    ):
        self._session_maker = session_maker
        self._retry_policy = retry_policy or RetryPolicy()

    async def _run(self, action: str, func, *args):
        return await retry_async(
            self._retry_policy,
            func,
            *args,
            action=f"task_store.{action}",
            error_cls=PersistenceError,
            give_up_on=(IntegrityError,),
            is_permanent=_is_permanent
        )

    async def create(self, task: Task) -> Task:
        """Insert a new task record."""
        async def _create():
            async with self._session_maker() as session:
                session.add(task)
                await session.commit()
                return task

        try:
            await self._run("create", _create)
        except IntegrityError as e:
            raise PersistenceError(
                f"Task already exists: {task.id}",
                task_id=task.id
            ) from e

        logger.info("task_created", task_id=task.id, original_path=task.original_path)
        return task

    async def get(self, task_id: str) -> Task:
        """Fetch a task; raises NotFoundError if it does not exist."""
        async def _get():
            async with self._session_maker() as session:
                result = await session.execute(select(Task).where(Task.id == task_id))
                return result.scalar_one_or_none()

        task = await self._run("get", _get)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}", task_id=task_id)
        return task

    async def update_status(self, task_id: str, status: TaskStatus) -> bool:
        """
        Set a task's status.

        Returns:
            False if no record matched (the task was deleted meanwhile)
        """
        async def _update():
            async with self._session_maker() as session:
                result = await session.execute(
                    update(Task).where(Task.id == task_id).values(status=status.value)
                )
                await session.commit()
                return result.rowcount

        rowcount = await self._run("update_status", _update)

        if not rowcount:
            logger.warning("task_status_update_missed", task_id=task_id, status=status.value)
            return False

        logger.debug("task_status_updated", task_id=task_id, status=status.value)
        return True

    async def delete(self, task_id: str) -> None:
        """Delete a task record; a missing record is not an error."""
        async def _delete():
            async with self._session_maker() as session:
                result = await session.execute(delete(Task).where(Task.id == task_id))
                await session.commit()
                return result.rowcount

        rowcount = await self._run("delete", _delete)
        logger.info("task_deleted", task_id=task_id, existed=bool(rowcount))
