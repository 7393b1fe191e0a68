"""
Saga Execution

A saga is an ordered list of steps, each a forward action paired with an
optional compensating action. Steps run in order; when one fails, the
compensations of every step that already committed run in reverse order and
the original error is re-raised. Compensations are best effort: their
failures are logged and counted, never raised.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from src.core.logging import get_logger
from src.core.metrics import record_compensation

logger = get_logger(__name__)


@dataclass
class SagaStep:
    """One forward action and the action that undoes it."""
    name: str
    action: Callable[[], Awaitable[Any]]
    compensations: List[Callable[[], Awaitable[Any]]] = field(default_factory=list)


class Saga:
    """Runs SagaSteps with unwind-on-failure."""

    def __init__(self, name: str, steps: List[SagaStep]):
        self.name = name
        self.steps = steps

    async def execute(self) -> List[Any]:
        """
        Run every step in order.

        Returns:
            The result of each step's action, in order

        Raises:
            Whatever the failing step raised, after compensation
        """
        completed: List[SagaStep] = []
        results: List[Any] = []

        for step in self.steps:
            try:
                results.append(await step.action())
            except Exception as e:
                logger.error(
                    "saga_step_failed",
                    saga=self.name,
                    step=step.name,
                    error=str(e),
                    error_type=type(e).__name__
                )
                await self._compensate(completed, failed_step=step.name)
                raise
            completed.append(step)

        return results

    async def _compensate(self, completed: List[SagaStep], failed_step: Optional[str]) -> None:
        for step in reversed(completed):
            for compensation in step.compensations:
                name = getattr(compensation, "__name__", step.name)
                try:
                    await compensation()
                except Exception as e:
                    record_compensation(step.name, "failed")
                    logger.error(
                        "saga_compensation_failed",
                        saga=self.name,
                        step=step.name,
                        compensation=name,
                        failed_step=failed_step,
                        error=str(e),
                        error_type=type(e).__name__
                    )
                else:
                    record_compensation(step.name, "succeeded")
                    logger.info(
                        "saga_compensation_succeeded",
                        saga=self.name,
                        step=step.name,
                        compensation=name,
                        failed_step=failed_step
                    )
