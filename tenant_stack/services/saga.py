"""
Minimal saga runner for multi-step cluster operations.

Steps run in order. A step's compensation is registered as soon as the step is
attempted, since a call that failed or timed out may still have taken effect
on the cluster. Compensations run at most once, newest first.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from tenant_stack.errors import CompensationError, describe_api_error
from tenant_stack.utils.logging import get_logger

logger = get_logger(__name__, prefix="Saga")

Action = Callable[[], Awaitable[Any]]


@dataclass
class SagaStep:
    name: str
    action: Action
    compensation: Optional[Action] = None


@dataclass
class Saga:
    name: str
    steps: List[SagaStep]
    attempted: List[SagaStep] = field(default_factory=list)
    failed_step: Optional[str] = None
    compensated: bool = False

    async def run(self) -> None:
        """Execute every step; the first exception aborts the rest and propagates."""
        for step in self.steps:
            self.attempted.append(step)
            logger.info(f"{self.name}: {step.name}")
            try:
                await step.action()
            except Exception:
                self.failed_step = step.name
                raise

    async def compensate(self) -> List[CompensationError]:
        """
        Undo attempted steps in reverse order.

        Every compensation is tried even if an earlier one fails; failures are
        returned rather than raised so they never mask the original error.
        """
        if self.compensated:
            return []
        self.compensated = True

        errors: List[CompensationError] = []
        for step in reversed(self.attempted):
            if step.compensation is None:
                continue
            try:
                await step.compensation()
                logger.info(f"{self.name}: compensated {step.name}")
            except Exception as e:
                error = CompensationError(step.name, describe_api_error(e))
                logger.error(f"{self.name}: {error}")
                errors.append(error)
        return errors
