"""
Sequential saga with per-step commit tracking.

Steps run one after another; the first failing step stops the run. Steps
that already committed stay committed: there are no compensators, the
outcome just records which steps made it so the caller can act on them.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SagaStep:
    key: str
    action: Callable[[], Awaitable[Any]]


@dataclass
class SagaOutcome:
    committed: List[Tuple[str, Any]] = field(default_factory=list)
    failed_key: Optional[str] = None
    failed_index: Optional[int] = None
    error: Optional[Exception] = None
    not_attempted: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def committed_keys(self) -> List[str]:
        return [key for key, _ in self.committed]

    @property
    def committed_values(self) -> List[Any]:
        return [value for _, value in self.committed]


async def run_saga(steps: Sequence[SagaStep]) -> SagaOutcome:
    outcome = SagaOutcome()
    for index, step in enumerate(steps):
        try:
            value = await step.action()
        except Exception as e:
            logger.warning(
                f"Saga step {index} ({step.key}) failed after {len(outcome.committed)} commits: {e}",
                exc_info=True,
            )
            outcome.failed_key = step.key
            outcome.failed_index = index
            outcome.error = e
            outcome.not_attempted = [s.key for s in steps[index + 1:]]
            return outcome
        outcome.committed.append((step.key, value))
    return outcome
