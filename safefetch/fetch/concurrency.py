"""Bounded parallel execution with all-settled semantics."""

from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import structlog

from safefetch.fetch.constants import MAX_CONCURRENCY, MIN_CONCURRENCY
from safefetch.fetch.models import FetchRequest, PipelineResult


if TYPE_CHECKING:
    from safefetch.fetch.pipeline import FetchPipeline


logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class Settled(Generic[T]):
    """Outcome of one task: a value or the exception it raised."""

    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        """Check if the task completed without raising."""
        return self.error is None


def clamp_concurrency(limit: int) -> int:
    """Clamp a concurrency limit into the supported range."""
    return min(max(MIN_CONCURRENCY, limit), MAX_CONCURRENCY)


class ConcurrencyLimiter:
    """Runs tasks with at most `limit` in flight.

    Tasks start in submission order. A failing task never cancels its
    siblings; every outcome is reported in input order.
    """

    def __init__(self, limit: int) -> None:
        """Initialize the limiter.

        Args:
            limit: Maximum tasks in flight; clamped to [1, 10].
        """
        self._limit = clamp_concurrency(limit)
        self._log = logger.bind(component="concurrency")

    @property
    def limit(self) -> int:
        """Get the effective concurrency limit."""
        return self._limit

    def run_all(self, tasks: Iterable[Callable[[], T]]) -> list[Settled[T]]:
        """Run zero-argument callables and wait for all of them.

        Args:
            tasks: Callables to run.

        Returns:
            One Settled per task, in input order.
        """
        task_list = list(tasks)
        if not task_list:
            return []

        self._log.debug("run_all_started", tasks=len(task_list), limit=self._limit)

        with ThreadPoolExecutor(max_workers=self._limit) as executor:
            futures: list[Future[T]] = [executor.submit(task) for task in task_list]
            outcomes = [self._settle(future) for future in futures]

        failed = sum(1 for outcome in outcomes if not outcome.ok)
        self._log.debug(
            "run_all_complete",
            tasks=len(outcomes),
            succeeded=len(outcomes) - failed,
            failed=failed,
        )
        return outcomes

    def fetch_many(
        self,
        pipeline: "FetchPipeline",
        requests: Sequence[FetchRequest],
        transform: Callable[[str, str], T],
    ) -> list[Settled[PipelineResult[T]]]:
        """Execute several fetches through a pipeline.

        Args:
            pipeline: Pipeline to fetch through.
            requests: Requests to execute.
            transform: Transform applied to each fetched body.

        Returns:
            One Settled per request, in input order.
        """
        return self.run_all(
            [
                (lambda request=request: pipeline.execute_fetch(request, transform))
                for request in requests
            ]
        )

    @staticmethod
    def _settle(future: "Future[Any]") -> Settled[Any]:
        try:
            return Settled(value=future.result())
        except Exception as e:  # noqa: BLE001
            return Settled(error=e)


def run_with_concurrency(limit: int, tasks: Iterable[Callable[[], T]]) -> list[Settled[T]]:
    """Run tasks with at most `limit` in flight.

    Args:
        limit: Maximum tasks in flight; clamped to [1, 10].
        tasks: Zero-argument callables.

    Returns:
        One Settled per task, in input order.
    """
    return ConcurrencyLimiter(limit).run_all(tasks)
