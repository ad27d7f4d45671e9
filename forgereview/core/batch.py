"""Fan out independent write requests and join on all of them.

Every request is scheduled as a task before any is awaited. The join waits for
all of them to settle, then reports the first failure in the order failures
were observed. Writes that already succeeded are left in place.
"""

import asyncio
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field
from typing import Any

from forgereview.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class BatchOutcome:
    """Settled results of one batch, in input order."""

    results: list[Any]
    errors: dict[int, BaseException] = field(default_factory=dict)
    completion_order: list[int] = field(default_factory=list)

    @property
    def succeeded(self) -> list[int]:
        return [i for i in range(len(self.results)) if i not in self.errors]

    @property
    def failed(self) -> list[int]:
        return [i for i in self.completion_order if i in self.errors]

    @property
    def first_error(self) -> BaseException | None:
        failed = self.failed
        return self.errors[failed[0]] if failed else None


async def run_all(calls: Sequence[Awaitable[Any]], origin: str) -> BatchOutcome:
    """Launch every call, wait for all of them and collect what happened."""
    tasks = [asyncio.ensure_future(call) for call in calls]
    outcome = BatchOutcome(results=[None] * len(tasks))

    for index, task in enumerate(tasks):
        task.add_done_callback(lambda _task, index=index: outcome.completion_order.append(index))

    if tasks:
        try:
            await asyncio.wait(tasks)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

    for index, task in enumerate(tasks):
        if task.cancelled():
            outcome.errors[index] = asyncio.CancelledError()
        elif task.exception() is not None:
            outcome.errors[index] = task.exception()  # type: ignore[assignment]
        else:
            outcome.results[index] = task.result()

    logger.info(
        f"{origin}: {len(outcome.succeeded)}/{len(tasks)} requests succeeded",
        origin=origin,
        failed=len(outcome.errors),
    )
    return outcome


async def join_all(calls: Sequence[Awaitable[Any]], origin: str) -> list[Any]:
    """Run a batch and return its results, or raise the first observed failure.

    The error is raised only after every request has settled. Nothing is rolled back.
    """
    outcome = await run_all(calls, origin)
    first_error = outcome.first_error
    if first_error is not None:
        if len(outcome.errors) > 1:
            logger.warning(
                f"{origin}: {len(outcome.errors)} requests failed, reporting the first one"
            )
        raise first_error
    return outcome.results
