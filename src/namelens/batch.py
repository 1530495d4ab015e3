"""
Bounded concurrent evaluation of many candidate names.

A fixed pool of worker tasks pulls `(index, name)` jobs from a queue fed by
a single producer. Each result is stored at its input index, so output order
never depends on completion order. The first worker failure cancels the
producer and every other worker, and is re-raised once all of them have
stopped; results already computed for other names are discarded.
"""

import asyncio
from typing import Optional

from .models import BatchResult, Clock, Profile, summarize_results
from .orchestrator import Orchestrator
from .structured_logger import StructuredLogger

_COMPONENT = "BatchRunner"


async def run_batch_checks(
    orchestrator: Orchestrator,
    profile: Profile,
    names: list[str],
    concurrency: int = 4,
    clock: Optional[Clock] = None,
    logger: Optional[StructuredLogger] = None,
) -> list[BatchResult]:
    """
    Check every name against the same profile.

    Args:
        orchestrator: Orchestrator that runs one name
        profile: Fan-out plan shared by all names
        names: Candidate names; output follows this order
        concurrency: Maximum names in flight; values below 1 mean 1
        clock: Time source for `completed_at`
        logger: Optional structured logger

    Returns:
        One BatchResult per input name, in input order

    Raises:
        Exception: The first error raised by any worker
    """
    if not names:
        return []

    worker_count = min(max(concurrency, 1), len(names))
    results: list[Optional[BatchResult]] = [None] * len(names)
    queue: asyncio.Queue = asyncio.Queue(maxsize=worker_count)
    tasks: list[asyncio.Task] = []
    first_error: Optional[BaseException] = None

    def fail(error: BaseException) -> None:
        nonlocal first_error
        if first_error is not None:
            return
        first_error = error
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()

    async def produce() -> None:
        for index, name in enumerate(names):
            await queue.put((index, name))
        for _ in range(worker_count):
            await queue.put(None)

    async def work() -> None:
        while True:
            job = await queue.get()
            if job is None:
                return
            index, name = job
            try:
                checks = await orchestrator.check(name, profile)
            except Exception as e:
                fail(e)
                return
            results[index] = summarize_results(name, checks, clock)

    if logger:
        logger.debug(
            _COMPONENT,
            "Batch started",
            {"names": len(names), "workers": worker_count, "profile": profile.name},
        )

    tasks.append(asyncio.ensure_future(produce()))
    tasks.extend(asyncio.ensure_future(work()) for _ in range(worker_count))

    # Cancelling this coroutine cancels every child through gather.
    await asyncio.gather(*tasks, return_exceptions=True)

    if first_error is not None:
        if logger:
            logger.log_error(_COMPONENT, "Batch aborted", first_error, {"names": len(names)})
        raise first_error

    if logger:
        logger.info(_COMPONENT, "Batch completed", {"names": len(names)})
    return results
