"""
Async Utility Functions

Small asyncio helpers shared by the trial runner, devices and orchestrator.
"""

import asyncio
from typing import Awaitable, List, Optional

from .logging import get_logger

logger = get_logger(__name__)


def create_task_with_name(coro: Awaitable, name: str) -> asyncio.Task:
    """
    Create a named task for better debugging.

    Args:
        coro: Coroutine to execute
        name: Task name

    Returns:
        Named asyncio Task
    """
    return asyncio.create_task(coro, name=name)


async def cancel_tasks(tasks: List[asyncio.Task]) -> None:
    """
    Cancel a list of tasks gracefully.

    Args:
        tasks: List of tasks to cancel
    """
    if not tasks:
        return

    for task in tasks:
        task.cancel()

    # Wait for them to finish cancellation
    await asyncio.gather(*tasks, return_exceptions=True)

    logger.debug(f"Cancelled {len(tasks)} tasks")


def time_left(deadline: Optional[float]) -> Optional[float]:
    """Seconds until ``deadline`` on the running loop's clock, never negative."""
    if deadline is None:
        return None
    return max(0.0, deadline - asyncio.get_running_loop().time())
