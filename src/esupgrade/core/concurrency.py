"""
Structured fan-out / fan-in for operations over independent indices.
"""

import asyncio
from typing import Any, Awaitable, Iterable, List

from loguru import logger


async def join_all(awaitables: Iterable[Awaitable[Any]]) -> List[Any]:
    """
    Run every awaitable concurrently and wait for all of them.

    Results come back in input order. On the first failure the remaining
    tasks are cancelled and awaited, then that failure is raised; no task
    is left running behind the caller's back.
    """
    tasks = [asyncio.ensure_future(aw) for aw in awaitables]
    if not tasks:
        return []

    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except BaseException:
        # The join itself was cancelled: take the children down with it
        await _cancel_all(tasks)
        raise

    failed = next(
        (t for t in tasks if t in done and not t.cancelled() and t.exception() is not None),
        None,
    )
    if failed is None:
        return [t.result() for t in tasks]

    if pending:
        logger.debug(f"Cancelling {len(pending)} sibling operation(s) after failure")
        await _cancel_all(pending)

    raise failed.exception()


async def _cancel_all(tasks) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
