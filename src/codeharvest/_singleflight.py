"""Async single-flight helper.

Concurrent callers asking for the same key share one in-flight computation;
the first caller runs the work and the rest await its Future.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

K = TypeVar("K")
T = TypeVar("T")


def consume_future_exception(fut: asyncio.Future[Any]) -> None:
    """Avoid 'Future exception was never retrieved' for coordination futures."""
    if not fut.cancelled():
        fut.exception()


async def singleflight(
    key: K,
    *,
    inflight: dict[K, asyncio.Future[T]],
    work: Callable[[], Awaitable[T]],
) -> T:
    """Run *work* for *key* unless a run is already in flight, then share it.

    Waiters are shielded: a cancelled waiter does not cancel the shared run.
    If the creator is cancelled, waiters see ``CancelledError`` too.
    """
    fut = inflight.get(key)
    if fut is not None:
        return await asyncio.shield(fut)

    # No await between the lookup above and registration below.
    fut = asyncio.get_running_loop().create_future()
    fut.add_done_callback(consume_future_exception)
    inflight[key] = fut
    try:
        value = await work()
    except asyncio.CancelledError:
        fut.cancel()
        raise
    except Exception as e:
        fut.set_exception(e)
        raise
    else:
        fut.set_result(value)
        return value
    finally:
        inflight.pop(key, None)
