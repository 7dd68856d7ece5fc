"""Bounded concurrent batches with per-item outcomes.

Items run ``batch_size`` at a time with ``asyncio.gather(return_exceptions=True)``,
so one failing item never cancels or hides its siblings. A fixed delay is
inserted between batches to stay under third-party rate limits.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class UnitResult(Generic[T, R]):
    item: T
    value: R | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_in_batches(
    items: Sequence[T],
    fn: Callable[[T], Awaitable[R]],
    batch_size: int,
    delay_seconds: float = 0.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> list[UnitResult[T, R]]:
    """Run ``fn`` over ``items`` in batches; results keep the input order."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    results: list[UnitResult[T, R]] = []
    for start in range(0, len(items), batch_size):
        if start and delay_seconds > 0:
            await sleep(delay_seconds)
        batch = items[start:start + batch_size]
        outcomes = await asyncio.gather(*(fn(item) for item in batch), return_exceptions=True)
        for item, outcome in zip(batch, outcomes):
            if isinstance(outcome, Exception):
                results.append(UnitResult(item, error=outcome))
            elif isinstance(outcome, BaseException):
                # Cancellation and interpreter exit are not per-item failures
                raise outcome
            else:
                results.append(UnitResult(item, value=outcome))
    return results
