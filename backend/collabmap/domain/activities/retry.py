"""Bounded retry combinator for optimistic-concurrency writes."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from collabmap.domain.activities.policy import VersionConflict, WriteConflict

T = TypeVar("T")

Backoff = Callable[[int], float]


def linear_backoff(base_ms: int = 50, step_ms: int = 100) -> Backoff:
	"""Delay in seconds before retry ``attempt`` (1-based): base + step * attempt."""

	def _delay(attempt: int) -> float:
		return (base_ms + step_ms * attempt) / 1000.0

	return _delay


async def with_retries(
	operation: Callable[[], Awaitable[T]],
	*,
	max_attempts: int = 5,
	backoff: Optional[Backoff] = None,
	retry_on: Tuple[Type[BaseException], ...] = (VersionConflict,),
	sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
	on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
	"""Run ``operation`` until it succeeds or ``max_attempts`` runs have conflicted.

	Only exceptions in ``retry_on`` are retried; anything else propagates
	immediately. Running out of attempts raises ``WriteConflict`` chained to the
	last conflict.
	"""
	if max_attempts < 1:
		raise ValueError("max_attempts must be >= 1")
	delay = backoff or linear_backoff()
	attempt = 0
	while True:
		attempt += 1
		try:
			return await operation()
		except retry_on as exc:
			if attempt >= max_attempts:
				raise WriteConflict(message=f"gave up after {attempt} attempts") from exc
			if on_retry is not None:
				on_retry(attempt, exc)
			await sleep(delay(attempt))
