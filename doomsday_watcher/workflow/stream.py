"""
Execution stream translator.

Polls one execution at a fixed cadence and yields ``StepUpdate`` objects for
a single subscriber: only when ``(state, step)`` changes, always on a
terminal state, and with the terminal update repeated once after a short
delay before the stream ends.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, Iterator, Mapping, Optional

from ..config import Settings, get_settings
from ..errors import ConflictError, NotFoundError, OperationTimeoutError, UpstreamError
from ..primitives import generate_ulid
from .models import SUCCESS_STATES, Execution
from .steps import StepTracker, StepUpdate

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Awaitable[Execution]]


class ExecutionStreamTranslator:
    """Turns a polled execution into a monotonic stream of step updates."""

    def __init__(
        self,
        fetch: Fetcher,
        poll_interval: Optional[float] = None,
        terminal_resend_delay: Optional[float] = None,
        max_consecutive_failures: Optional[int] = None,
        max_stream_seconds: Optional[float] = None,
        step_map: Optional[Mapping[str, int]] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = settings or get_settings()
        self._fetch = fetch
        self.poll_interval = (
            settings.stream_poll_interval if poll_interval is None else poll_interval
        )
        self.terminal_resend_delay = (
            settings.stream_terminal_resend_delay
            if terminal_resend_delay is None
            else terminal_resend_delay
        )
        self.max_consecutive_failures = (
            settings.stream_max_consecutive_failures
            if max_consecutive_failures is None
            else max_consecutive_failures
        )
        self.max_stream_seconds = (
            settings.stream_max_seconds if max_stream_seconds is None else max_stream_seconds
        )
        self.step_map = step_map
        self._clock = clock
        self._sleep = sleep

    async def _poll(self, execution_id: str, failures: int) -> Optional[Execution]:
        """Fetch once. Returns None for a tolerated transient failure."""
        try:
            return await self._fetch(execution_id)
        except NotFoundError:
            raise
        except (UpstreamError, OperationTimeoutError) as e:
            if failures + 1 >= self.max_consecutive_failures:
                logger.error(
                    f"Execution {execution_id}: giving up after {failures + 1} failed polls"
                )
                raise UpstreamError(
                    "Execution status unavailable",
                    {"execution_id": execution_id, "attempts": failures + 1},
                ) from e
            logger.warning(f"Execution {execution_id}: transient poll failure: {e.message}")
            return None

    async def stream(self, execution_id: str) -> AsyncIterator[StepUpdate]:
        """Yield step updates until the execution reaches a terminal state.

        Raises:
            NotFoundError: the execution does not exist
            UpstreamError: too many consecutive fetch failures
            OperationTimeoutError: the stream outlived ``max_stream_seconds``
        """
        tracker = StepTracker(self.step_map)
        deadline = self._clock() + self.max_stream_seconds
        last_key = None
        failures = 0

        while True:
            if self._clock() >= deadline:
                raise OperationTimeoutError(
                    "Execution did not finish in time",
                    {"execution_id": execution_id, "max_seconds": self.max_stream_seconds},
                )

            execution = await self._poll(execution_id, failures)
            if execution is None:
                failures += 1
                await self._sleep(self.poll_interval)
                continue
            failures = 0

            update = tracker.advance(execution)
            if update.terminal:
                logger.info(f"Execution {execution_id} finished: {update.state}")
                yield update
                await self._sleep(self.terminal_resend_delay)
                yield update
                return

            if update.key != last_key:
                last_key = update.key
                yield update

            await self._sleep(self.poll_interval)


class SubscriptionTracker:
    """Classifies how a subscription ended."""

    SUCCESS = "success"
    FAILED = "failed"
    INCONCLUSIVE = "inconclusive"

    def __init__(self):
        self.delivered = 0
        self.terminal: Optional[StepUpdate] = None

    def record(self, update: StepUpdate) -> None:
        self.delivered += 1
        if update.terminal:
            self.terminal = update

    def outcome(self) -> str:
        """Outcome as seen by the subscriber.

        A disconnect without a terminal state is inconclusive, unless no
        update was ever delivered.
        """
        if self.terminal is not None:
            if self.terminal.state in SUCCESS_STATES:
                return self.SUCCESS
            return self.FAILED
        if self.delivered == 0:
            return self.FAILED
        return self.INCONCLUSIVE


class StreamRegistry:
    """One live subscriber per execution id.

    Claims are checked and taken without awaiting, so they are atomic on
    the event loop. Each claim carries its own token and only a release
    with that token frees it.
    """

    def __init__(self):
        self._active: Dict[str, str] = {}

    def is_active(self, execution_id: str) -> bool:
        return execution_id in self._active

    def acquire(self, execution_id: str) -> str:
        """Claim the execution and return the token that releases it."""
        if execution_id in self._active:
            raise ConflictError(
                "Execution already has a subscriber", {"execution_id": execution_id}
            )
        token = generate_ulid()
        self._active[execution_id] = token
        return token

    def release(self, execution_id: str, token: str) -> bool:
        """Free the claim if ``token`` still owns it. Returns whether it did."""
        if self._active.get(execution_id) != token:
            return False
        del self._active[execution_id]
        return True

    @contextmanager
    def claim(self, execution_id: str) -> Iterator[str]:
        """Hold the subscription for the duration of the block."""
        token = self.acquire(execution_id)
        try:
            yield token
        finally:
            self.release(execution_id, token)
