"""Completion detection strategies for queued jobs.

Both awaiters implement ``wait(job_id, timeout) -> Outcome`` and read the
outcome from the same JobStore, so the choice between them only affects
latency, never the result a caller sees.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Protocol

from moodlens.errors import AnalysisError, JobTimeoutError
from moodlens.pipeline_config import CompletionStrategy, PipelineConfig
from moodlens.queue.channels import CompletionChannel
from moodlens.queue.models import Err, JobStore, Outcome

logger = logging.getLogger(__name__)


class Awaiter(Protocol):
    async def wait(self, job_id: str, timeout: float) -> Outcome: ...


def _settled(store: JobStore, job_id: str) -> Outcome | None:
    job = store.get(job_id)
    if not job.state.is_terminal:
        return None
    if job.outcome is None:
        # Terminal without an outcome would be a queue bug; report it as a failure.
        return Err(AnalysisError(f"Job {job_id} finished without a result"))
    return job.outcome


class EventAwaiter:
    """Resolves as soon as the completion channel announces the job."""

    def __init__(self, store: JobStore, channel: CompletionChannel) -> None:
        self.store = store
        self.channel = channel

    async def wait(self, job_id: str, timeout: float) -> Outcome:
        # Subscribe before checking the store so a completion in between is not lost.
        notified = self.channel.subscribe(job_id)
        try:
            outcome = _settled(self.store, job_id)
            if outcome is not None:
                return outcome
            try:
                await asyncio.wait_for(notified, timeout)
            except TimeoutError:
                raise JobTimeoutError(job_id, timeout) from None
            outcome = _settled(self.store, job_id)
            if outcome is None:
                raise JobTimeoutError(job_id, timeout)
            return outcome
        finally:
            self.channel.unsubscribe(job_id, notified)


class PollingAwaiter:
    """Checks the job state on a fixed interval until terminal or timed out."""

    def __init__(
        self,
        store: JobStore,
        interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.interval = interval
        self._clock = clock
        self._sleep = sleep

    async def wait(self, job_id: str, timeout: float) -> Outcome:
        deadline = self._clock() + timeout
        while True:
            outcome = _settled(self.store, job_id)
            if outcome is not None:
                return outcome
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise JobTimeoutError(job_id, timeout)
            await self._sleep(min(self.interval, remaining))


async def select_awaiter(
    store: JobStore,
    config: PipelineConfig,
    channel: CompletionChannel | None,
) -> Awaiter:
    """Prefer the event-driven awaiter; fall back to polling if the channel is down."""
    if config.completion_strategy is CompletionStrategy.EVENTS and channel is not None:
        try:
            await channel.connect()
        except Exception as exc:
            logger.warning(
                "Completion events unavailable (%s); falling back to polling every %gs",
                exc,
                config.job_poll_interval,
            )
        else:
            logger.info("Using event-driven job completion")
            return EventAwaiter(store, channel)
    return PollingAwaiter(store, interval=config.job_poll_interval)

