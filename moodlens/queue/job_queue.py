"""Bounded-concurrency job queue with pluggable completion detection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from moodlens.analysis.models import SegmentResult
from moodlens.analysis.worker import SegmentWorker
from moodlens.errors import AnalysisError, JobFailedError
from moodlens.media.artifacts import ArtifactSet
from moodlens.media.models import Segment
from moodlens.pipeline_config import JobState, PipelineConfig
from moodlens.queue.awaiters import Awaiter, select_awaiter
from moodlens.queue.channels import CompletionChannel
from moodlens.queue.models import Err, Job, JobHandle, JobStore, Ok, Outcome

logger = logging.getLogger(__name__)


class JobQueue:
    """Runs one job per segment, at most ``concurrency`` at a time.

    Jobs move ``queued -> active -> completed|failed`` and never retry.
    Jobs are never cancelled: a caller that stops waiting leaves the job to
    finish on its own in the background.
    """

    def __init__(
        self,
        worker: SegmentWorker,
        awaiter: Awaiter,
        store: JobStore,
        channel: CompletionChannel | None = None,
        concurrency: int = 4,
        timeout: float = 300.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.worker = worker
        self.awaiter = awaiter
        self.store = store
        self.channel = channel
        self.concurrency = concurrency
        self.timeout = timeout
        self._slots = asyncio.Semaphore(concurrency)
        self._tasks: set[asyncio.Task[None]] = set()
        self._released: set[str] = set()

    @classmethod
    async def create(
        cls,
        worker: SegmentWorker,
        config: PipelineConfig,
        channel: CompletionChannel | None = None,
    ) -> JobQueue:
        """Build a queue, choosing event-driven completion when the channel connects."""
        store = JobStore()
        awaiter = await select_awaiter(store, config, channel)
        return cls(
            worker,
            awaiter,
            store,
            channel=channel,
            concurrency=config.worker_concurrency,
            timeout=config.job_timeout,
        )

    async def submit(self, segment: Segment, artifacts: ArtifactSet) -> JobHandle:
        job = Job.for_segment(segment)
        self.store.add(job)
        task = asyncio.create_task(self._run(job, artifacts), name=job.job_id)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("Queued %s", job.job_id)
        return job.handle

    async def _run(self, job: Job, artifacts: ArtifactSet) -> None:
        async with self._slots:
            self.store.mark_active(job.job_id)
            try:
                outcome: Outcome = await self.worker.run(job.segment, artifacts)
            except Exception as exc:
                logger.exception("Worker raised instead of returning an outcome for %s", job.job_id)
                error = AnalysisError(str(exc), segment_index=job.segment.index)
                error.__cause__ = exc
                outcome = Err(error)

        self.store.finish(job.job_id, outcome)
        if isinstance(outcome, Err):
            logger.error("%s failed: %s", job.job_id, outcome.error)
        else:
            logger.debug("%s completed", job.job_id)
        if self.channel is not None:
            await self.channel.publish(job.job_id)
        if job.job_id in self._released:
            self._released.discard(job.job_id)
            self.store.discard(job.job_id)

    def state(self, job_id: str) -> JobState:
        return self.store.state(job_id)

    async def await_one(self, handle: JobHandle, timeout: float | None = None) -> SegmentResult:
        """Wait for one job.

        Raises:
            JobTimeoutError: The job did not settle within ``timeout``.
            JobFailedError: The worker reported a failure.
        """
        wait_for = self.timeout if timeout is None else timeout
        outcome = await self.awaiter.wait(handle.job_id, wait_for)
        if isinstance(outcome, Ok):
            return outcome.value
        raise JobFailedError(handle.job_id, outcome.error) from outcome.error

    async def await_all(self, handles: Sequence[JobHandle]) -> list[SegmentResult]:
        """Wait for every handle in parallel; results follow ``handles`` order.

        The first failure is raised as soon as it is observed. Remaining
        waiters are cancelled, the jobs themselves keep running.
        """
        waiters = [
            asyncio.create_task(self.await_one(h), name=f"await-{h.job_id}") for h in handles
        ]
        if not waiters:
            return []
        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_EXCEPTION)
            failures = [t.exception() for t in waiters if t in done and t.exception() is not None]
            if failures:
                raise failures[0]  # type: ignore[misc]
            return [task.result() for task in waiters]
        finally:
            for task in waiters:
                if not task.done():
                    task.cancel()

    def release(self, handles: Sequence[JobHandle]) -> None:
        """Forget job records once the caller no longer needs them."""
        for handle in handles:
            try:
                settled = self.store.state(handle.job_id).is_terminal
            except KeyError:
                continue
            if settled:
                self.store.discard(handle.job_id)
            else:
                self._released.add(handle.job_id)

    async def drain(self) -> None:
        """Wait for every in-flight job to finish (used at shutdown)."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self.channel is not None:
            await self.channel.close()
