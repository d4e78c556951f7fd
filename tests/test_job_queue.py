"""Tests for the bounded-concurrency job queue."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from moodlens.analysis.models import MoodAnalysis, SegmentResult
from moodlens.errors import AnalysisError, InferenceQuotaError, JobFailedError, JobTimeoutError
from moodlens.media.artifacts import ArtifactSet
from moodlens.media.models import Segment
from moodlens.pipeline_config import JobState, PipelineConfig
from moodlens.queue.awaiters import EventAwaiter, PollingAwaiter
from moodlens.queue.channels import LocalCompletionChannel
from moodlens.queue.job_queue import JobQueue
from moodlens.queue.models import Err, JobStore, Ok, Outcome

ARTIFACTS = ArtifactSet(Path("unused"))


def _segment(index: int) -> Segment:
    return Segment(
        index=index,
        start=index * 15.0,
        end=(index + 1) * 15.0,
        video_path=Path(f"chunk_{index}/video.mp4"),
        audio_path=Path(f"chunk_{index}/audio.wav"),
    )


def _result(segment: Segment, mood: str = "calm") -> SegmentResult:
    return SegmentResult(
        segment_index=segment.index,
        start=segment.start,
        end=segment.end,
        mood=MoodAnalysis(primary_mood=mood, confidence=0.8),
    )


class RecordingWorker:
    """Succeeds for every segment, tracking how many run at once."""

    def __init__(self, delays: dict[int, float] | None = None) -> None:
        self.delays = delays or {}
        self.active = 0
        self.peak = 0
        self.finished: list[int] = []

    async def run(self, segment: Segment, artifacts: ArtifactSet) -> Outcome:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delays.get(segment.index, 0.01))
        finally:
            self.active -= 1
        self.finished.append(segment.index)
        return Ok(_result(segment))


class ScriptedWorker:
    """Per-index behaviour: an Outcome, an exception to raise, or an Event to wait on."""

    def __init__(self, script: dict[int, object]) -> None:
        self.script = script

    async def run(self, segment: Segment, artifacts: ArtifactSet) -> Outcome:
        action = self.script.get(segment.index)
        if isinstance(action, asyncio.Event):
            await action.wait()
            return Ok(_result(segment))
        if isinstance(action, Exception):
            raise action
        if isinstance(action, (Ok, Err)):
            return action
        return Ok(_result(segment))


def _event_queue(worker: object, concurrency: int = 4, timeout: float = 5.0) -> JobQueue:
    store = JobStore()
    channel = LocalCompletionChannel()
    return JobQueue(
        worker,  # type: ignore[arg-type]
        EventAwaiter(store, channel),
        store,
        channel=channel,
        concurrency=concurrency,
        timeout=timeout,
    )


def _polling_queue(worker: object, concurrency: int = 4, timeout: float = 5.0) -> JobQueue:
    store = JobStore()
    return JobQueue(
        worker,  # type: ignore[arg-type]
        PollingAwaiter(store, interval=0.005),
        store,
        concurrency=concurrency,
        timeout=timeout,
    )


class TestConstruction:
    def test_rejects_zero_concurrency(self) -> None:
        with pytest.raises(ValueError):
            _event_queue(RecordingWorker(), concurrency=0)

    def test_create_uses_config(self) -> None:
        config = PipelineConfig(worker_concurrency=3, job_timeout=12.0)

        async def scenario() -> JobQueue:
            return await JobQueue.create(RecordingWorker(), config, LocalCompletionChannel())

        queue = asyncio.run(scenario())
        assert queue.concurrency == 3
        assert queue.timeout == 12.0
        assert isinstance(queue.awaiter, EventAwaiter)


@pytest.mark.parametrize("make_queue", [_event_queue, _polling_queue])
class TestAwaitAll:
    def test_concurrency_is_bounded(self, make_queue) -> None:  # type: ignore[no-untyped-def]
        worker = RecordingWorker()
        queue = make_queue(worker, concurrency=2)

        async def scenario() -> list[SegmentResult]:
            handles = [await queue.submit(_segment(i), ARTIFACTS) for i in range(6)]
            return await queue.await_all(handles)

        results = asyncio.run(scenario())
        assert [r.segment_index for r in results] == list(range(6))
        assert worker.peak == 2

    def test_results_follow_handle_order(self, make_queue) -> None:  # type: ignore[no-untyped-def]
        # Later segments finish first.
        worker = RecordingWorker(delays={0: 0.06, 1: 0.04, 2: 0.02, 3: 0.0})
        queue = make_queue(worker)

        async def scenario() -> list[SegmentResult]:
            handles = [await queue.submit(_segment(i), ARTIFACTS) for i in range(4)]
            return await queue.await_all(handles)

        results = asyncio.run(scenario())
        assert worker.finished == [3, 2, 1, 0]
        assert [r.segment_index for r in results] == [0, 1, 2, 3]

    def test_empty(self, make_queue) -> None:  # type: ignore[no-untyped-def]
        queue = make_queue(RecordingWorker())
        assert asyncio.run(queue.await_all([])) == []

    def test_first_failure_surfaces_while_others_run(self, make_queue) -> None:  # type: ignore[no-untyped-def]
        async def scenario() -> tuple[JobFailedError, JobState, JobState]:
            gate = asyncio.Event()
            failure = Err(AnalysisError("bad frames", segment_index=1))
            queue = make_queue(ScriptedWorker({0: gate, 1: failure}))
            handles = [await queue.submit(_segment(i), ARTIFACTS) for i in range(2)]

            with pytest.raises(JobFailedError) as exc_info:
                await queue.await_all(handles)
            # Segment 0 is still blocked: the failure did not wait for it.
            state_during = queue.state(handles[0].job_id)

            gate.set()
            await queue.drain()
            return exc_info.value, state_during, queue.state(handles[0].job_id)

        error, state_during, state_after = asyncio.run(scenario())
        assert isinstance(error.cause, AnalysisError)
        assert "bad frames" in error.message
        assert state_during is JobState.ACTIVE
        # Jobs are never cancelled; the blocked one finishes in the background.
        assert state_after is JobState.COMPLETED

    def test_unexpected_worker_exception_becomes_failure(self, make_queue) -> None:  # type: ignore[no-untyped-def]
        queue = make_queue(ScriptedWorker({0: RuntimeError("boom")}))

        async def scenario() -> None:
            handle = await queue.submit(_segment(0), ARTIFACTS)
            await queue.await_one(handle)

        with pytest.raises(JobFailedError) as exc_info:
            asyncio.run(scenario())
        assert isinstance(exc_info.value.cause, AnalysisError)
        assert isinstance(exc_info.value.cause.__cause__, RuntimeError)


class TestAwaitOne:
    def test_timeout_leaves_job_running(self) -> None:
        async def scenario() -> JobState:
            gate = asyncio.Event()
            queue = _event_queue(ScriptedWorker({0: gate}))
            handle = await queue.submit(_segment(0), ARTIFACTS)

            with pytest.raises(JobTimeoutError):
                await queue.await_one(handle, timeout=0.01)

            gate.set()
            await queue.drain()
            return queue.state(handle.job_id)

        assert asyncio.run(scenario()) is JobState.COMPLETED

    def test_failure_keeps_root_status(self) -> None:
        cause = AnalysisError("quota", segment_index=0)
        cause.__cause__ = InferenceQuotaError("quota exceeded")
        queue = _event_queue(ScriptedWorker({0: Err(cause)}))

        async def scenario() -> None:
            handle = await queue.submit(_segment(0), ARTIFACTS)
            await queue.await_one(handle)

        with pytest.raises(JobFailedError) as exc_info:
            asyncio.run(scenario())
        assert exc_info.value.status_code == 429


class TestRelease:
    def test_release_forgets_settled_and_running_jobs(self) -> None:
        async def scenario() -> tuple[int, int]:
            gate = asyncio.Event()
            queue = _event_queue(ScriptedWorker({1: gate}))
            handles = [await queue.submit(_segment(i), ARTIFACTS) for i in range(2)]
            await queue.await_one(handles[0])

            queue.release(handles)
            remaining_while_running = len(queue.store)

            gate.set()
            await queue.drain()
            return remaining_while_running, len(queue.store)

        while_running, after = asyncio.run(scenario())
        assert while_running == 1
        assert after == 0
