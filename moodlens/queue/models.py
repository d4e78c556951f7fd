"""Job records and the tagged outcome passed from workers to waiters."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field

from moodlens.analysis.models import SegmentResult
from moodlens.errors import AnalysisError
from moodlens.media.models import Segment
from moodlens.pipeline_config import JobState


@dataclass(frozen=True)
class Ok:
    value: SegmentResult


@dataclass(frozen=True)
class Err:
    error: AnalysisError


Outcome = Ok | Err


@dataclass(frozen=True)
class JobHandle:
    """What ``submit`` hands back to the caller."""

    job_id: str
    segment_index: int


@dataclass
class Job:
    """One queued unit of work wrapping a single segment."""

    job_id: str
    segment: Segment
    state: JobState = JobState.QUEUED
    outcome: Outcome | None = None
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    finished_at: float | None = None

    @classmethod
    def for_segment(cls, segment: Segment) -> Job:
        return cls(job_id=f"chunk-{segment.index}-{uuid.uuid4().hex[:8]}", segment=segment)

    @property
    def handle(self) -> JobHandle:
        return JobHandle(job_id=self.job_id, segment_index=self.segment.index)


class JobStore:
    """In-memory registry of job records, keyed by job id."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}

    def add(self, job: Job) -> None:
        self._jobs[job.job_id] = job

    def get(self, job_id: str) -> Job:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise KeyError(f"Unknown job: {job_id}") from None

    def state(self, job_id: str) -> JobState:
        return self.get(job_id).state

    def mark_active(self, job_id: str) -> None:
        job = self.get(job_id)
        job.state = JobState.ACTIVE
        job.started_at = time.time()

    def finish(self, job_id: str, outcome: Outcome) -> None:
        job = self.get(job_id)
        if job.state.is_terminal:
            return
        job.outcome = outcome
        job.state = JobState.COMPLETED if isinstance(outcome, Ok) else JobState.FAILED
        job.finished_at = time.time()

    def discard(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    def __len__(self) -> int:
        return len(self._jobs)
