"""Pipeline configuration: vocabulary enums and the PipelineConfig dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from moodlens.config import Settings


class Mood(StrEnum):
    """The fixed mood vocabulary accepted from the inference backend."""

    HAPPY = "happy"
    SAD = "sad"
    ANGRY = "angry"
    ANXIOUS = "anxious"
    EXCITED = "excited"
    CALM = "calm"
    NEUTRAL = "neutral"


VALID_MOODS: frozenset[str] = frozenset(m.value for m in Mood)


class CompletionStrategy(StrEnum):
    """How the job queue detects that a job has finished."""

    EVENTS = "events"
    POLLING = "polling"


class JobState(StrEnum):
    """Lifecycle of a queued job. COMPLETED and FAILED are terminal."""

    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable configuration for one analysis pipeline.

    Components take a PipelineConfig rather than reading the global settings,
    so tests can build them with small timeouts and pool sizes.
    """

    segment_duration: float = 15.0
    frame_offsets: tuple[float, ...] = (0.0, 7.5)
    worker_concurrency: int = 4
    job_timeout: float = 300.0
    job_poll_interval: float = 0.5
    cache_ttl: int = 24 * 60 * 60
    completion_strategy: CompletionStrategy = CompletionStrategy.EVENTS
    transcribe_audio: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineConfig:
        return cls(
            segment_duration=settings.segment_duration,
            frame_offsets=tuple(settings.frame_offsets),
            worker_concurrency=settings.worker_concurrency,
            job_timeout=settings.job_timeout,
            job_poll_interval=settings.job_poll_interval,
            cache_ttl=settings.cache_ttl,
            completion_strategy=CompletionStrategy(settings.completion_strategy),
            transcribe_audio=settings.transcribe_audio,
        )
