"""Data models for segment and frame artifacts."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Segment:
    """A fixed-duration slice of the source video, the unit of parallel analysis."""

    index: int
    start: float
    end: float
    video_path: Path
    audio_path: Path

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class FrameImage:
    """A still image captured from a segment at ``timestamp`` seconds."""

    timestamp: float
    path: Path
