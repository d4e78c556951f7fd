"""Data models for per-segment mood analysis and the aggregated result."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class MoodAnalysis:
    """Structured answer of the inference backend for one segment."""

    primary_mood: str
    secondary_moods: tuple[str, ...] = ()
    intensity: float = 0.0
    confidence: float = 0.0
    facial_cues: str = ""
    body_language: str = ""
    voice_tone: str = ""
    notes: str = ""

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> MoodAnalysis:
        return cls(
            primary_mood=str(data["primary_mood"]),
            secondary_moods=tuple(str(m) for m in data.get("secondary_moods") or ()),
            intensity=float(data["intensity"]),
            confidence=float(data["confidence"]),
            facial_cues=str(data.get("facial_cues") or ""),
            body_language=str(data.get("body_language") or ""),
            voice_tone=str(data.get("voice_tone") or ""),
            notes=str(data.get("notes") or ""),
        )


@dataclass(frozen=True)
class SegmentResult:
    """Outcome of analysing one surviving segment. Immutable once produced."""

    segment_index: int
    start: float
    end: float
    mood: MoodAnalysis
    frame_image: str | None = None  # base64 JPEG of the representative frame

    @property
    def primary_mood(self) -> str:
        return self.mood.primary_mood

    @property
    def confidence(self) -> float:
        return self.mood.confidence


class TimelineEntry(BaseModel):
    """One timeline slot, mirroring a single SegmentResult."""

    start: float
    end: float
    mood: str
    confidence: float
    frame_image: str | None = None


class AggregatedResult(BaseModel):
    """Timeline plus summary statistics for a whole video.

    This is both the cached value and the API response payload.
    """

    overall_mood: str
    mood_timeline: list[TimelineEntry]
    emotional_variability: float = Field(ge=0.0, le=1.0)
