"""Combine per-segment results into a mood timeline and summary statistics."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from moodlens.analysis.models import AggregatedResult, SegmentResult, TimelineEntry
from moodlens.pipeline_config import Mood

logger = logging.getLogger(__name__)


def aggregate(results: Sequence[SegmentResult]) -> AggregatedResult:
    """Aggregate ordered segment results.

    Pure and total. Callers supply ``results`` ordered by segment index; the
    order is preserved in the timeline and drives the variability score.
    """
    timeline = [
        TimelineEntry(
            start=r.start,
            end=r.end,
            mood=r.primary_mood,
            confidence=r.confidence,
            frame_image=r.frame_image or None,
        )
        for r in results
    ]
    with_frames = sum(1 for entry in timeline if entry.frame_image)
    logger.debug("Timeline created: %d entries, %d with frame images", len(timeline), with_frames)

    return AggregatedResult(
        overall_mood=overall_mood(results),
        mood_timeline=timeline,
        emotional_variability=emotional_variability(results),
    )


def overall_mood(results: Sequence[SegmentResult]) -> str:
    """Confidence-weighted vote over primary moods.

    Ties go to the mood seen first: scores keep insertion order and only a
    strictly greater score replaces the leader. No results means "neutral".
    """
    scores: dict[str, float] = {}
    for r in results:
        scores[r.primary_mood] = scores.get(r.primary_mood, 0.0) + r.confidence

    best_mood = Mood.NEUTRAL.value
    best_score: float | None = None
    for mood, score in scores.items():
        if best_score is None or score > best_score:
            best_mood, best_score = mood, score
    return best_mood


def emotional_variability(results: Sequence[SegmentResult]) -> float:
    """Fraction of adjacent segment pairs whose primary mood differs."""
    if len(results) <= 1:
        return 0.0
    transitions = sum(
        1 for prev, curr in zip(results, results[1:]) if prev.primary_mood != curr.primary_mood
    )
    return transitions / (len(results) - 1)
