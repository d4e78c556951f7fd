"""Per-segment pipeline: frames -> (transcript) -> mood inference -> representative frame."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from moodlens.analysis.inference import MoodInferenceBackend
from moodlens.analysis.models import MoodAnalysis, SegmentResult
from moodlens.errors import AnalysisError, MoodLensError
from moodlens.media.artifacts import ArtifactSet, remove_path
from moodlens.media.extraction import FfmpegExtractor, frame_to_base64, verify_artifact
from moodlens.media.models import FrameImage, Segment
from moodlens.pipeline_config import PipelineConfig
from moodlens.queue.models import Err, Ok, Outcome

logger = logging.getLogger(__name__)


class SegmentWorker(Protocol):
    async def run(self, segment: Segment, artifacts: ArtifactSet) -> Outcome: ...


class ChunkWorker:
    """Stateless worker invoked by the job queue, one call per segment."""

    def __init__(
        self,
        extractor: FfmpegExtractor,
        backend: MoodInferenceBackend,
        config: PipelineConfig,
    ) -> None:
        self.extractor = extractor
        self.backend = backend
        self.config = config

    async def run(self, segment: Segment, artifacts: ArtifactSet) -> Outcome:
        """Like ``process`` but returns ``Ok``/``Err`` instead of raising."""
        try:
            return Ok(await self.process(segment, artifacts))
        except AnalysisError as exc:
            return Err(exc)
        except Exception as exc:
            logger.exception("Unexpected error processing chunk %d", segment.index)
            error = AnalysisError(
                f"Chunk {segment.index} failed: {exc}", segment_index=segment.index
            )
            error.__cause__ = exc
            return Err(error)

    async def process(self, segment: Segment, artifacts: ArtifactSet) -> SegmentResult:
        """Analyse one segment.

        Raises:
            AnalysisError: The segment video is gone, no frame could be
                captured, or inference failed or returned an invalid answer.
        """
        logger.info("Processing chunk %d (%gs - %gs)", segment.index, segment.start, segment.end)

        if not segment.video_path.exists():
            raise AnalysisError(
                f"Video chunk file does not exist: {segment.video_path}",
                segment_index=segment.index,
            )

        frames_dir = artifacts.frames_dir(segment.index)
        try:
            frames = await asyncio.to_thread(
                self.extractor.extract_still_images,
                segment.video_path,
                self.config.frame_offsets,
                frames_dir,
            )
            if not frames:
                raise AnalysisError(
                    f"Failed to extract any frames from chunk {segment.index}; "
                    "cannot analyse mood without visual data",
                    segment_index=segment.index,
                )

            mood = await self._analyse(segment, frames)
            frame_image = self._representative_frame(segment, frames)
        finally:
            remove_path(frames_dir)

        logger.info(
            "Chunk %d processed: %s (confidence: %.2f)",
            segment.index,
            mood.primary_mood,
            mood.confidence,
        )
        return SegmentResult(
            segment_index=segment.index,
            start=segment.start,
            end=segment.end,
            mood=mood,
            frame_image=frame_image,
        )

    async def _analyse(self, segment: Segment, frames: list[FrameImage]) -> MoodAnalysis:
        transcript = ""
        voice_tone = ""
        try:
            if self.config.transcribe_audio:
                transcript = await asyncio.to_thread(self.backend.transcribe, segment.audio_path)
            return await asyncio.to_thread(self.backend.infer, frames, transcript, voice_tone)
        except MoodLensError as exc:
            raise AnalysisError(
                f"Mood analysis failed for chunk {segment.index}: {exc.message}",
                segment_index=segment.index,
            ) from exc

    def _representative_frame(self, segment: Segment, frames: list[FrameImage]) -> str | None:
        """Base64 of the middle frame (the first when there is only one)."""
        frame = frames[len(frames) // 2]
        if not verify_artifact(frame.path):
            logger.warning("Representative frame missing or empty for chunk %d", segment.index)
            return None
        try:
            encoded = frame_to_base64(frame.path)
        except OSError:
            logger.warning(
                "Failed to read representative frame for chunk %d", segment.index, exc_info=True
            )
            return None
        logger.debug(
            "Representative frame for chunk %d: %.2f KB", segment.index, len(encoded) * 3 / 4 / 1024
        )
        return encoded or None
