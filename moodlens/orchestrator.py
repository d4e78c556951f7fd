"""End-to-end analysis: cache -> acquire -> split -> verify -> queue -> aggregate -> cache."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol

from moodlens.analysis.aggregator import aggregate
from moodlens.analysis.models import AggregatedResult
from moodlens.cache.result_cache import CacheStats, ResultCache
from moodlens.errors import AcquisitionError, ExtractionError, IntegrityError, InvalidSourceError
from moodlens.media.artifacts import ArtifactSet, remove_path
from moodlens.media.extraction import plan_segments, verify_artifact
from moodlens.media.models import Segment
from moodlens.media.source import is_valid_video_id, parse_video_id
from moodlens.pipeline_config import PipelineConfig
from moodlens.queue.job_queue import JobQueue
from moodlens.queue.models import JobHandle

logger = logging.getLogger(__name__)


class MediaSource(Protocol):
    def get_duration_seconds(self, url: str) -> int: ...

    def fetch(self, url: str, destination: Path) -> Path: ...


class SegmentSplitter(Protocol):
    def split_segment(
        self, source: Path, start: float, end: float, out_dir: Path
    ) -> tuple[Path, Path]: ...


def parse_source_id(url: str) -> str:
    """Return the video id for ``url`` or raise InvalidSourceError."""
    video_id = parse_video_id(url)
    if video_id is None:
        raise InvalidSourceError(url)
    return video_id


def verify_segment(segment: Segment) -> bool:
    """Both the video and audio artifacts exist and are non-empty."""
    video_ok = verify_artifact(segment.video_path)
    audio_ok = verify_artifact(segment.audio_path)
    if not (video_ok and audio_ok):
        logger.error(
            "Chunk %d verification failed: video=%s, audio=%s",
            segment.index,
            video_ok,
            audio_ok,
        )
        return False
    return True


class Orchestrator:
    """Coordinates one ``analyze`` call from URL to cached AggregatedResult."""

    def __init__(
        self,
        source: MediaSource,
        extractor: SegmentSplitter,
        queue: JobQueue,
        cache: ResultCache,
        config: PipelineConfig,
        temp_dir: str | Path = "./temp",
    ) -> None:
        self.source = source
        self.extractor = extractor
        self.queue = queue
        self.cache = cache
        self.config = config
        self.temp_dir = Path(temp_dir)

    async def analyze(self, url: str) -> AggregatedResult:
        """Analyse the video at ``url``.

        Raises:
            InvalidSourceError: ``url`` is not a recognisable YouTube URL.
            AcquisitionError: Metadata or download failed, or duration <= 0.
            IntegrityError: No segment survived extraction and verification.
            JobFailedError: A surviving segment's analysis failed.
            JobTimeoutError: A segment's analysis did not finish in time.
        """
        video_id = parse_source_id(url)
        logger.info("Starting analysis for video %s", video_id)

        if self.cache.is_available():
            cached = await self.cache.get(video_id)
            if cached is not None:
                logger.info("Returning cached result for video %s", video_id)
                return cached
            logger.info("Cache MISS for video %s; processing from scratch", video_id)
        else:
            logger.debug("Cache not available; processing from scratch")

        artifacts = ArtifactSet.create(self.temp_dir)
        handles: list[JobHandle] = []
        try:
            segments = await self._prepare_segments(url, artifacts)

            verified = [s for s in segments if verify_segment(s)]
            if not verified:
                raise IntegrityError(
                    "No valid chunks were extracted. Check the ffmpeg installation and video format."
                )
            logger.info("Verified %d chunks, creating jobs", len(verified))

            for segment in verified:
                handles.append(await self.queue.submit(segment, artifacts))
            results = await self.queue.await_all(handles)
            logger.info("All %d chunks processed", len(results))

            results.sort(key=lambda r: r.segment_index)
            aggregated = aggregate(results)

            await self._store(video_id, aggregated)
            logger.info("Analysis complete. Overall mood: %s", aggregated.overall_mood)
            return aggregated
        except Exception as exc:
            logger.error("Analysis of video %s failed: %s", video_id, exc)
            raise
        finally:
            self.queue.release(handles)
            artifacts.release()

    async def _prepare_segments(self, url: str, artifacts: ArtifactSet) -> list[Segment]:
        duration = await asyncio.to_thread(self.source.get_duration_seconds, url)
        if duration <= 0:
            raise AcquisitionError("Invalid video duration. Cannot process this video.")

        spans = plan_segments(duration, self.config.segment_duration)
        logger.info("Video is %ss long; splitting into %d chunks", duration, len(spans))

        source_path = await asyncio.to_thread(self.source.fetch, url, artifacts.source_path())

        segments: list[Segment] = []
        for index, start, end in spans:
            out_dir = artifacts.segment_dir(index)
            try:
                video_path, audio_path = await asyncio.to_thread(
                    self.extractor.split_segment, source_path, start, end, out_dir
                )
            except (ExtractionError, OSError) as exc:
                logger.error("Failed to extract chunk %d (%gs-%gs): %s", index, start, end, exc)
                remove_path(out_dir)
                continue
            segments.append(
                Segment(
                    index=index,
                    start=start,
                    end=end,
                    video_path=video_path,
                    audio_path=audio_path,
                )
            )

        remove_path(source_path)
        if len(segments) < len(spans):
            logger.warning(
                "Only extracted %d of %d chunks; missing chunks are skipped",
                len(segments),
                len(spans),
            )
        return segments

    async def _store(self, video_id: str, result: AggregatedResult) -> None:
        if not self.cache.is_available():
            return
        try:
            await self.cache.set(video_id, result, self.config.cache_ttl)
        except Exception:
            logger.exception("Failed to cache result for video %s", video_id)

    async def invalidate(self, id_or_url: str) -> str:
        """Drop the cached result for a video id or URL and return the id."""
        value = id_or_url.strip()
        video_id = value if is_valid_video_id(value) else parse_source_id(value)
        await self.cache.invalidate(video_id)
        return video_id

    async def cache_stats(self) -> CacheStats:
        return await self.cache.stats()
