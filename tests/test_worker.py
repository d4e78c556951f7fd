"""Tests for the per-segment worker (fake extractor, mocked inference backend)."""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Sequence
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from moodlens.analysis.models import MoodAnalysis
from moodlens.analysis.worker import ChunkWorker
from moodlens.errors import AnalysisError, InferenceQuotaError
from moodlens.media.artifacts import ArtifactSet
from moodlens.media.models import FrameImage, Segment
from moodlens.pipeline_config import PipelineConfig
from moodlens.queue.models import Err, Ok


class FakeExtractor:
    """Writes a small distinct JPEG-ish file per offset, skipping ``fail_offsets``."""

    def __init__(self, fail_offsets: Sequence[float] = ()) -> None:
        self.fail_offsets = set(fail_offsets)
        self.calls: list[Path] = []

    def extract_still_images(
        self, video_path: Path, offsets: Sequence[float], out_dir: Path
    ) -> list[FrameImage]:
        self.calls.append(out_dir)
        frames = []
        for offset in offsets:
            if offset in self.fail_offsets:
                continue
            path = out_dir / f"frame_{offset:g}s.jpg"
            path.write_bytes(f"frame@{offset:g}".encode())
            frames.append(FrameImage(timestamp=offset, path=path))
        return frames


def _backend(mood: str = "happy", confidence: float = 0.9) -> MagicMock:
    backend = MagicMock()
    backend.infer.return_value = MoodAnalysis(
        primary_mood=mood, intensity=0.7, confidence=confidence
    )
    backend.transcribe.return_value = "hello there"
    return backend


@pytest.fixture()
def artifacts(tmp_path: Path) -> ArtifactSet:
    return ArtifactSet.create(tmp_path)


def _segment(artifacts: ArtifactSet, index: int = 0, with_video: bool = True) -> Segment:
    out_dir = artifacts.segment_dir(index)
    video = out_dir / "video.mp4"
    audio = out_dir / "audio.wav"
    if with_video:
        video.write_bytes(b"video")
        audio.write_bytes(b"audio")
    return Segment(index=index, start=15.0 * index, end=15.0 * (index + 1), video_path=video, audio_path=audio)


class TestChunkWorker:
    def test_success_uses_middle_frame(self, artifacts: ArtifactSet) -> None:
        config = PipelineConfig(frame_offsets=(0.0, 5.0, 10.0))
        extractor = FakeExtractor()
        worker = ChunkWorker(extractor, _backend(), config)  # type: ignore[arg-type]

        outcome = asyncio.run(worker.run(_segment(artifacts, index=2), artifacts))

        assert isinstance(outcome, Ok)
        result = outcome.value
        assert result.segment_index == 2
        assert (result.start, result.end) == (30.0, 45.0)
        assert result.primary_mood == "happy"
        assert result.confidence == 0.9
        assert base64.b64decode(result.frame_image) == b"frame@5"
        # Transient frames are removed once the segment is done.
        assert not extractor.calls[0].exists()

    def test_single_frame_is_representative(self, artifacts: ArtifactSet) -> None:
        config = PipelineConfig(frame_offsets=(0.0, 7.5))
        worker = ChunkWorker(FakeExtractor(fail_offsets=[7.5]), _backend(), config)  # type: ignore[arg-type]

        outcome = asyncio.run(worker.run(_segment(artifacts), artifacts))

        assert isinstance(outcome, Ok)
        assert base64.b64decode(outcome.value.frame_image) == b"frame@0"

    def test_missing_video(self, artifacts: ArtifactSet) -> None:
        backend = _backend()
        worker = ChunkWorker(FakeExtractor(), backend, PipelineConfig())  # type: ignore[arg-type]

        outcome = asyncio.run(worker.run(_segment(artifacts, with_video=False), artifacts))

        assert isinstance(outcome, Err)
        assert "does not exist" in outcome.error.message
        backend.infer.assert_not_called()

    def test_no_frames(self, artifacts: ArtifactSet) -> None:
        backend = _backend()
        extractor = FakeExtractor(fail_offsets=[0.0, 7.5])
        worker = ChunkWorker(extractor, backend, PipelineConfig())  # type: ignore[arg-type]

        outcome = asyncio.run(worker.run(_segment(artifacts), artifacts))

        assert isinstance(outcome, Err)
        assert outcome.error.segment_index == 0
        backend.infer.assert_not_called()
        assert not extractor.calls[0].exists()

    def test_inference_failure_keeps_cause(self, artifacts: ArtifactSet) -> None:
        backend = _backend()
        backend.infer.side_effect = InferenceQuotaError("quota exceeded")
        worker = ChunkWorker(FakeExtractor(), backend, PipelineConfig())  # type: ignore[arg-type]

        outcome = asyncio.run(worker.run(_segment(artifacts), artifacts))

        assert isinstance(outcome, Err)
        assert isinstance(outcome.error, AnalysisError)
        assert isinstance(outcome.error.__cause__, InferenceQuotaError)
        assert "quota exceeded" in outcome.error.message

    def test_unexpected_error_is_wrapped(self, artifacts: ArtifactSet) -> None:
        backend = _backend()
        backend.infer.side_effect = RuntimeError("socket closed")
        worker = ChunkWorker(FakeExtractor(), backend, PipelineConfig())  # type: ignore[arg-type]

        outcome = asyncio.run(worker.run(_segment(artifacts), artifacts))

        assert isinstance(outcome, Err)
        assert isinstance(outcome.error.__cause__, RuntimeError)

    def test_transcribes_when_enabled(self, artifacts: ArtifactSet) -> None:
        backend = _backend()
        segment = _segment(artifacts)
        worker = ChunkWorker(FakeExtractor(), backend, PipelineConfig(transcribe_audio=True))  # type: ignore[arg-type]

        outcome = asyncio.run(worker.run(segment, artifacts))

        assert isinstance(outcome, Ok)
        backend.transcribe.assert_called_once_with(segment.audio_path)
        assert backend.infer.call_args.args[1] == "hello there"

    def test_visual_only_by_default(self, artifacts: ArtifactSet) -> None:
        backend = _backend()
        worker = ChunkWorker(FakeExtractor(), backend, PipelineConfig())  # type: ignore[arg-type]

        asyncio.run(worker.run(_segment(artifacts), artifacts))

        backend.transcribe.assert_not_called()

    def test_released_artifacts(self, artifacts: ArtifactSet) -> None:
        segment = _segment(artifacts)
        artifacts.release()
        segment.video_path.parent.mkdir(parents=True)
        segment.video_path.write_bytes(b"video")
        worker = ChunkWorker(FakeExtractor(), _backend(), PipelineConfig())  # type: ignore[arg-type]

        outcome = asyncio.run(worker.run(segment, artifacts))

        assert isinstance(outcome, Err)
        assert "released" in outcome.error.message
