"""Segment extraction: split the source into sub-clips and capture still frames with ffmpeg."""

from __future__ import annotations

import base64
import logging
import math
import subprocess
from collections.abc import Callable, Sequence
from pathlib import Path

from moodlens.errors import ExtractionError
from moodlens.media.models import FrameImage

logger = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]

FFMPEG_TIMEOUT_SECONDS = 300


def segment_count(duration: float, segment_duration: float) -> int:
    """Number of segments covering ``duration``: ``ceil(duration / segment_duration)``."""
    if duration <= 0:
        return 0
    return math.ceil(duration / segment_duration)


def plan_segments(duration: float, segment_duration: float) -> list[tuple[int, float, float]]:
    """Return ``(index, start, end)`` spans for a source of ``duration`` seconds.

    Spans are contiguous; only the last one may be shorter than
    ``segment_duration``.
    """
    spans: list[tuple[int, float, float]] = []
    for i in range(segment_count(duration, segment_duration)):
        start = i * segment_duration
        end = min(start + segment_duration, duration)
        spans.append((i, start, end))
    return spans


def verify_artifact(path: Path) -> bool:
    """True when ``path`` exists and is a non-empty file."""
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def frame_to_base64(path: Path) -> str:
    return base64.b64encode(path.read_bytes()).decode("ascii")


class FfmpegExtractor:
    """Thin wrapper over the ffmpeg CLI."""

    def __init__(
        self,
        ffmpeg_bin: str = "ffmpeg",
        frame_max_width: int = 512,
        frame_jpeg_quality: int = 5,
        audio_sample_rate: int = 16000,
        runner: Runner = subprocess.run,
    ) -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.frame_max_width = frame_max_width
        self.frame_jpeg_quality = frame_jpeg_quality
        self.audio_sample_rate = audio_sample_rate
        self._runner = runner

    def _run(self, args: list[str], output: Path) -> None:
        cmd = [self.ffmpeg_bin, "-hide_banner", "-loglevel", "error", "-y", *args, str(output)]
        try:
            result = self._runner(
                cmd, capture_output=True, text=True, timeout=FFMPEG_TIMEOUT_SECONDS
            )
        except FileNotFoundError as exc:
            raise ExtractionError(f"ffmpeg binary not found: {self.ffmpeg_bin}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ExtractionError(f"ffmpeg timed out writing {output.name}") from exc

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()[-500:]
            raise ExtractionError(
                f"ffmpeg failed (exit {result.returncode}) writing {output.name}: {stderr}"
            )
        if not verify_artifact(output):
            raise ExtractionError(f"ffmpeg produced no data for {output.name}")

    def split_segment(
        self, source: Path, start: float, end: float, out_dir: Path
    ) -> tuple[Path, Path]:
        """Cut ``[start, end)`` of ``source`` into a video clip and a mono WAV."""
        duration = end - start
        video_path = out_dir / "video.mp4"
        audio_path = out_dir / "audio.wav"

        self._run(
            ["-ss", f"{start:.3f}", "-i", str(source), "-t", f"{duration:.3f}"],
            video_path,
        )
        self._run(
            [
                "-ss", f"{start:.3f}",
                "-i", str(source),
                "-t", f"{duration:.3f}",
                "-vn",
                "-ac", "1",
                "-ar", str(self.audio_sample_rate),
                "-c:a", "pcm_s16le",
                "-f", "wav",
            ],
            audio_path,
        )
        return video_path, audio_path

    def extract_still_images(
        self, video_path: Path, offsets: Sequence[float], out_dir: Path
    ) -> list[FrameImage]:
        """Capture one JPEG per offset. Offsets that fail are skipped."""
        frames: list[FrameImage] = []
        for offset in offsets:
            frame_path = out_dir / f"frame_{offset:g}s.jpg"
            try:
                self._run(
                    [
                        "-ss", f"{offset:.3f}",
                        "-i", str(video_path),
                        "-frames:v", "1",
                        "-vf", f"scale={self.frame_max_width}:-1",
                        "-q:v", str(self.frame_jpeg_quality),
                    ],
                    frame_path,
                )
            except ExtractionError as exc:
                logger.warning("Failed to extract frame at %gs from %s: %s", offset, video_path, exc)
                continue
            frames.append(FrameImage(timestamp=offset, path=frame_path))

        logger.debug("Extracted %d frames from %s", len(frames), video_path)
        return frames
