"""Source acquisition: YouTube URL parsing, metadata lookup and download via yt-dlp."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlparse

from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadError

from moodlens.errors import (
    AcquisitionError,
    AgeRestrictedError,
    PrivateSourceError,
    SourceUnavailableError,
)

logger = logging.getLogger(__name__)

_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")

_YOUTUBE_HOSTS = {
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "music.youtube.com",
    "gaming.youtube.com",
    "youtube-nocookie.com",
    "www.youtube-nocookie.com",
}

# Path prefixes whose next segment is the video id, e.g. /shorts/<id>
_ID_PATH_PREFIXES = ("embed", "v", "shorts", "live", "e")

# Format preference: 360p progressive mp4, then the smallest muxed stream, then anything.
DOWNLOAD_FORMATS = ("22", "worst[vcodec!=none][acodec!=none]", "worst")


def is_valid_video_id(value: str) -> bool:
    return bool(_VIDEO_ID_RE.match(value))


def parse_video_id(url: str) -> str | None:
    """Return the 11-character YouTube video id for ``url``, or None.

    Pure string parsing; never touches the network.
    """
    if not url or not isinstance(url, str):
        return None
    raw = url.strip()
    if "://" not in raw:
        raw = f"https://{raw}"
    try:
        parsed = urlparse(raw)
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https"):
        return None

    host = (parsed.hostname or "").lower()
    parts = [p for p in parsed.path.split("/") if p]

    candidate: str | None = None
    if host in ("youtu.be", "www.youtu.be"):
        candidate = parts[0] if parts else None
    elif host in _YOUTUBE_HOSTS:
        if parts[:1] == ["watch"]:
            candidate = parse_qs(parsed.query).get("v", [None])[0]
        elif len(parts) >= 2 and parts[0] in _ID_PATH_PREFIXES:
            candidate = parts[1]

    if candidate and is_valid_video_id(candidate):
        return candidate
    return None


def is_valid_url(url: str) -> bool:
    return parse_video_id(url) is not None


def _classify_download_error(message: str) -> AcquisitionError | None:
    """Map a known provider error message to a distinguishable error kind."""
    if "confirm your age" in message or "age-restricted" in message.lower():
        return AgeRestrictedError()
    if "Private video" in message:
        return PrivateSourceError()
    if "Video unavailable" in message or "This video is not available" in message:
        return SourceUnavailableError()
    return None


class YouTubeSource:
    """Fetches metadata and media for a YouTube URL.

    Metadata lookups retry transient extractor failures with linear back-off;
    known provider conditions (private, age-restricted, unavailable) fail
    immediately with their own error kind.
    """

    def __init__(
        self,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        ydl_factory: Callable[[dict[str, Any]], Any] = YoutubeDL,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self._ydl_factory = ydl_factory
        self._sleep = sleep

    def validate(self, url: str) -> bool:
        return is_valid_url(url)

    def get_id(self, url: str) -> str | None:
        return parse_video_id(url)

    def get_info(self, url: str) -> dict[str, Any]:
        opts = {"quiet": True, "no_warnings": True, "skip_download": True}
        last_error: Exception | None = None

        for attempt in range(1, self.retry_attempts + 1):
            try:
                with self._ydl_factory(opts) as ydl:
                    info = ydl.extract_info(url, download=False)
                if not info:
                    raise AcquisitionError(f"No video information returned for {url}")
                return dict(info)
            except DownloadError as exc:
                known = _classify_download_error(str(exc))
                if known is not None:
                    raise known from exc
                last_error = exc
                logger.warning(
                    "Video info lookup failed (attempt %d/%d): %s",
                    attempt,
                    self.retry_attempts,
                    exc,
                )
                if attempt < self.retry_attempts:
                    self._sleep(self.retry_delay * attempt)

        raise AcquisitionError(
            f"Failed to get video info after {self.retry_attempts} attempts: {last_error}"
        ) from last_error

    def get_duration_seconds(self, url: str) -> int:
        info = self.get_info(url)
        try:
            return int(info.get("duration") or 0)
        except (TypeError, ValueError):
            return 0

    def fetch(self, url: str, destination: Path) -> Path:
        """Download the video to ``destination`` and return its path."""
        last_error: Exception | None = None

        for fmt in DOWNLOAD_FORMATS:
            opts = {
                "format": fmt,
                "outtmpl": str(destination),
                "quiet": True,
                "no_warnings": True,
                "noprogress": True,
                "overwrites": True,
            }
            try:
                logger.debug("Attempting download at format %s", fmt)
                with self._ydl_factory(opts) as ydl:
                    ydl.download([url])
            except DownloadError as exc:
                known = _classify_download_error(str(exc))
                if known is not None:
                    raise known from exc
                last_error = exc
                logger.warning("Download at format %s failed: %s", fmt, exc)
                continue

            if destination.exists() and destination.stat().st_size > 0:
                logger.info(
                    "Video downloaded at format %s: %s (%d bytes)",
                    fmt,
                    destination,
                    destination.stat().st_size,
                )
                return destination
            last_error = AcquisitionError(f"Download produced no data at format {fmt}")
            logger.warning("Download at format %s produced an empty file", fmt)

        raise AcquisitionError(
            f"Failed to download video at any format. Last error: {last_error}"
        ) from last_error
