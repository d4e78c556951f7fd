"""Per-run ownership of on-disk artifacts.

An ArtifactSet is created by the orchestrator for one ``analyze`` call and
handed to workers by reference. Each segment gets a disjoint subtree, so no
locking is needed while indices are unique. ``release`` removes everything.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path
from types import TracebackType

from moodlens.errors import AnalysisError

logger = logging.getLogger(__name__)


class ArtifactSet:
    """Explicit handle over the temp directory of a single analysis run."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._released = False

    @classmethod
    def create(cls, temp_dir: str | Path) -> ArtifactSet:
        root = Path(temp_dir) / uuid.uuid4().hex
        root.mkdir(parents=True, exist_ok=True)
        return cls(root)

    @property
    def released(self) -> bool:
        return self._released

    def source_path(self, name: str = "video.mp4") -> Path:
        return self.root / name

    def segment_dir(self, index: int) -> Path:
        return self._ensure(self.root / f"chunk_{index}")

    def frames_dir(self, index: int) -> Path:
        """Directory for a segment's transient still images.

        Raises AnalysisError once the set has been released: a worker still
        running after its run failed elsewhere must not recreate the tree.
        """
        if self._released:
            raise AnalysisError(
                f"Artifacts for chunk {index} were released before frame extraction",
                segment_index=index,
            )
        return self._ensure(self.root / f"chunk_{index}" / "frames")

    def _ensure(self, path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        return path

    def release(self) -> None:
        """Delete every artifact of the run. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        try:
            shutil.rmtree(self.root)
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Failed to clean up artifacts under %s", self.root, exc_info=True)
        else:
            logger.debug("Released artifacts under %s", self.root)

    def __enter__(self) -> ArtifactSet:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


def remove_path(path: Path) -> None:
    """Best-effort removal of a file or directory."""
    try:
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)
    except OSError:
        logger.warning("Failed to clean up %s", path, exc_info=True)
