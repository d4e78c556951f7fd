"""Error taxonomy for the analysis pipeline.

Every error carries a stable ``code`` and the HTTP ``status_code`` the API
returns for it. Segment-level errors (extraction, verification) are absorbed
by the orchestrator; analysis errors on a surviving segment abort the run.
"""

from __future__ import annotations


class MoodLensError(Exception):
    """Base class for all pipeline errors."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class InvalidSourceError(MoodLensError):
    code = "INVALID_SOURCE"
    status_code = 400

    def __init__(self, source: str) -> None:
        super().__init__(f"Invalid YouTube URL: {source}")
        self.source = source


# --- Source acquisition ---------------------------------------------------


class AcquisitionError(MoodLensError):
    """The source could not be fetched or its duration is unusable."""

    code = "ACQUISITION_ERROR"
    status_code = 502


class SourceUnavailableError(AcquisitionError):
    code = "SOURCE_UNAVAILABLE"
    status_code = 400

    def __init__(self, reason: str = "it may be deleted or region-locked") -> None:
        super().__init__(f"Video is unavailable: {reason}")


class PrivateSourceError(AcquisitionError):
    code = "SOURCE_PRIVATE"
    status_code = 400

    def __init__(self) -> None:
        super().__init__("This video is private and cannot be accessed")


class AgeRestrictedError(AcquisitionError):
    code = "SOURCE_AGE_RESTRICTED"
    status_code = 400

    def __init__(self) -> None:
        super().__init__(
            "This video is age-restricted and cannot be processed without authentication"
        )


# --- Segment preparation --------------------------------------------------


class ExtractionError(MoodLensError):
    """ffmpeg failed to produce a segment artifact."""

    code = "EXTRACTION_ERROR"


class IntegrityError(MoodLensError):
    """No segment survived extraction and verification."""

    code = "INTEGRITY_ERROR"


# --- Analysis -------------------------------------------------------------


class AnalysisError(MoodLensError):
    """A single segment's analysis pipeline failed."""

    code = "ANALYSIS_ERROR"

    def __init__(self, message: str, *, segment_index: int | None = None) -> None:
        super().__init__(message)
        self.segment_index = segment_index


class InferenceError(MoodLensError):
    """The multimodal model call failed or returned an unusable answer."""

    code = "INFERENCE_ERROR"
    status_code = 502


class InferenceQuotaError(InferenceError):
    code = "INFERENCE_QUOTA_EXCEEDED"
    status_code = 429


class InferenceRateLimitError(InferenceError):
    code = "INFERENCE_RATE_LIMIT"
    status_code = 429


class InferenceAuthError(InferenceError):
    code = "INFERENCE_AUTH_ERROR"


class InferenceContentFilterError(InferenceError):
    code = "INFERENCE_CONTENT_FILTER"


class InferenceValidationError(InferenceError):
    code = "INFERENCE_INVALID_RESULT"


# --- Job queue ------------------------------------------------------------


class JobTimeoutError(MoodLensError):
    code = "JOB_TIMEOUT"
    status_code = 504

    def __init__(self, job_id: str, timeout: float) -> None:
        super().__init__(f"Job {job_id} did not finish within {timeout:g}s")
        self.job_id = job_id
        self.timeout = timeout


class JobFailedError(MoodLensError):
    """Queue-layer wrapper around the worker's failure reason."""

    code = "JOB_FAILED"

    def __init__(self, job_id: str, cause: BaseException) -> None:
        super().__init__(f"Job {job_id} failed: {cause}")
        self.job_id = job_id
        self.cause = cause
        # Surface the root cause's status (e.g. 429 for quota) when it has one.
        root = cause.__cause__ if isinstance(cause, AnalysisError) else cause
        self.status_code = getattr(root, "status_code", None) or getattr(
            cause, "status_code", 500
        )


class CacheError(MoodLensError):
    """Cache backend failure. Always recovered inside ResultCache."""

    code = "CACHE_ERROR"
