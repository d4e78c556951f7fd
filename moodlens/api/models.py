"""Pydantic request/response schemas for the MoodLens API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from moodlens.analysis.models import AggregatedResult


class AnalyzeRequest(BaseModel):
    """Request body for POST /api/analyze."""

    youtube_url: str = Field(min_length=1)


class InvalidateCacheRequest(BaseModel):
    """Request body for DELETE /api/analyze/cache."""

    youtube_url: str = Field(min_length=1)


class CacheStatsResponse(BaseModel):
    available: bool
    keys: int


class AnalyzeResponse(BaseModel):
    """Success envelope around an AggregatedResult."""

    success: bool = True
    data: AggregatedResult


class CacheStatsEnvelope(BaseModel):
    success: bool = True
    data: CacheStatsResponse


class MessageResponse(BaseModel):
    """Success envelope for operations without a payload."""

    success: bool = True
    message: str


class ErrorDetail(BaseModel):
    message: str
    code: str
    status_code: int
    timestamp: str
    path: str
    method: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorDetail
