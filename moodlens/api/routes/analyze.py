"""Analyze endpoints: run an analysis, inspect and invalidate the result cache."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Body, Depends

from moodlens.api.dependencies import get_orchestrator
from moodlens.api.models import (
    AnalyzeRequest,
    AnalyzeResponse,
    CacheStatsEnvelope,
    CacheStatsResponse,
    InvalidateCacheRequest,
    MessageResponse,
)
from moodlens.orchestrator import Orchestrator, parse_source_id

router = APIRouter(prefix="/api/analyze", tags=["analyze"])

OrchestratorDep = Annotated[Orchestrator, Depends(get_orchestrator)]


@router.post("", response_model=AnalyzeResponse)
async def analyze(request: AnalyzeRequest, orchestrator: OrchestratorDep) -> AnalyzeResponse:
    """Analyse the mood of a YouTube video, serving from cache when possible."""
    parse_source_id(request.youtube_url)
    result = await orchestrator.analyze(request.youtube_url)
    return AnalyzeResponse(data=result)


@router.get("/cache/stats", response_model=CacheStatsEnvelope)
async def cache_stats(orchestrator: OrchestratorDep) -> CacheStatsEnvelope:
    stats = await orchestrator.cache_stats()
    return CacheStatsEnvelope(data=CacheStatsResponse(available=stats.available, keys=stats.keys))


@router.delete("/cache/{video_id}", response_model=MessageResponse)
async def invalidate_cache(video_id: str, orchestrator: OrchestratorDep) -> MessageResponse:
    resolved = await orchestrator.invalidate(video_id)
    return MessageResponse(message=f"Cache invalidated for video: {resolved}")


@router.delete("/cache", response_model=MessageResponse)
async def invalidate_cache_by_url(
    request: Annotated[InvalidateCacheRequest, Body()],
    orchestrator: OrchestratorDep,
) -> MessageResponse:
    """Invalidate the cached result for the video behind a YouTube URL."""
    video_id = parse_source_id(request.youtube_url)
    resolved = await orchestrator.invalidate(video_id)
    return MessageResponse(message=f"Cache invalidated for video: {resolved}")
