"""Service wiring: build the pipeline for the app lifespan and expose it to routes."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request

from moodlens.analysis.inference import MoodInferenceBackend
from moodlens.analysis.worker import ChunkWorker
from moodlens.cache.result_cache import ResultCache, redis_client_factory
from moodlens.config import Settings
from moodlens.media.extraction import FfmpegExtractor
from moodlens.media.source import YouTubeSource
from moodlens.orchestrator import Orchestrator
from moodlens.pipeline_config import PipelineConfig
from moodlens.queue.channels import RedisCompletionChannel
from moodlens.queue.job_queue import JobQueue

logger = logging.getLogger(__name__)


@dataclass
class Services:
    orchestrator: Orchestrator
    cache: ResultCache
    queue: JobQueue

    async def close(self) -> None:
        await self.queue.close()
        await self.cache.close()


async def build_services(settings: Settings) -> Services:
    """Create and connect every pipeline component from ``settings``."""
    config = PipelineConfig.from_settings(settings)

    cache = ResultCache(
        redis_client_factory(
            host=settings.redis_host,
            port=settings.redis_port,
            password=settings.redis_password,
            connect_timeout=settings.redis_connect_timeout,
        ),
        default_ttl=settings.cache_ttl,
    )
    await cache.connect()

    extractor = FfmpegExtractor(
        ffmpeg_bin=settings.ffmpeg_bin,
        frame_max_width=settings.frame_max_width,
        frame_jpeg_quality=settings.frame_jpeg_quality,
        audio_sample_rate=settings.audio_sample_rate,
    )
    backend = MoodInferenceBackend(
        api_key=settings.openai_api_key,
        model=settings.llm_model,
        fallback_model=settings.llm_fallback_model,
        max_tokens=settings.llm_max_tokens,
        temperature=settings.llm_temperature,
        whisper_model=settings.whisper_model,
    )
    channel = RedisCompletionChannel(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password,
        connect_timeout=settings.redis_connect_timeout,
    )
    queue = await JobQueue.create(ChunkWorker(extractor, backend, config), config, channel)

    source = YouTubeSource(
        retry_attempts=settings.source_retry_attempts,
        retry_delay=settings.source_retry_delay,
    )
    orchestrator = Orchestrator(source, extractor, queue, cache, config, settings.temp_dir)
    logger.info(
        "Pipeline ready (workers=%d, cache=%s)",
        config.worker_concurrency,
        "on" if cache.is_available() else "off",
    )
    return Services(orchestrator=orchestrator, cache=cache, queue=queue)


def get_services(request: Request) -> Services:
    return request.app.state.services  # type: ignore[no-any-return]


def get_orchestrator(request: Request) -> Orchestrator:
    return get_services(request).orchestrator
