from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # OpenAI
    openai_api_key: str = ""
    llm_model: str = "gpt-4o"
    llm_fallback_model: str = "gpt-4-vision-preview"
    llm_max_tokens: int = 800
    llm_temperature: float = 0.3
    whisper_model: str = "whisper-1"
    transcribe_audio: bool = False  # Whisper transcript per segment; visual-only when off

    # Redis (result cache + job completion events)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_connect_timeout: float = 5.0

    # Cache
    cache_ttl: int = 24 * 60 * 60

    # Media
    temp_dir: str = "./temp"
    ffmpeg_bin: str = "ffmpeg"
    segment_duration: float = 15.0
    frame_offsets: list[float] = [0.0, 7.5]
    frame_max_width: int = 512
    frame_jpeg_quality: int = 5
    audio_sample_rate: int = 16000

    # Job queue
    worker_concurrency: int = 4
    job_timeout: float = 5 * 60
    job_poll_interval: float = 0.5
    completion_strategy: str = "events"

    # Source acquisition
    source_retry_attempts: int = 3
    source_retry_delay: float = 1.0

    # App config
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    frontend_url: str = "http://localhost:3000"
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Gracefully handles missing .env files (e.g. in CI/testing) by falling
    back to environment variables and defaults.
    """
    try:
        return Settings()
    except Exception:
        # If .env is missing or unreadable, build settings from env vars only.
        return Settings(_env_file=None)  # type: ignore[call-arg]


settings = get_settings()
