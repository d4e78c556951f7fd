"""Completion channels: publish/subscribe notifications that a job reached a terminal state.

A channel only says *that* a job finished; the outcome itself is read from the
JobStore, so every awaiter observes the same return value or failure reason.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

COMPLETION_CHANNEL = "moodlens:jobs:completed"


class CompletionChannel(Protocol):
    async def connect(self) -> None:
        """Establish the channel. Raises when it cannot be used."""

    def subscribe(self, job_id: str) -> asyncio.Future[None]:
        """Return a future resolved when ``job_id`` is published."""

    def unsubscribe(self, job_id: str, future: asyncio.Future[None]) -> None: ...

    async def publish(self, job_id: str) -> None: ...

    async def close(self) -> None: ...


class _Subscriptions:
    """Futures keyed by job id, shared by the channel implementations."""

    def __init__(self) -> None:
        self._waiters: dict[str, list[asyncio.Future[None]]] = {}

    def add(self, job_id: str) -> asyncio.Future[None]:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(job_id, []).append(future)
        return future

    def remove(self, job_id: str, future: asyncio.Future[None]) -> None:
        futures = self._waiters.get(job_id, [])
        if future in futures:
            futures.remove(future)
        if not futures:
            self._waiters.pop(job_id, None)
        if not future.done():
            future.cancel()

    def resolve(self, job_id: str) -> None:
        for future in self._waiters.pop(job_id, []):
            if not future.done():
                future.set_result(None)

    def cancel_all(self) -> None:
        for futures in self._waiters.values():
            for future in futures:
                if not future.done():
                    future.cancel()
        self._waiters.clear()


class LocalCompletionChannel:
    """In-process channel for a single event loop."""

    def __init__(self) -> None:
        self._subs = _Subscriptions()
        self._connected = False

    async def connect(self) -> None:
        asyncio.get_running_loop()
        self._connected = True

    def subscribe(self, job_id: str) -> asyncio.Future[None]:
        return self._subs.add(job_id)

    def unsubscribe(self, job_id: str, future: asyncio.Future[None]) -> None:
        self._subs.remove(job_id, future)

    async def publish(self, job_id: str) -> None:
        self._subs.resolve(job_id)

    async def close(self) -> None:
        self._subs.cancel_all()
        self._connected = False


class RedisCompletionChannel:
    """Redis pub/sub channel; a background listener resolves subscriptions."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        password: str = "",
        connect_timeout: float = 5.0,
        channel: str = COMPLETION_CHANNEL,
    ) -> None:
        self.channel = channel
        self._client_kwargs: dict[str, Any] = {
            "host": host,
            "port": port,
            "password": password or None,
            "socket_connect_timeout": connect_timeout,
            "decode_responses": True,
        }
        self._client: aioredis.Redis | None = None
        self._pubsub: Any = None
        self._listener: asyncio.Task[None] | None = None
        self._subs = _Subscriptions()

    async def connect(self) -> None:
        client = aioredis.Redis(**self._client_kwargs)
        try:
            await client.ping()
            pubsub = client.pubsub()
            await pubsub.subscribe(self.channel)
        except (RedisError, OSError):
            await client.aclose()
            raise
        self._client = client
        self._pubsub = pubsub
        self._listener = asyncio.create_task(self._listen(), name="completion-listener")
        logger.info("Completion events subscribed on Redis channel %s", self.channel)

    async def _listen(self) -> None:
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                self._subs.resolve(str(message["data"]))
        except asyncio.CancelledError:
            raise
        except (RedisError, OSError):
            # Waiters stay bounded by their own timeouts.
            logger.exception("Completion event listener stopped")

    def subscribe(self, job_id: str) -> asyncio.Future[None]:
        return self._subs.add(job_id)

    def unsubscribe(self, job_id: str, future: asyncio.Future[None]) -> None:
        self._subs.remove(job_id, future)

    async def publish(self, job_id: str) -> None:
        # Local waiters are released directly; the echo from Redis is then a no-op.
        self._subs.resolve(job_id)
        if self._client is None:
            return
        try:
            await self._client.publish(self.channel, job_id)
        except (RedisError, OSError):
            logger.warning("Failed to publish completion of %s", job_id, exc_info=True)

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._subs.cancel_all()
