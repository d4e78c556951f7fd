"""Tests for completion channels (Redis client patched with an in-memory fake)."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from moodlens.queue.channels import LocalCompletionChannel, RedisCompletionChannel


class FakePubSub:
    def __init__(self, bus: asyncio.Queue[dict[str, Any]]) -> None:
        self.bus = bus
        self.channels: list[str] = []
        self.closed = False

    async def subscribe(self, channel: str) -> None:
        self.channels.append(channel)

    async def listen(self) -> AsyncIterator[dict[str, Any]]:
        yield {"type": "subscribe", "data": 1}
        while True:
            yield await self.bus.get()

    async def aclose(self) -> None:
        self.closed = True


class FakeRedis:
    instances: list[FakeRedis] = []

    def __init__(self, *, fail_ping: bool = False, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.fail_ping = fail_ping
        self.bus: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.published: list[tuple[str, str]] = []
        self.pubsub_obj = FakePubSub(self.bus)
        self.closed = False
        FakeRedis.instances.append(self)

    async def ping(self) -> bool:
        if self.fail_ping:
            raise RedisConnectionError("connection refused")
        return True

    def pubsub(self) -> FakePubSub:
        return self.pubsub_obj

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        await self.bus.put({"type": "message", "channel": channel, "data": message})
        return 1

    async def aclose(self) -> None:
        self.closed = True


class TestLocalCompletionChannel:
    def test_publish_resolves_subscribers(self) -> None:
        async def scenario() -> bool:
            channel = LocalCompletionChannel()
            await channel.connect()
            first = channel.subscribe("chunk-0-a")
            second = channel.subscribe("chunk-0-a")
            other = channel.subscribe("chunk-1-b")
            await channel.publish("chunk-0-a")
            await asyncio.gather(first, second)
            return other.done()

        assert asyncio.run(scenario()) is False

    def test_close_cancels_pending(self) -> None:
        async def scenario() -> bool:
            channel = LocalCompletionChannel()
            pending = channel.subscribe("chunk-0-a")
            await channel.close()
            return pending.cancelled()

        assert asyncio.run(scenario())


class TestRedisCompletionChannel:
    def setup_method(self) -> None:
        FakeRedis.instances.clear()

    def test_round_trip_through_redis(self) -> None:
        async def scenario() -> FakeRedis:
            channel = RedisCompletionChannel(password="secret", channel="test:jobs")
            await channel.connect()
            client = FakeRedis.instances[0]
            notified = channel.subscribe("chunk-3-c")
            await channel.publish("chunk-3-c")
            await asyncio.wait_for(notified, 1.0)
            await channel.close()
            return client

        with patch("moodlens.queue.channels.aioredis.Redis", FakeRedis):
            client = asyncio.run(scenario())

        assert client.kwargs["password"] == "secret"
        assert client.pubsub_obj.channels == ["test:jobs"]
        assert client.published == [("test:jobs", "chunk-3-c")]
        assert client.pubsub_obj.closed
        assert client.closed

    def test_message_from_another_process(self) -> None:
        async def scenario() -> None:
            channel = RedisCompletionChannel()
            await channel.connect()
            notified = channel.subscribe("chunk-5-e")
            await FakeRedis.instances[0].bus.put({"type": "message", "data": "chunk-5-e"})
            await asyncio.wait_for(notified, 1.0)
            await channel.close()

        with patch("moodlens.queue.channels.aioredis.Redis", FakeRedis):
            asyncio.run(scenario())

    def test_connect_failure_closes_client(self) -> None:
        def failing(**kwargs: Any) -> FakeRedis:
            return FakeRedis(fail_ping=True, **kwargs)

        async def scenario() -> None:
            await RedisCompletionChannel().connect()

        with patch("moodlens.queue.channels.aioredis.Redis", failing):
            with pytest.raises(RedisConnectionError):
                asyncio.run(scenario())
        assert FakeRedis.instances[0].closed

    def test_publish_before_connect_still_releases_local_waiters(self) -> None:
        async def scenario() -> None:
            channel = RedisCompletionChannel()
            notified = channel.subscribe("chunk-0-a")
            await channel.publish("chunk-0-a")
            await asyncio.wait_for(notified, 1.0)

        asyncio.run(scenario())
