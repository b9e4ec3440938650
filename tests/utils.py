from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
from redis import exceptions as redis_exceptions

from app.engine.notes import Note


WEBHOOK_URL = "http://receiver.test/sink"


def make_note(seconds_from_now: float = -5.0, **overrides) -> Note:
    fields = {
        "title": "Reminder",
        "body": "Water the plants",
        "release_at": datetime.now(timezone.utc) + timedelta(seconds=seconds_from_now),
        "webhook_url": WEBHOOK_URL,
    }
    fields.update(overrides)
    return Note(**fields)


class Receiver:
    """Scripted receiving endpoint for httpx.MockTransport."""

    def __init__(self, *statuses: int, delay: float = 0.0):
        # Statuses are consumed in order; the last one repeats. 0 = connection refused.
        self.statuses = list(statuses) or [200]
        self.delay = delay
        self.requests: list[httpx.Request] = []
        self.received_at: list[datetime] = []
        self.concurrent = 0
        self.max_concurrent = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.received_at.append(datetime.now(timezone.utc))
        self.concurrent += 1
        self.max_concurrent = max(self.max_concurrent, self.concurrent)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            if status == 0:
                raise httpx.ConnectError("Connection refused", request=request)
            return httpx.Response(status, json={"ok": 200 <= status < 300})
        finally:
            self.concurrent -= 1


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll an async or sync predicate until it is truthy."""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


class FakeSortedSetRedis:
    """In-memory stand-in for the sorted-set commands the rate limiter pipelines."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.zsets: dict[str, dict[str, float]] = {}
        self.ttls: dict[str, int] = {}
        self.closed = False

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self)

    async def aclose(self):
        self.closed = True

    def _zremrangebyscore(self, key, low, high):
        zset = self.zsets.get(key, {})
        stale = [m for m, score in zset.items() if low <= score <= high]
        for member in stale:
            del zset[member]
        return len(stale)

    def _zcard(self, key):
        return len(self.zsets.get(key, {}))

    def _zrange(self, key, start, end, withscores=False):
        ordered = sorted(self.zsets.get(key, {}).items(), key=lambda item: item[1])
        selected = ordered[start:end + 1] if end >= 0 else ordered[start:]
        if withscores:
            return [(m.encode(), score) for m, score in selected]
        return [m.encode() for m, _ in selected]

    def _zadd(self, key, mapping):
        self.zsets.setdefault(key, {}).update(mapping)
        return len(mapping)

    def _expire(self, key, seconds):
        self.ttls[key] = seconds
        return True


class FakePipeline:
    def __init__(self, redis: FakeSortedSetRedis):
        self.redis = redis
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self.commands.append((name, args, kwargs))
            return self
        return queue

    async def execute(self):
        if self.redis.fail:
            raise redis_exceptions.ConnectionError("Connection refused")
        commands, self.commands = self.commands, []
        return [getattr(self.redis, f"_{name}")(*args, **kwargs) for name, args, kwargs in commands]
