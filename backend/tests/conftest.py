"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import asyncio
import fnmatch
import sys
from pathlib import Path
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from partysync.exceptions import TrackResolutionError
from partysync.models.room import Track
from partysync.services.coordinator import RoomSessionCoordinator
from partysync.services.queue import QueueService
from partysync.services.room import MembershipStore, RoomRegistry
from partysync.services.sessions import SessionRegistry
from partysync.services.timeline import PlaybackTimeline
from partysync.services.timeline_store import TimelineStore

T0 = 1704110400000  # 2024-01-01T12:00:00Z


class FakeRedis:
    """In-memory stand-in for the subset of redis.asyncio the services use."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.calls: list[tuple[str, tuple, dict]] = []
        self.failing: set[str] = set()

    def fail(self, *commands: str) -> None:
        self.failing.update(commands)

    def _record(self, command: str, *args: Any, **kwargs: Any) -> None:
        if command in self.failing:
            raise RedisConnectionError("Redis connection failed")
        self.calls.append((command, args, kwargs))

    def calls_to(self, command: str) -> list[tuple[tuple, dict]]:
        return [(args, kwargs) for name, args, kwargs in self.calls if name == command]

    # hashes

    async def hset(self, name, key=None, value=None, mapping=None):
        self._record("hset", name, key, value, mapping=mapping)
        bucket = self.data.setdefault(name, {})
        fields = dict(mapping or {})
        if key is not None:
            fields[key] = value
        added = len([f for f in fields if f not in bucket])
        bucket.update({f: str(v) for f, v in fields.items()})
        return added

    async def hget(self, name, key):
        self._record("hget", name, key)
        return self.data.get(name, {}).get(key)

    async def hmget(self, name, keys):
        self._record("hmget", name, keys)
        bucket = self.data.get(name, {})
        return [bucket.get(k) for k in keys]

    async def hgetall(self, name):
        self._record("hgetall", name)
        return dict(self.data.get(name, {}))

    async def hdel(self, name, *keys):
        self._record("hdel", name, *keys)
        bucket = self.data.get(name, {})
        removed = 0
        for key in keys:
            if key in bucket:
                del bucket[key]
                removed += 1
        if name in self.data and not bucket:
            del self.data[name]
        return removed

    async def hlen(self, name):
        self._record("hlen", name)
        return len(self.data.get(name, {}))

    # strings and keys

    async def get(self, name):
        self._record("get", name)
        return self.data.get(name)

    async def set(self, name, value, ex=None):
        self._record("set", name, value, ex=ex)
        self.data[name] = value
        return True

    async def delete(self, *names):
        self._record("delete", *names)
        return len([self.data.pop(n) for n in names if n in self.data])

    async def expire(self, name, seconds):
        self._record("expire", name, seconds)
        return name in self.data

    async def scan_iter(self, match=None):
        self._record("scan_iter", match=match)
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    # sorted sets

    async def zadd(self, name, mapping, nx=False):
        self._record("zadd", name, mapping, nx=nx)
        zset = self.data.setdefault(name, {})
        added = 0
        for member, score in mapping.items():
            if member in zset:
                if nx:
                    continue
            else:
                added += 1
            zset[member] = float(score)
        return added

    async def zscore(self, name, member):
        self._record("zscore", name, member)
        return self.data.get(name, {}).get(member)

    async def zincrby(self, name, amount, value):
        self._record("zincrby", name, amount, value)
        zset = self.data.setdefault(name, {})
        zset[value] = zset.get(value, 0.0) + amount
        return zset[value]

    async def zpopmax(self, name, count=None):
        self._record("zpopmax", name)
        zset = self.data.get(name, {})
        if not zset:
            return []
        member, score = max(zset.items(), key=lambda kv: (kv[1], kv[0]))
        del zset[member]
        if not zset:
            del self.data[name]
        return [(member, score)]

    async def zrange(self, name, start, end, desc=False, withscores=False):
        self._record("zrange", name, start, end, desc=desc, withscores=withscores)
        items = sorted(self.data.get(name, {}).items(), key=lambda kv: (kv[1], kv[0]), reverse=desc)
        items = items[start:] if end == -1 else items[start:end + 1]
        return items if withscores else [member for member, _ in items]


class FakeClock:
    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingBroadcaster:
    def __init__(self) -> None:
        self.broadcasts: list[tuple[str, str, Any, str | None]] = []
        self.sent: list[tuple[str, str, Any]] = []
        self.rooms: dict[str, set[str]] = {}

    async def broadcast(self, room_id, event, payload, skip_sid=None):
        self.broadcasts.append((room_id, event, payload, skip_sid))
        # Yield like a real transport so concurrent callers can interleave
        await asyncio.sleep(0)

    async def send_to(self, sid, event, payload):
        self.sent.append((sid, event, payload))

    async def join(self, sid, room_id):
        self.rooms.setdefault(room_id, set()).add(sid)

    async def leave(self, sid, room_id):
        self.rooms.get(room_id, set()).discard(sid)

    def events(self, room_id: str | None = None) -> list[str]:
        return [event for room, event, _, _ in self.broadcasts if room_id is None or room == room_id]

    def payloads(self, event: str) -> list[Any]:
        return [payload for _, name, payload, _ in self.broadcasts if name == event]

    def sent_to(self, sid: str) -> list[tuple[str, Any]]:
        return [(event, payload) for target, event, payload in self.sent if target == sid]


class StubResolver:
    def __init__(self) -> None:
        self.known: dict[str, dict[str, Any]] = {}

    def add(self, video_id: str, title: str, duration_ms: int = 180000) -> None:
        self.known[video_id] = {"title": title, "duration_ms": duration_ms}

    async def resolve(self, reference: str, added_by: str) -> Track:
        if reference not in self.known:
            raise TrackResolutionError("Invalid YouTube video ID or video not found.")
        return Track(id=reference, added_by=added_by, **self.known[reference])


def make_track(track_id: str = "dQw4w9WgXcQ", title: str = "Test Song", added_by: str = "alice") -> Track:
    return Track(
        id=track_id,
        title=title,
        duration_ms=212000,
        thumbnail_url=f"https://i.ytimg.com/vi/{track_id}/hqdefault.jpg",
        author="Tester",
        added_by=added_by,
    )


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture()
def store(redis) -> TimelineStore:
    return TimelineStore(redis)


@pytest.fixture()
def queue(redis) -> QueueService:
    return QueueService(redis)


@pytest.fixture()
def timeline(store, queue, broadcaster, clock) -> PlaybackTimeline:
    return PlaybackTimeline(store, queue, broadcaster, clock=clock)


@pytest.fixture()
def resolver() -> StubResolver:
    return StubResolver()


@pytest.fixture()
def coordinator(redis, timeline, store, queue, resolver, broadcaster) -> RoomSessionCoordinator:
    return RoomSessionCoordinator(
        timeline=timeline,
        store=store,
        queue=queue,
        rooms=RoomRegistry(redis),
        members=MembershipStore(redis),
        sessions=SessionRegistry(redis),
        resolver=resolver,
        broadcaster=broadcaster,
    )
