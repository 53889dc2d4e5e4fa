"""Authoritative playback timeline for each room.

A room's timeline is a track plus a *virtual start epoch*: the server time
(ms) at which position zero would have started. Clients derive the current
position as ``now - epoch`` on their own, so transitions only ever rewrite
the epoch and the playing flag and never store an elapsed counter.

Transitions whose preconditions do not hold (pausing a paused room, seeking
with nothing loaded) return an unchanged result without touching storage
or emitting anything. Storage and queue errors propagate to the caller.
"""

import asyncio
import logging
import math
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Dict, List, Optional, Union

from partysync.models.events import (
    NoTrackAvailable,
    PlaybackPaused,
    PlaybackResumed,
    PlaybackSought,
    QueueChanged,
    RoomEvent,
    TrackStarted,
)
from partysync.models.timeline import RoomTimelineState
from partysync.services.broadcast import Broadcaster
from partysync.services.queue import QueueService
from partysync.services.timeline_store import TimelineStore

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass
class Transition:
    """Outcome of a timeline operation: the events it broadcast, in order."""

    room_id: str
    events: List[RoomEvent] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.events)


class PlaybackTimeline:
    def __init__(self, store: TimelineStore, queue: QueueService, broadcaster: Broadcaster,
                 clock: Clock = now_ms):
        self._store = store
        self._queue = queue
        self._broadcaster = broadcaster
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def exclusive(self, room_id: str) -> AsyncIterator[None]:
        """Hold the room lock shared by every transition of ``room_id``.

        Reads, writes and broadcasts of one room happen under this lock,
        which also keeps that room's events in invocation order. The lock
        is dropped once nobody holds or waits on it.
        """
        lock = self._locks.setdefault(room_id, asyncio.Lock())
        self._holders[room_id] = self._holders.get(room_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[room_id] -= 1
            if not self._holders[room_id]:
                del self._holders[room_id]
                del self._locks[room_id]

    def tracked_rooms(self) -> List[str]:
        return list(self._locks)

    async def _emit(self, room_id: str, *events: RoomEvent) -> Transition:
        for event in events:
            await self._broadcaster.broadcast(room_id, event.name, event.to_wire())
        return Transition(room_id, list(events))

    async def advance(self, room_id: str) -> Transition:
        async with self.exclusive(room_id):
            return await self._advance(room_id)

    async def advance_if_idle(self, room_id: str) -> Transition:
        """Start the next track only when nothing is loaded."""
        async with self.exclusive(room_id):
            record = await self._store.load(room_id)
            if record.has_track:
                return Transition(room_id)
            logger.info(f"No track loaded in room {room_id}, starting auto-play")
            return await self._advance(room_id)

    async def _advance(self, room_id: str) -> Transition:
        queued = await self._queue.dequeue_highest(room_id)
        if queued is None:
            await self._store.clear(room_id)
            logger.info(f"No tracks available in queue for room {room_id}")
            return await self._emit(room_id, NoTrackAvailable())

        # Snapshot the queue first so nothing but the broadcast follows the write
        queue = await self._queue.list_ordered(room_id)
        epoch = self._clock()
        track = queued.as_track()
        await self._store.save(room_id, RoomTimelineState(
            current_track=track, playback_epoch_utc=epoch, is_playing=True,
        ))
        logger.info(f"Room {room_id} started track {track.id} at {epoch}")
        return await self._emit(
            room_id,
            TrackStarted(track=track, playback_epoch_utc=epoch),
            QueueChanged(queue=queue),
        )

    async def pause(self, room_id: str) -> Transition:
        async with self.exclusive(room_id):
            record = await self._store.load(room_id)
            if not record.has_track or not record.is_playing or record.playback_epoch_utc is None:
                return Transition(room_id)

            now = self._clock()
            elapsed = now - record.playback_epoch_utc
            # Frozen virtual start, rebuilt from the position at this instant
            await self._store.write_playback(room_id, is_playing=False, playback_epoch_utc=now - elapsed)
            logger.info(f"Room {room_id} paused at {elapsed}ms")
            return await self._emit(room_id, PlaybackPaused())

    async def resume(self, room_id: str) -> Transition:
        async with self.exclusive(room_id):
            record = await self._store.load(room_id)
            if not record.has_track or record.is_playing or record.playback_epoch_utc is None:
                return Transition(room_id)

            # The stored epoch is already the right virtual start
            epoch = record.playback_epoch_utc
            await self._store.write_playback(room_id, is_playing=True, playback_epoch_utc=epoch)
            logger.info(f"Room {room_id} resumed")
            return await self._emit(room_id, PlaybackResumed(playback_epoch_utc=epoch))

    async def seek(self, room_id: str, target_position_ms: Union[int, float]) -> Transition:
        async with self.exclusive(room_id):
            record = await self._store.load(room_id)
            if not record.has_track:
                return Transition(room_id)

            target = max(0, math.floor(target_position_ms))
            epoch = self._clock() - target
            # Seeking always (re)starts playback
            await self._store.write_playback(room_id, is_playing=True, playback_epoch_utc=epoch)
            logger.info(f"Room {room_id} sought to {target}ms")
            return await self._emit(room_id, PlaybackSought(playback_epoch_utc=epoch))

    async def get_snapshot(self, room_id: str) -> RoomTimelineState:
        record = await self._store.load(room_id)
        return record.to_state()

    def position_now(self, state: RoomTimelineState) -> Optional[int]:
        return state.position_at(self._clock())
