import logging
from typing import List, Optional

from partysync.exceptions import TrackNotQueuedError
from partysync.models.room import QueuedTrack, Track

logger = logging.getLogger(__name__)


def playlist_key(room_id: str) -> str:
    return f"room:playlist:{room_id}"


def tracks_key(room_id: str) -> str:
    return f"room:tracks:{room_id}"


class QueueService:
    """Vote ordered track queue per room.

    Track ids live in a sorted set scored by net votes, the track details
    in a hash next to it.
    """

    def __init__(self, redis):
        self._redis = redis

    async def enqueue(self, room_id: str, track: Track, initial_priority: int = 0) -> None:
        await self._redis.hset(tracks_key(room_id), track.id, track.model_dump_json(by_alias=True))
        # nx keeps the votes of a track that is already queued
        await self._redis.zadd(playlist_key(room_id), {track.id: initial_priority}, nx=True)
        logger.info(f"Queued track {track.id} in room {room_id}")

    async def dequeue_highest(self, room_id: str) -> Optional[QueuedTrack]:
        """Pop the highest voted track. The pop is destructive."""
        while True:
            popped = await self._redis.zpopmax(playlist_key(room_id))
            if not popped:
                return None
            track_id, score = popped[0]
            raw = await self._redis.hget(tracks_key(room_id), track_id)
            await self._redis.hdel(tracks_key(room_id), track_id)
            if raw is None:
                logger.warning(f"Dropping queued track {track_id} in room {room_id}: details missing")
                continue
            return QueuedTrack.model_validate_json(raw).model_copy(update={"priority": int(score)})

    async def adjust_priority(self, room_id: str, track_id: str, delta: int) -> int:
        if await self._redis.zscore(playlist_key(room_id), track_id) is None:
            raise TrackNotQueuedError("That track is not in the queue.")
        return int(await self._redis.zincrby(playlist_key(room_id), delta, track_id))

    async def list_ordered(self, room_id: str) -> List[QueuedTrack]:
        entries = await self._redis.zrange(playlist_key(room_id), 0, -1, desc=True, withscores=True)
        if not entries:
            return []
        ids = [track_id for track_id, _ in entries]
        details = await self._redis.hmget(tracks_key(room_id), ids)
        queue = []
        for (track_id, score), raw in zip(entries, details):
            if raw is None:
                continue
            queue.append(QueuedTrack.model_validate_json(raw).model_copy(update={"priority": int(score)}))
        return queue

    async def delete(self, room_id: str) -> None:
        await self._redis.delete(playlist_key(room_id), tracks_key(room_id))
