import time
import uuid
import logging
from typing import List, Optional

from partysync.models.room import Member, Room

logger = logging.getLogger(__name__)

ROOM_TTL = 3600 * 10 # 10 hours


def room_key(room_id: str) -> str:
    return f"room:meta:{room_id}"


def members_key(room_id: str) -> str:
    return f"room:members:{room_id}"


class RoomRegistry:
    def __init__(self, redis, ttl_seconds: int = ROOM_TTL):
        self._redis = redis
        self._ttl = ttl_seconds

    async def create(self, owner_id: Optional[str], name: Optional[str] = None, room_id: Optional[str] = None,
                     persistent: bool = True) -> Room:
        room_id = room_id or str(uuid.uuid4())[:8]
        room = Room(
            id=room_id,
            name=name or f"Room {room_id}",
            owner_id=owner_id,
            created_at=time.time(),
            persistent=persistent,
        )
        await self.save(room)
        return room

    async def get(self, room_id: str) -> Optional[Room]:
        data = await self._redis.get(room_key(room_id))
        if not data:
            return None
        return Room.model_validate_json(data)

    async def save(self, room: Room) -> None:
        await self._redis.set(room_key(room.id), room.model_dump_json(by_alias=True), ex=self._ttl)

    async def ensure(self, room_id: str, owner_id: str) -> Room:
        """Return the room, creating a throwaway record when it is unknown.

        The first member to join an unknown room becomes its owner.
        """
        room = await self.get(room_id)
        if room:
            return room
        logger.info(f"Creating room {room_id} on first join by {owner_id}")
        return await self.create(owner_id=owner_id, room_id=room_id, persistent=False)

    async def list(self) -> List[Room]:
        rooms = []
        async for key in self._redis.scan_iter(match=room_key("*")):
            data = await self._redis.get(key)
            if data:
                rooms.append(Room.model_validate_json(data))
        return sorted(rooms, key=lambda r: r.created_at)

    async def discard(self, room_id: str) -> bool:
        """Forget a room that emptied out, unless it was created through the API."""
        room = await self.get(room_id)
        if room is None or room.persistent:
            return False
        await self.delete(room_id)
        return True

    async def delete(self, room_id: str) -> None:
        await self._redis.delete(room_key(room_id))


class MembershipStore:
    def __init__(self, redis):
        self._redis = redis

    async def add(self, room_id: str, member: Member) -> None:
        # HSET is idempotent per user, a rejoin just refreshes the username
        await self._redis.hset(members_key(room_id), member.id, member.model_dump_json(by_alias=True))
        logger.info(f"User {member.id} added to room {room_id}")

    async def remove(self, room_id: str, user_id: str) -> None:
        await self._redis.hdel(members_key(room_id), user_id)
        logger.info(f"User {user_id} removed from room {room_id}")

    async def list(self, room_id: str) -> List[Member]:
        raw = await self._redis.hgetall(members_key(room_id)) or {}
        return [Member.model_validate_json(data) for data in raw.values()]

    async def count(self, room_id: str) -> int:
        return await self._redis.hlen(members_key(room_id))

    async def delete(self, room_id: str) -> None:
        await self._redis.delete(members_key(room_id))
