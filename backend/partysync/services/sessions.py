from dataclasses import dataclass
from typing import Optional

SESSION_TTL = 3600 * 24


def session_key(sid: str) -> str:
    return f"session:{sid}"


@dataclass(frozen=True)
class SessionContext:
    room_id: str
    user_id: str


class SessionRegistry:
    """Socket id -> (room, user), kept in redis so every server process sees it."""

    def __init__(self, redis, ttl_seconds: int = SESSION_TTL):
        self._redis = redis
        self._ttl = ttl_seconds

    async def bind(self, sid: str, room_id: str, user_id: str) -> None:
        await self._redis.hset(session_key(sid), mapping={"roomId": room_id, "userId": user_id})
        await self._redis.expire(session_key(sid), self._ttl)

    async def lookup(self, sid: str) -> Optional[SessionContext]:
        data = await self._redis.hgetall(session_key(sid))
        if not data or "roomId" not in data or "userId" not in data:
            return None
        return SessionContext(room_id=data["roomId"], user_id=data["userId"])

    async def release(self, sid: str) -> Optional[SessionContext]:
        context = await self.lookup(sid)
        await self._redis.delete(session_key(sid))
        return context
