"""Redis hash storage for per-room playback timelines.

Every value is stored as text so other services can read the hash without
sharing code: timestamps as decimal milliseconds, booleans as the literals
``"true"``/``"false"`` and the current track as camelCase JSON. Values are
converted to Python types here and nowhere else.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from pydantic import ValidationError
from redis.exceptions import RedisError

from partysync.exceptions import MalformedStateError
from partysync.models.room import Track
from partysync.models.timeline import RoomTimelineState

logger = logging.getLogger(__name__)

CURRENT_TRACK_FIELD = "currentSong"
PLAYBACK_EPOCH_FIELD = "playbackStartUtc"
IS_PLAYING_FIELD = "isPlaying"
CANONICAL_FIELDS = (CURRENT_TRACK_FIELD, PLAYBACK_EPOCH_FIELD, IS_PLAYING_FIELD)

# Schema v1 kept a separate paused offset next to the start timestamp.
# Schema v2 only stores the virtual start, so these can go.
LEGACY_FIELDS = ("pausedAt", "pauseOffsetMs", "pauseStartTime")

STATE_KEY_PATTERN = "room:state:*"


def state_key(room_id: str) -> str:
    return f"room:state:{room_id}"


def encode_bool(value: bool) -> str:
    return "true" if value else "false"


def decode_bool(raw: Optional[str]) -> bool:
    return raw == "true"


def encode_epoch(value: int) -> str:
    return str(int(value))


def decode_epoch(raw: Optional[str]) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise MalformedStateError(f"Stored playback start '{raw}' is not a millisecond timestamp")


@dataclass(frozen=True)
class TimelineRecord:
    """Typed view of a stored timeline hash.

    The track JSON stays unparsed until someone needs its content, so
    transitions that only check whether a track is loaded keep working
    when the stored JSON is damaged.
    """

    current_track_json: Optional[str] = None
    playback_epoch_utc: Optional[int] = None
    is_playing: bool = False

    @property
    def has_track(self) -> bool:
        return bool(self.current_track_json)

    def current_track(self) -> Optional[Track]:
        if not self.current_track_json:
            return None
        try:
            return Track.model_validate_json(self.current_track_json)
        except ValidationError as e:
            logger.warning(f"Unreadable current track JSON: {e}")
            raise MalformedStateError("Stored current track is unreadable") from e

    def to_state(self) -> RoomTimelineState:
        track = self.current_track()
        if track is None:
            return RoomTimelineState.empty()
        return RoomTimelineState(
            current_track=track,
            playback_epoch_utc=self.playback_epoch_utc,
            is_playing=self.is_playing,
        )

    @classmethod
    def from_fields(cls, fields: Dict[str, str]) -> "TimelineRecord":
        return cls(
            current_track_json=fields.get(CURRENT_TRACK_FIELD) or None,
            playback_epoch_utc=decode_epoch(fields.get(PLAYBACK_EPOCH_FIELD)),
            is_playing=decode_bool(fields.get(IS_PLAYING_FIELD)),
        )


class TimelineStore:
    def __init__(self, redis):
        self._redis = redis

    # Field level primitives

    async def write_fields(self, room_id: str, fields: Dict[str, str]) -> None:
        # One HSET call, so a write lands completely or not at all
        await self._redis.hset(state_key(room_id), mapping=fields)

    async def read_all_fields(self, room_id: str) -> Dict[str, str]:
        return await self._redis.hgetall(state_key(room_id)) or {}

    async def delete_fields(self, room_id: str, *names: str) -> int:
        if not names:
            return 0
        return await self._redis.hdel(state_key(room_id), *names)

    # Typed access

    async def load(self, room_id: str) -> TimelineRecord:
        return TimelineRecord.from_fields(await self.read_all_fields(room_id))

    async def save(self, room_id: str, state: RoomTimelineState) -> None:
        if state.current_track is None:
            await self.clear(room_id)
            return
        await self.write_fields(room_id, {
            CURRENT_TRACK_FIELD: state.current_track.model_dump_json(by_alias=True),
            PLAYBACK_EPOCH_FIELD: encode_epoch(state.playback_epoch_utc),
            IS_PLAYING_FIELD: encode_bool(state.is_playing),
        })

    async def write_playback(self, room_id: str, *, is_playing: bool, playback_epoch_utc: int) -> None:
        await self.write_fields(room_id, {
            PLAYBACK_EPOCH_FIELD: encode_epoch(playback_epoch_utc),
            IS_PLAYING_FIELD: encode_bool(is_playing),
        })

    async def clear(self, room_id: str) -> None:
        await self.delete_fields(room_id, *CANONICAL_FIELDS)

    async def delete(self, room_id: str) -> None:
        await self._redis.delete(state_key(room_id))

    # Schema migration

    async def strip_legacy_fields(self, room_id: str) -> List[str]:
        """Delete leftover v1 fields from one room. Safe to run repeatedly."""
        try:
            fields = await self.read_all_fields(room_id)
            present = [f for f in LEGACY_FIELDS if f in fields]
            if not present:
                return []
            await self.delete_fields(room_id, *present)
            logger.info(f"Removed legacy fields {present} from room {room_id}")
            return present
        except RedisError as e:
            logger.error(f"Error cleaning up legacy fields for room {room_id}: {e}", exc_info=True)
            return []

    async def strip_legacy_fields_everywhere(self) -> int:
        cleaned = 0
        try:
            async for key in self._redis.scan_iter(match=STATE_KEY_PATTERN):
                room_id = key[len("room:state:"):]
                if await self.strip_legacy_fields(room_id):
                    cleaned += 1
        except RedisError as e:
            logger.error(f"Error scanning rooms for legacy fields: {e}", exc_info=True)
        logger.info(f"Legacy field cleanup finished, {cleaned} room(s) updated")
        return cleaned
