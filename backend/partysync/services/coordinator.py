import asyncio
import logging
import math
from typing import Any, Optional

from partysync.exceptions import InvalidRequestError, PartySyncError
from partysync.models.events import QueueChanged
from partysync.models.room import Member
from partysync.services.broadcast import Broadcaster
from partysync.services.media import TrackResolver
from partysync.services.queue import QueueService
from partysync.services.room import MembershipStore, RoomRegistry
from partysync.services.sessions import SessionRegistry
from partysync.services.timeline import PlaybackTimeline
from partysync.services.timeline_store import TimelineStore

logger = logging.getLogger(__name__)


class RoomSessionCoordinator:
    """Turns client actions into queue and timeline calls and fans out the results.

    Every ``on_*`` handler owns its error boundary: a failure is logged and
    reported to the requesting session only, never to the rest of the room.
    """

    def __init__(
        self,
        *,
        timeline: PlaybackTimeline,
        store: TimelineStore,
        queue: QueueService,
        rooms: RoomRegistry,
        members: MembershipStore,
        sessions: SessionRegistry,
        resolver: TrackResolver,
        broadcaster: Broadcaster,
    ):
        self.timeline = timeline
        self.store = store
        self.queue = queue
        self.rooms = rooms
        self.members = members
        self.sessions = sessions
        self.resolver = resolver
        self.broadcaster = broadcaster

    async def _report(self, sid: str, action: str, error: Exception) -> None:
        if isinstance(error, PartySyncError):
            logger.warning(f"Rejected {action} from {sid}: {error.message}")
            message = error.message
        else:
            logger.error(f"Error in {action}: {error}", exc_info=True)
            message = f"Internal server error during {action}"
        await self.broadcaster.send_to(sid, "error", {"message": message})

    async def _broadcast_queue(self, room_id: str) -> None:
        event = QueueChanged(queue=await self.queue.list_ordered(room_id))
        await self.broadcaster.broadcast(room_id, event.name, event.to_wire())

    async def _broadcast_members(self, room_id: str) -> None:
        members = await self.members.list(room_id)
        await self.broadcaster.broadcast(room_id, "members_updated", [m.to_wire() for m in members])

    # Membership

    async def on_join(self, sid: str, room_id: Optional[str], user_id: Optional[str],
                      username: Optional[str] = None) -> None:
        try:
            if not room_id or not user_id:
                raise InvalidRequestError("Room ID and User ID are required.")
            logger.info(f"Join request: sid={sid}, room={room_id}, user={user_id}")

            previous = await self.sessions.lookup(sid)
            if previous is not None and previous.room_id != room_id:
                # A session belongs to one room at a time
                await self.broadcaster.leave(sid, previous.room_id)
                await self._depart(previous.room_id, previous.user_id)
                logger.info(f"Session {sid} moved from room {previous.room_id} to {room_id}")

            member = Member.for_user(user_id, username)
            async with self.timeline.exclusive(room_id):
                await self.rooms.ensure(room_id, owner_id=user_id)
                await self.broadcaster.join(sid, room_id)
                await self.sessions.bind(sid, room_id, user_id)
                await self.members.add(room_id, member)
            await self.broadcaster.broadcast(
                room_id, "user_joined", {"userId": member.id, "username": member.username}, skip_sid=sid,
            )

            await self.store.strip_legacy_fields(room_id)

            queue, members, timeline = await asyncio.gather(
                self.queue.list_ordered(room_id),
                self.members.list(room_id),
                self.timeline.get_snapshot(room_id),
            )
            state: dict = {
                "queue": [t.to_wire() for t in queue],
                "members": [m.to_wire() for m in members],
            }
            if timeline.has_track:
                state.update(timeline.to_wire())

            # Only the joining session gets the full snapshot
            await self.broadcaster.send_to(sid, "room_state", state)
            logger.info(f"User {user_id} joined room {room_id}")
        except Exception as e:
            await self._report(sid, "join", e)

    async def on_leave(self, sid: str, room_id: Optional[str], user_id: Optional[str]) -> None:
        try:
            if not room_id or not user_id:
                raise InvalidRequestError("Room ID and User ID are required.")
            await self.broadcaster.leave(sid, room_id)
            await self.sessions.release(sid)
            await self._depart(room_id, user_id)
            logger.info(f"User {user_id} left room {room_id}")
        except Exception as e:
            await self._report(sid, "leave", e)

    async def on_disconnect(self, sid: str) -> None:
        try:
            context = await self.sessions.release(sid)
            if context is None:
                return
            await self._depart(context.room_id, context.user_id)
            logger.info(f"User {context.user_id} disconnected from room {context.room_id}")
        except Exception as e:
            logger.error(f"Error in disconnect for {sid}: {e}", exc_info=True)

    async def _depart(self, room_id: str, user_id: str) -> None:
        await self.members.remove(room_id, user_id)
        if await self.members.count(room_id) == 0 and await self.teardown(room_id):
            return
        await self.broadcaster.broadcast(room_id, "user_left", {"userId": user_id})
        await self._broadcast_members(room_id)

    async def teardown(self, room_id: str) -> bool:
        """Destroy an empty room. Returns False when someone joined in the meantime."""
        async with self.timeline.exclusive(room_id):
            if await self.members.count(room_id):
                return False
            await self.queue.delete(room_id)
            await self.store.delete(room_id)
            await self.members.delete(room_id)
            await self.rooms.discard(room_id)
        logger.info(f"Cleaned up room {room_id} as it is now empty.")
        return True

    # Queue

    async def on_add_track(self, sid: str, room_id: Optional[str], video_id: Optional[str],
                           username: Optional[str] = None) -> None:
        try:
            if not room_id or not video_id:
                raise InvalidRequestError("Room ID and Video ID are required.")
            track = await self.resolver.resolve(video_id, added_by=username or "Unknown")
            # The lookup can outlive the room, so membership is checked once it returns
            async with self.timeline.exclusive(room_id):
                if not await self.members.count(room_id):
                    raise InvalidRequestError("Room is no longer active.")
                await self.queue.enqueue(room_id, track)
            await self._broadcast_queue(room_id)
            await self.timeline.advance_if_idle(room_id)
        except Exception as e:
            await self._report(sid, "add_track", e)

    async def on_vote(self, sid: str, room_id: Optional[str], track_id: Optional[str], vote: Any) -> None:
        try:
            if not room_id or not track_id or isinstance(vote, bool) or vote not in (1, -1):
                raise InvalidRequestError("Room ID, Track ID, and a vote of 1 or -1 are required.")
            await self.queue.adjust_priority(room_id, track_id, int(vote))
            await self._broadcast_queue(room_id)
        except Exception as e:
            await self._report(sid, "vote_track", e)

    # Playback

    async def on_advance(self, sid: str, room_id: Optional[str]) -> None:
        try:
            if not room_id:
                raise InvalidRequestError("Room ID is required.")
            await self.timeline.advance(room_id)
        except Exception as e:
            await self._report(sid, "play_next", e)

    async def on_pause(self, sid: str, room_id: Optional[str]) -> None:
        try:
            if not room_id:
                raise InvalidRequestError("Room ID is required.")
            await self.timeline.pause(room_id)
        except Exception as e:
            await self._report(sid, "pause_playback", e)

    async def on_resume(self, sid: str, room_id: Optional[str]) -> None:
        try:
            if not room_id:
                raise InvalidRequestError("Room ID is required.")
            await self.timeline.resume(room_id)
        except Exception as e:
            await self._report(sid, "resume_playback", e)

    async def on_seek(self, sid: str, room_id: Optional[str], seek_to_ms: Any) -> None:
        try:
            valid = (
                (isinstance(seek_to_ms, int) and not isinstance(seek_to_ms, bool))
                or (isinstance(seek_to_ms, float) and math.isfinite(seek_to_ms))
            )
            if not room_id or not valid:
                raise InvalidRequestError("Room ID and valid seek position are required.")
            await self.timeline.seek(room_id, seek_to_ms)
        except Exception as e:
            await self._report(sid, "seek_playback", e)

    async def on_toggle(self, sid: str, room_id: Optional[str], is_playing: Any) -> None:
        """Older clients send the desired play state instead of pause/resume."""
        try:
            if not room_id or not isinstance(is_playing, bool):
                raise InvalidRequestError("Room ID and isPlaying state are required.")
            if is_playing:
                await self.timeline.resume(room_id)
            else:
                await self.timeline.pause(room_id)
        except Exception as e:
            await self._report(sid, "toggle_playback", e)
