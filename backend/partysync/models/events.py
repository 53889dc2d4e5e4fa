from typing import ClassVar, List

from partysync.models.room import QueuedTrack, Track, WireModel


class RoomEvent(WireModel):
    """An event fanned out to every session of a room."""

    name: ClassVar[str]


class TrackStarted(RoomEvent):
    name: ClassVar[str] = "track_started"

    track: Track
    is_playing: bool = True
    playback_epoch_utc: int


class NoTrackAvailable(RoomEvent):
    name: ClassVar[str] = "no_track_available"


class PlaybackPaused(RoomEvent):
    name: ClassVar[str] = "playback_paused"

    is_playing: bool = False


class PlaybackResumed(RoomEvent):
    name: ClassVar[str] = "playback_resumed"

    is_playing: bool = True
    playback_epoch_utc: int


class PlaybackSought(RoomEvent):
    name: ClassVar[str] = "playback_sought"

    is_playing: bool = True
    playback_epoch_utc: int


class QueueChanged(RoomEvent):
    name: ClassVar[str] = "queue_changed"

    queue: List[QueuedTrack] = []

    def to_wire(self) -> list:
        # The queue is sent as a bare array
        return [t.to_wire() for t in self.queue]
