from typing import Optional

from partysync.models.room import Track, WireModel


class RoomTimelineState(WireModel):
    """What is playing in a room, from where, and since when.

    ``playback_epoch_utc`` is the virtual moment (ms since the Unix epoch,
    server clock) at which position zero of ``current_track`` would have
    started. The position is always derived as ``now - playback_epoch_utc``;
    no elapsed counter is ever stored.
    """

    current_track: Optional[Track] = None
    playback_epoch_utc: Optional[int] = None
    is_playing: bool = False

    @classmethod
    def empty(cls) -> "RoomTimelineState":
        return cls()

    @property
    def has_track(self) -> bool:
        return self.current_track is not None

    def position_at(self, now_ms: int) -> Optional[int]:
        if self.current_track is None or self.playback_epoch_utc is None:
            return None
        return now_ms - self.playback_epoch_utc

    def to_wire(self) -> dict:
        # Timing fields are meaningless without a track
        if self.current_track is None:
            return {"currentTrack": None, "isPlaying": False, "playbackEpochUtc": None}
        return {
            "currentTrack": self.current_track.to_wire(),
            "isPlaying": self.is_playing,
            "playbackEpochUtc": self.playback_epoch_utc,
        }
