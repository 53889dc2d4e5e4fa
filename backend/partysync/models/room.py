from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Optional


class WireModel(BaseModel):
    # camelCase on the wire and in redis, snake_case in Python
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class Track(WireModel):
    model_config = ConfigDict(frozen=True)

    id: str # External (YouTube) video id
    title: str
    duration_ms: int = 0
    thumbnail_url: Optional[str] = None
    author: Optional[str] = None
    added_by: str # Username of the contributor


class QueuedTrack(Track):
    priority: int = 0 # Net votes

    def as_track(self) -> Track:
        return Track.model_validate(self.model_dump(exclude={"priority"}))


class Member(WireModel):
    id: str
    username: str

    @classmethod
    def for_user(cls, user_id: str, username: Optional[str] = None) -> "Member":
        return cls(id=user_id, username=username or f"User-{user_id[:8]}")


class Room(WireModel):
    id: str
    name: str
    owner_id: Optional[str] = None
    created_at: float
    persistent: bool = False # Created through the API, survives the last member leaving
