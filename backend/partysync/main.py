import logging
from contextlib import asynccontextmanager
from typing import Optional

import socketio
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from partysync.config import get_settings
from partysync.database import redis_client
from partysync.models.room import WireModel
from partysync.services.broadcast import SocketIOBroadcaster
from partysync.services.coordinator import RoomSessionCoordinator
from partysync.services.media import TrackResolver
from partysync.services.queue import QueueService
from partysync.services.room import MembershipStore, RoomRegistry
from partysync.services.sessions import SessionRegistry
from partysync.services.timeline import PlaybackTimeline, now_ms
from partysync.services.timeline_store import TimelineStore

settings = get_settings()

# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

origins = settings.allowed_origins or ["*"]

sio = socketio.AsyncServer(async_mode='asgi', cors_allowed_origins=origins if origins != ["*"] else "*")
broadcaster = SocketIOBroadcaster(sio)

timeline_store = TimelineStore(redis_client)
queue_service = QueueService(redis_client)
room_registry = RoomRegistry(redis_client, ttl_seconds=settings.room_ttl_seconds)
coordinator = RoomSessionCoordinator(
    timeline=PlaybackTimeline(timeline_store, queue_service, broadcaster),
    store=timeline_store,
    queue=queue_service,
    rooms=room_registry,
    members=MembershipStore(redis_client),
    sessions=SessionRegistry(redis_client, ttl_seconds=settings.session_ttl_seconds),
    resolver=TrackResolver(settings),
    broadcaster=broadcaster,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Drop fields older schema versions left behind before serving anyone
    await coordinator.store.strip_legacy_fields_everywhere()
    yield


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

socket_app = socketio.ASGIApp(sio, app)


class CreateRoomRequest(WireModel):
    owner_id: str
    name: Optional[str] = None
    room_id: Optional[str] = None


# REST API
@app.get("/api/time")
async def server_time():
    return {"serverTime": now_ms()}


@app.post("/api/rooms", status_code=201)
async def create_room_endpoint(body: CreateRoomRequest):
    rooms = coordinator.rooms
    if body.room_id and await rooms.get(body.room_id):
        raise HTTPException(status_code=409, detail="Room already exists")
    room = await rooms.create(owner_id=body.owner_id, name=body.name, room_id=body.room_id)
    logger.info(f"Created room {room.id} for {body.owner_id}")
    return room.to_wire()


@app.get("/api/rooms")
async def list_rooms():
    return [r.to_wire() for r in await coordinator.rooms.list()]


@app.get("/api/rooms/{room_id}")
async def get_room(room_id: str):
    room = await coordinator.rooms.get(room_id)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return room.to_wire()


@app.get("/api/rooms/{room_id}/timeline")
async def get_timeline(room_id: str):
    timeline = coordinator.timeline
    state = await timeline.get_snapshot(room_id)
    return {
        **state.to_wire(),
        "positionMs": timeline.position_now(state) if state.is_playing else None,
        "serverTime": now_ms(),
    }


# Socket Events
@sio.event
async def connect(sid, environ):
    logger.info(f"Client {sid} connected")


@sio.event
async def disconnect(sid):
    logger.info(f"Client {sid} disconnected")
    await coordinator.on_disconnect(sid)


@sio.event
async def join_room(sid, data):
    data = data or {}
    await coordinator.on_join(sid, data.get("roomId"), data.get("userId"), data.get("username"))


@sio.event
async def leave_room(sid, data):
    data = data or {}
    await coordinator.on_leave(sid, data.get("roomId"), data.get("userId"))


@sio.event
async def add_track(sid, data):
    data = data or {}
    await coordinator.on_add_track(sid, data.get("roomId"), data.get("videoId"), data.get("username"))


@sio.event
async def vote_track(sid, data):
    data = data or {}
    await coordinator.on_vote(sid, data.get("roomId"), data.get("trackId"), data.get("vote"))


@sio.event
async def play_next(sid, data):
    await coordinator.on_advance(sid, (data or {}).get("roomId"))


@sio.event
async def pause_playback(sid, data):
    await coordinator.on_pause(sid, (data or {}).get("roomId"))


@sio.event
async def resume_playback(sid, data):
    await coordinator.on_resume(sid, (data or {}).get("roomId"))


@sio.event
async def seek_playback(sid, data):
    data = data or {}
    await coordinator.on_seek(sid, data.get("roomId"), data.get("seekToMs"))


@sio.event
async def toggle_playback(sid, data):
    data = data or {}
    await coordinator.on_toggle(sid, data.get("roomId"), data.get("isPlaying"))
