from typing import Any, Optional, Protocol

import socketio


class Broadcaster(Protocol):
    async def broadcast(self, room_id: str, event: str, payload: Any, skip_sid: Optional[str] = None) -> None:
        ...

    async def send_to(self, sid: str, event: str, payload: Any) -> None:
        ...

    async def join(self, sid: str, room_id: str) -> None:
        ...

    async def leave(self, sid: str, room_id: str) -> None:
        ...


class SocketIOBroadcaster:
    """Fan-out over socket.io rooms; one socket.io room per party room."""

    def __init__(self, sio: socketio.AsyncServer):
        self._sio = sio

    async def broadcast(self, room_id: str, event: str, payload: Any, skip_sid: Optional[str] = None) -> None:
        await self._sio.emit(event, payload, room=room_id, skip_sid=skip_sid)

    async def send_to(self, sid: str, event: str, payload: Any) -> None:
        await self._sio.emit(event, payload, to=sid)

    async def join(self, sid: str, room_id: str) -> None:
        await self._sio.enter_room(sid, room_id)

    async def leave(self, sid: str, room_id: str) -> None:
        await self._sio.leave_room(sid, room_id)
