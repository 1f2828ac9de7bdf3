"""
Session gateway: who is connected, and which room each connection listens to.

``SessionRegistry`` is the subscription table (sid -> identity and room,
room -> sids). ``RoomChannel`` is the thin seam to Flask-SocketIO used for
fan-out and room membership at the transport level.
"""
from __future__ import annotations

from dataclasses import dataclass
from threading import Lock

from flask_socketio import SocketIO

from ..logging_config import get_logger
from ..poker.models import Identity

logger = get_logger(__name__)


@dataclass
class Connection:
    sid: str
    identity: Identity
    room_id: str | None = None

    @property
    def user_id(self) -> str:
        return self.identity.user_id


class SessionRegistry:
    def __init__(self):
        self._lock = Lock()
        self._connections: dict[str, Connection] = {}
        self._rooms: dict[str, set[str]] = {}

    def connect(self, sid: str, identity: Identity) -> Connection:
        with self._lock:
            conn = Connection(sid=sid, identity=identity)
            self._connections[sid] = conn
            return conn

    def disconnect(self, sid: str) -> Connection | None:
        """Forget a connection; the returned record still names its last room."""
        with self._lock:
            conn = self._connections.pop(sid, None)
            if conn is not None and conn.room_id is not None:
                self._discard_locked(conn.room_id, sid)
            return conn

    def get(self, sid: str) -> Connection | None:
        with self._lock:
            return self._connections.get(sid)

    def subscribe(self, sid: str, room_id: str) -> None:
        with self._lock:
            conn = self._connections.get(sid)
            if conn is None:
                return
            if conn.room_id is not None and conn.room_id != room_id:
                self._discard_locked(conn.room_id, sid)
            conn.room_id = room_id
            self._rooms.setdefault(room_id, set()).add(sid)

    def unsubscribe(self, sid: str) -> str | None:
        with self._lock:
            conn = self._connections.get(sid)
            if conn is None or conn.room_id is None:
                return None
            room_id = conn.room_id
            conn.room_id = None
            self._discard_locked(room_id, sid)
            return room_id

    def _discard_locked(self, room_id: str, sid: str) -> None:
        sids = self._rooms.get(room_id)
        if sids is None:
            return
        sids.discard(sid)
        if not sids:
            del self._rooms[room_id]

    def room_sids(self, room_id: str) -> set[str]:
        with self._lock:
            return set(self._rooms.get(room_id, ()))

    def user_sids(self, room_id: str, user_id: str) -> list[str]:
        with self._lock:
            return [
                sid
                for sid in self._rooms.get(room_id, ())
                if self._connections[sid].user_id == user_id
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)


class RoomChannel:
    def __init__(self, socketio: SocketIO, namespace: str = "/"):
        self.socketio = socketio
        self.namespace = namespace

    def emit(self, event: str, data=None, to: str | None = None, skip_sid: str | None = None) -> None:
        args = () if data is None else (data,)
        self.socketio.emit(event, *args, to=to, skip_sid=skip_sid, namespace=self.namespace)

    def emit_value(self, event: str, data, to: str) -> None:
        """Emit even when ``data`` is None (e.g. issue_changed with no issue)."""
        self.socketio.emit(event, data, to=to, namespace=self.namespace)

    def enter(self, sid: str, room_id: str) -> None:
        self.socketio.server.enter_room(sid, room_id, namespace=self.namespace)

    def exit(self, sid: str, room_id: str) -> None:
        self.socketio.server.leave_room(sid, room_id, namespace=self.namespace)
