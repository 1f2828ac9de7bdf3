from __future__ import annotations

from ..errors import Forbidden, MaxRoomsExceeded, RoomNotFound
from ..logging_config import get_logger
from . import engine
from .locks import RoomLocks
from .models import Identity, Room, RoomSummary
from .store import RoomStore

logger = get_logger(__name__)


class RoomService:
    """Room lifecycle for the HTTP surface: create, list, get, delete."""

    def __init__(self, store: RoomStore, locks: RoomLocks, max_rooms_per_user: int = 3):
        self.store = store
        self.locks = locks
        self.max_rooms_per_user = max_rooms_per_user

    def _owned_rooms(self, user_id: str) -> list[Room]:
        rooms = []
        for room_id in sorted(self.store.user_room_ids(user_id)):
            room = self.store.get(room_id)
            # Expired rooms and rooms whose admin role moved on are pruned lazily.
            if room is None or room.admin_id != user_id:
                self.store.remove_user_room(user_id, room_id)
                continue
            rooms.append(room)
        return rooms

    def create_room(self, owner: Identity, name) -> Room:
        room = engine.new_room(owner, name)
        # Count and create in one critical section per user.
        with self.locks.hold(f"user:{owner.user_id}"):
            if len(self._owned_rooms(owner.user_id)) >= self.max_rooms_per_user:
                logger.info(f"User {owner.user_id} hit the {self.max_rooms_per_user}-room limit")
                raise MaxRoomsExceeded(self.max_rooms_per_user)
            return self.store.create(room)

    def get_room(self, room_id: str) -> Room:
        room = self.store.get(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        return room

    def list_user_rooms(self, user_id: str) -> list[RoomSummary]:
        rooms = self._owned_rooms(user_id)
        rooms.sort(key=lambda r: r.created_at)
        return [RoomSummary.of(r) for r in rooms]

    def delete_room(self, room_id: str, requester_id: str) -> None:
        with self.locks.hold(room_id):
            room = self.store.get(room_id)
            if room is None:
                raise RoomNotFound(room_id)
            if room.admin_id != requester_id:
                raise Forbidden("Only admin can delete the room")
            if not self.store.delete(room_id, requester_id):
                raise Forbidden("Only admin can delete the room")
