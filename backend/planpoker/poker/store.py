"""
Room Store: full-document persistence for Room aggregates.

There are no field-level updates. Callers read a Room, compute a new one and
``put`` it back; serializing concurrent writers is the dispatcher's job.
"""
from __future__ import annotations

import json
import time
from functools import wraps
from threading import RLock

import redis

from ..errors import StoreUnavailable
from ..logging_config import get_logger
from .models import Room

logger = get_logger(__name__)

ROOM_PREFIX = "room:"
USER_ROOMS_PREFIX = "user:rooms:"


def _encode(room: Room) -> str:
    return json.dumps(room.to_dict(), separators=(",", ":"))


def _decode(raw: str | None) -> Room | None:
    if not raw:
        return None
    return Room.from_dict(json.loads(raw))


class RoomStore:
    """Storage contract; see MemoryRoomStore and RedisRoomStore."""

    def __init__(self, ttl_seconds: int = 86400):
        self.ttl_seconds = ttl_seconds

    def create(self, room: Room) -> Room:
        raise NotImplementedError

    def get(self, room_id: str) -> Room | None:
        raise NotImplementedError

    def put(self, room: Room) -> None:
        raise NotImplementedError

    def delete(self, room_id: str, requester_id: str) -> bool:
        raise NotImplementedError

    def user_room_ids(self, user_id: str) -> set[str]:
        raise NotImplementedError

    def remove_user_room(self, user_id: str, room_id: str) -> None:
        raise NotImplementedError


class MemoryRoomStore(RoomStore):
    """Process-local store with the same expiry semantics as the Redis one."""

    def __init__(self, ttl_seconds: int = 86400, clock=time.time):
        super().__init__(ttl_seconds)
        self._clock = clock
        self._lock = RLock()
        self._rooms: dict[str, tuple[str, float]] = {}
        self._user_rooms: dict[str, tuple[set[str], float]] = {}

    def _expires_at(self) -> float:
        return self._clock() + self.ttl_seconds

    def _touch_user_room(self, user_id: str, room_id: str) -> None:
        ids = self._live_user_rooms(user_id)
        ids.add(room_id)
        self._user_rooms[user_id] = (ids, self._expires_at())

    def _live_user_rooms(self, user_id: str) -> set[str]:
        entry = self._user_rooms.get(user_id)
        if entry is None:
            return set()
        ids, expires_at = entry
        if expires_at <= self._clock():
            del self._user_rooms[user_id]
            return set()
        return set(ids)

    def create(self, room: Room) -> Room:
        with self._lock:
            self._rooms[room.id] = (_encode(room), self._expires_at())
            self._touch_user_room(room.admin_id, room.id)
        logger.info(f"Created room {room.id} for admin {room.admin_id}")
        return room

    def get(self, room_id: str) -> Room | None:
        with self._lock:
            entry = self._rooms.get(room_id)
            if entry is None:
                return None
            raw, expires_at = entry
            if expires_at <= self._clock():
                del self._rooms[room_id]
                logger.debug(f"Room {room_id} expired")
                return None
        return _decode(raw)

    def put(self, room: Room) -> None:
        with self._lock:
            self._rooms[room.id] = (_encode(room), self._expires_at())
            self._touch_user_room(room.admin_id, room.id)

    def delete(self, room_id: str, requester_id: str) -> bool:
        with self._lock:
            room = self.get(room_id)
            if room is None or room.admin_id != requester_id:
                return False
            del self._rooms[room_id]
            self.remove_user_room(requester_id, room_id)
        logger.info(f"Deleted room {room_id}")
        return True

    def user_room_ids(self, user_id: str) -> set[str]:
        with self._lock:
            return self._live_user_rooms(user_id)

    def remove_user_room(self, user_id: str, room_id: str) -> None:
        with self._lock:
            entry = self._user_rooms.get(user_id)
            if entry is not None:
                entry[0].discard(room_id)


def _guarded(func):
    """Turn redis failures into StoreUnavailable so nothing half-applied leaks out."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except redis.RedisError as e:
            logger.error(f"Redis {func.__name__} failed: {e}", exc_info=True)
            raise StoreUnavailable() from e

    return wrapper


class RedisRoomStore(RoomStore):
    def __init__(self, client: redis.Redis, ttl_seconds: int = 86400):
        super().__init__(ttl_seconds)
        self.redis_client = client

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int = 86400, timeout_sec: float = 2.0) -> RedisRoomStore:
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_sec,
            socket_connect_timeout=timeout_sec,
        )
        logger.info(f"Using Redis room store at {url}")
        return cls(client, ttl_seconds=ttl_seconds)

    @staticmethod
    def _room_key(room_id: str) -> str:
        return f"{ROOM_PREFIX}{room_id}"

    @staticmethod
    def _user_key(user_id: str) -> str:
        return f"{USER_ROOMS_PREFIX}{user_id}"

    def _write(self, room: Room) -> None:
        pipe = self.redis_client.pipeline()
        pipe.set(self._room_key(room.id), _encode(room), ex=self.ttl_seconds)
        pipe.sadd(self._user_key(room.admin_id), room.id)
        pipe.expire(self._user_key(room.admin_id), self.ttl_seconds)
        pipe.execute()

    @_guarded
    def create(self, room: Room) -> Room:
        self._write(room)
        logger.info(f"Created room {room.id} for admin {room.admin_id}")
        return room

    @_guarded
    def get(self, room_id: str) -> Room | None:
        return _decode(self.redis_client.get(self._room_key(room_id)))

    @_guarded
    def put(self, room: Room) -> None:
        self._write(room)

    @_guarded
    def delete(self, room_id: str, requester_id: str) -> bool:
        room = _decode(self.redis_client.get(self._room_key(room_id)))
        if room is None or room.admin_id != requester_id:
            return False
        pipe = self.redis_client.pipeline()
        pipe.delete(self._room_key(room_id))
        pipe.srem(self._user_key(requester_id), room_id)
        pipe.execute()
        logger.info(f"Deleted room {room_id}")
        return True

    @_guarded
    def user_room_ids(self, user_id: str) -> set[str]:
        return set(self.redis_client.smembers(self._user_key(user_id)))

    @_guarded
    def remove_user_room(self, user_id: str, room_id: str) -> None:
        self.redis_client.srem(self._user_key(user_id), room_id)


def build_store(config) -> RoomStore:
    ttl = int(config.get("ROOM_TTL_SECONDS", 86400))
    url = config.get("REDIS_URL", "")
    if url:
        return RedisRoomStore.from_url(url, ttl_seconds=ttl, timeout_sec=float(config.get("STORE_TIMEOUT_SEC", 2)))
    logger.info("REDIS_URL not set, using in-memory room store")
    return MemoryRoomStore(ttl_seconds=ttl)
