from __future__ import annotations

import threading
import time

import fakeredis
import pytest

from backend.planpoker.errors import MaxRoomsExceeded, RoomBusy, StoreUnavailable
from backend.planpoker.poker import engine
from backend.planpoker.poker.locks import RoomLocks
from backend.planpoker.poker.models import Identity
from backend.planpoker.poker.service import RoomService
from backend.planpoker.poker.store import MemoryRoomStore, RedisRoomStore, build_store


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _room(admin_id="admin", name="Sprint 1"):
    return engine.new_room(Identity(admin_id, admin_id.title()), name)


@pytest.fixture(params=["memory", "redis"])
def store(request):
    if request.param == "memory":
        return MemoryRoomStore(ttl_seconds=60)
    return RedisRoomStore(fakeredis.FakeRedis(decode_responses=True), ttl_seconds=60)


def test_create_get_roundtrip(store):
    room = _room()
    room, issue = engine.add_issue(room, "admin", "Fix login bug", "details")
    room = engine.change_issue(room, "admin", issue.id)
    store.create(room)

    loaded = store.get(room.id)

    assert loaded is not room
    assert loaded.to_dict() == room.to_dict()
    assert loaded.current_issue.title == "Fix login bug"
    assert store.user_room_ids("admin") == {room.id}


def test_get_missing_room(store):
    assert store.get("missing") is None


def test_put_replaces_whole_document(store):
    room = store.create(_room())
    updated = engine.join(room, Identity("a", "A"))
    store.put(updated)

    assert "a" in store.get(room.id).participants
    # the loaded copy is independent of what the caller keeps mutating
    updated.name = "changed locally"
    assert store.get(room.id).name == "Sprint 1"


def test_delete_requires_admin(store):
    room = store.create(_room())

    assert store.delete(room.id, "someone-else") is False
    assert store.get(room.id) is not None

    assert store.delete(room.id, "admin") is True
    assert store.get(room.id) is None
    assert store.user_room_ids("admin") == set()
    assert store.delete(room.id, "admin") is False


def test_remove_user_room(store):
    first = store.create(_room())
    second = store.create(_room(name="Sprint 2"))

    store.remove_user_room("admin", first.id)

    assert store.user_room_ids("admin") == {second.id}


def test_memory_store_expires_untouched_rooms():
    clock = FakeClock()
    store = MemoryRoomStore(ttl_seconds=60, clock=clock)
    room = store.create(_room())

    clock.now += 50
    store.put(store.get(room.id))  # refreshes the ttl
    clock.now += 50
    assert store.get(room.id) is not None

    clock.now += 61
    assert store.get(room.id) is None
    assert store.user_room_ids("admin") == set()


def test_redis_store_sets_ttl_on_room_and_user_set():
    client = fakeredis.FakeRedis(decode_responses=True)
    store = RedisRoomStore(client, ttl_seconds=120)
    room = store.create(_room())

    assert 0 < client.ttl(f"room:{room.id}") <= 120
    assert 0 < client.ttl("user:rooms:admin") <= 120


def test_redis_failures_become_store_unavailable():
    server = fakeredis.FakeServer()
    server.connected = False
    store = RedisRoomStore(fakeredis.FakeRedis(server=server, decode_responses=True))

    with pytest.raises(StoreUnavailable) as excinfo:
        store.get("anything")
    assert excinfo.value.retryable is True

    with pytest.raises(StoreUnavailable):
        store.put(_room())


def test_build_store_defaults_to_memory():
    assert isinstance(build_store({"REDIS_URL": "", "ROOM_TTL_SECONDS": 10}), MemoryRoomStore)


# ============ Locks ============

def test_lock_times_out_as_room_busy():
    locks = RoomLocks(timeout_sec=0.05)
    with locks.hold("r1"):
        with pytest.raises(RoomBusy):
            with locks.hold("r1"):
                pass
        # other rooms are independent
        with locks.hold("r2"):
            pass


def test_lock_registry_only_keeps_locks_in_use():
    locks = RoomLocks(timeout_sec=0.05)
    with locks.hold("r1"):
        assert len(locks) == 1
        with pytest.raises(RoomBusy):
            with locks.hold("r1"):
                pass
        assert len(locks) == 1
    assert len(locks) == 0

    for n in range(200):
        with locks.hold(f"junk-{n}"):
            pass
    assert len(locks) == 0


def test_lock_is_shared_by_waiters():
    locks = RoomLocks(timeout_sec=5)
    inside = []

    def worker():
        with locks.hold("r1"):
            inside.append(len(inside))

    with locks.hold("r1"):
        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        # waiters hold a reference, so the entry survives until they finish
        assert len(locks) == 1
        assert inside == []
    for t in threads:
        t.join()

    assert inside == [0, 1, 2, 3]
    assert len(locks) == 0


def test_locked_read_modify_write_loses_no_updates():
    store = MemoryRoomStore()
    locks = RoomLocks(timeout_sec=5)
    room = store.create(_room())

    def add_issues(worker: int):
        for n in range(10):
            with locks.hold(room.id):
                current = store.get(room.id)
                updated, _ = engine.add_issue(current, "admin", f"w{worker}-{n}")
                store.put(updated)

    threads = [threading.Thread(target=add_issues, args=(w,)) for w in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(store.get(room.id).issues) == 80


def test_concurrent_creates_respect_room_cap():
    store = MemoryRoomStore()
    service = RoomService(store, RoomLocks(timeout_sec=5), max_rooms_per_user=3)
    owner = Identity("admin", "Admin")
    service.create_room(owner, "Sprint 0")
    service.create_room(owner, "Sprint 1")

    # widen the window between counting and creating
    counted = store.user_room_ids

    def slow_user_room_ids(user_id):
        ids = counted(user_id)
        time.sleep(0.05)
        return ids

    store.user_room_ids = slow_user_room_ids
    outcomes = []

    def create(n: int):
        try:
            service.create_room(owner, f"Sprint {n}")
            outcomes.append("created")
        except MaxRoomsExceeded:
            outcomes.append("refused")

    threads = [threading.Thread(target=create, args=(n,)) for n in range(2, 6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["created", "refused", "refused", "refused"]
    assert len(counted("admin")) == 3
