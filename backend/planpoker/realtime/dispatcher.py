"""
Event dispatcher.

One inbound command runs exactly one engine transition against the stored
Room while the room's lock is held, persists the result, then broadcasts.
Failures never reach the broadcast path: they come back as an ``Outcome``
and are sent to the originating connection only.
"""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from ..errors import (
    AuthenticationRequired,
    Forbidden,
    InvalidInput,
    NotFound,
    PokerError,
    RoomNotFound,
    StoreUnavailable,
)
from ..logging_config import get_logger
from ..poker import engine
from ..poker.locks import RoomLocks
from ..poker.models import Identity, Issue, Role, Room
from ..poker.store import RoomStore
from . import events
from .gateway import Connection, RoomChannel, SessionRegistry

logger = get_logger(__name__)


@dataclass
class Outcome:
    error: PokerError | None = None
    fatal: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    def ack(self) -> dict:
        if self.error is None:
            return {"ok": True}
        return {"ok": False, "error": self.error.message, "code": self.error.code}


class InternalError(PokerError):
    code = "INTERNAL"
    status = 500
    default_message = "Internal server error"


def _require_str(payload: dict, key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"Missing or invalid '{key}'")
    return value.strip()


def _public_issue(issue: Issue | None) -> dict | None:
    if issue is None:
        return None
    return issue.to_dict(include_votes=issue.is_revealed)


class EventDispatcher:
    def __init__(
        self,
        store: RoomStore,
        locks: RoomLocks,
        channel: RoomChannel,
        sessions: SessionRegistry | None = None,
        default_role: Role = Role.PLAYER,
        timer_max_sec: int = 3600,
    ):
        self.store = store
        self.locks = locks
        self.channel = channel
        self.sessions = sessions or SessionRegistry()
        self.default_role = default_role
        self.timer_max_sec = timer_max_sec

        self._handlers = {
            events.JOIN_ROOM: self._join_room,
            events.LEAVE_ROOM: self._leave_room,
            events.SUBMIT_VOTE: self._submit_vote,
            events.REVEAL_VOTES: self._reveal_votes,
            events.RESET_VOTING: self._reset_voting,
            events.CHANGE_ISSUE: self._change_issue,
            events.ADD_ISSUE: self._add_issue,
            events.REMOVE_ISSUE: self._remove_issue,
            events.UPDATE_ROLE: self._update_role,
            events.START_TIMER: self._start_timer,
            events.STOP_TIMER: self._stop_timer,
            events.KICK_PARTICIPANT: self._kick_participant,
            events.SET_ESTIMATE: self._set_estimate,
        }

    # ============ Connection lifecycle ============

    def connect(self, sid: str, identity: Identity) -> Connection:
        logger.info(f"User connected: {identity.user_id} (sid: {sid})")
        return self.sessions.connect(sid, identity)

    def disconnect(self, sid: str) -> None:
        conn = self.sessions.disconnect(sid)
        if conn is None:
            return
        logger.info(f"User disconnected: {conn.user_id} (sid: {sid})")
        if conn.room_id is None:
            return

        # There is no one left to report an error to.
        try:
            self._leave(conn.user_id, conn.room_id)
        except NotFound:
            logger.debug(f"Room {conn.room_id} gone before {conn.user_id} disconnected")
        except PokerError as e:
            logger.warning(f"Disconnect cleanup for {conn.user_id} in room {conn.room_id} failed: {e.message}")

    # ============ Command entry point ============

    def dispatch(self, sid: str, command: str, payload: Any) -> Outcome:
        try:
            conn = self.sessions.get(sid)
            if conn is None:
                raise AuthenticationRequired()
            handler = self._handlers.get(command)
            if handler is None:
                raise InvalidInput(f"Unknown command '{command}'")
            if not isinstance(payload, dict):
                raise InvalidInput("Invalid payload")

            room_id = _require_str(payload, "roomId")
            logger.debug(f"{command} from {conn.user_id} in room {room_id}")
            handler(conn, room_id, payload)
        except StoreUnavailable as e:
            logger.error(f"{command} from sid {sid} failed, store unavailable: {e.message}")
            return self._fail(sid, command, e)
        except Forbidden as e:
            logger.warning(f"{command} from sid {sid} forbidden: {e.message}")
            return self._fail(sid, command, e)
        except PokerError as e:
            logger.info(f"{command} from sid {sid} rejected: {e.code} {e.message}")
            return self._fail(sid, command, e)
        except Exception:
            logger.exception(f"Unexpected error handling {command} from sid {sid}")
            return self._fail(sid, command, InternalError())
        return Outcome()

    def _fail(self, sid: str, command: str, error: PokerError) -> Outcome:
        # A room that can't be found on the initial join is a dead end for the client.
        fatal = command == events.JOIN_ROOM and isinstance(error, NotFound)
        payload = error.to_dict()
        payload["fatal"] = fatal
        self.channel.emit(events.ERROR, payload, to=sid)
        return Outcome(error=error, fatal=fatal)

    @contextmanager
    def _locked_room(self, room_id: str):
        with self.locks.hold(room_id):
            room = self.store.get(room_id)
            if room is None:
                raise RoomNotFound(room_id)
            yield room

    def _broadcast_state(self, room: Room) -> None:
        self.channel.emit(events.ROOM_STATE, engine.room_public_state(room), to=room.id)

    # ============ Presence ============

    def _join_room(self, conn: Connection, room_id: str, payload: dict) -> None:
        if conn.room_id is not None and conn.room_id != room_id:
            raise Forbidden("Leave the current room before joining another")

        with self._locked_room(room_id) as current:
            room = engine.join(current, conn.identity, self.default_role)
            self.store.put(room)

            self.sessions.subscribe(conn.sid, room_id)
            self.channel.enter(conn.sid, room_id)

            participant = room.participants[conn.user_id]
            logger.info(f"User {conn.user_id} joined room {room_id}, participants: {len(room.participants)}")
            self.channel.emit(events.ROOM_STATE, engine.room_public_state(room), to=conn.sid)
            self.channel.emit(events.USER_JOINED, participant.to_dict(), to=room_id, skip_sid=conn.sid)

    def _leave_room(self, conn: Connection, room_id: str, payload: dict) -> None:
        if conn.room_id == room_id:
            self.sessions.unsubscribe(conn.sid)
            self.channel.exit(conn.sid, room_id)
        self._leave(conn.user_id, room_id)

    def _leave(self, user_id: str, room_id: str) -> None:
        with self._locked_room(room_id) as current:
            # Still present through another connection (e.g. a second tab).
            # Checked under the lock: joins subscribe while holding it.
            if self.sessions.user_sids(room_id, user_id):
                logger.debug(f"User {user_id} still connected to room {room_id}")
                return

            room = engine.leave(current, user_id)
            self.store.put(room)
            logger.info(f"User {user_id} left room {room_id}")
            self.channel.emit(events.USER_LEFT, {"userId": user_id}, to=room_id)

    def _kick_participant(self, conn: Connection, room_id: str, payload: dict) -> None:
        target_id = _require_str(payload, "userId")
        with self._locked_room(room_id) as current:
            room = engine.kick(current, conn.user_id, target_id)
            self.store.put(room)
            logger.info(f"User {target_id} kicked from room {room_id} by {conn.user_id}")

            self.channel.emit(events.PARTICIPANT_KICKED, {"userId": target_id}, to=room_id)
            for sid in self.sessions.user_sids(room_id, target_id):
                self.sessions.unsubscribe(sid)
                self.channel.exit(sid, room_id)
            self._broadcast_state(room)

    # ============ Voting ============

    def _submit_vote(self, conn: Connection, room_id: str, payload: dict) -> None:
        value = payload.get("value")
        with self._locked_room(room_id) as current:
            room = engine.submit_vote(current, conn.user_id, value)
            self.store.put(room)
            # The value itself stays secret until reveal.
            self.channel.emit(events.VOTE_SUBMITTED, {"userId": conn.user_id}, to=room_id)

    def _reveal_votes(self, conn: Connection, room_id: str, payload: dict) -> None:
        with self._locked_room(room_id) as current:
            room, results = engine.reveal(current, conn.user_id)
            self.store.put(room)
            logger.info(f"Votes revealed in room {room_id}: average={results.average} consensus={results.consensus}")
            self.channel.emit(events.VOTES_REVEALED, results.to_dict(), to=room_id)

    def _reset_voting(self, conn: Connection, room_id: str, payload: dict) -> None:
        with self._locked_room(room_id) as current:
            room = engine.reset(current, conn.user_id)
            self.store.put(room)
            self.channel.emit(events.VOTING_RESET, to=room_id)
            self._broadcast_state(room)

    # ============ Issues ============

    def _change_issue(self, conn: Connection, room_id: str, payload: dict) -> None:
        if "issueId" in payload:
            issue_id = payload["issueId"]
        elif "issue" in payload:
            issue = payload["issue"]
            if issue is not None and not isinstance(issue, dict):
                raise InvalidInput("Invalid issue")
            if issue is not None and "id" not in issue:
                raise InvalidInput("Missing issue id")
            issue_id = issue.get("id") if issue is not None else None
        else:
            raise InvalidInput("Missing 'issue'")
        if issue_id is not None and not isinstance(issue_id, str):
            raise InvalidInput("Invalid issue id")

        with self._locked_room(room_id) as current:
            room = engine.change_issue(current, conn.user_id, issue_id)
            self.store.put(room)
            self.channel.emit_value(events.ISSUE_CHANGED, _public_issue(room.current_issue), to=room_id)
            self._broadcast_state(room)

    def _add_issue(self, conn: Connection, room_id: str, payload: dict) -> None:
        with self._locked_room(room_id) as current:
            room, issue = engine.add_issue(current, conn.user_id, payload.get("title"), payload.get("description"))
            self.store.put(room)
            self.channel.emit(events.ISSUE_ADDED, _public_issue(issue), to=room_id)

    def _remove_issue(self, conn: Connection, room_id: str, payload: dict) -> None:
        issue_id = _require_str(payload, "issueId")
        with self._locked_room(room_id) as current:
            was_current = current.current_issue_id == issue_id
            room = engine.remove_issue(current, conn.user_id, issue_id)
            self.store.put(room)
            self.channel.emit(events.ISSUE_REMOVED, {"issueId": issue_id}, to=room_id)
            if was_current:
                self._broadcast_state(room)

    def _set_estimate(self, conn: Connection, room_id: str, payload: dict) -> None:
        issue_id = _require_str(payload, "issueId")
        with self._locked_room(room_id) as current:
            room, issue = engine.set_final_estimate(current, conn.user_id, issue_id, payload.get("value"))
            self.store.put(room)
            self.channel.emit(events.ISSUE_UPDATED, _public_issue(issue), to=room_id)

    # ============ Roles ============

    def _update_role(self, conn: Connection, room_id: str, payload: dict) -> None:
        target_id = _require_str(payload, "userId")
        role = engine.parse_role(payload.get("role"))
        with self._locked_room(room_id) as current:
            room = engine.update_role(current, conn.user_id, target_id, role)
            self.store.put(room)
            self.channel.emit(events.ROLE_UPDATED, {"userId": target_id, "role": role.value}, to=room_id)
            self._broadcast_state(room)

    # ============ Timer ============

    def _start_timer(self, conn: Connection, room_id: str, payload: dict) -> None:
        duration = payload.get("durationSeconds", payload.get("duration"))
        with self._locked_room(room_id) as current:
            room = engine.start_timer(current, conn.user_id, duration, max_sec=self.timer_max_sec)
            self.store.put(room)
            self.channel.emit(events.TIMER_STARTED, {"endTimeEpochMs": room.timer_end_time}, to=room_id)

    def _stop_timer(self, conn: Connection, room_id: str, payload: dict) -> None:
        with self._locked_room(room_id) as current:
            room = engine.stop_timer(current, conn.user_id)
            self.store.put(room)
            self.channel.emit(events.TIMER_STOPPED, to=room_id)
