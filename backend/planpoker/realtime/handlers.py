from __future__ import annotations

from flask import request
from flask_socketio import ConnectionRefusedError, SocketIO

from ..auth import resolve_identity
from ..logging_config import get_logger
from . import events
from .dispatcher import EventDispatcher

logger = get_logger(__name__)


def register_socketio_handlers(socketio: SocketIO, dispatcher: EventDispatcher) -> None:
    def _dispatch(command: str, data) -> dict:
        return dispatcher.dispatch(request.sid, command, data).ack()

    @socketio.on("connect")
    def on_connect(auth=None):
        identity = resolve_identity(auth)
        if identity is None:
            logger.warning(f"Socket auth failed for sid {request.sid}")
            raise ConnectionRefusedError("Authentication required")
        dispatcher.connect(request.sid, identity)

    @socketio.on("disconnect")
    def on_disconnect(reason=None):
        dispatcher.disconnect(request.sid)

    @socketio.on(events.JOIN_ROOM)
    def join_room(data=None):
        return _dispatch(events.JOIN_ROOM, data)

    @socketio.on(events.LEAVE_ROOM)
    def leave_room(data=None):
        return _dispatch(events.LEAVE_ROOM, data)

    @socketio.on(events.SUBMIT_VOTE)
    def submit_vote(data=None):
        return _dispatch(events.SUBMIT_VOTE, data)

    @socketio.on(events.REVEAL_VOTES)
    def reveal_votes(data=None):
        return _dispatch(events.REVEAL_VOTES, data)

    @socketio.on(events.RESET_VOTING)
    def reset_voting(data=None):
        return _dispatch(events.RESET_VOTING, data)

    @socketio.on(events.CHANGE_ISSUE)
    def change_issue(data=None):
        return _dispatch(events.CHANGE_ISSUE, data)

    @socketio.on(events.ADD_ISSUE)
    def add_issue(data=None):
        return _dispatch(events.ADD_ISSUE, data)

    @socketio.on(events.REMOVE_ISSUE)
    def remove_issue(data=None):
        return _dispatch(events.REMOVE_ISSUE, data)

    @socketio.on(events.UPDATE_ROLE)
    def update_role(data=None):
        return _dispatch(events.UPDATE_ROLE, data)

    @socketio.on(events.START_TIMER)
    def start_timer(data=None):
        return _dispatch(events.START_TIMER, data)

    @socketio.on(events.STOP_TIMER)
    def stop_timer(data=None):
        return _dispatch(events.STOP_TIMER, data)

    @socketio.on(events.KICK_PARTICIPANT)
    def kick_participant(data=None):
        return _dispatch(events.KICK_PARTICIPANT, data)

    @socketio.on(events.SET_ESTIMATE)
    def set_estimate(data=None):
        return _dispatch(events.SET_ESTIMATE, data)
