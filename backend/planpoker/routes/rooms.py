from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from ..auth import login_required
from ..poker import engine
from ..poker.models import RoomSummary
from ..poker.service import RoomService

bp = Blueprint("rooms", __name__)


def _service() -> RoomService:
    return current_app.extensions["planpoker"].rooms


@bp.post("/rooms")
@login_required
def create_room():
    data = request.get_json(silent=True) or {}
    room = _service().create_room(g.identity, data.get("name"))
    return jsonify({"room": RoomSummary.of(room).to_dict()}), 201


@bp.get("/rooms")
@login_required
def list_rooms():
    summaries = _service().list_user_rooms(g.identity.user_id)
    return jsonify({"rooms": [s.to_dict() for s in summaries]})


@bp.get("/rooms/<room_id>")
@login_required
def get_room(room_id: str):
    room = _service().get_room(room_id)
    return jsonify({"room": engine.room_public_state(room)})


@bp.delete("/rooms/<room_id>")
@login_required
def delete_room(room_id: str):
    _service().delete_room(room_id, g.identity.user_id)
    return jsonify({"message": "Room deleted"})
