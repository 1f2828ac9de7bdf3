from __future__ import annotations

import uuid

from flask import Blueprint, current_app, g, jsonify, request

from ..auth import issue_token, login_required
from ..errors import InvalidInput, NotFound
from ..poker.models import Identity

bp = Blueprint("auth", __name__)

NAME_MAX = 50


@bp.post("/auth/dev-login")
def dev_login():
    """Issue a token without OAuth. Only for local development and demos."""
    if not current_app.config.get("ALLOW_DEV_LOGIN", False):
        raise NotFound()

    data = request.get_json(silent=True) or {}
    name = str(data.get("name", "")).strip()
    if not name or len(name) > NAME_MAX or "<" in name or ">" in name:
        raise InvalidInput("Invalid name")

    avatar_url = data.get("avatarUrl")
    if avatar_url is not None and not isinstance(avatar_url, str):
        raise InvalidInput("Invalid avatarUrl")

    user_id = str(data.get("userId") or uuid.uuid4())
    identity = Identity(user_id=user_id, name=name, avatar_url=avatar_url or None)
    token = issue_token(identity, current_app.config["SECRET_KEY"])

    resp = jsonify({"user": identity.to_dict(), "token": token})
    resp.set_cookie(
        current_app.config["AUTH_COOKIE_NAME"],
        token,
        max_age=current_app.config["AUTH_TOKEN_MAX_AGE_SEC"],
        httponly=True,
        samesite="Lax",
    )
    return resp


@bp.get("/auth/me")
@login_required
def me():
    return jsonify({"user": g.identity.to_dict()})


@bp.post("/auth/logout")
def logout():
    resp = jsonify({"message": "Logged out"})
    resp.delete_cookie(current_app.config["AUTH_COOKIE_NAME"])
    return resp
