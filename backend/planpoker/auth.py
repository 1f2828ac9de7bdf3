"""
Bearer credentials.

Identity issuance (OAuth) happens elsewhere; this module only signs and
verifies the token that carries a resolved identity, and finds it on an
incoming request or Socket.IO handshake.
"""
from __future__ import annotations

from functools import wraps

from flask import current_app, g, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from .errors import AuthenticationRequired
from .logging_config import get_logger
from .poker.models import Identity

logger = get_logger(__name__)

TOKEN_SALT = "planpoker-auth"


def _serializer(secret_key: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key, salt=TOKEN_SALT)


def issue_token(identity: Identity, secret_key: str) -> str:
    payload = {"uid": identity.user_id, "name": identity.name, "avatarUrl": identity.avatar_url}
    return _serializer(secret_key).dumps(payload)


def verify_token(token: str | None, secret_key: str, max_age: int | None = None) -> Identity | None:
    if not token or not isinstance(token, str):
        return None
    try:
        payload = _serializer(secret_key).loads(token, max_age=max_age)
    except SignatureExpired:
        logger.info("Rejected expired auth token")
        return None
    except BadSignature:
        logger.warning("Rejected auth token with bad signature")
        return None

    user_id = payload.get("uid") if isinstance(payload, dict) else None
    if not user_id:
        return None
    return Identity(user_id=str(user_id), name=str(payload.get("name") or ""), avatar_url=payload.get("avatarUrl"))


def token_from_request(handshake_auth: dict | None = None) -> str | None:
    """Handshake ``auth.token`` first, then the auth cookie, then a Bearer header."""
    if isinstance(handshake_auth, dict):
        token = handshake_auth.get("token")
        if token:
            return token

    token = request.cookies.get(current_app.config["AUTH_COOKIE_NAME"])
    if token:
        return token

    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def resolve_identity(handshake_auth: dict | None = None) -> Identity | None:
    return verify_token(
        token_from_request(handshake_auth),
        current_app.config["SECRET_KEY"],
        max_age=current_app.config.get("AUTH_TOKEN_MAX_AGE_SEC"),
    )


def login_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        identity = resolve_identity()
        if identity is None:
            raise AuthenticationRequired()
        g.identity = identity
        return view(*args, **kwargs)

    return wrapper
