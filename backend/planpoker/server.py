from __future__ import annotations

import os
import sys
from dataclasses import dataclass

from flask import Flask, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO
from werkzeug.middleware.proxy_fix import ProxyFix

from .config import Config
from .errors import PokerError
from .logging_config import get_logger, setup_logging
from .poker.engine import parse_role
from .poker.locks import RoomLocks
from .poker.service import RoomService
from .poker.store import RoomStore, build_store
from .realtime.dispatcher import EventDispatcher
from .realtime.gateway import RoomChannel
from .realtime.handlers import register_socketio_handlers
from .routes.auth import bp as auth_bp
from .routes.health import bp as health_bp
from .routes.rooms import bp as rooms_bp

logger = get_logger(__name__)


@dataclass
class Services:
    store: RoomStore
    locks: RoomLocks
    rooms: RoomService
    dispatcher: EventDispatcher


def _pick_async_mode() -> str:
    env_async_mode = os.environ.get("SOCKETIO_ASYNC_MODE", "").strip()
    if env_async_mode:
        return env_async_mode
    # Windows and Python >= 3.13: threading (eventlet has known compatibility issues there)
    if sys.platform.startswith("win") or sys.version_info >= (3, 13):
        return "threading"
    return "eventlet"


def create_app(config: dict | None = None, store: RoomStore | None = None) -> tuple[Flask, SocketIO]:
    app = Flask(__name__, static_folder=None)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    setup_logging(app.config["LOG_LEVEL"], app.config.get("LOG_FILE") or None)

    if app.config.get("TRUST_PROXY_HEADERS", False):
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    cors_origins = app.config.get("CORS_ORIGINS", "*")
    CORS(app, resources={r"/api/*": {"origins": cors_origins}}, supports_credentials=True)

    socketio = SocketIO(
        app,
        cors_allowed_origins=cors_origins,
        async_mode=app.config.get("SOCKETIO_ASYNC_MODE") or _pick_async_mode(),
    )

    store = store or build_store(app.config)
    locks = RoomLocks(timeout_sec=float(app.config["ROOM_LOCK_TIMEOUT_SEC"]))
    dispatcher = EventDispatcher(
        store,
        locks,
        RoomChannel(socketio),
        default_role=parse_role(app.config["DEFAULT_PARTICIPANT_ROLE"]),
        timer_max_sec=int(app.config["TIMER_MAX_SEC"]),
    )
    app.extensions["planpoker"] = Services(
        store=store,
        locks=locks,
        rooms=RoomService(store, locks, max_rooms_per_user=int(app.config["MAX_ROOMS_PER_USER"])),
        dispatcher=dispatcher,
    )

    app.register_blueprint(health_bp, url_prefix="/api")
    app.register_blueprint(auth_bp, url_prefix="/api")
    app.register_blueprint(rooms_bp, url_prefix="/api")

    @app.errorhandler(PokerError)
    def handle_poker_error(err: PokerError):
        if err.status >= 500:
            logger.error(f"Request failed: {err.code} {err.message}")
        return jsonify({"message": err.message, "code": err.code}), err.status

    register_socketio_handlers(socketio, dispatcher)

    logger.info(f"App created (store={type(store).__name__}, async_mode={socketio.async_mode})")
    return app, socketio
