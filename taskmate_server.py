#!/usr/bin/env python3
"""
TaskMate Server
---------------
JSON API for personal kanban boards, backed by SQLite.

Usage:
    python taskmate_server.py
    python taskmate_server.py --host 0.0.0.0 --port 3000 --db /var/lib/taskmate/taskmate.db

API:
    POST /api/auth/register     → { email, password, name }  sets session cookie
    POST /api/auth/login        → { email, password }        sets session cookie
    POST /api/auth/logout       → clears session cookie
    GET  /api/auth/me           → current user

    GET  /api/tasks[?board_id=] → [task]
    POST /api/tasks             → { title, board_id, ... }   → task (201)
    PUT  /api/tasks/<id>        → partial update              → task
    DELETE /api/tasks/<id>
    POST /api/tasks/<id>/move   → { board_id, position? }     → task

    GET  /api/boards            → [board with tasks]
    GET  /api/tags              → [tag]
    POST /api/tags              → { name, color? }            → tag (201)
    GET  /api/users             → [user]

    GET  /api/cleanup           → { success, stats }
    POST /api/cleanup           → { success, message, deletedCount, deletedTasks }
    GET/POST /api/cron/cleanup  → scheduler entrypoint (session cookie or X-API-Key)

    GET  /health                → { status, db }

Every /api route except register/login/cron requires the session cookie.
"""

import hmac
import logging
import sys
from datetime import timedelta
from functools import wraps
from typing import Optional

from flask import Flask, current_app, g, jsonify, request

from taskmate.auth import AuthService
from taskmate.cleanup import (
    cleanup_monitoring_stats,
    cleanup_old_done_tasks,
    get_cleanup_stats,
    perform_scheduled_cleanup,
)
from taskmate.config import Config
from taskmate.database import Database
from taskmate.errors import AuthorizationError, TaskMateError, ValidationError
from taskmate.sessions import SessionRepository, build_session_repository
from taskmate.store import TaskStore

LOG_FORMAT = "%(asctime)s [taskmate] %(levelname)s: %(message)s"


# ── Helpers ──────────────────────────────────────────────────────────────────

def _cfg() -> Config:
    return current_app.config["TASKMATE_CONFIG"]


def _auth() -> AuthService:
    return current_app.config["TASKMATE_AUTH"]


def _db() -> Database:
    return current_app.config["TASKMATE_DB"]


def _session_id() -> Optional[str]:
    return request.cookies.get(_cfg().cookie_name)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _set_session_cookie(response, session):
    cfg = _cfg()
    response.set_cookie(
        cfg.cookie_name,
        session.session_id,
        max_age=int(timedelta(hours=cfg.session_ttl_hours).total_seconds()),
        httponly=True,
        secure=cfg.cookie_secure,
        samesite="Lax",
        path="/",
    )
    return response


# ── Decorators ───────────────────────────────────────────────────────────────

def json_errors(f):
    """Decorator: map TaskMate errors to JSON responses; log every failure first."""
    @wraps(f)
    def decorated(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except TaskMateError as e:
            if e.status_code >= 500:
                current_app.logger.error(f"{request.method} {request.path} failed: {e}")
            else:
                current_app.logger.warning(f"{request.method} {request.path} rejected: {e}")
            return jsonify({"error": str(e)}), e.status_code
        except Exception as e:
            current_app.logger.exception(f"{request.method} {request.path} crashed: {e}")
            return jsonify({"error": "Internal server error"}), 500
    return decorated


def require_session(f):
    """Decorator: resolve the session cookie to g.user and an owner-scoped g.store."""
    @wraps(f)
    def decorated(*args, **kwargs):
        user = _auth().require_user(_session_id())
        g.user = user
        g.store = TaskStore(_db(), user.id)
        return f(*args, **kwargs)
    return decorated


# ── App factory ──────────────────────────────────────────────────────────────

def create_app(
    cfg: Optional[Config] = None,
    db: Optional[Database] = None,
    sessions: Optional[SessionRepository] = None,
) -> Flask:
    cfg = cfg or Config.load()
    db = db or Database(cfg.db_path, retries=cfg.query_retries, retry_delay=cfg.retry_delay_secs)
    sessions = sessions or build_session_repository(cfg)

    app = Flask(__name__)
    app.config["TASKMATE_CONFIG"] = cfg
    app.config["TASKMATE_DB"] = db
    app.config["TASKMATE_AUTH"] = AuthService(db, sessions)

    # ── Auth ─────────────────────────────────────────────────────────────────

    @app.route("/api/auth/register", methods=["POST"])
    @json_errors
    def register():
        data = _json_body()
        user, session = _auth().register(data.get("email"), data.get("password"), data.get("name"))
        return _set_session_cookie(jsonify({"user": user.to_dict()}), session)

    @app.route("/api/auth/login", methods=["POST"])
    @json_errors
    def login():
        data = _json_body()
        user, session = _auth().login(data.get("email"), data.get("password"))
        return _set_session_cookie(jsonify({"user": user.to_dict()}), session)

    @app.route("/api/auth/logout", methods=["POST"])
    @json_errors
    def logout():
        _auth().logout(_session_id())
        response = jsonify({"success": True})
        response.delete_cookie(_cfg().cookie_name, path="/")
        return response

    @app.route("/api/auth/me")
    @json_errors
    @require_session
    def me():
        return jsonify(g.user.to_dict())

    # ── Tasks ────────────────────────────────────────────────────────────────

    @app.route("/api/tasks", methods=["GET"])
    @json_errors
    @require_session
    def list_tasks():
        tasks = g.store.get_tasks(request.args.get("board_id") or None)
        return jsonify([t.to_dict() for t in tasks])

    @app.route("/api/tasks", methods=["POST"])
    @json_errors
    @require_session
    def create_task():
        task = g.store.create_task(_json_body())
        return jsonify(task.to_dict()), 201

    @app.route("/api/tasks/<task_id>", methods=["PUT"])
    @json_errors
    @require_session
    def update_task(task_id):
        task = g.store.update_task(task_id, _json_body())
        return jsonify(task.to_dict())

    @app.route("/api/tasks/<task_id>", methods=["DELETE"])
    @json_errors
    @require_session
    def delete_task(task_id):
        g.store.delete_task(task_id)
        return jsonify({"success": True})

    @app.route("/api/tasks/<task_id>/move", methods=["POST"])
    @json_errors
    @require_session
    def move_task(task_id):
        data = _json_body()
        task = g.store.move_task(task_id, data.get("board_id"), data.get("position"))
        return jsonify(task.to_dict())

    # ── Boards / tags / users ────────────────────────────────────────────────

    @app.route("/api/boards")
    @json_errors
    @require_session
    def list_boards():
        return jsonify([b.to_dict() for b in g.store.get_boards()])

    @app.route("/api/tags", methods=["GET"])
    @json_errors
    @require_session
    def list_tags():
        return jsonify([t.to_dict() for t in g.store.get_tags()])

    @app.route("/api/tags", methods=["POST"])
    @json_errors
    @require_session
    def create_tag():
        data = _json_body()
        tag = g.store.create_tag(data.get("name"), data.get("color"))
        return jsonify(tag.to_dict()), 201

    @app.route("/api/users")
    @json_errors
    @require_session
    def list_users():
        return jsonify([u.to_dict() for u in g.store.get_users()])

    # ── Cleanup ──────────────────────────────────────────────────────────────

    @app.route("/api/cleanup", methods=["GET"])
    @json_errors
    @require_session
    def cleanup_stats():
        stats = get_cleanup_stats(_db(), g.user.id, _cfg().retention_hours)
        return jsonify({
            "success": True,
            "stats": stats,
            "schedule": cleanup_monitoring_stats(_cfg().retention_hours),
        })

    @app.route("/api/cleanup", methods=["POST"])
    @json_errors
    @require_session
    def cleanup_now():
        result = cleanup_old_done_tasks(_db(), g.user.id, _cfg().retention_hours)
        return jsonify({
            "success": True,
            "message": f"Successfully deleted {result['deletedCount']} old tasks",
            "deletedCount": result["deletedCount"],
            "deletedTasks": result["deletedTasks"],
        })

    @app.route("/api/cron/cleanup", methods=["GET", "POST"])
    @json_errors
    def cron_cleanup():
        owner = _cron_owner()
        result = perform_scheduled_cleanup(_db(), owner.id, _cfg().retention_hours)
        if not result["success"]:
            return jsonify({
                "message": "Cleanup failed",
                "error": result["error"],
                "timestamp": result["timestamp"],
            }), 500
        return jsonify({
            "message": "Cleanup completed successfully",
            "deletedCount": result["deletedCount"],
            "timestamp": result["timestamp"],
        })

    # ── Health ───────────────────────────────────────────────────────────────

    @app.route("/health")
    def health():
        ok = _db().check_connection()
        return jsonify({"status": "ok" if ok else "degraded", "db": ok}), (200 if ok else 503)

    return app


def _cron_owner():
    """
    The account a cron call cleans: the session user when the cookie is
    valid, otherwise ``cron_owner_email`` when X-API-Key matches
    ``cron_secret``.
    """
    user = _auth().current_user(_session_id())
    if user is not None:
        return user

    cfg = _cfg()
    provided = request.headers.get("X-API-Key", "").strip()
    if not cfg.cron_secret or not provided:
        raise AuthorizationError("No session found")
    if not hmac.compare_digest(provided, cfg.cron_secret):
        raise AuthorizationError("Invalid API key")
    owner = _auth().get_user_by_email(cfg.cron_owner_email)
    if owner is None:
        raise AuthorizationError("Cron owner not found")
    return owner


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="TaskMate Server")
    parser.add_argument("--host", default=None,
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--db", help="Path to taskmate.db (overrides TASKMATE_DB env var)")
    parser.add_argument("--config", help="Path to config.yaml (overrides TASKMATE_CONFIG env var)")
    args = parser.parse_args()

    config = Config.load(args.config)
    if args.db:
        config.db_path = args.db
        config.resolve_paths()

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    host = args.host or config.host
    port = args.port or config.port
    logging.getLogger("taskmate").info(
        f"TaskMate server on http://{host}:{port} (db={config.db_path}, sessions={config.session_backend})"
    )
    create_app(config).run(host=host, port=port, debug=False, threaded=True)
