import logging
import sqlite3
import sys
from datetime import date
from pathlib import Path

from flask import Blueprint, Flask, current_app, jsonify, request, send_from_directory
from werkzeug.exceptions import BadRequest, Conflict, HTTPException, NotFound
from werkzeug.security import safe_join

import database
from config import get_settings
from logging_setup import setup_logging

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")


# ---------------- HELPERS ----------------
def get_db():
    return current_app.extensions["waida.database"]


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise BadRequest("JSON object expected")
    return data


def parse_date(value, field="date"):
    if not isinstance(value, str) or not value.strip():
        raise BadRequest(f"{field} required")
    try:
        return date.fromisoformat(value.strip()).isoformat()
    except ValueError:
        raise BadRequest(f"{field} must be a YYYY-MM-DD date")


def required_text(data, field="text"):
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise BadRequest(f"{field} required")
    return value.strip()


def optional_text(data, field):
    if data.get(field) is None:
        return None
    return required_text(data, field)


def optional_notes(data):
    notes = data.get("notes")
    if notes is None:
        return None
    if not isinstance(notes, str):
        raise BadRequest("notes must be a string")
    return notes


def optional_bool(data, field="completed"):
    value = data.get(field)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise BadRequest(f"{field} must be a boolean")
    return value


# ---------------- TASKS ----------------
@api.route("/tasks", methods=["GET"])
def list_tasks():
    raw = request.args.get("date")
    day = parse_date(raw) if raw else date.today().isoformat()
    return jsonify(database.list_tasks(get_db(), day))


@api.route("/tasks/<int:task_id>", methods=["GET"])
def get_task(task_id):
    return jsonify(database.get_task(get_db(), task_id))


@api.route("/tasks", methods=["POST"])
def create_task():
    data = json_body()
    text = required_text(data)
    day = parse_date(data.get("date"))
    notes = optional_notes(data) or ""

    group_id = data.get("task_group_id")
    if group_id is not None and not isinstance(group_id, str):
        raise BadRequest("task_group_id must be a string")

    task = database.create_task(get_db(), text, day, notes=notes, task_group_id=group_id)
    return jsonify(task), 201


@api.route("/tasks/<int:task_id>", methods=["PUT"])
def update_task(task_id):
    data = json_body()
    task = database.update_task(
        get_db(),
        task_id,
        text=optional_text(data, "text"),
        notes=optional_notes(data),
        completed=optional_bool(data),
    )
    return jsonify(task)


@api.route("/tasks/<int:task_id>", methods=["DELETE"])
def delete_task(task_id):
    database.delete_task(get_db(), task_id)
    return jsonify({"success": True})


# --------------- COMPLETE ----------------
@api.route("/tasks/<int:task_id>/complete", methods=["PUT"])
def complete_task(task_id):
    completed = optional_bool(json_body())
    if completed is None:
        raise BadRequest("completed required")
    return jsonify(database.set_completed(get_db(), task_id, completed))


# ---------------- COPY ----------------
@api.route("/tasks/<int:task_id>/copy", methods=["POST"])
def copy_task(task_id):
    target_date = parse_date(json_body().get("target_date"), "target_date")
    task = database.copy_task(get_db(), task_id, target_date)
    return jsonify(task), 201


# ---------------- SUBTASKS ----------------
@api.route("/tasks/<int:task_id>/subtasks", methods=["GET"])
def list_subtasks(task_id):
    return jsonify(database.list_subtasks(get_db(), task_id))


@api.route("/tasks/<int:task_id>/subtasks", methods=["POST"])
def create_subtask(task_id):
    text = required_text(json_body())
    return jsonify(database.create_subtask(get_db(), task_id, text)), 201


@api.route("/health", methods=["GET"])
def health():
    get_db().ping()
    return jsonify({"status": "ok"})


# ---------------- ERRORS ----------------
def http_error(e):
    return jsonify({"error": e.description}), e.code


def task_not_found(e):
    logger.info("%s", e)
    return http_error(NotFound(str(e)))


def duplicate_copy(e):
    logger.info("Rejected copy of group %s to %s", e.task_group_id, e.target_date)
    return http_error(Conflict(str(e)))


def internal_error(e):
    logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({"error": "Internal server error"}), 500


# ---------------- APP ----------------
def create_app(db=None, settings=None):
    """
    Build the Flask app around an already-migrated store handle.

    When no handle is passed one is opened (and migrated) from settings.
    """
    settings = settings or get_settings()
    if db is None:
        db = database.Database(settings.db_path)
        db.migrate()

    app = Flask(__name__, static_folder=None)
    app.config["STATIC_DIR"] = Path(settings.static_dir)
    app.extensions["waida.database"] = db

    app.register_blueprint(api)
    app.register_error_handler(HTTPException, http_error)
    app.register_error_handler(database.TaskNotFound, task_not_found)
    app.register_error_handler(database.DuplicateCopy, duplicate_copy)
    app.register_error_handler(Exception, internal_error)

    # Everything outside /api serves the UI bundle, falling back to index.html.
    @app.route("/", defaults={"path": ""})
    @app.route("/<path:path>")
    def frontend(path):
        if path == "api" or path.startswith("api/"):
            raise NotFound("Not found")
        static_dir = str(app.config["STATIC_DIR"])
        if path:
            candidate = safe_join(static_dir, path)
            if candidate is not None and Path(candidate).is_file():
                return send_from_directory(static_dir, path)
        return send_from_directory(static_dir, "index.html")

    return app


# ---------------- RUN ----------------
def main():
    settings = get_settings()
    setup_logging(level=settings.log_level, log_dir=settings.log_dir, debug=settings.debug)

    db = database.Database(settings.db_path)
    try:
        db.migrate()
    except (sqlite3.Error, OSError, RuntimeError):
        logger.exception("Failed to initialise database %s", settings.db_path)
        sys.exit(1)

    app = create_app(db=db, settings=settings)
    logger.info("Server listening on %s:%s", settings.host, settings.port)
    app.run(host=settings.host, port=settings.port, debug=settings.debug)


if __name__ == "__main__":
    main()
