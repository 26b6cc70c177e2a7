import logging
import sqlite3
import uuid
from collections import namedtuple
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

TASK_COLUMNS = "id, text, notes, date, created_at, updated_at, completed, task_group_id"


class TaskNotFound(LookupError):
    def __init__(self, task_id):
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class DuplicateCopy(Exception):
    def __init__(self, task_group_id, target_date):
        super().__init__(f"Task already exists on {target_date}")
        self.task_group_id = task_group_id
        self.target_date = target_date


# ---------------- MIGRATIONS ----------------
# Applied in order; PRAGMA user_version records how many have run.
# Stores created before versioning may already hold some of these columns
# and tables, so AddColumn steps are skipped when the column exists.
class AddColumn(namedtuple("AddColumn", "table column decl")):
    def sql(self):
        return f"ALTER TABLE {self.table} ADD COLUMN {self.column} {self.decl}"


MIGRATIONS = [
    ("create tasks", [
        """
        CREATE TABLE IF NOT EXISTS tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            text TEXT NOT NULL
        )
        """,
    ]),
    ("task notes and date", [
        AddColumn("tasks", "notes", "TEXT NOT NULL DEFAULT ''"),
        AddColumn("tasks", "date", "TEXT"),
    ]),
    ("task timestamps", [
        AddColumn("tasks", "created_at", "TEXT"),
        AddColumn("tasks", "updated_at", "TEXT"),
    ]),
    ("subtasks", [
        """
        CREATE TABLE IF NOT EXISTS subtasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            task_id INTEGER NOT NULL,
            text TEXT NOT NULL,
            FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE
        )
        """,
        AddColumn("subtasks", "created_at", "TEXT"),
    ]),
    ("task completion", [
        AddColumn("tasks", "completed", "INTEGER NOT NULL DEFAULT 0"),
    ]),
    ("task groups", [
        AddColumn("tasks", "task_group_id", "TEXT"),
        "CREATE INDEX IF NOT EXISTS idx_tasks_date ON tasks(date)",
        "CREATE INDEX IF NOT EXISTS idx_tasks_group_date ON tasks(task_group_id, date)",
        "CREATE INDEX IF NOT EXISTS idx_subtasks_task ON subtasks(task_id)",
    ]),
]

SCHEMA_VERSION = len(MIGRATIONS)


def _columns(conn, table):
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}


class Database:
    """Handle on the SQLite file. Every operation opens and closes its own connection."""

    def __init__(self, path):
        self.path = Path(path)

    @contextmanager
    def connection(self):
        conn = sqlite3.connect(str(self.path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def schema_version(self):
        with self.connection() as conn:
            return conn.execute("PRAGMA user_version").fetchone()[0]

    def migrate(self):
        """Apply pending migrations. Returns the number applied."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(self.path), timeout=30.0, isolation_level=None)
        try:
            current = conn.execute("PRAGMA user_version").fetchone()[0]
            if current > SCHEMA_VERSION:
                raise RuntimeError(
                    f"database {self.path} is at schema version {current}, "
                    f"newer than this build ({SCHEMA_VERSION})"
                )
            applied = 0
            for version, (name, statements) in enumerate(MIGRATIONS, start=1):
                if version <= current:
                    continue
                conn.execute("BEGIN")
                try:
                    for step in statements:
                        if isinstance(step, AddColumn):
                            if step.column in _columns(conn, step.table):
                                logger.debug("Column %s.%s already present", step.table, step.column)
                                continue
                            step = step.sql()
                        conn.execute(step)
                    conn.execute(f"PRAGMA user_version = {version}")
                    conn.execute("COMMIT")
                except sqlite3.Error:
                    conn.execute("ROLLBACK")
                    raise
                logger.info("Applied migration %d (%s) to %s", version, name, self.path)
                applied += 1
        finally:
            conn.close()

        logger.info("Database ready db=%s schema_version=%d", self.path, SCHEMA_VERSION)
        return applied

    def ping(self):
        with self.connection() as conn:
            conn.execute("SELECT 1").fetchone()


# ---------------- HELPERS ----------------
def now_timestamp():
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def new_group_id():
    return str(uuid.uuid4())


def task_to_dict(row):
    task = dict(row)
    task["completed"] = bool(task["completed"])
    return task


def _fetch_task(conn, task_id):
    row = conn.execute(
        f"SELECT {TASK_COLUMNS} FROM tasks WHERE id = ?", (task_id,)
    ).fetchone()
    if row is None:
        raise TaskNotFound(task_id)
    return row


def _fetch_subtasks(conn, task_id):
    rows = conn.execute(
        "SELECT id, task_id, text, created_at FROM subtasks WHERE task_id = ? ORDER BY id",
        (task_id,),
    ).fetchall()
    return [dict(r) for r in rows]


def _insert_task(conn, text, day, notes, task_group_id):
    now = now_timestamp()
    cur = conn.execute(
        """
        INSERT INTO tasks (text, notes, date, created_at, updated_at, completed, task_group_id)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (text, notes, day, now, now, 0, task_group_id),
    )
    return _fetch_task(conn, cur.lastrowid)


# ---------------- TASKS ----------------
def list_tasks(db, day):
    with db.connection() as conn:
        rows = conn.execute(
            f"SELECT {TASK_COLUMNS} FROM tasks WHERE date = ? ORDER BY created_at, id",
            (day,),
        ).fetchall()
    return [task_to_dict(r) for r in rows]


def get_task(db, task_id):
    with db.connection() as conn:
        task = task_to_dict(_fetch_task(conn, task_id))
        task["subtasks"] = _fetch_subtasks(conn, task_id)
    return task


def create_task(db, text, day, notes="", task_group_id=None):
    group_id = task_group_id or new_group_id()
    with db.connection() as conn:
        row = _insert_task(conn, text, day, notes, group_id)
    logger.debug("Created task id=%s date=%s group=%s", row["id"], day, group_id)
    return task_to_dict(row)


def update_task(db, task_id, text=None, notes=None, completed=None):
    with db.connection() as conn:
        current = _fetch_task(conn, task_id)
        conn.execute(
            "UPDATE tasks SET text = ?, notes = ?, completed = ?, updated_at = ? WHERE id = ?",
            (
                current["text"] if text is None else text,
                current["notes"] if notes is None else notes,
                current["completed"] if completed is None else int(completed),
                now_timestamp(),
                task_id,
            ),
        )
        row = _fetch_task(conn, task_id)
    logger.debug("Updated task id=%s", task_id)
    return task_to_dict(row)


def delete_task(db, task_id):
    """Delete a task and (via cascade) its subtasks. Returns False if nothing was deleted."""
    with db.connection() as conn:
        cur = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        deleted = cur.rowcount > 0
    if not deleted:
        logger.debug("Delete of missing task id=%s ignored", task_id)
    return deleted


def set_completed(db, task_id, completed):
    """
    Set the completion flag of a task. When the task belongs to a group, every
    task in that group gets the same value. Always returns a list of rows.
    """
    with db.connection() as conn:
        task = _fetch_task(conn, task_id)
        group_id = task["task_group_id"]
        now = now_timestamp()
        if group_id:
            conn.execute(
                "UPDATE tasks SET completed = ?, updated_at = ? WHERE task_group_id = ?",
                (int(completed), now, group_id),
            )
            rows = conn.execute(
                f"SELECT {TASK_COLUMNS} FROM tasks WHERE task_group_id = ? ORDER BY date, id",
                (group_id,),
            ).fetchall()
        else:
            conn.execute(
                "UPDATE tasks SET completed = ?, updated_at = ? WHERE id = ?",
                (int(completed), now, task_id),
            )
            rows = [_fetch_task(conn, task_id)]
    logger.debug("Set completed=%s on %d task(s) via id=%s", completed, len(rows), task_id)
    return [task_to_dict(r) for r in rows]


def copy_task(db, task_id, target_date):
    with db.connection() as conn:
        conn.execute("BEGIN IMMEDIATE")
        source = _fetch_task(conn, task_id)

        group_id = source["task_group_id"]
        if not group_id:
            group_id = new_group_id()
            conn.execute(
                "UPDATE tasks SET task_group_id = ?, updated_at = ? WHERE id = ?",
                (group_id, now_timestamp(), task_id),
            )

        existing = conn.execute(
            "SELECT id FROM tasks WHERE task_group_id = ? AND date = ?",
            (group_id, target_date),
        ).fetchone()
        if existing is not None:
            raise DuplicateCopy(group_id, target_date)

        row = _insert_task(
            conn,
            source["text"],
            target_date,
            source["notes"],
            group_id,
        )
    logger.debug("Copied task id=%s to %s as id=%s", task_id, target_date, row["id"])
    return task_to_dict(row)


# ---------------- SUBTASKS ----------------
def list_subtasks(db, task_id):
    with db.connection() as conn:
        _fetch_task(conn, task_id)
        return _fetch_subtasks(conn, task_id)


def create_subtask(db, task_id, text):
    with db.connection() as conn:
        _fetch_task(conn, task_id)
        cur = conn.execute(
            "INSERT INTO subtasks (task_id, text, created_at) VALUES (?, ?, ?)",
            (task_id, text, now_timestamp()),
        )
        row = conn.execute(
            "SELECT id, task_id, text, created_at FROM subtasks WHERE id = ?",
            (cur.lastrowid,),
        ).fetchone()
    logger.debug("Created subtask id=%s for task id=%s", row["id"], task_id)
    return dict(row)


# ---------------- RUN ----------------
if __name__ == "__main__":
    from config import get_settings
    from logging_setup import setup_logging

    settings = get_settings()
    setup_logging(level=settings.log_level, log_dir=settings.log_dir)
    Database(settings.db_path).migrate()
