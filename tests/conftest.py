from pathlib import Path
from types import SimpleNamespace

import pytest

from app import create_app
from database import Database, now_timestamp


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """Only the fields create_app reads; no environment involved."""
    static_dir = tmp_path / "static"
    static_dir.mkdir()
    (static_dir / "index.html").write_text("<html><body>waida</body></html>", encoding="utf-8")
    (static_dir / "app.js").write_text("console.log('waida');", encoding="utf-8")
    return SimpleNamespace(db_path=tmp_path / "tasks.db", static_dir=static_dir)


@pytest.fixture()
def db(settings: SimpleNamespace) -> Database:
    database = Database(settings.db_path)
    database.migrate()
    return database


@pytest.fixture()
def app(db: Database, settings: SimpleNamespace):
    app = create_app(db=db, settings=settings)
    app.testing = True
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def insert_ungrouped(db: Database):
    """Insert a task row with no task_group_id, as rows written before groups existed."""

    def _insert(text: str, day: str) -> int:
        now = now_timestamp()
        with db.connection() as conn:
            cur = conn.execute(
                "INSERT INTO tasks (text, notes, date, created_at, updated_at) VALUES (?, '', ?, ?, ?)",
                (text, day, now, now),
            )
            return cur.lastrowid

    return _insert
