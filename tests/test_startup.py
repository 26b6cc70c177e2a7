import logging
import sqlite3
from pathlib import Path

import pytest
from flask import Flask

import app as waida_app
from database import SCHEMA_VERSION


@pytest.fixture()
def env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point main() at a temp database and keep it from touching real handlers or sockets."""
    db_path = tmp_path / "database.db"
    monkeypatch.setenv("WAIDA_DB_PATH", str(db_path))
    for name in ("WAIDA_DEBUG", "WAIDA_HOST", "HOST"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(waida_app, "setup_logging", lambda **kwargs: None)
    return db_path


def test_main_exits_when_store_cannot_start(env: Path, monkeypatch, caplog) -> None:
    conn = sqlite3.connect(str(env))
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1}")
    conn.close()

    runs = []
    monkeypatch.setattr(Flask, "run", lambda self, **kwargs: runs.append(kwargs))

    with caplog.at_level(logging.ERROR, logger="app"):
        with pytest.raises(SystemExit) as excinfo:
            waida_app.main()

    assert excinfo.value.code == 1
    assert runs == []
    assert "Failed to initialise database" in caplog.text


def test_main_migrates_then_serves(env: Path, monkeypatch) -> None:
    monkeypatch.setenv("WAIDA_PORT", "4321")
    runs = []
    monkeypatch.setattr(Flask, "run", lambda self, **kwargs: runs.append(kwargs))

    waida_app.main()

    assert runs == [{"host": "127.0.0.1", "port": 4321, "debug": False}]
    conn = sqlite3.connect(str(env))
    assert conn.execute("PRAGMA user_version").fetchone()[0] == SCHEMA_VERSION
    conn.close()
