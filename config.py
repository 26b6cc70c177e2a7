"""Settings loaded from environment variables (+ optional .env)."""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "WAIDA"
BASE_DIR = Path(__file__).resolve().parent

load_dotenv(override=False)


def _k(suffix):
    return f"{ENV_PREFIX}_{suffix}"


def _first_env(*names, default=None):
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name, default):
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def env_int(name, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_path(name, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    host: str
    port: int
    debug: bool

    db_path: Path
    static_dir: Path

    log_level: str
    log_dir: Path | None

    @staticmethod
    def from_env() -> "Settings":
        db_path = _first_env(_k("DB_PATH"), "DATABASE_PATH", default="database.db")
        log_dir = _first_env(_k("LOG_DIR"))

        return Settings(
            host=_first_env(_k("HOST"), "HOST", default="127.0.0.1"),
            port=env_int(_k("PORT"), env_int("PORT", 3001)),
            debug=_env_bool(_k("DEBUG"), False),
            db_path=Path(db_path).expanduser(),
            static_dir=_env_path(_k("STATIC_DIR"), BASE_DIR / "static"),
            log_level=(_first_env(_k("LOG_LEVEL"), default="INFO") or "INFO").upper(),
            log_dir=Path(log_dir).expanduser() if log_dir else None,
        )


def get_settings() -> Settings:
    return Settings.from_env()
