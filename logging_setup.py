import logging
import sys
from pathlib import Path


class _RequestNoiseFilter(logging.Filter):
    """Keep werkzeug's per-request access lines off the console unless debugging."""

    def __init__(self, debug=False):
        super().__init__()
        self.debug = debug

    def filter(self, record):
        if record.name == "werkzeug" and not self.debug:
            return record.levelno >= logging.WARNING
        return True


def resolve_level(level):
    """Map a level name like "debug" to its number; unknown names fall back to INFO."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level="INFO", log_dir=None, debug=False):
    """
    Configure the root logger once, before the store is opened.

    - console handler on stderr at `level`
    - optional file handler (everything) in `log_dir`/waida.log
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # Remove any pre-existing handlers to avoid duplicate lines on re-init.
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(logging.DEBUG if debug else resolve_level(level))
    ch.setFormatter(fmt)
    ch.addFilter(_RequestNoiseFilter(debug=debug))
    root.addHandler(ch)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(log_dir / "waida.log"), encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(fmt)
        root.addHandler(fh)

    logging.captureWarnings(True)
