"""
Block until the API server accepts TCP connections, so a frontend dev server
started right after it does not fire requests into the void.

    python wait_for_server.py && npm run dev
"""
import logging
import os
import socket
import sys
import time

from config import env_int
from logging_setup import setup_logging

logger = logging.getLogger(__name__)


def wait_for_server(host, port, timeout=30.0, interval=0.25):
    """Return True once host:port accepts a connection, False after `timeout` seconds."""
    deadline = time.monotonic() + timeout
    while True:
        try:
            with socket.create_connection((host, port), timeout=interval):
                return True
        except OSError:
            if time.monotonic() >= deadline:
                return False
            time.sleep(interval)


def main():
    setup_logging()
    host = os.getenv("WAIDA_SERVER_HOST") or "127.0.0.1"
    port = env_int("WAIDA_SERVER_PORT", env_int("PORT", 3001))
    timeout_ms = env_int("WAIDA_WAIT_TIMEOUT", 30000)
    interval_ms = env_int("WAIDA_WAIT_INTERVAL", 250)

    logger.info("Waiting for server on %s:%s (timeout %sms)...", host, port, timeout_ms)
    if wait_for_server(host, port, timeout=timeout_ms / 1000, interval=interval_ms / 1000):
        logger.info("Server detected on %s:%s.", host, port)
        return 0
    logger.error("Timed out waiting for server on %s:%s", host, port)
    return 1


if __name__ == "__main__":
    sys.exit(main())
