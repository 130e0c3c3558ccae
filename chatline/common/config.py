"""
Runtime configuration for chatline.

Values come from the process environment, optionally seeded from a .env file
in the working directory:

    SERVER_HOST   Interface the server binds (default: 0.0.0.0)
    CLIENT_HOST   Host the client connects to (default: SERVER_HOST, with a
                  wildcard bind address mapped to loopback)
    SERVER_PORT   TCP port (default: 59001)
    USER_DB_FILE  Credential file path (default: users.db)
    MAX_WORKERS   Concurrent session handlers (default: 500)
    LOG_LEVEL     Logging level name (default: INFO)
"""

import logging
import os
from dotenv import load_dotenv


def connect_host(bind_host: str) -> str:
    """
    Return an address a client can dial for a server bound to bind_host.

    Wildcard bind addresses are not valid connect targets everywhere, so
    they map to the matching loopback address.
    """
    if bind_host in ("", "0.0.0.0"):
        return "127.0.0.1"
    if bind_host == "::":
        return "::1"
    return bind_host


# Load environment variables
load_dotenv()

SERVER_HOST = os.getenv("SERVER_HOST", "0.0.0.0")
CLIENT_HOST = os.getenv("CLIENT_HOST") or connect_host(SERVER_HOST)
SERVER_PORT = int(os.getenv("SERVER_PORT", "59001"))
USER_DB_FILE = os.getenv("USER_DB_FILE", "users.db")
MAX_WORKERS = int(os.getenv("MAX_WORKERS", "500"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Configure root logging once for an entry point."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )
