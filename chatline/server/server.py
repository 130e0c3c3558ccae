"""
chatline TCP server.

This module implements the connection acceptor that:
    1. Loads the credential store from disk
    2. Listens on a configurable port (default 59001)
    3. Accepts client connections indefinitely
    4. Runs one SessionHandler per connection on a bounded worker pool
    5. Stops accepting on SIGINT (Ctrl+C)

Server Architecture:
    - Thread per connection, drawn from a pool of MAX_WORKERS (default 500)
    - Connections beyond the pool size wait in the pool's queue
    - Sessions share state only through the Directory and CredentialStore
    - Shutdown is abrupt: open client sockets are closed, nothing is drained

Usage:
    python -m chatline.server

    To stop the server: Press Ctrl+C

Environment Variables (.env):
    SERVER_HOST, SERVER_PORT, USER_DB_FILE, MAX_WORKERS, LOG_LEVEL
"""

import argparse
import logging
import signal
import socket
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Set

from chatline.common import config
from chatline.server.directory import Directory
from chatline.server.session import SessionHandler, describe_address
from chatline.storage.credentials import CredentialStore


logger = logging.getLogger(__name__)

# Seconds between shutdown-flag checks in the accept loop
ACCEPT_POLL_INTERVAL = 1.0
LISTEN_BACKLOG = 50


class ChatServer:
    """
    Accept connections and hand each one to a SessionHandler.

    Args:
        host: Interface to bind
        port: TCP port; 0 picks an ephemeral port
        store: Loaded credential store
        directory: Shared directory (a fresh one if omitted)
        max_workers: Upper bound on concurrently running sessions
    """

    def __init__(
        self,
        host: str,
        port: int,
        store: CredentialStore,
        directory: Optional[Directory] = None,
        max_workers: int = config.MAX_WORKERS,
    ):
        self.host = host
        self.port = port
        self.store = store
        self.directory = directory if directory is not None else Directory()
        self.max_workers = max_workers

        self._listener: Optional[socket.socket] = None
        self._pool: Optional[ThreadPoolExecutor] = None
        self._shutdown = threading.Event()
        self._clients: Set[socket.socket] = set()
        self._clients_lock = threading.Lock()

    def bind(self) -> int:
        """
        Create the listening socket.

        Returns:
            int: The bound port (useful when port 0 was requested)

        Raises:
            OSError: If the address is unavailable
        """
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            listener.bind((self.host, self.port))
            listener.listen(LISTEN_BACKLOG)
        except OSError:
            listener.close()
            raise

        listener.settimeout(ACCEPT_POLL_INTERVAL)
        self._listener = listener
        self.port = listener.getsockname()[1]
        logger.info(f"Server listening on {self.host}:{self.port}")
        return self.port

    def serve_forever(self) -> None:
        """Accept connections until shutdown() is called."""
        if self._listener is None:
            self.bind()

        self._pool = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="session"
        )
        try:
            while not self._shutdown.is_set():
                try:
                    client_socket, client_address = self._listener.accept()
                except socket.timeout:
                    # Timeout is normal, just loop to check the shutdown flag
                    continue
                except OSError as e:
                    if self._shutdown.is_set():
                        break
                    logger.error(f"Error accepting connection: {e}")
                    continue

                logger.debug(f"Accepted {describe_address(client_address)}")
                with self._clients_lock:
                    self._clients.add(client_socket)
                self._pool.submit(self._run_session, client_socket, client_address)
        finally:
            self._close_listener()
            self._close_clients()
            self._pool.shutdown(wait=False)
            logger.info("Server stopped")

    def shutdown(self) -> None:
        """Ask the accept loop to stop; it exits within ACCEPT_POLL_INTERVAL."""
        self._shutdown.set()

    @property
    def active_connections(self) -> int:
        with self._clients_lock:
            return len(self._clients)

    def _run_session(self, client_socket: socket.socket, client_address) -> None:
        try:
            SessionHandler(client_socket, client_address, self.store, self.directory).run()
        finally:
            with self._clients_lock:
                self._clients.discard(client_socket)

    def _close_listener(self) -> None:
        if self._listener is not None:
            self._listener.close()
            self._listener = None

    def _close_clients(self) -> None:
        with self._clients_lock:
            clients = list(self._clients)
        for client_socket in clients:
            try:
                client_socket.shutdown(socket.SHUT_RDWR)
            except OSError as e:
                logger.debug(f"Closing client socket: {e}")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="chatline text-line chat server")
    parser.add_argument("--host", default=config.SERVER_HOST, help="Interface to bind")
    parser.add_argument("--port", type=int, default=config.SERVER_PORT, help="TCP port")
    parser.add_argument("--db", default=config.USER_DB_FILE, help="Credential file path")
    parser.add_argument(
        "--max-workers", type=int, default=config.MAX_WORKERS,
        help="Maximum concurrent sessions",
    )
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Logging level")
    return parser.parse_args(argv)


def main(argv=None):
    """
    Main entry point for the server.

    Exit codes:
        0: Normal shutdown
        1: Fatal error (credential file unreadable, port unavailable)
    """
    args = parse_args(argv)
    config.configure_logging(args.log_level)

    store = CredentialStore(args.db)
    try:
        store.load()
    except OSError as e:
        logger.critical(f"Cannot read user DB {args.db}: {e}")
        sys.exit(1)

    server = ChatServer(args.host, args.port, store, max_workers=args.max_workers)
    try:
        port = server.bind()
    except OSError as e:
        logger.critical(f"Cannot listen on {args.host}:{args.port}: {e}")
        sys.exit(1)

    def signal_handler(signum, frame):
        logger.info("Shutdown signal received (SIGINT)")
        server.shutdown()

    signal.signal(signal.SIGINT, signal_handler)

    print(f"[*] Chat server started on {args.host}:{port}")
    print("[*] Press Ctrl+C to stop the server")
    server.serve_forever()
    print("[*] Server stopped")


if __name__ == "__main__":
    main()
