"""
Shared pytest fixtures for chatline tests.

Provides a temporary credential store, a live ChatServer bound to an
ephemeral port on 127.0.0.1, and a LineClient that speaks the wire protocol
over a raw socket.
"""

import logging
import socket
import threading
from typing import Callable, List

import pytest

from chatline.server.directory import OutputChannel
from chatline.server.server import ChatServer
from chatline.storage.credentials import CredentialStore


logger = logging.getLogger(__name__)

CLIENT_TIMEOUT = 5.0


class RecordingChannel(OutputChannel):
    """OutputChannel that keeps every line it is given."""

    def __init__(self, name: str = ""):
        self.name = name
        self.lines: List[str] = []
        self.closed = False
        self._lock = threading.Lock()

    def send_line(self, line: str) -> None:
        with self._lock:
            self.lines.append(line)

    def close(self) -> None:
        self.closed = True


class LineClient:
    """Minimal blocking protocol client for integration tests."""

    def __init__(self, port: int, timeout: float = CLIENT_TIMEOUT):
        self.sock = socket.create_connection(("127.0.0.1", port), timeout=timeout)
        self.reader = self.sock.makefile("rb")

    def send(self, line: str) -> None:
        self.sock.sendall((line + "\n").encode("utf-8"))

    def recv(self) -> str:
        """Return the next line; raises EOFError when the server closes."""
        raw = self.reader.readline()
        if not raw:
            raise EOFError("server closed the connection")
        line = raw.decode("utf-8").rstrip("\r\n")
        logger.debug(f"<- {line}")
        return line

    def expect(self, expected: str) -> None:
        line = self.recv()
        assert line == expected, f"expected {expected!r}, got {line!r}"

    def recv_until(self, predicate: Callable[[str], bool]) -> List[str]:
        """Read lines up to and including the first one matching predicate."""
        lines = []
        while True:
            line = self.recv()
            lines.append(line)
            if predicate(line):
                return lines

    def register(self, user_id: str, password: str, name: str = "Name", email: str = "x@example.com") -> str:
        """Send REGISTER after the SUBMITNAME prompt and return the reply."""
        self.expect("SUBMITNAME")
        self.send(f"REGISTER {user_id} {password} {name} {email}")
        return self.recv()

    def login(self, user_id: str, password: str) -> List[str]:
        """Log in and consume the replies up to this user's own USERLIST."""
        self.expect("SUBMITNAME")
        self.send(f"LOGIN {user_id} {password}")
        self.expect(f"NAMEACCEPTED {user_id}")
        return self.recv_until(lambda line: line.startswith("USERLIST ") and user_id in line)

    def close(self) -> None:
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            logger.debug("client socket already closed")
        self.reader.close()
        self.sock.close()


@pytest.fixture
def make_channel():
    """Factory fixture returning fresh RecordingChannel objects."""
    return RecordingChannel


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "users.db"


@pytest.fixture
def store(db_path):
    credential_store = CredentialStore(db_path)
    credential_store.load()
    return credential_store


@pytest.fixture
def accounts(store):
    """Pre-register alice, bob and carol (password: '<id>-pw')."""
    for user_id in ("alice", "bob", "carol"):
        store.register(user_id, f"{user_id}-pw", user_id.title(), f"{user_id}@example.com")
    return store


@pytest.fixture
def chat_server(store):
    server = ChatServer("127.0.0.1", 0, store, max_workers=32)
    server.bind()
    thread = threading.Thread(target=server.serve_forever, name="test-server", daemon=True)
    thread.start()
    yield server
    server.shutdown()
    thread.join(timeout=5)


@pytest.fixture
def connect(chat_server):
    """Factory fixture: connect() returns a LineClient; all are closed on teardown."""
    clients = []

    def _connect() -> LineClient:
        client = LineClient(chat_server.port)
        clients.append(client)
        return client

    yield _connect

    for client in clients:
        client.close()
