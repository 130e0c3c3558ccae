"""
Per-connection session handler.

Each accepted connection is driven by one SessionHandler through three
states:

    UNAUTHENTICATED --LOGIN ok--> AUTHENTICATED --LOGOUT/EOF/error--> TERMINATED
    UNAUTHENTICATED --EOF/error--> TERMINATED

While unauthenticated the handler prompts with SUBMITNAME before every
command and accepts REGISTER, LOGIN and CHECK_ID. Once authenticated it
relays MSG and WHISPER traffic through the Directory. Leaving the
AUTHENTICATED state always removes the user from the Directory and tells
everyone else, exactly once, whatever caused the session to end.
"""

import logging
import socket
from enum import Enum
from typing import Callable, Dict, Optional

from chatline.common.protocol import (
    ALREADY_LOGGED_IN,
    LOGIN_FAILED,
    TARGET_OFFLINE,
    UNKNOWN_COMMAND,
    Command,
    MalformedCommandError,
    Reply,
    format_reply,
    is_quit,
    parse_check_id,
    parse_login,
    parse_register,
    parse_whisper,
    split_command,
)
from chatline.server.directory import Directory, OutputChannel, QueuedChannel
from chatline.storage.credentials import CredentialStore, RegistrationError


logger = logging.getLogger(__name__)


class SessionState(Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    AUTHENTICATED = "AUTHENTICATED"
    TERMINATED = "TERMINATED"


def describe_address(address) -> str:
    """Render a peer address as 'host:port' for log prefixes."""
    if isinstance(address, tuple) and len(address) >= 2:
        return f"{address[0]}:{address[1]}"
    return str(address) or "local"


class SessionHandler:
    """
    Drive one client connection from handshake to cleanup.

    Args:
        client_socket: Connected stream socket
        client_address: Peer address, used for logging only
        store: Shared credential store
        directory: Shared online-user directory
    """

    def __init__(
        self,
        client_socket: socket.socket,
        client_address,
        store: CredentialStore,
        directory: Directory,
    ):
        self.client_socket = client_socket
        self.client_id = describe_address(client_address)
        self.store = store
        self.directory = directory
        self.state = SessionState.UNAUTHENTICATED
        self.user_id: Optional[str] = None
        self.channel: Optional[OutputChannel] = None
        self._reader = None

        self._auth_handlers: Dict[str, Callable[[str], None]] = {
            Command.REGISTER.value: self._handle_register,
            Command.LOGIN.value: self._handle_login,
            Command.CHECK_ID.value: self._handle_check_id,
        }
        self._chat_handlers: Dict[str, Callable[[str], None]] = {
            Command.MSG.value: self._handle_msg,
            Command.WHISPER.value: self._handle_whisper,
        }

    def run(self) -> None:
        """Run the session until the connection ends. Never raises."""
        logger.info(f"[{self.client_id}] Client connected")
        try:
            self.client_socket.settimeout(None)
            self._reader = self.client_socket.makefile("rb")
            self.channel = QueuedChannel(self.client_socket, self.client_id)

            self._authentication_loop()
            if self.state is SessionState.AUTHENTICATED:
                self._chat_loop()

        except OSError as e:
            logger.warning(f"[{self.client_id}] Connection fault: {e}")

        except Exception as e:
            logger.error(f"[{self.client_id}] Unexpected error: {e}", exc_info=True)

        finally:
            self._terminate()

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    def _send(self, reply: Reply, payload: Optional[str] = None) -> None:
        self.channel.send_line(format_reply(reply, payload))

    def _read_line(self) -> Optional[str]:
        """Return the next line without its terminator, or None at end of stream."""
        raw = self._reader.readline()
        if not raw:
            return None
        return raw.decode("utf-8", errors="replace").rstrip("\r\n")

    # ------------------------------------------------------------------
    # UNAUTHENTICATED
    # ------------------------------------------------------------------

    def _authentication_loop(self) -> None:
        while self.state is SessionState.UNAUTHENTICATED:
            self._send(Reply.SUBMITNAME)
            line = self._read_line()
            if line is None:
                logger.info(f"[{self.client_id}] Client closed connection before login")
                return

            keyword, rest = split_command(line)
            handler = self._auth_handlers.get(keyword)
            if handler is None:
                logger.debug(f"[{self.client_id}] Unknown command before login: {keyword!r}")
                self._send(Reply.SYSTEM, UNKNOWN_COMMAND)
                continue

            try:
                handler(rest)
            except MalformedCommandError as e:
                logger.debug(f"[{self.client_id}] Malformed {e.command} command")
                if e.command is Command.REGISTER:
                    self._send(Reply.REGISTERFAIL, e.usage)
                else:
                    self._send(Reply.SYSTEM, e.usage)

    def _handle_register(self, rest: str) -> None:
        request = parse_register(rest)
        try:
            self.store.register(
                request.user_id, request.password, request.display_name, request.email
            )
        except RegistrationError as e:
            logger.info(f"[{self.client_id}] Registration of '{request.user_id}' failed: {e}")
            self._send(Reply.REGISTERFAIL, str(e))
            return

        logger.info(f"[{self.client_id}] Registered '{request.user_id}'")
        self._send(Reply.REGISTERED, "OK")

    def _handle_login(self, rest: str) -> None:
        request = parse_login(rest)
        account = self.store.authenticate(request.user_id, request.password)
        if account is None:
            logger.info(f"[{self.client_id}] Login failed for '{request.user_id}'")
            self._send(Reply.SYSTEM, LOGIN_FAILED)
            return

        welcome = format_reply(Reply.NAMEACCEPTED, account.user_id)
        if not self.directory.try_join(account.user_id, self.channel, welcome=welcome):
            logger.info(f"[{self.client_id}] Rejected duplicate login for '{account.user_id}'")
            self._send(Reply.SYSTEM, ALREADY_LOGGED_IN)
            return

        self.user_id = account.user_id
        self.state = SessionState.AUTHENTICATED
        logger.info(f"[{self.client_id}] '{self.user_id}' logged in")

        self.directory.system_announce(f"{self.user_id} has joined the chat.")
        self.directory.publish_user_list()

    def _handle_check_id(self, rest: str) -> None:
        user_id = parse_check_id(rest)
        if self.store.is_available(user_id):
            self._send(Reply.IDOK)
        else:
            self._send(Reply.IDTAKEN)

    # ------------------------------------------------------------------
    # AUTHENTICATED
    # ------------------------------------------------------------------

    def _chat_loop(self) -> None:
        while self.state is SessionState.AUTHENTICATED:
            line = self._read_line()
            if line is None:
                logger.info(f"[{self.client_id}] '{self.user_id}' disconnected")
                return

            if is_quit(line):
                logger.info(f"[{self.client_id}] '{self.user_id}' logged out")
                return

            keyword, rest = split_command(line)
            # A bare keyword with nothing after it is ordinary chat text
            handler = self._chat_handlers.get(keyword) if line != keyword else None
            if handler is not None:
                try:
                    handler(rest)
                except MalformedCommandError as e:
                    self._send(Reply.SYSTEM, e.usage)
            elif line.strip():
                # Unrecognised input is treated as a public message
                self.directory.broadcast(f"{self.user_id}: {line}")

    def _handle_msg(self, rest: str) -> None:
        text = rest.strip()
        if text:
            self.directory.broadcast(f"{self.user_id}: {text}")

    def _handle_whisper(self, rest: str) -> None:
        request = parse_whisper(rest)
        if self.directory.whisper_to(self.user_id, request.target_id, request.text):
            self._send(Reply.SYSTEM, f"[Whisper to {request.target_id}] {request.text}")
        else:
            self._send(Reply.SYSTEM, TARGET_OFFLINE)

    # ------------------------------------------------------------------
    # TERMINATED
    # ------------------------------------------------------------------

    def _terminate(self) -> None:
        """Release the session. Runs once; later calls are no-ops."""
        if self.state is SessionState.TERMINATED:
            return
        previous, self.state = self.state, SessionState.TERMINATED

        if previous is SessionState.AUTHENTICATED and self.user_id is not None:
            try:
                self.directory.leave(self.user_id)
                self.directory.system_announce(f"{self.user_id} has left the chat.")
                self.directory.publish_user_list()
            except Exception as e:
                logger.error(f"[{self.client_id}] Error announcing departure: {e}")

        if self.channel is not None:
            self.channel.close()

        try:
            if self._reader is not None:
                self._reader.close()
            self.client_socket.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug(f"[{self.client_id}] Socket shutdown: {e}")
        finally:
            self.client_socket.close()

        logger.info(f"[{self.client_id}] Connection closed")
