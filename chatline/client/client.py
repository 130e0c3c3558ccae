"""
chatline terminal client.

This module implements a line-oriented TCP client that:
    1. Connects to a chatline server
    2. Shows a menu (login / register / check id / quit) whenever the server
       sends SUBMITNAME
    3. After NAMEACCEPTED, turns typed lines into MSG / WHISPER / LOGOUT
    4. Prints server traffic from a background reader thread

Chat input:
    hello everyone          -> MSG hello everyone
    /w bob see you at 5     -> WHISPER bob see you at 5
    /users                  -> print the last USERLIST received
    /quit                   -> LOGOUT

Usage:
    python -m chatline.client [--host HOST] [--port PORT]

Environment Variables (.env):
    CLIENT_HOST: Server hostname or IP (default: SERVER_HOST, or 127.0.0.1
                 when SERVER_HOST is a wildcard address)
    SERVER_PORT: Server port (default: 59001)
"""

import argparse
import logging
import queue
import socket
import sys
import threading
from typing import List, Optional

from chatline.common import config
from chatline.common.protocol import (
    Command,
    Reply,
    parse_server_line,
    parse_user_list,
)


logger = logging.getLogger(__name__)

WHISPER_PREFIXES = ("/w ", "/whisper ")
QUIT_COMMANDS = ("/quit", "/logout", "/exit")

# Events posted by the reader thread to the input loop
EVENT_PROMPT = "PROMPT"
EVENT_AUTHENTICATED = "AUTHENTICATED"
EVENT_CLOSED = "CLOSED"


def translate_input(line: str) -> Optional[str]:
    """
    Convert a line typed in chat mode into a protocol command.

    Returns None for blank input.

    Example:
        >>> translate_input("/w bob hi")
        'WHISPER bob hi'
        >>> translate_input("hi all")
        'MSG hi all'
    """
    text = line.strip()
    if not text:
        return None

    lowered = text.lower()
    if lowered in QUIT_COMMANDS:
        return Command.LOGOUT.value

    for prefix in WHISPER_PREFIXES:
        if lowered.startswith(prefix):
            return f"{Command.WHISPER.value} {text[len(prefix):].strip()}"

    return f"{Command.MSG.value} {text}"


class ChatClient:
    """Socket wrapper plus the reader thread that interprets server lines."""

    def __init__(self, host: str, port: int):
        self.host = host
        self.port = port
        self.user_id: Optional[str] = None
        self.online_users: List[str] = []
        self.events: "queue.Queue[str]" = queue.Queue()
        self._sock: Optional[socket.socket] = None
        self._send_lock = threading.Lock()
        self._reader: Optional[threading.Thread] = None

    def connect(self) -> None:
        """
        Connect and start the reader thread.

        Raises:
            socket.error: If the connection cannot be established
        """
        logger.info(f"Connecting to {self.host}:{self.port}")
        print(f"[*] Connecting to server: {self.host}:{self.port}")
        self._sock = socket.create_connection((self.host, self.port))
        print("[+] Connected to server")

        self._reader = threading.Thread(target=self._receive_loop, name="reader", daemon=True)
        self._reader.start()

    def send(self, line: str) -> None:
        with self._send_lock:
            self._sock.sendall((line + "\n").encode("utf-8"))

    def close(self) -> None:
        if self._sock is None:
            return
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug(f"Socket shutdown: {e}")
        self._sock.close()
        self._sock = None

    def render(self, line: str) -> Optional[str]:
        """
        Update local state from a server line and return the text to display.

        Returns None for lines with nothing to show (SUBMITNAME).
        """
        reply, payload = parse_server_line(line)

        if reply is None:
            return line
        if reply is Reply.SUBMITNAME:
            return None
        if reply is Reply.NAMEACCEPTED:
            self.user_id = payload.strip()
            return f"[SYSTEM] Login successful: {self.user_id}"
        if reply is Reply.REGISTERED:
            return "[SYSTEM] Registration successful. Please log in."
        if reply is Reply.REGISTERFAIL:
            return f"[!] Registration failed: {payload}"
        if reply is Reply.IDOK:
            return "[SYSTEM] The requested ID is available."
        if reply is Reply.IDTAKEN:
            return "[SYSTEM] The requested ID is already taken."
        if reply is Reply.MESSAGE:
            return payload
        if reply is Reply.WHISPERFROM:
            return f"[Whisper] {payload}"
        if reply is Reply.USERLIST:
            self.online_users = parse_user_list(payload)
            return f"[Online] {', '.join(self.online_users) or '(nobody)'}"
        return f"[SYSTEM] {payload}"

    def _receive_loop(self) -> None:
        reader = self._sock.makefile("rb")
        try:
            for raw in reader:
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                logger.debug(f"Received: {line}")

                text = self.render(line)
                if text is not None:
                    print(text)

                reply, _ = parse_server_line(line)
                if reply is Reply.SUBMITNAME:
                    self.events.put(EVENT_PROMPT)
                elif reply is Reply.NAMEACCEPTED:
                    self.events.put(EVENT_AUTHENTICATED)
        except OSError as e:
            logger.debug(f"Reader stopped: {e}")
        finally:
            reader.close()
            self.events.put(EVENT_CLOSED)


def main_menu() -> int:
    """Show the authentication menu and return the chosen option (1-4)."""
    while True:
        print("\n" + "=" * 50)
        print("chatline")
        print("=" * 50)
        print("1. Login")
        print("2. Register")
        print("3. Check ID availability")
        print("4. Quit")
        choice = input("Select option: ").strip()
        if choice in ("1", "2", "3", "4"):
            return int(choice)
        print("[!] Invalid option")


def _ask(prompt: str, allow_spaces: bool = False) -> Optional[str]:
    value = input(prompt).strip()
    if not value:
        print("[!] Value cannot be empty")
        return None
    if not allow_spaces and " " in value:
        print("[!] Value cannot contain spaces")
        return None
    return value


def prompt_auth_command() -> Optional[str]:
    """
    Ask the user for an authentication command.

    Returns the protocol line to send, or None to disconnect.
    """
    while True:
        choice = main_menu()

        if choice == 1:
            user_id = _ask("Enter ID: ")
            password = user_id and _ask("Enter password: ", allow_spaces=True)
            if user_id and password:
                return f"{Command.LOGIN.value} {user_id} {password}"

        elif choice == 2:
            user_id = _ask("Enter ID: ")
            password = user_id and _ask("Enter password: ")
            name = password and _ask("Enter name: ")
            email = name and _ask("Enter email: ", allow_spaces=True)
            if user_id and password and name and email:
                return f"{Command.REGISTER.value} {user_id} {password} {name} {email}"

        elif choice == 3:
            user_id = _ask("Enter ID to check: ")
            if user_id:
                return f"{Command.CHECK_ID.value} {user_id}"

        else:
            return None


def chat_loop(client: ChatClient) -> None:
    """Read chat input until the user quits or stdin closes."""
    print("[*] Type messages; '/w id text' to whisper, '/users' to list, '/quit' to leave")
    while True:
        try:
            line = input()
        except EOFError:
            line = "/quit"

        if line.strip().lower() == "/users":
            print(f"[Online] {', '.join(client.online_users) or '(nobody)'}")
            continue

        command = translate_input(line)
        if command is None:
            continue
        client.send(command)
        if command == Command.LOGOUT.value:
            return


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="chatline terminal client")
    parser.add_argument("--host", default=config.CLIENT_HOST, help="Server host")
    parser.add_argument("--port", type=int, default=config.SERVER_PORT, help="Server port")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    return parser.parse_args(argv)


def main(argv=None):
    """
    Main entry point for the client.

    Exit codes:
        0: Normal exit
        1: Connection error
    """
    args = parse_args(argv)
    config.configure_logging(args.log_level)

    client = ChatClient(args.host, args.port)
    try:
        client.connect()
    except OSError as e:
        logger.critical(f"Connection error: {e}")
        print(f"[!] Cannot connect to {args.host}:{args.port}: {e}")
        sys.exit(1)

    try:
        while True:
            event = client.events.get()
            if event == EVENT_CLOSED:
                print("[*] Server closed the connection")
                break

            if event == EVENT_AUTHENTICATED:
                chat_loop(client)
                break

            command = prompt_auth_command()
            if command is None:
                print("\n[*] Exiting client")
                break
            client.send(command)

    except (KeyboardInterrupt, EOFError):
        print("\n[*] Exiting client")

    except OSError as e:
        logger.error(f"Connection lost: {e}")
        print(f"[!] Connection lost: {e}")

    finally:
        client.close()
        print("[*] Disconnected from server")


if __name__ == "__main__":
    main()
