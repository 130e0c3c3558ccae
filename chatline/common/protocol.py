"""
Wire protocol definitions for chatline.

Every command and every reply is a single UTF-8 line terminated by '\\n'.
Fields are separated by single spaces; the final field of a command is the
unsplit remainder of the line and may itself contain spaces.

Client -> Server:
    REGISTER id pw name email
    LOGIN id pw
    CHECK_ID id
    MSG text
    WHISPER targetId text
    LOGOUT  (or /quit)

Server -> Client:
    SUBMITNAME, NAMEACCEPTED id, REGISTERED OK, REGISTERFAIL reason,
    IDOK, IDTAKEN, MESSAGE text, WHISPERFROM senderId: text, SYSTEM text,
    USERLIST id1,id2,...
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple


class Command(Enum):
    """Commands a client may send."""

    REGISTER = "REGISTER"
    LOGIN = "LOGIN"
    CHECK_ID = "CHECK_ID"
    MSG = "MSG"
    WHISPER = "WHISPER"
    LOGOUT = "LOGOUT"

    def __str__(self) -> str:
        return self.value


class Reply(Enum):
    """Reply keywords the server emits."""

    SUBMITNAME = "SUBMITNAME"
    NAMEACCEPTED = "NAMEACCEPTED"
    REGISTERED = "REGISTERED"
    REGISTERFAIL = "REGISTERFAIL"
    IDOK = "IDOK"
    IDTAKEN = "IDTAKEN"
    MESSAGE = "MESSAGE"
    WHISPERFROM = "WHISPERFROM"
    SYSTEM = "SYSTEM"
    USERLIST = "USERLIST"

    def __str__(self) -> str:
        return self.value


QUIT_ALIAS = "/quit"

USAGE_REGISTER = "Format: REGISTER id pw name email"
USAGE_LOGIN = "Format: LOGIN id pw"
USAGE_CHECK_ID = "Format: CHECK_ID id"
USAGE_WHISPER = "Format: WHISPER targetId message..."

UNKNOWN_COMMAND = "Unknown command. Use REGISTER / LOGIN / CHECK_ID."
LOGIN_FAILED = "Login failed: Invalid ID or password."
ALREADY_LOGGED_IN = "This account is already logged in."
TARGET_OFFLINE = "The target user is not online."


class MalformedCommandError(ValueError):
    """A known command arrived with missing or empty arguments."""

    def __init__(self, command: Command, usage: str):
        super().__init__(usage)
        self.command = command
        self.usage = usage


@dataclass(frozen=True)
class RegisterRequest:
    user_id: str
    password: str
    display_name: str
    email: str

    def __repr__(self) -> str:
        # Keep the password out of logs and tracebacks
        return (
            f"RegisterRequest(user_id={self.user_id!r}, "
            f"display_name={self.display_name!r}, email={self.email!r})"
        )


@dataclass(frozen=True)
class LoginRequest:
    user_id: str
    password: str

    def __repr__(self) -> str:
        return f"LoginRequest(user_id={self.user_id!r})"


@dataclass(frozen=True)
class WhisperRequest:
    target_id: str
    text: str


def split_command(line: str) -> Tuple[str, str]:
    """
    Split a line into its keyword and the remainder after the first space.

    Example:
        >>> split_command("WHISPER bob hi there")
        ('WHISPER', 'bob hi there')
    """
    keyword, _, rest = line.partition(" ")
    return keyword, rest


def is_quit(line: str) -> bool:
    """Return True for exactly LOGOUT or /quit, ignoring case but not spacing."""
    lowered = line.lower()
    return lowered in (Command.LOGOUT.value.lower(), QUIT_ALIAS)


def parse_register(rest: str) -> RegisterRequest:
    """
    Parse the arguments of REGISTER.

    The email is everything after the third space, so it may contain spaces.

    Raises: MalformedCommandError
    """
    parts = rest.split(" ", 3)
    if len(parts) < 4 or not all(parts):
        raise MalformedCommandError(Command.REGISTER, USAGE_REGISTER)
    user_id, password, display_name, email = parts
    return RegisterRequest(user_id, password, display_name, email)


def parse_login(rest: str) -> LoginRequest:
    """
    Parse the arguments of LOGIN. The password is the unsplit remainder.

    Raises: MalformedCommandError
    """
    user_id, _, password = rest.partition(" ")
    if not user_id or not password:
        raise MalformedCommandError(Command.LOGIN, USAGE_LOGIN)
    return LoginRequest(user_id, password)


def parse_check_id(rest: str) -> str:
    """Return the id queried by CHECK_ID. Raises: MalformedCommandError"""
    user_id = rest.strip()
    if not user_id:
        raise MalformedCommandError(Command.CHECK_ID, USAGE_CHECK_ID)
    return user_id


def parse_whisper(rest: str) -> WhisperRequest:
    """
    Parse the arguments of WHISPER.

    The text is the remainder after the target id and is kept verbatim.

    Raises: MalformedCommandError
    """
    target_id, _, text = rest.partition(" ")
    if not target_id or not text.strip():
        raise MalformedCommandError(Command.WHISPER, USAGE_WHISPER)
    return WhisperRequest(target_id, text)


def format_reply(reply: Reply, payload: Optional[str] = None) -> str:
    """
    Render a reply line (without the trailing newline).

    Example:
        >>> format_reply(Reply.SYSTEM, "alice has joined the chat.")
        'SYSTEM alice has joined the chat.'
    """
    if payload is None:
        return reply.value
    return f"{reply.value} {payload}"


def format_user_list(user_ids: Iterable[str]) -> str:
    """Render USERLIST; an empty directory yields 'USERLIST ' with no ids."""
    return format_reply(Reply.USERLIST, ",".join(user_ids))


def parse_server_line(line: str) -> Tuple[Optional[Reply], str]:
    """
    Split a server line into its Reply keyword and payload.

    Returns (None, line) when the keyword is not recognised.
    """
    keyword, rest = split_command(line)
    try:
        return Reply(keyword), rest
    except ValueError:
        return None, line


def parse_user_list(payload: str) -> list:
    """Decode the payload of a USERLIST line into a list of ids."""
    return [user_id for user_id in payload.split(",") if user_id]
