"""
Flat-file credential store.

This module provides:
- Loading user accounts from a tab-separated file at startup
- Registration with salted SHA-256 password hashes
- Login verification that never reveals whether the id exists
- Write-through persistence: the whole file is rewritten atomically after
  every successful registration

File format (one account per line, tab-separated):
    userId  displayName  email  saltHex(32)  passwordHashHex(64)
"""

import logging
import os
import re
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from chatline.crypto.password import generate_salt, hash_password, verify_password


logger = logging.getLogger(__name__)

FIELD_SEPARATOR = "\t"
FIELD_COUNT = 5

_SALT_HEX_RE = re.compile(r"^[0-9a-fA-F]{32}$")
_HASH_HEX_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class RegistrationError(Exception):
    """Base class for registration failures; str(err) is the client-facing reason."""


class DuplicateIdError(RegistrationError):
    def __init__(self, user_id: str):
        super().__init__("This ID is already in use.")
        self.user_id = user_id


class InvalidFieldError(RegistrationError):
    pass


class PersistenceError(RegistrationError):
    def __init__(self, cause: Exception):
        super().__init__("Internal server error (could not save account).")
        self.cause = cause


@dataclass(frozen=True)
class Account:
    """A registered user. Immutable once created."""

    user_id: str
    display_name: str
    email: str
    salt: bytes
    password_hash: str

    @property
    def salt_hex(self) -> str:
        return self.salt.hex()

    def to_record(self) -> str:
        """Serialize to one line of the credential file (no newline)."""
        return FIELD_SEPARATOR.join(
            (self.user_id, self.display_name, self.email, self.salt_hex, self.password_hash)
        )

    @classmethod
    def from_record(cls, line: str) -> Optional["Account"]:
        """Parse one file line; returns None for malformed records."""
        parts = line.split(FIELD_SEPARATOR)
        if len(parts) != FIELD_COUNT:
            return None
        user_id, display_name, email, salt_hex, hash_hex = parts
        if not user_id or not _SALT_HEX_RE.match(salt_hex) or not _HASH_HEX_RE.match(hash_hex):
            return None
        return cls(user_id, display_name, email, bytes.fromhex(salt_hex), hash_hex.lower())

    def __repr__(self) -> str:
        return f"Account(user_id={self.user_id!r}, display_name={self.display_name!r})"


def _validate_fields(user_id: str, password: str, display_name: str, email: str) -> None:
    """
    Reject values that would corrupt the credential file or USERLIST.

    Raises: InvalidFieldError
    """
    fields = {"ID": user_id, "Password": password, "Name": display_name, "Email": email}
    for label, value in fields.items():
        if not value:
            raise InvalidFieldError(f"{label} cannot be empty.")
        if "\t" in value or "\n" in value or "\r" in value:
            raise InvalidFieldError(f"{label} cannot contain tabs or line breaks.")
    if "," in user_id or " " in user_id:
        raise InvalidFieldError("ID cannot contain commas or spaces.")


class CredentialStore:
    """
    Thread-safe account registry mirrored to a flat file.

    All public methods hold a single lock, so an existence check, the insert
    and the file rewrite happen as one critical section.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._accounts: Dict[str, Account] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._accounts)

    def __contains__(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._accounts

    def load(self) -> int:
        """
        Load accounts from disk, replacing the in-memory snapshot.

        A missing file yields an empty store. Malformed lines are skipped.

        Returns:
            int: Number of accounts loaded

        Raises:
            OSError: If the file exists but cannot be read
        """
        with self._lock:
            self._accounts = {}
            if not self.path.exists():
                logger.info(f"No existing user DB found at {self.path}. Starting fresh.")
                return 0

            with open(self.path, "r", encoding="utf-8", newline="\n") as f:
                for line_no, raw in enumerate(f, start=1):
                    line = raw.rstrip("\r\n")
                    if not line:
                        continue
                    account = Account.from_record(line)
                    if account is None:
                        logger.debug(f"Skipping malformed record at {self.path}:{line_no}")
                        continue
                    self._accounts[account.user_id] = account

            logger.info(f"Loaded {len(self._accounts)} user(s) from {self.path}")
            return len(self._accounts)

    def save(self) -> None:
        """
        Rewrite the whole file atomically.

        Raises:
            OSError: If the file cannot be written
        """
        with self._lock:
            self._write_locked()

    def is_available(self, user_id: str) -> bool:
        """Return True if no account exists for user_id."""
        with self._lock:
            return user_id not in self._accounts

    def register(self, user_id: str, password: str, display_name: str, email: str) -> Account:
        """
        Register a new account and persist the store.

        Generates a random 16-byte salt, hashes the password, inserts the
        account and rewrites the file. If the write fails the insert is
        undone, so memory and disk never diverge.

        Returns: The new Account
        Raises: DuplicateIdError, InvalidFieldError, PersistenceError
        """
        _validate_fields(user_id, password, display_name, email)

        with self._lock:
            if user_id in self._accounts:
                raise DuplicateIdError(user_id)

            salt = generate_salt()
            account = Account(user_id, display_name, email, salt, hash_password(salt, password))
            self._accounts[user_id] = account

            try:
                self._write_locked()
            except OSError as e:
                del self._accounts[user_id]
                logger.error(f"Failed to save user DB, registration of '{user_id}' rolled back: {e}")
                raise PersistenceError(e) from e

        logger.debug(f"Registered user '{user_id}'")
        return account

    def authenticate(self, user_id: str, password: str) -> Optional[Account]:
        """
        Verify a login.

        Returns the Account on a password match, None otherwise. Unknown ids
        and wrong passwords are indistinguishable to the caller.
        """
        with self._lock:
            account = self._accounts.get(user_id)

        if account is None:
            return None
        if verify_password(account.salt, password, account.password_hash):
            return account
        return None

    def accounts(self) -> List[Account]:
        """Return a snapshot of all accounts in insertion order."""
        with self._lock:
            return list(self._accounts.values())

    def _write_locked(self) -> None:
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
                for account in self._accounts.values():
                    f.write(account.to_record())
                    f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

        logger.debug(f"Saved {len(self._accounts)} user(s) to {self.path}")
