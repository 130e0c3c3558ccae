"""
Registry of online users and their output channels.

The Directory is the only shared view of who is online. Membership checks,
inserts, removals and every fan-out run under one re-entrant lock. Channels
only enqueue lines, so holding the lock while fanning out never waits on a
slow socket, and all clients observe fan-out traffic in the same order.
"""

import logging
import queue
import socket
import threading
from typing import Dict, List, Optional

from chatline.common.protocol import Reply, format_reply, format_user_list


logger = logging.getLogger(__name__)

# Lines a channel may hold before its peer is treated as stalled
MAX_PENDING_LINES = 1000


class OutputChannel:
    """Interface for anything that can receive server lines."""

    def send_line(self, line: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class QueuedChannel(OutputChannel):
    """
    Output channel backed by a queue and a dedicated writer thread.

    The writer thread owns the send side of the socket; each queued line is
    written whole with sendall(). After a send error the channel drops any
    further lines instead of raising into the sender.

    The queue holds at most max_pending lines. A peer that stops reading
    fills it; the channel is then marked broken and the socket shut down,
    so the owning session sees end of stream and cleans up as usual.
    """

    _STOP = object()

    def __init__(self, sock: socket.socket, label: str, max_pending: int = MAX_PENDING_LINES):
        self._sock = sock
        self._label = label
        self._queue: "queue.Queue" = queue.Queue(maxsize=max_pending)
        self._broken = threading.Event()
        self._closed = False
        self._writer = threading.Thread(
            target=self._write_loop, name=f"writer-{label}", daemon=True
        )
        self._writer.start()

    @property
    def broken(self) -> bool:
        return self._broken.is_set()

    @property
    def backlog(self) -> int:
        """Number of lines queued but not yet written."""
        return self._queue.qsize()

    def send_line(self, line: str) -> None:
        if self._closed or self._broken.is_set():
            return
        try:
            self._queue.put_nowait(line)
        except queue.Full:
            self._abort(f"Output backlog exceeded {self._queue.maxsize} lines")

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Flush pending lines and stop the writer thread."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put(self._STOP, timeout=timeout)
        except queue.Full:
            # Writer is stuck on a stalled peer; unblock it so it can drain
            self._abort("Output backlog did not drain on close")
            self._queue.put(self._STOP)
        self._writer.join(timeout=timeout)
        if self._writer.is_alive():
            logger.warning(f"[{self._label}] Writer thread did not finish flushing")

    def _abort(self, reason: str) -> None:
        if self._broken.is_set():
            return
        self._broken.set()
        logger.warning(f"[{self._label}] {reason}, disconnecting client")
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug(f"[{self._label}] Socket shutdown: {e}")

    def _write_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is self._STOP:
                return
            if self._broken.is_set():
                continue
            try:
                self._sock.sendall((item + "\n").encode("utf-8"))
            except OSError as e:
                logger.debug(f"[{self._label}] Send failed, dropping further output: {e}")
                self._broken.set()


class Directory:
    """
    Online users and how to reach them.

    Invariant: the set of online ids and the key set of the channel map are
    identical; both live in one dict so they cannot drift apart.
    """

    def __init__(self):
        self._channels: Dict[str, OutputChannel] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)

    def is_online(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._channels

    def try_join(self, user_id: str, channel: OutputChannel, welcome: Optional[str] = None) -> bool:
        """
        Register user_id with its channel unless it is already online.

        Args:
            user_id: Authenticated user id
            channel: Where this user's lines go
            welcome: Optional line queued to the joiner before any fan-out
                that follows the join

        Returns:
            bool: True if admitted, False if the id already has a session
        """
        with self._lock:
            if user_id in self._channels:
                return False
            self._channels[user_id] = channel
            if welcome is not None:
                channel.send_line(welcome)
        logger.debug(f"Directory join: {user_id}")
        return True

    def leave(self, user_id: str) -> None:
        """Remove user_id. Safe to call when it is not present."""
        with self._lock:
            removed = self._channels.pop(user_id, None)
        if removed is not None:
            logger.debug(f"Directory leave: {user_id}")

    def broadcast(self, text: str) -> int:
        """Send 'MESSAGE text' to every online user. Returns the recipient count."""
        return self._fan_out(format_reply(Reply.MESSAGE, text))

    def system_announce(self, text: str) -> int:
        """Send 'SYSTEM text' to every online user."""
        return self._fan_out(format_reply(Reply.SYSTEM, text))

    def whisper_to(self, sender_id: str, target_id: str, text: str) -> bool:
        """
        Deliver a private message to target_id only.

        Returns:
            bool: True if the target was online and the line was queued,
                False if the target is offline (the whisper is dropped)
        """
        with self._lock:
            channel = self._channels.get(target_id)
            if channel is None:
                return False
            channel.send_line(format_reply(Reply.WHISPERFROM, f"{sender_id}: {text}"))
        return True

    def user_list_snapshot(self) -> List[str]:
        """Current online ids, sorted so equal sets render identically."""
        with self._lock:
            return sorted(self._channels)

    def publish_user_list(self) -> str:
        """Broadcast a fresh USERLIST line and return it."""
        with self._lock:
            line = format_user_list(self.user_list_snapshot())
            self._fan_out(line)
        return line

    def _fan_out(self, line: str) -> int:
        with self._lock:
            for channel in self._channels.values():
                channel.send_line(line)
            return len(self._channels)
