import enum
import errno
import logging
import socket
import threading
from typing import Iterator

from chat_relay.errors import HandshakeError, ResourceReleaseError, TransportError

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class Session:
    """One connected peer: its socket, display name and lifecycle state.

    The owning session loop is the only reader. Any broadcaster may write, so
    writes go through a per-session lock and a line is always sent whole.
    """

    def __init__(self, sock: socket.socket, address: tuple | None = None) -> None:
        self.sock = sock
        self.address = address
        self.name: str | None = None
        self.state = SessionState.CONNECTING

        self._reader = sock.makefile("r", encoding="utf-8", errors="replace", newline="\n")
        self._write_lock = threading.Lock()  # one writer on the wire at a time
        self._state_lock = threading.Lock()
        self._closed = False

    def __repr__(self) -> str:
        return f"Session(name={self.name!r}, address={self.address!r}, state={self.state.value})"

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def handshake(self) -> str:
        """Read the display name; the session becomes active on success"""
        try:
            line = self.read_line()
        except TransportError as exc:
            raise HandshakeError(f"failed to read name from {self.address}") from exc
        if line is None:
            raise HandshakeError(f"{self.address} disconnected before sending a name")
        name = line.strip()
        if not name:
            raise HandshakeError(f"{self.address} sent an empty name")

        with self._state_lock:
            if self.state is not SessionState.CONNECTING:
                raise HandshakeError(f"session {self.address} is {self.state.value}")
            self.name = name
            self.state = SessionState.ACTIVE
        return name

    def read_line(self) -> str | None:
        """Next line without its terminator, or None once the peer is gone"""
        if self._closed:
            raise TransportError(f"read on closed session {self.name}")
        try:
            line = self._reader.readline()
        except (OSError, ValueError) as exc:
            # ValueError: the reader was closed under us by another thread
            raise TransportError(f"read failed for {self.name}") from exc
        if not line:
            return None
        return line.rstrip("\r\n")

    def lines(self) -> Iterator[str]:
        while (line := self.read_line()) is not None:
            yield line

    def write_line(self, text: str) -> None:
        data = (text + "\n").encode("utf-8")
        with self._write_lock:
            if self._closed:
                raise TransportError(f"write on closed session {self.name}")
            try:
                self.sock.sendall(data)
            except OSError as exc:
                raise TransportError(f"write failed for {self.name}") from exc

    def mark_closing(self) -> None:
        with self._state_lock:
            if self.state in (SessionState.CONNECTING, SessionState.ACTIVE):
                self.state = SessionState.CLOSING

    def close(self) -> None:
        """Release the socket and reader; safe to call from any thread, any number of times"""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            self.state = SessionState.CLOSING

        errors: list[Exception] = []
        # shutdown wakes a reader blocked in another thread
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError as exc:
            # already disconnected by the peer
            if exc.errno != errno.ENOTCONN:
                errors.append(exc)
        for release in (self._reader.close, self.sock.close):
            try:
                release()
            except (OSError, ValueError) as exc:
                errors.append(exc)

        for exc in errors:
            err = ResourceReleaseError(f"error closing resources for {self.name}: {exc}")
            logger.warning(str(err))

        with self._state_lock:
            self.state = SessionState.CLOSED
