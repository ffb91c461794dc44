"""Shared helpers: socket peers and active sessions built on socketpairs."""
import select
import socket
import time

import pytest

from chat_relay.registry import Registry
from chat_relay.session import Session

TIMEOUT = 3.0


class Peer:
    """The far end of a connection, as a test client sees it"""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock
        self.sock.settimeout(TIMEOUT)
        self.reader = sock.makefile("r", encoding="utf-8", newline="\n")

    @classmethod
    def connect(cls, address) -> "Peer":
        return cls(socket.create_connection(address, timeout=TIMEOUT))

    def send(self, text: str) -> None:
        self.sock.sendall((text + "\n").encode("utf-8"))

    def read_line(self) -> str | None:
        line = self.reader.readline()
        return line.rstrip("\n") if line else None

    def has_pending(self, wait: float = 0.2) -> bool:
        readable, _, _ = select.select([self.sock], [], [], wait)
        return bool(readable)

    def close(self) -> None:
        self.reader.close()
        self.sock.close()


def wait_for(condition, timeout: float = TIMEOUT, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(interval)
    return condition()


@pytest.fixture
def make_session():
    """Build sessions that already completed the handshake"""
    created = []

    def factory(name: str | None = None) -> tuple[Session, Peer]:
        ours, theirs = socket.socketpair()
        session = Session(ours, ("test", len(created)))
        peer = Peer(theirs)
        if name is not None:
            peer.send(name)
            session.handshake()
        created.append((session, peer))
        return session, peer

    yield factory

    for session, peer in created:
        session.close()
        peer.close()


@pytest.fixture
def registry():
    return Registry()
