import logging
import threading

from chat_relay.errors import TransportError
from chat_relay.session import Session
from chat_relay.stats import RelayStats

logger = logging.getLogger(__name__)


class Registry:
    """The set of active sessions, keyed by display name.

    Membership changes happen under a single lock. Broadcast copies the
    members under that lock and writes to them after releasing it, so a slow
    peer never blocks register/unregister.
    """

    def __init__(self, stats: RelayStats | None = None) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self.stats = stats or RelayStats()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session: Session) -> bool:
        with self._lock:
            return self._sessions.get(session.name) is session

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._sessions)

    def get(self, name: str) -> Session | None:
        with self._lock:
            return self._sessions.get(name)

    def register(self, session: Session) -> bool:
        """Add an active session; False if it is not active or its name is taken"""
        if not session.is_active:
            return False
        with self._lock:
            current = self._sessions.get(session.name)
            if current is session:
                return True
            if current is not None:
                return False
            self._sessions[session.name] = session
        logger.info(f"Session registered: {session.name} ({len(self)} active)")
        return True

    def unregister(self, session: Session) -> bool:
        """Remove the session if it is the one registered under its name"""
        with self._lock:
            if self._sessions.get(session.name) is not session:
                return False
            del self._sessions[session.name]
        logger.info(f"Session unregistered: {session.name}")
        return True

    def broadcast(self, line: str, exclude: str | None = None) -> int:
        """Write line to every member except `exclude`; returns successful deliveries"""
        with self._lock:
            targets = [s for name, s in self._sessions.items() if name != exclude]

        delivered = 0
        dead: list[Session] = []
        for session in targets:
            try:
                session.write_line(line)
                delivered += 1
            except TransportError as exc:
                logger.warning(f"Failed to deliver to {session.name}: {exc.__cause__ or exc}")
                dead.append(session)

        for session in dead:
            self.stats.incr('write_failures')
            self._drop(session)
        if delivered:
            self.stats.incr('lines_delivered', delivered)
        return delivered

    def close_all(self) -> None:
        """Drop and close every member, for administrative shutdown"""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.mark_closing()
            session.close()
        if sessions:
            logger.info(f"Closed {len(sessions)} session(s)")

    def _drop(self, session: Session) -> None:
        # the session's own loop still announces the leave once its read fails
        session.mark_closing()
        self.unregister(session)
        session.close()
