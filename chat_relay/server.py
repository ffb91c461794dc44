"""Multi-threaded relay server.

One acceptor thread listens for connections and hands each one to its own
worker thread. A worker reads the peer's name, registers the session, then
relays every line the peer sends to all other sessions until the peer types
the exit keyword or the connection drops.
"""
import argparse
import errno
import logging
import socket
import threading
import time

from chat_relay.admin import AdminServer, create_admin_app
from chat_relay.config import ADMIN_CONFIG, RELAY_CONFIG, setup_logging
from chat_relay.errors import HandshakeError, TransportError
from chat_relay.messages import Disconnect, Join, Leave, parse_client_line, render
from chat_relay.registry import Registry
from chat_relay.session import Session

logger = logging.getLogger(__name__)

# how often a blocked accept() wakes up to check for stop()
ACCEPT_POLL_SEC = 0.5
# pause after a failed accept() so a persistent error (EMFILE) does not spin
ACCEPT_RETRY_SEC = 0.1


class RelayServer:
    def __init__(self, host: str | None = None, port: int | None = None,
                 registry: Registry | None = None, backlog: int | None = None,
                 exit_keyword: str | None = None) -> None:
        self.host = RELAY_CONFIG['host'] if host is None else host
        self.port = RELAY_CONFIG['port'] if port is None else port
        self.backlog = RELAY_CONFIG['backlog'] if backlog is None else backlog
        self.exit_keyword = exit_keyword or RELAY_CONFIG['exit_keyword']
        self.registry = registry or Registry()
        self.stats = self.registry.stats

        self._listener: socket.socket | None = None
        self._stop_event = threading.Event()
        self._closing_sessions = False
        self._acceptor: threading.Thread | None = None
        self._workers: set[threading.Thread] = set()  # supervised session threads
        self._sessions: set[Session] = set()  # every session a worker owns, admitted or not
        self._workers_lock = threading.Lock()

    def __enter__(self) -> "RelayServer":
        self.bind()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop(close_sessions=True)
        self.join(timeout=5)

    @property
    def address(self) -> tuple[str, int]:
        if self._listener is None:
            return self.host, self.port
        return self._listener.getsockname()[:2]

    @property
    def is_running(self) -> bool:
        return self._listener is not None and not self._stop_event.is_set()

    # ===== ACCEPTOR =====
    def bind(self) -> tuple[str, int]:
        if self._listener is not None:
            return self.address
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((self.host, self.port))
            listener.listen(self.backlog)
            listener.settimeout(ACCEPT_POLL_SEC)
        except OSError:
            listener.close()
            raise
        self._listener = listener
        logger.info(f"Server listening on {self.address[0]}:{self.address[1]}")
        return self.address

    def serve_forever(self) -> None:
        """Accept connections until stop() is called or the listening socket breaks"""
        self.bind()
        listener = self._listener
        try:
            while not self._stop_event.is_set():
                try:
                    conn, addr = listener.accept()
                except socket.timeout:
                    continue
                except OSError as exc:
                    if self._stop_event.is_set() or listener.fileno() == -1:
                        break
                    if exc.errno in (errno.EBADF, errno.EINVAL, errno.ENOTSOCK):
                        logger.error(f"Listening socket is no longer usable: {exc}")
                        break
                    logger.error(f"Error while accepting client connection: {exc}")
                    self._stop_event.wait(ACCEPT_RETRY_SEC)
                    continue

                conn.settimeout(None)
                self.stats.incr('connections_accepted')
                logger.info(f"A new client has connected from {addr}")
                self._spawn(conn, addr)
        finally:
            self._close_listener()

    def serve_in_background(self) -> threading.Thread:
        self.bind()
        self._acceptor = threading.Thread(target=self.serve_forever, name="Acceptor", daemon=True)
        self._acceptor.start()
        return self._acceptor

    def stop(self, close_sessions: bool = False) -> None:
        """Stop accepting; with close_sessions also disconnect every active peer"""
        self._stop_event.set()
        if self._acceptor is None or self._acceptor is threading.current_thread():
            self._close_listener()
        if close_sessions:
            self._closing_sessions = True
            self.registry.close_all()
            # peers still in the handshake are not registered yet
            with self._workers_lock:
                pending = list(self._sessions)
            for session in pending:
                session.close()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the acceptor and all session workers; True if they all finished"""
        deadline = None if timeout is None else time.monotonic() + timeout
        threads = self.workers()
        if self._acceptor is not None:
            threads.append(self._acceptor)
        for thread in threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
        return not any(thread.is_alive() for thread in threads)

    def workers(self) -> list[threading.Thread]:
        with self._workers_lock:
            return list(self._workers)

    def active_workers(self) -> int:
        with self._workers_lock:
            return len(self._workers)

    def _close_listener(self) -> None:
        listener, self._listener = self._listener, None
        if listener is None:
            return
        try:
            logger.info("Closing server socket.")
            listener.close()
            logger.info("Server stopped successfully.")
        except OSError as exc:
            logger.warning(f"Error while closing server socket: {exc}")

    # ===== SESSION WORKERS =====
    def _spawn(self, conn: socket.socket, addr) -> None:
        worker = threading.Thread(target=self._worker, args=(conn, addr),
                                  name=f"Session-{addr}", daemon=True)
        with self._workers_lock:
            self._workers.add(worker)
        worker.start()

    def _worker(self, conn: socket.socket, addr) -> None:
        session = Session(conn, addr)
        with self._workers_lock:
            self._sessions.add(session)
            closing = self._closing_sessions
        try:
            try:
                if closing:
                    raise HandshakeError(f"server is shutting down, refused {addr}")
                self.admit(session)
            except HandshakeError as exc:
                self.stats.incr('handshake_failures')
                logger.warning(f"Handshake failed: {exc}")
                return
            self.run_session(session)
        except Exception:
            logger.exception(f"Unexpected error in session worker for {addr}")
        finally:
            session.close()
            with self._workers_lock:
                self._sessions.discard(session)
                self._workers.discard(threading.current_thread())

    def admit(self, session: Session) -> str:
        """Handshake, register and announce a new session"""
        name = session.handshake()
        if not self.registry.register(session):
            try:
                session.write_line(f"name '{name}' is already taken")
            except TransportError as exc:
                logger.debug(f"Could not send rejection to {session.address}: {exc}")
            raise HandshakeError(f"name '{name}' is already taken ({session.address})")
        if self._closing_sessions:
            self.registry.unregister(session)
            raise HandshakeError(f"server is shutting down, dropped {name}")

        logger.info(f"Client connected successfully: {name}")
        self.registry.broadcast(render(Join(name)), exclude=name)
        return name

    def run_session(self, session: Session) -> None:
        """Relay the session's lines until it leaves, then tear it down"""
        name = session.name
        try:
            for line in session.lines():
                message = parse_client_line(name, line, self.exit_keyword)
                if isinstance(message, Disconnect):
                    logger.info(f"{name}: requested to disconnect")
                    break
                self.registry.broadcast(render(message), exclude=name)
                self.stats.incr('messages_relayed')
        except TransportError as exc:
            logger.warning(f"Connection lost with client {name}: {exc.__cause__ or exc}")
        finally:
            self._teardown(session)

    def _teardown(self, session: Session) -> None:
        session.mark_closing()
        self.registry.unregister(session)
        self.registry.broadcast(render(Leave(session.name)), exclude=session.name)
        session.close()
        self.stats.incr('sessions_closed')
        logger.info(f"Client removed: {session.name}")


# ===== ENTRY POINT =====
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Line based chat broadcast relay")
    parser.add_argument("--host", default=RELAY_CONFIG['host'])
    parser.add_argument("--port", type=int, default=RELAY_CONFIG['port'])
    parser.add_argument("--admin-port", type=int, default=ADMIN_CONFIG['port'],
                        help="serve /health, /sessions and /stats on this port (0 = off)")
    parser.add_argument("--log-level", default=None)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    server = RelayServer(args.host, args.port)
    try:
        server.bind()
    except OSError as exc:
        logger.error(f"Error while starting the server: {exc}")
        return 1
    logger.info("Server started.")

    admin = None
    if args.admin_port:
        admin = AdminServer(create_admin_app(server.registry, server.stats),
                            ADMIN_CONFIG['host'], args.admin_port)
        admin.start()

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        server.stop(close_sessions=True)
        server.join(timeout=5)
        if admin is not None:
            admin.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
