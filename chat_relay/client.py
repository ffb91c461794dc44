import argparse
import logging
import socket
import sys
import threading
from typing import Callable, Iterable

from chat_relay.config import RELAY_CONFIG, setup_logging
from chat_relay.messages import is_exit

logger = logging.getLogger(__name__)


class ChatClient:
    """Console side of the relay: one thread receives, the caller's thread sends"""

    def __init__(self, sock: socket.socket, username: str) -> None:
        self.sock = sock
        self.username = username
        self.receiver_thread: threading.Thread | None = None  # prints incoming lines
        self.stop_event = threading.Event()
        self._reader = sock.makefile("r", encoding="utf-8", errors="replace", newline="\n")
        self._close_lock = threading.Lock()
        self._closed = False

    @classmethod
    def connect(cls, host: str, port: int, username: str) -> "ChatClient":
        sock = socket.create_connection((host, port))
        return cls(sock, username)

    @property
    def closed(self) -> bool:
        return self._closed

    def _send(self, text: str) -> None:
        self.sock.sendall((text + "\n").encode("utf-8"))

    def start_listening(self, on_line: Callable[[str], None] = print) -> threading.Thread:
        self.stop_event.clear()
        self.receiver_thread = threading.Thread(target=self._receiver_loop, args=(on_line,),
                                                name="Receiver", daemon=True)
        self.receiver_thread.start()
        return self.receiver_thread

    def _receiver_loop(self, on_line: Callable[[str], None]) -> None:
        try:
            while not self.stop_event.is_set():
                try:
                    line = self._reader.readline()
                except (OSError, ValueError) as exc:
                    if not self.stop_event.is_set():
                        logger.warning(f"{self.username}: connection lost ({exc})")
                    break
                if not line:
                    break
                on_line(line.rstrip("\r\n"))
        finally:
            self.close()

    def send_messages(self, lines: Iterable[str], echo: Callable[[str], None] = print) -> None:
        """Send the username, then every line until the exit keyword or end of input"""
        try:
            self._send(self.username)
            echo(f"To exit the chat room type '{RELAY_CONFIG['exit_keyword']}'.")
            for line in lines:
                if self.stop_event.is_set():
                    break
                message = line.rstrip("\r\n")
                if is_exit(message):
                    self._send(message)
                    echo("Disconnecting from server.")
                    break
                self._send(message)
        except OSError as exc:
            logger.warning(f"{self.username}: failed to send message ({exc})")
        finally:
            self.close()

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self.stop_event.set()
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # peer already gone
            logger.debug(f"{self.username}: socket already disconnected")
        for release in (self._reader.close, self.sock.close):
            try:
                release()
            except (OSError, ValueError) as exc:
                logger.warning(f"Error closing resources for client {self.username}: {exc}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Console client for the chat relay")
    parser.add_argument("--host", default=RELAY_CONFIG['host'])
    parser.add_argument("--port", type=int, default=RELAY_CONFIG['port'])
    parser.add_argument("--name", help="display name (prompted for when omitted)")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    username = args.name or input("Define your username: ").strip()
    if not username:
        print("Username must not be empty", file=sys.stderr)
        return 1
    try:
        client = ChatClient.connect(args.host, args.port, username)
    except OSError as exc:
        print(f"Connection to {args.host}:{args.port} failed: {exc}", file=sys.stderr)
        return 1

    client.start_listening()
    try:
        client.send_messages(sys.stdin)
    except KeyboardInterrupt:
        client.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
