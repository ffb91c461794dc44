"""Line vocabulary spoken between clients and the relay.

Clients send plain text lines; the literal exit keyword (any case) asks for a
disconnect. The relay sends three kinds of lines: joins, leaves and chat.
"""
from dataclasses import dataclass

from chat_relay.config import RELAY_CONFIG


@dataclass(frozen=True)
class Join:
    name: str


@dataclass(frozen=True)
class Leave:
    name: str


@dataclass(frozen=True)
class Chat:
    name: str
    text: str


@dataclass(frozen=True)
class Disconnect:
    pass


Message = Join | Leave | Chat | Disconnect


def is_exit(line: str, keyword: str | None = None) -> bool:
    keyword = keyword or RELAY_CONFIG['exit_keyword']
    return line.lower() == keyword.lower()


def parse_client_line(name: str, line: str, keyword: str | None = None) -> Chat | Disconnect:
    """Turn a line received from `name` into a Chat or a Disconnect"""
    if is_exit(line, keyword):
        return Disconnect()
    return Chat(name, line)


def render(message: Message) -> str:
    """Relay-to-client text for a message, without the line terminator"""
    if isinstance(message, Join):
        return f"{message.name} joined"
    if isinstance(message, Leave):
        return f"{message.name} left"
    if isinstance(message, Chat):
        return f"{message.name}: {message.text}"
    raise ValueError(f"{message!r} is never sent to clients")
