from dataclasses import dataclass
from typing import Union

from .errors import MalformedCommand, UnknownKey
from .values import SETTABLE_KEYS, U8_MAX, TrackedKey, resolve_key

PONG = "pong"
OK = "ok"
UNKNOWN_INPUT = "error: unknown input"
UNKNOWN_KEY = "error: unknown value key"
READ_ONLY_KEY = "error: tracker value cannot be set"
TRACKER_CONFLICT = "error: a tracker is already connected"
BINARY_UNSUPPORTED = "error: binary messages are not supported"


@dataclass(frozen=True)
class Ping:
    session_id: int


@dataclass(frozen=True)
class GetVal:
    session_id: int
    key: str  # validated by the value store


@dataclass(frozen=True)
class SetVal:
    session_id: int
    key: TrackedKey
    value: int


@dataclass(frozen=True)
class Reject:
    """Input refused before reaching the store; `reply` goes to the sender only."""

    session_id: int
    reply: str


Command = Union[Ping, GetVal, SetVal, Reject]


def format_value(key: Union[str, TrackedKey], value: int) -> str:
    return f"{key}: {value}"


def bad_value_reply(key: TrackedKey) -> str:
    return f"error: unknown input for {key} value"


def _parse_u8(text: str) -> int:
    if not (text.isascii() and text.lstrip("+").isdigit()) or text.count("+") > 1:
        raise ValueError(text)
    value = int(text)
    if value > U8_MAX:
        raise ValueError(text)
    return value


def parse_command(session_id: int, line: str) -> Command:
    """Turn one received line into a command.

    Keywords are case-insensitive. Raises MalformedCommand carrying the
    error text for input that must be refused.
    """
    parts = line.lower().split()
    if not parts:
        raise MalformedCommand(UNKNOWN_INPUT)
    verb, args = parts[0], parts[1:]

    if verb == "ping" and not args:
        return Ping(session_id)

    if verb == "get" and args:
        return GetVal(session_id, args[0])

    if verb == "set" and len(args) >= 2:
        try:
            key = resolve_key(args[0])
        except UnknownKey:
            raise MalformedCommand(UNKNOWN_KEY) from None
        if key not in SETTABLE_KEYS:
            raise MalformedCommand(READ_ONLY_KEY)
        try:
            value = _parse_u8(args[1])
        except ValueError:
            raise MalformedCommand(bad_value_reply(key)) from None
        return SetVal(session_id, key, value)

    raise MalformedCommand(UNKNOWN_INPUT)
