class HeartsockError(Exception):
    """Base class for server errors."""


class UnknownSession(HeartsockError):
    def __init__(self, session_id: int):
        super().__init__(f"unknown session ID {session_id}")
        self.session_id = session_id


class UnknownKey(HeartsockError, KeyError):
    def __init__(self, key: str):
        super().__init__(f"unknown value key {key!r}")
        self.key = key

    def __str__(self) -> str:
        return self.args[0]


class MalformedCommand(HeartsockError):
    """Raised by the parser; `reply` is the text sent back to the client."""

    def __init__(self, reply: str):
        super().__init__(reply)
        self.reply = reply


class MdnsError(HeartsockError):
    pass


class DataDirError(HeartsockError):
    def __init__(self, path, error: OSError):
        super().__init__(f"Failed to create data directory {path}: {error}")
        self.path = path
