from typing import Callable, Dict, Iterator, List, Tuple

from .errors import UnknownSession

# Session id 0 means "no session" / "no tracker"
NO_SESSION = 0

OutboundFn = Callable[[str], None]


class SessionRegistry:
    """Live sessions keyed by id, plus the id of the current tracker."""

    def __init__(self):
        self._sessions: Dict[int, OutboundFn] = {}
        self.tracker_id = NO_SESSION

    def register(self, session_id: int, send: OutboundFn) -> None:
        self._sessions[session_id] = send

    def remove(self, session_id: int) -> bool:
        """Remove a session. Returns True when it was the tracker."""
        if session_id not in self._sessions:
            raise UnknownSession(session_id)
        del self._sessions[session_id]
        if session_id == self.tracker_id:
            self.tracker_id = NO_SESSION
            return True
        return False

    def lookup(self, session_id: int) -> OutboundFn:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise UnknownSession(session_id) from None

    def claim(self, session_id: int) -> None:
        if session_id not in self._sessions:
            raise UnknownSession(session_id)
        self.tracker_id = session_id

    def all_except(self, session_id: int) -> Iterator[Tuple[int, OutboundFn]]:
        # Snapshot first so a send callback may safely trigger a removal
        peers = [(sid, send) for sid, send in self._sessions.items() if sid != session_id]
        return iter(peers)

    def ids(self) -> List[int]:
        return list(self._sessions)

    def __contains__(self, session_id: int) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
