import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from .commands import (
    OK,
    PONG,
    TRACKER_CONFLICT,
    UNKNOWN_KEY,
    Command,
    GetVal,
    Ping,
    Reject,
    SetVal,
    format_value,
)
from .errors import UnknownKey, UnknownSession
from .registry import NO_SESSION, OutboundFn, SessionRegistry
from .values import TrackedKey, ValueStore

logger = logging.getLogger(__name__)

ChangeHook = Callable[[TrackedKey, int], None]


@dataclass(frozen=True)
class Connected:
    session_id: int
    send: OutboundFn


@dataclass(frozen=True)
class Disconnected:
    session_id: int


Message = Union[Connected, Disconnected, Command]


class BroadcastEngine:
    """Single owner of the value store and session registry.

    Every connect, disconnect and command is queued on one inbox and
    applied by `run()` one at a time in arrival order. Outbound text is
    handed to each session's send function, which must not block.
    """

    def __init__(
        self,
        store: Optional[ValueStore] = None,
        registry: Optional[SessionRegistry] = None,
        on_change: Optional[ChangeHook] = None,
    ):
        self.store = store or ValueStore()
        self.registry = registry or SessionRegistry()
        self.on_change = on_change
        self._ids = itertools.count(1)
        self._inbox: "asyncio.Queue[Message]" = asyncio.Queue()

    # -------------------- Inbound surface --------------------

    def open_session(self, send: OutboundFn) -> int:
        session_id = next(self._ids)
        self._inbox.put_nowait(Connected(session_id, send))
        return session_id

    def close_session(self, session_id: int) -> None:
        self._inbox.put_nowait(Disconnected(session_id))

    def submit(self, command: Command) -> None:
        self._inbox.put_nowait(command)

    async def join(self) -> None:
        """Wait until everything queued so far has been applied."""
        await self._inbox.join()

    async def run(self) -> None:
        while True:
            message = await self._inbox.get()
            try:
                self.process(message)
            except Exception:
                logger.exception("Error processing %s", message)
            finally:
                self._inbox.task_done()

    # -------------------- Serialized processing --------------------

    def process(self, message: Message) -> None:
        logger.debug("Session %s: %s", getattr(message, "session_id", None), message)
        if isinstance(message, Connected):
            self._handle_connect(message)
        elif isinstance(message, Disconnected):
            self._handle_disconnect(message)
        elif isinstance(message, Ping):
            self._reply(message.session_id, PONG)
        elif isinstance(message, GetVal):
            self._handle_get(message)
        elif isinstance(message, SetVal):
            self._handle_set(message)
        elif isinstance(message, Reject):
            self._reply(message.session_id, message.reply)
        else:
            raise TypeError(f"unsupported message {message!r}")

    def _handle_connect(self, msg: Connected) -> None:
        self.registry.register(msg.session_id, msg.send)
        logger.debug("Session %s registered", msg.session_id)
        # Snapshot is taken at the same sequence point as the registration
        for key, val in self.store.items():
            self._deliver(msg.session_id, msg.send, format_value(key, val))

    def _handle_disconnect(self, msg: Disconnected) -> None:
        try:
            was_tracker = self.registry.remove(msg.session_id)
        except UnknownSession:
            logger.warning("Disconnect for unknown session %s", msg.session_id)
            return
        logger.info("Session %s removed for client disconnect", msg.session_id)
        if was_tracker:
            logger.info("Tracker session %s released", msg.session_id)
            self._commit(TrackedKey.TRACKER, 0, exclude=NO_SESSION)

    def _handle_get(self, msg: GetVal) -> None:
        try:
            value = self.store.get(msg.key)
        except UnknownKey:
            self._reply(msg.session_id, UNKNOWN_KEY)
            return
        self._reply(msg.session_id, format_value(msg.key, value))

    def _handle_set(self, msg: SetVal) -> None:
        sid = msg.session_id
        if sid not in self.registry:
            logger.debug("Dropping set from departed session %s", sid)
            return

        if self.registry.tracker_id == NO_SESSION:
            self.registry.claim(sid)
            logger.info("Session %s claimed the tracker", sid)
            self._commit(TrackedKey.TRACKER, 1, exclude=sid)

        if self.registry.tracker_id != sid:
            self._reply(sid, TRACKER_CONFLICT)
            return

        self._commit(msg.key, msg.value, exclude=sid)
        self._reply(sid, OK)

    def _commit(self, key: TrackedKey, value: int, exclude: int) -> None:
        prev = self.store.set(key, value)
        if prev == value:
            return
        logger.debug("%s changed %s -> %s", key, prev, value)
        self.broadcast(format_value(key, value), exclude=exclude)
        if self.on_change is not None:
            self.on_change(key, value)

    # -------------------- Outbound --------------------

    def broadcast(self, text: str, exclude: int = NO_SESSION) -> None:
        count = 0
        for session_id, send in self.registry.all_except(exclude):
            self._deliver(session_id, send, text)
            count += 1
        logger.debug("Broadcast %r to %s session(s)", text, count)

    def _reply(self, session_id: int, text: str) -> None:
        try:
            send = self.registry.lookup(session_id)
        except UnknownSession:
            logger.debug("Session %s gone; dropping %r", session_id, text)
            return
        self._deliver(session_id, send, text)

    def _deliver(self, session_id: int, send: OutboundFn, text: str) -> None:
        try:
            send(text)
        except Exception as e:
            logger.warning("Failed to send to session %s: %s", session_id, e)

    def status(self) -> Dict[str, Any]:
        return {
            "sessions": self.registry.ids(),
            "tracker": self.registry.tracker_id,
            "values": self.store.as_dict(),
        }
