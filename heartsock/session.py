import asyncio
import logging
from typing import Optional

from websockets.exceptions import ConnectionClosed

from .commands import BINARY_UNSUPPORTED, Reject, parse_command
from .engine import BroadcastEngine
from .errors import MalformedCommand
from .values import TrackedKey

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 64
# The connect snapshot is queued in one step, one line per tracked key
MIN_QUEUE_SIZE = len(TrackedKey)
# "Try again later": the client fell too far behind the broadcast stream
OVERFLOW_CLOSE_CODE = 1013


class SessionEndpoint:
    """One WebSocket connection.

    Inbound text is parsed and forwarded to the engine; outbound text
    from the engine lands on a bounded queue drained by `send_loop`, so
    a stalled client never holds up the engine.
    """

    def __init__(self, ws, engine: BroadcastEngine, queue_size: int = DEFAULT_QUEUE_SIZE):
        if queue_size < MIN_QUEUE_SIZE:
            raise ValueError(f"queue_size must be at least {MIN_QUEUE_SIZE}, got {queue_size}")
        self.ws = ws
        self.engine = engine
        self.session_id: Optional[int] = None
        self.outbound: "asyncio.Queue[str]" = asyncio.Queue(maxsize=queue_size)
        self.alive = True
        self._send_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None

    def deliver(self, text: str) -> None:
        if not self.alive:
            return
        try:
            self.outbound.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning(
                "Session %s outbound queue full; disconnecting slow client",
                self.session_id,
            )
            self.alive = False
            self._close_task = asyncio.create_task(
                self.ws.close(code=OVERFLOW_CLOSE_CODE, reason="outbound queue overflow")
            )

    def on_text(self, raw: str) -> None:
        try:
            command = parse_command(self.session_id, raw)
        except MalformedCommand as e:
            command = Reject(self.session_id, e.reply)
        self.engine.submit(command)

    async def send_loop(self) -> None:
        try:
            while True:
                text = await self.outbound.get()
                await self.ws.send(text)
        except ConnectionClosed:
            pass

    async def receive_loop(self) -> None:
        async for raw in self.ws:
            if isinstance(raw, bytes):
                self.engine.submit(Reject(self.session_id, BINARY_UNSUPPORTED))
                continue
            self.on_text(raw)

    async def run(self) -> None:
        self.session_id = self.engine.open_session(self.deliver)
        logger.info(
            "Session %s created for client connecting from %s",
            self.session_id,
            getattr(self.ws, "remote_address", None),
        )
        self._send_task = asyncio.create_task(self.send_loop())
        try:
            await self.receive_loop()
        except ConnectionClosed:
            logger.info("Connection closed: session %s", self.session_id)
        finally:
            self.alive = False
            self.engine.close_session(self.session_id)
            self._send_task.cancel()
            try:
                await self._send_task
            except asyncio.CancelledError:
                pass
            if self._close_task is not None:
                await self._close_task
