import asyncio
import logging
from ipaddress import IPv4Address
from pathlib import Path
from typing import Optional

import websockets

from . import mdns
from .datadir import ValueFileWriter
from .engine import BroadcastEngine
from .errors import DataDirError, MdnsError
from .session import DEFAULT_QUEUE_SIZE, SessionEndpoint

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 15
HEARTBEAT_TIMEOUT = 45
STATUS_INTERVAL = 20


class HeartsockServer:
    def __init__(
        self,
        host: str,
        port: int,
        engine: Optional[BroadcastEngine] = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        self.host = host
        self.port = port
        self.engine = engine or BroadcastEngine()
        self.queue_size = queue_size
        self._server = None
        self._engine_task: Optional[asyncio.Task] = None
        self._status_task: Optional[asyncio.Task] = None

    async def handler(self, ws, path=None):
        endpoint = SessionEndpoint(ws, self.engine, queue_size=self.queue_size)
        try:
            await endpoint.run()
        except Exception as e:
            logger.exception("Error in session %s: %s", endpoint.session_id, e)

    async def start(self) -> int:
        """Bind the listener and start the engine. Returns the bound port."""
        # Raises OSError when the address cannot be bound
        self._server = await websockets.serve(
            self.handler,
            self.host,
            self.port,
            ping_interval=HEARTBEAT_INTERVAL,
            ping_timeout=HEARTBEAT_TIMEOUT,
        )
        self.port = self._server.sockets[0].getsockname()[1]
        self._engine_task = asyncio.create_task(self.engine.run())
        self._status_task = asyncio.create_task(self.status_printer())
        logger.info("WebSocket server listening on %s:%s", self.host, self.port)
        return self.port

    async def status_printer(self):
        while True:
            await asyncio.sleep(STATUS_INTERVAL)
            st = self.engine.status()
            logger.info("Sessions: %s", st["sessions"])
            logger.info("Tracker: %s", st["tracker"] or "none")
            logger.info("Values: %s", st["values"])

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        # Let disconnects from the closed sessions settle before stopping the engine
        if self._engine_task is not None:
            await self.engine.join()
        for task in (self._status_task, self._engine_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._engine_task = self._status_task = None


async def main_loop(
    host: str,
    port: int,
    data_dir: Optional[Path] = None,
    advertise: bool = True,
    advertise_ip: Optional[IPv4Address] = None,
    queue_size: int = DEFAULT_QUEUE_SIZE,
):
    engine = BroadcastEngine()
    if data_dir is not None:
        writer = ValueFileWriter(data_dir)
        try:
            writer.prepare(engine.store)
        except OSError as e:
            raise DataDirError(data_dir, e) from e
        engine.on_change = writer
        logger.info("Writing values to %s", data_dir)

    server = HeartsockServer(host, port, engine=engine, queue_size=queue_size)
    await server.start()

    zc = None
    if advertise:
        try:
            zc = await mdns.advertise(server.port, advertise_ip)
        except MdnsError as e:
            logger.error("Unable to advertise via mDNS: %s", e)

    try:
        # Keep the main loop running
        await asyncio.Event().wait()
    finally:
        logger.info("Shutting down...")
        if zc is not None:
            await mdns.withdraw(zc)
        await server.stop()
