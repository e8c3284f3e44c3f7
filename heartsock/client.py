import asyncio
import os
import sys

import websockets
from websockets.exceptions import ConnectionClosed

from .values import TrackedKey


# Color codes for terminal output
class Colors:
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'

    RED = '\033[31m'
    GREEN = '\033[32m'
    YELLOW = '\033[33m'
    CYAN = '\033[36m'


def colorize(text, color):
    """Add color to text if terminal supports it"""
    term = os.getenv('TERM')
    if term and term != 'dumb' and sys.stdout.isatty():
        return f"{color}{text}{Colors.RESET}"
    return text


def color_for(line):
    if line.startswith("error:"):
        return Colors.RED
    key, sep, _ = line.partition(":")
    if sep and key in {k.value for k in TrackedKey}:
        return Colors.CYAN
    if line in ("ok", "pong"):
        return Colors.GREEN
    return None


class Client:
    """Interactive console client: stdin lines out, server lines printed."""

    def __init__(self):
        self.received = 0

    async def sender(self, ws):
        loop = asyncio.get_running_loop()
        while True:
            cmd = await loop.run_in_executor(None, sys.stdin.readline)
            if not cmd:
                # EOF on stdin
                await ws.close()
                return
            cmd = cmd.strip()
            if cmd:
                await ws.send(cmd)

    async def receiver(self, ws):
        async for raw in ws:
            self.received += 1
            color = color_for(raw)
            print(colorize(raw, color) if color else raw, flush=True)

    async def run_client(self, uri):
        async with websockets.connect(uri) as ws:
            print(colorize(f"[CLIENT] Connected to {uri}", Colors.GREEN + Colors.BOLD))
            send_task = asyncio.create_task(self.sender(ws))
            try:
                await self.receiver(ws)
            except ConnectionClosed as e:
                print(colorize(f"[CLIENT] Connection closed: {e}", Colors.YELLOW))
            finally:
                send_task.cancel()
