import asyncio
import contextlib

import pytest

from heartsock.engine import BroadcastEngine


@pytest.fixture
async def engine():
    engine = BroadcastEngine()
    task = asyncio.create_task(engine.run())
    yield engine
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task

