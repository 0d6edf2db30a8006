"""In-process asyncio queue implementation of OutboundQueue."""

from __future__ import annotations

import asyncio


class AsyncioOutboundQueue:
    """OutboundQueue backed by an unbounded asyncio.Queue.

    Puts never block, so a slow observer cannot stall the simulation.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()

    def put_nowait(self, frame: str | None) -> None:
        self._queue.put_nowait(frame)

    async def get(self) -> str | None:
        return await self._queue.get()

    def get_nowait(self) -> str | None:
        return self._queue.get_nowait()

    def qsize(self) -> int:
        return self._queue.qsize()
