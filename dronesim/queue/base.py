"""Outbound queue interface (port) for per-session message delivery."""

from __future__ import annotations

from typing import Protocol


class OutboundQueue(Protocol):
    """Port: buffers encoded frames for one session until its pump sends them.

    ``None`` is the end-of-stream marker.
    """

    def put_nowait(self, frame: str | None) -> None: ...

    async def get(self) -> str | None: ...

    def qsize(self) -> int: ...

    def get_nowait(self) -> str | None: ...
