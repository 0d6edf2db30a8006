"""Observer sessions and broadcast fan-out."""

from __future__ import annotations

import itertools
import json
from typing import TYPE_CHECKING, Awaitable, Callable, Iterator

from dronesim.queue.asyncio_queue import AsyncioOutboundQueue

if TYPE_CHECKING:
    from dronesim.queue.base import OutboundQueue

_session_ids = itertools.count(1)


def encode(message_type: str, payload: object = None) -> str:
    """Encode an outbound envelope as a JSON text frame."""
    envelope: dict = {"type": message_type}
    if payload is not None:
        envelope["payload"] = payload
    return json.dumps(envelope, separators=(",", ":"))


class Session:
    """One registered observer connection.

    Frames are queued without blocking; ``pump`` drains them to the
    transport until the session is closed.
    """

    def __init__(self, peer: str = "", outbox: OutboundQueue | None = None) -> None:
        self.id = next(_session_ids)
        self.peer = peer
        self.outbox: OutboundQueue = outbox if outbox is not None else AsyncioOutboundQueue()
        self.closed = False

    def __repr__(self) -> str:
        return f"<Session {self.id} {self.peer}>"

    def send(self, message_type: str, payload: object = None) -> None:
        self.send_frame(encode(message_type, payload))

    def send_frame(self, frame: str) -> None:
        if not self.closed:
            self.outbox.put_nowait(frame)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.outbox.put_nowait(None)

    async def pump(self, send_text: Callable[[str], Awaitable[None]]) -> None:
        """Forward queued frames to ``send_text`` until end-of-stream."""
        while True:
            frame = await self.outbox.get()
            if frame is None:
                return
            await send_text(frame)


class SessionRegistry:
    """The set of sessions that receive broadcasts."""

    def __init__(self) -> None:
        self._sessions: dict[int, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def add(self, session: Session) -> None:
        self._sessions[session.id] = session

    def remove(self, session: Session) -> bool:
        return self._sessions.pop(session.id, None) is not None

    def broadcast(self, message_type: str, payload: object = None) -> int:
        """Queue one frame on every session. Returns the number of recipients."""
        frame = encode(message_type, payload)
        for session in self._sessions.values():
            session.send_frame(frame)
        return len(self._sessions)
