"""Server statistics.

In-memory counters for the command, broadcast and simulation paths.
No framework dependencies.
"""

from __future__ import annotations

import threading
import time
from collections import Counter


class ServerStats:
    """Thread-safe server counters.

    Written from the event loop, read from the monitoring endpoints.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()

        self.frames_received: int = 0
        self.frames_malformed: int = 0
        self.commands_rejected: int = 0
        self.broadcasts_sent: int = 0
        self.heartbeats_sent: int = 0
        self.ticks: int = 0
        self.sessions_active: int = 0
        self.sessions_total: int = 0

        # message type -> count
        self._commands: Counter[str] = Counter()

    def record_frame(self, message_type: str) -> None:
        with self._lock:
            self.frames_received += 1
            self._commands[message_type] += 1

    def record_malformed(self) -> None:
        with self._lock:
            self.frames_received += 1
            self.frames_malformed += 1

    def record_rejected(self) -> None:
        with self._lock:
            self.commands_rejected += 1

    def record_broadcast(self) -> None:
        with self._lock:
            self.broadcasts_sent += 1

    def record_heartbeat(self) -> None:
        with self._lock:
            self.heartbeats_sent += 1

    def record_tick(self) -> None:
        with self._lock:
            self.ticks += 1

    def record_connect(self) -> None:
        with self._lock:
            self.sessions_active += 1
            self.sessions_total += 1

    def record_disconnect(self) -> None:
        with self._lock:
            self.sessions_active = max(0, self.sessions_active - 1)

    def uptime(self) -> float:
        return round(time.time() - self._started_at, 1)

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all stats."""
        with self._lock:
            return {
                "uptime_seconds": self.uptime(),
                "frames_received": self.frames_received,
                "frames_malformed": self.frames_malformed,
                "commands_rejected": self.commands_rejected,
                "broadcasts_sent": self.broadcasts_sent,
                "heartbeats_sent": self.heartbeats_sent,
                "ticks": self.ticks,
                "sessions": {
                    "active": self.sessions_active,
                    "total": self.sessions_total,
                },
                "commands": dict(self._commands),
            }
