#!/usr/bin/env python3
"""dronesim traffic simulator.

Connects operator sessions to a running server and drives the fleet.

Usage:
    # 20 drones, one operator, random moves for 2 minutes
    python tools/simulator/simulate.py --server ws://localhost:8080/ --drones 20 --duration 120

    # Several observers watching while one operator issues commands
    python tools/simulator/simulate.py --observers 10 --move-every 5
"""

from __future__ import annotations

import argparse
import asyncio
import json
import random
import time
from collections import Counter
from dataclasses import dataclass, field

import httpx
import websockets


@dataclass
class SimObserver:
    name: str
    received: Counter = field(default_factory=Counter)
    errors: int = 0


def envelope(message_type: str, payload: dict | None = None) -> str:
    message: dict = {"type": message_type}
    if payload is not None:
        message["payload"] = payload
    return json.dumps(message)


async def watch(observer: SimObserver, server_url: str, duration_seconds: float) -> None:
    """Count every event an observer receives until the duration elapses."""
    end_time = time.monotonic() + duration_seconds
    try:
        async with websockets.connect(server_url) as ws:
            while (remaining := end_time - time.monotonic()) > 0:
                try:
                    raw = await asyncio.wait_for(ws.recv(), timeout=remaining)
                except asyncio.TimeoutError:
                    break
                observer.received[json.loads(raw)["type"]] += 1
    except (OSError, websockets.WebSocketException):
        observer.errors += 1


async def operate(
    operator: SimObserver,
    server_url: str,
    drones: int,
    move_every: float,
    duration_seconds: float,
) -> None:
    """Size the fleet, take off, then keep issuing random moves."""
    end_time = time.monotonic() + duration_seconds
    async with websockets.connect(server_url) as ws:
        init = json.loads(await ws.recv())
        operator.received[init["type"]] += 1

        await ws.send(envelope("droneCount:update", {"count": drones}))
        await ws.send(envelope("drone:allTakeoff"))

        next_move = time.monotonic() + move_every
        while time.monotonic() < end_time:
            now = time.monotonic()
            if now >= next_move:
                command = random.choices(
                    ["drone:allRandomMove", "drone:allReturnToBase", "drone:allTakeoff"],
                    weights=[70, 15, 15],
                )[0]
                await ws.send(envelope(command))
                next_move = now + move_every
            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=max(0.01, next_move - now))
            except asyncio.TimeoutError:
                continue
            message_type = json.loads(raw)["type"]
            operator.received[message_type] += 1
            if message_type.endswith(":error"):
                operator.errors += 1


async def run_simulation(args: argparse.Namespace) -> None:
    """Run the full simulation."""
    operator = SimObserver("operator")
    observers = [SimObserver(f"observer-{i}") for i in range(args.observers)]

    print(f"Starting simulation: {args.drones} drones, {args.observers} observers")
    print(f"  Server: {args.server}")
    print(f"  Duration: {args.duration}s, random move every {args.move_every}s")
    print()

    start = time.monotonic()
    await asyncio.gather(
        operate(operator, args.server, args.drones, args.move_every, args.duration),
        *(watch(obs, args.server, args.duration) for obs in observers),
    )
    elapsed = time.monotonic() - start

    print(f"\nSimulation complete in {elapsed:.1f}s")
    for sim in [operator, *observers]:
        total = sum(sim.received.values())
        print(f"  {sim.name}: {total} events, {sim.errors} errors "
              f"({sim.received['drones:update']} drone updates, "
              f"{sim.received['heartbeat']} heartbeats)")

    # Check server stats
    http_url = args.server.replace("ws://", "http://").replace("wss://", "https://").rstrip("/")
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            resp = await client.get(f"{http_url}/api/v1/stats")
        if resp.status_code == 200:
            stats = resp.json()
            print("\nServer stats:")
            print(f"  Frames received: {stats['frames_received']}")
            print(f"  Commands rejected: {stats['commands_rejected']}")
            print(f"  Broadcasts sent: {stats['broadcasts_sent']}")
            print(f"  Simulation ticks: {stats['ticks']}")
    except httpx.RequestError as e:
        print(f"\nCould not fetch server stats: {e}")


def main():
    parser = argparse.ArgumentParser(description="dronesim traffic simulator")
    parser.add_argument("--server", default="ws://localhost:8080/", help="Server WebSocket URL")
    parser.add_argument("--drones", type=int, default=10, help="Fleet size to request")
    parser.add_argument("--observers", type=int, default=2, help="Extra read-only sessions")
    parser.add_argument("--duration", type=float, default=60, help="Simulation duration in seconds")
    parser.add_argument("--move-every", type=float, default=10,
                        help="Seconds between fleet-wide commands")

    args = parser.parse_args()
    asyncio.run(run_simulation(args))


if __name__ == "__main__":
    main()
