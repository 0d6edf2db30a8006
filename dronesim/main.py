"""dronesim server — main entry point.

This is the only file that knows how to turn configuration into a running
process: it sets up logging, builds the DroneServer, and runs it.
"""

from __future__ import annotations

import argparse
import asyncio
import logging

import structlog

from dronesim.config import AppConfig, load_config
from dronesim.server import DroneServer

log = structlog.get_logger()


def setup_logging(config: AppConfig) -> None:
    """Configure structlog based on the logging config."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
    )


def _log_host_event(event: str, payload: object) -> None:
    if event in ("message", "configUpdate"):
        log.info("host_event", event_name=event, payload=payload)


async def run(config: AppConfig) -> None:
    server = DroneServer(config)
    server.subscribe(_log_host_event)

    log.info("server_starting",
             env=config.server.env,
             drones=config.simulation.initial_drone_count,
             base_lat=config.simulation.base_lat,
             base_lng=config.simulation.base_lng)

    await server.serve_forever()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Drone fleet simulation and command server")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("--host", default=None, help="Listen host")
    parser.add_argument("--port", type=int, default=None, help="Listen port (0 = any free port)")
    parser.add_argument("--drones", type=int, default=None, help="Initial drone count")
    parser.add_argument("--log-level", default=None, help="debug, info, warning, error")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    if args.host is not None:
        config.server.host = args.host
    if args.port is not None:
        config.server.port = args.port
    if args.drones is not None:
        config.simulation.initial_drone_count = args.drones
    if args.log_level is not None:
        config.logging.level = args.log_level

    setup_logging(config)

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        pass
    log.info("server_exited")


if __name__ == "__main__":
    main()
