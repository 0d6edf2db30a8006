"""Shared test fixtures."""

from __future__ import annotations

import json

import pytest
from httpx import ASGITransport, AsyncClient

from dronesim.api.app import create_app
from dronesim.core.fleet import FleetStore
from dronesim.core.models import Position, SimulationSettings
from dronesim.core.service import DroneService

BASE = Position(lat=37.2939, lng=126.8349)


def drain(session) -> list[dict]:
    """Pop every queued outbound frame from a session, decoded."""
    messages = []
    while session.outbox.qsize():
        frame = session.outbox.get_nowait()
        if frame is not None:
            messages.append(json.loads(frame))
    return messages


def of_type(messages: list[dict], message_type: str) -> list[dict]:
    return [m for m in messages if m["type"] == message_type]


@pytest.fixture
def fleet():
    return FleetStore(BASE)


@pytest.fixture
def service():
    svc = DroneService(BASE, SimulationSettings())
    yield svc
    svc.shutdown()


@pytest.fixture
def app(service):
    return create_app(service)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
