"""Tests for DroneService: sessions, command dispatch, timers and relocation."""

from __future__ import annotations

import asyncio
import json

import pytest

from dronesim.core.models import DroneStatus

from conftest import BASE, drain, of_type


def frame(message_type: str, payload: dict | None = None) -> str:
    message: dict = {"type": message_type}
    if payload is not None:
        message["payload"] = payload
    return json.dumps(message)


# -- sessions ----------------------------------------------------------

@pytest.mark.asyncio
async def test_connect_sends_init_snapshot(service):
    service.fleet.set_count(2)
    session = service.connect("test")

    messages = drain(session)
    assert len(messages) == 1
    hb = messages[0]
    assert hb["type"] == "heartbeat"
    assert hb["payload"]["init"] is True
    assert hb["payload"]["basePosition"] == {"lat": BASE.lat, "lng": BASE.lng}
    assert [d["id"] for d in hb["payload"]["drones"]] == ["drone-1", "drone-2"]
    assert hb["payload"]["config"] == {
        "baseMoveDuration": 1000,
        "heartbeatInterval": 3000,
        "droneUpdateInterval": 200,
        "droneVerticalSpeed": 5.0,
        "droneFlySpeed": 10.0,
        "baseAltitude": 50.0,
    }
    assert isinstance(hb["payload"]["timestamp"], int)


@pytest.mark.asyncio
async def test_disconnect_removes_session(service):
    a, b = service.connect(), service.connect()
    drain(a), drain(b)
    service.disconnect(a)
    assert service.session_count == 1
    service.disconnect(a)
    assert service.session_count == 1

    service.heartbeat()
    assert a.closed
    assert drain(a) == []
    assert len(drain(b)) == 1


@pytest.mark.asyncio
async def test_periodic_heartbeat_has_no_drone_list(service):
    service.fleet.set_count(3)
    session = service.connect()
    drain(session)
    service.heartbeat()
    [hb] = drain(session)
    assert hb["type"] == "heartbeat"
    assert "init" not in hb["payload"]
    assert "drones" not in hb["payload"]
    assert set(hb["payload"]) == {"timestamp", "basePosition", "config"}


# -- command dispatch --------------------------------------------------

@pytest.mark.asyncio
async def test_health_replies_to_requester_only(service):
    a, b = service.connect(), service.connect()
    drain(a), drain(b)
    service.handle_frame(a, frame("health"))
    [reply] = drain(a)
    assert reply["type"] == "health"
    assert reply["payload"]["status"] == "ok"
    assert drain(b) == []


@pytest.mark.asyncio
async def test_drone_count_update_broadcasts(service):
    a, b = service.connect(), service.connect()
    drain(a), drain(b)
    assert service.handle_frame(a, frame("droneCount:update", {"count": 4}))
    for session in (a, b):
        [msg] = drain(session)
        assert msg["type"] == "droneCount:updated"
        assert msg["payload"]["count"] == 4
        assert len(msg["payload"]["drones"]) == 4


@pytest.mark.asyncio
async def test_negative_drone_count_errors_to_requester_only(service):
    service.fleet.set_count(2)
    a, b = service.connect(), service.connect()
    drain(a), drain(b)

    assert not service.handle_frame(a, frame("droneCount:update", {"count": -1}))
    [err] = drain(a)
    assert err == {"type": "droneCount:error",
                   "payload": {"error": "Invalid count value (minimum 0)"}}
    assert drain(b) == []
    assert len(service.fleet) == 2


@pytest.mark.asyncio
async def test_non_finite_count_gets_typed_error(service):
    service.fleet.set_count(2)
    session = service.connect()
    drain(session)

    raw = '{"type": "droneCount:update", "payload": {"count": Infinity}}'
    assert not service.handle_frame(session, raw)
    [err] = drain(session)
    assert err["type"] == "droneCount:error"
    assert len(service.fleet) == 2


@pytest.mark.asyncio
async def test_non_finite_speed_never_reaches_settings(service):
    session = service.connect()
    drain(session)

    raw = '{"type": "droneFlySpeed:update", "payload": {"speed": NaN}}'
    assert not service.handle_frame(session, raw)
    [err] = drain(session)
    assert err["type"] == "droneFlySpeed:error"
    assert service.settings.drone_fly_speed == 10.0
    assert service.stats.snapshot()["commands_rejected"] == 1


@pytest.mark.asyncio
async def test_fractional_drone_count_rounds_up(service):
    session = service.connect()
    drain(session)
    assert service.handle_frame(session, frame("droneCount:update", {"count": 2.5}))
    [msg] = drain(session)
    assert msg["payload"]["count"] == 3
    assert len(service.fleet) == 3


@pytest.mark.parametrize("message_type,payload,error_type", [
    ("basePosition:update", {"lat": 1.0}, "basePosition:error"),
    ("basePosition:update", {"lat": "1", "lng": 2}, "basePosition:error"),
    ("baseMoveDuration:update", {"duration": -1}, "baseMoveDuration:error"),
    ("heartbeatInterval:update", {"interval": 999}, "heartbeatInterval:error"),
    ("droneUpdateInterval:update", {"interval": 99}, "droneUpdateInterval:error"),
    ("droneVerticalSpeed:update", {"speed": 0}, "droneVerticalSpeed:error"),
    ("droneFlySpeed:update", {"speed": -3}, "droneFlySpeed:error"),
    ("baseAltitude:update", {"altitude": 0}, "baseAltitude:error"),
    ("droneCount:update", {"count": True}, "droneCount:error"),
    ("droneCount:update", None, "droneCount:error"),
    ("drone:takeoff", {}, "drone:error"),
    ("drone:move", {"droneId": "drone-1", "waypoints": "north"}, "drone:error"),
    ("drone:move", {"droneId": "drone-1", "waypoints": [{"lat": 1}]}, "drone:error"),
    ("droneCount:update", {"count": float("inf")}, "droneCount:error"),
    ("droneFlySpeed:update", {"speed": float("nan")}, "droneFlySpeed:error"),
    ("droneVerticalSpeed:update", {"speed": float("inf")}, "droneVerticalSpeed:error"),
    ("heartbeatInterval:update", {"interval": float("nan")}, "heartbeatInterval:error"),
    ("droneUpdateInterval:update", {"interval": float("nan")}, "droneUpdateInterval:error"),
    ("basePosition:update", {"lat": float("nan"), "lng": 2}, "basePosition:error"),
    ("drone:move", {"droneId": "drone-1", "waypoints": [{"lat": 1, "lng": float("-inf")}]},
     "drone:error"),
])
@pytest.mark.asyncio
async def test_invalid_payloads_rejected(service, message_type, payload, error_type):
    service.fleet.set_count(1)
    service.fleet.get("drone-1").status = DroneStatus.HOVERING
    session = service.connect()
    drain(session)
    before = service.settings.to_dict()

    assert not service.handle_frame(session, frame(message_type, payload))
    [err] = drain(session)
    assert err["type"] == error_type
    assert isinstance(err["payload"]["error"], str)
    assert service.settings.to_dict() == before


@pytest.mark.parametrize("message_type,field,key,value", [
    ("baseMoveDuration:update", "duration", "base_move_duration", 0),
    ("droneVerticalSpeed:update", "speed", "drone_vertical_speed", 2.5),
    ("droneFlySpeed:update", "speed", "drone_fly_speed", 25),
    ("baseAltitude:update", "altitude", "base_altitude", 120),
])
@pytest.mark.asyncio
async def test_setting_updates_broadcast(service, message_type, field, key, value):
    session = service.connect()
    drain(session)
    assert service.handle_frame(session, frame(message_type, {field: value}))
    assert getattr(service.settings, key) == value
    [msg] = drain(session)
    assert msg == {"type": message_type.replace(":update", ":updated"), "payload": {field: value}}


@pytest.mark.asyncio
async def test_interval_change_restarts_timer(service):
    service.start_timers()
    old_heartbeat, old_tick = service._heartbeat_task, service._tick_task
    session = service.connect()

    service.handle_frame(session, frame("heartbeatInterval:update", {"interval": 1500}))
    service.handle_frame(session, frame("droneUpdateInterval:update", {"interval": 100}))
    assert service._heartbeat_task is not old_heartbeat
    assert service._tick_task is not old_tick
    assert service.settings.heartbeat_interval == 1500
    assert service.settings.drone_update_interval == 100

    await asyncio.sleep(0)
    assert old_heartbeat.cancelled() and old_tick.cancelled()
    types = [m["type"] for m in drain(session)]
    assert "heartbeatInterval:updated" in types
    assert "droneUpdateInterval:updated" in types
    service.stop_timers()


@pytest.mark.asyncio
async def test_takeoff_and_start_are_aliases(service):
    service.fleet.set_count(2)
    session = service.connect()
    drain(session)
    service.handle_frame(session, frame("drone:takeoff", {"droneId": "drone-1"}))
    service.handle_frame(session, frame("drone:start", {"droneId": "drone-2"}))
    updates = of_type(drain(session), "drone:updated")
    assert [u["payload"]["drone"]["status"] for u in updates] == ["ascending", "ascending"]


@pytest.mark.asyncio
async def test_move_with_append_over_the_wire(service):
    service.fleet.set_count(1)
    service.fleet.get("drone-1").status = DroneStatus.HOVERING
    session = service.connect()
    drain(session)

    service.handle_frame(session, frame("drone:move", {
        "droneId": "drone-1", "waypoints": [{"lat": 37.3, "lng": 126.84}]}))
    service.handle_frame(session, frame("drone:move", {
        "droneId": "drone-1", "waypoints": [{"lat": 37.31, "lng": 126.85}], "append": True}))

    last = of_type(drain(session), "drone:updated")[-1]["payload"]["drone"]
    assert last["status"] == "moving"
    assert last["waypoints"] == [{"lat": 37.3, "lng": 126.84}, {"lat": 37.31, "lng": 126.85}]


@pytest.mark.asyncio
async def test_move_against_mia_drone_rejected(service):
    service.fleet.set_count(1)
    service.set_drone_status("drone-1", DroneStatus.MIA)
    drone = service.fleet.get("drone-1")
    drone.waypoints = []
    session = service.connect()
    drain(session)

    assert not service.handle_frame(session, frame("drone:move", {
        "droneId": "drone-1", "waypoints": [{"lat": 1, "lng": 2}]}))
    [err] = drain(session)
    assert err["type"] == "drone:error"
    assert "not in movable state" in err["payload"]["error"]
    assert drone.waypoints == []
    assert drone.status is DroneStatus.MIA


@pytest.mark.asyncio
async def test_land_on_idle_drone_is_state_conflict(service):
    service.fleet.set_count(1)
    session = service.connect()
    drain(session)
    service.handle_frame(session, frame("drone:land", {"droneId": "drone-1"}))
    [err] = drain(session)
    assert err == {"type": "drone:error",
                   "payload": {"error": "Drone not found or not in airborne state"}}


@pytest.mark.asyncio
async def test_all_takeoff_twice(service):
    service.fleet.set_count(2)
    session = service.connect()
    drain(session)
    service.handle_frame(session, frame("drone:allTakeoff"))
    service.handle_frame(session, frame("drone:allTakeoff"))
    first, second = of_type(drain(session), "drones:update")
    assert [d["status"] for d in first["payload"]["drones"]] == ["ascending", "ascending"]
    assert first["payload"] == second["payload"]


@pytest.mark.asyncio
async def test_all_return_and_random_move(service):
    service.fleet.set_count(2)
    service.fleet.get("drone-1").status = DroneStatus.HOVERING
    session = service.connect()
    drain(session)

    service.handle_frame(session, frame("drone:allRandomMove"))
    service.handle_frame(session, frame("drone:allReturnToBase"))
    moved, returned = of_type(drain(session), "drones:update")
    assert moved["payload"]["drones"][0]["status"] == "moving"
    assert moved["payload"]["drones"][1]["status"] == "idle"
    assert returned["payload"]["drones"][0]["status"] == "returning"
    assert returned["payload"]["drones"][0]["waypoints"] == [{"lat": BASE.lat, "lng": BASE.lng}]


# -- malformed frames and passthrough -----------------------------------

@pytest.mark.parametrize("raw", [
    "not json at all",
    "[1, 2, 3]",
    '{"payload": {}}',
    '{"type": 7}',
    b"\xff\xfe\x00",
])
@pytest.mark.asyncio
async def test_malformed_frames_dropped_silently(service, raw):
    session = service.connect()
    drain(session)
    assert not service.handle_frame(session, raw)
    assert drain(session) == []
    assert service.session_count == 1
    assert service.stats.snapshot()["frames_malformed"] == 1


@pytest.mark.asyncio
async def test_bytes_frames_accepted(service):
    session = service.connect()
    drain(session)
    assert service.handle_frame(session, frame("health").encode("utf-8"))
    assert drain(session)[0]["type"] == "health"


@pytest.mark.asyncio
async def test_unknown_type_passed_to_observers(service):
    events = []
    service.subscribe(lambda event, payload: events.append((event, payload)))
    session = service.connect()
    drain(session)

    assert service.handle_frame(session, frame("mission:plan", {"area": 3}))
    assert ("message", {"type": "mission:plan", "payload": {"area": 3}}) in events
    assert drain(session) == []


@pytest.mark.asyncio
async def test_config_update_passthrough(service):
    events = []
    service.subscribe(lambda event, payload: events.append((event, payload)))
    a, b = service.connect(), service.connect()
    drain(a), drain(b)

    service.handle_frame(a, frame("config:update", {"theme": "dark"}))
    assert ("configUpdate", {"theme": "dark"}) in events
    assert drain(b) == [{"type": "config:updated", "payload": {"theme": "dark"}}]


@pytest.mark.asyncio
async def test_failing_observer_does_not_break_core(service):
    def boom(event, payload):
        raise RuntimeError("host bug")

    service.subscribe(boom)
    session = service.connect()
    assert service.session_count == 1
    service.unsubscribe(boom)
    assert drain(session)[0]["type"] == "heartbeat"


@pytest.mark.asyncio
async def test_observer_sees_connect_and_disconnect(service):
    events = []
    service.subscribe(lambda event, payload: events.append((event, payload)))
    session = service.connect()
    service.disconnect(session)
    assert events == [("clientConnected", 1), ("clientDisconnected", 0)]


# -- base relocation ---------------------------------------------------

@pytest.mark.asyncio
async def test_base_relocation_commits_after_duration(service):
    service.settings.base_move_duration = 20
    session = service.connect()
    drain(session)

    service.handle_frame(session, frame("basePosition:update", {"lat": 10.0, "lng": 20.0}))
    [moving] = drain(session)
    assert moving == {"type": "basePosition:moving",
                      "payload": {"target": {"lat": 10.0, "lng": 20.0}, "duration": 20}}
    assert service.base_position == BASE
    assert service.base_target is not None

    await asyncio.sleep(0.1)
    assert drain(session) == [{"type": "basePosition:updated", "payload": {"lat": 10.0, "lng": 20.0}}]
    assert service.base_position.lat == 10.0
    assert service.base_target is None


@pytest.mark.asyncio
async def test_base_relocation_last_write_wins(service):
    service.settings.base_move_duration = 50
    session = service.connect()
    drain(session)

    service.handle_frame(session, frame("basePosition:update", {"lat": 1.0, "lng": 1.0}))
    service.handle_frame(session, frame("basePosition:update", {"lat": 2.0, "lng": 2.0}))
    await asyncio.sleep(0.2)

    updated = of_type(drain(session), "basePosition:updated")
    assert updated == [{"type": "basePosition:updated", "payload": {"lat": 2.0, "lng": 2.0}}]
    assert service.base_position.lat == 2.0


@pytest.mark.asyncio
async def test_base_relocation_accepts_out_of_range_coordinates(service):
    service.settings.base_move_duration = 0
    session = service.connect()
    service.handle_frame(session, frame("basePosition:update", {"lat": 123.0, "lng": -500}))
    await asyncio.sleep(0.05)
    assert service.base_position.lat == 123.0


@pytest.mark.asyncio
async def test_return_uses_committed_base(service):
    service.fleet.set_count(1)
    service.fleet.get("drone-1").status = DroneStatus.HOVERING
    service.settings.base_move_duration = 10_000
    session = service.connect()
    service.handle_frame(session, frame("basePosition:update", {"lat": 5.0, "lng": 5.0}))
    service.handle_frame(session, frame("drone:returnToBase", {"droneId": "drone-1"}))
    assert service.fleet.get("drone-1").waypoints == [BASE]
    service.cancel_base_move()


# -- periodic work -----------------------------------------------------

@pytest.mark.asyncio
async def test_tick_skips_empty_fleet(service):
    session = service.connect()
    drain(session)
    service.tick()
    assert drain(session) == []
    assert service.stats.snapshot()["ticks"] == 0


@pytest.mark.asyncio
async def test_tick_integrates_and_broadcasts(service):
    service.fleet.set_count(1)
    service.fleet.takeoff("drone-1")
    session = service.connect()
    drain(session)

    service.tick()
    [msg] = drain(session)
    assert msg["type"] == "drones:update"
    # 200 ms at 5 m/s
    assert msg["payload"]["drones"][0]["altitude"] == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_ten_seconds_of_ticks_reaches_altitude(service):
    service.fleet.set_count(1)
    service.fleet.takeoff("drone-1")
    for _ in range(50):
        service.tick()
    drone = service.fleet.get("drone-1")
    assert drone.altitude == 50
    assert drone.status is DroneStatus.HOVERING


@pytest.mark.asyncio
async def test_timers_drive_broadcasts(service):
    service.settings.heartbeat_interval = 30
    service.settings.drone_update_interval = 20
    service.fleet.set_count(1)
    session = service.connect()
    drain(session)

    service.start_timers()
    await asyncio.sleep(0.2)
    service.stop_timers()

    types = [m["type"] for m in drain(session)]
    assert types.count("heartbeat") >= 2
    assert types.count("drones:update") >= 3
    assert not service.timers_running


@pytest.mark.asyncio
async def test_simulation_continues_without_observers(service):
    service.settings.drone_update_interval = 10
    service.fleet.set_count(1)
    service.fleet.takeoff("drone-1")
    service.start_timers()
    await asyncio.sleep(0.1)
    service.stop_timers()
    assert service.fleet.get("drone-1").altitude > 0


@pytest.mark.asyncio
async def test_shutdown_closes_sessions(service):
    a = service.connect()
    service.start_timers()
    service.shutdown()
    assert a.closed
    assert service.session_count == 0
    assert not service.timers_running
