import asyncio
import time

import pytest
from fastapi.testclient import TestClient
from pygame.math import Vector2

from flocksim.app.server import SimulationController, app, controller
from flocksim.config import SimulationConfig


def _small_config() -> SimulationConfig:
    return SimulationConfig(population=12, workers=1)


def test_snapshot_queue_ack_cleanup() -> None:
    local = SimulationController(_small_config())

    async def exercise() -> None:
        local.tick = 1
        await local._broadcast_snapshot()
        local.tick = 2
        await local._broadcast_snapshot()
        async with local._queue_lock:
            queued_ticks = [item.tick for item in local._snapshot_queue]
        assert queued_ticks == [1, 2]
        await local.acknowledge(1)
        async with local._queue_lock:
            remaining_ticks = [item.tick for item in local._snapshot_queue]
        assert remaining_ticks == [2]

    try:
        asyncio.run(exercise())
    finally:
        local.world.close()


def test_controller_pointer_projection() -> None:
    local = SimulationController(_small_config())
    try:
        assert local.set_pointer({"x": 400.0, "y": 200.0, "space": "screen"}) == Vector2(0.0, 0.0)
        assert local.set_pointer({"x": 5, "y": -7}) == Vector2(5.0, -7.0)
        assert local.world.viewport.pointer == Vector2(5.0, -7.0)
        assert local.set_pointer({"clear": True}) is None
        assert local.world.viewport.pointer is None
    finally:
        local.world.close()


def test_pointer_endpoint_sets_and_clears_target() -> None:
    client = TestClient(app)
    response = client.post("/api/pointer", json={"x": 12.5, "y": -3.0})
    assert response.status_code == 200
    assert response.json() == {"pointer": [12.5, -3.0]}
    assert controller.world.viewport.pointer == Vector2(12.5, -3.0)

    response = client.post("/api/pointer", json={"clear": True})
    assert response.json() == {"pointer": None}
    assert controller.world.viewport.pointer is None


def test_pointer_endpoint_rejects_bad_payload() -> None:
    client = TestClient(app)
    assert client.post("/api/pointer", json={"x": "left"}).status_code == 400
    assert client.post("/api/pointer", json={"x": 1, "y": 2, "space": "polar"}).status_code == 400


def test_viewport_and_status_endpoints() -> None:
    client = TestClient(app)
    original = (controller.world.viewport.width, controller.world.viewport.height)
    try:
        response = client.post("/api/viewport", json={"width": 1000, "height": 600})
        assert response.json() == {"width": 1000.0, "height": 600.0}
        assert client.post("/api/viewport", json={"width": -1, "height": 600}).status_code == 400

        status = client.get("/api/status").json()
        assert status["population"] == len(controller.world.agents)
        assert status["world"]["half_width"] == (1000.0 - 150.0) / 2
        assert "polarization" in status["metrics"]
    finally:
        controller.world.viewport.resize(*original)


def _wait_for(predicate, timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _status_tick(client: TestClient) -> int:
    return client.get("/api/status").json()["tick"]


def _queued_ticks() -> list[int]:
    # The serving thread may pop acknowledged snapshots while we read.
    while True:
        try:
            return [item.tick for item in controller._snapshot_queue]
        except RuntimeError:
            continue


def test_controller_restarts_after_shutdown() -> None:
    local = SimulationController(_small_config())

    async def exercise() -> None:
        await local.start()
        await asyncio.sleep(0.1)
        await local.shutdown()
        assert local.world.closed

        await local.start()
        await asyncio.sleep(0.1)
        task = local._loop_task
        assert task is not None and not task.done()
        assert not local.world.closed
        assert local.tick > 0

        await local.shutdown()
        assert task.done()

    try:
        asyncio.run(exercise())
    finally:
        local.world.close()


def test_failed_step_stops_the_loop(monkeypatch: pytest.MonkeyPatch) -> None:
    local = SimulationController(_small_config())

    def explode(tick: int) -> None:
        raise RuntimeError("step failed")

    monkeypatch.setattr(local.world, "step", explode)

    async def exercise() -> None:
        await local.start()
        await asyncio.sleep(0.1)
        task = local._loop_task
        assert not local.running
        assert task is not None and task.done()
        assert isinstance(task.exception(), RuntimeError)
        await local.shutdown()

    try:
        asyncio.run(exercise())
    finally:
        local.world.close()


def test_app_serves_again_after_lifespan_restart() -> None:
    for _ in range(2):
        with TestClient(app) as client:
            assert client.post("/api/control/start").json() == {"running": True}
            assert _wait_for(lambda: _status_tick(client) >= 1)
            client.post("/api/control/stop")
        assert controller.world.closed


def test_control_endpoints_start_and_stop_the_loop() -> None:
    with TestClient(app) as client:
        assert client.post("/api/control/stop").json() == {"running": False}
        paused = _status_tick(client)
        time.sleep(0.1)
        assert _status_tick(client) == paused

        assert client.post("/api/control/start").json() == {"running": True}
        assert _wait_for(lambda: _status_tick(client) >= paused + 2)

        client.post("/api/control/stop")
        paused = _status_tick(client)
        time.sleep(0.1)
        assert _status_tick(client) == paused
        assert client.get("/api/status").json()["running"] is False


def test_reset_endpoint_restores_tick_zero_and_clears_queue() -> None:
    with TestClient(app) as client:
        client.post("/api/control/start")
        assert _wait_for(lambda: _status_tick(client) >= 2)
        client.post("/api/control/stop")
        ids = sorted(agent.id for agent in controller.world.agents)

        response = client.post("/api/control/reset")

        assert response.json() == {"running": False, "tick": 0}
        assert sorted(agent.id for agent in controller.world.agents) == ids
        # Only the snapshot broadcast by the reset itself remains queued.
        assert _queued_ticks() == [0]


def test_speed_endpoint_clamps_and_rejects_bad_input() -> None:
    client = TestClient(app)
    try:
        assert client.post("/api/control/speed", json={"multiplier": 10}).json() == {"multiplier": 5.0}
        assert client.post("/api/control/speed", json={"multiplier": 0.01}).json() == {"multiplier": 0.1}
        assert client.post("/api/control/speed", json={"multiplier": "fast"}).status_code == 400
        assert client.post("/api/control/speed", json={"multiplier": None}).status_code == 400
        assert controller.speed_multiplier == 0.1
    finally:
        controller.speed_multiplier = 1.0


def test_websocket_streams_snapshots_and_acks_drain_queue() -> None:
    with TestClient(app) as client:
        client.post("/api/control/stop")
        client.post("/api/control/reset")

        with client.websocket_connect("/ws") as websocket:
            message = websocket.receive_json()
            assert message["type"] == "snapshot"
            assert message["tick"] == 0
            assert len(message["payload"]["agents"]) == len(controller.world.agents)
            assert message["payload"]["metadata"]["index_kind"] == "kdtree"

            websocket.send_json({"type": "ack", "tick": 0})
            assert _wait_for(lambda: not controller._snapshot_queue)

            client.post("/api/control/start")
            message = websocket.receive_json()
            assert message["tick"] >= 1
            acked = message["tick"]
            websocket.send_json({"type": "ack", "tick": acked})
            client.post("/api/control/stop")
            assert _wait_for(lambda: all(tick > acked for tick in _queued_ticks()))
