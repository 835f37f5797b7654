"""Tests for the lifecycle control API."""
import asyncio
import time

import aiohttp
import pytest
from fastapi.testclient import TestClient

from api.server import BenOrAPI, WebSocketManager
from benor.node import BenOrNode


class LoopbackRPC:
    """Delivers every broadcast straight back to the single local node."""
    
    def __init__(self):
        self.message_handler = None
    
    def register_message_handler(self, handler):
        self.message_handler = handler
    
    async def start(self):
        pass
    
    async def stop(self):
        pass
    
    async def broadcast(self, message):
        await self.message_handler(message)


def make_api(config):
    node = BenOrNode(config, rpc=LoopbackRPC())
    return node, BenOrAPI(node, port=config.port + 1000)


def test_status_reports_live(config_factory):
    _, api = make_api(config_factory(0, 1, 0, 1))
    with TestClient(api.app) as client:
        resp = client.get("/status")
        assert resp.status_code == 200
        assert resp.text == "live"


def test_faulty_node_surface(config_factory):
    node, api = make_api(config_factory(0, 4, 1, is_faulty=True))
    with TestClient(api.app) as client:
        assert client.get("/status").status_code == 500
        assert client.get("/status").text == "faulty"
        
        assert client.get("/start").text == "OK"
        assert node.consensus_task is None
        assert client.get("/getState").json() == {"killed": False, "x": None, "decided": None, "k": None}
        
        assert client.get("/stop").text == "OK"
        assert client.get("/getState").json()["killed"] is True
        assert client.get("/status").status_code == 500


def test_start_runs_consensus_to_decision(config_factory):
    node, api = make_api(config_factory(0, 1, 0, 1))
    with TestClient(api.app) as client:
        assert client.get("/getState").json() == {"killed": False, "x": 1, "decided": False, "k": 1}
        assert client.get("/start").text == "OK"
        assert client.get("/start").text == "OK"
        
        deadline = time.monotonic() + 5
        state = client.get("/getState").json()
        while not state["decided"] and time.monotonic() < deadline:
            time.sleep(0.02)
            state = client.get("/getState").json()
        
        assert state == {"killed": False, "x": 1, "decided": True, "k": 2}


def test_stop_is_idempotent(config_factory):
    node, api = make_api(config_factory(0, 1, 0, 0))
    with TestClient(api.app) as client:
        assert client.get("/stop").text == "OK"
        assert client.get("/stop").text == "OK"
        assert client.get("/start").text == "OK"
        
        state = client.get("/getState").json()
        assert state == {"killed": True, "x": 0, "decided": False, "k": 1}
        assert node.consensus_task is None


def test_websocket_sends_state(config_factory):
    _, api = make_api(config_factory(0, 1, 0, 1))
    with TestClient(api.app) as client:
        with client.websocket_connect("/ws") as websocket:
            message = websocket.receive_json()
            assert message["type"] == "state"
            assert message["data"]["x"] == 1


class SlowSocket:
    """WebSocket stand-in whose sends take a little while."""
    
    def __init__(self):
        self.sent = []
    
    async def send_json(self, message):
        await asyncio.sleep(0.01)
        self.sent.append(message)


@pytest.mark.asyncio
async def test_broadcast_tolerates_disconnect_during_send():
    manager = WebSocketManager()
    first, second = SlowSocket(), SlowSocket()
    manager.active_connections.update({first, second})
    
    broadcast = asyncio.create_task(manager.broadcast({"type": "state"}))
    await asyncio.sleep(0.005)
    manager.disconnect(second)
    await broadcast
    
    assert first.sent == [{"type": "state"}]
    assert second.sent == [{"type": "state"}]
    assert manager.active_connections == {first}


@pytest.mark.asyncio
async def test_websocket_served_by_uvicorn(config_factory, wait_until):
    port = 52777
    node = BenOrNode(config_factory(0, 1, 0, 1), rpc=LoopbackRPC())
    api = BenOrAPI(node, port=port, host="127.0.0.1")
    server_task = asyncio.create_task(api.start())
    
    try:
        assert await wait_until(lambda: api.server is not None and api.server.started, timeout=10.0)
        
        async with aiohttp.ClientSession() as session:
            async with session.ws_connect(f"http://127.0.0.1:{port}/ws") as websocket:
                message = await websocket.receive_json(timeout=5)
                assert message["type"] == "state"
                assert message["data"]["x"] == 1
    finally:
        await api.stop()
        await asyncio.wait_for(server_task, timeout=10.0)
    
    assert api.update_task.cancelled()
