"""
Async WebSocket integration tests using a real uvicorn server.

Covers what the sync TestClient can't easily test:
- Timer expiry ending questions without the moderator
- Countdown ticks reaching every participant
- A late timer after a manual end producing no second result

Requires: pytest-asyncio, httpx, websockets
"""
import sys
import os
import json
import asyncio

import pytest
import pytest_asyncio
import httpx
import websockets

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import uvicorn
from main import app
from gateway import gateway


# ---------------------------------------------------------------------------
# Fixtures & helpers
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def server_port():
    """Start a real uvicorn server on a random port, yield the port, shut down."""
    gateway.registry.rooms.clear()
    gateway.registry.participant_rooms.clear()
    saved_origins = gateway.allowed_origins
    gateway.allowed_origins = []

    config = uvicorn.Config(app, host="127.0.0.1", port=0, log_level="warning")
    server = uvicorn.Server(config)
    serve_task = asyncio.create_task(server.serve())

    # Wait for server to start
    while not server.started:
        await asyncio.sleep(0.01)

    # Extract the OS-assigned port
    port = server.servers[0].sockets[0].getsockname()[1]
    yield port

    # Teardown
    server.should_exit = True
    await serve_task
    for room in list(gateway.registry.rooms.values()):
        room.cancel_timer()
    gateway.registry.rooms.clear()
    gateway.registry.participant_rooms.clear()
    gateway.allowed_origins = saved_origins


async def send_json(ws, msg):
    """Send a JSON message over a websockets connection."""
    await ws.send(json.dumps(msg))


async def collect_until(ws, msg_type, timeout=15.0, max_messages=200):
    """Collect all messages until we get the target type. Returns (collected, target_msg)."""
    collected = []
    deadline = asyncio.get_event_loop().time() + timeout
    for _ in range(max_messages):
        remaining = deadline - asyncio.get_event_loop().time()
        if remaining <= 0:
            raise TimeoutError(f"Never received {msg_type} within {timeout}s")
        data = await asyncio.wait_for(ws.recv(), timeout=remaining)
        msg = json.loads(data)
        if msg.get("type") == msg_type:
            return collected, msg
        collected.append(msg)
    raise TimeoutError(f"Never received {msg_type} after {max_messages} messages")


async def recv_until(ws, msg_type, timeout=15.0):
    _, msg = await collect_until(ws, msg_type, timeout=timeout)
    return msg


async def setup_game(port, time_limits):
    """Open a moderator and one player, create a room with one question per
    time limit. Returns (mod_ws, player_ws, room_code)."""
    url = f"ws://127.0.0.1:{port}/ws"
    mod_ws = await websockets.connect(url)
    player_ws = await websockets.connect(url)
    await recv_until(mod_ws, "CONNECTED")
    await recv_until(player_ws, "CONNECTED")

    await send_json(mod_ws, {"type": "CREATE_ROOM", "moderator_nickname": "Host"})
    room_code = (await recv_until(mod_ws, "ROOM_CREATED"))["room"]["code"]
    await send_json(player_ws, {"type": "JOIN_ROOM", "room_code": room_code, "player_nickname": "Alice"})
    await recv_until(player_ws, "ROOM_JOINED")

    for limit in time_limits:
        await send_json(mod_ws, {"type": "ADD_QUESTION", "question": {
            "text": "2 + 2?",
            "kind": "MULTIPLE",
            "options": ["3", "4", "5"],
            "correct_option_index": 1,
            "time_limit": limit,
            "points": 10,
        }})
        await recv_until(mod_ws, "QUESTION_ADDED")
    return mod_ws, player_ws, room_code


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_timer_expiry_ends_question(server_port):
    mod_ws, player_ws, _ = await setup_game(server_port, [1, 1])
    try:
        await send_json(mod_ws, {"type": "START_QUESTION"})
        await recv_until(player_ws, "QUESTION_STARTED")
        await send_json(player_ws, {"type": "SUBMIT_ANSWER", "selected_option": 1})

        # Nobody ends the question; the timer does
        collected, ended = await collect_until(player_ws, "QUESTION_ENDED", timeout=5)
        assert ended["scores"][0]["display_name"] == "Alice"
        assert ended["scores"][0]["score"] == 10
        ticks = [m for m in collected if m["type"] == "TIMER"]
        assert ticks and ticks[0]["remaining"] == 1

        await send_json(mod_ws, {"type": "START_QUESTION"})
        await recv_until(player_ws, "QUESTION_STARTED")
        finished = await recv_until(player_ws, "GAME_FINISHED", timeout=5)
        assert [s["score"] for s in finished["final_scores"]] == [10, 0]
    finally:
        await mod_ws.close()
        await player_ws.close()


@pytest.mark.asyncio
async def test_manual_end_then_timer_gives_one_result(server_port):
    mod_ws, player_ws, _ = await setup_game(server_port, [1, 30])
    try:
        await send_json(mod_ws, {"type": "START_QUESTION"})
        await recv_until(player_ws, "QUESTION_STARTED")
        await send_json(mod_ws, {"type": "END_QUESTION"})
        await recv_until(player_ws, "QUESTION_ENDED")

        # Wait past the original deadline; no second result may arrive
        await asyncio.sleep(1.5)
        await send_json(player_ws, {"type": "PING"})
        collected, _ = await collect_until(player_ws, "PONG", timeout=5)
        assert all(m["type"] != "QUESTION_ENDED" for m in collected)
    finally:
        await mod_ws.close()
        await player_ws.close()


@pytest.mark.asyncio
async def test_moderator_disconnect_notifies_players(server_port):
    mod_ws, player_ws, room_code = await setup_game(server_port, [30])
    try:
        await send_json(mod_ws, {"type": "START_QUESTION"})
        await recv_until(player_ws, "QUESTION_STARTED")
        await mod_ws.close()
        err = await recv_until(player_ws, "ERROR", timeout=5)
        assert err["message"] == "The moderator disconnected"

        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{server_port}") as http:
            res = await http.get(f"/room/{room_code}")
            assert res.status_code == 404
    finally:
        await player_ws.close()
