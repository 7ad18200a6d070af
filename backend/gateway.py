from fastapi import WebSocket, WebSocketDisconnect
from typing import Callable, Dict, List, Optional
import json
import time
import asyncio
import logging

import config
from broadcast import BroadcastRouter
from errors import GameError, InvalidCommand
from game_session import GameSession
from ids import generate_id
from registry import RoomRegistry

logger = logging.getLogger(__name__)


class ConnectionGateway:
    """The only component that knows about the transport. Each WebSocket
    connection gets an ephemeral participant id; inbound frames become
    GameSession calls and engine failures become ERROR events for the caller."""

    def __init__(self):
        self.registry = RoomRegistry()
        self.router = BroadcastRouter(self.registry)
        self.session = GameSession(self.registry, self.router)
        self.allowed_origins: List[str] = []
        self._cleanup_task: Optional[asyncio.Task] = None
        self.handlers: Dict[str, Callable[[str, dict], None]] = {
            "CREATE_ROOM": lambda pid, m: self.session.create_room(pid, m.get("moderator_nickname")),
            "JOIN_ROOM": lambda pid, m: self.session.join_room(pid, m.get("room_code"), m.get("player_nickname")),
            "ADD_QUESTION": lambda pid, m: self.session.add_question(pid, m.get("question")),
            "START_QUESTION": lambda pid, m: self.session.start_next_question(pid),
            "SUBMIT_ANSWER": lambda pid, m: self.session.submit_answer(pid, m.get("selected_option")),
            "END_QUESTION": lambda pid, m: self.session.end_question(pid),
            "LEAVE_ROOM": lambda pid, m: self.session.leave_room(pid),
            "PING": lambda pid, m: self.router.unicast(pid, {"type": "PONG"}),
        }

    def start_cleanup_loop(self):
        """Start the background room cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_expired_rooms())

    def stop_cleanup_loop(self):
        if self._cleanup_task:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    async def _cleanup_expired_rooms(self):
        """Periodically remove idle rooms."""
        while True:
            try:
                await asyncio.sleep(config.ROOM_CLEANUP_INTERVAL)
                removed = self.session.expire_idle_rooms()
                if removed:
                    logger.info("Cleaned up %d expired room(s)", removed)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in room cleanup loop")

    def dispatch(self, participant_id: str, message: dict):
        """Run one command to completion. Failures go back to the caller only."""
        try:
            command = message.get("type")
            handler = self.handlers.get(command) if isinstance(command, str) else None
            if handler is None:
                raise InvalidCommand("Unknown command")
            handler(participant_id, message)
        except GameError as e:
            logger.info("Command %s from %s rejected: %s", message.get("type"), participant_id, e.message)
            self.router.unicast(participant_id, e.to_event())

    async def connect(self, websocket: WebSocket):
        # Validate WebSocket origin
        origin = websocket.headers.get("origin", "")
        if self.allowed_origins and origin not in self.allowed_origins:
            logger.warning("Rejected WebSocket from unauthorized origin: %s", origin)
            await websocket.close(code=1008)
            return

        await websocket.accept()
        participant_id = generate_id()
        self.router.attach(participant_id, websocket)
        self.router.unicast(participant_id, {"type": "CONNECTED", "participant_id": participant_id})
        timestamps: List[float] = []

        try:
            while True:
                data = await websocket.receive_text()

                # Enforce message size limit
                if len(data.encode("utf-8")) > config.MAX_WS_MESSAGE_SIZE:
                    self.router.unicast(participant_id, InvalidCommand("Message too large").to_event())
                    continue

                # Per-client rate limiting
                now = time.time()
                timestamps[:] = [t for t in timestamps if now - t < 1.0]
                if len(timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
                    logger.warning("Rate limit hit by client %s", participant_id)
                    self.router.unicast(participant_id, InvalidCommand("Too many messages").to_event())
                    continue
                timestamps.append(now)

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON from client %s: %s", participant_id, data[:100])
                    self.router.unicast(participant_id, InvalidCommand().to_event())
                    continue
                if not isinstance(message, dict):
                    self.router.unicast(participant_id, InvalidCommand().to_event())
                    continue

                self.dispatch(participant_id, message)
        except WebSocketDisconnect:
            logger.info("Client %s disconnected", participant_id)
        except Exception:
            logger.exception("WebSocket error for client %s", participant_id)
        finally:
            self.session.disconnect(participant_id)
            self.router.detach(participant_id)


gateway = ConnectionGateway()
