from fastapi import WebSocket
from typing import Dict, Iterable, Optional
import asyncio
import logging

import config

logger = logging.getLogger(__name__)

_CLOSE = object()


class Outbox:
    """Per-connection FIFO. Engine code enqueues without awaiting; a single
    pump task writes to the socket, so each recipient sees events in the
    order they were emitted."""

    def __init__(self, participant_id: str, websocket: WebSocket):
        self.participant_id = participant_id
        self.websocket = websocket
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=config.OUTBOX_MAX_MESSAGES)
        self.closed = False
        self.failed = False
        self.task = asyncio.create_task(self._pump())

    def put(self, message: dict):
        if self.closed or self.failed:
            return
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            # Client is not keeping up; treat it like a dead socket
            self.failed = True
            logger.warning("Outbox for %s is full, dropping it", self.participant_id)

    def close(self):
        if not self.closed:
            self.closed = True
            if self.failed or self.queue.full():
                self._discard()
            self.queue.put_nowait(_CLOSE)

    def _discard(self):
        while not self.queue.empty():
            self.queue.get_nowait()
            self.queue.task_done()

    async def _pump(self):
        while True:
            message = await self.queue.get()
            try:
                if message is _CLOSE:
                    return
                if not self.failed:
                    await self.websocket.send_json(message)
            except Exception:
                # Drop the rest; the receive loop notices the dead socket
                self.failed = True
                logger.warning("Send to %s failed, dropping its outbox", self.participant_id)
            finally:
                self.queue.task_done()


class BroadcastRouter:
    def __init__(self, registry):
        self.registry = registry
        self.outboxes: Dict[str, Outbox] = {}

    def attach(self, participant_id: str, websocket: WebSocket):
        self.detach(participant_id)
        self.outboxes[participant_id] = Outbox(participant_id, websocket)

    def detach(self, participant_id: str):
        outbox = self.outboxes.pop(participant_id, None)
        if outbox:
            outbox.close()

    def unicast(self, participant_id: str, message: dict):
        outbox = self.outboxes.get(participant_id)
        if outbox is None:
            logger.debug("No connection for %s, dropping %s", participant_id, message.get("type"))
            return
        outbox.put(message)

    def multicast(self, participant_ids: Iterable[str], message: dict,
                  exclude_id: Optional[str] = None):
        for participant_id in participant_ids:
            if participant_id != exclude_id:
                self.unicast(participant_id, message)

    def roomcast(self, room_code: str, message: dict, exclude_id: Optional[str] = None):
        """Deliver to every connected participant of the room."""
        room = self.registry.rooms.get(room_code)
        if room is None:
            return
        self.multicast(room.connected_ids(), message, exclude_id=exclude_id)

    async def drain(self):
        """Wait until every queued message has been written (or dropped)."""
        await asyncio.gather(*(o.queue.join() for o in list(self.outboxes.values())))
