from typing import Dict, List, Optional, Tuple
import logging

import config
from errors import AlreadyInRoom, GameAlreadyStarted, InvalidCommand, NicknameTaken, RoomFull, RoomLimitReached, RoomNotFound
from ids import generate_id, generate_room_code
from models import LOBBY, Participant, Room, sanitize_text

logger = logging.getLogger(__name__)


def clean_nickname(raw) -> str:
    if not isinstance(raw, str):
        raise InvalidCommand(f"Nickname must be 1-{config.MAX_NICKNAME_LENGTH} characters")
    nickname = sanitize_text(raw)
    if not nickname or len(nickname) > config.MAX_NICKNAME_LENGTH:
        raise InvalidCommand(f"Nickname must be 1-{config.MAX_NICKNAME_LENGTH} characters")
    return nickname


class RoomRegistry:
    """Owns every Room and Participant record, keyed by room code, plus the
    participant id -> room code reverse index."""

    def __init__(self):
        self.rooms: Dict[str, Room] = {}
        self.participant_rooms: Dict[str, str] = {}

    def create_room(self, moderator_id: str, moderator_name) -> Tuple[Room, str]:
        if moderator_id in self.participant_rooms:
            raise AlreadyInRoom()
        nickname = clean_nickname(moderator_name)
        if len(self.rooms) >= config.MAX_ROOMS:
            raise RoomLimitReached()

        code = generate_room_code(self.rooms)
        moderator = Participant(id=moderator_id, display_name=nickname)
        room = Room(generate_id(), code, moderator)
        self.rooms[code] = room
        self.participant_rooms[moderator_id] = code
        logger.info("Room %s created by '%s'", code, nickname)
        return room, moderator_id

    def join_room(self, participant_id: str, code, display_name) -> Tuple[Room, str]:
        if participant_id in self.participant_rooms:
            raise AlreadyInRoom()
        room = self.rooms.get(code.strip().upper() if isinstance(code, str) else "")
        if room is None:
            raise RoomNotFound()
        if room.started:
            raise GameAlreadyStarted()
        nickname = clean_nickname(display_name)
        if room.nickname_in_use(nickname):
            raise NicknameTaken()
        if len(room.participants) >= config.MAX_PLAYERS_PER_ROOM:
            raise RoomFull()

        room.participants.append(Participant(id=participant_id, display_name=nickname))
        self.participant_rooms[participant_id] = room.code
        room.touch()
        logger.info("'%s' joined room %s", nickname, room.code)
        return room, participant_id

    def resolve_room(self, participant_id: str) -> Optional[Room]:
        code = self.participant_rooms.get(participant_id)
        if code is None:
            return None
        return self.rooms.get(code)

    def get_room(self, code: str) -> Optional[Room]:
        return self.rooms.get(code.strip().upper())

    def remove_participant(self, participant_id: str) -> Optional[Room]:
        """Drop a participant from its room and the reverse index.

        Removing the moderator tears the whole room down. Returns the room
        the participant was in, or None if it was in none."""
        room = self.resolve_room(participant_id)
        self.participant_rooms.pop(participant_id, None)
        if room is None:
            return None
        room.participants = [p for p in room.participants if p.id != participant_id]
        if participant_id == room.moderator_id:
            self.delete_room(room.code)
        return room

    def mark_disconnected(self, participant_id: str) -> Optional[Room]:
        """Keep the participant (and its score) in the room but stop routing to it.
        Lobby members have nothing to keep and are removed instead."""
        room = self.resolve_room(participant_id)
        if room is None:
            self.participant_rooms.pop(participant_id, None)
            return None
        if room.state == LOBBY or participant_id == room.moderator_id:
            return self.remove_participant(participant_id)
        participant = room.get_participant(participant_id)
        if participant:
            participant.connected = False
        self.participant_rooms.pop(participant_id, None)
        return room

    def delete_room(self, code: str) -> Optional[Room]:
        room = self.rooms.pop(code, None)
        if room is None:
            return None
        room.cancel_timer()
        for pid in [pid for pid, c in self.participant_rooms.items() if c == code]:
            del self.participant_rooms[pid]
        logger.info("Room %s deleted", code)
        return room

    def expired_rooms(self) -> List[Room]:
        return [room for room in self.rooms.values() if room.is_expired()]
