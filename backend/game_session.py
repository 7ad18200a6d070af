from pydantic import ValidationError
import asyncio
import logging
import time
from typing import Optional

import config
from broadcast import BroadcastRouter
from errors import (AlreadyAnswered, Forbidden, GameAlreadyStarted, GameError, InvalidCommand, ModeratorLeft,
                    NoActiveQuestion, NoMoreQuestions, NoQuestions, NotInRoom, QuestionAlreadyActive, RoomExpired)
from ids import generate_id
from models import (BETWEEN_QUESTIONS, FINISHED, QUESTION_ACTIVE, Answer, Question,
                    QuestionDraft, Room)
from registry import RoomRegistry

logger = logging.getLogger(__name__)


class GameSession:
    """Per-room game logic. Every operation validates before it mutates and
    runs to completion without awaiting, so commands for a room are applied
    one at a time in receipt order."""

    def __init__(self, registry: RoomRegistry, router: BroadcastRouter):
        self.registry = registry
        self.router = router

    def _room_for(self, caller_id: str) -> Room:
        room = self.registry.resolve_room(caller_id)
        if room is None:
            raise NotInRoom()
        room.touch()
        return room

    def _require_moderator(self, room: Room, caller_id: str):
        if caller_id != room.moderator_id:
            raise Forbidden()

    # --- Membership ---

    def create_room(self, caller_id: str, moderator_name) -> Room:
        room, moderator_id = self.registry.create_room(caller_id, moderator_name)
        self.router.unicast(caller_id, {
            "type": "ROOM_CREATED",
            "room": room.snapshot(),
            "moderator_id": moderator_id,
        })
        return room

    def join_room(self, caller_id: str, code, display_name) -> Room:
        room, player_id = self.registry.join_room(caller_id, code, display_name)
        snapshot = room.snapshot()
        self.router.unicast(caller_id, {"type": "ROOM_JOINED", "room": snapshot, "player_id": player_id})
        self.router.roomcast(room.code, {
            "type": "PLAYER_JOINED",
            "player": room.get_participant(player_id).model_dump(),
            "room": snapshot,
        })
        return room

    def leave_room(self, caller_id: str):
        room = self.registry.resolve_room(caller_id)
        if room is None:
            return
        if caller_id == room.moderator_id:
            self.router.unicast(caller_id, {"type": "LEFT_ROOM", "room_code": room.code})
            self._close_room(room, ModeratorLeft(), exclude_id=caller_id)
            return
        self.registry.remove_participant(caller_id)
        logger.info("Participant %s left room %s", caller_id, room.code)
        self.router.unicast(caller_id, {"type": "LEFT_ROOM", "room_code": room.code})
        self.router.roomcast(room.code, {"type": "PLAYER_LEFT", "player_id": caller_id, "room": room.snapshot()})

    def disconnect(self, caller_id: str):
        room = self.registry.resolve_room(caller_id)
        if room is None:
            return
        if caller_id == room.moderator_id:
            self._close_room(room, ModeratorLeft("The moderator disconnected"), exclude_id=caller_id)
            return
        self.registry.mark_disconnected(caller_id)
        logger.info("Participant %s disconnected from room %s", caller_id, room.code)
        self.router.roomcast(room.code, {"type": "PLAYER_LEFT", "player_id": caller_id, "room": room.snapshot()})

    def _close_room(self, room: Room, reason: GameError, exclude_id: Optional[str] = None):
        """Tear the room down. Members of an unfinished game get a terminal error."""
        members = room.connected_ids()
        was_finished = room.finished
        self.registry.delete_room(room.code)
        if not was_finished:
            self.router.multicast(members, reason.to_event(), exclude_id=exclude_id)
        logger.info("Room %s closed: %s", room.code, reason.message)

    def expire_idle_rooms(self) -> int:
        expired = self.registry.expired_rooms()
        for room in expired:
            self._close_room(room, RoomExpired())
        return len(expired)

    # --- Moderator actions ---

    def add_question(self, caller_id: str, question_data) -> Question:
        room = self._room_for(caller_id)
        self._require_moderator(room, caller_id)
        if room.started:
            raise GameAlreadyStarted("Questions cannot be added after the game has started")
        if len(room.questions) >= config.MAX_QUESTIONS_PER_ROOM:
            raise InvalidCommand(f"A room can hold at most {config.MAX_QUESTIONS_PER_ROOM} questions")
        if not isinstance(question_data, dict):
            raise InvalidCommand("Question must be an object")
        try:
            draft = QuestionDraft.model_validate(question_data)
        except ValidationError as e:
            raise InvalidCommand(e.errors()[0]["msg"])

        question = Question.from_draft(generate_id(), draft)
        room.questions.append(question)
        logger.info("Question %d added to room %s", len(room.questions), room.code)
        self.router.unicast(caller_id, {
            "type": "QUESTION_ADDED",
            "success": True,
            "question_id": question.id,
            "question_count": len(room.questions),
        })
        return question

    def start_next_question(self, caller_id: str) -> Question:
        room = self._room_for(caller_id)
        self._require_moderator(room, caller_id)
        if room.state == QUESTION_ACTIVE:
            raise QuestionAlreadyActive()
        if not room.questions:
            raise NoQuestions()
        if room.finished or room.current_question_index + 1 >= len(room.questions):
            raise NoMoreQuestions()

        room.current_question_index += 1
        room.state = QUESTION_ACTIVE
        room.answers = {}
        room.question_start_time = time.time()
        question = room.questions[room.current_question_index]

        self.router.roomcast(room.code, {
            "type": "QUESTION_STARTED",
            "question": question.public(),
            "time_limit": question.time_limit,
            "question_number": room.current_question_index + 1,
            "total_questions": len(room.questions),
        })
        room.cancel_timer()
        room.timer_task = asyncio.create_task(
            self._question_timer(room.code, room.current_question_index, question.time_limit)
        )
        logger.info("Question %d started in room %s", room.current_question_index + 1, room.code)
        return question

    def end_question(self, caller_id: str):
        room = self._room_for(caller_id)
        self._require_moderator(room, caller_id)
        if room.state != QUESTION_ACTIVE:
            raise NoActiveQuestion()
        room.cancel_timer()

        question = room.questions[room.current_question_index]
        results = [a.model_dump() for a in room.answers.values()]
        is_last = room.current_question_index >= len(room.questions) - 1

        if is_last:
            room.state = FINISHED
            self.router.roomcast(room.code, {
                "type": "GAME_FINISHED",
                "final_scores": room.standings(),
                "results": results,
                "correct_option_index": question.correct_option_index,
            })
            logger.info("Game finished in room %s", room.code)
        else:
            room.state = BETWEEN_QUESTIONS
            self.router.roomcast(room.code, {
                "type": "QUESTION_ENDED",
                "results": results,
                "scores": room.standings(),
                "correct_option_index": question.correct_option_index,
                "question_number": room.current_question_index + 1,
            })
            logger.info("Question %d ended in room %s", room.current_question_index + 1, room.code)

    # --- Player actions ---

    def submit_answer(self, caller_id: str, option_index) -> Answer:
        room = self._room_for(caller_id)
        question = room.active_question
        if question is None:
            raise NoActiveQuestion()
        if isinstance(option_index, bool) or not isinstance(option_index, int) \
                or not 0 <= option_index < len(question.options):
            raise InvalidCommand("Invalid option")
        if caller_id in room.answers:
            raise AlreadyAnswered()

        participant = room.get_participant(caller_id)
        is_correct = option_index == question.correct_option_index
        if is_correct:
            participant.score += question.points
        answer = Answer(
            participant_id=caller_id,
            question_id=question.id,
            selected_option_index=option_index,
            is_correct=is_correct,
            submitted_at=time.time(),
        )
        room.answers[caller_id] = answer

        # Correctness stays private until the question ends
        self.router.roomcast(room.code, {"type": "ANSWER_SUBMITTED", "answer": answer.public()})
        self.router.unicast(caller_id, {
            "type": "ANSWER_RESULT",
            "question_id": question.id,
            "is_correct": is_correct,
            "points": question.points if is_correct else 0,
            "score": participant.score,
        })
        return answer

    # --- Timer ---

    async def _question_timer(self, room_code: str, question_index: int, time_limit: int):
        """Ends the question after time_limit seconds unless it was ended first."""
        try:
            for remaining in range(time_limit, 0, -1):
                if config.TIMER_TICKS:
                    self.router.roomcast(room_code, {
                        "type": "TIMER",
                        "remaining": remaining,
                        "question_number": question_index + 1,
                    })
                await asyncio.sleep(1)
            self.expire_question(room_code, question_index)
        except asyncio.CancelledError:
            pass

    def expire_question(self, room_code: str, question_index: int) -> bool:
        """Timer expiry: end the question on the moderator's behalf.
        A no-op if the room is gone or the question already ended."""
        room = self.registry.rooms.get(room_code)
        if room is None or room.state != QUESTION_ACTIVE or room.current_question_index != question_index:
            logger.debug("Stale timer for room %s question %d ignored", room_code, question_index + 1)
            return False
        room.timer_task = None
        self.end_question(room.moderator_id)
        return True
