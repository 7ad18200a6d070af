from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from typing import Dict, List, Optional
import asyncio
import re
import time

import config

# Room states
LOBBY = "LOBBY"
QUESTION_ACTIVE = "QUESTION_ACTIVE"
BETWEEN_QUESTIONS = "BETWEEN_QUESTIONS"
FINISHED = "FINISHED"

# Question kinds
MULTIPLE = "MULTIPLE"
BOOLEAN = "BOOLEAN"


def sanitize_text(text: str) -> str:
    """Strip HTML tags and control characters from client-supplied text."""
    text = re.sub(r'<[^>]+>', '', text)
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()


class Participant(BaseModel):
    id: str
    display_name: str
    score: int = 0
    connected: bool = True


class QuestionDraft(BaseModel):
    """A question as authored by the moderator, before it gets an id."""
    text: str
    kind: str = MULTIPLE
    options: List[str] = []
    correct_option_index: int
    time_limit: int = config.DEFAULT_TIME_LIMIT
    points: int = config.DEFAULT_POINTS

    @field_validator('text')
    @classmethod
    def validate_text(cls, v: str) -> str:
        v = sanitize_text(v)
        if not v or len(v) > config.MAX_QUESTION_TEXT_LENGTH:
            raise ValueError(f'Question text must be 1-{config.MAX_QUESTION_TEXT_LENGTH} characters')
        return v

    @field_validator('kind')
    @classmethod
    def validate_kind(cls, v: str) -> str:
        v = v.upper().strip()
        if v not in (MULTIPLE, BOOLEAN):
            raise ValueError(f'Question kind must be {MULTIPLE} or {BOOLEAN}')
        return v

    @field_validator('options')
    @classmethod
    def validate_options(cls, v: List[str]) -> List[str]:
        v = [sanitize_text(opt)[:config.MAX_OPTION_LENGTH] for opt in v]
        if any(not opt for opt in v):
            raise ValueError('Options must not be empty')
        return v

    @field_validator('time_limit')
    @classmethod
    def validate_time_limit(cls, v: int) -> int:
        if v < config.MIN_TIME_LIMIT or v > config.MAX_TIME_LIMIT:
            raise ValueError(f'Time limit must be between {config.MIN_TIME_LIMIT} and {config.MAX_TIME_LIMIT} seconds')
        return v

    @field_validator('points')
    @classmethod
    def validate_points(cls, v: int) -> int:
        if v < 1 or v > config.MAX_POINTS:
            raise ValueError(f'Points must be between 1 and {config.MAX_POINTS}')
        return v

    @model_validator(mode='after')
    def check_answer(self) -> 'QuestionDraft':
        if self.kind == BOOLEAN:
            # True/False questions always use the fixed labels
            self.options = list(config.BOOLEAN_OPTIONS)
        elif not config.MIN_OPTIONS <= len(self.options) <= config.MAX_OPTIONS:
            raise ValueError(f'Question must have {config.MIN_OPTIONS}-{config.MAX_OPTIONS} options')
        if not 0 <= self.correct_option_index < len(self.options):
            raise ValueError('Invalid correct_option_index')
        return self


class Question(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    kind: str
    options: List[str]
    correct_option_index: int
    time_limit: int
    points: int

    @classmethod
    def from_draft(cls, question_id: str, draft: QuestionDraft) -> 'Question':
        return cls(id=question_id, **draft.model_dump())

    def public(self) -> dict:
        """Question as shown to participants while it can still be answered."""
        return self.model_dump(exclude={"correct_option_index"})


class Answer(BaseModel):
    participant_id: str
    question_id: str
    selected_option_index: int
    is_correct: bool
    submitted_at: float

    def public(self) -> dict:
        return self.model_dump(exclude={"is_correct"})


class Room:
    def __init__(self, room_id: str, code: str, moderator: Participant):
        self.id = room_id
        self.code = code
        self.moderator_id = moderator.id
        self.participants: List[Participant] = [moderator]  # join order
        self.questions: List[Question] = []
        self.current_question_index = -1
        self.state = LOBBY  # LOBBY, QUESTION_ACTIVE, BETWEEN_QUESTIONS, FINISHED
        self.created_at = time.time()
        self.last_activity = self.created_at
        self.question_start_time: float = 0
        self.answers: Dict[str, Answer] = {}  # participant_id -> answer for the current question
        self.timer_task: Optional[asyncio.Task] = None

    @property
    def started(self) -> bool:
        return self.state != LOBBY

    @property
    def finished(self) -> bool:
        return self.state == FINISHED

    @property
    def active_question(self) -> Optional[Question]:
        if self.state != QUESTION_ACTIVE:
            return None
        return self.questions[self.current_question_index]

    def touch(self):
        """Update last activity timestamp."""
        self.last_activity = time.time()

    def is_expired(self) -> bool:
        return time.time() - self.last_activity > config.ROOM_TTL_SECONDS

    def cancel_timer(self):
        if self.timer_task:
            self.timer_task.cancel()
            self.timer_task = None

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        return next((p for p in self.participants if p.id == participant_id), None)

    def connected_ids(self) -> List[str]:
        return [p.id for p in self.participants if p.connected]

    def nickname_in_use(self, display_name: str) -> bool:
        return any(p.connected and p.display_name == display_name for p in self.participants)

    def standings(self) -> List[dict]:
        """Participants by score, highest first; sorted() is stable so ties keep join order."""
        ranked = sorted(self.participants, key=lambda p: p.score, reverse=True)
        return [p.model_dump() for p in ranked]

    def snapshot(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "moderator_id": self.moderator_id,
            "participants": [p.model_dump() for p in self.participants],
            "question_count": len(self.questions),
            "current_question_index": self.current_question_index,
            "state": self.state,
            "started": self.started,
            "finished": self.finished,
            "created_at": self.created_at,
        }
