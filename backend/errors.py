"""Engine failures. Each carries a kind from the error taxonomy and a message
that is safe to show to the caller."""

NOT_FOUND = "NOT_FOUND"
FORBIDDEN = "FORBIDDEN"
INVALID_STATE = "INVALID_STATE"
CONFLICT = "CONFLICT"
EXHAUSTED = "EXHAUSTED"
INVALID = "INVALID"


class GameError(Exception):
    kind = INVALID_STATE
    message = "Invalid request"

    def __init__(self, message: str = ""):
        self.message = message or self.message
        super().__init__(self.message)

    def to_event(self) -> dict:
        return {"type": "ERROR", "kind": self.kind, "message": self.message}


class RoomNotFound(GameError):
    kind = NOT_FOUND
    message = "Room not found"


class NotInRoom(GameError):
    kind = NOT_FOUND
    message = "You are not in a room"


class Forbidden(GameError):
    kind = FORBIDDEN
    message = "Only the moderator can do that"


class GameAlreadyStarted(GameError):
    message = "The game has already started"


class QuestionAlreadyActive(GameError):
    message = "A question is already active"


class NoActiveQuestion(GameError):
    message = "There is no active question"


class AlreadyAnswered(GameError):
    message = "You already answered this question"


class AlreadyInRoom(GameError):
    kind = CONFLICT
    message = "You are already in a room"


class NicknameTaken(GameError):
    kind = CONFLICT
    message = "That nickname is already taken"


class NoQuestions(GameError):
    kind = EXHAUSTED
    message = "There are no questions"


class NoMoreQuestions(GameError):
    kind = EXHAUSTED
    message = "There are no more questions"


class RoomLimitReached(GameError):
    kind = EXHAUSTED
    message = "Too many active rooms. Please try again later."


class RoomFull(GameError):
    kind = EXHAUSTED
    message = "Room is full"


class CodeSpaceExhausted(GameError):
    kind = EXHAUSTED
    message = "Failed to generate unique room code"


class InvalidCommand(GameError):
    kind = INVALID
    message = "Invalid message format"


class ModeratorLeft(GameError):
    kind = NOT_FOUND
    message = "The moderator left the room"


class RoomExpired(GameError):
    kind = NOT_FOUND
    message = "Room closed due to inactivity"
