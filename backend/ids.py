import random
import secrets
from typing import Container

import config
from errors import CodeSpaceExhausted


def generate_id() -> str:
    """Opaque identifier for participants, rooms and questions."""
    return secrets.token_hex(8)


def generate_room_code(taken: Container[str]) -> str:
    """Generate a unique room code, checking for collisions."""
    for _ in range(config.MAX_ROOM_CODE_ATTEMPTS):
        code = ''.join(random.choices(config.ROOM_CODE_ALPHABET, k=config.ROOM_CODE_LENGTH))
        if code not in taken:
            return code
    raise CodeSpaceExhausted()
