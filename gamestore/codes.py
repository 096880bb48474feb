from __future__ import annotations

import random
import re
import string
from collections.abc import Iterable


GAME_CODE_RE = re.compile(r"^[A-Z]{4,5}$")
DEFAULT_CODE_LENGTH = 4


def normalize_game_code(code: object) -> str:
    """Canonical form of a game code: stripped and upper-cased.

    Anything that isn't a string normalizes to "" (which is never valid).
    """

    if not isinstance(code, str) or not code:
        return ""
    return code.strip().upper()


def is_valid_game_code(code: object) -> bool:
    return bool(GAME_CODE_RE.match(normalize_game_code(code)))


def generate_game_code(*, length: int = DEFAULT_CODE_LENGTH, rng: random.Random | None = None) -> str:
    if length not in (4, 5):
        raise ValueError("game codes are 4 or 5 letters long")
    rng = rng or random.SystemRandom()
    return "".join(rng.choice(string.ascii_uppercase) for _ in range(length))


def generate_unique_game_code(
    existing: Iterable[str],
    *,
    length: int = DEFAULT_CODE_LENGTH,
    max_attempts: int = 100,
    rng: random.Random | None = None,
) -> str:
    taken = {normalize_game_code(c) for c in existing}
    for _ in range(max_attempts):
        code = generate_game_code(length=length, rng=rng)
        if code not in taken:
            return code
    raise RuntimeError(f"Failed to generate a unique game code after {max_attempts} attempts")
