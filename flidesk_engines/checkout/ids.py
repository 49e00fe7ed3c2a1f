"""FliDESK subscription identifiers."""
from __future__ import annotations

import re
import secrets

FLIDESK_ID_PREFIX = "FD-"
FLIDESK_ID_PATTERN = re.compile(r"^FD-[0-9A-F]{10}$")


def generate_flidesk_id() -> str:
    # 40 random bits; uniqueness is enforced by the store, not here.
    return f"{FLIDESK_ID_PREFIX}{secrets.token_hex(5).upper()}"


def is_flidesk_id(value: str) -> bool:
    return bool(FLIDESK_ID_PATTERN.match(value or ""))
