from __future__ import annotations

import secrets
import string
import time
from collections.abc import Iterable

_ALPHABET = string.digits + string.ascii_lowercase


def new_entity_id(length: int = 7) -> str:
    """Short random id for sites, areas and points."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def new_inspection_id(existing_ids: Iterable[str], now_ms: int | None = None) -> str:
    """Return ``insp-<epoch ms>``, bumped forward until it is unused."""
    taken = set(existing_ids)
    stamp = now_ms if now_ms is not None else time.time_ns() // 1_000_000
    candidate = f"insp-{stamp}"
    while candidate in taken:
        stamp += 1
        candidate = f"insp-{stamp}"
    return candidate
