"""Entity identifier classification.

Every note, user or conversation id is either *canonical* (a UUID issued by
the remote store) or *seed* (an arbitrary short string from the bundled
dataset). ``classify`` turns the string into a tagged reference so callers
can ``match`` on the variant instead of repeating the regex check.

Example:
    >>> from pixo_sync.identifiers import classify, RemoteRef, SeedRef
    >>> match classify("n1"):
    ...     case RemoteRef(id=note_id):
    ...         print("remote", note_id)
    ...     case SeedRef(id=note_id):
    ...         print("seed", note_id)
    seed n1
"""

import re
from dataclasses import dataclass
from typing import Any

CANONICAL_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_canonical(entity_id: Any) -> bool:
    """Return True iff ``entity_id`` is a remote-backed (UUID-shaped) id."""
    if not isinstance(entity_id, str):
        return False
    return CANONICAL_ID_PATTERN.fullmatch(entity_id) is not None


@dataclass(frozen=True, slots=True)
class RemoteRef:
    """Entity backed by a row in the remote store."""

    id: str


@dataclass(frozen=True, slots=True)
class SeedRef:
    """Entity from the bundled seed dataset; interaction state is on-device only."""

    id: str


EntityRef = RemoteRef | SeedRef


def classify(entity_id: str) -> EntityRef:
    """Wrap an id in the reference variant matching its shape."""
    if is_canonical(entity_id):
        return RemoteRef(entity_id)
    return SeedRef(entity_id)


__all__ = [
    "CANONICAL_ID_PATTERN",
    "EntityRef",
    "RemoteRef",
    "SeedRef",
    "classify",
    "is_canonical",
]
