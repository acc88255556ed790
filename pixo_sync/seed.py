"""Bundled seed dataset.

Seed entities have non-canonical ids (``"n1"``, ``"u2"`` ...) and the same
shape as remote rows. They fill the feed when the remote store is empty or
unreachable, and are the targets of locally persisted interactions.
"""

import json
from importlib import resources
from pathlib import Path
from typing import Any

from pixo_sync.logging import logger
from pixo_sync.models import Note, Profile


class SeedCatalog:
    """Read-only lookup over seed users and notes.

    Args:
        users: Seed user profiles
        notes: Seed notes; each gets its author embedded if missing

    Example:
        >>> seed = SeedCatalog.default()
        >>> seed.get_note("n1").author.username
        'mia.styles'
    """

    def __init__(self, users: list[Profile], notes: list[Note]):
        self._users = {user.id: user for user in users}
        self._notes: dict[str, Note] = {}
        for note in notes:
            if note.author is None and note.user_id in self._users:
                note = note.model_copy(update={"author": self._users[note.user_id]})
            self._notes[note.id] = note

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SeedCatalog":
        users = [Profile.model_validate(u) for u in data.get("users", [])]
        notes = [Note.model_validate(n) for n in data.get("notes", [])]
        return cls(users, notes)

    @classmethod
    def from_file(cls, path: Path) -> "SeedCatalog":
        """Load a seed dataset from a JSON file."""
        with path.open(encoding="utf-8") as fh:
            return cls.from_dict(json.load(fh))

    @classmethod
    def default(cls) -> "SeedCatalog":
        """Load the dataset shipped inside the package."""
        raw = resources.files("pixo_sync").joinpath("data/seed.json").read_text(
            encoding="utf-8"
        )
        catalog = cls.from_dict(json.loads(raw))
        logger.debug(
            f"Loaded seed dataset: {len(catalog._users)} users, {len(catalog._notes)} notes"
        )
        return catalog

    def get_note(self, note_id: str) -> Note | None:
        return self._notes.get(note_id)

    def get_user(self, user_id: str) -> Profile | None:
        return self._users.get(user_id)

    def notes(self) -> list[Note]:
        """All seed notes, newest first."""
        return sorted(
            self._notes.values(),
            key=lambda n: n.created_at.timestamp() if n.created_at else 0.0,
            reverse=True,
        )

    def notes_by_user(self, user_id: str) -> list[Note]:
        return [note for note in self.notes() if note.user_id == user_id]

    def users(self) -> list[Profile]:
        return list(self._users.values())


__all__ = ["SeedCatalog"]
