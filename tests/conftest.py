"""Pytest configuration and shared fixtures for pixo-sync tests."""

import os
import sys
import tempfile

# Settings are read at import time; pin the testing profile first
os.environ["ENVIRONMENT"] = "testing"
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="pixo_sync_test_"))
os.environ.pop("SUPABASE_URL", None)
os.environ.pop("SUPABASE_ANON_KEY", None)

import asyncio  # noqa: E402
import uuid  # noqa: E402
from datetime import datetime, timezone  # noqa: E402
from typing import Any, Generator  # noqa: E402

import pytest  # noqa: E402
from loguru import logger  # noqa: E402

from pixo_sync.errors import GatewayError, NotFoundError  # noqa: E402
from pixo_sync.models import (  # noqa: E402
    Comment,
    Conversation,
    Message,
    Note,
    Notice,
    Profile,
)
from pixo_sync.conversations import group_conversations  # noqa: E402
from pixo_sync.seed import SeedCatalog  # noqa: E402
from pixo_sync.session import UserSession  # noqa: E402
from pixo_sync.store import OverrideStore  # noqa: E402

ME = "11111111-1111-4111-8111-111111111111"
AUTHOR = "22222222-2222-4222-8222-222222222222"
FRIEND = "33333333-3333-4333-8333-333333333333"
REMOTE_NOTE = "aaaaaaaa-aaaa-4aaa-8aaa-aaaaaaaaaaaa"

SUPABASE_URL = "https://pixo.supabase.test"
ANON_KEY = "anon-key-for-tests-0123456789"


# =============================================================================
# Test Configuration
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Configure loguru for tests to avoid I/O errors."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="ERROR",
        format="{time} {level} {message}",
        catch=True,
    )
    yield
    logger.remove()


@pytest.fixture(scope="function", autouse=True)
def reset_loguru():
    """Reset loguru handlers before each test to prevent I/O errors."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="ERROR",
        format="{time} {level} {message}",
        catch=True,
    )
    yield
    logger.remove()


# =============================================================================
# Fakes
# =============================================================================


class FakeGateway:
    """In-memory stand-in for ``SupabaseGateway``.

    Join tables are plain sets, so toggles follow the same insert-or-delete
    semantics as the real backend. Names listed in ``failing`` raise
    ``GatewayError`` when called.
    """

    def __init__(self) -> None:
        self.notes: dict[str, Note] = {}
        self.profiles: dict[str, Profile] = {}
        self.comments: dict[str, list[Comment]] = {}
        self.messages: list[Message] = []
        self.likes: set[tuple[str, str]] = set()
        self.collects: set[tuple[str, str]] = set()
        self.follows: set[tuple[str, str]] = set()
        self.failing: set[str] = set()
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None
        self.access_token: str | None = None

    async def _enter(self, name: str) -> None:
        self.calls.append(name)
        if self.gate is not None:
            await self.gate.wait()
        if name in self.failing:
            raise GatewayError(500, message=f"{name} failed")

    def set_access_token(self, access_token: str | None) -> None:
        self.access_token = access_token

    async def get_note_by_id(self, note_id: str) -> Note:
        await self._enter("get_note_by_id")
        if note_id not in self.notes:
            raise NotFoundError(406, code="PGRST116", message="no rows")
        return self.notes[note_id]

    async def get_notes(self, limit: int = 20, offset: int = 0) -> list[Note]:
        await self._enter("get_notes")
        return list(self.notes.values())[offset : offset + limit]

    async def get_comments(self, note_id: str) -> list[Comment]:
        await self._enter("get_comments")
        return list(self.comments.get(note_id, []))

    async def add_comment(self, user_id: str, note_id: str, content: str) -> Comment:
        await self._enter("add_comment")
        comment = Comment(
            id=str(uuid.uuid4()),
            note_id=note_id,
            user_id=user_id,
            text=content,
            created_at=datetime.now(timezone.utc),
        )
        self.comments.setdefault(note_id, []).insert(0, comment)
        return comment

    async def delete_note(self, note_id: str) -> None:
        await self._enter("delete_note")
        self.notes.pop(note_id, None)

    def _flip(self, rows: set[tuple[str, str]], key: tuple[str, str]) -> bool:
        if key in rows:
            rows.discard(key)
            return False
        rows.add(key)
        return True

    async def toggle_like(self, user_id: str, note_id: str) -> bool:
        await self._enter("toggle_like")
        return self._flip(self.likes, (user_id, note_id))

    async def toggle_collect(self, user_id: str, note_id: str) -> bool:
        await self._enter("toggle_collect")
        return self._flip(self.collects, (user_id, note_id))

    async def toggle_follow(self, follower_id: str, following_id: str) -> bool:
        await self._enter("toggle_follow")
        return self._flip(self.follows, (follower_id, following_id))

    async def check_user_interactions(self, user_id: str, note_id: str) -> dict[str, bool]:
        await self._enter("check_user_interactions")
        return {
            "is_liked": (user_id, note_id) in self.likes,
            "is_collected": (user_id, note_id) in self.collects,
        }

    async def get_interacted_note_ids(
        self, user_id: str, note_ids: list[str]
    ) -> dict[str, set[str]]:
        await self._enter("get_interacted_note_ids")
        return {
            "liked": {n for n in note_ids if (user_id, n) in self.likes},
            "collected": {n for n in note_ids if (user_id, n) in self.collects},
        }

    async def get_follow_status(self, follower_id: str, following_id: str) -> bool:
        await self._enter("get_follow_status")
        return (follower_id, following_id) in self.follows

    async def get_profile(self, user_id: str) -> Profile:
        await self._enter("get_profile")
        if user_id not in self.profiles:
            raise NotFoundError(406, code="PGRST116", message="no rows")
        return self.profiles[user_id]

    async def get_user_notes(self, user_id: str) -> list[Note]:
        await self._enter("get_user_notes")
        return [n for n in self.notes.values() if n.user_id == user_id]

    async def get_chat_messages(self, user_id: str, other_user_id: str) -> list[Message]:
        await self._enter("get_chat_messages")
        pair = {user_id, other_user_id}
        thread = [m for m in self.messages if {m.sender_id, m.receiver_id} == pair]
        return sorted(thread, key=lambda m: m.created_at)

    async def send_message(self, sender_id: str, receiver_id: str, content: str) -> Message:
        await self._enter("send_message")
        message = Message(
            id=str(uuid.uuid4()),
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content,
            created_at=datetime.now(timezone.utc),
        )
        self.messages.append(message)
        return message

    async def get_user_conversations(self, user_id: str) -> list[Conversation]:
        await self._enter("get_user_conversations")
        mine = [m for m in self.messages if user_id in (m.sender_id, m.receiver_id)]
        mine.sort(key=lambda m: m.created_at, reverse=True)
        return group_conversations(mine, user_id)


class FakeTransport:
    """Realtime transport fed from an ``asyncio.Queue``.

    Put a frame dict to deliver it, or ``None`` to simulate a dropped socket.
    """

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def send(self, frame: dict[str, Any]) -> None:
        if self.closed:
            raise ConnectionError("transport closed")
        self.sent.append(frame)

    async def recv(self) -> dict[str, Any]:
        frame = await self.incoming.get()
        if frame is None:
            raise ConnectionError("socket dropped")
        return frame

    async def close(self) -> None:
        self.closed = True


class NoticeSink(list):
    """Notifier that records notices."""

    def __call__(self, notice: Notice) -> None:
        self.append(notice)

    def __bool__(self) -> bool:
        # Stay truthy when empty so `notifier or default` keeps this sink
        return True


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def store() -> Generator[OverrideStore, None, None]:
    """Fresh in-memory override store."""
    store = OverrideStore("sqlite://")
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def seed() -> SeedCatalog:
    return SeedCatalog.default()


@pytest.fixture
def gateway() -> FakeGateway:
    """Fake gateway holding one remote note by AUTHOR."""
    fake = FakeGateway()
    author = Profile(id=AUTHOR, username="author", followers_count=10)
    me = Profile(id=ME, username="me")
    fake.profiles = {AUTHOR: author, ME: me}
    fake.notes[REMOTE_NOTE] = Note(
        id=REMOTE_NOTE,
        user_id=AUTHOR,
        title="Remote note",
        likes_count=5,
        collects_count=2,
        comments_count=0,
        author=author,
    )
    return fake


@pytest.fixture
def session() -> UserSession:
    """Signed-in session for ME."""
    return UserSession(
        user_id=ME,
        email="me@example.com",
        access_token="access-token",
        refresh_token="refresh-token",
        profile=Profile(id=ME, username="me"),
    )


@pytest.fixture
def anonymous() -> UserSession:
    return UserSession.anonymous()


@pytest.fixture
def notices() -> NoticeSink:
    return NoticeSink()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


def make_message(
    message_id: str,
    sender: str,
    receiver: str,
    content: str,
    minute: int,
    profiles: dict[str, Profile] | None = None,
) -> Message:
    """Build a message at 2024-05-01 10:<minute> UTC with optional embeds."""
    profiles = profiles or {}
    return Message(
        id=message_id,
        sender_id=sender,
        receiver_id=receiver,
        content=content,
        created_at=datetime(2024, 5, 1, 10, minute, tzinfo=timezone.utc),
        sender=profiles.get(sender),
        receiver=profiles.get(receiver),
    )
