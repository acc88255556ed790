"""Unit tests for Pydantic models."""

from datetime import timezone

import pytest
from pydantic import ValidationError

from pixo_sync.models import (
    DEFAULT_AVATAR,
    Comment,
    Conversation,
    Message,
    MutationOutcome,
    MutationResult,
    Note,
    Profile,
)

from tests.conftest import AUTHOR, ME


class TestProfile:
    """Tests for Profile model."""

    def test_null_fields_get_defaults(self):
        profile = Profile.model_validate(
            {"id": AUTHOR, "username": None, "followers_count": None}
        )
        assert profile.username == "Unknown"
        assert profile.followers_count == 0
        assert profile.avatar == DEFAULT_AVATAR

    def test_avatar_prefers_stored_url(self):
        profile = Profile(id=AUTHOR, avatar_url="https://cdn.test/a.png")
        assert profile.avatar == "https://cdn.test/a.png"


class TestNote:
    """Tests for Note model."""

    def test_wire_aliases(self):
        note = Note.model_validate(
            {
                "id": "n1",
                "user_id": AUTHOR,
                "title": "T",
                "images": None,
                "product_tags": None,
                "created_at": "2024-05-01T10:00:00",
                "profiles": {"id": AUTHOR, "username": "author"},
            }
        )
        assert note.images == []
        assert note.tags == []
        assert note.author.username == "author"
        assert note.created_at.tzinfo == timezone.utc

    def test_title_required(self):
        with pytest.raises(ValidationError):
            Note.model_validate({"id": "n1", "user_id": AUTHOR})


class TestComment:
    """Tests for Comment model."""

    def test_override_dump_uses_wire_names(self):
        comment = Comment(id="c1", note_id="n1", user_id=ME, text="hi")
        dumped = comment.to_override()

        assert dumped["content"] == "hi"
        assert "text" not in dumped
        assert Comment.model_validate(dumped) == comment


class TestMessage:
    """Tests for Message model."""

    def test_counterpart_from_either_side(self):
        message = Message.model_validate(
            {
                "id": "m1",
                "sender_id": ME,
                "receiver_id": AUTHOR,
                "content": "hi",
                "created_at": "2024-05-01T10:00:00Z",
                "sender": {"id": ME},
                "receiver": {"id": AUTHOR, "username": "author"},
            }
        )
        assert message.counterpart_id(ME) == AUTHOR
        assert message.counterpart_id(AUTHOR) == ME
        assert message.counterpart(ME).username == "author"


class TestResults:
    """Tests for controller result models."""

    def test_mutation_result_ok(self):
        assert MutationResult(outcome=MutationOutcome.APPLIED, field="is_liked").ok
        assert not MutationResult(outcome=MutationOutcome.REVERTED, field="is_liked").ok

    def test_conversation_is_frozen(self):
        conversation = Conversation(
            counterpart_id=AUTHOR,
            counterpart=Profile(id=AUTHOR),
            last_message_text="hi",
            last_message_time="2024-05-01T10:00:00Z",
            last_sender_is_me=False,
        )
        with pytest.raises(ValidationError):
            conversation.unread = 3
