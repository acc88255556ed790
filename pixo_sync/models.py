"""Data models for pixo-sync.

This module defines both Pydantic models (for backend rows, seed entities
and view models) and the SQLModel table backing the local override store.

Models are organized into three sections:
1. Pydantic models for backend rows and seed entities
2. View models and controller results
3. SQLModel table for on-device persistence
"""

from datetime import datetime
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlmodel import Field as SQLField
from sqlmodel import SQLModel

from pixo_sync.utils import parse_datetime

DEFAULT_AVATAR = "https://ui-avatars.com/api/?name=User"

# =============================================================================
# Section 1: Backend Rows and Seed Entities
# =============================================================================


class Profile(BaseModel):
    """Public profile of a user.

    Attributes:
        id: User ID (UUID for remote users, short string for seed users)
        username: Handle
        display_name: Display name
        avatar_url: Avatar URL
        bio: Short bio
        followers_count: Denormalized follower counter
        following_count: Denormalized following counter
        likes_count: Likes received
        is_verified: Verified badge
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    username: str = "Unknown"
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    followers_count: int = 0
    following_count: int = 0
    likes_count: int = 0
    is_verified: bool = False

    @field_validator("username", mode="before")
    @classmethod
    def _default_username(cls, v: Optional[str]) -> str:
        return v or "Unknown"

    @field_validator("followers_count", "following_count", "likes_count", mode="before")
    @classmethod
    def _null_counter(cls, v: Optional[int]) -> int:
        return v or 0

    @property
    def avatar(self) -> str:
        """Avatar URL with the placeholder fallback."""
        return self.avatar_url or DEFAULT_AVATAR


class Note(BaseModel):
    """A note (feed post), remote or seed.

    Attributes:
        id: Note ID
        user_id: Author ID
        title: Title
        content: Body text
        images: Media URLs
        tags: Hashtags
        location: Optional location label
        product_id: Linked product for shoppable notes
        likes_count: Like counter at load time
        collects_count: Collect counter at load time
        comments_count: Comment counter at load time
        created_at: Creation timestamp (UTC)
        author: Embedded author profile
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    user_id: str
    title: str
    content: Optional[str] = None
    images: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list, alias="product_tags")
    location: Optional[str] = None
    product_id: Optional[str] = None
    likes_count: int = 0
    collects_count: int = 0
    comments_count: int = 0
    created_at: Optional[datetime] = None
    author: Optional[Profile] = Field(default=None, alias="profiles")

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, v: Optional[str]) -> Optional[datetime]:
        return parse_datetime(v)

    @field_validator("images", "tags", mode="before")
    @classmethod
    def _null_list(cls, v: Optional[list[str]]) -> list[str]:
        return v or []

    @field_validator("likes_count", "collects_count", "comments_count", mode="before")
    @classmethod
    def _null_counter(cls, v: Optional[int]) -> int:
        return v or 0


class Comment(BaseModel):
    """A comment on a note.

    Attributes:
        id: Comment ID
        note_id: Parent note ID
        user_id: Author ID
        text: Comment body (``content`` on the wire)
        created_at: Creation timestamp (UTC)
        author: Embedded author profile
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    note_id: str
    user_id: str
    text: str = Field(alias="content")
    created_at: Optional[datetime] = None
    author: Optional[Profile] = Field(default=None, alias="profiles")

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, v: Optional[str]) -> Optional[datetime]:
        return parse_datetime(v)

    def to_override(self) -> dict[str, Any]:
        """Serialize for storage under ``mock_comments_{noteId}``."""
        return self.model_dump(mode="json", by_alias=True)


class Message(BaseModel):
    """A direct message between two users.

    Attributes:
        id: Message ID
        sender_id: Sending user ID
        receiver_id: Receiving user ID
        content: Message text
        created_at: Creation timestamp (UTC)
        sender: Embedded sender profile (conversation listing only)
        receiver: Embedded receiver profile (conversation listing only)
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    sender_id: str
    receiver_id: str
    content: str
    created_at: datetime
    sender: Optional[Profile] = None
    receiver: Optional[Profile] = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, v: str | datetime) -> Optional[datetime]:
        return parse_datetime(v)

    def counterpart_id(self, self_id: str) -> str:
        """ID of the party that is not ``self_id``."""
        return self.sender_id if self_id == self.receiver_id else self.receiver_id

    def counterpart(self, self_id: str) -> Optional[Profile]:
        """Embedded profile of the party that is not ``self_id``."""
        return self.sender if self_id == self.receiver_id else self.receiver


class Conversation(BaseModel):
    """Derived chat summary, one per counterpart.

    ``unread`` is always 0: there is no read-receipt data to compute it from.
    """

    model_config = ConfigDict(frozen=True)

    counterpart_id: str
    counterpart: Profile
    last_message_text: str
    last_message_time: datetime
    last_sender_is_me: bool
    unread: int = 0


class InteractionState(BaseModel):
    """Per (user, entity) interaction flags."""

    model_config = ConfigDict(frozen=True)

    liked: bool = False
    collected: bool = False
    following: bool = False


# =============================================================================
# Section 2: View Models and Controller Results
# =============================================================================


class ViewState(StrEnum):
    """Lifecycle of an entity-detail controller."""

    LOADING = "loading"
    READY = "ready"
    NOT_FOUND = "not_found"
    FAILED = "failed"


class MutationOutcome(StrEnum):
    """What happened to a requested mutation."""

    APPLIED = "applied"
    REVERTED = "reverted"
    REJECTED_SIGNED_OUT = "rejected_signed_out"
    REJECTED_IN_FLIGHT = "rejected_in_flight"
    REJECTED_NOT_READY = "rejected_not_ready"
    REJECTED_INVALID = "rejected_invalid"
    REJECTED_SELF = "rejected_self"


class MutationResult(BaseModel):
    """Result of a toggle or comment action.

    Attributes:
        outcome: Final outcome
        field: View-model field the action targeted
        value: Value of that field after the action settled
        message: Optional human-readable explanation
    """

    model_config = ConfigDict(frozen=True)

    outcome: MutationOutcome
    field: str
    value: Any = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == MutationOutcome.APPLIED


class DeleteOutcome(BaseModel):
    """Result of deleting an entity from its detail view."""

    model_config = ConfigDict(frozen=True)

    navigate_away: bool
    persisted: bool
    message: Optional[str] = None


class NoticeLevel(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notice(BaseModel):
    """User-facing message (toast) emitted by a controller."""

    model_config = ConfigDict(frozen=True)

    level: NoticeLevel
    message: str
    action: Optional[str] = None


class NoteView(BaseModel):
    """Merged view model for a note detail view."""

    note: Note
    comments: list[Comment] = Field(default_factory=list)
    is_liked: bool = False
    is_collected: bool = False
    is_following: bool = False
    likes_count: int = 0
    collects_count: int = 0
    comments_count: int = 0

    @property
    def interaction(self) -> InteractionState:
        return InteractionState(
            liked=self.is_liked,
            collected=self.is_collected,
            following=self.is_following,
        )


class UserView(BaseModel):
    """Merged view model for a user profile view."""

    profile: Profile
    notes: list[Note] = Field(default_factory=list)
    is_following: bool = False
    followers_count: int = 0


# =============================================================================
# Section 3: SQLModel Table for the Override Store
# =============================================================================


class OverrideRow(SQLModel, table=True):
    """One key of the local override store.

    Attributes:
        key: Namespaced key, e.g. ``liked_mock_notes_{userId}`` (primary key)
        value: Raw string value (JSON array or ``"true"``/``"false"``)
        updated_at: ISO8601 UTC timestamp of the last write
    """

    __tablename__ = "overrides"  # type: ignore[assignment]

    key: str = SQLField(primary_key=True)
    value: str
    updated_at: str


__all__ = [
    "DEFAULT_AVATAR",
    "Profile",
    "Note",
    "Comment",
    "Message",
    "Conversation",
    "InteractionState",
    "ViewState",
    "MutationOutcome",
    "MutationResult",
    "DeleteOutcome",
    "NoticeLevel",
    "Notice",
    "NoteView",
    "UserView",
    "OverrideRow",
]
