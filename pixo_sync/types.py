"""Type definitions for pixo-sync.

TypedDict shapes of the raw rows returned by the Supabase REST API and of the
frames exchanged on the realtime socket. Pydantic models in
``pixo_sync.models`` validate these into domain objects.

Example:
    >>> from pixo_sync.types import MessageData
    >>> row: MessageData = {
    ...     "id": "7d9f7c1e-2f0a-4c51-8a0d-3c4f5b6a7e8d",
    ...     "sender_id": "a0a0a0a0-0000-4000-8000-000000000001",
    ...     "receiver_id": "b0b0b0b0-0000-4000-8000-000000000002",
    ...     "content": "Is this still available?",
    ...     "created_at": "2024-05-01T10:00:00+00:00",
    ... }
"""

from typing import Any, NotRequired, Required, TypedDict


# =============================================================================
# Table Rows
# =============================================================================


class ProfileData(TypedDict, total=False):
    """Row of the ``profiles`` table (or an embedded profile)."""

    id: Required[str]
    username: NotRequired[str | None]
    display_name: NotRequired[str | None]
    avatar_url: NotRequired[str | None]
    bio: NotRequired[str | None]
    followers_count: NotRequired[int]
    following_count: NotRequired[int]
    likes_count: NotRequired[int]
    is_verified: NotRequired[bool]


class NoteData(TypedDict, total=False):
    """Row of the ``notes`` table with the author embedded as ``profiles``."""

    id: Required[str]
    user_id: Required[str]
    title: Required[str]
    content: NotRequired[str | None]
    images: NotRequired[list[str]]
    category: NotRequired[str | None]
    location: NotRequired[str | None]
    product_tags: NotRequired[list[str] | None]
    likes_count: NotRequired[int]
    collects_count: NotRequired[int]
    comments_count: NotRequired[int]
    created_at: NotRequired[str]
    profiles: NotRequired[ProfileData | None]


class CommentData(TypedDict, total=False):
    """Row of the ``comments`` table with the author embedded as ``profiles``."""

    id: Required[str]
    note_id: Required[str]
    user_id: Required[str]
    content: Required[str]
    created_at: NotRequired[str]
    profiles: NotRequired[ProfileData | None]


class MessageData(TypedDict, total=False):
    """Row of the ``messages`` table, optionally with embedded parties."""

    id: Required[str]
    sender_id: Required[str]
    receiver_id: Required[str]
    content: Required[str]
    created_at: Required[str]
    sender: NotRequired[ProfileData | None]
    receiver: NotRequired[ProfileData | None]


# =============================================================================
# Auth
# =============================================================================


class AuthTokenResponse(TypedDict, total=False):
    """GoTrue ``/token`` response body."""

    access_token: Required[str]
    refresh_token: Required[str]
    expires_in: NotRequired[int]
    token_type: NotRequired[str]
    user: Required[dict[str, Any]]


# =============================================================================
# Realtime Frames
# =============================================================================


class PhoenixFrame(TypedDict):
    """Phoenix channel frame (vsn 1.0.0 JSON object encoding)."""

    topic: str
    event: str
    payload: dict[str, Any]
    ref: str | None


class PostgresChangeData(TypedDict, total=False):
    """``payload.data`` of a ``postgres_changes`` frame."""

    type: Required[str]
    schema: Required[str]
    table: Required[str]
    commit_timestamp: NotRequired[str]
    record: Required[dict[str, Any]]
    old_record: NotRequired[dict[str, Any]]

