"""Remote data gateway for the Pixo Supabase backend.

This module provides an async HTTP/2 client over the PostgREST, RPC and
GoTrue endpoints with:
- Connection pooling and HTTP/2 multiplexing
- Retry with exponential backoff for idempotent reads
- Single-shot writes (a retried toggle insert could flip the state back)
- The insert-or-delete toggle protocol for likes, collects and follows
- Structured error handling (``GatewayError`` carries the database code)

Example:
    >>> from pixo_sync.gateway import SupabaseGateway
    >>>
    >>> async with SupabaseGateway() as gateway:
    ...     note = await gateway.get_note_by_id("0b6f4c1e-...")
    ...     now_liked = await gateway.toggle_like(user_id, note.id)
"""

import asyncio
import logging
import time
from typing import Any
from urllib.parse import quote

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from pixo_sync.config import settings
from pixo_sync.conversations import group_conversations
from pixo_sync.errors import (
    ConfigurationError,
    GatewayError,
    PixoSyncError,
    TransientGatewayError,
)
from pixo_sync.logging import logger
from pixo_sync.metrics import gateway_request_duration_seconds, gateway_requests_total
from pixo_sync.models import Comment, Conversation, Message, Note, Profile
from pixo_sync.types import AuthTokenResponse, CommentData, MessageData, NoteData

# =============================================================================
# Select Clauses
# =============================================================================

PROFILE_EMBED = "profiles:user_id(id,username,display_name,avatar_url)"
NOTE_SELECT = f"*,{PROFILE_EMBED}"
NOTE_DETAIL_SELECT = "*,profiles:user_id(id,username,display_name,avatar_url,followers_count)"
COMMENT_SELECT = f"*,{PROFILE_EMBED}"
CONVERSATION_SELECT = (
    "*,sender:sender_id(id,username,avatar_url),receiver:receiver_id(id,username,avatar_url)"
)

SINGLE_OBJECT = "application/vnd.pgrst.object+json"


# =============================================================================
# Supabase Gateway
# =============================================================================


class SupabaseGateway:
    """Async client for the Pixo backend tables and RPCs.

    Args:
        url: Supabase project URL (defaults to settings.supabase_url)
        anon_key: Public anon key (defaults to settings.supabase_anon_key)
        access_token: Signed-in user's JWT; the anon key is used when None
        max_retries: Attempts for idempotent reads (defaults to settings.max_retries)
        pool_limits: Custom httpx connection pool limits
        timeout: Custom httpx timeout configuration
        wait: Tenacity wait strategy between read retries
        transport: Optional httpx transport (used by tests)

    Raises:
        ConfigurationError: If the URL or anon key is missing
    """

    def __init__(
        self,
        url: str | None = None,
        anon_key: str | None = None,
        access_token: str | None = None,
        max_retries: int | None = None,
        pool_limits: httpx.Limits | None = None,
        timeout: httpx.Timeout | None = None,
        wait: wait_base | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = (url or settings.supabase_url or "").rstrip("/")
        self._anon_key = anon_key or settings.supabase_anon_key
        if not self._url or not self._anon_key:
            raise ConfigurationError(
                "SUPABASE_URL and SUPABASE_ANON_KEY must be set to reach the backend"
            )

        self._access_token = access_token
        self._max_retries = max_retries or settings.max_retries
        self._wait = wait or (
            wait_exponential(multiplier=0.5, min=0.5, max=8) + wait_random(0, 0.5)
        )
        self._transport = transport

        self._limits = pool_limits or httpx.Limits(
            max_connections=20,
            max_keepalive_connections=10,
            keepalive_expiry=30.0,
        )
        self._timeout = timeout or httpx.Timeout(
            timeout=settings.request_timeout,
            connect=10.0,
        )

        self._client: httpx.AsyncClient | None = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Lazy initialization of the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._url,
                limits=self._limits,
                timeout=self._timeout,
                http2=self._transport is None,
                transport=self._transport,
                headers={
                    "apikey": self._anon_key,
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def __aenter__(self) -> "SupabaseGateway":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close all connections."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def set_access_token(self, access_token: str | None) -> None:
        """Act as the given user (None reverts to the anon role)."""
        self._access_token = access_token

    @property
    def is_authenticated(self) -> bool:
        return self._access_token is not None

    # -------------------------------------------------------------------------
    # HTTP plumbing
    # -------------------------------------------------------------------------

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token or self._anon_key}"}

    async def _do_request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Perform one HTTP request and decode the body.

        Raises:
            TransientGatewayError: For retryable failures
            GatewayError: For any other non-2xx response
        """
        client = await self._ensure_client()

        try:
            resp = await client.request(
                method,
                path,
                params=params,
                json=json,
                headers={**self._auth_headers(), **(headers or {})},
            )
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            raise TransientGatewayError(f"Network/timeout error: {exc}") from exc

        if resp.status_code == 429 or 500 <= resp.status_code < 600:
            raise TransientGatewayError(f"HTTP {resp.status_code}")

        if resp.status_code >= 400:
            try:
                payload = resp.json()
            except ValueError:
                payload = resp.text
            raise GatewayError.from_payload(resp.status_code, payload)

        if resp.status_code == 204 or not resp.content:
            return None

        try:
            return resp.json()
        except ValueError as exc:
            raise TransientGatewayError(f"Invalid JSON: {exc}") from exc

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Send a request, retrying only idempotent reads, and record metrics."""
        start = time.perf_counter()
        status = "success"

        try:
            if method == "GET":
                async for attempt in AsyncRetrying(
                    reraise=True,
                    stop=stop_after_attempt(self._max_retries),
                    wait=self._wait,
                    retry=retry_if_exception_type(TransientGatewayError),
                    before_sleep=before_sleep_log(logging.getLogger(__name__), logging.WARNING),
                ):
                    with attempt:
                        return await self._do_request(
                            method, path, params=params, json=json, headers=headers
                        )
            return await self._do_request(
                method, path, params=params, json=json, headers=headers
            )
        except GatewayError as exc:
            status = "conflict" if exc.is_unique_violation else "error"
            raise
        except TransientGatewayError:
            status = "transient"
            raise
        finally:
            gateway_requests_total.labels(operation=operation, status=status).inc()
            gateway_request_duration_seconds.labels(operation=operation).observe(
                time.perf_counter() - start
            )

    async def _select(
        self,
        table: str,
        *,
        operation: str,
        select: str = "*",
        single: bool = False,
        **filters: Any,
    ) -> Any:
        params = {"select": select, **filters}
        headers = {"Accept": SINGLE_OBJECT} if single else None
        return await self._request(
            "GET", f"/rest/v1/{table}", operation=operation, params=params, headers=headers
        )

    async def _insert(
        self,
        table: str,
        row: dict[str, Any],
        *,
        operation: str,
        select: str | None = None,
    ) -> Any:
        if select is None:
            return await self._request(
                "POST",
                f"/rest/v1/{table}",
                operation=operation,
                json=row,
                headers={"Prefer": "return=minimal"},
            )
        return await self._request(
            "POST",
            f"/rest/v1/{table}",
            operation=operation,
            params={"select": select},
            json=row,
            headers={"Prefer": "return=representation", "Accept": SINGLE_OBJECT},
        )

    async def _delete(self, table: str, *, operation: str, **filters: Any) -> None:
        await self._request(
            "DELETE", f"/rest/v1/{table}", operation=operation, params=filters
        )

    async def _rpc(self, function: str, args: dict[str, Any], *, operation: str) -> Any:
        return await self._request(
            "POST", f"/rest/v1/rpc/{function}", operation=operation, json=args
        )

    async def _bump_counter(self, function: str, note_id: str) -> None:
        """Call a denormalized counter RPC; failures are logged, not raised.

        The join row is the source of truth; a counter that misses one
        update only drifts.
        """
        try:
            await self._rpc(function, {"note_id": note_id}, operation=function)
        except (PixoSyncError, httpx.HTTPError) as exc:
            logger.warning(f"Counter RPC {function} failed for note {note_id}: {exc}")

    # -------------------------------------------------------------------------
    # Toggle protocol
    # -------------------------------------------------------------------------

    async def _toggle(
        self,
        table: str,
        row: dict[str, Any],
        *,
        operation: str,
        increment: str | None = None,
        decrement: str | None = None,
        note_id: str | None = None,
    ) -> bool:
        """Insert the join row, or delete it if it already exists.

        Returns:
            True if the relationship is now active, False if it was removed

        Raises:
            GatewayError: For any error other than the uniqueness conflict
        """
        try:
            await self._insert(table, row, operation=operation)
        except GatewayError as exc:
            if not exc.is_unique_violation:
                raise
            await self._delete(
                table,
                operation=f"{operation}_undo",
                **{column: f"eq.{value}" for column, value in row.items()},
            )
            if decrement and note_id:
                await self._bump_counter(decrement, note_id)
            logger.debug(f"{operation}: {row} removed")
            return False

        if increment and note_id:
            await self._bump_counter(increment, note_id)
        logger.debug(f"{operation}: {row} inserted")
        return True

    async def toggle_like(self, user_id: str, note_id: str) -> bool:
        """Like or unlike a note; returns the new liked state."""
        return await self._toggle(
            "likes",
            {"user_id": user_id, "note_id": note_id},
            operation="toggle_like",
            increment="increment_likes",
            decrement="decrement_likes",
            note_id=note_id,
        )

    async def toggle_collect(self, user_id: str, note_id: str) -> bool:
        """Collect or uncollect a note; returns the new collected state."""
        return await self._toggle(
            "collects",
            {"user_id": user_id, "note_id": note_id},
            operation="toggle_collect",
            increment="increment_collects",
            decrement="decrement_collects",
            note_id=note_id,
        )

    async def toggle_follow(self, follower_id: str, following_id: str) -> bool:
        """Follow or unfollow a user; returns the new following state."""
        return await self._toggle(
            "follows",
            {"follower_id": follower_id, "following_id": following_id},
            operation="toggle_follow",
        )

    # -------------------------------------------------------------------------
    # Notes
    # -------------------------------------------------------------------------

    async def get_notes(self, limit: int = 20, offset: int = 0) -> list[Note]:
        """Fetch the feed, newest first."""
        rows: list[NoteData] = await self._select(
            "notes",
            operation="get_notes",
            select=NOTE_SELECT,
            order="created_at.desc",
            limit=limit,
            offset=offset,
        )
        return [Note.model_validate(row) for row in rows or []]

    async def get_note_by_id(self, note_id: str) -> Note:
        """Fetch one note with its author.

        Raises:
            NotFoundError: If no note has this id
        """
        row = await self._select(
            "notes",
            operation="get_note_by_id",
            select=NOTE_DETAIL_SELECT,
            single=True,
            id=f"eq.{note_id}",
        )
        return Note.model_validate(row)

    async def get_user_notes(self, user_id: str) -> list[Note]:
        rows = await self._select(
            "notes",
            operation="get_user_notes",
            select=NOTE_SELECT,
            user_id=f"eq.{user_id}",
            order="created_at.desc",
        )
        return [Note.model_validate(row) for row in rows or []]

    async def search_notes(self, query: str, limit: int = 20) -> list[Note]:
        """Case-insensitive title/content search."""
        pattern = query.replace(",", " ").replace("(", " ").replace(")", " ").strip()
        rows = await self._select(
            "notes",
            operation="search_notes",
            select=NOTE_SELECT,
            order="created_at.desc",
            limit=limit,
            **{"or": f"(title.ilike.*{pattern}*,content.ilike.*{pattern}*)"},
        )
        return [Note.model_validate(row) for row in rows or []]

    async def create_note(
        self,
        user_id: str,
        title: str,
        images: list[str],
        content: str | None = None,
        category: str | None = None,
        location: str | None = None,
        product_tags: list[str] | None = None,
    ) -> Note:
        row = await self._insert(
            "notes",
            {
                "user_id": user_id,
                "title": title,
                "content": content,
                "images": images,
                "category": category,
                "location": location,
                "product_tags": product_tags,
            },
            operation="create_note",
            select="*",
        )
        return Note.model_validate(row)

    async def delete_note(self, note_id: str) -> None:
        await self._delete("notes", operation="delete_note", id=f"eq.{note_id}")

    # -------------------------------------------------------------------------
    # Comments
    # -------------------------------------------------------------------------

    async def get_comments(self, note_id: str) -> list[Comment]:
        """Comments on a note, newest first."""
        rows = await self._select(
            "comments",
            operation="get_comments",
            select=COMMENT_SELECT,
            note_id=f"eq.{note_id}",
            order="created_at.desc",
        )
        return [Comment.model_validate(row) for row in rows or []]

    async def add_comment(self, user_id: str, note_id: str, content: str) -> Comment:
        """Insert a comment and bump the note's comment counter."""
        row: CommentData = await self._insert(
            "comments",
            {"user_id": user_id, "note_id": note_id, "content": content},
            operation="add_comment",
            select=COMMENT_SELECT,
        )
        await self._bump_counter("increment_comments", note_id)
        return Comment.model_validate(row)

    # -------------------------------------------------------------------------
    # Interaction state
    # -------------------------------------------------------------------------

    async def _row_exists(self, table: str, operation: str, **filters: Any) -> bool:
        rows = await self._select(table, operation=operation, select="id", limit=1, **filters)
        return bool(rows)

    async def check_user_interactions(self, user_id: str, note_id: str) -> dict[str, bool]:
        """Whether ``user_id`` has liked / collected ``note_id``."""
        liked, collected = await asyncio.gather(
            self._row_exists(
                "likes", "check_like", user_id=f"eq.{user_id}", note_id=f"eq.{note_id}"
            ),
            self._row_exists(
                "collects", "check_collect", user_id=f"eq.{user_id}", note_id=f"eq.{note_id}"
            ),
        )
        return {"is_liked": liked, "is_collected": collected}

    async def get_interacted_note_ids(
        self, user_id: str, note_ids: list[str]
    ) -> dict[str, set[str]]:
        """Which of ``note_ids`` ``user_id`` has liked / collected, in two queries."""
        if not note_ids:
            return {"liked": set(), "collected": set()}
        in_filter = f"in.({','.join(note_ids)})"
        liked, collected = await asyncio.gather(
            self._select(
                "likes",
                operation="get_liked_note_ids",
                select="note_id",
                user_id=f"eq.{user_id}",
                note_id=in_filter,
            ),
            self._select(
                "collects",
                operation="get_collected_note_ids",
                select="note_id",
                user_id=f"eq.{user_id}",
                note_id=in_filter,
            ),
        )
        return {
            "liked": {row["note_id"] for row in liked or []},
            "collected": {row["note_id"] for row in collected or []},
        }

    async def get_follow_status(self, follower_id: str, following_id: str) -> bool:
        """Whether ``follower_id`` follows ``following_id``; errors read as False."""
        try:
            rows = await self._select(
                "follows",
                operation="get_follow_status",
                follower_id=f"eq.{follower_id}",
                following_id=f"eq.{following_id}",
                limit=1,
            )
        except (PixoSyncError, httpx.HTTPError) as exc:
            logger.error(f"Error checking follow status: {exc}")
            return False
        return bool(rows)

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    async def get_profile(self, user_id: str) -> Profile:
        """Fetch a profile.

        Raises:
            NotFoundError: If the profile does not exist
        """
        row = await self._select(
            "profiles", operation="get_profile", single=True, id=f"eq.{user_id}"
        )
        return Profile.model_validate(row)

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    async def get_chat_messages(self, user_id: str, other_user_id: str) -> list[Message]:
        """Both directions of a one-to-one thread, oldest first."""
        rows = await self._select(
            "messages",
            operation="get_chat_messages",
            order="created_at.asc",
            **{
                "or": (
                    f"(and(sender_id.eq.{user_id},receiver_id.eq.{other_user_id}),"
                    f"and(sender_id.eq.{other_user_id},receiver_id.eq.{user_id}))"
                )
            },
        )
        return [Message.model_validate(row) for row in rows or []]

    async def send_message(self, sender_id: str, receiver_id: str, content: str) -> Message:
        row = await self._insert(
            "messages",
            {"sender_id": sender_id, "receiver_id": receiver_id, "content": content},
            operation="send_message",
            select="*",
        )
        return Message.model_validate(row)

    async def get_user_conversations(
        self, user_id: str, limit: int | None = None
    ) -> list[Conversation]:
        """Fetch every message involving ``user_id`` and group by counterpart."""
        rows: list[MessageData] = await self._select(
            "messages",
            operation="get_user_conversations",
            select=CONVERSATION_SELECT,
            order="created_at.desc",
            limit=limit or settings.conversation_fetch_limit,
            **{"or": f"(sender_id.eq.{user_id},receiver_id.eq.{user_id})"},
        )
        messages = [Message.model_validate(row) for row in rows or []]
        return group_conversations(messages, user_id)

    # -------------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------------

    async def sign_in_with_password(self, email: str, password: str) -> AuthTokenResponse:
        """Exchange credentials for a token pair.

        Raises:
            GatewayError: If the credentials are rejected
        """
        return await self._request(
            "POST",
            "/auth/v1/token",
            operation="sign_in",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )

    async def refresh_session(self, refresh_token: str) -> AuthTokenResponse:
        return await self._request(
            "POST",
            "/auth/v1/token",
            operation="refresh_session",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )

    async def sign_up(self, email: str, password: str, username: str) -> AuthTokenResponse:
        """Create an auth user and its profile row."""
        data = await self._request(
            "POST",
            "/auth/v1/signup",
            operation="sign_up",
            json={"email": email, "password": password},
        )
        data = data or {}
        # Without email confirmation GoTrue returns the user at the top level
        user = data.get("user") or data
        if not user.get("id"):
            raise GatewayError(400, message="Failed to create user")

        previous_token = self._access_token
        if data.get("access_token"):
            self._access_token = data["access_token"]
        try:
            await self._insert(
                "profiles",
                {
                    "id": user["id"],
                    "username": username,
                    "display_name": username,
                    "avatar_url": (
                        f"https://ui-avatars.com/api/?name={quote(username)}&background=random"
                    ),
                },
                operation="create_profile",
            )
        finally:
            self._access_token = previous_token
        return data

    async def sign_out(self) -> None:
        """Revoke the current access token server-side."""
        if self._access_token is None:
            return
        await self._request("POST", "/auth/v1/logout", operation="sign_out")
        self._access_token = None


__all__ = [
    "SupabaseGateway",
    "NOTE_SELECT",
    "COMMENT_SELECT",
    "CONVERSATION_SELECT",
]
