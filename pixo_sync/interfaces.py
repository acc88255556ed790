"""Protocol interfaces for dependency injection.

Controllers depend on these structural contracts rather than on the concrete
``SupabaseGateway``, ``OverrideStore`` and websocket transport, so tests can
substitute in-memory fakes without inheritance.

Example:
    >>> from pixo_sync.interfaces import IRealtimeTransport
    >>> class FakeTransport:
    ...     async def send(self, frame): ...
    ...     async def recv(self): ...
    ...     async def close(self): ...
    >>> isinstance(FakeTransport(), IRealtimeTransport)
    True
"""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from pixo_sync.models import Comment, Conversation, Message, Note, Notice, Profile


@runtime_checkable
class IRemoteGateway(Protocol):
    """Remote data gateway contract used by the reconciliation layer.

    Toggle methods follow the insert-or-delete protocol and return the new
    state. Any error other than the uniqueness conflict propagates.
    """

    async def get_note_by_id(self, note_id: str) -> Note:
        """Raises NotFoundError if the note does not exist."""
        ...

    async def get_comments(self, note_id: str) -> list[Comment]:
        """Comments newest first."""
        ...

    async def add_comment(self, user_id: str, note_id: str, content: str) -> Comment:
        ...

    async def delete_note(self, note_id: str) -> None:
        ...

    async def toggle_like(self, user_id: str, note_id: str) -> bool:
        ...

    async def toggle_collect(self, user_id: str, note_id: str) -> bool:
        ...

    async def toggle_follow(self, follower_id: str, following_id: str) -> bool:
        ...

    async def check_user_interactions(self, user_id: str, note_id: str) -> dict[str, bool]:
        """Returns ``{"is_liked": bool, "is_collected": bool}``."""
        ...

    async def get_interacted_note_ids(
        self, user_id: str, note_ids: list[str]
    ) -> dict[str, set[str]]:
        """Returns ``{"liked": ids, "collected": ids}`` restricted to ``note_ids``."""
        ...

    async def get_follow_status(self, follower_id: str, following_id: str) -> bool:
        ...

    async def get_profile(self, user_id: str) -> Profile:
        ...

    async def get_user_notes(self, user_id: str) -> list[Note]:
        ...

    async def get_chat_messages(self, user_id: str, other_user_id: str) -> list[Message]:
        ...

    async def send_message(self, sender_id: str, receiver_id: str, content: str) -> Message:
        ...

    async def get_user_conversations(self, user_id: str) -> list[Conversation]:
        ...


@runtime_checkable
class IOverrideStore(Protocol):
    """Local override store contract.

    Reads never raise. Writes raise ``OverrideStoreError``.
    """

    async def get_array(self, key: str) -> list[str]:
        ...

    async def set_array(self, key: str, values: list[str]) -> None:
        ...

    async def get_flag(self, key: str) -> bool:
        ...

    async def set_flag(self, key: str, value: bool) -> None:
        ...

    async def get_json(self, key: str) -> list[dict[str, Any]]:
        ...

    async def toggle_membership(self, key: str, member: str) -> bool:
        ...

    async def toggle_flag(self, key: str) -> bool:
        ...

    async def prepend_json(self, key: str, item: dict[str, Any]) -> list[dict[str, Any]]:
        ...


@runtime_checkable
class IRealtimeTransport(Protocol):
    """A connected realtime socket exchanging decoded JSON frames.

    ``recv`` raises ``ConnectionError`` (or a subclass) once the socket is
    closed, and ``ValueError`` for a frame that is not valid JSON. A decoded
    frame is not guaranteed to be an object.
    """

    async def send(self, frame: dict[str, Any]) -> None:
        ...

    async def recv(self) -> Any:
        ...

    async def close(self) -> None:
        ...


# Opens a transport for the given access token
TransportFactory = Callable[[str | None], Awaitable[IRealtimeTransport]]

# Receives user-facing notices (toasts)
Notifier = Callable[[Notice], None]

# Receives messages pushed by the realtime listener
MessageHandler = Callable[[Message], Awaitable[None] | None]


__all__ = [
    "IRemoteGateway",
    "IOverrideStore",
    "IRealtimeTransport",
    "TransportFactory",
    "Notifier",
    "MessageHandler",
]
