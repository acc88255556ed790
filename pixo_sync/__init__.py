"""pixo-sync - interaction reconciliation for a social-commerce client.

This package merges remote notes and profiles, a bundled seed dataset and a
local override store into consistent view models, with optimistic likes,
collects, follows and comments, rollback on failure, and realtime delivery
of incoming chat messages.

Example:
    >>> from pixo_sync import NoteDetailController, OverrideStore, SeedCatalog, UserSession
    >>> import asyncio
    >>>
    >>> async def main():
    ...     with OverrideStore() as store:
    ...         session = UserSession(user_id="me")
    ...         note = NoteDetailController("n1", session, None, store, SeedCatalog.default())
    ...         await note.load()
    ...         await note.toggle_like()
    >>>
    >>> asyncio.run(main())
"""

from pixo_sync.config import settings
from pixo_sync.conversations import ChatController, ConversationListController, group_conversations
from pixo_sync.errors import (
    ConfigurationError,
    GatewayError,
    NotFoundError,
    OverrideStoreError,
    PixoSyncError,
    TransientGatewayError,
)
from pixo_sync.gateway import SupabaseGateway
from pixo_sync.identifiers import EntityRef, RemoteRef, SeedRef, classify, is_canonical
from pixo_sync.models import (
    Comment,
    Conversation,
    Message,
    MutationOutcome,
    MutationResult,
    Note,
    NoteView,
    Notice,
    Profile,
    UserView,
    ViewState,
)
from pixo_sync.realtime import RealtimeListener
from pixo_sync.reconcile import (
    FeedController,
    NoteDetailController,
    UserProfileController,
    load_feed,
)
from pixo_sync.seed import SeedCatalog
from pixo_sync.session import UserSession
from pixo_sync.store import OverrideStore

__version__ = "0.1.0"

__all__ = [
    # Main components
    "FeedController",
    "NoteDetailController",
    "UserProfileController",
    "ConversationListController",
    "ChatController",
    "RealtimeListener",
    "SupabaseGateway",
    "OverrideStore",
    "SeedCatalog",
    "UserSession",
    "load_feed",
    "group_conversations",
    # Identifiers
    "EntityRef",
    "RemoteRef",
    "SeedRef",
    "classify",
    "is_canonical",
    # Configuration
    "settings",
    # Errors
    "PixoSyncError",
    "ConfigurationError",
    "GatewayError",
    "NotFoundError",
    "TransientGatewayError",
    "OverrideStoreError",
    # Models
    "Profile",
    "Note",
    "Comment",
    "Message",
    "Conversation",
    "NoteView",
    "UserView",
    "Notice",
    "MutationResult",
    "MutationOutcome",
    "ViewState",
]
