"""Conversation grouping and chat controllers.

Conversations are not stored. They are derived on every load by grouping the
signed-in user's messages by counterpart.

Example:
    >>> conversations = group_conversations(messages_newest_first, self_id="me")
    >>> [c.counterpart_id for c in conversations]   # most recent first
    ['x', 'y']
"""

from collections.abc import Iterable
from typing import Optional

import httpx

from pixo_sync.errors import PixoSyncError
from pixo_sync.interfaces import IRemoteGateway, Notifier
from pixo_sync.logging import logger
from pixo_sync.metrics import mutations_total
from pixo_sync.models import (
    Conversation,
    Message,
    MutationOutcome,
    MutationResult,
    Notice,
    NoticeLevel,
    ViewState,
)
from pixo_sync.session import UserSession


def group_conversations(messages: Iterable[Message], self_id: str) -> list[Conversation]:
    """Reduce time-descending messages to one conversation per counterpart.

    ``messages`` must be ordered newest first: the first message seen for a
    counterpart is taken as its latest, so the output is ordered by most
    recent activity without sorting. Messages whose counterpart profile is
    not embedded are skipped.
    """
    conversations: dict[str, Conversation] = {}

    for message in messages:
        counterpart = message.counterpart(self_id)
        if counterpart is None:
            continue
        if counterpart.id in conversations:
            continue
        conversations[counterpart.id] = Conversation(
            counterpart_id=counterpart.id,
            counterpart=counterpart,
            last_message_text=message.content,
            last_message_time=message.created_at,
            last_sender_is_me=message.sender_id == self_id,
            unread=0,
        )

    return list(conversations.values())


def _emit(notifier: Optional[Notifier], notice: Notice) -> None:
    if notifier is None:
        logger.info(f"[{notice.level}] {notice.message}")
        return
    notifier(notice)


class ConversationListController:
    """Conversation list for the signed-in user.

    A realtime insert simply triggers a full reload.
    """

    def __init__(
        self,
        session: UserSession,
        gateway: IRemoteGateway,
        notifier: Optional[Notifier] = None,
    ):
        self.session = session
        self.gateway = gateway
        self.notifier = notifier
        self.state = ViewState.LOADING
        self.conversations: list[Conversation] = []

    async def load(self) -> list[Conversation]:
        if not self.session.is_signed_in:
            self.conversations = []
            self.state = ViewState.READY
            return self.conversations

        try:
            self.conversations = await self.gateway.get_user_conversations(
                self.session.user_id
            )
        except (PixoSyncError, httpx.HTTPError) as exc:
            logger.error(f"Loading conversations failed: {exc}")
            self.state = ViewState.FAILED
            _emit(
                self.notifier,
                Notice(level=NoticeLevel.ERROR, message="Couldn't load your messages"),
            )
            return self.conversations

        self.state = ViewState.READY
        return self.conversations

    async def on_message_inserted(self, message: Message) -> None:
        logger.debug(f"New message {message.id}; reloading conversations")
        await self.load()


class ChatController:
    """One-to-one chat thread between the signed-in user and ``counterpart_id``."""

    def __init__(
        self,
        counterpart_id: str,
        session: UserSession,
        gateway: IRemoteGateway,
        notifier: Optional[Notifier] = None,
    ):
        self.counterpart_id = counterpart_id
        self.session = session
        self.gateway = gateway
        self.notifier = notifier
        self.state = ViewState.LOADING
        self.messages: list[Message] = []

    def _contains(self, message_id: str) -> bool:
        return any(m.id == message_id for m in self.messages)

    async def load(self) -> list[Message]:
        """Fetch the thread, oldest first."""
        if not self.session.is_signed_in:
            self.messages = []
            self.state = ViewState.READY
            return self.messages

        try:
            self.messages = await self.gateway.get_chat_messages(
                self.session.user_id, self.counterpart_id
            )
        except (PixoSyncError, httpx.HTTPError) as exc:
            logger.error(f"Loading chat with {self.counterpart_id} failed: {exc}")
            self.state = ViewState.FAILED
            _emit(
                self.notifier,
                Notice(level=NoticeLevel.ERROR, message="Couldn't load this chat"),
            )
            return self.messages

        self.state = ViewState.READY
        return self.messages

    async def send(self, text: str) -> MutationResult:
        """Persist a message and append the stored row."""
        if not text or not text.strip():
            return MutationResult(outcome=MutationOutcome.REJECTED_INVALID, field="messages")

        if not self.session.is_signed_in:
            _emit(
                self.notifier,
                Notice(
                    level=NoticeLevel.INFO,
                    message="Sign in to send messages",
                    action="sign_in",
                ),
            )
            return MutationResult(
                outcome=MutationOutcome.REJECTED_SIGNED_OUT, field="messages"
            )

        try:
            message = await self.gateway.send_message(
                self.session.user_id, self.counterpart_id, text.strip()
            )
        except (PixoSyncError, httpx.HTTPError) as exc:
            logger.error(f"Sending message to {self.counterpart_id} failed: {exc}")
            mutations_total.labels(action="message", source="remote", outcome="reverted").inc()
            _emit(
                self.notifier,
                Notice(level=NoticeLevel.ERROR, message="Message not sent. Try again."),
            )
            return MutationResult(
                outcome=MutationOutcome.REVERTED, field="messages", message=str(exc)
            )

        if not self._contains(message.id):
            self.messages.append(message)
        mutations_total.labels(action="message", source="remote", outcome="applied").inc()
        return MutationResult(outcome=MutationOutcome.APPLIED, field="messages", value=message.id)

    async def on_message_inserted(self, message: Message) -> bool:
        """Append a pushed message if it belongs to this thread.

        Returns:
            True if the message was appended
        """
        if message.sender_id != self.counterpart_id:
            return False
        if message.receiver_id != self.session.user_id:
            return False
        if self._contains(message.id):
            return False
        self.messages.append(message)
        return True


__all__ = [
    "group_conversations",
    "ConversationListController",
    "ChatController",
]
