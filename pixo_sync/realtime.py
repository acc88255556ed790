"""Realtime invalidation listener for incoming chat messages.

Joins a Supabase Realtime (Phoenix channel) topic filtered to inserts on the
``messages`` table addressed to the signed-in user, and dispatches each new
row to registered handlers (typically ``ChatController.on_message_inserted``
and ``ConversationListController.on_message_inserted``).

Delivery is at most once. There is no reconnect and no backoff: when the
socket drops, the read loop ends, ``closed_reason`` is set and a warning is
logged. Callers wanting durability must build a new listener.

Example:
    >>> listener = RealtimeListener(session)
    >>> listener.add_handler(chat.on_message_inserted)
    >>> async with listener:
    ...     await listener.wait_closed()
"""

import asyncio
import contextlib
import inspect
import itertools
import json
from typing import Any, Optional
from urllib.parse import urlencode

from pydantic import ValidationError
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from pixo_sync.config import settings
from pixo_sync.errors import ConfigurationError
from pixo_sync.interfaces import IRealtimeTransport, MessageHandler, TransportFactory
from pixo_sync.logging import logger
from pixo_sync.metrics import realtime_events_total
from pixo_sync.models import Message
from pixo_sync.session import UserSession
from pixo_sync.types import PhoenixFrame, PostgresChangeData
from pixo_sync.utils import safe_get

PHOENIX_VSN = "1.0.0"
MESSAGES_TABLE = "messages"


# =============================================================================
# Transport
# =============================================================================


class WebSocketTransport:
    """``IRealtimeTransport`` over a ``websockets`` client connection."""

    def __init__(self, connection: ClientConnection):
        self._connection = connection

    @classmethod
    async def open(
        cls,
        url: str | None = None,
        anon_key: str | None = None,
    ) -> "WebSocketTransport":
        """Connect to the realtime endpoint.

        Raises:
            ConfigurationError: If the backend URL or anon key is missing
        """
        anon_key = anon_key or settings.supabase_anon_key
        if url is None:
            if not settings.supabase_url:
                raise ConfigurationError("SUPABASE_URL is not set")
            url = settings.realtime_url
        if not anon_key:
            raise ConfigurationError("SUPABASE_ANON_KEY is not set")

        query = urlencode({"apikey": anon_key, "vsn": PHOENIX_VSN})
        logger.debug(f"Opening realtime socket {url}")
        connection = await connect(f"{url}?{query}")
        return cls(connection)

    async def send(self, frame: dict[str, Any]) -> None:
        try:
            await self._connection.send(json.dumps(frame))
        except ConnectionClosed as exc:
            raise ConnectionError(str(exc)) from exc

    async def recv(self) -> Any:
        """Receive and decode one frame.

        Raises:
            ConnectionError: If the socket is closed
            ValueError: If the frame is not valid JSON
        """
        try:
            raw = await self._connection.recv()
        except ConnectionClosed as exc:
            raise ConnectionError(str(exc)) from exc
        return json.loads(raw)

    async def close(self) -> None:
        await self._connection.close()


async def open_websocket(access_token: str | None) -> IRealtimeTransport:
    """Default ``TransportFactory``."""
    # The token is sent in the join payload, not the socket URL
    return await WebSocketTransport.open()


# =============================================================================
# Listener
# =============================================================================


class RealtimeListener:
    """Subscription to message inserts for one session.

    A listener is bound to the session it was built with. On sign-out or a
    user change, stop it and build a new one.

    Args:
        session: Session whose incoming messages are delivered
        transport_factory: Opens the socket (defaults to ``websockets``)
        heartbeat_seconds: Heartbeat interval (defaults to settings)
    """

    def __init__(
        self,
        session: UserSession,
        transport_factory: Optional[TransportFactory] = None,
        heartbeat_seconds: Optional[float] = None,
    ):
        self.session = session
        self.transport_factory = transport_factory or open_websocket
        self.heartbeat_seconds = heartbeat_seconds or settings.realtime_heartbeat_seconds
        self.closed_reason: Optional[str] = None

        self._handlers: list[MessageHandler] = []
        self._transport: Optional[IRealtimeTransport] = None
        self._reader: Optional[asyncio.Task] = None
        self._heartbeat: Optional[asyncio.Task] = None
        self._refs = itertools.count(1)
        self._stopped = False

    @property
    def topic(self) -> str:
        return f"realtime:messages:{self.session.user_id}"

    @property
    def running(self) -> bool:
        return self._reader is not None and not self._reader.done()

    def add_handler(self, handler: MessageHandler) -> None:
        """Register a callable receiving each inserted ``Message``."""
        self._handlers.append(handler)

    def _frame(self, topic: str, event: str, payload: dict[str, Any]) -> PhoenixFrame:
        return {"topic": topic, "event": event, "payload": payload, "ref": str(next(self._refs))}

    def _join_frame(self) -> PhoenixFrame:
        return self._frame(
            self.topic,
            "phx_join",
            {
                "config": {
                    "broadcast": {"self": False},
                    "presence": {"key": ""},
                    "postgres_changes": [
                        {
                            "event": "INSERT",
                            "schema": "public",
                            "table": MESSAGES_TABLE,
                            "filter": f"receiver_id=eq.{self.session.user_id}",
                        }
                    ],
                },
                "access_token": self.session.access_token,
            },
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> bool:
        """Open the socket and join the channel.

        Returns:
            False if the session is signed out (nothing is subscribed)
        """
        if not self.session.is_signed_in:
            logger.debug("Realtime listener not started: signed out")
            return False
        if self.running:
            return True

        self._stopped = False
        self.closed_reason = None
        self._transport = await self.transport_factory(self.session.access_token)
        await self._transport.send(self._join_frame())
        logger.info(f"Subscribed to {self.topic}")

        self._reader = asyncio.create_task(self._read_loop())
        self._heartbeat = asyncio.create_task(self._heartbeat_loop())
        return True

    async def stop(self) -> None:
        """Leave the channel and close the socket. Safe to call repeatedly."""
        if self._stopped:
            return
        self._stopped = True

        current = asyncio.current_task()
        for task in (self._heartbeat, self._reader):
            if task is not None and task is not current and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if self._transport is not None:
            transport, self._transport = self._transport, None
            with contextlib.suppress(ConnectionError):
                await transport.send(self._frame(self.topic, "phx_leave", {}))
            with contextlib.suppress(ConnectionError):
                await transport.close()
            logger.info(f"Unsubscribed from {self.topic}")

    async def wait_closed(self) -> None:
        """Block until the read loop ends."""
        if self._reader is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader

    async def __aenter__(self) -> "RealtimeListener":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()

    # -------------------------------------------------------------------------
    # Loops
    # -------------------------------------------------------------------------

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_seconds)
            try:
                await self._transport.send(self._frame("phoenix", "heartbeat", {}))
            except ConnectionError:
                return

    async def _read_loop(self) -> None:
        try:
            while True:
                try:
                    frame = await self._transport.recv()
                except ConnectionError as exc:
                    self.closed_reason = str(exc) or "connection closed"
                    realtime_events_total.labels(event="closed").inc()
                    logger.warning(
                        f"Realtime socket closed, not reconnecting: {self.closed_reason}"
                    )
                    return
                except ValueError as exc:
                    realtime_events_total.labels(event="malformed").inc()
                    logger.warning(f"Dropping undecodable realtime frame: {exc}")
                    continue
                await self.handle_frame(frame)
        finally:
            if self._heartbeat is not None:
                self._heartbeat.cancel()

    async def handle_frame(self, frame: Any) -> Optional[Message]:
        """Dispatch one decoded frame.

        Frames that are not JSON objects are counted as malformed and dropped.

        Returns:
            The dispatched message, or None if the frame was ignored
        """
        if not isinstance(frame, dict):
            realtime_events_total.labels(event="malformed").inc()
            logger.warning(f"Dropping non-object realtime frame: {frame!r:.200}")
            return None

        event = frame.get("event")
        payload = frame.get("payload")
        if not isinstance(payload, dict):
            payload = {}

        if event == "phx_reply":
            if payload.get("status") != "ok":
                logger.warning(f"Realtime reply for {frame.get('topic')}: {payload}")
            return None
        if event == "phx_error":
            logger.warning(f"Realtime channel error on {frame.get('topic')}: {payload}")
            return None
        if event != "postgres_changes":
            return None

        data: PostgresChangeData = safe_get(payload, "data", default={})
        record = safe_get(data, "record", default={})
        if (
            not isinstance(data, dict)
            or not isinstance(record, dict)
            or data.get("type") != "INSERT"
            or data.get("table") != MESSAGES_TABLE
            or record.get("receiver_id") != self.session.user_id
        ):
            realtime_events_total.labels(event="ignored").inc()
            return None

        try:
            message = Message.model_validate(record)
        except ValidationError as exc:
            realtime_events_total.labels(event="malformed").inc()
            logger.warning(f"Dropping malformed realtime record: {exc}")
            return None

        for handler in self._handlers:
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                realtime_events_total.labels(event="handler_error").inc()
                logger.error(f"Realtime handler {handler!r} failed: {exc}")

        realtime_events_total.labels(event="dispatched").inc()
        return message


__all__ = [
    "RealtimeListener",
    "WebSocketTransport",
    "open_websocket",
]
