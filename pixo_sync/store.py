"""Local override store for seed-entity interaction state.

Seed notes and users have no remote rows, so likes, collects, follows and
comments on them are kept on-device under namespaced string keys:

    liked_mock_notes_{userId}      JSON array of note ids
    collected_mock_notes_{userId}  JSON array of note ids
    followed_mock_{targetUserId}   "true" / "false"
    mock_comments_{entityId}       JSON array of comment objects, newest first

The keys must match exactly for compatibility with existing on-device data.

Storage is a single SQLite table managed through SQLModel. Blocking calls run
in a worker thread so the async API never blocks the event loop. Plain reads
never raise: a missing key, an unreadable row or malformed JSON all read as
empty. Writes raise ``OverrideStoreError`` so callers can revert optimistic
state. The read-modify-write operations (``toggle_membership``,
``toggle_flag``, ``prepend_json``, ``remove_from_array``) also raise when the
read fails, so a storage error never overwrites the stored value.

Example:
    >>> store = OverrideStore()
    >>> store.initialize()
    >>> liked = await store.toggle_membership(liked_notes_key("u1"), "n1")
    >>> await store.get_array(liked_notes_key("u1"))
    ['n1']
"""

import asyncio
import contextlib
import json
import threading
from typing import Any, AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from pixo_sync.config import settings
from pixo_sync.errors import OverrideStoreError
from pixo_sync.logging import logger
from pixo_sync.metrics import override_store_operations_total
from pixo_sync.models import OverrideRow
from pixo_sync.repository import Repository
from pixo_sync.utils import utc_now_iso

# =============================================================================
# Key Naming
# =============================================================================

LIKED_NOTES_PREFIX = "liked_mock_notes_"
COLLECTED_NOTES_PREFIX = "collected_mock_notes_"
FOLLOWED_PREFIX = "followed_mock_"
COMMENTS_PREFIX = "mock_comments_"


def liked_notes_key(user_id: str) -> str:
    return f"{LIKED_NOTES_PREFIX}{user_id}"


def collected_notes_key(user_id: str) -> str:
    return f"{COLLECTED_NOTES_PREFIX}{user_id}"


def followed_key(target_user_id: str) -> str:
    # Not scoped by the acting user
    return f"{FOLLOWED_PREFIX}{target_user_id}"


def comments_key(entity_id: str) -> str:
    return f"{COMMENTS_PREFIX}{entity_id}"


# =============================================================================
# Override Store
# =============================================================================


class OverrideStore:
    """Async key-value store for seed-entity overrides.

    Single-key writes go through a per-key ``asyncio.Lock``, so
    ``toggle_membership`` and ``prepend_json`` are atomic with respect to
    other calls on the same store instance.

    Args:
        database_url: SQLAlchemy URL (defaults to settings.override_store_url)
    """

    def __init__(self, database_url: str | None = None):
        self.database_url = database_url or settings.override_store_url
        self.engine = None
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._db_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def initialize(self) -> None:
        """Create the engine and the ``overrides`` table."""
        in_memory = self.database_url in ("sqlite://", "sqlite:///:memory:")

        self.engine = create_engine(
            self.database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool if in_memory else None,
        )

        SQLModel.metadata.create_all(self.engine, tables=[OverrideRow.__table__])

        if not in_memory:
            with self.engine.connect() as conn:
                conn.exec_driver_sql("PRAGMA journal_mode = WAL;")
                conn.exec_driver_sql("PRAGMA synchronous = NORMAL;")
                conn.commit()

        logger.debug(f"Override store ready at {self.database_url}")

    def close(self) -> None:
        """Dispose of the engine."""
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    def __enter__(self) -> "OverrideStore":
        if self.engine is None:
            self.initialize()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _require_engine(self):
        if self.engine is None:
            raise OverrideStoreError("Override store is not initialized")
        return self.engine

    # -------------------------------------------------------------------------
    # Raw access (blocking, run in a worker thread)
    # -------------------------------------------------------------------------

    def _read_raw(self, key: str) -> str | None:
        with self._db_lock, Session(self._require_engine()) as session:
            row = Repository[OverrideRow](session, OverrideRow).get(key)
            return row.value if row else None

    def _write_raw(self, key: str, value: str) -> None:
        with self._db_lock, Session(self._require_engine()) as session:
            Repository[OverrideRow](session, OverrideRow).save(
                OverrideRow(key=key, value=value, updated_at=utc_now_iso())
            )

    def _delete_raw(self, key: str) -> bool:
        with self._db_lock, Session(self._require_engine()) as session:
            return Repository[OverrideRow](session, OverrideRow).delete(key)

    def _keys_raw(self, prefix: str) -> list[str]:
        with self._db_lock, Session(self._require_engine()) as session:
            rows = Repository[OverrideRow](session, OverrideRow).find_prefix("key", prefix)
            return sorted(row.key for row in rows)

    async def _read(self, key: str) -> str | None:
        """Read ``key``, raising ``OverrideStoreError`` if storage fails."""
        try:
            value = await asyncio.to_thread(self._read_raw, key)
        except OverrideStoreError:
            override_store_operations_total.labels(operation="read", status="error").inc()
            raise
        except (SQLAlchemyError, OSError) as exc:
            override_store_operations_total.labels(operation="read", status="error").inc()
            raise OverrideStoreError(f"Could not read {key!r}: {exc}") from exc
        override_store_operations_total.labels(operation="read", status="success").inc()
        return value

    async def _get(self, key: str) -> str | None:
        try:
            return await self._read(key)
        except OverrideStoreError as exc:
            logger.warning(f"Override read failed for {key!r}, treating as empty: {exc}")
            return None

    async def _set(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._write_raw, key, value)
        except OverrideStoreError:
            override_store_operations_total.labels(operation="write", status="error").inc()
            raise
        except (SQLAlchemyError, OSError) as exc:
            override_store_operations_total.labels(operation="write", status="error").inc()
            logger.error(f"Override write failed for {key!r}: {exc}")
            raise OverrideStoreError(f"Could not write {key!r}: {exc}") from exc
        override_store_operations_total.labels(operation="write", status="success").inc()

    # -------------------------------------------------------------------------
    # Parsing
    # -------------------------------------------------------------------------

    @staticmethod
    def _parse_list(raw: str | None, key: str) -> list[Any]:
        if raw is None:
            return []
        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Malformed override value at {key!r}, treating as empty")
            return []
        if not isinstance(parsed, list):
            logger.warning(f"Override at {key!r} is not an array, treating as empty")
            return []
        return parsed

    # -------------------------------------------------------------------------
    # Read-modify-write
    # -------------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _locked(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for ``key``; it is dropped once nobody holds or awaits it."""
        lock = self._key_locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._key_locks[key]

    async def _read_list(self, key: str) -> list[Any]:
        # Storage failures raise; malformed JSON still reads as empty
        return self._parse_list(await self._read(key), key)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def get_array(self, key: str) -> list[str]:
        """Read a JSON array of ids; ``[]`` when absent or unreadable."""
        items = self._parse_list(await self._get(key), key)
        return [item for item in items if isinstance(item, str)]

    async def set_array(self, key: str, values: list[str]) -> None:
        """Overwrite ``key`` with a JSON array of ids."""
        await self._set(key, json.dumps(list(values)))

    async def get_flag(self, key: str) -> bool:
        """Read a boolean flag; False when absent or unreadable."""
        return (await self._get(key)) == "true"

    async def set_flag(self, key: str, value: bool) -> None:
        """Write a boolean flag as ``"true"``/``"false"``."""
        await self._set(key, "true" if value else "false")

    async def get_json(self, key: str) -> list[dict[str, Any]]:
        """Read a JSON array of objects; ``[]`` when absent or unreadable."""
        items = self._parse_list(await self._get(key), key)
        return [item for item in items if isinstance(item, dict)]

    async def set_json(self, key: str, items: list[dict[str, Any]]) -> None:
        """Overwrite ``key`` with a JSON array of objects."""
        await self._set(key, json.dumps(list(items), default=str))

    async def toggle_membership(self, key: str, member: str) -> bool:
        """Flip ``member`` in the array at ``key``.

        Returns:
            True if ``member`` is now present, False if it was removed

        Raises:
            OverrideStoreError: If the read or the write fails (stored value
                unchanged)
        """
        async with self._locked(key):
            values = [v for v in await self._read_list(key) if isinstance(v, str)]
            if member in values:
                values = [v for v in values if v != member]
                present = False
            else:
                values.append(member)
                present = True
            await self.set_array(key, values)
            return present

    async def remove_from_array(self, key: str, member: str) -> list[str]:
        """Remove every occurrence of ``member`` and return the new array."""
        async with self._locked(key):
            values = [
                v for v in await self._read_list(key) if isinstance(v, str) and v != member
            ]
            await self.set_array(key, values)
            return values

    async def toggle_flag(self, key: str) -> bool:
        """Flip a boolean flag and return the new value."""
        async with self._locked(key):
            value = (await self._read(key)) != "true"
            await self.set_flag(key, value)
            return value

    async def prepend_json(self, key: str, item: dict[str, Any]) -> list[dict[str, Any]]:
        """Insert ``item`` at the front of the object array at ``key``."""
        async with self._locked(key):
            existing = [i for i in await self._read_list(key) if isinstance(i, dict)]
            items = [item, *existing]
            await self.set_json(key, items)
            return items

    async def keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with ``prefix``."""
        try:
            return await asyncio.to_thread(self._keys_raw, prefix)
        except (SQLAlchemyError, OverrideStoreError, OSError) as exc:
            logger.warning(f"Listing override keys failed: {exc}")
            return []

    async def raw(self, key: str) -> str | None:
        """Raw stored string for ``key`` (None if absent)."""
        return await self._get(key)

    async def clear(self, prefix: str = "") -> int:
        """Delete every key starting with ``prefix``; returns how many."""
        removed = 0
        for key in await self.keys(prefix):
            async with self._locked(key):
                try:
                    if await asyncio.to_thread(self._delete_raw, key):
                        removed += 1
                except (SQLAlchemyError, OSError) as exc:
                    raise OverrideStoreError(f"Could not delete {key!r}: {exc}") from exc
        logger.info(f"Cleared {removed} override key(s) with prefix {prefix!r}")
        return removed


__all__ = [
    "OverrideStore",
    "LIKED_NOTES_PREFIX",
    "COLLECTED_NOTES_PREFIX",
    "FOLLOWED_PREFIX",
    "COMMENTS_PREFIX",
    "liked_notes_key",
    "collected_notes_key",
    "followed_key",
    "comments_key",
]
