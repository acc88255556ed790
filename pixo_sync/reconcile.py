"""Reconciliation layer: merged, optimistic view models per entity.

For a note or user profile, the controllers here merge three sources into a
single view model:

1. the remote store (through the gateway) for canonical entities,
2. the bundled seed dataset for seed entities,
3. the local override store for interactions on seed entities.

Mutations (like, collect, follow, comment) are applied to the view model
immediately, then persisted to the gateway or the override store depending
on the entity's ``EntityRef`` variant. If persistence fails, the touched
fields are restored to their exact pre-action values and a notice is emitted.

State machine per controller::

    LOADING --load()--> READY | NOT_FOUND | FAILED
    READY --mutation--> (field in flight) --> READY (applied | reverted)

Counts are adjusted by exactly one per toggle and never re-fetched during a
controller's lifetime, so they can drift if another client mutates the same
entity concurrently.

Example:
    >>> controller = NoteDetailController("n1", session, gateway, store, seed)
    >>> await controller.load()
    <ViewState.READY: 'ready'>
    >>> result = await controller.toggle_like()
    >>> result.outcome, controller.view.is_liked
    (<MutationOutcome.APPLIED: 'applied'>, True)
"""

import uuid
from collections.abc import Awaitable, Callable
from typing import Optional

import httpx
from pydantic import ValidationError

from pixo_sync.errors import NotFoundError, PixoSyncError
from pixo_sync.identifiers import EntityRef, RemoteRef, SeedRef, classify
from pixo_sync.interfaces import IOverrideStore, IRemoteGateway, Notifier
from pixo_sync.logging import log_context, logger
from pixo_sync.metrics import mutations_total
from pixo_sync.models import (
    Comment,
    DeleteOutcome,
    MutationOutcome,
    MutationResult,
    Note,
    NoteView,
    Notice,
    NoticeLevel,
    UserView,
    ViewState,
)
from pixo_sync.seed import SeedCatalog
from pixo_sync.session import UserSession
from pixo_sync.store import collected_notes_key, comments_key, followed_key, liked_notes_key
from pixo_sync.utils import utc_now

# Everything a persistence call may raise that the controllers absorb
PERSISTENCE_ERRORS = (PixoSyncError, httpx.HTTPError)


def log_notice(notice: Notice) -> None:
    """Default notifier: write the notice to the log."""
    logger.info(f"[{notice.level}] {notice.message}")


def _source(ref: EntityRef) -> str:
    match ref:
        case RemoteRef():
            return "remote"
        case SeedRef():
            return "seed"


class _EntityController:
    """Shared mutation plumbing for entity-detail controllers."""

    def __init__(
        self,
        entity_id: str,
        session: UserSession,
        gateway: Optional[IRemoteGateway],
        store: IOverrideStore,
        seed: SeedCatalog,
        notifier: Optional[Notifier] = None,
    ):
        self.entity_id = entity_id
        self.ref = classify(entity_id)
        self.session = session
        self.gateway = gateway
        self.store = store
        self.seed = seed
        self.notifier = notifier or log_notice
        self.state = ViewState.LOADING
        self._in_flight: set[str] = set()

    @property
    def in_flight(self) -> frozenset[str]:
        """View-model fields with a persistence call outstanding."""
        return frozenset(self._in_flight)

    def _require_gateway(self) -> IRemoteGateway:
        if self.gateway is None:
            raise PixoSyncError("No remote gateway configured for a canonical entity")
        return self.gateway

    def _precheck(self, field: str, action: str) -> Optional[MutationResult]:
        """Reject a mutation that must not start; None means go ahead."""
        if self.state != ViewState.READY:
            logger.warning(f"{action} ignored: view is {self.state}")
            return self._record(action, MutationResult(
                outcome=MutationOutcome.REJECTED_NOT_READY, field=field
            ))

        if not self.session.is_signed_in:
            self.notifier(Notice(
                level=NoticeLevel.INFO,
                message=f"Sign in to {action}",
                action="sign_in",
            ))
            return self._record(action, MutationResult(
                outcome=MutationOutcome.REJECTED_SIGNED_OUT,
                field=field,
                message="This action requires sign-in",
            ))

        if field in self._in_flight:
            logger.debug(f"{action} ignored: {field} already in flight")
            return self._record(action, MutationResult(
                outcome=MutationOutcome.REJECTED_IN_FLIGHT, field=field
            ))

        return None

    def _record(self, action: str, result: MutationResult) -> MutationResult:
        mutations_total.labels(
            action=action, source=_source(self.ref), outcome=result.outcome.value
        ).inc()
        return result

    def _reverted(
        self, action: str, field: str, value: object, exc: BaseException
    ) -> MutationResult:
        logger.error(f"{action} on {self.entity_id} failed, reverting: {exc}")
        self.notifier(Notice(
            level=NoticeLevel.ERROR,
            message=f"Couldn't save your {action}. Please try again.",
            action=action,
        ))
        return self._record(action, MutationResult(
            outcome=MutationOutcome.REVERTED, field=field, value=value, message=str(exc)
        ))

    def _applied(self, action: str, field: str, value: object) -> MutationResult:
        return self._record(action, MutationResult(
            outcome=MutationOutcome.APPLIED, field=field, value=value
        ))

    async def _persist_follow(self, target_id: str) -> bool:
        """Flip the follow relationship to ``target_id`` in its own source."""
        match classify(target_id):
            case RemoteRef(id=remote_id):
                return await self._require_gateway().toggle_follow(
                    self.session.user_id, remote_id
                )
            case SeedRef(id=seed_id):
                return await self.store.toggle_flag(followed_key(seed_id))

    async def _read_follow(self, target_id: str) -> bool:
        if not self.session.is_signed_in or target_id == self.session.user_id:
            return False
        match classify(target_id):
            case RemoteRef(id=remote_id):
                return await self._require_gateway().get_follow_status(
                    self.session.user_id, remote_id
                )
            case SeedRef(id=seed_id):
                return await self.store.get_flag(followed_key(seed_id))


# =============================================================================
# Note Detail
# =============================================================================


class NoteDetailController(_EntityController):
    """Merged view of one note with optimistic interactions.

    Args:
        note_id: Canonical or seed note id
        session: Current session snapshot
        gateway: Remote gateway (may be None when only seed notes are used)
        store: Local override store
        seed: Seed dataset
        notifier: Receives user-facing notices (defaults to logging them)
    """

    def __init__(
        self,
        note_id: str,
        session: UserSession,
        gateway: Optional[IRemoteGateway],
        store: IOverrideStore,
        seed: SeedCatalog,
        notifier: Optional[Notifier] = None,
    ):
        super().__init__(note_id, session, gateway, store, seed, notifier)
        self.view: Optional[NoteView] = None

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def load(self) -> ViewState:
        """Fetch and merge the note, its comments and the viewer's flags."""
        with log_context(user_id=self.session.user_id, entity_id=self.entity_id, operation="load"):
            self.state = ViewState.LOADING

            match self.ref:
                case RemoteRef(id=note_id):
                    await self._load_remote(note_id)
                case SeedRef(id=note_id):
                    await self._load_seed(note_id)

            logger.debug(f"Note {self.entity_id} loaded: {self.state}")
            return self.state

    def adopt(self, view: NoteView) -> None:
        """Take an already merged view (from the feed) instead of loading."""
        self.view = view
        self.state = ViewState.READY

    async def _load_remote(self, note_id: str) -> None:
        try:
            gateway = self._require_gateway()
            note = await gateway.get_note_by_id(note_id)
            comments = await gateway.get_comments(note_id)
        except NotFoundError:
            self.state = ViewState.NOT_FOUND
            return
        except PERSISTENCE_ERRORS as exc:
            logger.error(f"Loading note {note_id} failed: {exc}")
            self.notifier(Notice(level=NoticeLevel.ERROR, message="Couldn't load this note"))
            self.state = ViewState.FAILED
            return

        is_liked = is_collected = is_following = False
        if self.session.is_signed_in:
            try:
                flags = await gateway.check_user_interactions(self.session.user_id, note_id)
                is_liked = flags.get("is_liked", False)
                is_collected = flags.get("is_collected", False)
                is_following = await self._read_follow(note.user_id)
            except PERSISTENCE_ERRORS as exc:
                logger.warning(f"Interaction flags for {note_id} unavailable: {exc}")

        self.view = NoteView(
            note=note,
            comments=comments,
            is_liked=is_liked,
            is_collected=is_collected,
            is_following=is_following,
            likes_count=note.likes_count,
            collects_count=note.collects_count,
            comments_count=note.comments_count,
        )
        self.state = ViewState.READY

    async def _load_seed(self, note_id: str) -> None:
        note = self.seed.get_note(note_id)
        if note is None:
            self.state = ViewState.NOT_FOUND
            return

        is_liked = is_collected = is_following = False
        comments: list[Comment] = []
        if self.session.is_signed_in:
            uid = self.session.user_id
            is_liked = note_id in await self.store.get_array(liked_notes_key(uid))
            is_collected = note_id in await self.store.get_array(collected_notes_key(uid))
            is_following = await self._read_follow(note.user_id)
            comments = self._parse_comments(await self.store.get_json(comments_key(note_id)))

        self.view = NoteView(
            note=note,
            comments=comments,
            is_liked=is_liked,
            is_collected=is_collected,
            is_following=is_following,
            likes_count=note.likes_count + (1 if is_liked else 0),
            collects_count=note.collects_count + (1 if is_collected else 0),
            comments_count=note.comments_count + len(comments),
        )
        self.state = ViewState.READY

    @staticmethod
    def _parse_comments(items: list[dict]) -> list[Comment]:
        comments = []
        for item in items:
            try:
                comments.append(Comment.model_validate(item))
            except ValidationError:
                logger.warning(f"Skipping malformed stored comment: {item!r}")
        return comments

    # -------------------------------------------------------------------------
    # Toggles
    # -------------------------------------------------------------------------

    async def _toggle_counted(
        self,
        action: str,
        field: str,
        count_field: str,
        remote: Callable[[str, str], Awaitable[bool]],
        seed_key: Callable[[str], str],
    ) -> MutationResult:
        rejected = self._precheck(field, action)
        if rejected:
            return rejected

        view = self.view
        before = (getattr(view, field), getattr(view, count_field))
        optimistic = not before[0]
        setattr(view, field, optimistic)
        setattr(view, count_field, before[1] + (1 if optimistic else -1))

        self._in_flight.add(field)
        with log_context(user_id=self.session.user_id, entity_id=self.entity_id, operation=action):
            try:
                match self.ref:
                    case RemoteRef(id=note_id):
                        confirmed = await remote(self.session.user_id, note_id)
                    case SeedRef(id=note_id):
                        confirmed = await self.store.toggle_membership(
                            seed_key(self.session.user_id), note_id
                        )
            except PERSISTENCE_ERRORS as exc:
                setattr(view, field, before[0])
                setattr(view, count_field, before[1])
                return self._reverted(action, field, before[0], exc)
            finally:
                self._in_flight.discard(field)

            if confirmed != optimistic:
                # The stored state had diverged; show what persistence reported
                logger.info(f"{action} on {self.entity_id}: backend reported {confirmed}")
                setattr(view, field, confirmed)
                setattr(view, count_field, before[1] + (1 if confirmed else -1))

            return self._applied(action, field, confirmed)

    async def toggle_like(self) -> MutationResult:
        """Like or unlike the note."""
        return await self._toggle_counted(
            "like",
            "is_liked",
            "likes_count",
            lambda uid, nid: self._require_gateway().toggle_like(uid, nid),
            liked_notes_key,
        )

    async def toggle_collect(self) -> MutationResult:
        """Collect or uncollect the note."""
        return await self._toggle_counted(
            "collect",
            "is_collected",
            "collects_count",
            lambda uid, nid: self._require_gateway().toggle_collect(uid, nid),
            collected_notes_key,
        )

    async def toggle_follow(self) -> MutationResult:
        """Follow or unfollow the note's author."""
        rejected = self._precheck("is_following", "follow")
        if rejected:
            return rejected

        view = self.view
        author_id = view.note.user_id
        if author_id == self.session.user_id:
            return self._record("follow", MutationResult(
                outcome=MutationOutcome.REJECTED_SELF, field="is_following"
            ))

        before = view.is_following
        view.is_following = not before

        self._in_flight.add("is_following")
        try:
            confirmed = await self._persist_follow(author_id)
        except PERSISTENCE_ERRORS as exc:
            view.is_following = before
            return self._reverted("follow", "is_following", before, exc)
        finally:
            self._in_flight.discard("is_following")

        view.is_following = confirmed
        return self._applied("follow", "is_following", confirmed)

    # -------------------------------------------------------------------------
    # Comments
    # -------------------------------------------------------------------------

    async def add_comment(self, text: str) -> MutationResult:
        """Prepend a comment and persist it."""
        if not text or not text.strip():
            return MutationResult(outcome=MutationOutcome.REJECTED_INVALID, field="comments")

        rejected = self._precheck("comments", "comment")
        if rejected:
            return rejected

        view = self.view
        uid = self.session.user_id
        draft = Comment(
            id=str(uuid.uuid4()),
            note_id=self.entity_id,
            user_id=uid,
            text=text.strip(),
            created_at=utc_now(),
            author=self.session.profile,
        )
        view.comments.insert(0, draft)
        view.comments_count += 1

        self._in_flight.add("comments")
        try:
            match self.ref:
                case RemoteRef(id=note_id):
                    stored = await self._require_gateway().add_comment(uid, note_id, draft.text)
                case SeedRef(id=note_id):
                    await self.store.prepend_json(comments_key(note_id), draft.to_override())
                    stored = draft
        except PERSISTENCE_ERRORS as exc:
            view.comments = [c for c in view.comments if c.id != draft.id]
            view.comments_count -= 1
            return self._reverted("comment", "comments", None, exc)
        finally:
            self._in_flight.discard("comments")

        if stored is not draft:
            view.comments = [stored if c.id == draft.id else c for c in view.comments]
        return self._applied("comment", "comments", stored.id)

    # -------------------------------------------------------------------------
    # Deletion
    # -------------------------------------------------------------------------

    async def delete(self) -> DeleteOutcome:
        """Delete the note.

        Seed notes cannot be removed from the bundled dataset; the caller
        just navigates away. Remote deletions that fail leave the view as is.
        """
        match self.ref:
            case SeedRef():
                self._record("delete", MutationResult(
                    outcome=MutationOutcome.APPLIED, field="note"
                ))
                return DeleteOutcome(navigate_away=True, persisted=False)
            case RemoteRef(id=note_id):
                try:
                    await self._require_gateway().delete_note(note_id)
                except PERSISTENCE_ERRORS as exc:
                    result = self._reverted("delete", "note", None, exc)
                    return DeleteOutcome(
                        navigate_away=False, persisted=False, message=result.message
                    )
                self._applied("delete", "note", note_id)
                return DeleteOutcome(navigate_away=True, persisted=True)


# =============================================================================
# User Profile
# =============================================================================


class UserProfileController(_EntityController):
    """Merged view of a user profile with an optimistic follow toggle."""

    def __init__(
        self,
        user_id: str,
        session: UserSession,
        gateway: Optional[IRemoteGateway],
        store: IOverrideStore,
        seed: SeedCatalog,
        notifier: Optional[Notifier] = None,
    ):
        super().__init__(user_id, session, gateway, store, seed, notifier)
        self.view: Optional[UserView] = None

    async def load(self) -> ViewState:
        with log_context(user_id=self.session.user_id, entity_id=self.entity_id, operation="load"):
            self.state = ViewState.LOADING

            match self.ref:
                case RemoteRef(id=user_id):
                    try:
                        gateway = self._require_gateway()
                        profile = await gateway.get_profile(user_id)
                    except NotFoundError:
                        self.state = ViewState.NOT_FOUND
                        return self.state
                    except PERSISTENCE_ERRORS as exc:
                        logger.error(f"Loading profile {user_id} failed: {exc}")
                        self.notifier(Notice(
                            level=NoticeLevel.ERROR, message="Couldn't load this profile"
                        ))
                        self.state = ViewState.FAILED
                        return self.state

                    try:
                        notes = await gateway.get_user_notes(user_id)
                    except PERSISTENCE_ERRORS as exc:
                        logger.warning(f"Notes for {user_id} unavailable: {exc}")
                        notes = []
                    is_following = await self._read_follow(user_id)
                    followers = profile.followers_count

                case SeedRef(id=user_id):
                    profile = self.seed.get_user(user_id)
                    if profile is None:
                        self.state = ViewState.NOT_FOUND
                        return self.state
                    notes = self.seed.notes_by_user(user_id)
                    is_following = await self._read_follow(user_id)
                    followers = profile.followers_count + (1 if is_following else 0)

            self.view = UserView(
                profile=profile,
                notes=notes,
                is_following=is_following,
                followers_count=followers,
            )
            self.state = ViewState.READY
            return self.state

    async def toggle_follow(self) -> MutationResult:
        """Follow or unfollow this user."""
        rejected = self._precheck("is_following", "follow")
        if rejected:
            return rejected

        if self.entity_id == self.session.user_id:
            return self._record("follow", MutationResult(
                outcome=MutationOutcome.REJECTED_SELF, field="is_following"
            ))

        view = self.view
        before = (view.is_following, view.followers_count)
        view.is_following = not before[0]
        view.followers_count = before[1] + (1 if view.is_following else -1)

        self._in_flight.add("is_following")
        try:
            confirmed = await self._persist_follow(self.entity_id)
        except PERSISTENCE_ERRORS as exc:
            view.is_following, view.followers_count = before
            return self._reverted("follow", "is_following", before[0], exc)
        finally:
            self._in_flight.discard("is_following")

        if confirmed != view.is_following:
            view.is_following = confirmed
            view.followers_count = before[1] + (1 if confirmed else -1)
        return self._applied("follow", "is_following", confirmed)


# =============================================================================
# Feed
# =============================================================================


async def load_feed(
    gateway: Optional[IRemoteGateway],
    seed: SeedCatalog,
    limit: int = 20,
    offset: int = 0,
) -> list[Note]:
    """Remote feed, falling back to seed notes when empty or unreachable."""
    if gateway is not None:
        try:
            notes = await gateway.get_notes(limit=limit, offset=offset)
        except PERSISTENCE_ERRORS as exc:
            logger.warning(f"Remote feed unavailable, using seed notes: {exc}")
        else:
            if notes or offset > 0:
                return notes
            logger.info("Remote feed is empty, using seed notes")
    return seed.notes()[offset : offset + limit]


class FeedController:
    """Feed of notes with the viewer's like/collect state and inline toggles.

    Every feed entry is backed by a ``NoteDetailController`` adopted from the
    feed data, so toggling from the feed follows the same optimistic
    apply, persist, revert sequence as the note detail view.

    Args:
        session: Current session snapshot
        gateway: Remote gateway (None serves the seed feed only)
        store: Local override store
        seed: Seed dataset
        notifier: Receives user-facing notices (defaults to logging them)
        limit: Page size
    """

    def __init__(
        self,
        session: UserSession,
        gateway: Optional[IRemoteGateway],
        store: IOverrideStore,
        seed: SeedCatalog,
        notifier: Optional[Notifier] = None,
        limit: int = 20,
    ):
        self.session = session
        self.gateway = gateway
        self.store = store
        self.seed = seed
        self.notifier = notifier or log_notice
        self.limit = limit
        self.state = ViewState.LOADING
        self._entries: dict[str, NoteDetailController] = {}

    @property
    def items(self) -> list[NoteView]:
        """Feed entries in display order."""
        return [entry.view for entry in self._entries.values()]

    def item(self, note_id: str) -> Optional[NoteView]:
        entry = self._entries.get(note_id)
        return entry.view if entry else None

    async def load(self, offset: int = 0) -> ViewState:
        """Fetch a page of notes and merge the viewer's interaction state."""
        with log_context(user_id=self.session.user_id, operation="feed"):
            self.state = ViewState.LOADING

            notes = await load_feed(self.gateway, self.seed, limit=self.limit, offset=offset)
            liked, collected = await self._interacted(notes)

            self._entries = {}
            for note in notes:
                entry = NoteDetailController(
                    note.id, self.session, self.gateway, self.store, self.seed, self.notifier
                )
                is_liked = note.id in liked
                is_collected = note.id in collected
                # Seed counters are static; local toggles sit on top of them
                local = isinstance(entry.ref, SeedRef)
                entry.adopt(NoteView(
                    note=note,
                    is_liked=is_liked,
                    is_collected=is_collected,
                    likes_count=note.likes_count + (1 if local and is_liked else 0),
                    collects_count=note.collects_count + (1 if local and is_collected else 0),
                    comments_count=note.comments_count,
                ))
                self._entries[note.id] = entry

            self.state = ViewState.READY
            logger.debug(f"Feed loaded: {len(self._entries)} notes")
            return self.state

    async def _interacted(self, notes: list[Note]) -> tuple[set[str], set[str]]:
        """Liked and collected ids among ``notes`` for the signed-in viewer."""
        if not self.session.is_signed_in:
            return set(), set()

        uid = self.session.user_id
        liked = set(await self.store.get_array(liked_notes_key(uid)))
        collected = set(await self.store.get_array(collected_notes_key(uid)))

        remote_ids = [n.id for n in notes if isinstance(classify(n.id), RemoteRef)]
        if remote_ids and self.gateway is not None:
            try:
                remote = await self.gateway.get_interacted_note_ids(uid, remote_ids)
            except PERSISTENCE_ERRORS as exc:
                logger.warning(f"Feed interaction flags unavailable: {exc}")
            else:
                liked |= remote["liked"]
                collected |= remote["collected"]
        return liked, collected

    def _not_in_feed(self, note_id: str, field: str, action: str) -> MutationResult:
        logger.warning(f"{action} ignored: {note_id} is not in the feed")
        return MutationResult(outcome=MutationOutcome.REJECTED_NOT_READY, field=field)

    async def toggle_like(self, note_id: str) -> MutationResult:
        """Like or unlike a feed entry."""
        entry = self._entries.get(note_id)
        if entry is None:
            return self._not_in_feed(note_id, "is_liked", "like")
        return await entry.toggle_like()

    async def toggle_collect(self, note_id: str) -> MutationResult:
        """Collect or uncollect a feed entry."""
        entry = self._entries.get(note_id)
        if entry is None:
            return self._not_in_feed(note_id, "is_collected", "collect")
        return await entry.toggle_collect()


__all__ = [
    "FeedController",
    "NoteDetailController",
    "UserProfileController",
    "load_feed",
    "log_notice",
    "PERSISTENCE_ERRORS",
]
