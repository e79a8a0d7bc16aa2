"""
Per-track debounced autosave.

Each track moves through IDLE -> SCHEDULED -> SAVING -> IDLE, or back from
SCHEDULED to IDLE when its timer is cancelled. Every schedule call resets
the track's debounce timer; when it fires, the active track is resolved
again from the live path and the save only proceeds if it is still the
same track.

Save procedure:
    1. Read the editor's code; blank -> skip
    2. Equal to last_saved_code -> skip (no request)
    3. last_saved_code non-empty and different from the store's code ->
       the store was updated behind our back; skip and log
    4. Remote update, update context and store, emit trackSaved

is_autosaving is claimed by whoever starts a save (the timer callback or
save_current_track) and cleared in that caller's `finally`, so nothing can
schedule the track between a timer firing and its save task starting.

Error Policy:
    - Autosave auth failure: authRequired is emitted once (until a save
      succeeds again); further autosaves fail quietly
    - Autosave remote failure: logged to save_failures.log, no event; the
      next edit schedules a new attempt
    - Manual save: always emits trackSaved or saveFailed

Usage:
    scheduler = AutosaveScheduler(store, remote, session, lambda: router.path,
                                  events, config.autosave)
    scheduler.attach_editor(BufferEditor())
    scheduler.load_track(track)
    scheduler.schedule_autosave(track.id)
"""

import asyncio
import time
from contextlib import AbstractContextManager, contextmanager
from enum import Enum
from typing import Callable, Iterator

from pattern_sync.autosave.context import AutosaveContext
from pattern_sync.autosave.editor import Editor, push_code
from pattern_sync.core.config import AutosaveConfig
from pattern_sync.core.events import EventEmitter, Events
from pattern_sync.core.exceptions import (
    AuthenticationError,
    ConsistencyError,
    NotFoundError,
    RemoteError,
)
from pattern_sync.core.logger import get_logger, log_save_failure
from pattern_sync.library.models import Track, now_iso
from pattern_sync.remote.client import RemoteStoreClient
from pattern_sync.remote.session import SessionProvider
from pattern_sync.routing.resolver import ActiveTrack, resolve_active_track
from pattern_sync.store.tracks_store import TracksStore


logger = get_logger(__name__)


class SaveOutcome(Enum):
    SAVED = "saved"
    BUSY = "busy"
    UNCHANGED = "unchanged"
    BLANK = "blank"
    INCONSISTENT = "inconsistent"
    STALE = "stale"


class AutosaveScheduler:
    """
    Debounced, per-track autosave coordinator.

    Attributes:
        store: The session's TracksStore.
        remote: Client used for update requests.
        session: Session provider; scheduling requires an authenticated user.
        events: Emitter receiving trackSaved/saveFailed/authRequired.
        config: Autosave settings (enabled, interval).
        route_prefix: Prefix of navigable paths, "/repl" by default.
    """

    def __init__(
        self,
        store: TracksStore,
        remote: RemoteStoreClient,
        session: SessionProvider,
        get_current_path: Callable[[], str | None],
        events: EventEmitter,
        config: AutosaveConfig,
        route_prefix: str = "/repl",
        editor: Editor | None = None
    ) -> None:
        self.store = store
        self.remote = remote
        self.session = session
        self.events = events
        self.config = config
        self.route_prefix = route_prefix
        self._get_current_path = get_current_path
        self._editor = editor
        self._pending_code: str | None = None
        self._contexts: dict[str, AutosaveContext] = {}
        self._paused: set[str] = set()
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._auth_notified = False

    # =========================================================================
    # Editor
    # =========================================================================

    @property
    def editor(self) -> Editor | None:
        return self._editor

    def attach_editor(self, editor: Editor) -> None:
        """Mount an editor and hand it any code loaded before it existed."""
        self._editor = editor
        if self._pending_code is not None:
            push_code(editor, self._pending_code)
            self._pending_code = None

    def detach_editor(self) -> None:
        self._editor = None

    def clear_editor(self) -> None:
        """Empty the editor after the open track disappeared."""
        self._pending_code = ""
        if self._editor is not None:
            push_code(self._editor, "")
            self._pending_code = None

    def get_pending_code(self) -> str | None:
        return self._pending_code

    def set_pending_code(self, code: str | None) -> None:
        self._pending_code = code

    # =========================================================================
    # Contexts
    # =========================================================================

    def get_context(self, track_id: str) -> AutosaveContext | None:
        return self._contexts.get(track_id)

    def _ensure_context(self, track_id: str) -> AutosaveContext | None:
        context = self._contexts.get(track_id)
        if context is None:
            track = self.store.get_track(track_id)
            if track is None:
                return None
            context = AutosaveContext(track_id=track_id, last_saved_code=track.code)
            self._contexts[track_id] = context
        return context

    def load_track(self, track: Track) -> None:
        """
        Switch the editor to a track.

        Seeds a fresh context from the track's code, cancels any timer still
        pending for this track id, selects it in the store and pushes the
        code into the editor (or the pending buffer when none is attached).
        """
        previous = self._contexts.get(track.id)
        if previous is not None:
            previous.cancel_timer()

        self._contexts[track.id] = AutosaveContext(
            track_id=track.id,
            last_saved_code=track.code,
            last_saved_timestamp=None,
        )
        self.store.set_selected_track(track.id)

        self._pending_code = track.code
        if self._editor is not None:
            push_code(self._editor, track.code)
            self._pending_code = None

        logger.debug(f"Loaded track {track.id} ({track.name})")

    def sync_saved_code(self, track_id: str, code: str) -> None:
        """Record code written to the server outside the scheduler (e.g. an explicit update)."""
        context = self._contexts.get(track_id)
        if context is not None:
            context.last_saved_code = code
            context.last_saved_timestamp = time.time()

    def cleanup_track_autosave_context(self, track_id: str) -> None:
        """Cancel and discard the context of a track (deletion)."""
        context = self._contexts.pop(track_id, None)
        if context is not None:
            context.cancel_timer()
            logger.debug(f"Discarded autosave context for {track_id}")

    @contextmanager
    def paused(self, track_id: str) -> Iterator[None]:
        """
        Block autosave for a track for the duration of the block.

        The context is discarded on entry so no timer can fire during the
        request, and schedule_autosave() refuses the id until exit. Used
        around deletes and step switches, which replace the track's code.
        """
        self._paused.add(track_id)
        self.cleanup_track_autosave_context(track_id)
        try:
            yield
        finally:
            self._paused.discard(track_id)

    def deleting(self, track_id: str) -> AbstractContextManager[None]:
        """Block autosave for a track while it is being deleted."""
        return self.paused(track_id)

    def cleanup(self) -> None:
        """Cancel every timer and drop all contexts."""
        for context in self._contexts.values():
            context.cancel_timer()
        self._contexts.clear()

    async def aclose(self) -> None:
        """Cleanup and wait for saves already in flight."""
        self.cleanup()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # =========================================================================
    # Scheduling
    # =========================================================================

    def schedule_autosave(self, track_id: str) -> bool:
        """
        (Re)start the debounce timer for a track.

        Returns:
            True if a timer was started, False if the call was a no-op
            (autosave disabled, nobody signed in, track being deleted or
            unknown, or a save for it already in flight).
        """
        if not self.config.enabled:
            return False
        if not self.session.is_authenticated or self.session.current_user is None:
            return False
        if track_id in self._paused:
            return False

        context = self._ensure_context(track_id)
        if context is None or context.is_autosaving:
            return False

        context.cancel_timer()
        loop = asyncio.get_running_loop()
        context.timer = loop.call_later(self.config.interval, self._on_timer, track_id, context)
        return True

    def _on_timer(self, track_id: str, context: AutosaveContext) -> None:
        context.timer = None
        if self._contexts.get(track_id) is not context or context.is_autosaving:
            return
        # Busy from here on: schedule_autosave() refuses until _autosave ends
        context.is_autosaving = True
        task = asyncio.ensure_future(self._autosave(track_id, context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def resolve_current(self) -> ActiveTrack | None:
        return resolve_active_track(
            self._get_current_path(),
            self.store.tracks,
            self.store.folders,
            self.route_prefix,
        )

    async def _autosave(self, track_id: str, context: AutosaveContext) -> None:
        try:
            active = self.resolve_current()
            if active is None or active.track_id != track_id:
                logger.debug(f"Active track changed before autosave of {track_id}, dropping")
                return
            await self._save(track_id, context, manual=False)
        except AuthenticationError as e:
            logger.warning(f"Autosave of {track_id} needs sign-in: {e.message}")
            if not self._auth_notified:
                self._auth_notified = True
                self.events.emit(Events.AUTH_REQUIRED, track_id=track_id, message=e.message)
        except RemoteError as e:
            track = self.store.get_track(track_id)
            log_save_failure(logger, track_id, track.name if track else None, e.message)
        finally:
            context.is_autosaving = False

    # =========================================================================
    # Saving
    # =========================================================================

    async def save_current_track(self) -> bool:
        """
        Save the active track now, skipping the debounce.

        Returns:
            True if the code is on the server (saved now or already there).
        """
        active = self.resolve_current()
        track_id = active.track_id if active else self.store.state.selected_track
        if not track_id or track_id in self._paused:
            self.events.emit(Events.SAVE_FAILED, track_id=track_id, message="No track is open")
            return False

        context = self._ensure_context(track_id)
        if context is None:
            self.events.emit(Events.SAVE_FAILED, track_id=track_id, message="Track no longer exists")
            return False
        if context.is_autosaving:
            self.events.emit(
                Events.SAVE_FAILED, track_id=track_id, message="A save is already in progress"
            )
            return False
        context.cancel_timer()
        context.is_autosaving = True

        try:
            outcome = await self._save(track_id, context, manual=True)
        except AuthenticationError as e:
            self.events.emit(Events.AUTH_REQUIRED, track_id=track_id, message=e.message)
            self.events.emit(Events.SAVE_FAILED, track_id=track_id, message=e.message)
            return False
        except NotFoundError as e:
            self.events.emit(Events.ITEM_NOT_FOUND, track_id=track_id, message=e.message)
            self.events.emit(Events.SAVE_FAILED, track_id=track_id, message=e.message, status=404)
            return False
        except RemoteError as e:
            track = self.store.get_track(track_id)
            log_save_failure(logger, track_id, track.name if track else None, e.message)
            self.events.emit(Events.SAVE_FAILED, track_id=track_id, message=e.message, status=e.status)
            return False
        finally:
            context.is_autosaving = False

        if outcome is SaveOutcome.UNCHANGED:
            self.events.emit(Events.TRACK_SAVED, track_id=track_id, manual=True, unchanged=True)
            return True
        if outcome is SaveOutcome.SAVED:
            return True

        messages = {
            SaveOutcome.BUSY: "A save is already in progress",
            SaveOutcome.BLANK: "Nothing to save",
            SaveOutcome.INCONSISTENT: "Track was changed elsewhere, reload before saving",
            SaveOutcome.STALE: "Track no longer exists",
        }
        self.events.emit(Events.SAVE_FAILED, track_id=track_id, message=messages[outcome])
        return False

    async def _save(self, track_id: str, context: AutosaveContext, manual: bool) -> SaveOutcome:
        """
        Run the save procedure for one track.

        The caller holds context.is_autosaving for the whole call. At most
        one update request per track is in flight; a second call while one
        is pending returns BUSY without touching the server.

        Raises:
            AuthenticationError: No valid session.
            RemoteError: The update request failed.
        """
        if track_id in self._in_flight:
            return SaveOutcome.BUSY

        code = self._read_editor_code()
        if not code.strip():
            return SaveOutcome.BLANK

        if code == context.last_saved_code:
            return SaveOutcome.UNCHANGED

        track = self.store.get_track(track_id)
        if track is None:
            return SaveOutcome.STALE

        try:
            self._check_consistency(context, track)
        except ConsistencyError as e:
            logger.warning(f"{e.message}, skipping save", extra={"consistency": e.details})
            return SaveOutcome.INCONSISTENT

        modified = now_iso()
        self._in_flight.add(track_id)
        try:
            saved = await self.remote.update_track(track_id, {"code": code, "modified": modified})
        finally:
            self._in_flight.discard(track_id)

        # Deleted or reloaded while the request was in flight
        if self._contexts.get(track_id) is not context or track_id in self._paused:
            logger.debug(f"Context for {track_id} replaced during save, not updating store")
            return SaveOutcome.STALE

        context.last_saved_code = code
        context.last_saved_timestamp = time.time()
        self.store.update_track(track_id, code=code, modified=saved.modified or modified)
        self._auth_notified = False

        logger.info(f"Saved '{track.name}' ({'manual' if manual else 'autosave'})")
        self.events.emit(Events.TRACK_SAVED, track_id=track_id, manual=manual)
        return SaveOutcome.SAVED

    def _check_consistency(self, context: AutosaveContext, track: Track) -> None:
        if context.last_saved_code and context.last_saved_code != track.code:
            raise ConsistencyError(
                f"Autosave context for {track.id} disagrees with the store",
                details={
                    "track_id": track.id,
                    "last_saved_length": len(context.last_saved_code),
                    "store_length": len(track.code),
                }
            )

    def _read_editor_code(self) -> str:
        if self._editor is None:
            return ""
        return self._editor.code or ""
