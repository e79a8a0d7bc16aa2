"""
In-memory state store for the track/folder library.

The store holds an immutable TracksState snapshot. Every action builds a new
snapshot and notifies subscribers, so readers holding an old snapshot never
see it change underneath them.

One store exists per signed-in session. The workspace creates it and passes
it to the scheduler, the orchestrator and the CLI; nothing reaches it through
module globals.

Usage:
    store = TracksStore(remote)
    await store.load_from_remote(timeout=8)
    track = store.get_track(track_id)
    store.update_track(track_id, code=new_code, modified=now_iso())
"""

import asyncio
import dataclasses
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping

from pattern_sync.core.exceptions import PatternSyncError
from pattern_sync.core.logger import get_logger
from pattern_sync.library.models import Folder, Track
from pattern_sync.library.tree import record_of
from pattern_sync.remote.client import RemoteStoreClient, parse_library_payload


logger = get_logger(__name__)


def _frozen(mapping: Mapping[str, Any] | None = None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class TracksState:
    """
    Immutable snapshot of the library.

    Attributes:
        tracks: Track id -> Track (read-only mapping).
        folders: Folder id -> Folder (read-only mapping).
        is_initialized: True once a snapshot or remote load has completed
                        (or the initial load timed out).
        is_loading: True while load_from_remote() is in flight.
        error: Message of the last failed load, None otherwise.
        selected_track: Id of the track open in the editor, if any.
    """
    tracks: Mapping[str, Track] = field(default_factory=_frozen)
    folders: Mapping[str, Folder] = field(default_factory=_frozen)
    is_initialized: bool = False
    is_loading: bool = False
    error: str | None = None
    selected_track: str | None = None


StateListener = Callable[[TracksState], None]


class TracksStore:
    """
    Holder of the current TracksState with synchronous actions.

    Attributes:
        remote: Client used by load_from_remote(); optional so the store can
                be populated from a snapshot alone.
    """

    def __init__(self, remote: RemoteStoreClient | None = None) -> None:
        self.remote = remote
        self._state = TracksState()
        self._listeners: list[StateListener] = []

    # =========================================================================
    # READS
    # =========================================================================

    @property
    def state(self) -> TracksState:
        return self._state

    @property
    def tracks(self) -> Mapping[str, Track]:
        return self._state.tracks

    @property
    def folders(self) -> Mapping[str, Folder]:
        return self._state.folders

    def get_track(self, track_id: str | None) -> Track | None:
        if not track_id:
            return None
        return self._state.tracks.get(track_id)

    def get_folder(self, folder_id: str | None) -> Folder | None:
        if not folder_id:
            return None
        return self._state.folders.get(folder_id)

    def find_folder_by_path(self, path: str | None) -> Folder | None:
        if not path:
            return None
        for folder in self._state.folders.values():
            if folder.path == path:
                return folder
        return None

    def has_tracks(self) -> bool:
        return bool(self._state.tracks)

    def has_data(self) -> bool:
        return bool(self._state.tracks) or bool(self._state.folders)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Call listener with every new snapshot.

        Returns:
            A callable removing the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # =========================================================================
    # LOADING
    # =========================================================================

    def initialize_from_snapshot(self, payload: dict[str, Any]) -> None:
        """
        Replace the library with a server-provided snapshot.

        Args:
            payload: Hierarchical ({"id": "root", "children": [...]}) or flat
                     ({"tracks": [...], "folders": [...]}) list payload.
        """
        tracks, folders = parse_library_payload(payload)
        self._set(
            tracks=_frozen(record_of(tracks)),
            folders=_frozen(record_of(folders)),
            is_initialized=True,
            error=None,
        )
        logger.info(f"Library initialized from snapshot: {len(tracks)} tracks, {len(folders)} folders")

    async def load_from_remote(self, timeout: float | None = None) -> bool:
        """
        Fetch the library from the remote store and replace local state.

        Args:
            timeout: Optional upper bound in seconds. When exceeded the store
                     is marked initialized with an error, so callers waiting
                     for initialization are not blocked forever.

        Returns:
            True on success, False if the load failed (see state.error).
        """
        if self.remote is None:
            self._set(error="No remote store configured")
            return False

        self._set(is_loading=True)
        try:
            if timeout is not None:
                tracks, folders = await asyncio.wait_for(self.remote.list_tracks(), timeout)
            else:
                tracks, folders = await self.remote.list_tracks()
        except asyncio.TimeoutError:
            logger.warning(f"Library load timed out after {timeout}s")
            self._set(is_initialized=True, error=f"Loading the library timed out after {timeout:g}s")
            return False
        except PatternSyncError as e:
            logger.error(f"Failed to load library: {e.message}")
            self._set(error=e.message)
            return False
        finally:
            if self._state.is_loading:
                self._set(is_loading=False)

        self.replace(tracks, folders)
        logger.info(f"Library loaded: {len(tracks)} tracks, {len(folders)} folders")
        return True

    # =========================================================================
    # ACTIONS
    # =========================================================================

    def replace(self, tracks: Iterable[Track], folders: Iterable[Folder]) -> None:
        """Replace every track and folder; keeps the selection if it still exists."""
        track_map = record_of(tracks)
        selected = self._state.selected_track
        self._set(
            tracks=_frozen(track_map),
            folders=_frozen(record_of(folders)),
            is_initialized=True,
            error=None,
            selected_track=selected if selected in track_map else None,
        )

    def add_track(self, track: Track) -> None:
        self._set(tracks=_frozen({**self._state.tracks, track.id: track}))

    def update_track(self, track_id: str, **changes: Any) -> Track | None:
        """
        Apply field changes to a track.

        Returns:
            The updated Track, or None (with a warning) if the id is unknown.
        """
        track = self._state.tracks.get(track_id)
        if track is None:
            logger.warning(f"update_track: unknown track {track_id}")
            return None
        updated = track.with_updates(**changes)
        self._set(tracks=_frozen({**self._state.tracks, track_id: updated}))
        return updated

    def remove_track(self, track_id: str) -> None:
        if track_id not in self._state.tracks:
            return
        tracks = {key: value for key, value in self._state.tracks.items() if key != track_id}
        selected = self._state.selected_track
        self._set(
            tracks=_frozen(tracks),
            selected_track=None if selected == track_id else selected,
        )

    def add_folder(self, folder: Folder) -> None:
        self._set(folders=_frozen({**self._state.folders, folder.id: folder}))

    def update_folder(self, folder_id: str, **changes: Any) -> Folder | None:
        folder = self._state.folders.get(folder_id)
        if folder is None:
            logger.warning(f"update_folder: unknown folder {folder_id}")
            return None
        updated = folder.with_updates(**changes)
        self._set(folders=_frozen({**self._state.folders, folder_id: updated}))
        return updated

    def remove_folder(self, folder_id: str) -> None:
        if folder_id not in self._state.folders:
            return
        folders = {key: value for key, value in self._state.folders.items() if key != folder_id}
        self._set(folders=_frozen(folders))

    def set_selected_track(self, track_id: str | None) -> None:
        self._set(selected_track=track_id)

    def clear(self) -> None:
        """Drop all state (sign-out)."""
        self._set(
            tracks=_frozen(),
            folders=_frozen(),
            is_initialized=False,
            is_loading=False,
            error=None,
            selected_track=None,
        )

    def _set(self, **changes: Any) -> None:
        self._state = dataclasses.replace(self._state, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.error(f"Store listener raised: {e}", exc_info=True)
