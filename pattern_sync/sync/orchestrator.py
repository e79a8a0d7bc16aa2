"""
User-initiated library mutations.

The orchestrator is the single entry point for create, update, move and
delete actions. Each operation follows the same outline:

    1. Validate input locally (ValidationError, no network round-trip)
    2. Make sure a valid session exists (AuthenticationError)
    3. Call the remote store
    4. Apply the result to the TracksStore
    5. Emit the success event, or the failure event and re-raise

Failure events carry a `message`; auth failures additionally emit
authRequired and 404s emit itemNotFound, so a UI can prompt for sign-in or
suggest a reload instead of a blind retry.

Concurrency with autosave is handled by the scheduler: deletes run inside
scheduler.deleting() so a pending timer can never write to a deleted track,
and step switches run inside scheduler.paused() for the same reason.
"""

import dataclasses
import secrets
from typing import Any, Callable, Iterable

from pattern_sync.autosave.scheduler import AutosaveScheduler
from pattern_sync.core.events import EventEmitter, Events
from pattern_sync.core.exceptions import (
    AuthenticationError,
    NotFoundError,
    PatternSyncError,
    RemoteError,
    ValidationError,
)
from pattern_sync.core.logger import get_logger
from pattern_sync.library.models import Folder, Step, Track, now_iso
from pattern_sync.library.slugs import resolve_folder_path
from pattern_sync.library.validation import (
    generate_unique_track_name,
    is_track_name_available,
    validate_folder_name,
    validate_step_name,
    validate_track_name,
)
from pattern_sync.remote.client import RemoteStoreClient
from pattern_sync.remote.session import SessionProvider
from pattern_sync.store.tracks_store import TracksStore


logger = get_logger(__name__)

FOLDER_NOT_FOUND_MESSAGE = (
    "Folder no longer exists; it may have been deleted elsewhere. "
    "Reload to refresh your library."
)
TRACK_NOT_FOUND_MESSAGE = (
    "Track no longer exists; it may have been deleted elsewhere. "
    "Reload to refresh your library."
)
DEFAULT_STEP_CODE = "// New step\n"


def generate_id() -> str:
    """21-character url-safe id for client-created folders and steps."""
    return secrets.token_urlsafe(16)[:21]


def folder_path_for(name: str, parent: Folder | None) -> str:
    """Path of a folder called name under parent (None = root)."""
    name = name.strip()
    return f"{parent.path}/{name}" if parent else name


class MutationOrchestrator:
    """
    Coordinates library mutations between the store, the server and autosave.

    Attributes:
        store: The session's TracksStore.
        remote: Remote store client.
        session: Session provider, validated before every remote call.
        scheduler: Autosave scheduler, cleaned up on deletes.
        events: Emitter receiving success and failure events.
        id_factory: Callable producing client-side ids.
    """

    def __init__(
        self,
        store: TracksStore,
        remote: RemoteStoreClient,
        session: SessionProvider,
        scheduler: AutosaveScheduler,
        events: EventEmitter,
        id_factory: Callable[[], str] = generate_id
    ) -> None:
        self.store = store
        self.remote = remote
        self.session = session
        self.scheduler = scheduler
        self.events = events
        self.id_factory = id_factory

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _require_session(self) -> None:
        if not await self.session.ensure_valid_session():
            raise AuthenticationError("You are not signed in, please sign in again")

    def _fail(self, event: str, error: PatternSyncError, **payload: Any) -> None:
        """Emit the failure event (plus authRequired/itemNotFound when relevant)."""
        if isinstance(error, AuthenticationError):
            self.events.emit(Events.AUTH_REQUIRED, message=error.message)
        elif isinstance(error, NotFoundError):
            self.events.emit(Events.ITEM_NOT_FOUND, message=error.message, **payload)
        self.events.emit(event, message=error.message, **payload)

    def _validation_failed(self, event: str, message: str, **payload: Any) -> ValidationError:
        error = ValidationError(message, details=payload)
        self.events.emit(event, message=message, **payload)
        return error

    def _require_track(self, track_id: str, event: str) -> Track:
        track = self.store.get_track(track_id)
        if track is None:
            error = NotFoundError(TRACK_NOT_FOUND_MESSAGE, details={"track_id": track_id})
            self._fail(event, error, track_id=track_id)
            raise error
        return track

    def _require_folder(self, folder_id: str, event: str) -> Folder:
        folder = self.store.get_folder(folder_id)
        if folder is None:
            error = NotFoundError(FOLDER_NOT_FOUND_MESSAGE, details={"folder_id": folder_id})
            self._fail(event, error, folder_id=folder_id)
            raise error
        return folder

    def _normalize_folder(self, folder: str | None) -> str | None:
        """Accept a folder path or id; return the path (None for root)."""
        path = resolve_folder_path(folder, self.store.folders)
        if path is not None and self.store.find_folder_by_path(path) is None:
            raise ValidationError(f"Folder '{folder}' does not exist", details={"folder": folder})
        return path

    # =========================================================================
    # Tracks
    # =========================================================================

    async def create_track(
        self,
        name: str,
        code: str = "",
        folder: str | None = None,
        is_multitrack: bool = False,
        steps: Iterable[Step] | None = None,
        active_step: int = 0
    ) -> Track:
        """
        Create a track on the server and add it to the store.

        Args:
            name: Track name, unique (case-insensitively) within folder.
            code: Initial pattern source.
            folder: Folder path or id, None for root.
            is_multitrack: Create a multitrack track. Without explicit steps
                           a single step holding code is created.
            steps: Steps of a multitrack track.
            active_step: Index of the active step.

        Returns:
            The created Track.

        Raises:
            ValidationError: Invalid name or unknown folder.
            AuthenticationError: No valid session.
            RemoteError: The server rejected the request.
        """
        name = (name or "").strip()
        try:
            folder_path = self._normalize_folder(folder)
        except ValidationError as e:
            raise self._validation_failed(Events.CREATE_FAILED, e.message, name=name) from e

        valid, message = validate_track_name(name, self.store.tracks.values(), folder_path)
        if not valid:
            raise self._validation_failed(Events.CREATE_FAILED, message, name=name)

        step_list = list(steps or ())
        if is_multitrack and not step_list:
            step_list = [Step(id=self.id_factory(), name="Step 1", code=code, created=now_iso())]
        if is_multitrack and not 0 <= active_step < len(step_list):
            active_step = 0

        try:
            await self._require_session()
            track = await self.remote.create_track(
                name,
                code=code,
                folder=folder_path,
                is_multitrack=is_multitrack,
                steps=step_list,
                active_step=active_step,
            )
        except (AuthenticationError, RemoteError) as e:
            logger.error(f"Failed to create track '{name}': {e.message}")
            self._fail(Events.CREATE_FAILED, e, name=name)
            raise

        self.store.add_track(track)
        logger.info(f"Created track '{track.name}' ({track.id})")
        self.events.emit(Events.TRACK_CREATED, track_id=track.id, name=track.name)
        return track

    async def update_track(self, track_id: str, **updates: Any) -> Track:
        """
        Partially update a track.

        The store is updated optimistically and rolled back if the server
        rejects the change.

        Raises:
            NotFoundError: The track is unknown locally or on the server.
            ValidationError: A new name is invalid in the track's folder.
        """
        track = self._require_track(track_id, Events.UPDATE_FAILED)

        if "name" in updates:
            updates["name"] = (updates["name"] or "").strip()
            target_folder = updates.get("folder", track.folder)
            valid, message = validate_track_name(
                updates["name"], self.store.tracks.values(), target_folder, exclude_id=track_id
            )
            if not valid:
                raise self._validation_failed(Events.UPDATE_FAILED, message, track_id=track_id)

        updates.setdefault("modified", now_iso())
        previous = {key: getattr(track, key) for key in updates if hasattr(track, key)}
        self.store.update_track(track_id, **updates)

        try:
            await self._require_session()
            saved = await self.remote.update_track(track_id, updates)
        except (AuthenticationError, RemoteError) as e:
            logger.error(f"Failed to update track {track_id}: {e.message}")
            if self.store.get_track(track_id) is not None:
                self.store.update_track(track_id, **previous)
            self._fail(Events.UPDATE_FAILED, e, track_id=track_id)
            raise

        updated = self.store.update_track(track_id, modified=saved.modified or updates["modified"])
        if "code" in updates:
            self.scheduler.sync_saved_code(track_id, updates["code"])
        self.events.emit(Events.TRACK_UPDATED, track_id=track_id)
        return updated or saved

    async def rename_track(self, track_id: str, name: str) -> Track:
        return await self.update_track(track_id, name=name)

    async def move_track(self, track_id: str, folder: str | None) -> Track:
        """
        Move a track to another folder (path or id, None for root).

        Raises:
            ValidationError: Unknown target folder, or a track with the same
                             name already lives there.
        """
        track = self._require_track(track_id, Events.UPDATE_FAILED)
        try:
            folder_path = self._normalize_folder(folder)
        except ValidationError as e:
            raise self._validation_failed(Events.UPDATE_FAILED, e.message, track_id=track_id) from e

        if not is_track_name_available(track.name, self.store.tracks.values(), folder_path, track_id):
            raise self._validation_failed(
                Events.UPDATE_FAILED,
                f'A track named "{track.name}" already exists in {folder_path or "the root folder"}',
                track_id=track_id,
            )
        return await self.update_track(track_id, folder=folder_path)

    async def duplicate_track(self, track_id: str) -> Track:
        """Create a copy named "<name> (copy)" in the same folder."""
        track = self._require_track(track_id, Events.CREATE_FAILED)
        folder_path = resolve_folder_path(track.folder, self.store.folders)
        name = generate_unique_track_name(
            f"{track.name} (copy)", self.store.tracks.values(), folder_path
        )
        return await self.create_track(
            name,
            code=track.code,
            folder=folder_path,
            is_multitrack=track.is_multitrack,
            steps=track.steps,
            active_step=track.active_step,
        )

    async def delete_track(self, track_id: str) -> None:
        """
        Delete a track on the server, then locally.

        Autosave for the track is blocked and its context discarded for the
        whole operation. A 404 means it is already gone and counts as success.
        """
        with self.scheduler.deleting(track_id):
            try:
                await self._require_session()
                await self.remote.delete_track(track_id)
            except NotFoundError:
                logger.warning(f"Track {track_id} was already deleted on the server")
            except (AuthenticationError, RemoteError) as e:
                logger.error(f"Failed to delete track {track_id}: {e.message}")
                self._fail(Events.DELETE_FAILED, e, track_id=track_id)
                raise

            self.store.remove_track(track_id)

        logger.info(f"Deleted track {track_id}")
        self.events.emit(Events.TRACK_DELETED, track_id=track_id)

    async def delete_all_tracks(self) -> None:
        """
        Delete every track and folder, then re-sync from the server.

        The re-sync runs whether or not the bulk deletes succeeded, so local
        state always ends up matching the server.
        """
        self.scheduler.cleanup()
        try:
            await self._require_session()
            await self.remote.delete_all_tracks()
            await self.remote.delete_all_folders()
        except (AuthenticationError, RemoteError) as e:
            logger.error(f"Failed to delete library: {e.message}")
            self._fail(Events.DELETE_FAILED, e)
            raise
        finally:
            await self.store.load_from_remote()

        self.scheduler.clear_editor()
        logger.info("Deleted all tracks and folders")
        self.events.emit(Events.ALL_TRACKS_DELETED)

    # =========================================================================
    # Steps
    # =========================================================================

    def _require_step(self, track: Track, index: int | None, event: str) -> None:
        if not track.is_multitrack:
            raise self._validation_failed(
                event, f'Track "{track.name}" is not a multitrack track', track_id=track.id
            )
        if index is not None and not 0 <= index < len(track.steps):
            raise self._validation_failed(
                event, f"Step {index} does not exist", track_id=track.id, step=index
            )

    def _is_open(self, track_id: str) -> bool:
        return self.store.state.selected_track == track_id

    async def add_step(
        self,
        track_id: str,
        name: str | None = None,
        code: str = DEFAULT_STEP_CODE
    ) -> Track:
        """
        Append a step to a multitrack track.

        Without a name the step is called "Step N", N being the new step
        count (bumped further if that name is taken). The active step does
        not change.

        Raises:
            ValidationError: Not a multitrack track, or the name is invalid
                             or already used by another step.
        """
        track = self._require_track(track_id, Events.UPDATE_FAILED)
        self._require_step(track, None, Events.UPDATE_FAILED)

        if name is None or not name.strip():
            counter = len(track.steps) + 1
            while not validate_step_name(f"Step {counter}", track.steps)[0]:
                counter += 1
            name = f"Step {counter}"

        name = name.strip()
        valid, message = validate_step_name(name, track.steps)
        if not valid:
            raise self._validation_failed(Events.UPDATE_FAILED, message, track_id=track_id)

        created = now_iso()
        step = Step(id=self.id_factory(), name=name, code=code, created=created, modified=created)
        updated = await self.update_track(track_id, steps=[*track.steps, step])
        logger.info(f"Added step '{name}' to '{track.name}'")
        return updated

    async def rename_step(self, track_id: str, index: int, name: str) -> Track:
        track = self._require_track(track_id, Events.UPDATE_FAILED)
        self._require_step(track, index, Events.UPDATE_FAILED)

        name = (name or "").strip()
        valid, message = validate_step_name(name, track.steps, exclude_index=index)
        if not valid:
            raise self._validation_failed(Events.UPDATE_FAILED, message, track_id=track_id, step=index)

        steps = list(track.steps)
        steps[index] = dataclasses.replace(steps[index], name=name, modified=now_iso())
        return await self.update_track(track_id, steps=steps)

    async def delete_step(self, track_id: str, index: int) -> Track:
        """
        Remove a step from a multitrack track.

        The active index follows its step: deleting a step before it shifts
        it down by one, deleting the active step itself makes step 0 active
        and loads its code (into the editor too, when the track is open).

        Raises:
            ValidationError: Unknown step, or it is the track's last one.
        """
        track = self._require_track(track_id, Events.UPDATE_FAILED)
        self._require_step(track, index, Events.UPDATE_FAILED)
        if len(track.steps) <= 1:
            raise self._validation_failed(
                Events.UPDATE_FAILED, "A multitrack track needs at least one step", track_id=track_id
            )

        steps = [step for position, step in enumerate(track.steps) if position != index]
        if index == track.active_step:
            active_step = 0
        elif index < track.active_step:
            active_step = track.active_step - 1
        else:
            active_step = track.active_step

        if index != track.active_step:
            return await self.update_track(track_id, steps=steps, active_step=active_step)

        with self.scheduler.paused(track_id):
            updated = await self.update_track(
                track_id, steps=steps, active_step=active_step, code=steps[active_step].code
            )
        if self._is_open(track_id):
            self.scheduler.load_track(updated)
        return updated

    async def switch_to_step(self, track_id: str, index: int) -> Track:
        """
        Make another step of a multitrack track the active one.

        The outgoing step keeps the code being edited (the editor's buffer
        when the track is open), then the track's code becomes the new
        step's code. Autosave is paused while the switch is written.

        Raises:
            ValidationError: Not a multitrack track or unknown step.
        """
        track = self._require_track(track_id, Events.UPDATE_FAILED)
        self._require_step(track, index, Events.UPDATE_FAILED)
        if index == track.active_step:
            return track

        outgoing = track.code
        editor = self.scheduler.editor
        if self._is_open(track_id) and editor is not None and editor.code is not None:
            outgoing = editor.code

        steps = list(track.steps)
        current = steps[track.active_step]
        if current.code != outgoing:
            steps[track.active_step] = dataclasses.replace(current, code=outgoing, modified=now_iso())

        with self.scheduler.paused(track_id):
            updated = await self.update_track(
                track_id, steps=steps, active_step=index, code=steps[index].code
            )
        if self._is_open(track_id):
            self.scheduler.load_track(updated)

        logger.info(f"'{track.name}' switched to step '{steps[index].name}'")
        return updated

    # =========================================================================
    # Folders
    # =========================================================================

    async def create_folder(self, name: str, path: str, parent: str | None = None) -> Folder:
        """
        Create a folder with a client-generated id.

        Args:
            name: Folder name.
            path: Full path of the new folder (see folder_path_for()).
            parent: Id of the parent folder, None for root.

        Raises:
            ValidationError: Empty name/path, path taken, or unknown parent.
                             Raised before any network call.
        """
        name = (name or "").strip()
        path = (path or "").strip().strip("/")

        valid, message = validate_folder_name(name)
        if not valid:
            raise self._validation_failed(Events.CREATE_FAILED, message, name=name)
        if not path:
            raise self._validation_failed(Events.CREATE_FAILED, "Folder path cannot be empty", name=name)
        if self.store.find_folder_by_path(path) is not None:
            raise self._validation_failed(
                Events.CREATE_FAILED, f"A folder '{path}' already exists", name=name
            )
        if parent is not None and self.store.get_folder(parent) is None:
            raise self._validation_failed(
                Events.CREATE_FAILED, f"Parent folder {parent} does not exist", name=name
            )

        folder_id = self.id_factory()
        try:
            await self._require_session()
            folder = await self.remote.create_folder(folder_id, name, path, parent)
        except (AuthenticationError, RemoteError) as e:
            logger.error(f"Failed to create folder '{path}': {e.message}")
            self._fail(Events.CREATE_FAILED, e, name=name)
            raise

        self.store.add_folder(folder)
        logger.info(f"Created folder '{folder.path}' ({folder.id})")
        self.events.emit(Events.FOLDER_CREATED, folder_id=folder.id, path=folder.path)
        return folder

    async def update_folder(self, folder_id: str, **updates: Any) -> Folder:
        """
        Partially update a folder.

        Raises:
            NotFoundError: The folder was deleted (locally unknown, or 404
                           from the server), with a reload recommendation.
        """
        self._require_folder(folder_id, Events.UPDATE_FAILED)

        try:
            await self._require_session()
            await self.remote.update_folder(folder_id, updates)
        except NotFoundError as e:
            error = NotFoundError(FOLDER_NOT_FOUND_MESSAGE, details={"folder_id": folder_id})
            logger.warning(f"Folder {folder_id} not found on server: {e.message}")
            self._fail(Events.UPDATE_FAILED, error, folder_id=folder_id)
            raise error from e
        except (AuthenticationError, RemoteError) as e:
            logger.error(f"Failed to update folder {folder_id}: {e.message}")
            self._fail(Events.UPDATE_FAILED, e, folder_id=folder_id)
            raise

        updated = self.store.update_folder(folder_id, **updates)
        self.events.emit(Events.FOLDER_UPDATED, folder_id=folder_id)
        return updated

    async def rename_folder(self, folder_id: str, name: str) -> Folder:
        folder = self._require_folder(folder_id, Events.UPDATE_FAILED)
        valid, message = validate_folder_name(name)
        if not valid:
            raise self._validation_failed(Events.UPDATE_FAILED, message, folder_id=folder_id)
        return await self._relocate_folder(folder, name.strip(), folder.parent)

    async def move_folder(self, folder_id: str, parent: str | None) -> Folder:
        """
        Move a folder under another folder (None for root).

        Raises:
            ValidationError: The target is the folder itself or one of its
                             descendants, or does not exist.
        """
        folder = self._require_folder(folder_id, Events.UPDATE_FAILED)

        current = parent
        while current is not None:
            if current == folder_id:
                raise self._validation_failed(
                    Events.UPDATE_FAILED,
                    "Cannot move a folder into itself or one of its subfolders",
                    folder_id=folder_id,
                )
            ancestor = self.store.get_folder(current)
            if ancestor is None:
                raise self._validation_failed(
                    Events.UPDATE_FAILED, f"Folder {current} does not exist", folder_id=folder_id
                )
            current = ancestor.parent

        return await self._relocate_folder(folder, folder.name, parent)

    async def _relocate_folder(self, folder: Folder, name: str, parent: str | None) -> Folder:
        """
        Give a folder a new name and/or parent and cascade the path change.

        Descendant folders get their paths rewritten, and tracks referencing
        the old path (or a path below it) are moved along. If any remote
        call fails part way, the store is re-synced from the server.
        """
        parent_folder = self.store.get_folder(parent)
        new_path = folder_path_for(name, parent_folder)
        old_path = folder.path

        if new_path != old_path and self.store.find_folder_by_path(new_path) is not None:
            raise self._validation_failed(
                Events.UPDATE_FAILED, f"A folder '{new_path}' already exists", folder_id=folder.id
            )

        def rebase(path: str) -> str:
            return new_path + path[len(old_path):]

        descendants = [
            other for other in self.store.folders.values()
            if other.path.startswith(old_path + "/")
        ]
        moved_tracks = [
            track for track in self.store.tracks.values()
            if track.folder and (track.folder == old_path or track.folder.startswith(old_path + "/"))
        ]

        await self.update_folder(folder.id, name=name, path=new_path, parent=parent)

        try:
            for other in descendants:
                await self.remote.update_folder(other.id, {"path": rebase(other.path)})
                self.store.update_folder(other.id, path=rebase(other.path))
            for track in moved_tracks:
                await self.remote.update_track(track.id, {"folder": rebase(track.folder)})
                self.store.update_track(track.id, folder=rebase(track.folder))
        except (AuthenticationError, RemoteError) as e:
            logger.error(f"Failed to move contents of '{old_path}': {e.message}")
            self._fail(Events.UPDATE_FAILED, e, folder_id=folder.id)
            await self.store.load_from_remote()
            raise

        logger.info(f"Folder '{old_path}' is now '{new_path}'")
        return self.store.get_folder(folder.id)

    async def delete_folder(self, folder_id: str) -> None:
        """
        Delete a folder with everything inside it.

        Tracks are deleted first, then sub-folders deepest first, then the
        folder itself.
        """
        folder = self._require_folder(folder_id, Events.DELETE_FAILED)
        prefix = folder.path + "/"

        tracks = [
            track for track in self.store.tracks.values()
            if track.folder and (
                track.folder in (folder.path, folder.id) or track.folder.startswith(prefix)
            )
        ]
        subfolders = sorted(
            (other for other in self.store.folders.values() if other.path.startswith(prefix)),
            key=lambda other: other.path.count("/"),
            reverse=True,
        )

        for track in tracks:
            await self.delete_track(track.id)

        for target in [*subfolders, folder]:
            try:
                await self._require_session()
                await self.remote.delete_folder(target.id)
            except NotFoundError:
                logger.warning(f"Folder {target.id} was already deleted on the server")
            except (AuthenticationError, RemoteError) as e:
                logger.error(f"Failed to delete folder '{target.path}': {e.message}")
                self._fail(Events.DELETE_FAILED, e, folder_id=target.id)
                raise
            self.store.remove_folder(target.id)
            self.events.emit(Events.FOLDER_DELETED, folder_id=target.id, path=target.path)

        logger.info(f"Deleted folder '{folder.path}' with {len(tracks)} tracks")

    async def delete_all_folders(self) -> None:
        """Delete every folder on the server, then re-sync from the server."""
        try:
            await self._require_session()
            await self.remote.delete_all_folders()
        except (AuthenticationError, RemoteError) as e:
            logger.error(f"Failed to delete folders: {e.message}")
            self._fail(Events.DELETE_FAILED, e)
            raise
        finally:
            await self.store.load_from_remote()

        logger.info("Deleted all folders")
        self.events.emit(Events.FOLDER_DELETED, folder_id=None, all=True)
