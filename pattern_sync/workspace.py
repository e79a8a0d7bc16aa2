"""
Wiring of one signed-in editing session.

A Workspace owns exactly one of each collaborator (session, remote client,
store, scheduler, orchestrator, change detector) and passes them to each
other explicitly. It also holds the current navigable path, which is the
only source of truth for "which track is open".

Usage:
    config = load_config()
    async with Workspace(config) as workspace:
        await workspace.open()
        workspace.scheduler.attach_editor(FileEditor(path))
        await workspace.navigate("/repl/live/drum-loop")
        workspace.change_detector.start()
"""

from typing import Any

from pattern_sync.autosave.change_detector import ChangeDetector
from pattern_sync.autosave.editor import Editor
from pattern_sync.autosave.scheduler import AutosaveScheduler
from pattern_sync.core.config import Config
from pattern_sync.core.events import EventEmitter
from pattern_sync.core.logger import get_logger
from pattern_sync.library.models import Track
from pattern_sync.library.slugs import track_url_path
from pattern_sync.remote.client import RemoteStoreClient
from pattern_sync.remote.session import SessionProvider, TokenSession
from pattern_sync.routing.resolver import ActiveTrack
from pattern_sync.store.tracks_store import TracksStore
from pattern_sync.sync.orchestrator import MutationOrchestrator


logger = get_logger(__name__)


class Workspace:
    """
    Container wiring the sync components for one session.

    Attributes:
        config: Loaded configuration.
        events: Shared EventEmitter.
        session: Session provider (TokenSession unless injected).
        remote: Remote store client.
        store: The session's TracksStore.
        scheduler: Autosave scheduler.
        orchestrator: Mutation orchestrator.
        change_detector: Polling change detector (not started).
        current_path: Current navigable path, None when no track is open.
    """

    def __init__(
        self,
        config: Config,
        session: SessionProvider | None = None,
        remote: RemoteStoreClient | None = None,
        editor: Editor | None = None
    ) -> None:
        self.config = config
        self.events = EventEmitter()
        self.current_path: str | None = None

        api_root = f"{config.remote.base_url}{config.remote.api_prefix}"
        self.session = session or TokenSession(
            config.auth.token_file,
            refresh_url=f"{api_root}/auth/refresh",
            refresh_margin=config.auth.refresh_margin,
            timeout=config.remote.timeout,
        )
        self.remote = remote or RemoteStoreClient(
            config.remote.base_url,
            self.session,
            api_prefix=config.remote.api_prefix,
            timeout=config.remote.timeout,
        )
        self.store = TracksStore(self.remote)
        self.scheduler = AutosaveScheduler(
            self.store,
            self.remote,
            self.session,
            lambda: self.current_path,
            self.events,
            config.autosave,
            route_prefix=config.routing.prefix,
            editor=editor,
        )
        self.orchestrator = MutationOrchestrator(
            self.store,
            self.remote,
            self.session,
            self.scheduler,
            self.events,
        )
        self.change_detector = ChangeDetector(
            self.scheduler, config.autosave.poll_interval, events=self.events
        )

    async def __aenter__(self) -> "Workspace":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def open(self) -> bool:
        """Load the library, bounded by remote.initial_load_timeout."""
        return await self.store.load_from_remote(timeout=self.config.remote.initial_load_timeout)

    def path_for(self, track: Track, step_name: str | None = None) -> str:
        return track_url_path(
            track.name,
            track.folder,
            self.store.folders,
            prefix=self.config.routing.prefix,
            step_name=step_name,
        )

    async def navigate(self, path: str | None) -> ActiveTrack | None:
        """
        Change the current path and load the track it points at.

        The track is only (re)loaded into the editor when the resolved id
        differs from the selected track. A ?step= that names another step
        of a multitrack track switches to it (see switch_to_step()).

        Returns:
            The resolved ActiveTrack, or None if the path matches no track.
        """
        self.current_path = path
        active = self.scheduler.resolve_current()
        if active is None:
            logger.debug(f"No track at {path}")
            return None

        track = self.store.get_track(active.track_id)
        if track is None:
            return active
        if active.track_id != self.store.state.selected_track:
            self.scheduler.load_track(track)

        if (
            active.step_index is not None
            and track.is_multitrack
            and active.step_index != track.active_step
        ):
            await self.orchestrator.switch_to_step(track.id, active.step_index)
        return active

    async def open_track(self, track_id: str, step_name: str | None = None) -> ActiveTrack | None:
        track = self.store.get_track(track_id)
        if track is None:
            return None
        return await self.navigate(self.path_for(track, step_name))

    def sign_out(self) -> None:
        """Forget the session and every piece of local state."""
        self.scheduler.cleanup()
        self.change_detector.reset()
        self.store.clear()
        self.current_path = None
        sign_out = getattr(self.session, "sign_out", None)
        if callable(sign_out):
            sign_out()

    async def close(self) -> None:
        await self.change_detector.stop()
        self.change_detector.close()
        await self.scheduler.aclose()
        await self.remote.close()
        close_session = getattr(self.session, "close", None)
        if callable(close_session):
            await close_session()
