"""Test configuration and fixtures"""

import asyncio
import dataclasses
from typing import Any

import pytest

from pattern_sync.autosave import AutosaveScheduler, BufferEditor
from pattern_sync.core.config import AutosaveConfig
from pattern_sync.core.events import EventEmitter
from pattern_sync.core.exceptions import NotFoundError
from pattern_sync.library.models import Folder, Step, Track, now_iso
from pattern_sync.store import TracksStore
from pattern_sync.sync import MutationOrchestrator

TRACK_FIELDS = {f.name for f in dataclasses.fields(Track)}
FOLDER_FIELDS = {f.name for f in dataclasses.fields(Folder)}


class FakeSession:
    """Session provider without token files or network"""

    def __init__(self, authenticated: bool = True, user: dict | None = None) -> None:
        self.authenticated = authenticated
        self.user = user if user is not None else {"id": "user-1"}
        self.ensure_calls: list[bool] = []

    @property
    def is_authenticated(self) -> bool:
        return self.authenticated

    @property
    def current_user(self) -> dict | None:
        return self.user if self.authenticated else None

    async def ensure_valid_session(self, force_refresh: bool = False) -> bool:
        self.ensure_calls.append(force_refresh)
        return self.authenticated

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": "Bearer test-token"} if self.authenticated else {}

    def sign_out(self) -> None:
        self.authenticated = False


class FakeRemote:
    """
    In-memory stand-in for RemoteStoreClient.

    Records every call, can fail a method with a given exception and can
    hold a method until the test releases it.
    """

    def __init__(self, tracks=(), folders=()) -> None:
        self.tracks: dict[str, Track] = {track.id: track for track in tracks}
        self.folders: dict[str, Folder] = {folder.id: folder for folder in folders}
        self.calls: list[tuple[Any, ...]] = []
        self.failures: dict[str, Exception] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self._next_id = 1

    def fail(self, method: str, error: Exception) -> None:
        self.failures[method] = error

    def hold(self, method: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[method] = gate
        return gate

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        return [call[1:] for call in self.calls if call[0] == method]

    async def _enter(self, method: str, *args: Any) -> None:
        self.calls.append((method, *args))
        gate = self.gates.get(method)
        if gate is not None:
            await gate.wait()
        error = self.failures.get(method)
        if error is not None:
            raise error

    async def list_tracks(self):
        await self._enter("list_tracks")
        return list(self.tracks.values()), list(self.folders.values())

    async def create_track(self, name, code="", folder=None, is_multitrack=False, steps=None, active_step=0):
        await self._enter("create_track", name)
        track = Track(
            id=f"track-{self._next_id}",
            name=name,
            code=code,
            created=now_iso(),
            modified=now_iso(),
            folder=folder,
            is_multitrack=is_multitrack,
            steps=tuple(steps or ()),
            active_step=active_step,
        )
        self._next_id += 1
        self.tracks[track.id] = track
        return track

    async def update_track(self, track_id, updates):
        await self._enter("update_track", track_id, dict(updates))
        track = self.tracks.get(track_id)
        if track is None:
            raise NotFoundError("Track not found", details={"track_id": track_id})
        updated = track.with_updates(**{k: v for k, v in updates.items() if k in TRACK_FIELDS})
        self.tracks[track_id] = updated
        return updated

    async def delete_track(self, track_id):
        await self._enter("delete_track", track_id)
        if self.tracks.pop(track_id, None) is None:
            raise NotFoundError("Track not found", details={"track_id": track_id})

    async def delete_all_tracks(self):
        await self._enter("delete_all_tracks")
        self.tracks.clear()

    async def create_folder(self, folder_id, name, path, parent=None):
        await self._enter("create_folder", folder_id, name, path, parent)
        folder = Folder(id=folder_id, name=name, path=path, parent=parent, created=now_iso())
        self.folders[folder_id] = folder
        return folder

    async def update_folder(self, folder_id, updates):
        await self._enter("update_folder", folder_id, dict(updates))
        folder = self.folders.get(folder_id)
        if folder is None:
            raise NotFoundError("Folder not found", details={"folder_id": folder_id})
        updated = folder.with_updates(**{k: v for k, v in updates.items() if k in FOLDER_FIELDS})
        self.folders[folder_id] = updated
        return updated

    async def delete_folder(self, folder_id):
        await self._enter("delete_folder", folder_id)
        if self.folders.pop(folder_id, None) is None:
            raise NotFoundError("Folder not found", details={"folder_id": folder_id})

    async def delete_all_folders(self):
        await self._enter("delete_all_folders")
        self.folders.clear()

    async def close(self):
        pass


class EventRecorder:
    """Collects every emitted event as (name, payload)"""

    def __init__(self, events: EventEmitter) -> None:
        self.received: list[tuple[str, dict]] = []
        events.on_any(self._record)

    def _record(self, event: str, **payload: Any) -> None:
        self.received.append((event, payload))

    def names(self) -> list[str]:
        return [event for event, _ in self.received]

    def of(self, event: str) -> list[dict]:
        return [payload for name, payload in self.received if name == event]


class Router:
    """Holds the current navigable path"""

    def __init__(self, path: str | None = None) -> None:
        self.path = path


@pytest.fixture
def sample_folders():
    """live/ and live/drums/"""
    return [
        Folder(id="f-live", name="live", path="live"),
        Folder(id="f-drums", name="drums", path="live/drums", parent="f-live"),
    ]


@pytest.fixture
def sample_tracks():
    """One root track, two folder tracks and a multitrack track"""
    return [
        Track(id="t-sketch", name="Sketch", code='s("hh*8")'),
        Track(id="t-loop", name="Drum Loop", code='s("bd sd")', folder="live"),
        Track(id="t-kick", name="Kick", code='s("bd*4")', folder="live/drums"),
        Track(
            id="t-song",
            name="Song",
            code='note("c e g")',
            folder="live",
            is_multitrack=True,
            steps=(
                Step(id="s1", name="Intro", code='note("c")'),
                Step(id="s2", name="Verse", code='note("e g")'),
            ),
        ),
    ]


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def remote(sample_tracks, sample_folders):
    return FakeRemote(sample_tracks, sample_folders)


@pytest.fixture
def store(remote, sample_tracks, sample_folders):
    store = TracksStore(remote)
    store.replace(sample_tracks, sample_folders)
    return store


@pytest.fixture
def events():
    return EventEmitter()


@pytest.fixture
def recorder(events):
    return EventRecorder(events)


@pytest.fixture
def router():
    return Router()


@pytest.fixture
def editor():
    return BufferEditor()


@pytest.fixture
def autosave_config():
    return AutosaveConfig(enabled=True, interval=0.01, poll_interval=0.01)


@pytest.fixture
def scheduler(store, remote, session, router, events, autosave_config, editor):
    return AutosaveScheduler(
        store, remote, session, lambda: router.path, events, autosave_config, editor=editor
    )


@pytest.fixture
def orchestrator(store, remote, session, scheduler, events):
    counter = iter(range(1, 1000))
    return MutationOrchestrator(
        store, remote, session, scheduler, events,
        id_factory=lambda: f"gen-{next(counter)}"
    )
