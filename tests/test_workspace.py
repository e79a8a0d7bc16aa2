# tests/test_workspace.py
"""Test the workspace wiring with fake session and remote"""

import pytest
import pytest_asyncio

from pattern_sync.core.config import config_from_dict
from pattern_sync.workspace import Workspace


pytestmark = pytest.mark.asyncio


@pytest.fixture
def config(tmp_path, monkeypatch):
    monkeypatch.delenv("PATTERN_SYNC_BASE_URL", raising=False)
    monkeypatch.delenv("PATTERN_SYNC_TOKEN_FILE", raising=False)
    return config_from_dict({
        "remote": {"base_url": "https://patterns.example.com"},
        "auth": {"token_file": str(tmp_path / "session.json")},
        "autosave": {"interval": 0.01, "poll_interval": 0.01},
        "logging": {"directory": str(tmp_path / "logs")},
    })


@pytest_asyncio.fixture
async def workspace(config, session, remote, editor):
    workspace = Workspace(config, session=session, remote=remote, editor=editor)
    await workspace.open()
    yield workspace
    await workspace.close()


class TestWorkspace:
    """Test navigation and session handling"""

    async def test_open_loads_library(self, workspace, remote):
        """Test the initial load"""
        assert workspace.store.state.is_initialized
        assert set(workspace.store.tracks) == set(remote.tracks)

    async def test_path_for(self, workspace):
        """Test paths use folder and track slugs"""
        track = workspace.store.get_track("t-kick")
        assert workspace.path_for(track) == "/repl/live/drums/kick"

    async def test_navigate_loads_track(self, workspace, editor):
        """Test navigating opens the track in the editor"""
        active = await workspace.navigate("/repl/live/drum-loop")
        assert active.track_id == "t-loop"
        assert workspace.store.state.selected_track == "t-loop"
        assert editor.code == 's("bd sd")'

    async def test_navigate_same_track_keeps_buffer(self, workspace, editor):
        """Test the editor is not reset when the track is already open"""
        await workspace.navigate("/repl/live/drum-loop")
        editor.code = "unsaved edit"
        await workspace.navigate("/repl/live/drum-loop")
        assert editor.code == "unsaved edit"

    async def test_navigate_nowhere(self, workspace):
        """Test unknown paths resolve to nothing"""
        assert await workspace.navigate("/repl/no/such/track") is None
        assert workspace.current_path == "/repl/no/such/track"

    async def test_open_track(self, workspace):
        """Test opening by id"""
        active = await workspace.open_track("t-song")
        assert active.track_id == "t-song"
        assert workspace.current_path == "/repl/live/song"
        assert await workspace.open_track("missing") is None

    async def test_sign_out_clears_state(self, workspace, session):
        """Test signing out forgets everything local"""
        await workspace.open_track("t-loop")
        workspace.sign_out()
        assert not session.is_authenticated
        assert not workspace.store.has_data()
        assert workspace.current_path is None
        assert workspace.scheduler.get_context("t-loop") is None

    async def test_sign_out_resets_change_detection(self, workspace, editor):
        """Test nothing seen before sign-out survives it"""
        await workspace.open_track("t-loop")
        editor.code = "edited"
        assert workspace.change_detector.check_once()
        workspace.sign_out()
        assert workspace.change_detector._last_seen == {}


class TestStepNavigation:
    """Test ?step= handling for multitrack tracks"""

    async def test_navigate_to_step(self, workspace, editor, remote):
        """Test the named step becomes active and its code is loaded"""
        active = await workspace.navigate("/repl/live/song?step=verse")
        assert active.step_index == 1
        track = workspace.store.get_track("t-song")
        assert track.active_step == 1
        assert editor.code == 'note("e g")'
        assert remote.tracks["t-song"].active_step == 1

    async def test_navigate_between_steps(self, workspace, editor):
        """Test switching back stores the edited step"""
        await workspace.navigate("/repl/live/song?step=verse")
        editor.code = 'note("e g b")'
        await workspace.navigate("/repl/live/song?step=intro")

        track = workspace.store.get_track("t-song")
        assert track.active_step == 0
        assert track.steps[1].code == 'note("e g b")'
        assert editor.code == track.steps[0].code

    async def test_navigate_to_active_step(self, workspace, remote):
        """Test the active step needs no request"""
        await workspace.navigate("/repl/live/song?step=intro")
        assert remote.count("update_track") == 0

    async def test_open_track_with_step(self, workspace):
        """Test opening a track at a step"""
        active = await workspace.open_track("t-song", step_name="Verse")
        assert active.step_index == 1
        assert workspace.current_path == "/repl/live/song?step=verse"
