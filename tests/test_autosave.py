# tests/test_autosave.py
"""Test the per-track autosave scheduler and change detection"""

import asyncio

import pytest

from pattern_sync.autosave import (
    AutosaveScheduler,
    AutosaveState,
    BufferEditor,
    ChangeDetector,
    FileEditor,
)
from pattern_sync.core.config import AutosaveConfig
from pattern_sync.core.events import Events
from pattern_sync.core.exceptions import AuthenticationError, RemoteError
from pattern_sync.library.slugs import track_url_path

SETTLE = 0.05


def _open(scheduler, router, track_id):
    """Navigate to a track and load it, as the workspace does"""
    track = scheduler.store.get_track(track_id)
    router.path = track_url_path(track.name, track.folder, scheduler.store.folders)
    scheduler.load_track(track)
    return track


def _saved_codes(remote, track_id):
    return [updates["code"] for tid, updates in remote.calls_to("update_track") if tid == track_id]


@pytest.mark.asyncio
class TestScheduling:
    """Test debounce timers and saves"""

    async def test_debounced_save(self, scheduler, router, editor, remote, store, recorder):
        """Test an edit is saved once the timer fires"""
        _open(scheduler, router, "t-loop")
        editor.code = 's("bd*2 sd")'

        assert scheduler.schedule_autosave("t-loop")
        assert scheduler.get_context("t-loop").state is AutosaveState.SCHEDULED
        await asyncio.sleep(SETTLE)

        assert _saved_codes(remote, "t-loop") == ['s("bd*2 sd")']
        assert store.get_track("t-loop").code == 's("bd*2 sd")'
        context = scheduler.get_context("t-loop")
        assert context.last_saved_code == 's("bd*2 sd")'
        assert context.last_saved_timestamp is not None
        assert context.state is AutosaveState.IDLE
        assert recorder.of(Events.TRACK_SAVED) == [{"track_id": "t-loop", "manual": False}]

    async def test_rescheduling_restarts_the_timer(self, scheduler, router, editor, remote):
        """Test rapid edits produce a single save"""
        _open(scheduler, router, "t-loop")
        for code in ("a", "ab", "abc"):
            editor.code = code
            scheduler.schedule_autosave("t-loop")
        await asyncio.sleep(SETTLE)
        assert _saved_codes(remote, "t-loop") == ["abc"]

    async def test_contexts_are_independent(self, scheduler, router, editor, remote, store):
        """Test interleaved edits never cross between tracks"""
        original_loop = store.get_track("t-loop").code

        _open(scheduler, router, "t-loop")
        editor.code = "loop edit"
        scheduler.schedule_autosave("t-loop")

        _open(scheduler, router, "t-sketch")
        editor.code = "sketch edit"
        scheduler.schedule_autosave("t-sketch")
        await asyncio.sleep(SETTLE)

        # The loop timer fired while the sketch was active and was dropped
        assert _saved_codes(remote, "t-loop") == []
        assert _saved_codes(remote, "t-sketch") == ["sketch edit"]
        assert store.get_track("t-loop").code == original_loop

        _open(scheduler, router, "t-loop")
        assert editor.code == original_loop
        editor.code = "loop edit 2"
        scheduler.schedule_autosave("t-loop")
        await asyncio.sleep(SETTLE)

        assert _saved_codes(remote, "t-loop") == ["loop edit 2"]
        assert scheduler.get_context("t-loop").last_saved_code == "loop edit 2"
        assert scheduler.get_context("t-sketch").last_saved_code == "sketch edit"
        assert store.get_track("t-sketch").code == "sketch edit"

    async def test_one_save_in_flight(self, scheduler, router, editor, remote):
        """Test schedules during an in-flight save are dropped"""
        gate = remote.hold("update_track")
        _open(scheduler, router, "t-loop")
        editor.code = "first"
        scheduler.schedule_autosave("t-loop")
        await asyncio.sleep(SETTLE)

        assert scheduler.get_context("t-loop").state is AutosaveState.SAVING
        editor.code = "second"
        assert not scheduler.schedule_autosave("t-loop")
        assert not scheduler.schedule_autosave("t-loop")

        gate.set()
        await asyncio.sleep(SETTLE)
        assert remote.count("update_track") == 1
        assert scheduler.get_context("t-loop").state is AutosaveState.IDLE

    async def test_track_is_busy_once_its_timer_fires(self, scheduler, router, editor, remote):
        """Test a schedule in the same loop turn as the timer is refused"""
        gate = remote.hold("update_track")
        _open(scheduler, router, "t-loop")
        editor.code = "first"
        assert scheduler.schedule_autosave("t-loop")

        accepted = []
        timer = scheduler.get_context("t-loop").timer
        loop = asyncio.get_running_loop()
        loop.call_at(timer.when(), lambda: accepted.append(scheduler.schedule_autosave("t-loop")))
        await asyncio.sleep(SETTLE)

        assert accepted == [False]
        assert scheduler.get_context("t-loop").state is AutosaveState.SAVING
        gate.set()
        await asyncio.sleep(SETTLE)
        assert remote.count("update_track") == 1
        assert scheduler.get_context("t-loop").state is AutosaveState.IDLE

    async def test_second_request_waits_for_the_first(self, scheduler, router, editor, remote, recorder):
        """Test a reloaded track cannot start a save while the old request is pending"""
        gate = remote.hold("update_track")
        track = _open(scheduler, router, "t-loop")
        editor.code = "first"
        scheduler.schedule_autosave("t-loop")
        await asyncio.sleep(SETTLE)

        scheduler.load_track(track)
        editor.code = "second"
        assert not await scheduler.save_current_track()
        assert recorder.of(Events.SAVE_FAILED)[-1]["message"] == "A save is already in progress"
        assert remote.count("update_track") == 1
        gate.set()
        await asyncio.sleep(SETTLE)

    async def test_reload_during_save_does_not_touch_store(self, scheduler, router, editor, remote, store, recorder):
        """Test a context replaced mid-save is left alone"""
        gate = remote.hold("update_track")
        track = _open(scheduler, router, "t-loop")
        editor.code = "in flight"
        scheduler.schedule_autosave("t-loop")
        await asyncio.sleep(SETTLE)

        scheduler.load_track(track)
        gate.set()
        await asyncio.sleep(SETTLE)

        assert store.get_track("t-loop").code == track.code
        assert scheduler.get_context("t-loop").last_saved_code == track.code
        assert recorder.of(Events.TRACK_SAVED) == []

    async def test_no_schedule_without_user(self, scheduler, router, session):
        """Test autosave needs a signed-in user"""
        _open(scheduler, router, "t-loop")
        session.authenticated = False
        assert not scheduler.schedule_autosave("t-loop")

    async def test_no_schedule_when_disabled(self, scheduler, router):
        """Test the master switch"""
        scheduler.config = AutosaveConfig(enabled=False)
        _open(scheduler, router, "t-loop")
        assert not scheduler.schedule_autosave("t-loop")

    async def test_no_schedule_for_unknown_track(self, scheduler):
        """Test unknown ids are ignored"""
        assert not scheduler.schedule_autosave("missing")

    async def test_deleting_blocks_scheduling(self, scheduler, router):
        """Test a track being deleted cannot be scheduled"""
        _open(scheduler, router, "t-loop")
        with scheduler.deleting("t-loop"):
            assert not scheduler.schedule_autosave("t-loop")
        assert scheduler.get_context("t-loop") is None

    async def test_delete_before_timer_fires(self, scheduler, orchestrator, router, editor, remote):
        """Test deleting a track cancels its pending save"""
        scheduler.config = AutosaveConfig(interval=SETTLE)
        _open(scheduler, router, "t-loop")
        editor.code = "doomed"
        assert scheduler.schedule_autosave("t-loop")

        await orchestrator.delete_track("t-loop")
        await asyncio.sleep(SETTLE * 2)

        assert _saved_codes(remote, "t-loop") == []
        assert not scheduler.schedule_autosave("t-loop")

    async def test_cleanup_cancels_everything(self, scheduler, router, editor, remote):
        """Test cleanup() drops all timers"""
        _open(scheduler, router, "t-loop")
        editor.code = "never saved"
        scheduler.schedule_autosave("t-loop")
        scheduler.cleanup()
        await asyncio.sleep(SETTLE)
        assert remote.count("update_track") == 0
        assert scheduler.get_context("t-loop") is None


@pytest.mark.asyncio
class TestAutosaveFailures:
    """Test autosave error policy"""

    async def test_auth_required_emitted_once(self, scheduler, router, editor, remote, recorder):
        """Test repeated auth failures notify only once"""
        remote.fail("update_track", AuthenticationError("Session expired"))
        _open(scheduler, router, "t-loop")
        for code in ("one", "two"):
            editor.code = code
            scheduler.schedule_autosave("t-loop")
            await asyncio.sleep(SETTLE)

        assert remote.count("update_track") == 2
        assert len(recorder.of(Events.AUTH_REQUIRED)) == 1
        assert recorder.of(Events.SAVE_FAILED) == []

    async def test_remote_failure_is_logged(self, scheduler, router, editor, remote, store, recorder, caplog):
        """Test autosave failures go to the log, not to events"""
        remote.fail("update_track", RemoteError("Server exploded", status=500))
        track = _open(scheduler, router, "t-loop")
        editor.code = "unsaved"
        scheduler.schedule_autosave("t-loop")
        await asyncio.sleep(SETTLE)

        assert "Save failed" in caplog.text
        assert recorder.of(Events.SAVE_FAILED) == []
        assert store.get_track("t-loop").code == track.code
        assert scheduler.get_context("t-loop").last_saved_code == track.code
        assert scheduler.get_context("t-loop").state is AutosaveState.IDLE


@pytest.mark.asyncio
class TestManualSave:
    """Test save_current_track()"""

    async def test_manual_save(self, scheduler, router, editor, remote, recorder):
        """Test a manual save skips the debounce"""
        _open(scheduler, router, "t-loop")
        editor.code = "manual"
        assert await scheduler.save_current_track()
        assert _saved_codes(remote, "t-loop") == ["manual"]
        assert recorder.of(Events.TRACK_SAVED) == [{"track_id": "t-loop", "manual": True}]

    async def test_unchanged_code_is_not_sent(self, scheduler, router, editor, remote, recorder):
        """Test saving twice sends one request"""
        _open(scheduler, router, "t-loop")
        editor.code = "once"
        assert await scheduler.save_current_track()
        assert await scheduler.save_current_track()
        assert remote.count("update_track") == 1
        assert recorder.of(Events.TRACK_SAVED)[-1]["unchanged"] is True

    async def test_manual_save_cancels_pending_timer(self, scheduler, router, editor, remote):
        """Test a manual save replaces the scheduled one"""
        _open(scheduler, router, "t-loop")
        editor.code = "typed"
        scheduler.schedule_autosave("t-loop")
        assert await scheduler.save_current_track()
        await asyncio.sleep(SETTLE)
        assert remote.count("update_track") == 1

    async def test_blank_code(self, scheduler, router, editor, remote, recorder):
        """Test empty editors are never saved"""
        _open(scheduler, router, "t-loop")
        editor.code = "   \n"
        assert not await scheduler.save_current_track()
        assert remote.count("update_track") == 0
        assert recorder.of(Events.SAVE_FAILED)[0]["message"] == "Nothing to save"

    async def test_store_changed_elsewhere(self, scheduler, router, editor, remote, store, recorder):
        """Test a store/context mismatch skips the save"""
        _open(scheduler, router, "t-loop")
        store.update_track("t-loop", code="changed elsewhere")
        editor.code = "mine"
        assert not await scheduler.save_current_track()
        assert remote.count("update_track") == 0
        assert recorder.of(Events.SAVE_FAILED)

    async def test_no_track_open(self, scheduler, recorder):
        """Test saving with nothing open"""
        assert not await scheduler.save_current_track()
        assert recorder.of(Events.SAVE_FAILED)[0]["message"] == "No track is open"

    async def test_deleted_on_server(self, scheduler, router, editor, remote, recorder):
        """Test a 404 suggests a reload"""
        _open(scheduler, router, "t-loop")
        del remote.tracks["t-loop"]
        editor.code = "orphan"
        assert not await scheduler.save_current_track()
        assert recorder.names()[-2:] == [Events.ITEM_NOT_FOUND, Events.SAVE_FAILED]

    async def test_auth_failure(self, scheduler, router, editor, remote, recorder):
        """Test manual saves always report auth failures"""
        remote.fail("update_track", AuthenticationError("Session expired"))
        _open(scheduler, router, "t-loop")
        editor.code = "x"
        assert not await scheduler.save_current_track()
        assert recorder.names()[-2:] == [Events.AUTH_REQUIRED, Events.SAVE_FAILED]


class TestEditors:
    """Test editor attachment"""

    def test_pending_code_until_editor_attached(self, store, remote, session, router, events, autosave_config):
        """Test code loaded before the editor exists is handed over"""
        scheduler = AutosaveScheduler(store, remote, session, lambda: router.path, events, autosave_config)
        track = store.get_track("t-kick")
        scheduler.load_track(track)
        assert scheduler.get_pending_code() == track.code
        assert store.state.selected_track == "t-kick"

        editor = BufferEditor()
        scheduler.attach_editor(editor)
        assert editor.code == track.code
        assert scheduler.get_pending_code() is None

    def test_clear_editor(self, scheduler, editor, router):
        """Test the editor is emptied"""
        _open(scheduler, router, "t-loop")
        scheduler.clear_editor()
        assert editor.code == ""

    def test_file_editor(self, tmp_path):
        """Test the file-backed editor"""
        editor = FileEditor(tmp_path / "patterns" / "loop.js")
        assert editor.code == ""
        editor.set_code('s("bd")')
        assert (tmp_path / "patterns" / "loop.js").read_text() == 's("bd")'
        (tmp_path / "patterns" / "loop.js").write_text('s("sd")')
        assert editor.code == 's("sd")'


@pytest.mark.asyncio
class TestChangeDetector:
    """Test polling change detection"""

    async def test_check_once(self, scheduler, router, editor):
        """Test a change is reported once"""
        detector = ChangeDetector(scheduler, interval=0.01)
        _open(scheduler, router, "t-loop")
        assert not detector.check_once()

        editor.code = "edited"
        assert detector.check_once()
        assert not detector.check_once()
        scheduler.cleanup()

    async def test_polling_loop_saves(self, scheduler, router, editor, store):
        """Test the background loop drives autosave"""
        detector = ChangeDetector(scheduler, interval=0.01)
        _open(scheduler, router, "t-loop")
        detector.start()
        assert detector.running

        editor.code = "polled"
        await asyncio.sleep(SETTLE * 2)
        await detector.stop()

        assert not detector.running
        assert store.get_track("t-loop").code == "polled"

    async def test_no_editor(self, scheduler, router):
        """Test detection without an editor"""
        scheduler.detach_editor()
        assert not ChangeDetector(scheduler).check_once()

    async def test_edit_during_save_is_saved_afterwards(self, scheduler, router, editor, remote, store):
        """Test an edit refused while a save is in flight is picked up by a later poll"""
        gate = remote.hold("update_track")
        detector = ChangeDetector(scheduler, interval=0.01)
        _open(scheduler, router, "t-loop")
        editor.code = "v1"
        assert detector.check_once()
        await asyncio.sleep(SETTLE)

        editor.code = "v2"
        assert not detector.check_once()
        gate.set()
        await asyncio.sleep(SETTLE)

        assert detector.check_once()
        await asyncio.sleep(SETTLE)
        assert _saved_codes(remote, "t-loop") == ["v1", "v2"]
        assert store.get_track("t-loop").code == "v2"

    async def test_pending_timer_is_not_pushed_back(self, scheduler, router, editor):
        """Test polling an unchanged buffer keeps the running timer"""
        detector = ChangeDetector(scheduler, interval=0.01)
        _open(scheduler, router, "t-loop")
        editor.code = "edited"
        assert detector.check_once()
        timer = scheduler.get_context("t-loop").timer

        assert not detector.check_once()
        assert scheduler.get_context("t-loop").timer is timer
        scheduler.cleanup()

    async def test_deleted_track_is_forgotten(self, scheduler, orchestrator, router, editor, events):
        """Test a track deletion drops what the detector saw for it"""
        detector = ChangeDetector(scheduler, interval=0.01, events=events)
        _open(scheduler, router, "t-loop")
        editor.code = "edited"
        assert detector.check_once()
        assert "t-loop" in detector._last_seen

        await orchestrator.delete_track("t-loop")
        assert "t-loop" not in detector._last_seen

    async def test_delete_all_resets(self, scheduler, orchestrator, router, editor, events):
        """Test deleting the library clears the detector"""
        detector = ChangeDetector(scheduler, interval=0.01, events=events)
        _open(scheduler, router, "t-sketch")
        editor.code = "edited"
        assert detector.check_once()

        await orchestrator.delete_all_tracks()
        assert detector._last_seen == {}
        detector.close()
