"""
Polling change detection for editors that do not emit change events.

Every `interval` seconds the detector reads the attached editor's code and
compares it with the code last saved for the active track. A difference
(re)schedules an autosave. Editors that can report changes themselves can
call scheduler.schedule_autosave() directly and skip this component.
"""

import asyncio
from typing import Callable

from pattern_sync.autosave.scheduler import AutosaveScheduler
from pattern_sync.core.events import EventEmitter, Events
from pattern_sync.core.logger import get_logger


logger = get_logger(__name__)


class ChangeDetector:
    """
    Periodically compare editor code with the last saved code per track.

    The baseline is the autosave context's last_saved_code, so an edit that
    was refused while a save was in flight is picked up on a later poll.
    `_last_seen` only records code for which a timer was started, so an
    unchanged buffer does not keep pushing a pending timer back.

    Attributes:
        scheduler: Scheduler owning the editor and the autosave contexts.
        interval: Poll interval in seconds (2.0 by default).
    """

    def __init__(
        self,
        scheduler: AutosaveScheduler,
        interval: float = 2.0,
        events: EventEmitter | None = None
    ) -> None:
        self.scheduler = scheduler
        self.interval = interval
        self._last_seen: dict[str, str] = {}
        self._task: asyncio.Task | None = None
        self._unsubscribe: list[Callable[[], None]] = []
        if events is not None:
            self._unsubscribe = [
                events.on(Events.TRACK_DELETED, lambda track_id=None, **_: self.forget(track_id)),
                events.on(Events.ALL_TRACKS_DELETED, lambda **_: self.reset()),
            ]

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def check_once(self) -> bool:
        """
        Run one comparison.

        Returns:
            True if a change was detected and an autosave scheduled.
        """
        editor = self.scheduler.editor
        if editor is None:
            return False

        active = self.scheduler.resolve_current()
        if active is None:
            return False
        track_id = active.track_id

        code = editor.code or ""
        if not code.strip():
            return False

        context = self.scheduler.get_context(track_id)
        if context is not None:
            baseline = context.last_saved_code
        else:
            track = self.scheduler.store.get_track(track_id)
            baseline = track.code if track else ""

        if code == baseline:
            self._last_seen.pop(track_id, None)
            return False

        # Timer already running for exactly this code
        if self._last_seen.get(track_id) == code and context is not None and context.timer is not None:
            return False

        scheduled = self.scheduler.schedule_autosave(track_id)
        if scheduled:
            self._last_seen[track_id] = code
            logger.debug(f"Change detected in {track_id}, autosave scheduled")
        return scheduled

    def forget(self, track_id: str | None) -> None:
        if track_id is not None:
            self._last_seen.pop(track_id, None)

    def reset(self) -> None:
        """Drop everything seen so far (sign-out, delete-all)."""
        self._last_seen.clear()

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.ensure_future(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.check_once()
