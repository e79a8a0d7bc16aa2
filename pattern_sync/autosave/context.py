"""
Per-track autosave bookkeeping.

Each track the user works on gets its own AutosaveContext. Contexts are
never shared between tracks, which is what keeps a pending save for one
track from ever writing another track's code.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum


class AutosaveState(Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    SAVING = "saving"


@dataclass
class AutosaveContext:
    """
    Autosave state of a single track.

    Attributes:
        track_id: Track this context belongs to.
        last_saved_code: Code known to be on the server. Seeded from the
                         store when the context is created. An empty value
                         disables the store consistency check.
        last_saved_timestamp: Epoch seconds of the last successful save,
                              None if nothing was saved in this session.
        is_autosaving: True from the moment a save is claimed (timer fired or
                       manual save started) until it finishes.
        timer: Pending debounce timer, None when nothing is scheduled.
    """
    track_id: str
    last_saved_code: str = ""
    last_saved_timestamp: float | None = None
    is_autosaving: bool = False
    timer: asyncio.TimerHandle | None = None

    @property
    def state(self) -> AutosaveState:
        if self.is_autosaving:
            return AutosaveState.SAVING
        if self.timer is not None:
            return AutosaveState.SCHEDULED
        return AutosaveState.IDLE

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
