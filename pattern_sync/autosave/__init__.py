"""
Autosave module for pattern-sync.

    - context: per-track AutosaveContext and its derived state
    - scheduler: AutosaveScheduler, debounced per-track saves
    - change_detector: polling ChangeDetector feeding the scheduler
    - editor: Editor protocol, BufferEditor and FileEditor
"""

from pattern_sync.autosave.change_detector import ChangeDetector
from pattern_sync.autosave.context import AutosaveContext, AutosaveState
from pattern_sync.autosave.editor import BufferEditor, Editor, FileEditor
from pattern_sync.autosave.scheduler import AutosaveScheduler, SaveOutcome

__all__ = [
    "AutosaveContext",
    "AutosaveState",
    "AutosaveScheduler",
    "SaveOutcome",
    "ChangeDetector",
    "Editor",
    "BufferEditor",
    "FileEditor",
]
