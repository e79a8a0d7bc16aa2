"""
Store module for pattern-sync.

    - tracks_store: TracksStore and its immutable TracksState snapshot
"""

from pattern_sync.store.tracks_store import TracksState, TracksStore

__all__ = ["TracksState", "TracksStore"]
