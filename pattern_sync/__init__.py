"""
pattern-sync: Keep a live-coding pattern library in sync with its server.

This package provides the persistence and sync layer of a live-coding
editor: a library of tracks (pattern source code, optionally split into
steps) organized in nested folders, mirrored locally and kept in sync with
a remote store.

Architecture:
    library/   Track, Step and Folder models, wire mapping, the tree <-> flat
               conversion, URL slugs and name validation
    remote/    Token session with refresh, and the HTTP client of the remote
               track/folder store
    store/     TracksStore, the single in-memory source of truth
    routing/   Resolution of the active track from a navigable path
    autosave/  Per-track debounced autosave and editor change polling
    sync/      MutationOrchestrator for create/update/move/delete
    core/      Configuration, logging, events and exceptions

    workspace.py wires one of each together; cli.py exposes them as `psync`.

Usage:
    psync login
    psync ls
    psync edit live/drum-loop drum-loop.js
"""

__version__ = "0.3.0"
