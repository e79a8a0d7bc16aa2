"""
Sync module for pattern-sync.

    - orchestrator: MutationOrchestrator, user-initiated library mutations
"""

from pattern_sync.sync.orchestrator import (
    FOLDER_NOT_FOUND_MESSAGE,
    MutationOrchestrator,
    folder_path_for,
    generate_id,
)

__all__ = [
    "MutationOrchestrator",
    "FOLDER_NOT_FOUND_MESSAGE",
    "folder_path_for",
    "generate_id",
]
