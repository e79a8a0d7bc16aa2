"""
Library module for pattern-sync.

Models and pure helpers for the track/folder library:
    - models: Track, Step and Folder dataclasses
    - wire: field name mapping to and from the server's JSON
    - tree: hierarchical payload <-> flat lists
    - slugs: URL slugs and navigable paths
    - validation: track, folder and step name checks
    - export: writing the library to a directory
"""

from pattern_sync.library.models import Folder, Step, Track, now_iso
from pattern_sync.library.slugs import (
    folder_path_to_slug,
    is_legacy_folder_id,
    parse_track_url_path,
    resolve_folder_path,
    slugify,
    track_url_path,
)
from pattern_sync.library.tree import flat_to_tree, record_of, tree_to_flat
from pattern_sync.library.validation import (
    generate_unique_track_name,
    validate_folder_name,
    validate_step_name,
    validate_track_name,
)

__all__ = [
    "Track",
    "Step",
    "Folder",
    "now_iso",
    "slugify",
    "folder_path_to_slug",
    "is_legacy_folder_id",
    "parse_track_url_path",
    "resolve_folder_path",
    "track_url_path",
    "tree_to_flat",
    "flat_to_tree",
    "record_of",
    "validate_track_name",
    "validate_folder_name",
    "validate_step_name",
    "generate_unique_track_name",
]
