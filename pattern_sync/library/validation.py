"""
Track and folder name validation.

Validators return (is_valid, error_message) tuples so callers can decide
whether to raise, prompt again or show the message inline.
"""

from typing import Iterable, Sequence

from pattern_sync.library.models import Step, Track
from pattern_sync.library.slugs import slugify


MAX_NAME_LENGTH = 100
INVALID_NAME_CHARS = '<>:"|?*'


def _same_folder(track: Track, folder: str | None) -> bool:
    return (track.folder or None) == (folder or None)


def validate_track_name(
    name: str,
    tracks: Iterable[Track] = (),
    folder: str | None = None,
    exclude_id: str | None = None
) -> tuple[bool, str | None]:
    """
    Validate a track name.

    Args:
        name: Proposed name.
        tracks: Existing tracks, checked for duplicates in the same folder.
        folder: Folder the track will live in (None for root).
        exclude_id: Track being renamed, ignored in the duplicate check.

    Returns:
        Tuple of (is_valid, error_message)
    """
    trimmed = name.strip() if name else ""
    if not trimmed:
        return False, "Track name cannot be empty"

    if len(trimmed) > MAX_NAME_LENGTH:
        return False, f"Track name must be {MAX_NAME_LENGTH} characters or less"

    bad = sorted({char for char in trimmed if char in INVALID_NAME_CHARS})
    if bad:
        return False, f"Track name cannot contain: {' '.join(bad)}"

    if not is_track_name_available(trimmed, tracks, folder, exclude_id):
        return False, f'A track named "{trimmed}" already exists in this folder'

    return True, None


def is_track_name_available(
    name: str,
    tracks: Iterable[Track],
    folder: str | None = None,
    exclude_id: str | None = None
) -> bool:
    """True if no other track in folder has this name (case-insensitive)."""
    wanted = name.strip().lower()
    return not any(
        track.name.strip().lower() == wanted
        for track in tracks
        if track.id != exclude_id and _same_folder(track, folder)
    )


def generate_unique_track_name(
    base_name: str,
    tracks: Iterable[Track],
    folder: str | None = None
) -> str:
    """
    Return base_name, or "base_name 2", "base_name 3", ... if taken in folder.
    """
    tracks = list(tracks)
    base = base_name.strip() or "Untitled"
    if is_track_name_available(base, tracks, folder):
        return base

    counter = 2
    while not is_track_name_available(f"{base} {counter}", tracks, folder):
        counter += 1
    return f"{base} {counter}"


def validate_folder_name(name: str) -> tuple[bool, str | None]:
    """
    Validate a folder name.

    Folder names become path segments, so "/" is rejected in addition to
    the characters rejected in track names.

    Returns:
        Tuple of (is_valid, error_message)
    """
    trimmed = name.strip() if name else ""
    if not trimmed:
        return False, "Folder name cannot be empty"

    if len(trimmed) > MAX_NAME_LENGTH:
        return False, f"Folder name must be {MAX_NAME_LENGTH} characters or less"

    if "/" in trimmed:
        return False, "Folder name cannot contain '/'"

    bad = sorted({char for char in trimmed if char in INVALID_NAME_CHARS})
    if bad:
        return False, f"Folder name cannot contain: {' '.join(bad)}"

    return True, None


def validate_step_name(
    name: str,
    steps: Sequence[Step] = (),
    exclude_index: int | None = None
) -> tuple[bool, str | None]:
    """
    Validate the name of a multitrack step.

    Steps are addressed by the slug of their name (?step=verse), so two
    steps of one track may not share a slug.

    Returns:
        Tuple of (is_valid, error_message)
    """
    trimmed = name.strip() if name else ""
    if not trimmed:
        return False, "Step name cannot be empty"

    if len(trimmed) > MAX_NAME_LENGTH:
        return False, f"Step name must be {MAX_NAME_LENGTH} characters or less"

    bad = sorted({char for char in trimmed if char in INVALID_NAME_CHARS})
    if bad:
        return False, f"Step name cannot contain: {' '.join(bad)}"

    wanted = slugify(trimmed)
    for index, step in enumerate(steps):
        if index != exclude_index and slugify(step.name) == wanted:
            return False, f'A step named "{step.name}" already exists in this track'

    return True, None
