"""
URL slug utilities for tracks, folders and steps.

Tracks are addressed by navigable paths built from names, not ids:

    /repl/drum-loop                      root track
    /repl/live/drums/drum-loop           track in folder "live/drums"
    /repl/live/drum-loop?step=intro      step "Intro" of a multitrack track
    /repl/live/drum-loop?step=2          legacy numeric step index

Folder references stored on tracks are either folder paths or, for tracks
created before paths existed, legacy folder ids. resolve_folder_path()
turns either form into a path.
"""

import re
from typing import Iterable, Mapping
from urllib.parse import parse_qs, unquote, urlsplit

from pattern_sync.library.models import Folder, Track


# Legacy folder ids: 20-22 url-safe characters (nanoid style)
LEGACY_FOLDER_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{20,22}$")

DEFAULT_ROUTE_PREFIX = "/repl"

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """
    Convert a track, folder or step name to a URL-safe slug.

    Lowercase, runs of characters outside [a-z0-9] become a single hyphen,
    leading/trailing hyphens are removed. Names with no usable characters
    become "untitled".

    Example:
        >>> slugify("  Drum Loop #2! ")
        'drum-loop-2'
        >>> slugify("???")
        'untitled'
    """
    slug = _NON_SLUG_CHARS.sub("-", name.lower().strip()).strip("-")
    return slug or "untitled"


def folder_path_to_slug(folder_path: str | None) -> str:
    """
    Slugify every segment of a folder path.

    Segments that slugify to nothing are dropped, so "live/???/drums"
    becomes "live/drums".
    """
    if not folder_path:
        return ""
    segments = (slugify(segment) for segment in folder_path.split("/"))
    return "/".join(segment for segment in segments if segment and segment != "untitled")


def is_legacy_folder_id(value: str | None) -> bool:
    """True if value looks like a legacy folder id rather than a path."""
    return bool(value) and LEGACY_FOLDER_ID_PATTERN.match(value) is not None


def resolve_folder_path(
    folder_ref: str | None,
    folders: Mapping[str, Folder] | None = None
) -> str | None:
    """
    Resolve a track's folder reference to a folder path.

    Tries the reference as a path first, then as a folder id. A reference
    matching neither is returned unchanged (dangling references are
    tolerated until the next reload).

    Args:
        folder_ref: Track.folder value (path, legacy id, "root" or None).
        folders: Known folders keyed by id.

    Returns:
        The folder path, or None for root tracks.
    """
    if not folder_ref or folder_ref == "root":
        return None
    if not folders:
        return folder_ref
    if any(folder.path == folder_ref for folder in folders.values()):
        return folder_ref
    folder = folders.get(folder_ref)
    if folder is not None:
        return folder.path
    return folder_ref


def track_url_path(
    name: str,
    folder: str | None = None,
    folders: Mapping[str, Folder] | None = None,
    prefix: str = DEFAULT_ROUTE_PREFIX,
    step_name: str | None = None
) -> str:
    """
    Build the navigable path for a track.

    Args:
        name: Track name.
        folder: Track.folder value (path or legacy id).
        folders: Known folders keyed by id, used to resolve legacy ids.
        prefix: Route prefix, "/repl" by default.
        step_name: Optional step to select via ?step=.

    Example:
        >>> track_url_path("Drum Loop", "Live/Drums")
        '/repl/live/drums/drum-loop'
    """
    track_slug = slugify(name)
    folder_slug = folder_path_to_slug(resolve_folder_path(folder, folders))

    path = f"{prefix}/{folder_slug}/{track_slug}" if folder_slug else f"{prefix}/{track_slug}"
    if step_name:
        path += f"?step={slugify(step_name)}"
    return path


def parse_track_url_path(
    path: str,
    prefix: str = DEFAULT_ROUTE_PREFIX
) -> tuple[str | None, str] | None:
    """
    Split a navigable path into (folder_path, track_slug).

    The route prefix is optional, so both "/repl/live/drum-loop" and
    "live/drum-loop" parse the same. The query string is ignored.

    Returns:
        (folder_path, track_slug) with folder_path None for root tracks,
        or None when the path names no track at all.
    """
    bare = path.split("?", 1)[0].split("#", 1)[0]
    if prefix and (bare == prefix or bare.startswith(prefix + "/")):
        bare = bare[len(prefix):]

    segments = [unquote(segment) for segment in bare.strip("/").split("/") if segment]
    if not segments:
        return None

    track_slug = segments.pop()
    folder_path = "/".join(segments) if segments else None
    return folder_path, track_slug


def extract_step(path: str) -> str | None:
    """Return the raw ?step= value of a navigable path, or None."""
    values = parse_qs(urlsplit(path).query).get("step")
    if not values or not values[0]:
        return None
    return values[0]


def find_step_index(track: Track, step_name: str) -> int | None:
    """Index of the step whose slugified name matches step_name, or None."""
    wanted = slugify(step_name)
    for index, step in enumerate(track.steps):
        if slugify(step.name) == wanted:
            return index
    return None


def unique_slug(
    name: str,
    tracks: Iterable[Track],
    folder_path: str | None = None,
    exclude_id: str | None = None
) -> str:
    """
    Slug for name that no other track in the same folder uses.

    Conflicts get a numeric suffix starting at 2: "drum-loop-2",
    "drum-loop-3", ...
    """
    base = slugify(name)
    taken = {
        slugify(track.name)
        for track in tracks
        if track.id != exclude_id and (track.folder or None) == folder_path
    }
    if base not in taken:
        return base

    counter = 2
    while f"{base}-{counter}" in taken:
        counter += 1
    return f"{base}-{counter}"


def slug_to_display_name(slug: str) -> str:
    """Best-effort display name for a slug: "drum-loop" -> "Drum Loop"."""
    return " ".join(word.capitalize() for word in slug.split("-") if word)
