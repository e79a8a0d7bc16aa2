"""
Resolve the active track from a navigable path.

The editor never tracks "the current track" in mutable state of its own;
it derives it from the path every time it needs it. The autosave scheduler
calls resolve_active_track() again when a debounce timer fires, so a save
scheduled for one track is dropped if the user navigated elsewhere.

Resolution is pure and never raises.
"""

from dataclasses import dataclass
from typing import Iterable, Mapping

from pattern_sync.core.logger import get_logger
from pattern_sync.library.models import Folder, Track
from pattern_sync.library.slugs import (
    DEFAULT_ROUTE_PREFIX,
    extract_step,
    find_step_index,
    folder_path_to_slug,
    parse_track_url_path,
    resolve_folder_path,
    slugify,
)


logger = get_logger(__name__)


@dataclass(frozen=True)
class ActiveTrack:
    """
    Track addressed by a navigable path.

    Attributes:
        track_id: Id of the resolved track.
        step_index: Step selected via ?step= for multitrack tracks, None when
                    the path names no step (the track's own active_step applies).
    """
    track_id: str
    step_index: int | None = None


def resolve_active_track(
    path: str | None,
    tracks: Mapping[str, Track] | Iterable[Track],
    folders: Mapping[str, Folder] | None = None,
    prefix: str = DEFAULT_ROUTE_PREFIX
) -> ActiveTrack | None:
    """
    Find the track a navigable path points at.

    Args:
        path: e.g. "/repl/live/drums/drum-loop?step=intro". The route prefix
              is optional.
        tracks: Known tracks (mapping id -> Track or any iterable of Track).
        folders: Known folders keyed by id, used to resolve legacy folder ids.
        prefix: Route prefix, "/repl" by default.

    Returns:
        ActiveTrack, or None when nothing matches.
    """
    if not path:
        return None

    parsed = parse_track_url_path(path, prefix)
    if parsed is None:
        return None
    folder_path, track_slug = parsed

    track_list = list(tracks.values()) if isinstance(tracks, Mapping) else list(tracks)
    folders = folders or {}

    track = _match_track(track_list, folders, folder_path, track_slug)
    if track is None:
        return None

    return ActiveTrack(track_id=track.id, step_index=_resolve_step(track, path))


def _match_track(
    tracks: list[Track],
    folders: Mapping[str, Folder],
    folder_path: str | None,
    track_slug: str
) -> Track | None:
    wanted_slug = slugify(track_slug)
    wanted_folder = folder_path_to_slug(folder_path) or None

    matches = []
    for track in tracks:
        if slugify(track.name) != wanted_slug:
            continue
        resolved = folder_path_to_slug(resolve_folder_path(track.folder, folders)) or None
        if resolved == wanted_folder:
            matches.append(track)

    if len(matches) > 1:
        logger.warning(
            f"Multiple tracks match '{track_slug}' in '{folder_path or '/'}', using the first: "
            f"{[track.name for track in matches]}"
        )
    if matches:
        return matches[0]

    # Old links addressed root tracks by id
    if wanted_folder is None:
        for track in tracks:
            if track.id == track_slug:
                return track
    return None


def _resolve_step(track: Track, path: str) -> int | None:
    step = extract_step(path)
    if step is None or not track.is_multitrack:
        return None

    index = find_step_index(track, step)
    if index is not None:
        return index

    if step.isdigit() and int(step) < len(track.steps):
        return int(step)

    logger.warning(f"Step '{step}' not found in track '{track.name}', using the first step")
    return 0
