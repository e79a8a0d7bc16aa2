"""
Writing the library to a local directory.

Every track becomes one file under its folder's slugged path:

    <directory>/live/drums/kick.js
    <directory>/live/song/intro.js      (multitrack: one file per step)
    <directory>/live/song/verse.js
    <directory>/library.json            (tracks and folders as sent to the server)

Name collisions after slugging get "-2", "-3", ... suffixes, so no export
file is ever written twice.

Usage:
    entries = plan_export(store.tracks.values(), store.folders, suffix=".js")
    for entry in entries:
        write_export_file(directory, entry)
    write_metadata(directory, store.tracks.values(), store.folders)
"""

import json
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Iterable, Mapping

from pattern_sync.library.models import Folder, Track, now_iso
from pattern_sync.library.slugs import folder_path_to_slug, resolve_folder_path, slugify


METADATA_FILENAME = "library.json"
EXPORT_FORMAT_VERSION = "1.0"


@dataclass(frozen=True)
class ExportFile:
    """
    One file of an export.

    Attributes:
        relative_path: Path below the export directory, "/"-separated.
        content: Pattern source written to the file.
        track_id: Track the content belongs to.
    """
    relative_path: PurePosixPath
    content: str
    track_id: str


def _claim(path: PurePosixPath, used: set[str]) -> PurePosixPath:
    """Return path, or path with a "-N" stem suffix if it is already used."""
    candidate = path
    counter = 2
    while str(candidate).lower() in used:
        candidate = path.with_name(f"{path.stem}-{counter}{path.suffix}")
        counter += 1
    used.add(str(candidate).lower())
    return candidate


def plan_export(
    tracks: Iterable[Track],
    folders: Mapping[str, Folder] | None = None,
    suffix: str = ".js"
) -> list[ExportFile]:
    """
    Work out which file every track (or step) is written to.

    Tracks are visited in folder path then name order so the "-N" suffixes
    are stable between exports of the same library. The active step of a
    multitrack track is written with the track's code, the canonical copy.

    Args:
        tracks: Tracks to export.
        folders: Known folders keyed by id, to resolve legacy folder ids.
        suffix: File extension, with or without the leading dot.

    Returns:
        One ExportFile per single track and per step.
    """
    if not suffix.startswith("."):
        suffix = f".{suffix}"

    used: set[str] = set()
    entries: list[ExportFile] = []

    def sort_key(track: Track) -> tuple[str, str, str]:
        return (resolve_folder_path(track.folder, folders) or "", track.name.lower(), track.id)

    for track in sorted(tracks, key=sort_key):
        base = PurePosixPath(folder_path_to_slug(resolve_folder_path(track.folder, folders)) or ".")

        if not track.is_multitrack:
            path = _claim(base / f"{slugify(track.name)}{suffix}", used)
            entries.append(ExportFile(path, track.code, track.id))
            continue

        track_dir = _claim(base / slugify(track.name), used)
        for index, step in enumerate(track.steps):
            code = track.code if index == track.active_step else step.code
            path = _claim(track_dir / f"{slugify(step.name)}{suffix}", used)
            entries.append(ExportFile(path, code, track.id))

    return entries


def library_metadata(tracks: Iterable[Track], folders: Mapping[str, Folder]) -> dict[str, Any]:
    return {
        "version": EXPORT_FORMAT_VERSION,
        "exportDate": now_iso(),
        "tracks": [track.to_api() for track in tracks],
        "folders": [folder.to_api() for folder in folders.values()],
    }


def write_export_file(directory: Path, entry: ExportFile, overwrite: bool = False) -> bool:
    """
    Write one planned file below directory.

    Returns:
        True if written, False if the file existed and overwrite is off.

    Raises:
        OSError: The file or its parent directories could not be written.
    """
    path = directory.joinpath(*entry.relative_path.parts)
    if path.exists() and not overwrite:
        return False

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(entry.content)
    return True


def write_metadata(
    directory: Path,
    tracks: Iterable[Track],
    folders: Mapping[str, Folder]
) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / METADATA_FILENAME
    with open(path, "w", encoding="utf-8") as f:
        json.dump(library_metadata(tracks, folders), f, indent=2)
    return path
