"""
Data models for the pattern library.

This module defines immutable dataclasses representing the objects the
remote store persists: tracks (optionally split into steps) and folders.
These models are shared by the store, the resolver, the autosave scheduler
and the orchestrator.

Design Decisions:
    - All dataclasses are frozen (immutable); changes produce new instances
      through with_updates() so old snapshots stay valid
    - Sequences are tuples for immutability
    - Timestamps are ISO-8601 strings exactly as the server sends them
    - Field name translation lives in library.wire, not here

Usage:
    from pattern_sync.library.models import Track, Folder

    track = Track.from_api(server_payload)
    renamed = track.with_updates(name="Bass Line")
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pattern_sync.core.logger import get_logger
from pattern_sync.library.wire import from_wire, to_wire


logger = get_logger(__name__)


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string, the format the server stores."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Step:
    """
    One section of a multitrack track.

    Attributes:
        id: Step id, unique within its track.
        name: Display name, also used (slugified) in ?step= URLs.
        code: Pattern source for this step.
        created: ISO timestamp of creation.
        modified: ISO timestamp of last modification.
    """
    id: str
    name: str
    code: str = ""
    created: str = ""
    modified: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Step":
        fields = from_wire(data)
        return cls(
            id=str(fields.get("id", "")),
            name=fields.get("name") or "",
            code=fields.get("code") or "",
            created=fields.get("created") or "",
            modified=fields.get("modified") or "",
        )

    def to_api(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "created": self.created,
            "modified": self.modified,
        }


@dataclass(frozen=True)
class Track:
    """
    Immutable representation of a saved pattern.

    Attributes:
        id: Server-assigned unique id. Never changes.
            Example: "6f1c2d0e-4c1b-4a53-9d1e-0b8e2f6c1a77"

        name: Display name, also the source of the URL slug.
              Example: "Drum Loop"

        code: Pattern source. For multitrack tracks this is the canonical
              saved code; steps carry their own code as well.

        created: ISO timestamp of creation.

        modified: ISO timestamp of the last successful save.

        folder: Folder path ("live/drums"), a legacy folder id, or None for
                the library root. Paths are preferred; legacy ids are still
                resolved for tracks created before paths existed.

        is_multitrack: Whether the track is split into steps.

        steps: The steps of a multitrack track. Non-empty when
               is_multitrack is True.

        active_step: Index into steps of the step currently being edited.
                     0 <= active_step < len(steps) for multitrack tracks.

        owner_id: Id of the user owning the track, if the server sent it.

    Example:
        track = Track.from_api({"id": "t1", "name": "Drum Loop", "code": "s('bd')"})
        print(track.name, track.folder)
    """
    id: str
    name: str
    code: str = ""
    created: str = ""
    modified: str = ""
    folder: str | None = None
    is_multitrack: bool = False
    steps: tuple[Step, ...] = field(default_factory=tuple)
    active_step: int = 0
    owner_id: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Track":
        """
        Create a Track from a server payload (either field spelling).

        Out-of-range active_step values are clamped to 0 and a multitrack
        flag without steps is dropped, both with a warning, so the
        invariants hold for every Track in the store.

        Args:
            data: Track object from a list/create/update response.

        Returns:
            Track: A new frozen Track.
        """
        fields = from_wire(data)
        track_id = str(fields.get("id", ""))

        steps = tuple(Step.from_api(step) for step in fields.get("steps") or ())
        is_multitrack = bool(fields.get("is_multitrack", False))
        active_step = fields.get("active_step") or 0
        if not isinstance(active_step, int):
            try:
                active_step = int(active_step)
            except (TypeError, ValueError):
                active_step = 0

        if is_multitrack and not steps:
            logger.warning(f"Track {track_id} is marked multitrack but has no steps")
            is_multitrack = False

        if is_multitrack and not 0 <= active_step < len(steps):
            logger.warning(
                f"Track {track_id} active step {active_step} out of range "
                f"(0-{len(steps) - 1}), using 0"
            )
            active_step = 0
        elif not is_multitrack:
            active_step = 0

        folder = fields.get("folder") or None

        return cls(
            id=track_id,
            name=fields.get("name") or "",
            code=fields.get("code") or "",
            created=fields.get("created") or "",
            modified=fields.get("modified") or "",
            folder=folder,
            is_multitrack=is_multitrack,
            steps=steps,
            active_step=active_step,
            owner_id=fields.get("owner_id"),
        )

    def to_api(self) -> dict[str, Any]:
        """Serialize to the server's track shape (camelCase flags)."""
        return to_wire({
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "created": self.created,
            "modified": self.modified,
            "folder": self.folder,
            "is_multitrack": self.is_multitrack,
            "steps": self.steps,
            "active_step": self.active_step,
        })

    def with_updates(self, **changes: Any) -> "Track":
        """Return a copy with the given fields replaced."""
        if "steps" in changes and changes["steps"] is not None:
            changes["steps"] = tuple(
                step if isinstance(step, Step) else Step.from_api(step)
                for step in changes["steps"]
            )
        return dataclasses.replace(self, **changes)

    @property
    def current_step(self) -> Step | None:
        """The active Step of a multitrack track, None otherwise."""
        if not self.is_multitrack or not self.steps:
            return None
        return self.steps[self.active_step]


@dataclass(frozen=True)
class Folder:
    """
    Immutable representation of a library folder.

    Attributes:
        id: Client-generated unique id.
        name: Display name of this folder only.
              Example: "drums"
        path: Slash-joined names from the root down to this folder.
              Example: "live/drums"
        parent: Id of the parent folder, None for top-level folders.
        created: ISO timestamp of creation.
        owner_id: Id of the owning user, if the server sent it.
    """
    id: str
    name: str
    path: str
    parent: str | None = None
    created: str = ""
    owner_id: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Folder":
        fields = from_wire(data)
        name = fields.get("name") or ""
        return cls(
            id=str(fields.get("id", "")),
            name=name,
            path=fields.get("path") or name,
            parent=fields.get("parent") or None,
            created=fields.get("created") or "",
            owner_id=fields.get("owner_id"),
        )

    def to_api(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "parent": self.parent,
            "created": self.created,
        }

    def with_updates(self, **changes: Any) -> "Folder":
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)
