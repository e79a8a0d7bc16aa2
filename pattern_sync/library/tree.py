"""
Conversion between the hierarchical library payload and flat track/folder lists.

The list endpoint returns the library as a tree:

    {"id": "root", "type": "folder", "children": [
        {"id": "f1", "type": "folder", "name": "live", "path": "live", "children": [
            {"id": "t1", "type": "track", "name": "Drum Loop", "code": "..."}
        ]},
        {"id": "t2", "type": "track", "name": "Sketch", "code": "..."}
    ]}

The store keeps flat id -> item maps, so the tree is flattened on load and
rebuilt only when a hierarchical view is needed (psync ls).
"""

from typing import Any, Callable, Iterable, TypeVar

from pattern_sync.core.logger import get_logger
from pattern_sync.library.models import Folder, Track


logger = get_logger(__name__)

ROOT_ID = "root"

T = TypeVar("T")


def tree_to_flat(root: dict[str, Any]) -> tuple[list[Track], list[Folder]]:
    """
    Flatten a hierarchical library payload.

    Walks the tree depth-first. Folders get their parent folder's id and a
    path (the item's own path, or the ancestor names joined with "/").
    Tracks get the enclosing folder's path as their folder, None at root.

    Items whose id was already seen are logged and skipped; their children
    are still visited.

    Args:
        root: The root item, usually {"id": "root", "type": "folder", ...}.

    Returns:
        (tracks, folders) in walk order. A root without children yields
        two empty lists.
    """
    tracks: list[Track] = []
    folders: list[Folder] = []
    seen: set[str] = set()

    def walk(item: dict[str, Any], parent_id: str | None, parent_path: str | None) -> None:
        item_id = str(item.get("id", ""))
        item_type = item.get("type")

        if item_id in seen:
            logger.warning(f"Duplicate {item_type or 'item'} id in library tree: {item_id}, skipping")
            if item_type == "folder":
                for child in item.get("children") or ():
                    walk(child, parent_id, parent_path)
            return
        seen.add(item_id)

        if item_type == "folder":
            name = item.get("name") or ""
            path = item.get("path") or (f"{parent_path}/{name}" if parent_path else name)
            folders.append(Folder.from_api({**item, "path": path, "parent": parent_id}))
            for child in item.get("children") or ():
                walk(child, item_id, path)
        elif item_type == "track":
            tracks.append(Track.from_api({**item, "folder": parent_path}))
        else:
            logger.warning(f"Unknown item type {item_type!r} for id {item_id}, skipping")

    for child in root.get("children") or ():
        walk(child, None, None)

    return tracks, folders


def record_of(items: Iterable[T], key: Callable[[T], str] = lambda item: item.id) -> dict[str, T]:
    """Index items by key (id by default). Later items win on collisions."""
    return {key(item): item for item in items}


def flat_to_tree(tracks: Iterable[Track], folders: Iterable[Folder]) -> dict[str, Any]:
    """
    Build the hierarchical payload from flat lists.

    Folders are nested under their parent id; a folder whose parent is
    unknown lands at root. Tracks are placed in the folder their folder
    reference resolves to (by id, then by path), otherwise at root. Within
    each folder, sub-folders come first, then tracks, both sorted by name.

    Returns:
        {"id": "root", "type": "folder", "name": "root", "children": [...]}
    """
    folders = list(folders)
    root: dict[str, Any] = {"id": ROOT_ID, "type": "folder", "name": "root", "children": []}

    nodes: dict[str, dict[str, Any]] = {}
    for folder in folders:
        nodes[folder.id] = {**folder.to_api(), "type": "folder", "children": []}
    by_path = {folder.path: nodes[folder.id] for folder in folders}

    for folder in folders:
        parent = nodes.get(folder.parent) if folder.parent else None
        if folder.parent and folder.parent != ROOT_ID and parent is None:
            logger.warning(f"Parent folder {folder.parent} not found for '{folder.name}', placing at root")
        if parent is None or _creates_cycle(folder, nodes, folders):
            parent = root
        parent["children"].append(nodes[folder.id])

    for track in tracks:
        parent = root
        if track.folder and track.folder != ROOT_ID:
            parent = nodes.get(track.folder) or by_path.get(track.folder)
            if parent is None:
                logger.warning(
                    f"Folder '{track.folder}' not found for track '{track.name}', placing at root"
                )
                parent = root
        parent["children"].append({**track.to_api(), "type": "track"})

    _sort_children(root)
    return root


def _creates_cycle(folder: Folder, nodes: dict[str, Any], folders: list[Folder]) -> bool:
    parents = {f.id: f.parent for f in folders}
    current = folder.parent
    visited = {folder.id}
    while current and current in nodes:
        if current in visited:
            logger.warning(f"Folder '{folder.name}' is part of a parent cycle, placing at root")
            return True
        visited.add(current)
        current = parents.get(current)
    return False


def _sort_children(node: dict[str, Any]) -> None:
    children = node.get("children")
    if not children:
        return
    children.sort(key=lambda child: (child.get("type") != "folder", (child.get("name") or "").casefold()))
    for child in children:
        if child.get("type") == "folder":
            _sort_children(child)


def iter_tree(node: dict[str, Any], depth: int = 0) -> Iterable[tuple[int, dict[str, Any]]]:
    """Yield (depth, item) for every item below node, parents before children."""
    for child in node.get("children") or ():
        yield depth, child
        if child.get("type") == "folder":
            yield from iter_tree(child, depth + 1)
