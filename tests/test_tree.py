# tests/test_tree.py
"""Test conversion between the hierarchical payload and flat lists"""

from pattern_sync.library.models import Folder, Track
from pattern_sync.library.tree import flat_to_tree, iter_tree, record_of, tree_to_flat


def _payload():
    return {
        "id": "root",
        "type": "folder",
        "children": [
            {
                "id": "f1", "type": "folder", "name": "live",
                "children": [
                    {"id": "t1", "type": "track", "name": "Drum Loop", "code": "bd"},
                    {
                        "id": "f2", "type": "folder", "name": "drums",
                        "children": [{"id": "t2", "type": "track", "name": "Kick"}],
                    },
                ],
            },
            {"id": "t3", "type": "track", "name": "Sketch"},
        ],
    }


class TestTreeToFlat:
    """Test flattening"""

    def test_paths_and_parents(self):
        """Test folders get accumulated paths and parent ids"""
        tracks, folders = tree_to_flat(_payload())
        folder_map = record_of(folders)
        assert folder_map["f1"].path == "live"
        assert folder_map["f1"].parent is None
        assert folder_map["f2"].path == "live/drums"
        assert folder_map["f2"].parent == "f1"

    def test_track_folders(self):
        """Test tracks reference the enclosing folder path"""
        tracks, _ = tree_to_flat(_payload())
        track_map = record_of(tracks)
        assert track_map["t1"].folder == "live"
        assert track_map["t2"].folder == "live/drums"
        assert track_map["t3"].folder is None

    def test_explicit_path_wins(self):
        """Test an item's own path is kept"""
        tracks, folders = tree_to_flat({
            "id": "root",
            "children": [{"id": "f1", "type": "folder", "name": "Live", "path": "sets/live", "children": [
                {"id": "t1", "type": "track", "name": "A"},
            ]}],
        })
        assert folders[0].path == "sets/live"
        assert tracks[0].folder == "sets/live"

    def test_empty_root(self):
        """Test a root without children"""
        assert tree_to_flat({"id": "root", "type": "folder"}) == ([], [])

    def test_duplicates_and_unknown_types_are_skipped(self):
        """Test malformed items do not abort the walk"""
        tracks, folders = tree_to_flat({
            "id": "root",
            "children": [
                {"id": "t1", "type": "track", "name": "A"},
                {"id": "t1", "type": "track", "name": "A again"},
                {"id": "x1", "type": "sample", "name": "?"},
                {"id": "t2", "type": "track", "name": "B"},
            ],
        })
        assert [track.id for track in tracks] == ["t1", "t2"]
        assert tracks[0].name == "A"
        assert folders == []


class TestFlatToTree:
    """Test rebuilding the hierarchy"""

    def test_round_trip_structure(self):
        """Test flattening then rebuilding keeps the nesting"""
        tracks, folders = tree_to_flat(_payload())
        tree = flat_to_tree(tracks, folders)
        assert tree["id"] == "root"
        names = [(depth, item["name"]) for depth, item in iter_tree(tree)]
        assert names == [
            (0, "live"),
            (1, "drums"),
            (2, "Kick"),
            (1, "Drum Loop"),
            (0, "Sketch"),
        ]

    def test_folders_sorted_before_tracks(self):
        """Test sibling ordering"""
        tree = flat_to_tree(
            [Track(id="t1", name="alpha")],
            [Folder(id="f1", name="zeta", path="zeta")],
        )
        assert [child["name"] for child in tree["children"]] == ["zeta", "alpha"]

    def test_orphans_go_to_root(self):
        """Test unknown parents and folders fall back to root"""
        tree = flat_to_tree(
            [Track(id="t1", name="Lost", folder="gone")],
            [Folder(id="f1", name="child", path="missing/child", parent="missing")],
        )
        assert {child["id"] for child in tree["children"]} == {"f1", "t1"}

    def test_parent_cycle_is_broken(self):
        """Test folders parented to each other still appear"""
        tree = flat_to_tree([], [
            Folder(id="a", name="a", path="a", parent="b"),
            Folder(id="b", name="b", path="b", parent="a"),
        ])
        ids = {item["id"] for _, item in iter_tree(tree)}
        assert ids == {"a", "b"}

    def test_track_by_legacy_folder_id(self):
        """Test tracks referencing a folder id are nested"""
        tree = flat_to_tree(
            [Track(id="t1", name="Old", folder="f1")],
            [Folder(id="f1", name="beats", path="beats")],
        )
        folder = tree["children"][0]
        assert folder["children"][0]["id"] == "t1"
