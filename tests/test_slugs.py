# tests/test_slugs.py
"""Test URL slugs and navigable paths"""

from pattern_sync.library.models import Folder, Step, Track
from pattern_sync.library.slugs import (
    extract_step,
    find_step_index,
    folder_path_to_slug,
    is_legacy_folder_id,
    parse_track_url_path,
    resolve_folder_path,
    slug_to_display_name,
    slugify,
    track_url_path,
    unique_slug,
)

LEGACY_ID = "V1StGXR8_Z5jdHi6B-myT"


class TestSlugify:
    """Test slug generation"""

    def test_slugify(self):
        """Test names become lowercase hyphenated slugs"""
        assert slugify("Drum Loop") == "drum-loop"
        assert slugify("  Drum Loop #2! ") == "drum-loop-2"
        assert slugify("Ärger") == "rger"
        assert slugify("???") == "untitled"

    def test_folder_path_to_slug(self):
        """Test every segment is slugified"""
        assert folder_path_to_slug("Live Sets/Drums") == "live-sets/drums"
        assert folder_path_to_slug("live/???/drums") == "live/drums"
        assert folder_path_to_slug(None) == ""

    def test_slug_to_display_name(self):
        """Test the best-effort inverse"""
        assert slug_to_display_name("drum-loop") == "Drum Loop"


class TestFolderReferences:
    """Test path and legacy id resolution"""

    def test_legacy_id_detection(self):
        """Test nanoid-style ids are recognized"""
        assert is_legacy_folder_id(LEGACY_ID)
        assert not is_legacy_folder_id("live/drums")
        assert not is_legacy_folder_id("short")
        assert not is_legacy_folder_id(None)

    def test_resolve_folder_path(self):
        """Test path first, then id, then unchanged"""
        folders = {LEGACY_ID: Folder(id=LEGACY_ID, name="beats", path="beats")}
        assert resolve_folder_path("beats", folders) == "beats"
        assert resolve_folder_path(LEGACY_ID, folders) == "beats"
        assert resolve_folder_path("dangling", folders) == "dangling"
        assert resolve_folder_path("root", folders) is None
        assert resolve_folder_path(None, folders) is None


class TestNavigablePaths:
    """Test building and parsing track paths"""

    def test_track_url_path(self):
        """Test paths for root and nested tracks"""
        assert track_url_path("Sketch") == "/repl/sketch"
        assert track_url_path("Drum Loop", "Live/Drums") == "/repl/live/drums/drum-loop"
        assert track_url_path("Song", "live", step_name="The Verse") == "/repl/live/song?step=the-verse"

    def test_track_url_path_resolves_legacy_ids(self):
        """Test legacy folder ids are turned into paths"""
        folders = {LEGACY_ID: Folder(id=LEGACY_ID, name="beats", path="beats")}
        assert track_url_path("Loop", LEGACY_ID, folders) == "/repl/beats/loop"

    def test_parse_track_url_path(self):
        """Test the prefix and query string are optional"""
        assert parse_track_url_path("/repl/live/drums/drum-loop") == ("live/drums", "drum-loop")
        assert parse_track_url_path("live/drum-loop?step=intro") == ("live", "drum-loop")
        assert parse_track_url_path("/repl/sketch") == (None, "sketch")
        assert parse_track_url_path("/repl") is None
        assert parse_track_url_path("/replay/x") == ("replay", "x")

    def test_steps(self):
        """Test step extraction and lookup"""
        track = Track(
            id="t1", name="Song", is_multitrack=True,
            steps=(Step(id="s1", name="Intro"), Step(id="s2", name="The Verse")),
        )
        assert extract_step("/repl/song?step=the-verse") == "the-verse"
        assert extract_step("/repl/song") is None
        assert find_step_index(track, "the-verse") == 1
        assert find_step_index(track, "The Verse") == 1
        assert find_step_index(track, "outro") is None

    def test_unique_slug(self):
        """Test numeric suffixes within a folder"""
        tracks = [
            Track(id="t1", name="Loop"),
            Track(id="t2", name="loop 2"),
            Track(id="t3", name="Loop", folder="live"),
        ]
        assert unique_slug("Loop", tracks) == "loop-3"
        assert unique_slug("Loop", tracks, "other") == "loop"
        assert unique_slug("Loop", tracks, exclude_id="t1") == "loop"
