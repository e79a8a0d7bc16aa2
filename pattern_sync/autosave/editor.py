"""
Editor collaborators.

The scheduler only needs to read the editor's current code and, right after
a track is loaded, push code into it. Anything with a `code` attribute
qualifies; `set_code()` is used when present.

Two realizations ship with the package:
    BufferEditor  - in-memory buffer (embedding, tests)
    FileEditor    - a local file edited with any text editor (psync edit)
"""

from pathlib import Path
from typing import Protocol, runtime_checkable

from pattern_sync.core.logger import get_logger


logger = get_logger(__name__)


@runtime_checkable
class Editor(Protocol):
    code: str


class BufferEditor:
    """Editor holding its code in memory."""

    def __init__(self, code: str = "") -> None:
        self.code = code

    def set_code(self, code: str) -> None:
        self.code = code


class FileEditor:
    """
    Editor backed by a file on disk.

    Reading `code` reads the file; set_code() overwrites it. The file is
    read on every access so edits made by an external editor are seen by
    the change detector's next poll.

    Attributes:
        path: File holding the pattern source.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    @property
    def code(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""

    @code.setter
    def code(self, value: str) -> None:
        self.set_code(value)

    def set_code(self, code: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(code, encoding="utf-8")
        logger.debug(f"Wrote {len(code)} characters to {self.path}")


def push_code(editor: Editor, code: str) -> None:
    """Put code into an editor, through set_code() when it has one."""
    setter = getattr(editor, "set_code", None)
    if callable(setter):
        setter(code)
    else:
        editor.code = code
