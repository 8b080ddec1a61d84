"""Access to the markdown files of a vault."""

import hashlib
from pathlib import Path
from typing import Protocol

from loguru import logger

HASH_PREFIX = "sha256:"


def compute_file_hash(content: bytes | str) -> str:
    """Return ``sha256:<hex>`` for file content."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return HASH_PREFIX + hashlib.sha256(content).hexdigest()


class NoteFileSystem(Protocol):
    """Narrow read-only view of a vault used by the indexer and sync service."""

    def list_markdown_files(self) -> list[str]:
        """Return paths of all markdown files, relative to the vault root."""
        ...

    def read_file(self, path: str) -> str | None:
        """Return file text, or None if it cannot be read."""
        ...

    def get_last_modified(self, path: str) -> int | None:
        """Return modification time in epoch milliseconds, or None."""
        ...


class LocalNoteFileSystem:
    """NoteFileSystem over a directory on local disk.

    Paths are POSIX-style and relative to the root. Hidden directories
    (``.obsidian``, ``.git``, ...) are skipped.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).expanduser().resolve()

    def _resolve(self, path: str) -> Path:
        candidate = (self.root / path).resolve()
        if not candidate.is_relative_to(self.root):
            raise ValueError(f"Path escapes vault root: {path!r}")
        return candidate

    def list_markdown_files(self) -> list[str]:
        if not self.root.is_dir():
            logger.warning(f"Vault root does not exist: {self.root}")
            return []
        files = []
        for file in self.root.rglob("*.md"):
            relative = file.relative_to(self.root)
            if any(part.startswith(".") for part in relative.parts):
                continue
            if file.is_file():
                files.append(relative.as_posix())
        return sorted(files)

    def read_file(self, path: str) -> str | None:
        try:
            return self._resolve(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError, ValueError) as e:
            logger.warning(f"Could not read {path}: {e}")
            return None

    def get_last_modified(self, path: str) -> int | None:
        try:
            return int(self._resolve(path).stat().st_mtime * 1000)
        except (OSError, ValueError):
            return None

