"""Persistence of per-vault indexing records.

Each vault's VaultMetadata is a JSON file in a metadata directory. Writes
replace the whole record under a file lock, so concurrent writers never
interleave partial updates.

Use the directory configured at RagConfig.metadata.directory
(defaults to "data/vault_metadata").
"""

from __future__ import annotations

import hashlib
import json
from datetime import UTC, datetime
from pathlib import Path

from filelock import FileLock
from loguru import logger
from pydantic import ValidationError

from vault_rag.models import VaultMetadata


def _record_name(vault_path: str) -> str:
    """Stable file name for a vault path."""
    normalized = str(Path(vault_path).expanduser().resolve())
    return hashlib.sha256(normalized.encode()).hexdigest()[:16] + ".json"


class VaultMetadataStore:
    """JSON-file store of VaultMetadata keyed by vault path."""

    def __init__(self, directory: str | Path, lock_timeout: float = 30.0):
        self.directory = Path(directory)
        self.lock_timeout = lock_timeout

    def path_for(self, vault_path: str) -> Path:
        return self.directory / _record_name(vault_path)

    def _lock(self, path: Path) -> FileLock:
        return FileLock(path.with_suffix(".lock"), timeout=self.lock_timeout)

    def load(self, vault_path: str) -> VaultMetadata | None:
        """Load the record for a vault, or None if missing or unreadable."""
        path = self.path_for(vault_path)
        if not path.exists():
            return None
        try:
            with self._lock(path):
                data = json.loads(path.read_text())
            return VaultMetadata.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable vault metadata at {path}: {e}")
            return None

    def save(self, metadata: VaultMetadata) -> Path:
        """Replace the record for metadata.vault_path."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(metadata.vault_path)
        tmp_path = path.with_suffix(".json.tmp")
        with self._lock(path):
            tmp_path.write_text(metadata.model_dump_json(indent=2))
            tmp_path.replace(path)
        logger.debug(
            f"Saved vault metadata for {metadata.vault_path} "
            f"({len(metadata.indexed_file_hashes)} files)"
        )
        return path

    def delete(self, vault_path: str) -> bool:
        path = self.path_for(vault_path)
        if not path.exists():
            return False
        with self._lock(path):
            if not path.exists():
                return False
            path.unlink()
        return True

    def record_indexing(
        self,
        vault_path: str,
        indexed_file_hashes: dict[str, str],
        merge: bool = True,
        now: datetime | None = None,
    ) -> VaultMetadata:
        """Write a new record after an indexing run.

        Args:
            vault_path: Vault root
            indexed_file_hashes: Hashes of files indexed in this run
            merge: Keep previous hashes for files not touched by this run
            now: Testing hook; defaults to datetime.now(UTC)

        Returns:
            The record that was written
        """
        hashes = dict(indexed_file_hashes)
        if merge:
            previous = self.load(vault_path)
            if previous is not None:
                hashes = {**previous.indexed_file_hashes, **indexed_file_hashes}

        metadata = VaultMetadata(
            vault_path=vault_path,
            last_indexed_time=now or datetime.now(UTC),
            indexed_file_hashes=hashes,
        )
        self.save(metadata)
        return metadata

    def forget_files(self, vault_path: str, paths: list[str]) -> VaultMetadata | None:
        """Drop removed files from the record (record is rewritten wholesale)."""
        previous = self.load(vault_path)
        if previous is None:
            return None
        dropped = set(paths)
        remaining = {p: h for p, h in previous.indexed_file_hashes.items() if p not in dropped}
        metadata = previous.model_copy(update={"indexed_file_hashes": remaining})
        self.save(metadata)
        return metadata
