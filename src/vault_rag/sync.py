"""Vault sync status: compare current file hashes with the last indexing run.

The diff itself is a pure function so the status rules can be tested
without a vector store or a file system.
"""

import asyncio

from loguru import logger

from vault_rag.filesystem import LocalNoteFileSystem, NoteFileSystem, compute_file_hash
from vault_rag.index import VectorStore
from vault_rag.indexer import FileSystemFactory
from vault_rag.metadata import VaultMetadataStore
from vault_rag.models import SyncStatus, VaultChanges


def diff_file_hashes(current: dict[str, str], indexed: dict[str, str]) -> VaultChanges:
    """Classify files as new, modified or deleted relative to the indexed hashes."""
    return VaultChanges(
        new_files=sorted(path for path in current if path not in indexed),
        modified_files=sorted(
            path for path, h in current.items() if path in indexed and indexed[path] != h
        ),
        deleted_files=sorted(path for path in indexed if path not in current),
    )


def current_file_hashes(file_system: NoteFileSystem) -> dict[str, str]:
    """Hash every readable markdown file of a vault."""
    hashes: dict[str, str] = {}
    for path in file_system.list_markdown_files():
        content = file_system.read_file(path)
        if content is not None:
            hashes[path] = compute_file_hash(content)
    return hashes


class VaultSyncService:
    """Reports whether a vault's index reflects its current contents."""

    def __init__(
        self,
        vector_store: VectorStore,
        metadata_store: VaultMetadataStore,
        file_system_factory: FileSystemFactory = LocalNoteFileSystem,
    ):
        self.vector_store = vector_store
        self.metadata_store = metadata_store
        self.file_system_factory = file_system_factory

    async def check_sync_status(self, vault_path: str | None) -> SyncStatus:
        """Compute the sync status of a vault.

        Returns:
            UNAVAILABLE if the vector store is unhealthy; NOT_INDEXED if
            there is neither metadata nor stored data; SYNCED if data exists
            without metadata (cannot verify); otherwise SYNCED or
            OUT_OF_SYNC depending on the file hash diff
        """
        if vault_path is None:
            return SyncStatus.NOT_INDEXED

        if not await self.vector_store.health_check():
            logger.warning(f"Vector store unavailable while checking {vault_path}")
            return SyncStatus.UNAVAILABLE

        metadata = await asyncio.to_thread(self.metadata_store.load, vault_path)
        if metadata is None:
            if await self.vector_store.has_vault_data(vault_path):
                logger.info(f"Vault {vault_path} has indexed data but no metadata; assuming synced")
                return SyncStatus.SYNCED
            return SyncStatus.NOT_INDEXED

        changes = await self.detect_changes(vault_path, metadata.indexed_file_hashes)
        if changes.has_changes:
            logger.info(
                f"Vault {vault_path} out of sync: {len(changes.new_files)} new, "
                f"{len(changes.modified_files)} modified, {len(changes.deleted_files)} deleted"
            )
            return SyncStatus.OUT_OF_SYNC
        return SyncStatus.SYNCED

    async def detect_changes(
        self, vault_path: str, indexed_file_hashes: dict[str, str] | None = None
    ) -> VaultChanges:
        """Diff the vault on disk against its indexed hashes.

        Args:
            vault_path: Vault root
            indexed_file_hashes: Hashes to compare against (loaded from the
                metadata store if None; no metadata means every file is new)
        """
        if indexed_file_hashes is None:
            metadata = await asyncio.to_thread(self.metadata_store.load, vault_path)
            indexed_file_hashes = metadata.indexed_file_hashes if metadata else {}

        file_system = self.file_system_factory(vault_path)
        current = await asyncio.to_thread(current_file_hashes, file_system)
        return diff_file_hashes(current, indexed_file_hashes)

    async def get_files_to_reindex(self, vault_path: str) -> list[str]:
        """New and modified files of a vault."""
        return (await self.detect_changes(vault_path)).files_to_reindex
