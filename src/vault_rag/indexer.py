"""End-to-end vault indexing workflow.

Combines file reading, chunking, embedding-size validation, embedding,
and vector store upserts. Files are processed concurrently up to a fixed
limit; a failing file is logged and left out of the run's results.
"""

import asyncio
import inspect
import os
from collections.abc import Awaitable, Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime

from loguru import logger

from vault_rag.chunking import Chunker, MarkdownChunker
from vault_rag.embedding import Embedder
from vault_rag.errors import IndexingError
from vault_rag.filesystem import LocalNoteFileSystem, NoteFileSystem, compute_file_hash
from vault_rag.index import VectorStore
from vault_rag.models import Chunk, DeleteOutcome, IndexedFile, IndexingReport
from vault_rag.validation import EmbeddingValidator

DEFAULT_MAX_CONCURRENT_FILES = 5

# (vault_path, {path: indexed_at_ms}, {path: hash})
IndexingCallback = Callable[[str, dict[str, int], dict[str, str]], Awaitable[None] | None]
FileSystemFactory = Callable[[str], NoteFileSystem]


class VaultIndexer:
    """Indexes the markdown files of a vault into a vector store.

    Handles the complete workflow per file:
    1. Read and hash the file
    2. Chunk the markdown (off the event loop)
    3. Split chunks that exceed the embedding limit
    4. Drop the file's previous chunks (best-effort)
    5. Embed and upsert the new chunks
    """

    def __init__(
        self,
        embedder: Embedder,
        vector_store: VectorStore,
        chunker: Chunker | None = None,
        validator: EmbeddingValidator | None = None,
        file_system_factory: FileSystemFactory = LocalNoteFileSystem,
        max_concurrency: int = DEFAULT_MAX_CONCURRENT_FILES,
        on_indexing_complete: IndexingCallback | None = None,
        vault_path: str | None = None,
    ):
        """Initialize vault indexer.

        Args:
            embedder: Document embedder
            vector_store: Store receiving the chunks
            chunker: Markdown chunker (uses defaults if None)
            validator: Embedding size validator (uses defaults if None)
            file_system_factory: Builds a NoteFileSystem for a vault root
            max_concurrency: Files processed at the same time
            on_indexing_complete: Called after a run with the indexed files
            vault_path: Default vault root for single-file operations
        """
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be positive, got {max_concurrency}")
        self.embedder = embedder
        self.vector_store = vector_store
        self.chunker = chunker or MarkdownChunker()
        self.validator = validator or EmbeddingValidator()
        self.file_system_factory = file_system_factory
        self.max_concurrency = max_concurrency
        self.on_indexing_complete = on_indexing_complete
        self.vault_path = vault_path
        self._executor: ThreadPoolExecutor | None = None

    @property
    def executor(self) -> ThreadPoolExecutor:
        """Pool for CPU-bound chunking, sized to the available cores."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=os.cpu_count() or 1, thread_name_prefix="vault-rag-chunk"
            )
        return self._executor

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def _prepare_chunks(self, path: str, content: str) -> list[Chunk]:
        return self.validator.validate_and_split_chunks(self.chunker.chunk(path, content))

    async def _index_content(self, root_path: str, path: str, content: str, file_hash: str) -> IndexedFile:
        loop = asyncio.get_running_loop()
        chunks = await loop.run_in_executor(self.executor, self._prepare_chunks, path, content)

        # stale chunks of this file must not survive a re-index
        await self.vector_store.delete_by_file_path(path)

        if chunks:
            embeddings = await self.embedder.embed_document([c.text for c in chunks])
            if len(embeddings) != len(chunks):
                raise IndexingError(
                    f"Embedding count mismatch for {path}: expected {len(chunks)}, "
                    f"got {len(embeddings)}"
                )
            embedded = [c.model_copy(update={"embedding": e}) for c, e in zip(chunks, embeddings)]
            await self.vector_store.upsert_with_metadata(embedded, root_path, file_hash)
            logger.debug(f"Indexed {path}: {len(embedded)} chunks")
        else:
            logger.debug(f"File {path} has no chunkable content")

        return IndexedFile(
            path=path, hash=file_hash, indexed_at=datetime.now(UTC), chunk_count=len(chunks)
        )

    async def _read(self, file_system: NoteFileSystem, path: str) -> str:
        content = await asyncio.to_thread(file_system.read_file, path)
        if content is None:
            raise IndexingError(f"Could not read file: {path}")
        return content

    async def index_file(self, path: str, root_path: str | None = None) -> IndexedFile:
        """Index (or re-index) a single file.

        Args:
            path: File path relative to the vault root
            root_path: Vault root (defaults to the indexer's vault_path)

        Returns:
            The indexed file record

        Raises:
            IndexingError: If the file cannot be read or indexed
        """
        root = self._root(root_path)
        file_system = self.file_system_factory(root)
        try:
            content = await self._read(file_system, path)
            return await self._index_content(root, path, content, compute_file_hash(content))
        except IndexingError:
            raise
        except Exception as e:
            raise IndexingError(f"Failed to index file {path}: {e}") from e

    async def remove_file(self, path: str) -> DeleteOutcome:
        """Delete all chunks of a file (best-effort)."""
        outcome = await self.vector_store.delete_by_file_path(path)
        if outcome.ok:
            logger.info(f"Removed {path} from index")
        return outcome

    async def index_vault(
        self, root_path: str, existing_file_hashes: dict[str, str] | None = None
    ) -> IndexingReport:
        """Index every markdown file of a vault.

        Args:
            root_path: Vault root
            existing_file_hashes: Hashes from the previous run; files whose
                hash is unchanged are skipped

        Returns:
            Report of indexed, skipped and failed files
        """
        file_system = self.file_system_factory(root_path)
        files = await asyncio.to_thread(file_system.list_markdown_files)
        logger.info(f"Found {len(files)} markdown files in {root_path}")
        return await self._index_paths(root_path, file_system, files, existing_file_hashes)

    async def index_modified_files(self, root_path: str, paths: list[str]) -> IndexingReport:
        """Re-index only the given files of a vault."""
        file_system = self.file_system_factory(root_path)
        logger.info(f"Indexing {len(paths)} modified files in {root_path}")
        return await self._index_paths(root_path, file_system, paths, None)

    async def _index_paths(
        self,
        root_path: str,
        file_system: NoteFileSystem,
        paths: list[str],
        existing_file_hashes: dict[str, str] | None,
    ) -> IndexingReport:
        report = IndexingReport(vault_path=root_path)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def process(path: str) -> IndexedFile | None:
            async with semaphore:
                content = await self._read(file_system, path)
                file_hash = compute_file_hash(content)
                if existing_file_hashes and existing_file_hashes.get(path) == file_hash:
                    return None
                return await self._index_content(root_path, path, content, file_hash)

        outcomes = await asyncio.gather(*(process(p) for p in paths), return_exceptions=True)

        for path, outcome in zip(paths, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    logger.warning(f"Indexing of {path} was cancelled")
                else:
                    logger.error(f"Failed to index {path}: {outcome}")
                report.failed.append(path)
            elif outcome is None:
                report.skipped.append(path)
            else:
                report.indexed.append(outcome)

        logger.info(
            f"Indexed {len(report.indexed)} files ({report.chunk_count} chunks), "
            f"skipped {len(report.skipped)} unchanged, {len(report.failed)} failed"
        )

        if report.indexed and self.on_indexing_complete is not None:
            indexed_files = {
                f.path: int(f.indexed_at.timestamp() * 1000) for f in report.indexed
            }
            result = self.on_indexing_complete(root_path, indexed_files, report.indexed_file_hashes)
            if inspect.isawaitable(result):
                await result

        return report

    def _root(self, root_path: str | None) -> str:
        root = root_path or self.vault_path
        if root is None:
            raise ValueError("No vault path given and indexer has no default vault_path")
        return root
