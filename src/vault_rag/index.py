"""Vector store management and search operations.

Provides a backend-independent interface plus a Chroma implementation
speaking the v2 REST API over httpx:
- Lazy create-or-get of a named collection, with the id cached
- Upsert of embedded chunks with per-vault metadata
- Similarity search with metadata filtering
- Best-effort deletion by file path and collection reset
- Health checks
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import httpx
from loguru import logger

from vault_rag.errors import VectorStoreError
from vault_rag.models import Chunk, DeleteOutcome, SearchResult

_QUERY_INCLUDE = ["documents", "metadatas", "distances"]
_PAGE_SIZE = 1000


class VectorStore(ABC):
    """Abstract base class for vector store implementations."""

    @abstractmethod
    async def upsert(self, chunks: list[Chunk]) -> None:
        """Insert or update embedded chunks.

        Args:
            chunks: Chunks with embeddings

        Raises:
            ValueError: If any chunk has no embedding
            VectorStoreError: For store failures
        """
        ...

    @abstractmethod
    async def upsert_with_metadata(
        self, chunks: list[Chunk], vault_path: str, file_hash: str
    ) -> None:
        """Upsert chunks tagged with the vault they belong to and the file hash."""
        ...

    @abstractmethod
    async def search(
        self,
        query_embedding: list[float],
        top_k: int,
        filters: dict[str, str] | None = None,
    ) -> list[SearchResult]:
        """Perform similarity search.

        Args:
            query_embedding: Query vector
            top_k: Maximum number of results
            filters: Optional exact-match metadata filters

        Returns:
            Results ordered by decreasing similarity

        Raises:
            VectorStoreError: If the search request fails
        """
        ...

    @abstractmethod
    async def delete_by_file_path(self, file_path: str) -> DeleteOutcome:
        """Delete all chunks of a file. Best-effort: never raises."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Remove all chunks (drop and recreate the collection)."""
        ...

    @abstractmethod
    async def has_vault_data(self, vault_path: str) -> bool:
        """Return True if any chunk is tagged with vault_path."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the store is accessible and healthy.

        Returns:
            True if healthy, False otherwise
        """
        ...

    @abstractmethod
    async def get_files_in_collection(self) -> set[str]:
        """Return the distinct file paths that have stored chunks."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""


def build_where(filters: dict[str, str] | None) -> dict[str, Any] | None:
    """Translate exact-match filters into a Chroma ``where`` clause."""
    if not filters:
        return None
    if len(filters) == 1:
        return dict(filters)
    return {"$and": [{key: value} for key, value in sorted(filters.items())]}


def distance_to_similarity(distance: float) -> float:
    """Convert a cosine distance into a similarity clamped to [0, 1]."""
    return min(max(1.0 - distance, 0.0), 1.0)


class ChromaVectorStore(VectorStore):
    """Chroma vector store accessed through its v2 REST API."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        collection_name: str = "note_chunks",
        tenant: str = "default",
        database: str = "defaultDB",
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ):
        """Initialize Chroma store.

        Args:
            base_url: Chroma server URL
            collection_name: Name of the collection holding note chunks
            tenant: Chroma tenant
            database: Chroma database
            client: Shared HTTP client (a private one is created if None)
            timeout_seconds: Request timeout for a private client
        """
        self.base_url = base_url.rstrip("/")
        self.collection_name = collection_name
        self.collections_url = (
            f"{self.base_url}/api/v2/tenants/{tenant}/databases/{database}/collections"
        )
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = client is None
        self._collection_id: str | None = None
        self._collection_lock = asyncio.Lock()

    def _collection_id_from(self, response: httpx.Response) -> str:
        try:
            return str(response.json()["id"])
        except (ValueError, KeyError, TypeError) as e:
            raise VectorStoreError(
                f"Unexpected collection response for {self.collection_name!r}: {response.text[:200]}"
            ) from e

    async def _lookup_collection(self) -> httpx.Response:
        return await self.client.get(f"{self.collections_url}/{self.collection_name}")

    async def _create_collection(self) -> str:
        response = await self.client.post(
            self.collections_url,
            json={
                "name": self.collection_name,
                "get_or_create": True,
                "metadata": {"hnsw:space": "cosine"},
            },
        )
        if response.status_code not in (200, 201):
            raise VectorStoreError(
                f"Failed to create collection {self.collection_name!r}: "
                f"HTTP {response.status_code} {response.text[:200]}"
            )
        collection_id = self._collection_id_from(response)
        logger.info(f"Created collection {self.collection_name!r} (id={collection_id})")
        return collection_id

    async def ensure_collection(self) -> str:
        """Resolve (creating if needed) the collection id, cached after first use."""
        if self._collection_id is not None:
            return self._collection_id

        async with self._collection_lock:
            if self._collection_id is not None:
                return self._collection_id
            try:
                response = await self._lookup_collection()
                if response.status_code == 200:
                    self._collection_id = self._collection_id_from(response)
                    logger.debug(
                        f"Using collection {self.collection_name!r} (id={self._collection_id})"
                    )
                else:
                    self._collection_id = await self._create_collection()
            except httpx.HTTPError as e:
                raise VectorStoreError(f"Failed to resolve collection: {e}") from e
            return self._collection_id

    async def _recreate_collection(self) -> str:
        async with self._collection_lock:
            await self.client.delete(f"{self.collections_url}/{self.collection_name}")
            self._collection_id = await self._create_collection()
            return self._collection_id

    async def upsert(self, chunks: list[Chunk]) -> None:
        if not chunks:
            return
        missing = [c.id for c in chunks if c.embedding is None]
        if missing:
            raise ValueError(f"Cannot upsert chunks without embeddings: {missing[:5]}")

        payload = {
            "ids": [c.id for c in chunks],
            "embeddings": [c.embedding for c in chunks],
            "documents": [c.text for c in chunks],
            "metadatas": [c.metadata for c in chunks],
        }

        collection_id = await self.ensure_collection()
        try:
            response = await self.client.post(f"{self.collections_url}/{collection_id}/add", json=payload)
            if response.status_code == 400 and "dimension" in response.text.lower():
                logger.warning(
                    f"Embedding dimension changed for collection {self.collection_name!r}; "
                    f"recreating it and retrying upsert"
                )
                collection_id = await self._recreate_collection()
                response = await self.client.post(
                    f"{self.collections_url}/{collection_id}/add", json=payload
                )
        except httpx.HTTPError as e:
            raise VectorStoreError(f"Upsert request failed: {e}") from e

        if response.status_code not in (200, 201):
            raise VectorStoreError(
                f"Upsert failed: HTTP {response.status_code} {response.text[:200]}"
            )
        logger.debug(f"Upserted {len(chunks)} chunks into {self.collection_name!r}")

    async def upsert_with_metadata(
        self, chunks: list[Chunk], vault_path: str, file_hash: str
    ) -> None:
        tagged = [
            c.model_copy(update={"metadata": {**c.metadata, "vault_path": vault_path, "file_hash": file_hash}})
            for c in chunks
        ]
        await self.upsert(tagged)

    async def search(
        self,
        query_embedding: list[float],
        top_k: int,
        filters: dict[str, str] | None = None,
    ) -> list[SearchResult]:
        if top_k <= 0:
            return []

        collection_id = await self.ensure_collection()
        payload: dict[str, Any] = {
            "query_embeddings": [query_embedding],
            "n_results": top_k,
            "include": _QUERY_INCLUDE,
        }
        where = build_where(filters)
        if where is not None:
            payload["where"] = where

        try:
            response = await self.client.post(
                f"{self.collections_url}/{collection_id}/query", json=payload
            )
        except httpx.HTTPError as e:
            raise VectorStoreError(f"Search request failed: {e}") from e
        if response.status_code != 200:
            raise VectorStoreError(
                f"Search failed: HTTP {response.status_code} {response.text[:200]}"
            )

        try:
            results = self._parse_query_response(response.json())
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise VectorStoreError(f"Malformed query response: {e}") from e

        results.sort(key=lambda r: r.similarity, reverse=True)
        logger.debug(f"Search returned {len(results)} results (top_k={top_k})")
        return results

    @staticmethod
    def _parse_query_response(body: dict[str, Any]) -> list[SearchResult]:
        """Convert the first query's nested lists into SearchResults."""
        ids = (body.get("ids") or [[]])[0]
        documents = (body.get("documents") or [[]])[0] or []
        metadatas = (body.get("metadatas") or [[]])[0] or []
        distances = (body.get("distances") or [[]])[0] or []

        results: list[SearchResult] = []
        for i, chunk_id in enumerate(ids):
            metadata = metadatas[i] if i < len(metadatas) and metadatas[i] else {}
            distance = distances[i] if i < len(distances) and distances[i] is not None else 1.0
            chunk = Chunk(
                id=chunk_id,
                text=(documents[i] if i < len(documents) else None) or "",
                metadata={k: str(v) for k, v in metadata.items()},
            )
            results.append(
                SearchResult(chunk=chunk, similarity=distance_to_similarity(float(distance)))
            )
        return results

    async def delete_by_file_path(self, file_path: str) -> DeleteOutcome:
        try:
            collection_id = await self.ensure_collection()
            response = await self.client.post(
                f"{self.collections_url}/{collection_id}/delete",
                json={"where": {"filePath": file_path}},
            )
            if response.status_code != 200:
                raise VectorStoreError(
                    f"HTTP {response.status_code} {response.text[:200]}"
                )
        except (httpx.HTTPError, VectorStoreError) as e:
            logger.warning(f"Failed to delete chunks for {file_path}, continuing: {e}")
            return DeleteOutcome(file_path=file_path, ok=False, error=str(e))

        logger.debug(f"Deleted chunks for {file_path}")
        return DeleteOutcome(file_path=file_path, ok=True)

    async def clear(self) -> None:
        try:
            response = await self.client.delete(f"{self.collections_url}/{self.collection_name}")
        except httpx.HTTPError as e:
            raise VectorStoreError(f"Failed to delete collection: {e}") from e
        if response.status_code not in (200, 204, 404):
            raise VectorStoreError(
                f"Failed to delete collection: HTTP {response.status_code} {response.text[:200]}"
            )

        async with self._collection_lock:
            try:
                self._collection_id = await self._create_collection()
            except httpx.HTTPError as e:
                self._collection_id = None
                raise VectorStoreError(f"Failed to recreate collection: {e}") from e
        logger.info(f"Cleared collection {self.collection_name!r}")

    async def _get_records(
        self, where: dict[str, Any] | None, limit: int, offset: int = 0
    ) -> dict[str, Any]:
        collection_id = await self.ensure_collection()
        payload: dict[str, Any] = {"limit": limit, "offset": offset, "include": ["metadatas"]}
        if where is not None:
            payload["where"] = where
        response = await self.client.post(f"{self.collections_url}/{collection_id}/get", json=payload)
        if response.status_code != 200:
            raise VectorStoreError(f"Get failed: HTTP {response.status_code} {response.text[:200]}")
        try:
            body = response.json()
        except ValueError as e:
            raise VectorStoreError(f"Get returned invalid JSON: {response.text[:200]}") from e
        if not isinstance(body, dict):
            raise VectorStoreError(f"Get returned unexpected body: {response.text[:200]}")
        return body

    async def has_vault_data(self, vault_path: str) -> bool:
        try:
            body = await self._get_records({"vault_path": vault_path}, limit=1)
        except (httpx.HTTPError, VectorStoreError) as e:
            logger.warning(f"Could not check stored data for vault {vault_path}: {e}")
            return False
        return bool(body.get("ids"))

    async def get_files_in_collection(self) -> set[str]:
        files: set[str] = set()
        offset = 0
        while True:
            try:
                body = await self._get_records(None, limit=_PAGE_SIZE, offset=offset)
            except (httpx.HTTPError, VectorStoreError) as e:
                logger.error(f"Failed to list files in collection: {e}")
                return files

            metadatas = body.get("metadatas") or []
            for metadata in metadatas:
                if metadata and metadata.get("filePath"):
                    files.add(str(metadata["filePath"]))
            if len(body.get("ids") or []) < _PAGE_SIZE:
                return files
            offset += _PAGE_SIZE

    async def health_check(self) -> bool:
        try:
            heartbeat = await self.client.get(f"{self.base_url}/api/v2/healthcheck")
            if heartbeat.status_code != 200:
                logger.warning(f"Chroma healthcheck returned HTTP {heartbeat.status_code}")
                return False
            collection = await self._lookup_collection()
            # a missing collection is created on first use
            return collection.status_code in (200, 404)
        except httpx.HTTPError as e:
            logger.error(f"Chroma health check failed: {e}")
            return False

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
