"""Index client: the store/query contract the pipelines depend on.

``FaissIndexClient`` is the concrete backend: Ollama embeddings into a
FAISS store that is opened lazily on first use and then reused.
"""
import asyncio
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

import structlog

from sourcebook import config
from sourcebook.errors import IndexUnavailable, ModelFailure, ModelTransientFailure
from sourcebook.llm_client import OllamaClient
from sourcebook.rag.models import Chunk, RetrievedChunk
from sourcebook.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()


class IndexClient(Protocol):
    """Nearest-neighbour store for chunk records."""

    async def store(self, chunks: Sequence[Chunk]) -> None:
        """Index chunks. Raises IndexUnavailable if the backend is unreachable."""
        ...

    async def query(self, text: str, k: int) -> List[RetrievedChunk]:
        """Top-k chunks most similar to ``text``; empty when nothing is indexed."""
        ...


class FaissIndexClient:
    """Index client backed by FAISS and Ollama embeddings."""

    def __init__(
        self,
        llm: Optional[OllamaClient] = None,
        vector_store: Optional[FAISSVectorStore] = None,
        index_dir: Path = None,
        embedding_model: str = None,
    ):
        """Initialize the index client. No I/O happens until first use.

        Args:
            llm: Client used for embeddings (a default OllamaClient if not provided)
            vector_store: FAISS store (created under index_dir if not provided)
            index_dir: Directory for the on-disk index (default from config)
            embedding_model: Embedding model name (default from config)
        """
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.llm = llm or OllamaClient(embedding_model=self.embedding_model)
        self.vector_store = vector_store or FAISSVectorStore(
            index_dir=index_dir, embedding_model=self.embedding_model
        )
        self._ready = False
        self._init_lock = asyncio.Lock()
        # Serializes index writes (run in a worker thread) against searches
        self._write_lock = asyncio.Lock()

    async def _embed(self, text: str) -> List[float]:
        try:
            return await self.llm.embeddings(text, model=self.embedding_model)
        except (ModelFailure, ModelTransientFailure) as e:
            logger.error("embedding_failed", error=str(e), text_preview=text[:100])
            raise IndexUnavailable(f"Embedding service unavailable: {e.message}") from e

    async def _ensure_store(self) -> FAISSVectorStore:
        """Open the store once; concurrent first callers wait on the same init."""
        if self._ready:
            return self.vector_store

        async with self._init_lock:
            if not self._ready:
                # Embedding a fixed string reveals the model's dimension
                dimension = len(await self._embed("dimension check"))
                try:
                    self.vector_store.init_or_load(dimension)
                except (RuntimeError, ValueError, OSError) as e:
                    logger.error("vector_store_init_failed", error=str(e))
                    raise IndexUnavailable(f"Vector index unavailable: {e}") from e
                self._ready = True
                logger.info(
                    "index_client_ready",
                    dimension=dimension,
                    vector_count=self.vector_store.vector_count,
                )

        return self.vector_store

    @staticmethod
    def _write(store: FAISSVectorStore, embeddings, payloads) -> None:
        store.add_vectors(embeddings, payloads)
        store.save_index()

    async def store(self, chunks: Sequence[Chunk]) -> None:
        """Embed and index chunks, then persist the index.

        Raises:
            IndexUnavailable: If embedding or storage fails
        """
        if not chunks:
            return

        store = await self._ensure_store()

        embeddings = []
        for chunk in chunks:
            embeddings.append(await self._embed(chunk.content))

        payloads = [chunk.to_payload() for chunk in chunks]
        try:
            async with self._write_lock:
                await asyncio.to_thread(self._write, store, embeddings, payloads)
        except (RuntimeError, ValueError, OSError) as e:
            logger.error("vector_store_write_failed", error=str(e))
            raise IndexUnavailable(f"Vector index write failed: {e}") from e

        logger.info("chunks_stored", count=len(chunks), total_vectors=store.vector_count)

    async def query(self, text: str, k: int) -> List[RetrievedChunk]:
        """Retrieve the k chunks nearest to ``text``.

        Raises:
            IndexUnavailable: If embedding or search fails
        """
        store = await self._ensure_store()

        if store.vector_count == 0:
            logger.info("empty_index_no_results")
            return []

        query_embedding = await self._embed(text)

        try:
            async with self._write_lock:
                hits = store.search(query_embedding, top_k=k)
        except (RuntimeError, ValueError) as e:
            logger.error("vector_search_failed", error=str(e))
            raise IndexUnavailable(f"Vector search failed: {e}") from e

        results = [
            RetrievedChunk(chunk=Chunk.from_payload(payload), rank=rank)
            for rank, (payload, _distance) in enumerate(hits)
        ]

        logger.info("retrieval_completed", query_length=len(text), results_returned=len(results))

        return results

    async def count(self) -> int:
        """Number of indexed chunks."""
        store = await self._ensure_store()
        return store.vector_count

    async def rebuild(self) -> None:
        """Drop everything indexed so far."""
        dimension = len(await self._embed("dimension check"))
        async with self._init_lock:
            try:
                self.vector_store.rebuild_index(dimension)
            except OSError as e:
                raise IndexUnavailable(f"Could not clear the vector index: {e}") from e
            self._ready = True
