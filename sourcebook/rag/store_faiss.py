"""FAISS vector store for semantic search.

Handles:
- FAISS index initialization and loading
- Vector addition with chunk payloads
- Nearest-neighbour search
- Index, payload and metadata persistence
"""
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import faiss
import numpy as np
import structlog

from sourcebook import config

logger = structlog.get_logger()


class FAISSVectorStore:
    """FAISS flat-L2 index with a JSON sidecar of chunk payloads.

    Vector ids are positions in the index; payload ``i`` belongs to vector ``i``.
    """

    def __init__(
        self,
        index_dir: Path = None,
        embedding_model: str = None,
    ):
        """Initialize the FAISS vector store.

        Args:
            index_dir: Directory to store index and metadata (default: INDEX_DIR)
            embedding_model: Embedding model name recorded in metadata (default from config)
        """
        self.index_dir = Path(index_dir or config.INDEX_DIR)
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL

        self.index_path = self.index_dir / "vectors.index"
        self.payloads_path = self.index_dir / "payloads.json"
        self.metadata_path = self.index_dir / "metadata.json"

        self.index: Optional[faiss.Index] = None
        self.dimension: Optional[int] = None
        self.payloads: List[Dict[str, Any]] = []
        self.metadata: Dict[str, Any] = {}

        logger.debug(
            "faiss_store_initialized",
            index_dir=str(self.index_dir),
            embedding_model=self.embedding_model,
        )

    @property
    def exists_on_disk(self) -> bool:
        return all(
            path.exists()
            for path in (self.index_path, self.payloads_path, self.metadata_path)
        )

    @property
    def vector_count(self) -> int:
        return self.index.ntotal if self.index is not None else 0

    def init_new_index(self, dimension: int) -> None:
        """Initialize a new, empty FAISS index.

        Args:
            dimension: Embedding dimension
        """
        self.dimension = dimension

        # IndexFlatL2: exact search, fine below ~100k vectors
        self.index = faiss.IndexFlatL2(self.dimension)
        self.payloads = []

        self.metadata = {
            "embedding_model": self.embedding_model,
            "embedding_dimension": self.dimension,
            "index_type": "IndexFlatL2",
            "vector_count": 0,
        }

        logger.info(
            "faiss_index_initialized",
            dimension=self.dimension,
            index_type="IndexFlatL2",
        )

    def load_index(self, expected_dimension: Optional[int] = None) -> None:
        """Load an existing FAISS index and its payloads from disk.

        Args:
            expected_dimension: Dimension of the current embedding model, if known

        Raises:
            FileNotFoundError: If index files don't exist
            ValueError: If dimension mismatch or payload count mismatch
            RuntimeError: If loading fails
        """
        if not self.exists_on_disk:
            raise FileNotFoundError(f"Index not found in {self.index_dir}")

        try:
            with open(self.metadata_path, "r") as f:
                self.metadata = json.load(f)
            with open(self.payloads_path, "r") as f:
                self.payloads = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise RuntimeError(f"Failed to load index metadata: {e}") from e

        stored_model = self.metadata.get("embedding_model")
        stored_dim = self.metadata.get("embedding_dimension")

        if expected_dimension is not None and expected_dimension != stored_dim:
            raise ValueError(
                f"Dimension mismatch: index was built with {stored_model} "
                f"(dim={stored_dim}), but current model {self.embedding_model} "
                f"has dim={expected_dimension}. Please rebuild the index."
            )

        try:
            self.index = faiss.read_index(str(self.index_path))
            self.dimension = stored_dim
        except Exception as e:
            raise RuntimeError(f"Failed to load FAISS index: {e}") from e

        if self.index.ntotal != len(self.payloads):
            raise ValueError(
                f"Index holds {self.index.ntotal} vectors but "
                f"{len(self.payloads)} payloads. Please rebuild the index."
            )

        logger.info(
            "faiss_index_loaded",
            dimension=self.dimension,
            vector_count=self.index.ntotal,
            model=stored_model,
        )

    def save_index(self) -> None:
        """Save FAISS index, payloads and metadata to disk.

        Raises:
            RuntimeError: If save fails
        """
        if self.index is None:
            raise RuntimeError("No index to save. Initialize or load an index first.")

        self.index_dir.mkdir(parents=True, exist_ok=True)
        self.metadata["vector_count"] = self.index.ntotal

        try:
            faiss.write_index(self.index, str(self.index_path))
            with open(self.payloads_path, "w") as f:
                json.dump(self.payloads, f)
            with open(self.metadata_path, "w") as f:
                json.dump(self.metadata, f, indent=2)
        except Exception as e:
            raise RuntimeError(f"Failed to save FAISS index: {e}") from e

        logger.info(
            "faiss_index_saved",
            index_path=str(self.index_path),
            vector_count=self.index.ntotal,
        )

    def add_vectors(
        self, embeddings: List[List[float]], payloads: List[Dict[str, Any]]
    ) -> List[int]:
        """Add vectors and their payloads to the index.

        Args:
            embeddings: Embedding vectors
            payloads: One JSON-serializable payload per vector

        Returns:
            Vector IDs (0-indexed positions in the index)

        Raises:
            RuntimeError: If no index initialized
            ValueError: On dimension or length mismatch
        """
        if self.index is None:
            raise RuntimeError("No index initialized. Call init_new_index() first.")

        if len(embeddings) != len(payloads):
            raise ValueError(
                f"Got {len(embeddings)} embeddings for {len(payloads)} payloads"
            )

        if not embeddings:
            return []

        vectors = np.array(embeddings, dtype=np.float32)

        if vectors.shape[1] != self.dimension:
            raise ValueError(
                f"Embedding dimension mismatch: expected {self.dimension}, "
                f"got {vectors.shape[1]}"
            )

        start_id = self.index.ntotal
        self.index.add(vectors)
        self.payloads.extend(payloads)

        logger.info(
            "vectors_added",
            count=len(embeddings),
            total_vectors=self.index.ntotal,
        )

        return list(range(start_id, start_id + len(embeddings)))

    def search(
        self, query_embedding: List[float], top_k: int
    ) -> List[Tuple[Dict[str, Any], float]]:
        """Search for the vectors nearest to a query.

        Args:
            query_embedding: Query vector
            top_k: Number of results to return

        Returns:
            (payload, distance) pairs, nearest first

        Raises:
            RuntimeError: If no index initialized
            ValueError: On dimension mismatch
        """
        if self.index is None:
            raise RuntimeError("No index initialized. Call load_index() first.")

        query_vector = np.array([query_embedding], dtype=np.float32)

        if query_vector.shape[1] != self.dimension:
            raise ValueError(
                f"Query dimension mismatch: expected {self.dimension}, "
                f"got {query_vector.shape[1]}"
            )

        # Ensure we don't request more results than we have
        top_k = min(top_k, self.index.ntotal)

        if top_k == 0:
            return []

        distances, indices = self.index.search(query_vector, top_k)

        results = [
            (self.payloads[vector_id], float(distance))
            for vector_id, distance in zip(indices[0].tolist(), distances[0].tolist())
            if vector_id >= 0
        ]

        logger.debug("vector_search_completed", top_k=top_k, results_found=len(results))

        return results

    def init_or_load(self, dimension: int) -> None:
        """Load the index from disk if present, otherwise create a new one.

        Args:
            dimension: Dimension of the current embedding model

        Raises:
            ValueError: If dimension mismatch on load
            RuntimeError: If loading fails
        """
        if self.exists_on_disk:
            logger.info("existing_index_detected", path=str(self.index_path))
            self.load_index(expected_dimension=dimension)
        else:
            logger.info("no_index_found_initializing_new")
            self.init_new_index(dimension)

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the vector store."""
        if self.index is None:
            return {
                "initialized": False,
                "vector_count": 0,
                "dimension": None,
            }

        return {
            "initialized": True,
            "vector_count": self.index.ntotal,
            "dimension": self.dimension,
            "embedding_model": self.embedding_model,
            "index_exists_on_disk": self.exists_on_disk,
            "metadata": self.metadata,
        }

    def rebuild_index(self, dimension: int) -> None:
        """Delete the on-disk index and start over empty."""
        logger.warning("rebuilding_index", index_dir=str(self.index_dir))

        for path in (self.index_path, self.payloads_path, self.metadata_path):
            if path.exists():
                path.unlink()
                logger.info("deleted_index_file", path=str(path))

        self.init_new_index(dimension)
