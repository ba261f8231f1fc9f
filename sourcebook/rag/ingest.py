"""Ingest pipeline for indexing one source at a time.

Orchestrates:
- Source normalization
- Text chunking
- Chunk record construction with provenance
- Handing chunks to the index client
"""
from typing import List, Optional

import structlog

from sourcebook.rag.chunker import TextChunker
from sourcebook.rag.index_client import IndexClient
from sourcebook.rag.models import Chunk, IngestResult, NormalizedSource
from sourcebook.rag.normalizer import SourceInput, SourceNormalizer

logger = structlog.get_logger()


class IngestPipeline:
    """Pipeline for ingesting sources into the RAG system."""

    def __init__(
        self,
        index: IndexClient,
        normalizer: Optional[SourceNormalizer] = None,
        chunker: Optional[TextChunker] = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            index: Index client that receives the chunks
            normalizer: Source normalizer (default: SourceNormalizer())
            chunker: Text chunker (default: TextChunker() with config sizes)
        """
        self.index = index
        self.normalizer = normalizer or SourceNormalizer()
        self.chunker = chunker or TextChunker()

    def build_chunks(self, normalized: NormalizedSource) -> List[Chunk]:
        """Chunk normalized text and attach provenance to every piece."""
        descriptor = normalized.descriptor
        contents = self.chunker.split_text(normalized.text)

        return [
            Chunk(
                content=content,
                source_origin_id=descriptor.origin_id,
                media_type=descriptor.media_type,
                title=descriptor.title,
                index=index,
                total_in_source=len(contents),
            )
            for index, content in enumerate(contents)
        ]

    async def ingest(self, source: SourceInput) -> IngestResult:
        """Normalize, chunk and index a single source.

        Args:
            source: FileSource, TextSource or UrlSource

        Returns:
            IngestResult with the number of chunks indexed

        Raises:
            SourcebookError: Any normalization or indexing failure
        """
        normalized = await self.normalizer.normalize(source)
        chunks = self.build_chunks(normalized)

        await self.index.store(chunks)

        logger.info(
            "source_ingested",
            origin_id=normalized.descriptor.origin_id,
            kind=normalized.descriptor.kind.value,
            chunks_created=len(chunks),
        )

        return IngestResult(chunk_count=len(chunks), descriptor=normalized.descriptor)
