"""Text chunking with overlap for RAG pipeline.

Splits recursively by separator priority (paragraphs, lines, words,
characters) so chunk boundaries land on the coarsest separator that keeps
pieces within the chunk size. Each chunk after the first opens with the
tail of the previous one, clipped to a separator boundary when one falls
inside it. Character-based to avoid tokenizer dependencies.
"""
from typing import List, Sequence, Tuple

import structlog

from sourcebook import config

logger = structlog.get_logger()


class TextChunker:
    """Recursive character text chunker with overlap support."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
        separators: Sequence[str] = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Target size of each chunk in characters (default from config)
            chunk_overlap: Overlap between chunks in characters (default from config)
            separators: Separators in priority order (default from config). The
                empty separator is appended when missing so splitting always
                terminates.
        """
        self.chunk_size = chunk_size or config.CHUNK_SIZE
        self.chunk_overlap = (
            config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        )
        self.separators = list(separators or config.CHUNK_SEPARATORS)
        if self.separators[-1] != "":
            self.separators.append("")

        # Validate parameters
        if self.chunk_overlap < 0:
            raise ValueError(f"Overlap ({self.chunk_overlap}) must not be negative")
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            separators=self.separators,
        )

    def split_text(self, text: str) -> List[str]:
        """Split text into overlapping chunks.

        Args:
            text: Text to chunk

        Returns:
            Chunk contents in document order
        """
        if not text:
            return []

        chunks = self._merge(self._atomize(text, self.separators))

        logger.info(
            "text_chunked",
            text_length=len(text),
            chunk_count=len(chunks),
            avg_chunk_size=sum(len(c) for c in chunks) // len(chunks) if chunks else 0,
        )

        return chunks

    def _atomize(
        self, text: str, separators: List[str], lead: str = ""
    ) -> List[Tuple[str, str]]:
        """Break text into ``(separator, piece)`` pairs no longer than chunk_size.

        Splits on the first separator present and recurses into oversized
        pieces with the finer separators. ``separator`` is the text that
        joined the piece to its predecessor, so concatenating every pair
        restores ``lead + text``.
        """
        separator = separators[-1]
        finer: List[str] = []
        for i, candidate in enumerate(separators):
            if candidate == "":
                separator = candidate
                break
            if candidate in text:
                separator = candidate
                finer = separators[i + 1 :]
                break

        pieces = text.split(separator) if separator else list(text)

        atoms: List[Tuple[str, str]] = []
        for i, piece in enumerate(pieces):
            joiner = lead if i == 0 else separator
            if len(piece) > self.chunk_size and finer:
                atoms.extend(self._atomize(piece, finer, joiner))
            else:
                atoms.append((joiner, piece))

        return atoms

    def _merge(self, atoms: List[Tuple[str, str]]) -> List[str]:
        """Greedily merge atoms into chunks, opening each new chunk with the
        overlap tail of the one before it."""
        chunks: List[str] = []
        current = ""

        for separator, piece in atoms:
            if current and len(current) + len(separator) + len(piece) > self.chunk_size:
                content = self._emit(chunks, current)
                # Chunks stay within chunk_size + chunk_overlap
                limit = min(
                    self.chunk_overlap,
                    self.chunk_size + self.chunk_overlap - len(separator) - len(piece),
                )
                current = self._tail(content, limit)

            current = current + separator + piece if current else piece

        self._emit(chunks, current)
        return chunks

    def _tail(self, text: str, limit: int) -> str:
        """Last ``limit`` characters of text, moved forward to the first
        separator boundary inside them; a hard cut when there is none."""
        if limit <= 0:
            return ""
        if len(text) <= limit:
            return text

        tail = text[-limit:]

        start, end = None, None
        for separator in self.separators:
            if not separator:
                continue
            position = tail.find(separator)
            if position != -1 and (start is None or position < start):
                start, end = position, position + len(separator)

        if end is not None and tail[end:]:
            return tail[end:]
        return tail

    @staticmethod
    def _emit(chunks: List[str], text: str) -> str:
        content = text.strip()
        if content:
            chunks.append(content)
        return content

    def get_chunk_stats(self, chunks: List[str]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: Chunk contents

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "overlap": self.chunk_overlap,
            }

        chunk_sizes = [len(c) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }
