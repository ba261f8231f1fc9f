"""Value types passed between the RAG pipeline stages."""
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


class SourceKind(str, Enum):
    """How a source entered the system."""

    FILE = "file"
    TEXT = "text"
    URL = "url"


@dataclass(frozen=True)
class SourceDescriptor:
    """Identity and format of one ingested source."""

    origin_id: str
    kind: SourceKind
    media_type: str
    title: Optional[str] = None


@dataclass(frozen=True)
class FileSource:
    """Uploaded file bytes with the client-declared type."""

    data: bytes
    filename: str
    media_type: Optional[str] = None


@dataclass(frozen=True)
class TextSource:
    """Text pasted directly by the user."""

    text: str


@dataclass(frozen=True)
class UrlSource:
    """Web page to fetch and extract."""

    url: str


@dataclass(frozen=True)
class NormalizedSource:
    """Decoded text of a source plus its descriptor."""

    text: str
    descriptor: SourceDescriptor


@dataclass(frozen=True)
class Chunk:
    """A unit of indexed text with provenance.

    ``index`` is the 0-based position among the chunks of one source and
    ``total_in_source`` the number of chunks that source produced.
    """

    content: str
    source_origin_id: str
    media_type: str
    title: Optional[str]
    index: int
    total_in_source: int

    @property
    def label(self) -> str:
        """Short source label for prompts and API responses."""
        return self.source_origin_id or self.title or "Unknown source"

    def to_payload(self) -> Dict[str, Any]:
        """Serialize for the index payload store."""
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Chunk":
        return cls(
            content=payload["content"],
            source_origin_id=payload["source_origin_id"],
            media_type=payload["media_type"],
            title=payload.get("title"),
            index=int(payload["index"]),
            total_in_source=int(payload["total_in_source"]),
        )


@dataclass(frozen=True)
class RetrievedChunk:
    """A chunk returned by a query; ``rank`` is its 0-based result position."""

    chunk: Chunk
    rank: int


@dataclass(frozen=True)
class IngestResult:
    """Outcome of ingesting one source."""

    chunk_count: int
    descriptor: SourceDescriptor
