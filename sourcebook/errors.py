"""Error taxonomy shared by the ingestion and answer pipelines.

Every failure that reaches a caller is a ``SourcebookError`` carrying a stable
``kind`` string and a human-readable message. The HTTP layer maps kinds to
status codes; the CLI prints the message.
"""
from typing import Any, Dict


class SourcebookError(Exception):
    """Base class for all structured Sourcebook failures."""

    kind = "sourcebook_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Machine-readable error payload."""
        return {"error": self.kind, "detail": self.message}


class UnsupportedFormat(SourcebookError):
    """File type is not one the normalizer can decode."""

    kind = "unsupported_format"
    status_code = 415


class EmptyContent(SourcebookError):
    """Decoded or extracted text is blank."""

    kind = "empty_content"
    status_code = 422


class FetchFailed(SourcebookError):
    """URL could not be retrieved (network error or non-success status)."""

    kind = "fetch_failed"
    status_code = 502


class ExtractionFailed(SourcebookError):
    """Readable text could not be recovered from a fetched page or PDF."""

    kind = "extraction_failed"
    status_code = 422


class IndexUnavailable(SourcebookError):
    """Vector index backend could not be reached."""

    kind = "index_unavailable"
    status_code = 503


class ModelTransientFailure(SourcebookError):
    """Network-class failure talking to the completion service."""

    kind = "model_transient_failure"
    status_code = 504


class ModelFailure(SourcebookError):
    """Non-transient completion failure (bad status, malformed response)."""

    kind = "model_failure"
    status_code = 502
