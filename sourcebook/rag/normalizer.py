"""Source normalizer: turns uploads, pasted text and web pages into plain text.

Handles:
- PDF text extraction (pdfplumber)
- CSV flattening into ``key: value`` lines
- Plain text and Markdown decoding, with Markdown titles from frontmatter
- Web page fetching and readability extraction
"""
import asyncio
import csv
import io
import re
from pathlib import PurePath
from typing import Optional, Tuple, Union

import httpx
import lxml.html
import pdfplumber
import structlog
import yaml
from lxml.etree import ParserError
from readability import Document
from readability.readability import Unparseable

from sourcebook import config
from sourcebook.errors import (
    EmptyContent,
    ExtractionFailed,
    FetchFailed,
    UnsupportedFormat,
)
from sourcebook.rag.models import (
    FileSource,
    NormalizedSource,
    SourceDescriptor,
    SourceKind,
    TextSource,
    UrlSource,
)

logger = structlog.get_logger()

SourceInput = Union[FileSource, TextSource, UrlSource]

DIRECT_TEXT_ORIGIN = "direct_text"
UNTITLED_PAGE = "Untitled web page"

PDF_TYPE = "application/pdf"
CSV_TYPE = "text/csv"
PLAIN_TYPE = "text/plain"
MARKDOWN_TYPE = "text/markdown"
HTML_TYPE = "text/html"

# Declared media types that carry no format information
GENERIC_TYPES = {"", "application/octet-stream", "binary/octet-stream"}

MEDIA_TYPE_ALIASES = {
    "application/x-pdf": PDF_TYPE,
    "application/csv": CSV_TYPE,
    "text/x-markdown": MARKDOWN_TYPE,
}

EXTENSION_TYPES = {
    ".pdf": PDF_TYPE,
    ".csv": CSV_TYPE,
    ".txt": PLAIN_TYPE,
    ".md": MARKDOWN_TYPE,
    ".markdown": MARKDOWN_TYPE,
}

# YAML frontmatter at the very start of a Markdown file
FRONTMATTER_PATTERN = re.compile(r"\A---\s*\n(.*?)\n---\s*(?:\n|\Z)", re.DOTALL)
HEADING_PATTERN = re.compile(r"^#\s+(.+?)\s*#*\s*$", re.MULTILINE)
BLANK_RUN_PATTERN = re.compile(r"\n{3,}")


class SourceNormalizer:
    """Decode any supported source into text plus a ``SourceDescriptor``."""

    def __init__(
        self,
        fetch_timeout: float = None,
        user_agent: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the normalizer.

        Args:
            fetch_timeout: URL fetch timeout in seconds (default from config)
            user_agent: User-Agent header for URL fetches (default from config)
            transport: Optional httpx transport, used by tests
        """
        self.fetch_timeout = fetch_timeout or config.FETCH_TIMEOUT
        self.user_agent = user_agent or config.FETCH_USER_AGENT
        self.transport = transport

    async def normalize(self, source: SourceInput) -> NormalizedSource:
        """Normalize a source and enforce that it carries text.

        Raises:
            UnsupportedFormat: Unknown file type
            FetchFailed: URL could not be retrieved
            ExtractionFailed: No readable content could be extracted
            EmptyContent: Decoded text is blank
        """
        if isinstance(source, FileSource):
            normalized = await self.normalize_file(source)
        elif isinstance(source, TextSource):
            normalized = self.normalize_text(source)
        elif isinstance(source, UrlSource):
            normalized = await self.normalize_url(source)
        else:
            raise TypeError(f"Unknown source input: {type(source).__name__}")

        if not normalized.text.strip():
            logger.warning(
                "source_empty",
                origin_id=normalized.descriptor.origin_id,
                kind=normalized.descriptor.kind.value,
            )
            raise EmptyContent(
                f"No content extracted from {normalized.descriptor.origin_id}"
            )

        logger.info(
            "source_normalized",
            origin_id=normalized.descriptor.origin_id,
            kind=normalized.descriptor.kind.value,
            media_type=normalized.descriptor.media_type,
            text_length=len(normalized.text),
        )

        return normalized

    async def normalize_file(self, source: FileSource) -> NormalizedSource:
        media_type = resolve_media_type(source.filename, source.media_type)
        title = source.filename

        logger.info(
            "processing_file",
            filename=source.filename,
            media_type=media_type,
            size=len(source.data),
        )

        if media_type == PDF_TYPE:
            text = await asyncio.to_thread(extract_pdf_text, source.data)
        elif media_type == CSV_TYPE:
            text = flatten_csv(source.data.decode("utf-8-sig", errors="replace"))
        elif media_type in (PLAIN_TYPE, MARKDOWN_TYPE):
            text = source.data.decode("utf-8", errors="replace")
            if media_type == MARKDOWN_TYPE:
                title = markdown_title(text) or title
        else:
            raise UnsupportedFormat(
                f"Unsupported file type: {source.media_type or source.filename}"
            )

        descriptor = SourceDescriptor(
            origin_id=source.filename,
            kind=SourceKind.FILE,
            media_type=media_type,
            title=title,
        )
        return NormalizedSource(text=text, descriptor=descriptor)

    def normalize_text(self, source: TextSource) -> NormalizedSource:
        descriptor = SourceDescriptor(
            origin_id=DIRECT_TEXT_ORIGIN,
            kind=SourceKind.TEXT,
            media_type=PLAIN_TYPE,
        )
        return NormalizedSource(text=source.text, descriptor=descriptor)

    async def normalize_url(self, source: UrlSource) -> NormalizedSource:
        html = await self.fetch(source.url)
        title, text = extract_article(html, source.url)

        descriptor = SourceDescriptor(
            origin_id=source.url,
            kind=SourceKind.URL,
            media_type=HTML_TYPE,
            title=title,
        )
        return NormalizedSource(text=text, descriptor=descriptor)

    async def fetch(self, url: str) -> str:
        """Fetch a web page.

        Raises:
            FetchFailed: On network error or non-success status
        """
        logger.info("fetching_url", url=url)

        try:
            async with httpx.AsyncClient(
                follow_redirects=True,
                timeout=self.fetch_timeout,
                transport=self.transport,
            ) as client:
                response = await client.get(
                    url, headers={"User-Agent": self.user_agent}
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "url_fetch_status_error", url=url, status_code=e.response.status_code
            )
            raise FetchFailed(
                f"Fetching {url} returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error("url_fetch_failed", url=url, error=str(e))
            raise FetchFailed(f"Could not fetch {url}: {e}") from e

        logger.debug("url_fetched", url=url, content_length=len(response.text))
        return response.text


def resolve_media_type(filename: str, declared: Optional[str]) -> str:
    """Pick the effective media type from the declared type or the extension."""
    media_type = (declared or "").split(";")[0].strip().lower()
    media_type = MEDIA_TYPE_ALIASES.get(media_type, media_type)

    if media_type in GENERIC_TYPES or media_type not in set(EXTENSION_TYPES.values()):
        inferred = EXTENSION_TYPES.get(PurePath(filename or "").suffix.lower())
        if inferred:
            return inferred

    return media_type or "application/octet-stream"


def extract_pdf_text(data: bytes) -> str:
    """Extract flattened text from PDF bytes, pages separated by blank lines.

    Raises:
        ExtractionFailed: If the bytes are not a readable PDF
    """
    pages_text = []
    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            for page in pdf.pages:
                text = page.extract_text()
                if text:
                    pages_text.append(text)
    except Exception as e:
        logger.error("pdf_extraction_failed", error=str(e))
        raise ExtractionFailed(f"Could not read PDF: {e}") from e

    return "\n\n".join(pages_text)


def flatten_csv(csv_text: str) -> str:
    """Render each CSV record as ``key: value`` pairs, one record per line.

    The header row supplies the keys. Blank lines are skipped and missing
    values render empty; cells beyond the header are dropped.
    """
    reader = csv.DictReader(io.StringIO(csv_text))
    lines = []
    for row in reader:
        pairs = [
            f"{key}: {value if value is not None else ''}"
            for key, value in row.items()
            if key is not None
        ]
        lines.append(", ".join(pairs))
    return "\n".join(lines)


def markdown_title(text: str) -> Optional[str]:
    """Title from YAML frontmatter, else the first level-one heading."""
    match = FRONTMATTER_PATTERN.match(text)
    if match:
        try:
            frontmatter = yaml.safe_load(match.group(1))
        except yaml.YAMLError as e:
            logger.warning("frontmatter_parse_error", error=str(e))
            frontmatter = None

        if isinstance(frontmatter, dict) and frontmatter.get("title"):
            return str(frontmatter["title"]).strip()

        text = text[match.end() :]

    heading = HEADING_PATTERN.search(text)
    if heading:
        return heading.group(1).strip()

    return None


def extract_article(html: str, url: str = "") -> Tuple[str, str]:
    """Extract the readable main content of an HTML page.

    Returns:
        (title, text) with the fallback title when the page has none

    Raises:
        ExtractionFailed: If no article body can be recovered
    """
    if not html or not html.strip():
        raise ExtractionFailed(f"Could not extract content from {url}: empty document")

    try:
        doc = Document(html)
        summary_html = doc.summary(html_partial=True)
        title = (doc.short_title() or "").strip()
        body_text = lxml.html.fromstring(summary_html).text_content()
    except (Unparseable, ParserError, ValueError) as e:
        logger.error("readability_extraction_failed", url=url, error=str(e))
        raise ExtractionFailed(f"Could not extract content from {url}: {e}") from e

    if not title or title == "[no-title]":
        title = UNTITLED_PAGE

    return title, tidy_text(body_text)


def tidy_text(text: str) -> str:
    """Strip trailing whitespace per line and collapse runs of blank lines."""
    lines = [line.rstrip() for line in text.strip().splitlines()]
    return BLANK_RUN_PATTERN.sub("\n\n", "\n".join(lines))
