#!/usr/bin/env python
"""Ingest sources into the Sourcebook index, then optionally ask or summarize.

Usage:
    python scripts/ingest.py notes.md report.pdf          # Ingest files
    python scripts/ingest.py https://example.com/article  # Ingest a web page
    python scripts/ingest.py --text "Some pasted text"    # Ingest raw text
    python scripts/ingest.py --rebuild data.csv           # Clear the index first
    python scripts/ingest.py --ask "What is in my notes?" # Ask a question
    python scripts/ingest.py --summarize                  # Summarize all sources
"""
import argparse
import asyncio
import mimetypes
import sys
from datetime import datetime
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from sourcebook import config
from sourcebook.errors import SourcebookError
from sourcebook.llm_client import OllamaClient
from sourcebook.logging_config import configure_logging
from sourcebook.rag.answer import AnswerPipeline
from sourcebook.rag.index_client import FaissIndexClient
from sourcebook.rag.ingest import IngestPipeline
from sourcebook.rag.models import FileSource, TextSource, UrlSource

logger = structlog.get_logger()


def build_source(item: str):
    """Turn a CLI argument into a URL or file source."""
    if item.startswith(("http://", "https://")):
        return UrlSource(url=item)

    path = Path(item)
    media_type, _ = mimetypes.guess_type(path.name)
    return FileSource(data=path.read_bytes(), filename=path.name, media_type=media_type)


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self):
        self.start_time = None
        self.stats = {"sources_ingested": 0, "sources_failed": 0, "chunks_created": 0}

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def ingested(self, label: str, chunk_count: int):
        self.stats["sources_ingested"] += 1
        self.stats["chunks_created"] += chunk_count
        print(f"  ✅ {label[:45]:<45} {chunk_count:>5} chunks")

    def failed(self, label: str, message: str):
        self.stats["sources_failed"] += 1
        print(f"  ❌ {label[:45]:<45} {message}")

    def finish(self):
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"\n{'=' * 60}")
        print(f"  📁 Sources ingested: {self.stats['sources_ingested']}")
        print(f"  ❌ Sources failed:   {self.stats['sources_failed']}")
        print(f"  📝 Chunks created:   {self.stats['chunks_created']}")
        print(f"  ⏱️  Time elapsed:     {elapsed_seconds:.1f}s")
        print(f"{'=' * 60}\n")


async def run(args: argparse.Namespace) -> int:
    llm = OllamaClient()
    index = FaissIndexClient(llm=llm, index_dir=args.index_dir)
    ingest_pipeline = IngestPipeline(index)
    answer_pipeline = AnswerPipeline(index, llm)

    if args.rebuild:
        print("\n⚠️  Rebuild mode: clearing the existing index.")
        await index.rebuild()

    items = [(item, build_source) for item in args.sources]
    items += [(text, lambda value: TextSource(text=value)) for text in args.text]

    progress = ProgressReporter()
    if items:
        progress.start("Ingesting Sources")

        # Each source is independent; one failure doesn't stop the rest
        for item, make_source in items:
            label = item if len(item) < 60 else item[:57] + "..."
            try:
                result = await ingest_pipeline.ingest(make_source(item))
                progress.ingested(label, result.chunk_count)
            except (SourcebookError, OSError) as e:
                progress.failed(label, getattr(e, "message", str(e)))
                logger.error("source_ingestion_failed", source=label, error=str(e))

        progress.finish()

    if args.ask:
        print(f"❓ {args.ask}\n")
        stream = await answer_pipeline.answer_streaming(args.ask)
        async for delta in stream:
            print(delta, end="", flush=True)
        print("\n")

    if args.summarize:
        print(await answer_pipeline.summarize())
        print()

    return 1 if progress.stats["sources_failed"] else 0


def main():
    """Main entry point for the ingest script."""
    parser = argparse.ArgumentParser(
        description="Ingest sources into the Sourcebook index",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/ingest.py notes.md report.pdf
  python scripts/ingest.py https://example.com/article --ask "What is it about?"
  python scripts/ingest.py --summarize
        """,
    )

    parser.add_argument("sources", nargs="*", help="File paths or http(s) URLs")
    parser.add_argument(
        "--text",
        action="append",
        default=[],
        help="Raw text to ingest (repeatable)",
    )
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Clear the index before ingesting",
    )
    parser.add_argument("--ask", help="Question to answer after ingesting")
    parser.add_argument(
        "--summarize",
        action="store_true",
        help="Summarize all indexed sources",
    )
    parser.add_argument(
        "--index-dir",
        type=Path,
        default=None,
        help=f"Index directory (default: {config.INDEX_DIR})",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Log level for structured logs (default: WARNING)",
    )

    args = parser.parse_args()
    configure_logging(level=args.log_level)

    if args.rebuild:
        print("   Press Ctrl+C within 3 seconds to cancel...")

    try:
        if args.rebuild:
            asyncio.run(asyncio.sleep(3))
        sys.exit(asyncio.run(run(args)))

    except KeyboardInterrupt:
        print("\n\n⚠️  Cancelled by user.\n")
        sys.exit(1)

    except SourcebookError as e:
        print(f"\n❌ {e.kind}: {e.message}\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
