"""Shared fixtures and test doubles for the Sourcebook test suite."""
from typing import List, Optional, Sequence

import pytest

from sourcebook.rag.context import DONT_KNOW_ANSWER, EMPTY_CONTEXT_MARKER
from sourcebook.rag.models import Chunk, RetrievedChunk


class FakeIndex:
    """In-memory index client; queries return stored chunks in insertion order."""

    def __init__(self, chunks: Optional[Sequence[Chunk]] = None):
        self.stored: List[Chunk] = list(chunks or [])
        self.queries = []

    async def store(self, chunks: Sequence[Chunk]) -> None:
        self.stored.extend(chunks)

    async def query(self, text: str, k: int) -> List[RetrievedChunk]:
        self.queries.append((text, k))
        return [
            RetrievedChunk(chunk=chunk, rank=rank)
            for rank, chunk in enumerate(self.stored[:k])
        ]


class ScriptedCompletion:
    """Completion stub that follows the prompt rules literally.

    ``failures`` are raised, in order, by successive calls before any
    scripted output is produced.
    """

    def __init__(
        self,
        reply: str = "Scripted answer (Source 1).",
        deltas: Sequence[str] = ("Scripted ", "answer ", "(Source 1)."),
        failures: Sequence[Exception] = (),
    ):
        self.reply = reply
        self.deltas = list(deltas)
        self.failures = list(failures)
        self.prompts: List[str] = []
        self.complete_calls = 0
        self.stream_calls = 0
        self.stream_closed = False
        self.deltas_sent = 0

    async def complete(self, prompt: str) -> str:
        self.complete_calls += 1
        self.prompts.append(prompt)
        if self.failures:
            raise self.failures.pop(0)
        if EMPTY_CONTEXT_MARKER in prompt:
            return DONT_KNOW_ANSWER
        return self.reply

    async def stream(self, prompt: str):
        self.stream_calls += 1
        self.prompts.append(prompt)
        if self.failures:
            raise self.failures.pop(0)
        try:
            for delta in self.deltas:
                self.deltas_sent += 1
                yield delta
        finally:
            self.stream_closed = True


def make_chunk(content: str, origin_id: str = "notes.txt", index: int = 0, total: int = 1) -> Chunk:
    return Chunk(
        content=content,
        source_origin_id=origin_id,
        media_type="text/plain",
        title=origin_id,
        index=index,
        total_in_source=total,
    )


@pytest.fixture
def fake_index():
    return FakeIndex()


@pytest.fixture
def populated_index():
    return FakeIndex([
        make_chunk("Toronto is the capital of Ontario.", "cities.md", 0, 2),
        make_chunk("Ottawa is the capital of Canada.", "cities.md", 1, 2),
    ])


@pytest.fixture
def completion():
    return ScriptedCompletion()


@pytest.fixture
def word_text():
    """3000 characters of distinct space-separated words ("w000 w001 ... w599.")."""
    text = " ".join(f"w{i:03d}" for i in range(600)) + "."
    assert len(text) == 3000
    return text
