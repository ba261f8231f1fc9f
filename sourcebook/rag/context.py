"""Context assembly: renders retrieved chunks into attributed, bounded prompts."""
from typing import List, Sequence

import structlog

from sourcebook import config
from sourcebook.rag.models import RetrievedChunk

logger = structlog.get_logger()

EMPTY_CONTEXT_MARKER = "[NO SOURCES AVAILABLE]"
BLOCK_SEPARATOR = "\n---\n"
DONT_KNOW_ANSWER = "I don't know based on the provided sources"

ANSWER_PROMPT = """You are a helpful AI assistant that answers questions using only the provided context.

Rules:
1. Answer strictly from the information in the context below
2. If the context does not contain the information needed, respond with "{dont_know}"
3. Be concise but complete
4. When the information comes from a specific source, cite it by its number (e.g. "Source 2")
5. Never make up or infer facts that are not present in the context
{empty_rule}
Context:
{context}

Question: {question}

Answer:"""

EMPTY_CONTEXT_RULE = (
    "6. The context is empty: no uploaded source matched this question, so reply "
    'exactly "{dont_know}"\n'
)

SUMMARY_PROMPT = """You are a helpful AI assistant. Write a comprehensive summary of the sources below.

Instructions:
1. Identify the main topics and themes across all sources
2. Highlight key insights and important information
3. Organize the summary with clear headings or bullet points
4. Mention the kinds of sources and what each covers

Sources:
{context}

Summary:"""


class ContextAssembler:
    """Renders retrieved chunks as numbered source blocks inside a prompt."""

    def __init__(self, max_chars: int = None):
        """Initialize the assembler.

        Args:
            max_chars: Maximum characters of rendered context (default from config)
        """
        self.max_chars = max_chars or config.MAX_CONTEXT_CHARS

    def render_context(self, retrieved: Sequence[RetrievedChunk]) -> str:
        """Render chunks in the order given, as ``Source {n} (...)`` blocks.

        Blocks past ``max_chars`` are dropped; the block that crosses the
        limit is truncated when enough room is left for it to be useful.
        """
        if not retrieved:
            return EMPTY_CONTEXT_MARKER

        blocks: List[str] = []
        total_chars = 0

        for n, item in enumerate(retrieved, 1):
            chunk = item.chunk
            block = f"Source {n} ({chunk.media_type}: {chunk.label}):\n{chunk.content}\n"
            cost = len(block) + (len(BLOCK_SEPARATOR) if blocks else 0)

            if total_chars + cost > self.max_chars:
                remaining = self.max_chars - total_chars - (cost - len(block))
                if remaining > 200:
                    blocks.append(block[: remaining - 4] + "...\n")
                break

            blocks.append(block)
            total_chars += cost

        context = BLOCK_SEPARATOR.join(blocks)

        logger.debug(
            "context_formatted",
            num_chunks=len(blocks),
            dropped=len(retrieved) - len(blocks),
            total_chars=len(context),
        )

        return context

    def assemble(self, retrieved: Sequence[RetrievedChunk], question: str) -> str:
        """Build the question-answering prompt."""
        empty_rule = EMPTY_CONTEXT_RULE.format(dont_know=DONT_KNOW_ANSWER) if not retrieved else ""
        return ANSWER_PROMPT.format(
            dont_know=DONT_KNOW_ANSWER,
            empty_rule=empty_rule,
            context=self.render_context(retrieved),
            question=question.strip(),
        )

    def assemble_summary(self, retrieved: Sequence[RetrievedChunk]) -> str:
        """Build the multi-source summary prompt."""
        return SUMMARY_PROMPT.format(context=self.render_context(retrieved))
