"""Answer pipeline: retrieval-augmented answers, streaming and summaries.

Each call moves through BUILDING_CONTEXT -> CALLING_MODEL and ends in
STREAMING, COMPLETE or FAILED; transitions are logged as ``answer_state``
events. Network-class model failures are retried with a fixed delay.
"""
from enum import Enum
from typing import AsyncGenerator, Optional, Protocol, Tuple

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from sourcebook import config
from sourcebook.errors import ModelTransientFailure, SourcebookError
from sourcebook.rag.context import ContextAssembler
from sourcebook.rag.index_client import IndexClient

NO_SOURCES_MESSAGE = (
    "No sources have been uploaded yet. Please upload some documents first."
)


class AnswerState(str, Enum):
    BUILDING_CONTEXT = "building_context"
    CALLING_MODEL = "calling_model"
    STREAMING = "streaming"
    COMPLETE = "complete"
    FAILED = "failed"


class CompletionService(Protocol):
    """Generative model that completes a rendered prompt."""

    async def complete(self, prompt: str) -> str:
        ...

    def stream(self, prompt: str) -> AsyncGenerator[str, None]:
        ...


class AnswerStream:
    """Async iterator over answer deltas that owns the model stream behind it.

    ``aclose()`` closes the model stream whether or not iteration started.
    """

    def __init__(
        self,
        deltas: AsyncGenerator[str, None],
        upstream: Optional[AsyncGenerator[str, None]] = None,
    ):
        self._deltas = deltas
        self._upstream = upstream

    def __aiter__(self) -> "AnswerStream":
        return self

    async def __anext__(self) -> str:
        return await self._deltas.__anext__()

    async def aclose(self) -> None:
        try:
            await self._deltas.aclose()
        finally:
            if self._upstream is not None:
                await self._upstream.aclose()


class AnswerPipeline:
    """Answers questions and summarizes sources from indexed content."""

    def __init__(
        self,
        index: IndexClient,
        llm: CompletionService,
        assembler: Optional[ContextAssembler] = None,
        qa_top_k: int = None,
        summary_top_k: int = None,
        summary_query: str = None,
        max_retries: int = None,
        retry_delay: float = None,
        logger=None,
    ):
        """Initialize the answer pipeline.

        Args:
            index: Index client to retrieve chunks from
            llm: Completion service
            assembler: Context assembler (default: ContextAssembler())
            qa_top_k: Chunks retrieved per question (default from config)
            summary_top_k: Chunks retrieved for a summary (default from config)
            summary_query: Topic-agnostic query used for summaries (default from config)
            max_retries: Extra attempts after a transient model failure (default from config)
            retry_delay: Fixed delay between attempts in seconds (default from config)
            logger: structlog logger (default: module logger)
        """
        self.index = index
        self.llm = llm
        self.assembler = assembler or ContextAssembler()
        self.qa_top_k = qa_top_k or config.QA_TOP_K
        self.summary_top_k = summary_top_k or config.SUMMARY_TOP_K
        self.summary_query = summary_query or config.SUMMARY_QUERY
        self.max_retries = config.MODEL_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = config.MODEL_RETRY_DELAY if retry_delay is None else retry_delay
        self.logger = logger or structlog.get_logger(__name__)

    def _retrying(self, log) -> AsyncRetrying:
        def before_sleep(retry_state: RetryCallState) -> None:
            log.warning(
                "model_call_retry",
                attempt=retry_state.attempt_number,
                delay=self.retry_delay,
                error=str(retry_state.outcome.exception()),
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type(ModelTransientFailure),
            before_sleep=before_sleep,
            reraise=True,
        )

    async def _build_prompt(self, question: str, log) -> str:
        log.info("answer_state", state=AnswerState.BUILDING_CONTEXT.value)
        retrieved = await self.index.query(question, self.qa_top_k)
        log.info("context_retrieved", chunk_count=len(retrieved))
        return self.assembler.assemble(retrieved, question)

    async def _complete(self, prompt: str, log) -> str:
        log.info("answer_state", state=AnswerState.CALLING_MODEL.value)
        async for attempt in self._retrying(log):
            with attempt:
                answer = await self.llm.complete(prompt)

        log.info(
            "answer_state",
            state=AnswerState.COMPLETE.value,
            answer_length=len(answer),
        )
        return answer

    async def answer_once(self, question: str) -> str:
        """Answer a question in one shot.

        Raises:
            IndexUnavailable: If retrieval fails
            ModelTransientFailure: If the model stays unreachable after retries
            ModelFailure: On a non-transient model failure
        """
        log = self.logger.bind(operation="answer", question_preview=question[:100])
        try:
            prompt = await self._build_prompt(question, log)
            return await self._complete(prompt, log)
        except SourcebookError as e:
            log.error("answer_state", state=AnswerState.FAILED.value, error_kind=e.kind, error=e.message)
            raise

    async def answer_streaming(self, question: str) -> AnswerStream:
        """Retrieve context and open a streaming answer.

        Context building and the first model delta happen before this returns,
        so retrieval and connection failures (after retries) raise here rather
        than mid-stream. The returned generator yields the remaining deltas
        once; closing it, even before the first pull, closes the model stream.

        Raises:
            IndexUnavailable: If retrieval fails
            ModelTransientFailure: If the model stays unreachable after retries
            ModelFailure: On a non-transient model failure
        """
        log = self.logger.bind(operation="answer_stream", question_preview=question[:100])
        try:
            prompt = await self._build_prompt(question, log)
            log.info("answer_state", state=AnswerState.CALLING_MODEL.value)
            stream, first = await self._open_stream(prompt, log)
        except SourcebookError as e:
            log.error("answer_state", state=AnswerState.FAILED.value, error_kind=e.kind, error=e.message)
            raise

        return AnswerStream(self._relay(stream, first, log), stream)

    async def _open_stream(
        self, prompt: str, log
    ) -> Tuple[Optional[AsyncGenerator[str, None]], Optional[str]]:
        """Start the model stream and pull its first delta, retrying transient failures.

        Returns (None, None) when the model finished without producing text.
        """
        async for attempt in self._retrying(log):
            with attempt:
                stream = self.llm.stream(prompt)
                try:
                    first = await stream.__anext__()
                except StopAsyncIteration:
                    return None, None
                except BaseException:
                    await stream.aclose()
                    raise
                return stream, first

    async def _relay(
        self,
        stream: Optional[AsyncGenerator[str, None]],
        first: Optional[str],
        log,
    ) -> AsyncGenerator[str, None]:
        if stream is None:
            log.info("answer_state", state=AnswerState.COMPLETE.value, answer_length=0)
            return

        log.info("answer_state", state=AnswerState.STREAMING.value)
        delivered = 0
        try:
            yield first
            delivered += len(first)
            async for delta in stream:
                yield delta
                delivered += len(delta)
        except SourcebookError as e:
            # Deltas already reached the consumer, so no retry here
            log.error(
                "answer_state",
                state=AnswerState.FAILED.value,
                error_kind=e.kind,
                error=e.message,
                delivered_chars=delivered,
            )
            raise
        except GeneratorExit:
            log.info("answer_stream_closed", delivered_chars=delivered)
            raise
        finally:
            await stream.aclose()

        log.info("answer_state", state=AnswerState.COMPLETE.value, answer_length=delivered)

    async def summarize(self) -> str:
        """Summarize the indexed sources.

        Returns NO_SOURCES_MESSAGE without calling the model when nothing
        has been indexed.

        Raises:
            IndexUnavailable: If retrieval fails
            ModelTransientFailure: If the model stays unreachable after retries
            ModelFailure: On a non-transient model failure
        """
        log = self.logger.bind(operation="summarize")
        try:
            log.info("answer_state", state=AnswerState.BUILDING_CONTEXT.value)
            retrieved = await self.index.query(self.summary_query, self.summary_top_k)

            if not retrieved:
                log.info("summary_skipped_no_sources")
                return NO_SOURCES_MESSAGE

            log.info("context_retrieved", chunk_count=len(retrieved))
            prompt = self.assembler.assemble_summary(retrieved)
            return await self._complete(prompt, log)
        except SourcebookError as e:
            log.error("answer_state", state=AnswerState.FAILED.value, error_kind=e.kind, error=e.message)
            raise
