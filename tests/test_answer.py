"""Tests for the answer pipeline: retries, streaming and summaries."""
import pytest

from sourcebook.errors import IndexUnavailable, ModelFailure, ModelTransientFailure
from sourcebook.rag.answer import NO_SOURCES_MESSAGE, AnswerPipeline, AnswerStream
from sourcebook.rag.context import DONT_KNOW_ANSWER, EMPTY_CONTEXT_MARKER

from conftest import ScriptedCompletion


def _pipeline(index, llm, **kwargs):
    kwargs.setdefault("retry_delay", 0)
    return AnswerPipeline(index, llm, **kwargs)


async def _collect(stream):
    return [delta async for delta in stream]


@pytest.mark.asyncio
async def test_answer_uses_retrieved_context(populated_index, completion):
    answer = await _pipeline(populated_index, completion, qa_top_k=5).answer_once("Capital of Ontario?")

    assert answer == "Scripted answer (Source 1)."
    assert populated_index.queries == [("Capital of Ontario?", 5)]
    prompt = completion.prompts[0]
    assert "Source 1 (text/plain: cities.md):\nToronto is the capital of Ontario.\n" in prompt
    assert "Question: Capital of Ontario?" in prompt


@pytest.mark.asyncio
async def test_empty_index_answers_dont_know(fake_index, completion):
    answer = await _pipeline(fake_index, completion).answer_once("What is the capital?")

    assert answer == DONT_KNOW_ANSWER
    assert EMPTY_CONTEXT_MARKER in completion.prompts[0]


@pytest.mark.asyncio
async def test_transient_failures_are_retried(populated_index):
    llm = ScriptedCompletion(
        failures=[ModelTransientFailure("timeout"), ModelTransientFailure("reset")]
    )

    answer = await _pipeline(populated_index, llm, max_retries=2).answer_once("Capital?")

    assert answer == "Scripted answer (Source 1)."
    assert llm.complete_calls == 3


@pytest.mark.asyncio
async def test_retries_exhausted_raise_transient_failure(populated_index):
    llm = ScriptedCompletion(failures=[ModelTransientFailure("timeout")] * 3)

    with pytest.raises(ModelTransientFailure):
        await _pipeline(populated_index, llm, max_retries=2).answer_once("Capital?")

    assert llm.complete_calls == 3


@pytest.mark.asyncio
async def test_non_transient_failure_is_not_retried(populated_index):
    llm = ScriptedCompletion(failures=[ModelFailure("bad request")])

    with pytest.raises(ModelFailure):
        await _pipeline(populated_index, llm, max_retries=2).answer_once("Capital?")

    assert llm.complete_calls == 1


@pytest.mark.asyncio
async def test_zero_retries_means_single_attempt(populated_index):
    llm = ScriptedCompletion(failures=[ModelTransientFailure("timeout")])

    with pytest.raises(ModelTransientFailure):
        await _pipeline(populated_index, llm, max_retries=0).answer_once("Capital?")

    assert llm.complete_calls == 1


@pytest.mark.asyncio
async def test_index_failure_propagates(completion):
    class BrokenIndex:
        async def query(self, text, k):
            raise IndexUnavailable("index down")

    with pytest.raises(IndexUnavailable):
        await _pipeline(BrokenIndex(), completion).answer_once("Capital?")

    assert completion.complete_calls == 0


@pytest.mark.asyncio
async def test_streaming_yields_deltas_in_order(populated_index, completion):
    stream = await _pipeline(populated_index, completion).answer_streaming("Capital?")

    deltas = await _collect(stream)

    assert deltas == ["Scripted ", "answer ", "(Source 1)."]
    assert "".join(deltas) == "Scripted answer (Source 1)."
    assert completion.stream_closed


@pytest.mark.asyncio
async def test_streaming_retries_before_first_delta(populated_index):
    llm = ScriptedCompletion(failures=[ModelTransientFailure("refused")])

    stream = await _pipeline(populated_index, llm, max_retries=2).answer_streaming("Capital?")

    assert await _collect(stream) == ["Scripted ", "answer ", "(Source 1)."]
    assert llm.stream_calls == 2


@pytest.mark.asyncio
async def test_streaming_open_failure_raises_before_any_delta(populated_index):
    llm = ScriptedCompletion(failures=[ModelTransientFailure("refused")] * 3)

    with pytest.raises(ModelTransientFailure):
        await _pipeline(populated_index, llm, max_retries=2).answer_streaming("Capital?")

    assert llm.stream_calls == 3


@pytest.mark.asyncio
async def test_closing_stream_early_closes_model_stream(populated_index):
    llm = ScriptedCompletion(deltas=["one ", "two ", "three ", "four"])
    stream = await _pipeline(populated_index, llm).answer_streaming("Capital?")

    first = await stream.__anext__()
    await stream.aclose()

    assert first == "one "
    assert llm.stream_closed
    assert llm.deltas_sent == 1


@pytest.mark.asyncio
async def test_mid_stream_failure_is_not_retried(populated_index):
    class FlakyStream(ScriptedCompletion):
        async def stream(self, prompt):
            self.stream_calls += 1
            yield "partial "
            raise ModelTransientFailure("connection dropped")

    llm = FlakyStream()
    stream = await _pipeline(populated_index, llm, max_retries=2).answer_streaming("Capital?")

    received = []
    with pytest.raises(ModelTransientFailure):
        async for delta in stream:
            received.append(delta)

    assert received == ["partial "]
    assert llm.stream_calls == 1


@pytest.mark.asyncio
async def test_streaming_with_no_output_yields_nothing(populated_index):
    llm = ScriptedCompletion(deltas=[])

    stream = await _pipeline(populated_index, llm).answer_streaming("Capital?")

    assert await _collect(stream) == []


@pytest.mark.asyncio
async def test_summarize_without_sources_skips_model(fake_index, completion):
    summary = await _pipeline(fake_index, completion).summarize()

    assert summary == NO_SOURCES_MESSAGE
    assert completion.complete_calls == 0


@pytest.mark.asyncio
async def test_summarize_uses_summary_query(populated_index):
    llm = ScriptedCompletion(reply="## Topics\n- Canadian capitals")
    pipeline = _pipeline(
        populated_index, llm, summary_top_k=10, summary_query="summary main topics content"
    )

    summary = await pipeline.summarize()

    assert summary == "## Topics\n- Canadian capitals"
    assert populated_index.queries == [("summary main topics content", 10)]
    assert "Ottawa is the capital of Canada." in llm.prompts[0]


@pytest.mark.asyncio
async def test_closing_stream_before_first_pull_closes_model_stream(populated_index):
    llm = ScriptedCompletion(deltas=["one ", "two "])
    stream = await _pipeline(populated_index, llm).answer_streaming("Capital?")

    await stream.aclose()

    assert llm.stream_closed
    assert llm.deltas_sent == 1


@pytest.mark.asyncio
async def test_answer_stream_wrapper_closes_upstream_when_unstarted():
    closed = []

    async def upstream():
        try:
            yield "delta"
        finally:
            closed.append("upstream")

    async def rendered(source):
        async for delta in source:
            yield delta.upper()

    model_stream = upstream()
    await model_stream.__anext__()
    stream = AnswerStream(rendered(model_stream), model_stream)

    await stream.aclose()

    assert closed == ["upstream"]
