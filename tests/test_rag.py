"""Tests for the researcher, retrieval graph and RAG service."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from recall.rag.graph import RetrievalGraph
from recall.rag.prompts import NO_RELEVANT_INFO_ANSWER, format_docs_as_xml
from recall.rag.researcher import Researcher
from recall.rag.service import RagService
from recall.rag.state import RagNode, RetrievalState, should_retrieve
from recall.vector.documents import Document
from recall.vector.index import UpsertAction, VectorIndex

TEA_DOCS = [
    Document("green tea leaves", {"source": "green.txt"}),
    Document("black tea leaves", {"source": "black.txt"}),
    Document("espresso coffee beans", {"source": "coffee.txt"}),
]


def respond(queries: str = '["tea", "green tea", "black tea"]', relevance: str = "0.9"):
    """Responder keyed on each prompt's system message."""

    def _respond(messages):
        first = messages[0]["content"]
        if "search query generation" in first:
            return queries
        if "judge how relevant" in first:
            return relevance
        if "rephrase follow-up" in first:
            return "What teas are there?"
        if "Answer the user's question" in first:
            return "Green and black tea [Document 1]"
        return "0.8"

    return _respond


@pytest.fixture
async def tea_index(index: VectorIndex) -> VectorIndex:
    await index.add_documents(TEA_DOCS)
    return index


# Routing


def test_should_retrieve_loops_while_needed():
    state = RetrievalState(query="q", needs_reretrieval=True, retrieval_round=1)
    assert should_retrieve(state) == RagNode.INCREMENT_ROUND
    state.retrieval_round = 2
    assert should_retrieve(state) == RagNode.INCREMENT_ROUND


def test_should_retrieve_caps_at_three_rounds():
    state = RetrievalState(query="q", needs_reretrieval=True, retrieval_round=3)
    assert should_retrieve(state) == RagNode.GENERATE_ANSWER


def test_should_retrieve_stops_when_satisfied():
    state = RetrievalState(query="q", needs_reretrieval=False, retrieval_round=1)
    assert should_retrieve(state) == RagNode.GENERATE_ANSWER


# Researcher


@pytest.mark.asyncio
async def test_generate_queries_parses_array(make_llm, index):
    researcher = Researcher(make_llm('Queries: ["a", "b", "c"]'), index)
    assert await researcher.generate_queries("question") == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_generate_queries_falls_back_to_question(make_llm, index):
    researcher = Researcher(make_llm("I cannot do that"), index)
    assert await researcher.generate_queries("what is tea?") == ["what is tea?"]


@pytest.mark.asyncio
async def test_retrieve_documents_threshold_and_uuid(make_llm, tea_index):
    researcher = Researcher(make_llm(), tea_index, top_k=3, threshold=0.3)
    docs = await researcher.retrieve_documents("tea")

    assert {d.page_content for d in docs} == {"green tea leaves", "black tea leaves"}
    assert all(d.metadata.get("uuid") for d in docs)


@pytest.mark.asyncio
async def test_fan_out_dedups_overlapping_results(make_llm, tea_index):
    """Three queries hitting the same documents produce each document once."""
    researcher = Researcher(make_llm(respond()), tea_index)
    result = await researcher.research("tell me about tea")

    uuids = [d.metadata["uuid"] for d in result.documents]
    assert result.queries == ["tea", "green tea", "black tea"]
    assert len(uuids) == len(set(uuids)) == 2


@pytest.mark.asyncio
async def test_failed_branch_does_not_abort_siblings(make_llm, tea_index):
    original = tea_index.similarity_search_with_score

    async def flaky(query, k, collection):
        if query == "tea":
            raise ConnectionError("index unavailable")
        return await original(query, k, collection)

    tea_index.similarity_search_with_score = flaky
    researcher = Researcher(make_llm(respond()), tea_index)
    result = await researcher.research("tell me about tea")

    assert {d.page_content for d in result.documents} == {"green tea leaves", "black tea leaves"}

@pytest.mark.asyncio
async def test_fan_out_runs_queries_concurrently(make_llm, index):
    """Each branch waits until all three have started; sequential dispatch would time out."""
    researcher = Researcher(make_llm(respond()), index)
    started = []
    all_started = asyncio.Event()

    async def retrieve(query, collection):
        started.append(query)
        if len(started) == 3:
            all_started.set()
        await asyncio.wait_for(all_started.wait(), timeout=1.0)
        return [Document(f"about {query}")]

    researcher.retrieve_documents = retrieve
    result = await researcher.research("tell me about tea")

    assert sorted(started) == ["black tea", "green tea", "tea"]
    assert len(result.documents) == 3



# Graph


@pytest.mark.asyncio
async def test_graph_answers_in_one_round(make_llm, tea_index):
    llm = make_llm(respond())
    graph = RetrievalGraph(llm, Researcher(llm, tea_index))

    state = await graph.run("tell me about tea")

    assert state.retrieval_round == 1
    assert state.answer == "Green and black tea [Document 1]"
    assert state.relevance_scores == [0.9, 0.9]
    assert state.answer_quality == 0.8


@pytest.mark.asyncio
async def test_graph_retrieval_loop_is_bounded(make_llm, tea_index):
    """An evaluator that never accepts anything still stops after three rounds."""
    llm = make_llm(respond(relevance="not relevant at all"))
    researcher = Researcher(llm, tea_index)
    researcher.research = AsyncMock(wraps=researcher.research)
    graph = RetrievalGraph(llm, researcher)

    state = await graph.run("tell me about tea")

    assert researcher.research.call_count == 3
    assert state.retrieval_round == 3
    assert state.needs_reretrieval
    assert state.answer == NO_RELEVANT_INFO_ANSWER
    assert state.answer_quality == 0.0
    # later rounds steer away from queries already tried
    assert any(
        "already tried" in call[1]["content"]
        for call in llm.calls
        if "search query generation" in call[0]["content"]
    )
    assert researcher.research.await_args_list[2].kwargs["previous_queries"]


@pytest.mark.asyncio
async def test_graph_no_documents_skips_generation(make_llm, index):
    llm = make_llm(respond())
    answer_llm = make_llm("should not be called")
    graph = RetrievalGraph(llm, Researcher(llm, index), answer_llm=answer_llm, max_rounds=1)

    state = await graph.run("anything")

    assert state.answer == NO_RELEVANT_INFO_ANSWER
    assert answer_llm.calls == []


@pytest.mark.asyncio
async def test_graph_rewrites_follow_up(make_llm, tea_index):
    llm = make_llm(respond())
    graph = RetrievalGraph(llm, Researcher(llm, tea_index))
    history = [
        {"role": "user", "content": "Do you know about tea?"},
        {"role": "assistant", "content": "Yes."},
    ]

    state = await graph.run("which kinds?", chat_history=history)
    assert state.rewritten_query == "What teas are there?"


# Service


def test_format_docs_as_xml():
    docs = [Document("body", {"source": 'a "b".txt', "title": "T", "uuid": "u-1", "other": 1})]
    xml = format_docs_as_xml(docs)
    assert xml == (
        '<documents>\n<document source="a &quot;b&quot;.txt" title="T" uuid="u-1">\n'
        "body\n</document>\n</documents>"
    )
    assert format_docs_as_xml([]) == "<documents></documents>"


@pytest.mark.asyncio
async def test_query_below_threshold_never_calls_llm(make_llm, tea_index):
    """Nothing above the threshold: canned answer and zero generation calls."""
    llm = make_llm(respond())
    service = RagService(tea_index, llm)

    result = await service.query("quantum chromodynamics", relevance_threshold=0.5)

    assert result.answer == NO_RELEVANT_INFO_ANSWER
    assert result.sources == []
    assert result.relevance_scores == []
    assert llm.calls == []


@pytest.mark.asyncio
async def test_query_answers_from_context(make_llm, tea_index):
    llm = make_llm(respond())
    service = RagService(tea_index, llm)

    result = await service.query("green tea leaves", top_k=2)

    assert result.answer == "Green and black tea [Document 1]"
    assert result.sources[0].page_content == "green tea leaves"
    assert result.relevance_scores[0] == pytest.approx(1.0)
    prompt = llm.calls[0][1]["content"]
    assert '<document source="green.txt"' in prompt

@pytest.mark.asyncio
async def test_query_explicit_zero_top_k(make_llm, tea_index):
    """top_k=0 retrieves nothing instead of falling back to the default."""
    llm = make_llm(respond())
    service = RagService(tea_index, llm, top_k=5)

    result = await service.query("green tea leaves", top_k=0)

    assert result.answer == NO_RELEVANT_INFO_ANSWER
    assert result.sources == []
    assert llm.calls == []



@pytest.mark.asyncio
async def test_query_with_history_rewrites_first(make_llm, tea_index):
    llm = make_llm(respond())
    service = RagService(tea_index, llm)

    await service.query("which kinds?", chat_history=[{"role": "user", "content": "tea?"}])

    assert len(llm.calls) == 2
    assert "Follow Up Input: which kinds?" in llm.calls[0][1]["content"]


@pytest.mark.asyncio
async def test_research_query_uses_graph(make_llm, tea_index):
    llm = make_llm(respond())
    graph = RetrievalGraph(llm, Researcher(llm, tea_index))
    service = RagService(tea_index, llm, graph=graph)

    result = await service.research_query("tell me about tea")

    assert result.answer == "Green and black tea [Document 1]"
    assert len(result.sources) == 2
    assert result.rounds == 1


@pytest.mark.asyncio
async def test_add_documents_dedups(make_llm, index):
    service = RagService(index, make_llm())
    first = await service.add_documents([Document("hello world")])
    second = await service.add_documents([Document("hello world")])

    assert first[0].action == UpsertAction.CREATED
    assert second[0].action == UpsertAction.UNCHANGED
