"""
Retrieval graph - bounded iterative RAG.

query_understanding -> retrieve -> evaluate_relevance
    -> (increment_round -> retrieve | generate_answer) -> evaluate_answer -> end

Routing after relevance evaluation is the pure should_retrieve(), so the loop
ends within max_rounds whatever the evaluator says.
"""

import asyncio
from collections.abc import Awaitable, Callable

from recall.core.logging import get_logger
from recall.core.typing import MessageDict
from recall.llm.base import LLMProvider
from recall.rag import prompts
from recall.rag.researcher import Researcher
from recall.rag.state import MAX_RETRIEVAL_ROUNDS, RagNode, RetrievalState, should_retrieve
from recall.vector.documents import reduce_docs
from recall.vector.index import DEFAULT_COLLECTION

logger = get_logger("rag.graph")

NodeFn = Callable[[RetrievalState], Awaitable[None]]


class RetrievalGraph:
    """Runs one question through the retrieval state machine."""

    def __init__(
        self,
        llm: LLMProvider,
        researcher: Researcher,
        answer_llm: LLMProvider | None = None,
        relevance_threshold: float = 0.3,
        max_rounds: int = MAX_RETRIEVAL_ROUNDS,
    ):
        self.llm = llm
        self.answer_llm = answer_llm or llm
        self.researcher = researcher
        self.relevance_threshold = relevance_threshold
        self.max_rounds = max_rounds
        self._nodes: dict[RagNode, NodeFn] = {
            RagNode.QUERY_UNDERSTANDING: self.query_understanding,
            RagNode.RETRIEVE: self.retrieve,
            RagNode.EVALUATE_RELEVANCE: self.evaluate_relevance,
            RagNode.INCREMENT_ROUND: self.increment_round,
            RagNode.GENERATE_ANSWER: self.generate_answer,
            RagNode.EVALUATE_ANSWER: self.evaluate_answer,
        }

    def next_node(self, node: RagNode, state: RetrievalState) -> RagNode | None:
        if node == RagNode.QUERY_UNDERSTANDING:
            return RagNode.RETRIEVE
        if node == RagNode.RETRIEVE:
            return RagNode.EVALUATE_RELEVANCE
        if node == RagNode.EVALUATE_RELEVANCE:
            return should_retrieve(state, self.max_rounds)
        if node == RagNode.INCREMENT_ROUND:
            return RagNode.RETRIEVE
        if node == RagNode.GENERATE_ANSWER:
            return RagNode.EVALUATE_ANSWER
        return None

    async def run(
        self,
        query: str,
        collection: str = DEFAULT_COLLECTION,
        chat_history: list[MessageDict] | None = None,
    ) -> RetrievalState:
        state = RetrievalState(
            query=query, collection=collection, chat_history=list(chat_history or [])
        )
        node: RagNode | None = RagNode.QUERY_UNDERSTANDING
        while node is not None:
            logger.debug(f"Node {node.value} (round {state.retrieval_round})")
            await self._nodes[node](state)
            node = self.next_node(node, state)
        return state

    # Nodes

    async def query_understanding(self, state: RetrievalState) -> None:
        state.rewritten_query = await prompts.rewrite_follow_up_query(
            self.llm, state.query, state.chat_history
        )

    async def retrieve(self, state: RetrievalState) -> None:
        result = await self.researcher.research(
            state.rewritten_query or state.query,
            state.collection,
            previous_queries=state.queries or None,
        )
        state.queries.extend(result.queries)
        # Documents kept by earlier rounds stay, new ones are unioned in
        state.documents = reduce_docs(state.documents, result.documents)

    async def evaluate_relevance(self, state: RetrievalState) -> None:
        query = state.rewritten_query or state.query
        scores = await asyncio.gather(
            *(prompts.evaluate_relevance(self.llm, query, doc) for doc in state.documents),
            return_exceptions=True,
        )

        ranked = []
        for doc, score in zip(state.documents, scores):
            if isinstance(score, BaseException):
                logger.warning(f"Relevance scoring failed: {score}")
                continue
            if score >= self.relevance_threshold:
                ranked.append((doc, score))
        ranked.sort(key=lambda item: item[1], reverse=True)

        state.documents = [doc for doc, _ in ranked]
        state.relevance_scores = [score for _, score in ranked]
        state.needs_reretrieval = not ranked
        logger.info(
            f"Round {state.retrieval_round}: {len(ranked)} relevant documents"
            + (", retrieving again" if state.needs_reretrieval else "")
        )

    async def increment_round(self, state: RetrievalState) -> None:
        state.retrieval_round += 1

    async def generate_answer(self, state: RetrievalState) -> None:
        if not state.documents:
            state.answer = prompts.NO_RELEVANT_INFO_ANSWER
            return
        state.answer = await prompts.generate_answer(self.answer_llm, state.query, state.documents)

    async def evaluate_answer(self, state: RetrievalState) -> None:
        if not state.documents:
            state.answer_quality = 0.0
            return
        state.answer_quality = await prompts.evaluate_answer(self.llm, state.query, state.answer)
