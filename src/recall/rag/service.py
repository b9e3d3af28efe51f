"""RAG service - document ingestion and question answering over the vector index."""

from dataclasses import dataclass, field

from recall.core.logging import get_logger
from recall.core.typing import MessageDict
from recall.llm.base import LLMProvider
from recall.rag import prompts
from recall.rag.graph import RetrievalGraph
from recall.vector.documents import Document
from recall.vector.index import DEFAULT_COLLECTION, UpsertAction, UpsertResult, VectorIndex

logger = get_logger("rag.service")


@dataclass
class RagQueryResult:
    answer: str
    sources: list[Document] = field(default_factory=list)
    relevance_scores: list[float] = field(default_factory=list)
    rounds: int = 1


class RagService:
    """Single-pass and graph-driven question answering."""

    def __init__(
        self,
        index: VectorIndex,
        llm: LLMProvider,
        graph: RetrievalGraph | None = None,
        top_k: int = 5,
        relevance_threshold: float = 0.3,
    ):
        self.index = index
        self.llm = llm
        self.graph = graph
        self.top_k = top_k
        self.relevance_threshold = relevance_threshold

    async def query(
        self,
        question: str,
        collection: str = DEFAULT_COLLECTION,
        top_k: int | None = None,
        relevance_threshold: float | None = None,
        chat_history: list[MessageDict] | None = None,
    ) -> RagQueryResult:
        """Retrieve, filter by similarity, and answer from what is left.

        With nothing above the threshold the canned no-information answer is
        returned and the generation model is never called.
        """
        top_k = self.top_k if top_k is None else top_k
        threshold = self.relevance_threshold if relevance_threshold is None else relevance_threshold
        logger.info(f"RAG query on {collection} (top_k={top_k}): {question}")

        search_query = await prompts.rewrite_follow_up_query(self.llm, question, chat_history)

        results = await self.index.similarity_search_with_score(search_query, top_k, collection)
        filtered = [(doc, score) for doc, score in results if score >= threshold]
        logger.debug(f"Retrieved {len(results)} documents, {len(filtered)} above {threshold}")

        if not filtered:
            return RagQueryResult(answer=prompts.NO_RELEVANT_INFO_ANSWER)

        sources = [doc for doc, _ in filtered]
        answer = await prompts.generate_answer(self.llm, question, sources)
        logger.info(f"RAG query answered from {len(sources)} sources")

        return RagQueryResult(
            answer=answer,
            sources=sources,
            relevance_scores=[score for _, score in filtered],
        )

    async def research_query(
        self,
        question: str,
        collection: str = DEFAULT_COLLECTION,
        chat_history: list[MessageDict] | None = None,
    ) -> RagQueryResult:
        """Answer through the multi-query retrieval graph."""
        if self.graph is None:
            raise RuntimeError("RagService was created without a retrieval graph")

        state = await self.graph.run(question, collection, chat_history)
        return RagQueryResult(
            answer=state.answer or prompts.NO_RELEVANT_INFO_ANSWER,
            sources=state.documents,
            relevance_scores=state.relevance_scores,
            rounds=state.retrieval_round,
        )

    async def add_documents(
        self, docs: list[Document], collection: str = DEFAULT_COLLECTION
    ) -> list[UpsertResult]:
        """Upsert documents, skipping content already indexed."""
        results = [await self.index.upsert(doc, collection) for doc in docs]
        changed = sum(1 for r in results if r.action != UpsertAction.UNCHANGED)
        logger.info(f"Indexed {changed}/{len(docs)} documents into {collection}")
        return results
