"""Researcher - multi-angle query generation with concurrent retrieval."""

import asyncio
from dataclasses import dataclass, field

from recall.core.logging import get_logger
from recall.llm.base import LLMProvider
from recall.llm.parsing import extract_json_array
from recall.vector.documents import Document, ensure_documents_uuid, reduce_docs
from recall.vector.index import DEFAULT_COLLECTION, VectorIndex

logger = get_logger("rag.researcher")

QUERY_SYSTEM_PROMPT = "You are a search query generation expert. Always output valid JSON arrays only."

QUERY_PROMPT = """You are an expert at generating search queries for document retrieval.
Given a user question, generate 3-5 different search queries that would help find relevant information.
Each query should approach the question from a different angle or focus on different aspects.
{avoid}
Question: {question}

Output the queries as a JSON array of strings, nothing else.
Example: ["query 1", "query 2", "query 3"]"""

AVOID_PROMPT = """
These queries were already tried and did not find enough; take different angles:
{queries}
"""

MAX_QUERIES = 5


@dataclass
class ResearchResult:
    question: str
    queries: list[str] = field(default_factory=list)
    documents: list[Document] = field(default_factory=list)


class Researcher:
    """Fans a question out into several queries and unions what they retrieve."""

    def __init__(
        self,
        llm: LLMProvider,
        index: VectorIndex,
        top_k: int = 3,
        threshold: float = 0.3,
    ):
        self.llm = llm
        self.index = index
        self.top_k = top_k
        self.threshold = threshold

    async def generate_queries(
        self, question: str, previous: list[str] | None = None
    ) -> list[str]:
        """Ask for 3-5 angled queries; fall back to the question itself."""
        avoid = AVOID_PROMPT.format(queries="\n".join(f"- {q}" for q in previous)) if previous else ""
        response = await self.llm.invoke(
            [
                {"role": "system", "content": QUERY_SYSTEM_PROMPT},
                {"role": "user", "content": QUERY_PROMPT.format(question=question, avoid=avoid)},
            ]
        )

        parsed = extract_json_array(response)
        if not parsed.ok:
            logger.warning(f"Query generation unparseable, using question: {parsed.error}")
            return [question]

        queries = [q.strip() for q in parsed.value if isinstance(q, str) and q.strip()]
        return queries[:MAX_QUERIES] or [question]

    async def retrieve_documents(
        self, query: str, collection: str = DEFAULT_COLLECTION
    ) -> list[Document]:
        """Top-k for one query above the score threshold, each tagged with its uuid."""
        results = await self.index.similarity_search_with_score(query, self.top_k, collection)
        docs = [doc for doc, score in results if score >= self.threshold]
        return ensure_documents_uuid(docs)

    async def research(
        self,
        question: str,
        collection: str = DEFAULT_COLLECTION,
        previous_queries: list[str] | None = None,
    ) -> ResearchResult:
        """Generate queries, retrieve for all of them concurrently, union by uuid.

        A failed branch contributes no documents and does not affect the others.
        """
        queries = await self.generate_queries(question, previous_queries)

        results = await asyncio.gather(
            *(self.retrieve_documents(q, collection) for q in queries),
            return_exceptions=True,
        )

        documents: list[Document] = []
        for query, result in zip(queries, results):
            if isinstance(result, BaseException):
                logger.warning(f"Retrieval failed for query '{query}': {result}")
                continue
            documents = reduce_docs(documents, result)

        logger.info(
            f"Research for '{question}': {len(queries)} queries, {len(documents)} documents"
        )
        return ResearchResult(question=question, queries=queries, documents=documents)
