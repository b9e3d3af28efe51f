"""Retrieval graph state and routing."""

from dataclasses import dataclass, field
from enum import Enum

from recall.vector.documents import Document

MAX_RETRIEVAL_ROUNDS = 3


class RagNode(Enum):
    QUERY_UNDERSTANDING = "query_understanding"
    RETRIEVE = "retrieve"
    EVALUATE_RELEVANCE = "evaluate_relevance"
    INCREMENT_ROUND = "increment_round"
    GENERATE_ANSWER = "generate_answer"
    EVALUATE_ANSWER = "evaluate_answer"


@dataclass
class RetrievalState:
    """Ephemeral state of one graph invocation."""

    query: str
    rewritten_query: str = ""
    documents: list[Document] = field(default_factory=list)
    relevance_scores: list[float] = field(default_factory=list)
    needs_reretrieval: bool = False
    retrieval_round: int = 1
    answer: str | None = None
    answer_quality: float | None = None
    collection: str = "default"
    queries: list[str] = field(default_factory=list)  # every generated query so far
    chat_history: list[dict] = field(default_factory=list)


def should_retrieve(state: RetrievalState, max_rounds: int = MAX_RETRIEVAL_ROUNDS) -> RagNode:
    """Route after relevance evaluation. Never loops past max_rounds."""
    if state.needs_reretrieval and state.retrieval_round < max_rounds:
        return RagNode.INCREMENT_ROUND
    return RagNode.GENERATE_ANSWER
