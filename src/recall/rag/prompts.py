"""LLM steps shared by the RAG service and graph."""

import json
from html import escape

from recall.core.logging import get_logger
from recall.core.typing import MessageDict
from recall.llm.base import LLMProvider
from recall.llm.parsing import parse_score
from recall.vector.documents import Document

logger = get_logger("rag.prompts")

NO_RELEVANT_INFO_ANSWER = "Sorry, I couldn't find any relevant information to answer your question."

XML_ATTRIBUTES = ("source", "title", "uuid")
HISTORY_MESSAGES = 6
HISTORY_CHARS = 500

ANSWER_SYSTEM_PROMPT = """You are a knowledgeable assistant. Answer the user's question using only the provided context.

Rules:
1. Answer strictly from the context below
2. If the context does not contain the answer, say "No relevant information was found in the provided documents"
3. Be accurate, concise and well organized
4. Cite sources as [Document N] and list the citations at the end"""

ANSWER_USER_PROMPT = """Context:
{context}

Question: {question}

Answer:"""

RELEVANCE_SYSTEM_PROMPT = "You judge how relevant a document is to a search query."

RELEVANCE_PROMPT = """Query: {query}
Document: {content}

Rate the document's relevance to the query from 0 to 1:
- 1.0: fully relevant, directly answers the query
- 0.7-0.9: highly relevant, contains key information
- 0.4-0.6: moderately relevant, some useful information
- 0.1-0.3: barely relevant
- 0.0: not relevant

Return only the number."""

ANSWER_QUALITY_PROMPT = """Question: {question}
Answer: {answer}

Rate from 0 to 1 how well the answer addresses the question using grounded information.
Return only the number."""

REWRITE_SYSTEM_PROMPT = (
    "You rephrase follow-up questions into standalone questions. "
    "Output only the rephrased question, nothing else."
)

REWRITE_PROMPT = """Given the following conversation and a follow up question, rephrase the follow up question to be a standalone question.

Chat History:
{history}

Follow Up Input: {question}

Standalone Question:"""


def format_docs_as_xml(docs: list[Document]) -> str:
    """Render documents as <documents> XML so sources stay distinguishable."""
    if not docs:
        return "<documents></documents>"

    formatted = []
    for doc in docs:
        attrs = "".join(
            f' {key}="{escape(str(doc.metadata[key]), quote=True)}"'
            for key in XML_ATTRIBUTES
            if key in doc.metadata
        )
        formatted.append(f"<document{attrs}>\n{doc.page_content}\n</document>")

    return "<documents>\n" + "\n".join(formatted) + "\n</documents>"


async def generate_answer(llm: LLMProvider, question: str, docs: list[Document]) -> str:
    """Answer from the documents. Callers short-circuit on an empty list."""
    return await llm.invoke(
        [
            {"role": "system", "content": ANSWER_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": ANSWER_USER_PROMPT.format(
                    context=format_docs_as_xml(docs), question=question
                ),
            },
        ]
    )


async def evaluate_relevance(llm: LLMProvider, query: str, doc: Document) -> float:
    """0-1 relevance of a document to a query; unparseable output scores 0."""
    response = await llm.invoke(
        [
            {"role": "system", "content": RELEVANCE_SYSTEM_PROMPT},
            {"role": "user", "content": RELEVANCE_PROMPT.format(query=query, content=doc.page_content)},
        ]
    )
    return parse_score(response)


async def evaluate_answer(llm: LLMProvider, question: str, answer: str) -> float:
    response = await llm.invoke(
        [{"role": "user", "content": ANSWER_QUALITY_PROMPT.format(question=question, answer=answer)}]
    )
    return parse_score(response)


def _history_text(chat_history: list[MessageDict]) -> str:
    lines = []
    for msg in chat_history[-HISTORY_MESSAGES:]:
        role = "Human" if msg.get("role") in ("user", "human") else "Assistant"
        content = msg.get("content", "")
        if not isinstance(content, str):
            content = json.dumps(content, ensure_ascii=False)
        lines.append(f"{role}: {content[:HISTORY_CHARS]}")
    return "\n".join(lines)


async def rewrite_follow_up_query(
    llm: LLMProvider, question: str, chat_history: list[MessageDict] | None
) -> str:
    """Turn a follow-up into a standalone question. First questions pass through."""
    if not chat_history:
        return question

    response = await llm.invoke(
        [
            {"role": "system", "content": REWRITE_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": REWRITE_PROMPT.format(
                    history=_history_text(chat_history), question=question
                ),
            },
        ]
    )
    rewritten = response.strip()
    logger.debug(f"Rewrote follow-up '{question}' -> '{rewritten}'")
    return rewritten or question
