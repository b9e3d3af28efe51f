"""Exception taxonomy.

ProviderError propagates to the immediate caller and is never retried here;
retry belongs to the queue or client that owns the call. ParseError is
recovered locally by the callers of recall.llm.parsing.
"""


class RecallError(Exception):
    """Base class for engine errors."""


class ProviderError(RecallError):
    """LLM, embedding, vector, queue or cache backend failure."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class ParseError(RecallError):
    """LLM output was not in the expected shape."""
