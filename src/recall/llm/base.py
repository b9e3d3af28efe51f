"""
LLM and embedding provider interfaces.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from recall.core.typing import MessageDict, Vector


@dataclass
class LLMResponse:
    """Response from LLM provider."""

    content: str
    model: str
    provider: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    metadata: dict | None = None


@dataclass
class LLMConfig:
    """Configuration for LLM call."""

    model: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7
    stop: list[str] = field(default_factory=list)


class LLMProvider(ABC):
    """Abstract chat-completion provider."""

    default_config: LLMConfig = LLMConfig()

    @abstractmethod
    async def complete(self, messages: list[MessageDict], config: LLMConfig) -> LLMResponse:
        """
        Generate completion from messages.

        Args:
            messages: OpenAI-format messages with role/content
            config: LLM configuration

        Returns:
            LLMResponse with content
        """
        ...

    async def invoke(self, messages: list[MessageDict], config: LLMConfig | None = None) -> str:
        """Complete and return only the text content."""
        response = await self.complete(messages, config or self.default_config)
        return response.content


class EmbeddingProvider(ABC):
    """Abstract text embedding provider."""

    @abstractmethod
    async def embed_query(self, text: str) -> Vector:
        """Embed a single search query."""
        ...

    @abstractmethod
    async def embed_documents(self, texts: list[str]) -> list[Vector]:
        """Embed a batch of documents, preserving order."""
        ...
