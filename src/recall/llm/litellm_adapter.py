"""LiteLLM adapter - unified interface for chat and embedding providers."""

import os
from pathlib import Path
from typing import Any

import litellm
import yaml
from litellm import acompletion, aembedding

from recall.core.errors import ProviderError
from recall.core.logging import get_logger
from recall.core.typing import MessageDict, Vector
from recall.llm.base import EmbeddingProvider, LLMConfig, LLMProvider, LLMResponse

logger = get_logger("llm.litellm_adapter")

# Disable LiteLLM's verbose logging
litellm.suppress_debug_info = True
litellm.set_verbose = False


class ModelConfig:
    """Model configuration from YAML."""

    def __init__(self, data: dict[str, Any]):
        self.model_id = data["model_id"]
        self.litellm_name = data["litellm_name"]
        self.provider = data["provider"]
        self.kind = data.get("kind", "chat")
        self.cost_per_1m_input = data.get("cost_per_1m_input", 0.0)
        self.cost_per_1m_output = data.get("cost_per_1m_output", 0.0)
        self.max_context = data.get("max_context", 0)
        self.dimensions = data.get("dimensions")
        self.notes = data.get("notes", "")
        self.auth_env = data.get("auth_env")
        self.base_url_env = data.get("base_url_env")

    @property
    def api_key(self) -> str | None:
        """Get API key from environment."""
        if not self.auth_env:
            return None
        return os.getenv(self.auth_env)

    @property
    def base_url(self) -> str | None:
        """Get base URL from environment."""
        if not self.base_url_env:
            return None
        return os.getenv(self.base_url_env)

    @property
    def is_available(self) -> bool:
        """Check if model is available (has required credentials)."""
        if self.auth_env and not self.api_key:
            return False
        if self.base_url_env and not self.base_url:
            return False
        return True


class ModelRegistry:
    """Load and manage model configurations from YAML."""

    def __init__(self, config_path: Path | str):
        with open(config_path) as f:
            data = yaml.safe_load(f)

        self.models = {m["model_id"]: ModelConfig(m) for m in data["models"]}

        logger.info(f"Loaded {len(self.models)} models from registry")
        available = [m.model_id for m in self.models.values() if m.is_available]
        logger.info(f"Available models: {', '.join(available) or 'none'}")

    def get(self, model_id: str) -> ModelConfig | None:
        """Get model config by ID."""
        return self.models.get(model_id)

    def by_kind(self, kind: str) -> list[ModelConfig]:
        """All models of one kind ('chat' or 'embedding')."""
        return [m for m in self.models.values() if m.kind == kind]

    def require(self, model_id: str, kind: str) -> ModelConfig:
        """Resolve a usable model or raise ValueError."""
        model_config = self.get(model_id)
        if not model_config:
            raise ValueError(f"Model {model_id} not in registry")
        if model_config.kind != kind:
            raise ValueError(f"Model {model_id} is a {model_config.kind} model, not {kind}")
        if not model_config.is_available:
            raise ValueError(
                f"Model {model_id} not available (missing credentials/config)"
            )
        return model_config


class LiteLLMAdapter:
    """Adapter for LiteLLM with unified interface."""

    def __init__(self, registry: ModelRegistry):
        self.registry = registry

    def _auth_params(self, model_config: ModelConfig) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if model_config.api_key:
            params["api_key"] = model_config.api_key
        if model_config.base_url:
            params["api_base"] = model_config.base_url
        return params

    async def complete(
        self,
        model_id: str,
        messages: list[MessageDict],
        config: LLMConfig,
    ) -> LLMResponse:
        """Call LiteLLM completion with model from registry.

        Raises:
            ValueError: model unknown or missing credentials
            ProviderError: the provider call failed
        """
        model_config = self.registry.require(model_id, "chat")

        params = {
            "model": model_config.litellm_name,
            "messages": messages,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            **self._auth_params(model_config),
        }
        if config.stop:
            params["stop"] = config.stop

        logger.debug(
            f"LiteLLM request: model={model_config.litellm_name}, messages={len(messages)}"
        )

        try:
            response = await acompletion(**params)
        except Exception as e:
            logger.error(f"LiteLLM error for {model_id}: {e}")
            raise ProviderError(model_id, str(e)) from e

        content = response.choices[0].message.content or ""

        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0

        cost_usd = (
            (input_tokens / 1_000_000) * model_config.cost_per_1m_input
            + (output_tokens / 1_000_000) * model_config.cost_per_1m_output
        )

        logger.debug(
            f"LiteLLM response: model={response.model}, "
            f"tokens={input_tokens}+{output_tokens}, "
            f"cost=${cost_usd:.4f}"
        )

        return LLMResponse(
            content=content,
            model=response.model,
            provider=model_config.provider,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost_usd,
        )

    async def embed(self, model_id: str, texts: list[str]) -> list[Vector]:
        """Embed texts with an embedding model from the registry."""
        model_config = self.registry.require(model_id, "embedding")
        if not texts:
            return []

        params: dict[str, Any] = {
            "model": model_config.litellm_name,
            "input": texts,
            **self._auth_params(model_config),
        }
        if model_config.dimensions:
            params["dimensions"] = model_config.dimensions

        try:
            response = await aembedding(**params)
        except Exception as e:
            logger.error(f"LiteLLM embedding error for {model_id}: {e}")
            raise ProviderError(model_id, str(e)) from e

        # Items can be dicts or objects depending on provider
        vectors = []
        for item in sorted(response.data, key=lambda d: _field(d, "index")):
            vectors.append([float(x) for x in _field(item, "embedding")])

        logger.debug(f"Embedded {len(texts)} texts with {model_config.litellm_name}")
        return vectors


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item[name]
    return getattr(item, name)


class LiteLLMProvider(LLMProvider):
    """One registry chat model exposed as an LLMProvider."""

    def __init__(self, adapter: LiteLLMAdapter, model_id: str, temperature: float = 0.0):
        self.adapter = adapter
        self.model_id = model_id
        self.default_config = LLMConfig(model=model_id, temperature=temperature)

    async def complete(self, messages: list[MessageDict], config: LLMConfig) -> LLMResponse:
        return await self.adapter.complete(config.model or self.model_id, messages, config)


class LiteLLMEmbeddings(EmbeddingProvider):
    """One registry embedding model exposed as an EmbeddingProvider."""

    def __init__(self, adapter: LiteLLMAdapter, model_id: str):
        self.adapter = adapter
        self.model_id = model_id

    async def embed_query(self, text: str) -> Vector:
        vectors = await self.adapter.embed(self.model_id, [text])
        return vectors[0]

    async def embed_documents(self, texts: list[str]) -> list[Vector]:
        return await self.adapter.embed(self.model_id, texts)


def create_adapter(config_path: Path | None = None) -> LiteLLMAdapter:
    """Create LiteLLM adapter with model registry."""
    # Find models.yaml relative to this file
    config_path = config_path or Path(__file__).parent.parent / "configs" / "models.yaml"

    if not config_path.exists():
        raise FileNotFoundError(f"Model registry not found at {config_path}")

    registry = ModelRegistry(config_path)
    return LiteLLMAdapter(registry)
