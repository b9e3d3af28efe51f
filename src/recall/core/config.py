"""
Configuration management.

Loads settings from environment variables and .env file.
Prefix: RECALL_
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="RECALL_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Storage
    data_dir: Path = Field(default=Path("data"), description="Data storage directory")
    db_name: str = Field(default="recall.db", description="SQLite database name")

    # Models (ids from configs/models.yaml)
    chat_model: str = Field(default="gpt-4o", description="Answer generation model")
    extraction_model: str = Field(
        default="gpt-4o-mini", description="Memory extraction and query planning model"
    )
    embedding_model: str = Field(
        default="text-embedding-3-small", description="Embedding model"
    )

    # Short-term memory
    short_term_ttl_seconds: int = Field(default=3600, description="Session cache TTL")
    max_window_messages: int = Field(default=50, description="Sliding window size")
    recent_message_limit: int = Field(default=10, description="Messages in short-term context")

    # Extraction
    memory_debounce_seconds: float = Field(default=3.0, description="Extraction debounce delay")
    debounce_key_grace_seconds: float = Field(
        default=5.0, description="Extra TTL on the debounce key beyond the delay"
    )

    # Mid-term / long-term
    memory_collection: str = Field(default="user_memories", description="Episodic collection")
    mid_term_top_k: int = Field(default=5, description="Episodic memories per query")
    format_token_budget: int = Field(default=2000, description="Prompt fragment token budget")

    # Summarization
    summarizer_mode: str = Field(
        default="static_buffer", description="static_buffer, partial_evict or none"
    )
    summarizer_buffer_limit: int = Field(default=30, description="Messages before compaction")
    summarizer_buffer_min: int = Field(default=10, description="Messages kept after compaction")
    summarizer_evict_fraction: float = Field(
        default=0.3, description="Share evicted in partial mode"
    )

    # RAG
    rag_collection: str = Field(default="default", description="Default document collection")
    rag_top_k: int = Field(default=5, description="Documents per RAG query")
    rag_relevance_threshold: float = Field(default=0.3, description="Minimum similarity")
    researcher_top_k: int = Field(default=3, description="Documents per generated query")
    max_retrieval_rounds: int = Field(default=3, description="Retrieval round cap")

    # Queue
    queue_poll_interval: float = Field(default=1.0, description="Worker poll interval seconds")
    queue_max_attempts: int = Field(default=3, description="Attempts before a job fails")
    queue_backoff_seconds: float = Field(default=2.0, description="Linear retry backoff")

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name


def get_settings() -> Settings:
    """Get settings instance."""
    return Settings()
