"""
Engine container - builds and owns every memory and retrieval service.

Providers can be injected (tests, custom backends); otherwise they are
created from the model registry using the configured model ids.
"""

from recall.core.config import Settings, get_settings
from recall.core.logging import get_logger
from recall.llm.base import EmbeddingProvider, LLMProvider
from recall.llm.litellm_adapter import LiteLLMEmbeddings, LiteLLMProvider, create_adapter
from recall.memory.episodic import EpisodicMemoryStore
from recall.memory.extraction import ExtractionWorker
from recall.memory.fusion import MemoryFusion
from recall.memory.profile import ProfileStore
from recall.memory.scheduler import ExtractionScheduler
from recall.memory.store import MemoryStore
from recall.memory.summarizer import ConversationSummarizer, SummarizationMode
from recall.rag.graph import RetrievalGraph
from recall.rag.researcher import Researcher
from recall.rag.service import RagService
from recall.storage.cache import SessionCache, TTLCache
from recall.storage.database import Database
from recall.storage.queue import DelayedJobQueue
from recall.storage.sessions import SessionDirectory
from recall.vector.index import VectorIndex

logger = get_logger("engine")


class RecallEngine:
    """Wires storage, memory tiers, extraction and RAG around one database."""

    def __init__(
        self,
        settings: Settings | None = None,
        chat_llm: LLMProvider | None = None,
        extraction_llm: LLMProvider | None = None,
        embeddings: EmbeddingProvider | None = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings

        if chat_llm is None or extraction_llm is None or embeddings is None:
            adapter = create_adapter()
            chat_llm = chat_llm or LiteLLMProvider(adapter, s.chat_model, temperature=0.1)
            extraction_llm = extraction_llm or LiteLLMProvider(adapter, s.extraction_model)
            embeddings = embeddings or LiteLLMEmbeddings(adapter, s.embedding_model)

        self.chat_llm = chat_llm
        self.extraction_llm = extraction_llm
        self.embeddings = embeddings

        self.db = Database(s.db_path)
        self.cache = TTLCache(self.db)
        self.session_cache = SessionCache(
            self.cache, ttl_seconds=s.short_term_ttl_seconds, max_messages=s.max_window_messages
        )
        self.sessions = SessionDirectory(self.db)
        self.queue = DelayedJobQueue(
            self.db,
            max_attempts=s.queue_max_attempts,
            backoff_seconds=s.queue_backoff_seconds,
            poll_interval=s.queue_poll_interval,
        )

        self.index = VectorIndex(self.db, embeddings)
        self.store = MemoryStore(self.db, self.sessions)
        self.profiles = ProfileStore(self.db)
        self.episodic = EpisodicMemoryStore(self.db, self.index, s.memory_collection)

        self.scheduler = ExtractionScheduler(
            self.queue,
            self.session_cache,
            debounce_seconds=s.memory_debounce_seconds,
            grace_seconds=s.debounce_key_grace_seconds,
        )
        self.worker = ExtractionWorker(
            extraction_llm, self.profiles, self.episodic, self.session_cache
        )
        self.scheduler.bind_worker(self.worker)

        self.summarizer = ConversationSummarizer(
            extraction_llm,
            self.episodic,
            mode=SummarizationMode(s.summarizer_mode),
            buffer_limit=s.summarizer_buffer_limit,
            buffer_min=s.summarizer_buffer_min,
            evict_fraction=s.summarizer_evict_fraction,
        )

        self.fusion = MemoryFusion(
            self.session_cache,
            self.store,
            self.profiles,
            self.episodic,
            self.index,
            self.scheduler,
            mid_term_top_k=s.mid_term_top_k,
            recent_message_limit=s.recent_message_limit,
            token_budget=s.format_token_budget,
        )

        self.researcher = Researcher(
            extraction_llm,
            self.index,
            top_k=s.researcher_top_k,
            threshold=s.rag_relevance_threshold,
        )
        self.graph = RetrievalGraph(
            extraction_llm,
            self.researcher,
            answer_llm=chat_llm,
            relevance_threshold=s.rag_relevance_threshold,
            max_rounds=s.max_retrieval_rounds,
        )
        self.rag = RagService(
            self.index,
            chat_llm,
            graph=self.graph,
            top_k=s.rag_top_k,
            relevance_threshold=s.rag_relevance_threshold,
        )

    async def start(self, run_worker: bool = False) -> None:
        """Open the database; optionally start the extraction queue loop."""
        self.settings.data_dir.mkdir(parents=True, exist_ok=True)
        await self.db.connect()
        if run_worker:
            await self.queue.start()
        logger.info(f"Engine started (db={self.settings.db_path}, worker={run_worker})")

    async def close(self) -> None:
        """Stop the queue loop, letting a running job finish, then close the database."""
        await self.summarizer.drain()
        await self.queue.stop()
        await self.db.close()
        logger.info("Engine closed")

    async def cleanup(self) -> dict[str, int]:
        """Expiry sweep across memory stores and the cache."""
        result = await self.fusion.cleanup_expired_memories()
        result["cache"] = await self.cache.purge_expired()
        return result

    async def __aenter__(self) -> "RecallEngine":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()
