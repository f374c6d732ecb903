"""
Embedding Service for the PoSH knowledge tool server

Turns query text into a fixed-length vector for pgvector similarity search.
The corpus was embedded with OpenAI text-embedding-ada-002, so that is the
default provider; Voyage AI and Cohere are available for corpora embedded
with their models.

Architecture:
    BaseEmbeddingService  -- truncation, caching, async facade, error wrapping
        OpenAIEmbeddingService  -- OpenAI embeddings API (default)
        VoyageEmbeddingService  -- Voyage AI voyage-law-2
        EmbeddingService        -- Cohere embed-v3

Provider SDKs are blocking, so requests run in a worker thread and never
stall the event loop.
"""

import os
import asyncio
import hashlib
import logging
import threading
from typing import Optional, Union
from dataclasses import dataclass
from collections import OrderedDict

from .errors import EmbeddingServiceError
from .metrics import get_metrics_collector

logger = logging.getLogger(__name__)


# Default model and vector size per provider
PROVIDER_DEFAULTS = {
    "openai": {"model": "text-embedding-ada-002", "dimensions": 1536},
    "voyage": {"model": "voyage-law-2", "dimensions": 1024},
    "cohere": {"model": "embed-english-v3.0", "dimensions": 1024},
}


@dataclass
class EmbeddingConfig:
    """Configuration for embedding service."""
    provider: str = "openai"  # "openai", "voyage" or "cohere"
    model: str = "text-embedding-ada-002"
    dimensions: int = 1536
    # Upstream providers reject long inputs; queries are cut to this many characters
    max_input_chars: int = 8000
    use_cache: bool = True
    cache_max_size: int = 1000


class BaseEmbeddingService:
    """
    Base class for API-based embedding services.

    Provides shared functionality:
    - Input truncation to max_input_chars
    - Bounded in-memory query cache
    - Async embed_query() with an optional timeout
    - Wrapping of every provider failure in EmbeddingServiceError

    Subclasses implement:
    - _init_client(): Initialize the provider-specific API client
    - _request_embeddings() when the provider API differs from embed(texts=...)

    And set these class attributes:
    - _provider_name: Human-readable provider name for error messages
    - _env_var_name: Environment variable name for the API key
    - _query_input_type: Input type string for query embeddings
    """

    _provider_name: str = "Base"
    _env_var_name: str = ""
    _query_input_type: str = "query"

    def __init__(self, config: Optional[EmbeddingConfig] = None, api_key: Optional[str] = None):
        """
        Initialize embedding service.

        Args:
            config: Optional configuration. Uses defaults if not provided.
            api_key: Provider credential. Falls back to the provider's env var.
        """
        self.config = config or EmbeddingConfig()
        self._client = None
        self._cache: OrderedDict[str, list[float]] = OrderedDict()
        # Queries from concurrent worker threads share the cache
        self._cache_lock = threading.Lock()
        self._api_key = api_key or os.getenv(self._env_var_name)
        self._init_client()

    def _init_client(self):
        """Initialize the provider-specific API client. Must be overridden by subclasses."""
        raise NotImplementedError("Subclasses must implement _init_client()")

    def _request_embeddings(self, texts: list[str], input_type: str) -> list[list[float]]:
        """Call the provider. Voyage and Cohere share this call shape."""
        response = self._client.embed(
            texts=texts,
            model=self.config.model,
            input_type=input_type,
        )
        return [list(e) for e in response.embeddings]

    def truncate(self, text: Optional[str]) -> str:
        """Cut text to the provider input limit. None becomes an empty string."""
        text = text or ""
        if len(text) > self.config.max_input_chars:
            logger.debug(
                f"Truncating embedding input from {len(text)} to {self.config.max_input_chars} chars"
            )
            return text[:self.config.max_input_chars]
        return text

    def embed_query_sync(self, query: Optional[str]) -> list[float]:
        """
        Generate an embedding for a search query (blocking).

        Empty input is still submitted; providers that reject it surface
        an EmbeddingServiceError.

        Args:
            query: Search query string

        Returns:
            Embedding vector
        """
        if not self._client:
            raise EmbeddingServiceError(
                f"{self._provider_name} client not initialized. "
                f"Check {self._env_var_name}."
            )

        text = self.truncate(query)
        metrics = get_metrics_collector()

        cache_key = self._get_cache_key(text, self._query_input_type)
        cached = self._get_cached(cache_key)
        if cached is not None:
            metrics.record_cache_hit()
            return cached
        metrics.record_cache_miss()

        try:
            vectors = self._request_embeddings([text], input_type=self._query_input_type)
        except EmbeddingServiceError:
            raise
        except Exception as e:
            logger.error(f"{self._provider_name} embedding failed: {e}")
            raise EmbeddingServiceError(f"{self._provider_name} embedding failed: {e}") from e

        if not vectors or not vectors[0]:
            raise EmbeddingServiceError(
                f"{self._provider_name} returned no embedding for the query"
            )
        embedding = vectors[0]
        if not all(isinstance(v, (int, float)) for v in embedding):
            raise EmbeddingServiceError(
                f"{self._provider_name} returned a malformed embedding"
            )
        if len(embedding) != self.config.dimensions:
            logger.warning(
                f"{self._provider_name} returned {len(embedding)} dimensions, "
                f"expected {self.config.dimensions}"
            )

        embedding = [float(v) for v in embedding]
        self._set_cached(cache_key, embedding)
        return embedding

    async def embed_query(self, query: Optional[str], timeout: Optional[float] = None) -> list[float]:
        """
        Generate an embedding for a search query without blocking the event loop.

        Args:
            query: Search query string
            timeout: Seconds to wait before giving up, or None for no limit

        Returns:
            Embedding vector
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.embed_query_sync, query),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise EmbeddingServiceError(
                f"{self._provider_name} embedding timed out after {timeout:.1f}s"
            ) from e

    def _get_cache_key(self, text: str, input_type: str) -> str:
        """Generate cache key for text."""
        content = f"{self.config.model}:{input_type}:{text}"
        return hashlib.sha256(content.encode()).hexdigest()[:32]

    def _get_cached(self, key: str) -> Optional[list[float]]:
        """Get cached embedding."""
        if not self.config.use_cache:
            return None
        with self._cache_lock:
            embedding = self._cache.get(key)
            if embedding is not None:
                self._cache.move_to_end(key)
            return embedding

    def _set_cached(self, key: str, embedding: list[float]) -> None:
        """Cache an embedding, evicting the least recently used entry when full."""
        if not self.config.use_cache:
            return
        with self._cache_lock:
            self._cache[key] = embedding
            self._cache.move_to_end(key)
            while len(self._cache) > self.config.cache_max_size:
                self._cache.popitem(last=False)

    @property
    def dimensions(self) -> int:
        """Return embedding dimensions."""
        return self.config.dimensions


class OpenAIEmbeddingService(BaseEmbeddingService):
    """
    Embedding service using the OpenAI embeddings API.

    text-embedding-ada-002 provides 1536-dimensional embeddings and is the
    model the knowledge base was indexed with.
    """

    _provider_name = "OpenAI"
    _env_var_name = "OPENAI_API_KEY"

    def _init_client(self):
        """Initialize the OpenAI client."""
        if not self._api_key:
            logger.warning(
                "OPENAI_API_KEY not found. Embeddings will fail. "
                "Set the environment variable or use a different provider."
            )
            return

        try:
            from openai import OpenAI
            self._client = OpenAI(api_key=self._api_key)
            logger.info(f"OpenAI client initialized with model {self.config.model}")
        except ImportError:
            logger.error("openai package not installed. Run: pip install openai")
            raise

    def _request_embeddings(self, texts: list[str], input_type: str) -> list[list[float]]:
        response = self._client.embeddings.create(model=self.config.model, input=texts)
        return [list(item.embedding) for item in response.data]


class VoyageEmbeddingService(BaseEmbeddingService):
    """
    Embedding service using Voyage AI's voyage-law-2 model.

    voyage-law-2 provides:
    - 1024-dimensional embeddings
    - Better retrieval on legal benchmarks than general models
    - Different input types for documents vs queries
    """

    _provider_name = "Voyage AI"
    _env_var_name = "VOYAGE_API_KEY"
    _query_input_type = "query"

    def _init_client(self):
        """Initialize the Voyage AI client."""
        if not self._api_key:
            logger.warning(
                "VOYAGE_API_KEY not found. Embeddings will fail. "
                "Get your free API key at https://dash.voyageai.com/"
            )
            return

        try:
            import voyageai
            self._client = voyageai.Client(api_key=self._api_key)
            logger.info(f"Voyage AI client initialized with model {self.config.model}")
        except ImportError:
            logger.error("voyageai package not installed. Run: pip install voyageai")
            raise


class EmbeddingService(BaseEmbeddingService):
    """
    Generates embeddings using Cohere's embed-v3 model.

    Cohere embed-v3 provides:
    - 1024-dimensional embeddings
    - Different input types for documents vs queries
    """

    _provider_name = "Cohere"
    _env_var_name = "COHERE_API_KEY"
    _query_input_type = "search_query"

    def _init_client(self):
        """Initialize the Cohere client."""
        if not self._api_key:
            logger.warning(
                "COHERE_API_KEY not found. Embeddings will fail. "
                "Set the environment variable or use a different provider."
            )
            return

        try:
            import cohere
            self._client = cohere.Client(self._api_key)
            logger.info(f"Cohere client initialized with model {self.config.model}")
        except ImportError:
            logger.error("Cohere package not installed. Run: pip install cohere")
            raise


def get_embedding_service(
    config: Optional[EmbeddingConfig] = None,
) -> Union[OpenAIEmbeddingService, VoyageEmbeddingService, EmbeddingService]:
    """
    Factory function to get the embedding service for a configuration.

    Args:
        config: Embedding configuration. provider selects the backend:
                "openai" (default), "voyage" or "cohere".

    Returns:
        Configured embedding service
    """
    config = config or EmbeddingConfig()

    if config.provider == "voyage":
        return VoyageEmbeddingService(config)
    if config.provider == "cohere":
        return EmbeddingService(config)
    return OpenAIEmbeddingService(config)
