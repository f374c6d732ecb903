"""
Server configuration for the PoSH knowledge tool server.

All settings come from the environment (optionally via a .env file loaded
by the entry points). Component-level configs live next to their
components (EmbeddingConfig, KnowledgeStoreConfig); ServerConfig ties them
together.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Optional

from .embeddings import EmbeddingConfig, PROVIDER_DEFAULTS
from .knowledge_store import KnowledgeStoreConfig

logger = logging.getLogger(__name__)

SERVER_NAME = "posh-knowledge-mcp"
SERVER_VERSION = "1.0.0"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default
    # 0 or negative disables the per-call timeout
    return value if value > 0 else None


@dataclass
class ServerConfig:
    """Top-level configuration shared by all transports."""
    call_timeout_seconds: Optional[float] = 30.0
    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    store: KnowledgeStoreConfig = field(default_factory=KnowledgeStoreConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Build a configuration from environment variables.

        Recognised variables:
            DATABASE_URL / POSTGRES_URL, DB_POOL_MIN, DB_POOL_MAX, HNSW_EF_SEARCH,
            EMBEDDING_PROVIDER, EMBEDDING_MODEL, EMBEDDING_MAX_CHARS,
            TOOL_CALL_TIMEOUT, LOG_LEVEL, API_HOST, API_PORT
        """
        provider = os.getenv("EMBEDDING_PROVIDER", "openai").strip().lower()
        if provider not in PROVIDER_DEFAULTS:
            logger.warning(f"Unknown EMBEDDING_PROVIDER '{provider}', falling back to 'openai'")
            provider = "openai"
        defaults = PROVIDER_DEFAULTS[provider]

        embedding = EmbeddingConfig(
            provider=provider,
            model=os.getenv("EMBEDDING_MODEL") or defaults["model"],
            dimensions=defaults["dimensions"],
            max_input_chars=_env_int("EMBEDDING_MAX_CHARS", 8000),
        )
        store = KnowledgeStoreConfig(
            connection_string=os.getenv("DATABASE_URL") or os.getenv("POSTGRES_URL"),
            pool_min_connections=_env_int("DB_POOL_MIN", 1),
            pool_max_connections=_env_int("DB_POOL_MAX", 10),
            hnsw_ef_search=_env_int("HNSW_EF_SEARCH", 0) or None,
        )
        return cls(
            call_timeout_seconds=_env_float("TOOL_CALL_TIMEOUT", 30.0),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            api_host=os.getenv("API_HOST", "0.0.0.0"),
            api_port=_env_int("API_PORT", 8000),
            store=store,
            embedding=embedding,
        )
