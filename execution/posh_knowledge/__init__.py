"""
PoSH Knowledge Tool Server - hybrid retrieval over PoSH law for agents

This module provides:
- Exact-then-semantic retrieval over the PoSH Act 2013 and Rules 2013
- Case law, KelpHR playbook and IC template lookups
- A tool dispatcher with a stable catalog and uniform result envelope
- MCP (stdio) and HTTP transports over the same dispatcher
"""

from .dispatcher import ToolDispatcher, ToolResponse
from .embeddings import get_embedding_service
from .knowledge_store import KnowledgeStore
from .retriever import HybridRetriever
from .tools import TOOLS

__all__ = [
    "ToolDispatcher",
    "ToolResponse",
    "get_embedding_service",
    "KnowledgeStore",
    "HybridRetriever",
    "TOOLS",
]

__version__ = "1.0.0"
