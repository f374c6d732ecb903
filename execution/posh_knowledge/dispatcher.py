"""
Tool Dispatcher

Publishes the tool catalog and routes (name, arguments) calls to the
matching handler. Every outcome, success or failure, comes back as a
ToolResponse envelope: one text block plus an is_error flag. Nothing a
single call does can take the dispatcher down.
"""

import copy
import time
import json
import uuid
import asyncio
import logging
from datetime import date, datetime, time as time_of_day
from decimal import Decimal
from typing import Any, Iterable, Optional
from dataclasses import dataclass, field

from .config import ServerConfig
from .embeddings import get_embedding_service
from .errors import ArgumentValidationError, KnowledgeToolError, UnknownToolError
from .knowledge_store import KnowledgeStore
from .metrics import MetricsCollector, get_metrics_collector
from .retriever import HybridRetriever
from .tool_models import parse_arguments
from .tools import TOOLS, ToolCapability

logger = logging.getLogger(__name__)

# Metrics bucket for names outside the catalog
UNKNOWN_TOOL_BUCKET = "<unknown>"


def _json_default(value: Any) -> Any:
    """Serialize datastore values json doesn't know about."""
    if isinstance(value, (datetime, date, time_of_day)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def _count_results(result: Any) -> int:
    if not isinstance(result, dict):
        return 0
    if "total_results" in result:
        return result["total_results"]
    for key in ("sections", "cases", "guidance", "results"):
        if isinstance(result.get(key), list):
            return len(result[key])
    return 1 if result.get("found") else 0


def serialize_result(result: Any) -> str:
    """Stable, parseable text form of a tool result."""
    return json.dumps(result, indent=2, ensure_ascii=False, default=_json_default)


@dataclass
class ToolResponse:
    """Uniform envelope for tool results."""
    content: list[dict] = field(default_factory=list)
    is_error: bool = False

    @classmethod
    def success(cls, result: Any) -> "ToolResponse":
        return cls(content=[{"type": "text", "text": serialize_result(result)}], is_error=False)

    @classmethod
    def error(cls, message: str) -> "ToolResponse":
        return cls(content=[{"type": "text", "text": message}], is_error=True)

    @property
    def text(self) -> str:
        return "".join(block.get("text", "") for block in self.content)

    def to_dict(self) -> dict:
        return {"content": self.content, "isError": self.is_error}


class ToolDispatcher:
    """
    Routes tool calls to handlers and normalizes their outcomes.

    Usage:
        dispatcher = ToolDispatcher(retriever)
        dispatcher.list_tools()
        response = await dispatcher.call_tool("get_case_law", {"query": "..."})
    """

    def __init__(
        self,
        retriever: HybridRetriever,
        tools: Iterable[ToolCapability] = TOOLS,
        call_timeout: Optional[float] = 30.0,
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Initialize dispatcher.

        Args:
            retriever: Retrieval engine shared by all handlers
            tools: Tool catalog to publish
            call_timeout: Seconds allowed per call, or None for no limit
            metrics: Metrics collector; defaults to the global one
        """
        self.retriever = retriever
        self.call_timeout = call_timeout
        self.metrics = metrics or get_metrics_collector()
        self._tools: dict[str, ToolCapability] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ValueError(f"Duplicate tool name '{tool.name}'")
            self._tools[tool.name] = tool
        # Built once so every list_tools() call returns the same catalog
        self._catalog = [tool.descriptor() for tool in self._tools.values()]

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def list_tools(self) -> list[dict]:
        """Return the static tool catalog: name, description and input schema per tool."""
        return copy.deepcopy(self._catalog)

    async def _dispatch(self, name: str, arguments: Any) -> Any:
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)

        request = parse_arguments(tool.request_model, arguments)
        try:
            return await asyncio.wait_for(
                tool.handler(self.retriever, request, self.call_timeout),
                timeout=self.call_timeout,
            )
        except asyncio.TimeoutError as e:
            raise KnowledgeToolError(
                f"Tool '{name}' timed out after {self.call_timeout:.1f}s"
            ) from e

    async def call_tool(self, name: str, arguments: Optional[dict] = None) -> ToolResponse:
        """
        Run one tool call.

        Never raises for tool-level failures: unknown tools, invalid
        arguments, embedding and datastore failures, timeouts and unexpected
        bugs all become is_error responses.

        Args:
            name: Tool name from the catalog
            arguments: Raw argument mapping

        Returns:
            ToolResponse with a JSON text block on success, an error message otherwise
        """
        tracked_name = name if name in self._tools else UNKNOWN_TOOL_BUCKET
        with self.metrics.track_call(tracked_name) as tracker:
            try:
                result = await self._dispatch(name, arguments)
            except (UnknownToolError, ArgumentValidationError) as e:
                logger.warning(f"Rejected tool call {name}: {e}")
                tracker.set_outcome(is_error=True, error_type=type(e).__name__)
                return ToolResponse.error(str(e))
            except KnowledgeToolError as e:
                logger.warning(f"Tool call {name} failed: {type(e).__name__}: {e}")
                tracker.set_outcome(is_error=True, error_type=type(e).__name__)
                return ToolResponse.error(f"Error: {e}")
            except Exception as e:
                logger.exception(f"Unexpected error in tool {name}")
                tracker.set_outcome(is_error=True, error_type=type(e).__name__)
                return ToolResponse.error(f"Error: {e}")

            try:
                response = ToolResponse.success(result)
            except (TypeError, ValueError) as e:
                logger.exception(f"Could not serialize result of tool {name}")
                tracker.set_outcome(is_error=True, error_type=type(e).__name__)
                return ToolResponse.error(f"Error: could not serialize result: {e}")

            tracker.set_outcome(is_error=False, results_count=_count_results(result))
            elapsed_ms = (time.time() - tracker.call.start_time) * 1000
            logger.info(f"Tool call {name} succeeded in {elapsed_ms:.0f}ms")
            return response


def build_dispatcher(config: ServerConfig, store: KnowledgeStore) -> ToolDispatcher:
    """Wire embeddings, retriever and dispatcher for a server configuration."""
    embeddings = get_embedding_service(config.embedding)
    retriever = HybridRetriever(store, embeddings)
    logger.info(
        f"Dispatcher ready: provider={config.embedding.provider}, "
        f"model={config.embedding.model}, call_timeout={config.call_timeout_seconds}"
    )
    return ToolDispatcher(retriever, call_timeout=config.call_timeout_seconds)
