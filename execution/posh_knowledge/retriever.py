"""
Hybrid Retriever for the PoSH knowledge base

Exact-then-semantic retrieval:

1. If a structured key (e.g. a section number) is supplied, try an equality
   lookup first. Any match is returned as-is; similarity search is skipped
   so citation lookups are never diluted or reordered.
2. Otherwise, or when the exact lookup finds nothing, embed the query and
   run a filtered nearest-neighbour search.
3. For multi-source search, embed once, search each source, merge and
   re-rank by similarity, and truncate to a single global limit.

There is no minimum-similarity cutoff: every row the nearest-neighbour
query returns counts as a result.
"""

import asyncio
import logging
from typing import Optional, Iterable
from dataclasses import dataclass, field

from .embeddings import BaseEmbeddingService
from .knowledge_store import KnowledgeStore
from .sources import (
    DETAIL,
    SUMMARY,
    DEFAULT_SEMANTIC_SOURCES,
    SourceSpec,
    get_source,
)

logger = logging.getLogger(__name__)

EXACT = "exact"
SEMANTIC = "semantic"
NONE = "none"


@dataclass
class SearchHit:
    """A single retrieved row with its provenance and score."""
    source: str
    fields: dict
    similarity: Optional[float] = None

    def to_dict(self, include_source: bool = False) -> dict:
        data = {"source": self.source} if include_source else {}
        data.update(self.fields)
        if self.similarity is not None:
            data["similarity"] = self.similarity
        return data


@dataclass
class RetrievalResult:
    """Outcome of a retrieval: found is always len(results) > 0."""
    results: list[SearchHit] = field(default_factory=list)
    strategy: str = NONE

    @property
    def found(self) -> bool:
        return len(self.results) > 0

    def to_dicts(self, include_source: bool = False) -> list[dict]:
        return [hit.to_dict(include_source=include_source) for hit in self.results]


@dataclass
class RetrievalConfig:
    """Configuration for hybrid retrieval."""
    # Sources searched by retrieve_many() when the caller names none, in merge order
    default_sources: tuple = DEFAULT_SEMANTIC_SOURCES


def _check_max_results(max_results: int) -> None:
    if isinstance(max_results, bool) or not isinstance(max_results, int) or max_results < 1:
        raise ValueError(f"max_results must be an integer >= 1, got {max_results!r}")


class _Deadline:
    """Remaining time budget shared by every awaited step of one retrieval."""

    def __init__(self, timeout: Optional[float]):
        self._expires = None
        if timeout is not None:
            self._expires = asyncio.get_running_loop().time() + timeout

    def remaining(self) -> Optional[float]:
        if self._expires is None:
            return None
        return max(self._expires - asyncio.get_running_loop().time(), 0.0)


def _to_hit(source: str, row: dict) -> SearchHit:
    fields = dict(row)
    similarity = fields.pop("similarity", None)
    return SearchHit(
        source=source,
        fields=fields,
        similarity=float(similarity) if similarity is not None else None,
    )


class HybridRetriever:
    """
    Exact-then-semantic retrieval over the knowledge sources.

    The retriever never writes and keeps no per-call state; one instance
    serves any number of concurrent calls.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedding_service: BaseEmbeddingService,
        config: Optional[RetrievalConfig] = None,
    ):
        """
        Initialize retriever.

        Args:
            store: Knowledge store used for exact and nearest-neighbour queries
            embedding_service: Embedding service for query vectors
            config: Optional retrieval configuration
        """
        self.store = store
        self.embeddings = embedding_service
        self.config = config or RetrievalConfig()

    async def _semantic(
        self,
        spec: SourceSpec,
        embedding: list[float],
        filters: Optional[dict],
        max_results: int,
        view: str,
        deadline: _Deadline,
    ) -> list[SearchHit]:
        rows = await self.store.nearest(
            spec,
            embedding,
            filters=filters,
            limit=max_results,
            view=view,
            timeout=deadline.remaining(),
        )
        return [_to_hit(spec.name, row) for row in rows[:max_results]]

    async def retrieve(
        self,
        source: str,
        query_text: Optional[str],
        exact_key: Optional[str] = None,
        filters: Optional[dict] = None,
        max_results: int = 5,
        view: str = DETAIL,
        timeout: Optional[float] = None,
    ) -> RetrievalResult:
        """
        Retrieve from one source.

        Args:
            source: Source name (see sources.SOURCES)
            query_text: Free-text query, embedded for the semantic path
            exact_key: Structured key for the exact path (e.g. section number)
            filters: Hard filters applied to both paths; None values are ignored
            max_results: Upper bound on returned rows (>= 1)
            view: Column projection, "detail" or "summary"
            timeout: Total time budget in seconds for this retrieval

        Returns:
            RetrievalResult with strategy "exact", "semantic" or "none"
        """
        spec = get_source(source)
        _check_max_results(max_results)
        deadline = _Deadline(timeout)

        if exact_key:
            if not spec.supports_exact:
                raise ValueError(f"Source '{source}' has no structured key for exact lookup")
            rows = await self.store.exact_lookup(
                spec,
                exact_key,
                filters=filters,
                limit=max_results,
                view=view,
                timeout=deadline.remaining(),
            )
            if rows:
                logger.info(f"Exact match on {source} for key {exact_key!r}: {len(rows)} rows")
                return RetrievalResult(
                    results=[_to_hit(source, row) for row in rows[:max_results]],
                    strategy=EXACT,
                )
            logger.info(f"No exact match on {source} for key {exact_key!r}")

        if not spec.supports_semantic:
            return RetrievalResult(results=[], strategy=NONE)

        embedding = await self.embeddings.embed_query(query_text, timeout=deadline.remaining())
        hits = await self._semantic(spec, embedding, filters, max_results, view, deadline)
        logger.info(f"Semantic search on {source}: {len(hits)} results")
        return RetrievalResult(results=hits, strategy=SEMANTIC)

    async def retrieve_many(
        self,
        query_text: Optional[str],
        sources: Optional[Iterable[str]] = None,
        max_results: int = 5,
        per_source_limit: Optional[int] = None,
        view: str = SUMMARY,
        timeout: Optional[float] = None,
    ) -> RetrievalResult:
        """
        Semantic search across several sources with a single global ranking.

        The query is embedded once. Each source is searched with its own
        cap (per_source_limit, defaulting to max_results); the merged list
        is sorted by similarity descending and cut to max_results. Equal
        scores keep source order, then datastore row order.

        Args:
            query_text: Free-text query
            sources: Source names to search; defaults to config.default_sources
            max_results: Global upper bound on returned rows (>= 1)
            per_source_limit: Cap applied to each source before merging
            view: Column projection, "summary" by default
            timeout: Total time budget in seconds

        Returns:
            RetrievalResult whose hits carry their source tag
        """
        _check_max_results(max_results)
        per_source = per_source_limit if per_source_limit is not None else max_results
        _check_max_results(per_source)

        names = list(dict.fromkeys(sources or self.config.default_sources))
        specs = [get_source(name) for name in names]
        for spec in specs:
            if not spec.supports_semantic:
                raise ValueError(f"Source '{spec.name}' does not support semantic search")

        deadline = _Deadline(timeout)
        embedding = await self.embeddings.embed_query(query_text, timeout=deadline.remaining())

        merged: list[SearchHit] = []
        for spec in specs:
            hits = await self._semantic(spec, embedding, None, per_source, view, deadline)
            logger.debug(f"Semantic search on {spec.name}: {len(hits)} results")
            merged.extend(hits)

        # list.sort is stable, so ties keep source then row order
        merged.sort(key=lambda hit: hit.similarity, reverse=True)
        merged = merged[:max_results]
        logger.info(
            f"Multi-source search over {names}: {len(merged)} results"
        )
        return RetrievalResult(results=merged, strategy=SEMANTIC)
