"""
Shared fixtures and test utilities for PoSH knowledge tool server tests.

Provides an in-memory knowledge store, a deterministic embedding service
and a small seeded corpus so that all tests run without API keys,
databases, or external network access.
"""

import sys
import math
import asyncio
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field

import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")


# ---------------------------------------------------------------------------
# Fake embedding service
# ---------------------------------------------------------------------------

class FakeEmbeddingService:
    """Deterministic embedding service -- never calls external APIs.

    Queries listed in `vectors` get that vector; anything else gets
    `default_vector`. Set `error` to make every call raise it.
    """

    def __init__(self, vectors: Optional[dict] = None, default_vector=None):
        self.vectors = vectors or {}
        self.default_vector = default_vector or [1.0, 0.0, 0.0]
        self.calls = []
        self.timeouts = []
        self.error = None
        self.delay = 0.0

    async def embed_query(self, query, timeout=None):
        self.calls.append(query)
        self.timeouts.append(timeout)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.vectors.get(query, self.default_vector))

    @property
    def dimensions(self):
        return len(self.default_vector)


# ---------------------------------------------------------------------------
# Fake knowledge store (no database needed)
# ---------------------------------------------------------------------------

@dataclass
class FakeRow:
    """One stored row plus the columns the fake store filters on."""
    fields: dict
    key: Optional[str] = None
    embedding: Optional[list] = None
    sections: tuple = ()
    category: Optional[str] = None
    document_type: Optional[str] = None
    is_active: bool = True
    version: int = 1

    def matches(self, filters: Optional[dict]) -> bool:
        for name, value in (filters or {}).items():
            if value is None:
                continue
            if name == "section" and value not in self.sections:
                return False
            if name == "category" and self.category != value:
                return False
        return True


def cosine(a, b) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class FakeKnowledgeStore:
    """In-memory stand-in for KnowledgeStore with the same query semantics.

    SQL is still built through the SourceSpec so unknown filters and views
    fail the same way they would against PostgreSQL.
    """

    def __init__(self, rows: Optional[dict] = None):
        self.rows = rows or {}
        self.calls = []
        self.error = None
        self.delay = 0.0
        self.healthy = True

    async def _before(self, kind, spec, timeout):
        self.calls.append((kind, spec.name, timeout))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

    def _candidates(self, spec):
        rows = self.rows.get(spec.name, [])
        if spec.name == "templates":
            rows = [r for r in rows if r.is_active]
        return rows

    async def exact_lookup(self, spec, key, filters=None, limit=5, view="detail", timeout=None):
        spec.exact_sql(key, filters, limit, view)
        await self._before("exact", spec, timeout)
        rows = [r for r in self._candidates(spec) if r.key == key and r.matches(filters)]
        if spec.exact_order_by:
            rows = sorted(rows, key=lambda r: r.version, reverse=True)
        return [dict(r.fields) for r in rows[:limit]]

    async def nearest(self, spec, embedding, filters=None, limit=5, view="detail", timeout=None):
        spec.nearest_sql(embedding, filters, limit, view)
        await self._before("nearest", spec, timeout)
        scored = [
            (cosine(embedding, r.embedding), r)
            for r in self._candidates(spec)
            if r.embedding is not None and r.matches(filters)
        ]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [{**r.fields, "similarity": score} for score, r in scored[:limit]]

    async def ping(self, timeout=5.0):
        return self.healthy

    def close(self):
        pass


# ---------------------------------------------------------------------------
# Seeded corpus
# ---------------------------------------------------------------------------

def _section(number, title, text, embedding, citation="The Sexual Harassment of Women at Workplace Act, 2013"):
    return FakeRow(
        fields={
            "section_number": number,
            "section_title": title,
            "section_text": text,
            "citation": citation,
        },
        key=number,
        embedding=embedding,
    )


def build_corpus() -> dict:
    """A small PoSH corpus with hand-picked 3-d embeddings."""
    rules_citation = "The Sexual Harassment of Women at Workplace Rules, 2013"
    return {
        "act": [
            _section("2", "Definitions", "In this Act, unless the context otherwise requires...", None),
            _section("4", "Constitution of Internal Complaints Committee", "Every employer shall constitute an Internal Committee...", [0.9, 0.1, 0.0]),
            _section("9", "Complaint of sexual harassment", "Any aggrieved woman may make a complaint within three months...", [0.7, 0.3, 0.0]),
            _section("11", "Inquiry into complaint", "The Internal Committee shall make inquiry into the complaint...", [0.5, 0.5, 0.0]),
            _section("13", "Inquiry report", "On completion of an inquiry the Internal Committee shall provide a report...", [0.3, 0.7, 0.0]),
            _section("14", "Punishment for false or malicious complaint", "Where the Internal Committee arrives at a conclusion that the allegation is malicious...", [0.1, 0.9, 0.0]),
            _section("26", "Penalty for non-compliance with provisions of Act", "Where the employer fails to constitute an Internal Committee...", [0.0, 1.0, 0.0]),
        ],
        "rules": [
            _section("7", "Manner of inquiry into complaint", "The complainant shall submit six copies of the complaint...", [0.8, 0.2, 0.0], rules_citation),
            _section("13", "Manner of conducting workshops", "Every employer shall organise workshops and awareness programmes...", [0.0, 0.0, 1.0], rules_citation),
        ],
        "case_law": [
            FakeRow(
                fields={
                    "case_name": "Medha Kotwal Lele v. Union of India",
                    "citation": "(2013) 1 SCC 297",
                    "court": "Supreme Court of India",
                    "sections_interpreted": ["4", "26"],
                },
                embedding=[0.95, 0.05, 0.0],
                sections=("4", "26"),
            ),
            FakeRow(
                fields={
                    "case_name": "Punjab and Sind Bank v. Durgesh Kuwar",
                    "citation": "(2020) SCC OnLine SC 1046",
                    "court": "Supreme Court of India",
                    "sections_interpreted": ["11", "13"],
                },
                embedding=[0.6, 0.4, 0.0],
                sections=("11", "13"),
            ),
            FakeRow(
                fields={
                    "case_name": "Unrelated Case v. Nobody",
                    "citation": "(2019) X 1",
                    "court": "High Court",
                    "sections_interpreted": [],
                },
                embedding=None,
            ),
        ],
        "playbooks": [
            FakeRow(
                fields={"title": "Handling anonymous complaints", "category": "intake"},
                embedding=[0.85, 0.15, 0.0],
                category="intake",
            ),
            FakeRow(
                fields={"title": "Interim relief during inquiry", "category": "inquiry"},
                embedding=[0.55, 0.45, 0.0],
                category="inquiry",
            ),
        ],
        "templates": [
            FakeRow(fields={"template_type": "inquiry_report", "version": 1, "content": "v1"},
                    key="inquiry_report", is_active=False, version=1),
            FakeRow(fields={"template_type": "inquiry_report", "version": 2, "content": "v2"},
                    key="inquiry_report", is_active=True, version=2),
            FakeRow(fields={"template_type": "inquiry_report", "version": 3, "content": "v3"},
                    key="inquiry_report", is_active=True, version=3),
        ],
    }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_store():
    return FakeKnowledgeStore(build_corpus())


@pytest.fixture
def fake_embeddings():
    return FakeEmbeddingService()


@pytest.fixture
def retriever(fake_store, fake_embeddings):
    from execution.posh_knowledge.retriever import HybridRetriever
    return HybridRetriever(fake_store, fake_embeddings)


@pytest.fixture
def dispatcher(retriever):
    from execution.posh_knowledge.dispatcher import ToolDispatcher
    return ToolDispatcher(retriever, call_timeout=5.0)


# ---------------------------------------------------------------------------
# Singleton resets between tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def reset_metrics_singleton():
    """Reset the MetricsCollector singleton between tests."""
    import execution.posh_knowledge.metrics as metrics_mod
    metrics_mod.MetricsCollector._instance = None
    metrics_mod._collector = None
    yield
    metrics_mod.MetricsCollector._instance = None
    metrics_mod._collector = None
